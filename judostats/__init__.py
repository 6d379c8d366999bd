# judostats/__init__.py
"""
Judo technique statistics from IJF competition data.

Crawls competitions from the IJF data API, extracts scored techniques from
match event logs and serves filtered aggregate statistics.
"""

from .api_client import IJFAPIClient
from .crawler import CrawlOrchestrator, CompetitionNotFoundError, InvalidJudokaIdError
from .database import Database
from .extractor import TechniqueExtractor
from .query import TechniqueFilters

__all__ = [
    'IJFAPIClient',
    'CrawlOrchestrator',
    'CompetitionNotFoundError',
    'InvalidJudokaIdError',
    'Database',
    'TechniqueExtractor',
    'TechniqueFilters',
]
