# judostats/plugins/__init__.py
"""Analysis plugins built on top of the technique store."""

from .judoka_stats import JudokaStatsPlugin

__all__ = ['JudokaStatsPlugin']
