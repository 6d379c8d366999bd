import json

import main
from tests.helpers import create_temp_db, make_technique, remove_temp_db, seed_competition


def test_stats_json_and_clean_db(capsys):
    database, db_path = create_temp_db()
    try:
        seed_competition(database, 1, 2024, [make_technique(), make_technique(technique_name="Uchi-mata")])
        database.close()

        assert main.main(["--db", db_path, "stats", "--json", "--year", "2024"]) == 0
        stats = json.loads(capsys.readouterr().out)
        assert stats["total_techniques"] == 2
        assert stats["filters"] == {"year": 2024}

        assert main.main(["--db", db_path, "judoka", "100"]) == 0
        assert "Seoi-nage" in capsys.readouterr().out

        assert main.main(["--db", db_path, "stats", "--height-range", "tall"]) == 2
        assert "Invalid filter" in capsys.readouterr().out

        assert main.main(["--db", db_path, "clean-db"]) == 0
        assert "'techniques': 2" in capsys.readouterr().out
    finally:
        remove_temp_db(database, db_path)
