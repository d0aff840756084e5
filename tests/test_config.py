from pathlib import Path

import pytest

from lostfound_auction.config import Settings, load_config
from lostfound_auction.errors import InvalidInputError


def test_defaults_without_file():
    s = load_config(None)
    assert s == Settings()
    assert s.min_increment == 100
    assert s.finalize_requires_ended is False


def test_yaml_config(tmp_path):
    p = tmp_path / "settings.yaml"
    p.write_text(
        "\n".join(
            [
                "database: data/auction.sqlite",
                "min_increment: 250",
                "finalize_requires_ended: true",
                "dead_letter_path: data/dead.jsonl",
                "log_level: debug",
                "unknown_key: ignored",
            ]
        ),
        encoding="utf-8",
    )
    s = load_config(p)
    assert s.database == Path("data/auction.sqlite")
    assert s.min_increment == 250
    assert s.finalize_requires_ended is True
    assert s.dead_letter_path == Path("data/dead.jsonl")
    assert s.log_level == "DEBUG"


def test_json_config(tmp_path):
    p = tmp_path / "settings.json"
    p.write_text('{"busy_timeout_sec": 2, "notify_on_schedule": false}', encoding="utf-8")
    s = load_config(p)
    assert s.busy_timeout_sec == 2.0
    assert s.notify_on_schedule is False


@pytest.mark.parametrize(
    "data",
    [
        {"min_increment": 0},
        {"min_increment": "100"},
        {"busy_timeout_sec": -1},
        {"finalize_requires_ended": "yes"},
    ],
)
def test_invalid_values(data):
    with pytest.raises(InvalidInputError):
        Settings.from_dict(data)


def test_config_must_be_mapping(tmp_path):
    p = tmp_path / "settings.yaml"
    p.write_text("- a\n- b\n", encoding="utf-8")
    with pytest.raises(InvalidInputError):
        load_config(p)
