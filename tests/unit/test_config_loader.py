"""Tests for staticcal.config_loader.

Run with:
    pytest tests/unit/test_config_loader.py -q
"""

import json
import logging
from datetime import date

import pytest

from staticcal.config_loader import Config, SourceConfig, apply_env_overrides, load_config

pytestmark = pytest.mark.unit


def test_defaults():
    """An empty mapping yields the documented defaults."""
    cfg = Config.from_dict({})

    assert cfg.sources == []
    assert cfg.display_timezone == "UTC"
    assert cfg.today == "today"
    assert cfg.horizon_mode == "relative"
    assert (cfg.horizon_days_before, cfg.horizon_days_after) == (30, 365)
    assert cfg.weekend_days == ["saturday", "sunday"]
    assert cfg.week_start == "sunday"
    assert cfg.agenda_page_size == 10
    assert cfg.granularities == ["month", "week", "day", "agenda", "event"]
    assert cfg.default_view == "month"
    assert cfg.log_level == "INFO"


def test_none_is_treated_as_empty():
    """from_dict(None) behaves like an empty mapping."""
    assert Config.from_dict(None) == Config.from_dict({})


def test_sources_keep_order_and_drop_duplicate_names(caplog):
    """Source list order is precedence order; later duplicate names are dropped."""
    with caplog.at_level(logging.WARNING):
        cfg = Config.from_dict(
            {
                "sources": [
                    {"name": "work", "path": "work.yaml", "title": "Work"},
                    "family.yaml",
                    {"name": "work", "path": "other.yaml"},
                    {"name": "broken"},
                ]
            }
        )

    assert cfg.sources == [
        SourceConfig(name="work", path="work.yaml", title="Work"),
        SourceConfig(name="family", path="family.yaml"),
    ]
    assert cfg.source_order == ["work", "family"]
    assert "Duplicate source name" in caplog.text
    assert "has no path" in caplog.text


@pytest.mark.parametrize(
    "key,raw,expected",
    [
        ("agenda_page_size", 0, 1),
        ("agenda_page_size", 10_000, 500),
        ("agenda_page_size", "25", 25),
        ("agenda_page_size", "many", 10),
        ("horizon_days_before", -5, 0),
        ("horizon_days_after", 99_999, 3650),
    ],
)
def test_integer_coercion_and_bounds(key, raw, expected):
    """Integers are coerced and clamped instead of raising."""
    assert getattr(Config.from_dict({key: raw}), key) == expected


def test_invalid_values_fall_back(caplog):
    """Unusable values fall back to defaults with a warning."""
    with caplog.at_level(logging.WARNING):
        cfg = Config.from_dict(
            {
                "display_timezone": "Mars/Olympus",
                "horizon_mode": "forever",
                "today": "tomorrow-ish",
                "week_start": "caturday",
                "weekend_days": ["friday", "blursday"],
                "granularities": ["month", "year", "day", "month"],
                "default_view": "year",
            }
        )

    assert cfg.display_timezone == "UTC"
    assert cfg.horizon_mode == "relative"
    assert cfg.today == "today"
    assert cfg.week_start == "sunday"
    assert cfg.weekend_days == ["friday"]
    assert cfg.granularities == ["month", "day"]
    assert cfg.default_view == "month"
    assert "Unknown granularity" in caplog.text


def test_timezone_aliases_are_accepted():
    """Windows names and aliases are valid display timezones."""
    assert Config.from_dict({"display_timezone": "US/Eastern"}).display_timezone == "US/Eastern"


def test_explicit_horizon_dates():
    """ISO horizon bounds are parsed; an inverted pair is ignored."""
    cfg = Config.from_dict({"horizon_start": "2024-01-01", "horizon_end": "2024-03-31"})
    assert cfg.horizon_start == date(2024, 1, 1)
    assert cfg.horizon_end == date(2024, 3, 31)

    inverted = Config.from_dict({"horizon_start": "2024-03-01", "horizon_end": "2024-01-01"})
    assert inverted.horizon_start is None
    assert inverted.horizon_end is None


def test_env_overrides():
    """STATICCAL_* variables overlay the file values."""
    merged = apply_env_overrides(
        {"display_timezone": "UTC", "agenda_page_size": 5},
        {
            "STATICCAL_DISPLAY_TIMEZONE": "Europe/Paris",
            "STATICCAL_TODAY": "2024-01-02",
            "STATICCAL_AGENDA_PAGE_SIZE": "not-a-number",
            "STATICCAL_LOG_LEVEL": "debug",
        },
    )
    assert merged["display_timezone"] == "Europe/Paris"
    assert merged["today"] == "2024-01-02"
    assert merged["agenda_page_size"] == 5
    assert Config.from_dict(merged).log_level == "DEBUG"


def test_load_missing_file_returns_defaults(tmp_path):
    """A missing config file is not an error."""
    cfg = load_config(str(tmp_path / "absent.yaml"), environ={})
    assert cfg == Config()


def test_load_yaml_resolves_relative_source_paths(tmp_path):
    """Relative source paths are resolved against the config file directory."""
    config_file = tmp_path / "staticcal.yaml"
    config_file.write_text(
        "display_timezone: Europe/Berlin\n"
        "agenda_page_size: 4\n"
        "sources:\n"
        "  - name: work\n"
        "    path: feeds/work.yaml\n",
        encoding="utf-8",
    )
    cfg = load_config(str(config_file), environ={"STATICCAL_AGENDA_PAGE_SIZE": "7"})

    assert cfg.display_timezone == "Europe/Berlin"
    assert cfg.agenda_page_size == 7
    assert cfg.sources[0].path == str(tmp_path / "feeds" / "work.yaml")


def test_load_json(tmp_path):
    """JSON files are read by suffix."""
    config_file = tmp_path / "staticcal.json"
    config_file.write_text(json.dumps({"week_start": "monday"}), encoding="utf-8")
    assert load_config(str(config_file), environ={}).week_start == "monday"


def test_non_mapping_top_level_raises(tmp_path):
    """A config whose top level is not a mapping is rejected."""
    config_file = tmp_path / "staticcal.yaml"
    config_file.write_text("- just\n- a list\n", encoding="utf-8")
    with pytest.raises(ValueError):
        load_config(str(config_file), environ={})


def test_empty_yaml_file_is_defaults(tmp_path):
    """An empty YAML file means all defaults."""
    config_file = tmp_path / "staticcal.yaml"
    config_file.write_text("", encoding="utf-8")
    assert load_config(str(config_file), environ={}) == Config()
