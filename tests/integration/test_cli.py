"""Integration tests for the staticcal command-line entry point."""

import json
import logging

import pytest

from staticcal.__main__ import _create_parser, main

pytestmark = pytest.mark.integration

FEED = """\
title: Team
events:
  - id: standup
    summary: Standup
    start: 2024-01-01T09:00:00
    end: 2024-01-01T09:30:00
    rrule: FREQ=DAILY;COUNT=3
  - id: retro
    summary: Retro
    start: 2024-01-02T15:00:00
    end: 2024-01-02T16:00:00
"""


@pytest.fixture
def site(tmp_path):
    """A config file with one good and one missing source."""
    (tmp_path / "feeds").mkdir()
    (tmp_path / "feeds" / "team.yaml").write_text(FEED, encoding="utf-8")
    config_file = tmp_path / "staticcal.yaml"
    config_file.write_text(
        "display_timezone: UTC\n"
        "horizon_start: 2024-01-01\n"
        "horizon_end: 2024-01-31\n"
        "sources:\n"
        "  - name: team\n"
        "    path: feeds/team.yaml\n"
        "  - name: holidays\n"
        "    path: feeds/holidays.yaml\n",
        encoding="utf-8",
    )
    return tmp_path


def test_parser_defaults():
    """The parser exposes config, today, output, granularity and debug options."""
    args = _create_parser().parse_args([])
    assert args.config is None
    assert args.today is None
    assert args.output == "output"
    assert args.granularity is None
    assert args.debug is False


def test_parser_rejects_bad_today():
    """--today must be an ISO date."""
    with pytest.raises(SystemExit):
        _create_parser().parse_args(["--today", "someday"])


def test_cli_writes_window_contexts(site, capsys):
    """Every window and listing is written as JSON; failures appear in the summary."""
    output = site / "out"
    exit_code = main(
        [
            "--config",
            str(site / "staticcal.yaml"),
            "--today",
            "2024-01-02",
            "--output",
            str(output),
            "--granularity",
            "day",
            "--granularity",
            "month",
        ]
    )

    assert exit_code == 0
    assert sorted(p.name for p in (output / "day").iterdir()) == [
        "2024-01-01.json",
        "2024-01-02.json",
        "2024-01-03.json",
        "index.json",
    ]
    assert (output / "month" / "2024-01.json").exists()
    assert not (output / "week").exists()

    day = json.loads((output / "day" / "2024-01-02.json").read_text(encoding="utf-8"))
    assert day["window_id"] == "day/2024-01-02"
    assert day["previous"]["window_id"] == "day/2024-01-01"
    assert day["next"]["path"] == "day/2024-01-03.html"
    summaries = [e["occurrence"]["summary"] for e in day["buckets"][0]["entries"]]
    assert summaries == ["Standup", "Retro"]
    assert day["buckets"][0]["is_today"] is True

    listing = json.loads((output / "day" / "index.json").read_text(encoding="utf-8"))
    assert listing["index_window_id"] == "day/2024-01-02"
    assert len(listing["windows"]) == 3

    printed = capsys.readouterr().out
    assert "Sources: 1/2 loaded" in printed
    assert "[source] holidays" in printed
    assert "Windows written: 4" in printed


def test_cli_bad_config_exit_code(tmp_path):
    """A config whose top level is not a mapping exits with status 2."""
    config_file = tmp_path / "staticcal.yaml"
    config_file.write_text("- nope\n", encoding="utf-8")
    assert main(["--config", str(config_file), "--output", str(tmp_path / "out")]) == 2


def test_cli_applies_configured_log_level(tmp_path):
    """The config log_level sets the staticcal logger levels."""
    config_file = tmp_path / "staticcal.yaml"
    config_file.write_text("log_level: WARNING\n", encoding="utf-8")

    assert main(["--config", str(config_file), "--output", str(tmp_path / "out")]) == 0
    assert logging.getLogger("staticcal.engine").getEffectiveLevel() == logging.WARNING
    assert logging.getLogger().level == logging.WARNING


def test_cli_writes_event_pages(site):
    """Event pages are written per occurrence with a listing pointing at the next one."""
    output = site / "out"
    exit_code = main(
        [
            "--config",
            str(site / "staticcal.yaml"),
            "--today",
            "2024-01-02",
            "--output",
            str(output),
            "--granularity",
            "event",
        ]
    )

    assert exit_code == 0
    assert sorted(p.name for p in (output / "event").iterdir()) == [
        "2024-01-01-standup.json",
        "2024-01-02-retro.json",
        "2024-01-02-standup.json",
        "2024-01-03-standup.json",
        "index.json",
    ]
    page = json.loads((output / "event" / "2024-01-02-retro.json").read_text(encoding="utf-8"))
    assert page["previous"]["window_id"] == "event/2024-01-02-standup"
    assert page["next"]["window_id"] == "event/2024-01-03-standup"
    entry = page["buckets"][0]["entries"][0]
    assert entry["day_window_id"] == "day/2024-01-02"
    assert entry["month_window_id"] == "month/2024-01"

    listing = json.loads((output / "event" / "index.json").read_text(encoding="utf-8"))
    assert listing["index_window_id"] == "event/2024-01-02-standup"
