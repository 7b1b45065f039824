"""Tests for the operator CLI."""

import pytest

from focusstats.cli import build_parser, main
from focusstats.storage import FocusStorage


@pytest.fixture
def cli_args(tmp_path):
    def _args(*command):
        return ["--db", str(tmp_path / "focus.db"),
                "--config", str(tmp_path / "config.yaml"), *command]
    return _args


class TestCli:

    def test_stats_without_data(self, cli_args, capsys):
        assert main(cli_args("stats", "daily", "2024-01-01")) == 0
        assert "no sessions yet" in capsys.readouterr().out

    def test_refresh_then_cached_stats(self, tmp_path, cli_args, capsys, make_session):
        FocusStorage(tmp_path / "focus.db").insert_session_with_usage(
            make_session("2024-01-01T09:00:00", 1500, score=0.8)
        )
        assert main(cli_args("refresh", "daily", "2024-01-01")) == 0
        capsys.readouterr()

        assert main(cli_args("stats", "daily", "2024-01-01")) == 0
        out = capsys.readouterr().out
        assert "Sessions: 1" in out
        assert "Focus time: 25m" in out

    def test_weekly_stats_show_mobile_usage(self, tmp_path, cli_args, capsys, make_session):
        storage = FocusStorage(tmp_path / "focus.db")
        storage.insert_session_with_usage(make_session("2024-01-02T09:00:00", 1800))
        storage.save_daily_mobile_usage("2024-01-02", 7200)
        assert main(cli_args("refresh", "weekly", "2024-W01")) == 0
        capsys.readouterr()

        assert main(cli_args("stats", "weekly", "2024-W01")) == 0
        assert "Mobile usage: 2h 0m (25.0% spent focused)" in capsys.readouterr().out

    def test_retention_before(self, tmp_path, cli_args, capsys, make_session):
        FocusStorage(tmp_path / "focus.db").insert_session_with_usage(
            make_session("2024-01-01T09:00:00", 600)
        )
        assert main(cli_args("retention", "--before", "2024-02-01")) == 0
        assert "sessions: 1" in capsys.readouterr().out

    def test_retention_window(self, tmp_path, cli_args, capsys):
        storage = FocusStorage(tmp_path / "focus.db")
        for day in ("2024-01-01", "2024-01-02", "2024-01-03"):
            storage.save_daily_mobile_usage(day, 60)
        assert main(cli_args("retention", "--window", "2")) == 0
        assert "removed: 1" in capsys.readouterr().out

    def test_malformed_key_exit_code(self, cli_args, capsys):
        assert main(cli_args("stats", "weekly", "2024-01")) == 1
        assert "Error" in capsys.readouterr().err

    def test_kind_choices(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["stats", "yearly", "2024"])
