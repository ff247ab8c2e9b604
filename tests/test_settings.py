"""Tests for persistent settings and the CLI helpers."""

import json

import pytest

from runematch import cli
from runematch.api_client import build_result
from runematch.session import MatchUpdate
from runematch.settings import DEFAULTS, Settings


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep RUNEMATCH_* variables from the outer environment out of the tests."""
    for name in ("RUNEMATCH_API_URL", "RUNEMATCH_VERIFICATION_CODE", "RUNEMATCH_RSN"):
        monkeypatch.delenv(name, raising=False)


class TestSettings:
    """Tests for persistent settings."""

    def test_defaults_without_file(self, tmp_path):
        """A missing file yields the defaults."""
        settings = Settings(tmp_path / "settings.json")
        assert settings.get("api_url") == DEFAULTS["api_url"]
        assert settings.get("rally_distance") == 15
        assert settings.get("unknown", "fallback") == "fallback"

    def test_set_persists(self, tmp_path):
        """set writes the file and a new instance reads it back."""
        path = tmp_path / "nested" / "settings.json"
        Settings(path).set("rally_distance", 10)

        assert json.loads(path.read_text())["rally_distance"] == 10
        assert Settings(path).get("rally_distance") == 10

    def test_file_merges_with_defaults(self, tmp_path):
        """Stored values override defaults key by key."""
        path = tmp_path / "settings.json"
        path.write_text(json.dumps({"poll_interval_ticks": 5}))

        settings = Settings(path)

        assert settings.get("poll_interval_ticks") == 5
        assert settings.get("tick_seconds") == 0.6

    def test_corrupt_file_falls_back_to_defaults(self, tmp_path):
        """An unreadable file is ignored."""
        path = tmp_path / "settings.json"
        path.write_text("{not json")

        assert Settings(path).get("max_workers") == DEFAULTS["max_workers"]

    def test_environment_overrides(self, tmp_path, monkeypatch):
        """Environment variables win over stored values."""
        settings = Settings(tmp_path / "settings.json")
        settings.set("verified_username", "FromFile")
        monkeypatch.setenv("RUNEMATCH_RSN", "FromEnv")
        monkeypatch.setenv("RUNEMATCH_API_URL", "http://localhost:9000/api")

        assert settings.get("verified_username") == "FromEnv"
        assert settings.get("api_url") == "http://localhost:9000/api"

    def test_reset(self, tmp_path):
        """reset restores the defaults."""
        settings = Settings(tmp_path / "settings.json")
        settings.set("rally_distance", 3)
        settings.reset()
        assert settings.get("rally_distance") == 15


class TestFormatUpdate:
    """Tests for one-line update summaries."""

    def test_failure(self):
        """Failures show the message or raw body."""
        update = MatchUpdate(None, "", "<html>", False, False)
        assert cli.format_update(update) == "[failed] <html>"

    def test_session_summary(self):
        """Sessions are summarised on one line."""
        body = json.dumps({
            "player1_osrs_username": "Zezima",
            "player2_osrs_username": "Lynx Titan",
            "world": 302,
            "zone": "Ferox Enclave",
            "status": "Completed",
            "rally": {"x": 1, "y": 2, "plane": 0},
            "winner": {"osrs_rsn": "Zezima", "combat_level": 126, "elo": 1500},
            "message": "GG",
        })
        result = build_result(body, True, "M-1", "Zezima")
        update = MatchUpdate(result.session, result.message, result.raw_response, True, False)

        line = cli.format_update(update)

        assert line.startswith("[Completed] Zezima vs Lynx Titan world 302 Ferox Enclave")
        assert "rally (1, 2, 0)" in line
        assert "winner Zezima" in line
        assert line.endswith("- GG")

    def test_success_without_session(self):
        """Acks without a session show the message."""
        assert cli.format_update(MatchUpdate(None, "Items saved", "", True, False)) == "[ok] Items saved"


class TestParser:
    """Tests for the command-line parser."""

    def test_get_match_args(self):
        """get-match parses its match code and --json."""
        args = cli.build_parser().parse_args(["--code", "ABC", "get-match", "M-42", "--json"])
        assert args.command == "get-match"
        assert args.match_code == "M-42"
        assert args.json is True
        assert args.func is cli.cmd_get_match

    def test_watch_args(self):
        """watch parses --ticks."""
        args = cli.build_parser().parse_args(["watch", "M-42", "--ticks", "10"])
        assert args.ticks == 10
        assert args.func is cli.cmd_watch

    def test_no_command_prints_help(self, monkeypatch, capsys):
        """No subcommand prints usage and exits with 2."""
        monkeypatch.setattr(cli, "load_dotenv", lambda: None)
        assert cli.main([]) == 2
        assert "usage" in capsys.readouterr().out.lower()

    def test_config_args(self):
        """config defaults to show and accepts set KEY VALUE."""
        assert cli.build_parser().parse_args(["config"]).action == "show"
        args = cli.build_parser().parse_args(["config", "set", "rally_distance", "10"])
        assert (args.action, args.key, args.value) == ("set", "rally_distance", "10")
        assert args.func is cli.cmd_config


class TestConfigCommand:
    """Tests for the config subcommand."""

    @pytest.fixture
    def settings(self, tmp_path, monkeypatch):
        settings = Settings(tmp_path / "settings.json")
        monkeypatch.setattr(cli, "get_settings", lambda: settings)
        return settings

    def run(self, *argv):
        args = cli.build_parser().parse_args(["config", *argv])
        return args.func(args)

    def test_set_coerces_to_default_type(self, settings):
        """Numeric settings are stored as numbers and saved to disk."""
        assert self.run("set", "rally_distance", "10") == 0
        assert self.run("set", "tick_seconds", "0.3") == 0

        stored = json.loads(settings.path.read_text())
        assert stored["rally_distance"] == 10
        assert stored["tick_seconds"] == 0.3

    def test_set_string(self, settings):
        """String settings are stored verbatim."""
        assert self.run("set", "verified_username", "Lynx Titan") == 0
        assert settings.get("verified_username") == "Lynx Titan"

    @pytest.mark.parametrize("argv", [("set", "no_such_key", "1"), ("set", "rally_distance")])
    def test_set_rejects_bad_usage(self, settings, argv):
        """Unknown keys and missing values are rejected."""
        assert self.run(*argv) == 2
        assert not settings.path.exists()

    def test_set_rejects_bad_value(self, settings):
        """Non-numeric values for numeric settings are rejected."""
        assert self.run("set", "poll_interval_ticks", "often") == 2
        assert settings.get("poll_interval_ticks") == 2

    def test_reset(self, settings):
        """reset restores the defaults on disk."""
        self.run("set", "rally_distance", "3")
        assert self.run("reset") == 0
        assert json.loads(settings.path.read_text())["rally_distance"] == 15

    def test_show_masks_verification_code(self, settings, capsys):
        """show lists every setting without printing the verification code."""
        settings.set("verification_code", "ABC123")
        assert self.run() == 0
        out = capsys.readouterr().out
        assert "rally_distance: 15" in out
        assert "ABC123" not in out
