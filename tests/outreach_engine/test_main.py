"""Unit tests for the outreach-engine CLI."""

import json
import os
import sys
from datetime import timedelta
from unittest.mock import patch

import pytest

# Ensure src is on sys.path so imports work correctly
ROOT_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), "../.."))
SRC_DIR = os.path.join(ROOT_DIR, "src")
if SRC_DIR not in sys.path:
    sys.path.insert(0, SRC_DIR)

from outreach_engine.clock import utcnow
from outreach_engine.health_monitor import write_health_status
from outreach_engine.main import (
    EXIT_CONFIG_ERROR,
    EXIT_FAILURE,
    EXIT_OK,
    create_parser,
    main,
)
from outreach_engine.stats import EngineStats


STRATEGY = {
    "current_phase": 1,
    "phases": [
        {
            "phase": 1,
            "name": "Local Validation",
            "customer_range": {"min": 0, "max": 10},
            "settings": {
                "cities": [{"city": "Austin", "state": "TX"}],
                "industries": ["dentist"],
            },
        },
        {
            "phase": 2,
            "name": "Regional",
            "customer_range": {"min": 11},
            "economics": {"monthly_cost": 500},
        },
    ],
}

CREDENTIALS = {
    "GOOGLE_MAPS_API_KEY": "maps-key",
    "SENDGRID_API_KEY": "SG.key",
    "SENDGRID_FROM_EMAIL": "hello@example.com",
    "OPENAI_API_KEY": "sk-test",
    "DEMO_RENDER_URL": "https://render.example/api",
}


@pytest.fixture
def env(tmp_path):
    """Isolated environment pointing at files under tmp_path."""
    strategy_path = tmp_path / "growth-strategy.json"
    strategy_path.write_text(json.dumps(STRATEGY), encoding="utf-8")
    values = {
        "GROWTH_STRATEGY_PATH": str(strategy_path),
        "HEALTH_STATUS_PATH": str(tmp_path / "health-status.json"),
        "DATABASE_URL": f"sqlite+aiosqlite:///{tmp_path / 'leads.db'}",
    }
    with patch.dict(os.environ, values, clear=True):
        yield values


class TestParser:
    """Tests for argument parsing."""

    @pytest.mark.unit
    def test_command_is_required(self):
        with pytest.raises(SystemExit):
            create_parser().parse_args([])

    @pytest.mark.unit
    def test_duration_and_continuous_are_exclusive(self):
        with pytest.raises(SystemExit):
            create_parser().parse_args(["run", "--duration-days", "7", "--continuous"])

    @pytest.mark.unit
    def test_run_options(self):
        args = create_parser().parse_args(
            ["--json-logs", "run", "--duration-days", "7", "--discover-now"]
        )

        assert args.command == "run"
        assert args.duration_days == 7
        assert args.discover_now is True
        assert args.json_logs is True


class TestCommands:
    """Tests for the read-only commands."""

    @pytest.mark.unit
    def test_phase_for_customer_count(self, env, capsys):
        code = main(["phase", "--customers", "12"])

        output = json.loads(capsys.readouterr().out)
        assert code == EXIT_OK
        assert output["phase"] == 2
        assert output["name"] == "Regional"
        assert output["stored_phase"] == 1
        assert output["default_strategy"] is False

    @pytest.mark.unit
    def test_phase_with_missing_strategy_uses_default(self, env, capsys, tmp_path):
        os.environ["GROWTH_STRATEGY_PATH"] = str(tmp_path / "absent.json")

        code = main(["phase", "--customers", "3"])

        output = json.loads(capsys.readouterr().out)
        assert code == EXIT_OK
        assert output["phase"] == 1
        assert output["default_strategy"] is True

    @pytest.mark.unit
    @pytest.mark.parametrize(
        "at,in_window",
        [
            ("2026-10-21T10:00:00-05:00", True),
            ("2026-10-21T15:00:00-05:00", False),
            ("2026-10-24T10:00:00-05:00", False),
        ],
    )
    def test_window_decision(self, env, capsys, at, in_window):
        code = main(["window", "--at", at])

        output = json.loads(capsys.readouterr().out)
        assert code == EXIT_OK
        assert output["in_window"] is in_window
        assert output["industry"] == "dentist"

    @pytest.mark.unit
    def test_window_rejects_bad_timestamp(self, env, capsys):
        assert main(["window", "--at", "next tuesday"]) == EXIT_FAILURE
        assert "Error:" in capsys.readouterr().err

    @pytest.mark.unit
    def test_health_without_heartbeat(self, env, capsys):
        code = main(["health"])

        output = json.loads(capsys.readouterr().out)
        assert code == EXIT_FAILURE
        assert output["is_healthy"] is False

    @pytest.mark.unit
    def test_health_with_fresh_heartbeat(self, env, capsys):
        now = utcnow()
        write_health_status(
            env["HEALTH_STATUS_PATH"], EngineStats(started_at=now - timedelta(hours=1)), now=now
        )

        assert main(["health"]) == EXIT_OK

    @pytest.mark.unit
    def test_check_env_reports_missing(self, env, capsys):
        code = main(["check-env"])

        out = capsys.readouterr().out
        assert code == EXIT_FAILURE
        assert "GOOGLE_MAPS_API_KEY" in out

    @pytest.mark.unit
    def test_check_env_with_credentials(self, env, capsys):
        os.environ.update(CREDENTIALS)

        assert main(["check-env"]) == EXIT_OK


class TestConfigErrors:
    """Configuration problems exit with code 2."""

    @pytest.mark.unit
    def test_invalid_operation_mode(self, env, capsys):
        os.environ["OPERATION_MODE"] = "forever"

        assert main(["phase", "--customers", "1"]) == EXIT_CONFIG_ERROR
        assert "OPERATION_MODE" in capsys.readouterr().err

    @pytest.mark.unit
    def test_run_without_credentials(self, env, capsys):
        assert main(["run"]) == EXIT_CONFIG_ERROR
        assert "Configuration error" in capsys.readouterr().err
