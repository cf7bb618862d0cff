"""
test_config_health.py — Settings validation, health report and CLI wiring.

Covers:
    • Interval clamping and the feed User-Agent
    • ntfy topic validation
    • Health aggregation (database, channels, scheduler)
    • CLI commands against a temp database
    • Scheduler health logged by run-scheduler after maintenance

Run with:
    pytest tests/test_config_health.py -v
"""

from __future__ import annotations

import json
import logging

import pytest
from pydantic import ValidationError

from alert_relay.core.config import Settings, get_settings, is_valid_topic_name
from alert_relay.core.database import create_db_engine, init_db
from alert_relay.core.health import HealthStatus, check_scheduler, run_health_check
from alert_relay.core.logging_config import JSONFormatter, clear_cycle_context, set_cycle_context
from alert_relay.main import build_parser, build_pipeline, cmd_run_scheduler, log_health, main
from alert_relay.scheduler.loop import SchedulerLoop


# ═══════════════════════════════════════════════════════════════════════════
# Settings
# ═══════════════════════════════════════════════════════════════════════════

class TestSettings:

    def test_intervals_clamped(self):
        settings = Settings(_env_file=None, POLL_MINUTES=0, VACUUM_HOURS=0)
        assert settings.poll_interval_seconds == 60
        assert settings.maintenance_interval_seconds == 3600

    def test_user_agent_carries_contact(self):
        settings = Settings(_env_file=None, CONTACT_EMAIL="ops@example.org")
        assert settings.user_agent == "alert-relay/0.1.0 (ops@example.org)"

    def test_invalid_topic_rejected_when_enabled(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, NTFY_ENABLED=True, NTFY_TOPIC="bad topic")

    def test_invalid_topic_ignored_when_disabled(self):
        Settings(_env_file=None, NTFY_ENABLED=False, NTFY_TOPIC="bad topic")

    @pytest.mark.parametrize("topic,valid", [
        ("weather-alerts", True),
        ("wx_IN_01", True),
        ("", False),
        (None, False),
        ("with space", False),
        ("slash/topic", False),
    ])
    def test_topic_pattern(self, topic, valid):
        assert is_valid_topic_name(topic) is valid


class TestJSONFormatter:

    def test_includes_extra_and_cycle_context(self):
        record = logging.LogRecord("alert_relay.test", logging.INFO, __file__, 1, "sent %s", ("x",), None)
        record.alert_id = "A1"
        set_cycle_context(cycle_id="abc123")
        try:
            payload = json.loads(JSONFormatter().format(record))
        finally:
            clear_cycle_context()
        assert payload["message"] == "sent x"
        assert payload["alert_id"] == "A1"
        assert payload["context"] == {"cycle_id": "abc123"}


# ═══════════════════════════════════════════════════════════════════════════
# Health
# ═══════════════════════════════════════════════════════════════════════════

class TestHealth:

    def test_healthy_with_schema(self, engine, settings, store):
        report = run_health_check(engine, settings)
        assert report.status == HealthStatus.HEALTHY
        database = report.components[0]
        assert database.details["rows"]["sent_alerts"] == 0
        assert report.to_dict()["components"][1]["name"] == "channels"

    def test_degraded_without_schema(self, settings):
        engine = create_db_engine(settings)
        try:
            report = run_health_check(engine, settings)
        finally:
            engine.dispose()
        assert report.status == HealthStatus.DEGRADED
        assert "init-db" in report.components[0].message

    def test_degraded_without_channels(self, engine, settings):
        settings = settings.model_copy(update={"PUSHOVER_ENABLED": False, "NTFY_ENABLED": False})
        report = run_health_check(engine, settings)
        assert report.status == HealthStatus.DEGRADED

    def test_scheduler_all_failed(self):
        comp = check_scheduler({"cycles_run": 3, "cycles_failed": 3, "last_error": "boom"})
        assert comp.status == HealthStatus.DEGRADED
        assert check_scheduler({"cycles_run": 3, "cycles_failed": 1}).status == HealthStatus.HEALTHY


# ═══════════════════════════════════════════════════════════════════════════
# CLI
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def cli_env(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'cli.sqlite'}")
    monkeypatch.setenv("PUSHOVER_ENABLED", "true")
    monkeypatch.setenv("NTFY_ENABLED", "false")
    get_settings.cache_clear()
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)
    get_settings.cache_clear()


class TestCLI:

    def test_parser_commands(self):
        args = build_parser().parse_args(["cleanup-sent", "--days", "7"])
        assert args.command == "cleanup-sent"
        assert args.days == 7
        with pytest.raises(SystemExit):
            build_parser().parse_args([])

    def test_init_db_then_health(self, cli_env, capsys):
        assert main(["init-db"]) == 0
        assert main(["health"]) == 0
        out = capsys.readouterr().out
        assert '"status": "healthy"' in out

    def test_cleanup_sent(self, cli_env, capsys):
        main(["init-db"])
        assert main(["cleanup-sent", "--days", "1"]) == 0
        assert "Removed 0 ledger rows" in capsys.readouterr().out


class _OneTickLoop(SchedulerLoop):
    """Maintenance due on the first tick; run() returns after it."""

    def __init__(self, run_cycle, **kwargs):
        kwargs["maintenance_interval"] = 0
        super().__init__(run_cycle, **kwargs)

    def run(self, max_iterations=None):
        super().run(max_iterations=1)


class TestSchedulerHealthLog:

    def test_log_health_includes_scheduler_counters(self, settings, caplog):
        pipeline = build_pipeline(settings)
        init_db(pipeline.engine)
        try:
            with caplog.at_level(logging.INFO, logger="alert_relay.main"):
                report = log_health(pipeline, {"cycles_run": 2, "cycles_failed": 2, "last_error": "boom"})
        finally:
            pipeline.close()

        assert report.status == HealthStatus.DEGRADED
        assert [c.name for c in report.components] == ["database", "channels", "scheduler"]
        record = caplog.records[-1]
        assert record.levelno == logging.WARNING
        assert record.health["components"][2]["details"]["last_error"] == "boom"

    def test_run_scheduler_logs_health_after_maintenance(self, settings, monkeypatch, caplog):
        pipeline = build_pipeline(settings)

        def failing_cycle():
            raise RuntimeError("feed down")

        monkeypatch.setattr(pipeline.cycle, "run", failing_cycle)
        monkeypatch.setattr("alert_relay.main.SchedulerLoop", _OneTickLoop)
        try:
            with caplog.at_level(logging.INFO, logger="alert_relay.main"):
                assert cmd_run_scheduler(pipeline, build_parser().parse_args(["run-scheduler"])) == 0
        finally:
            pipeline.close()

        health = [r for r in caplog.records if r.getMessage().startswith("Health:")]
        assert len(health) == 1
        scheduler = health[0].health["components"][2]
        assert scheduler["name"] == "scheduler"
        assert scheduler["status"] == "degraded"
        assert scheduler["details"]["cycles_run"] == 1
        assert scheduler["details"]["last_error"] == "RuntimeError: feed down"
