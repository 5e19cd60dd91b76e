"""
Partner Hub
Tests: app factory, configuration and structured logging.
"""

import json
import logging

from partnerhub import create_app
from partnerhub.config import EscalationSettings, ReportTokenSettings
from partnerhub.middleware.logging_config import JSONFormatter, ReadableFormatter
from partnerhub.services.notification import PlatformTransport
from partnerhub.services.scheduler_service import SchedulerService


class TestAppFactory:

    def test_testing_config(self, app):
        assert app.config["TESTING"] is True
        assert app.config["RATELIMIT_ENABLED"] is False
        assert isinstance(app.extensions["notification_transport"], PlatformTransport)
        assert {"escalation", "progress_report", "progress_report_public"} <= set(app.blueprints)

    def test_overrides(self, app):
        try:
            other = create_app("testing", overrides={"REPORT_TOKEN_VALIDITY_HOURS": 2,
                                                     "FRONTEND_URL": "https://x.example/"})
        finally:
            # the job runner is process-wide; point it back at the session app
            SchedulerService.init_app(app)
        settings = ReportTokenSettings.from_app(other)
        assert settings.validity_hours == 2
        assert settings.frontend_url == "https://x.example"

    def test_escalation_settings_defaults(self, app):
        settings = EscalationSettings.from_app(app)
        assert settings.progress_below_rearm is True
        assert settings.tick_lease_seconds == 600
        assert settings.dispatch_timeout_seconds == 30.0

    def test_cli_commands_registered(self, app):
        assert {"seed-escalation-rules", "run-escalation-tick", "cleanup-report-tokens",
                "register-jobs"} <= set(app.cli.commands)

    def test_seed_command(self, app):
        runner = app.test_cli_runner()
        result = runner.invoke(args=["seed-escalation-rules"])
        assert result.exit_code == 0
        assert "Seeded 7" in result.output


class TestLogging:

    def _record(self, **extra):
        record = logging.LogRecord("partnerhub.test", logging.INFO, __file__, 1, "tick done", None, None)
        for key, value in extra.items():
            setattr(record, key, value)
        return record

    def test_json_formatter_lifts_extra_fields(self):
        entry = json.loads(JSONFormatter().format(self._record(tick_id="abc", rule_id=4, unrelated="x")))
        assert entry["message"] == "tick done"
        assert entry["tick_id"] == "abc"
        assert entry["rule_id"] == 4
        assert "unrelated" not in entry

    def test_readable_formatter_shows_tick(self):
        assert "(tick abc)" in ReadableFormatter().format(self._record(tick_id="abc"))
