import logging

import pytest
import structlog

from modules.core.logging import SHARED_PROCESSORS, build_logging_config, mask_sensitive_data

pytestmark = pytest.mark.unit


class TestLoggingConfig:
    def test_json_formatter_runs_shared_chain(self):
        formatter = build_logging_config()["formatters"]["json"]

        assert formatter["()"] is structlog.stdlib.ProcessorFormatter
        assert formatter["foreign_pre_chain"] is SHARED_PROCESSORS
        assert mask_sensitive_data in SHARED_PROCESSORS

    def test_level_applies_to_root_and_celery(self):
        loggers = build_logging_config("WARNING")

        assert loggers["root"]["level"] == "WARNING"
        assert loggers["loggers"]["celery"]["level"] == "WARNING"
        assert loggers["loggers"]["django.server"]["level"] == "WARNING"

    def test_settings_use_built_config(self, settings):
        assert settings.LOGGING["formatters"]["json"]["foreign_pre_chain"] is SHARED_PROCESSORS


class TestMaskedOutput:
    def test_webhook_signature_never_reaches_records(self, caplog):
        logger = structlog.get_logger("tests.logging")

        with caplog.at_level(logging.INFO):
            logger.info("webhook.received", signature="deadbeef", payment_id="pay_1")

        messages = " ".join(str(record.msg) for record in caplog.records)
        assert "deadbeef" not in messages
        assert "pay_1" in messages
