"""Tests for structured logging and background job scheduling."""

import json
import logging

import pytest

from src.shared.infrastructure.logging import (
    REDACTED,
    CustomJsonFormatter,
    get_context_logger,
    log_latency,
)
from src.shared.infrastructure.scheduling import JobScheduler


def format_record(formatter, **extra) -> dict:
    record = logging.LogRecord("test", logging.INFO, __file__, 1, "hello", None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return json.loads(formatter.format(record))


class TestCustomJsonFormatter:
    def test_adds_timestamp_environment_and_correlation(self):
        formatter = CustomJsonFormatter("%(message)s", environment="staging")

        data = format_record(formatter, correlation_id="abc-123")

        assert data["message"] == "hello"
        assert data["environment"] == "staging"
        assert data["correlation_id"] == "abc-123"
        assert "timestamp" in data

    def test_redacts_secrets_and_signatures(self):
        formatter = CustomJsonFormatter("%(message)s")

        data = format_record(
            formatter,
            secret="s3cret",
            webhook_signature="deadbeef",
            api_key="k",
            webhook_id="W-1",
        )

        assert data["secret"] == REDACTED
        assert data["webhook_signature"] == REDACTED
        assert data["api_key"] == REDACTED
        assert data["webhook_id"] == "W-1"


class TestContextLogger:
    def test_correlation_id_merged_with_extras(self, caplog):
        log = get_context_logger("tests.context", correlation_id="run-1")

        with caplog.at_level(logging.INFO, logger="tests.context"):
            log.info("tick", extra={"rule_id": "R-1"})

        record = caplog.records[-1]
        assert record.correlation_id == "run-1"
        assert record.rule_id == "R-1"

    def test_plain_logger_without_correlation(self):
        assert isinstance(get_context_logger("tests.context"), logging.Logger)

    def test_log_latency(self, caplog):
        log = logging.getLogger("tests.latency")

        with caplog.at_level(logging.INFO, logger="tests.latency"):
            with log_latency(log, "escalation_tick", rules=2):
                pass

        record = caplog.records[-1]
        assert record.operation == "escalation_tick"
        assert record.rules == 2
        assert record.latency_ms >= 0


class TestJobScheduler:
    @pytest.mark.asyncio
    async def test_jobs_registered_without_overlap(self):
        async def job():
            return None

        scheduler = JobScheduler()
        scheduler.add_interval_job(job, seconds=300, job_id="escalation_tick", name="tick")
        scheduler.start()
        try:
            assert scheduler.is_running
            assert scheduler.job_ids == ["escalation_tick"]
            apscheduler_job = scheduler._scheduler.get_job("escalation_tick")
            assert apscheduler_job.max_instances == 1
            assert apscheduler_job.coalesce is True
        finally:
            scheduler.stop()

        assert not scheduler.is_running
