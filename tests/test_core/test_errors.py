"""Tests für die Fehlerhierarchie in mypa.core.errors."""

from __future__ import annotations

import pytest

from mypa.core.errors import (
    ActionHandlerError,
    ConfigError,
    CronEvaluationExhausted,
    CronParseError,
    JobStoreError,
    MyPAError,
    SchedulerError,
)


class TestErrorHierarchy:
    @pytest.mark.parametrize(
        ("cls", "code"),
        [
            (MyPAError, "MYPA_ERROR"),
            (ConfigError, "CONFIG_ERROR"),
            (SchedulerError, "SCHEDULER_ERROR"),
            (CronParseError, "CRON_PARSE_ERROR"),
            (CronEvaluationExhausted, "CRON_EVALUATION_EXHAUSTED"),
            (ActionHandlerError, "ACTION_HANDLER_ERROR"),
            (JobStoreError, "JOB_STORE_ERROR"),
        ],
    )
    def test_default_codes(self, cls: type[MyPAError], code: str) -> None:
        err = cls("kaputt")
        assert err.error_code == code
        assert err.details == {}
        assert str(err) == "kaputt"
        assert isinstance(err, MyPAError)

    def test_scheduler_family(self) -> None:
        for cls in (CronParseError, CronEvaluationExhausted, ActionHandlerError):
            assert issubclass(cls, SchedulerError)
        assert not issubclass(JobStoreError, SchedulerError)

    def test_custom_code_and_details(self) -> None:
        err = JobStoreError("update failed", error_code="STORE_UPDATE_FAILED", details={"job_id": "j1"})
        assert err.error_code == "STORE_UPDATE_FAILED"
        assert err.details == {"job_id": "j1"}

    def test_log_context(self) -> None:
        err = CronParseError("zu kurz", details={"expression": "0 7"})
        assert err.to_log_context() == {"error_code": "CRON_PARSE_ERROR", "expression": "0 7"}
