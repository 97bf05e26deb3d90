# tests/test_config.py
import pytest
from pydantic import ValidationError

from libs.config import Settings
from libs.errors import ParsingError, RoutingError, UnclassifiedError
from libs.models import ErrorKind, ProcessingStage


def test_defaults():
    s = Settings(_env_file=None)

    assert (s.input_queue, s.completed_queue, s.dead_letter_queue) == (
        "input-messages",
        "completed-messages",
        "failed-messages",
    )
    assert s.max_retry_attempts == 3
    assert s.max_concurrent_messages == 10
    assert s.polling_interval_seconds == 1.0


def test_env_overrides(monkeypatch):
    monkeypatch.setenv("QUEUE_BACKEND", "nats")
    monkeypatch.setenv("MAX_RETRY_ATTEMPTS", "5")
    monkeypatch.setenv("RETRY_PARSE_FAILURES", "false")

    s = Settings(_env_file=None)

    assert s.queue_backend == "nats"
    assert s.max_retry_attempts == 5
    assert s.retry_parse_failures is False


def test_backoff_bounds_checked():
    with pytest.raises(ValidationError):
        Settings(_env_file=None, retry_backoff_min=10, retry_backoff_max=1)


def test_database_url():
    s = Settings(_env_file=None, postgres_user="u", postgres_password="p", postgres_host="db", postgres_db="x")

    assert s.database_url_async == "postgresql+asyncpg://u:p@db:5432/x"


def test_error_descriptions_name_stage_and_field():
    assert ParsingError("Missing mandatory field 20", field="20").describe() == (
        "parsing failed [field 20]: Missing mandatory field 20"
    )
    routing = RoutingError("down", queue_name="completed-messages")
    assert routing.kind is ErrorKind.ROUTING
    assert routing.describe() == "routing failed: down"
    system = UnclassifiedError("KeyError: 'x'", stage=ProcessingStage.PERSISTING)
    assert system.kind is ErrorKind.SYSTEM
    assert system.describe().startswith("persisting failed")
