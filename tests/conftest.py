# tests/conftest.py
import asyncio
from typing import Callable

import pytest

from libs.config import Settings

SAMPLE_MT103 = """{1:F01DEUTDEFF0123456789012345}
{2:I103CHASUS33XXXXN}
{4:
:20:REFERENCE12345
:23B:CRED
:32A:241215EUR123456,78
:50K:/12345678901234567890
JOHN DOE
123 MAIN STREET
NEW YORK NY 10001
:59:/98765432109876543210
JANE SMITH
456 OAK AVENUE
LONDON EC1A 1BB
:70:PAYMENT FOR INVOICE 12345
:71A:SHA
-}"""

# the minimal message: mandatory fields only
REF1_FIELDS = (
    ":20:REF1",
    ":23B:CRED",
    ":32A:241215EUR1000,00",
    ":50K:NAME",
    ":59:BEN",
)


def build_raw(*fields: str, block2: str = "{2:I103CHASUS33XXXXN}") -> str:
    """Wraps block-4 field lines into a complete wire message."""
    return "\n".join(["{1:F01DEUTDEFFAXXX0000000000}", block2, "{4:", *fields, "-}"])


async def wait_until(predicate: Callable[[], bool], timeout: float = 3.0) -> None:
    """Polls *predicate* until it holds; fails the test on timeout."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            pytest.fail("condition not reached in time")
        await asyncio.sleep(0.01)


@pytest.fixture
def settings() -> Settings:
    """In-memory backends and zero back-off: tests never sleep on retries."""
    return Settings(
        _env_file=None,
        queue_backend="memory",
        storage_backend="memory",
        control_transport="memory",
        max_retry_attempts=3,
        retry_backoff_min=0,
        retry_backoff_max=0,
        retry_parse_failures=True,
        max_concurrent_messages=4,
        polling_interval_seconds=0.01,
        unhealthy_backoff_seconds=0.01,
        status_interval_seconds=0.05,
        queue_wait_seconds=0.1,
    )


@pytest.fixture
def ref1_raw() -> str:
    return build_raw(*REF1_FIELDS)
