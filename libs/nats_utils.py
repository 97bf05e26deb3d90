# libs/nats_utils.py
"""NATS-helpers used by all services (async, JetStream-only).

Kept minimal: a connection singleton, stream bootstrap and the mapping of a
logical queue name onto a JetStream subject.
"""
from __future__ import annotations

import logging

import nats
from async_lru import alru_cache
from nats.aio.client import Client as NATS
from nats.js.api import PubAck, RetentionPolicy, StorageType, StreamConfig

from libs.config import get_settings

# ---------------------------------------------------------------------------
# Constants / settings
# ---------------------------------------------------------------------------
# every logical queue is a subject "swift.<queue-name>" inside one stream
STREAM_NAME = "SWIFT"
SUBJECT_PREFIX = "swift"
STREAM_SUBJECTS = [f"{SUBJECT_PREFIX}.>"]
STREAM_MAX_AGE = 60 * 60 * 24 * 7  # 7 days, in seconds


logger = logging.getLogger(__name__)


def subject_for(queue_name: str) -> str:
    """``"input-messages" -> "swift.input-messages"``."""
    return f"{SUBJECT_PREFIX}.{queue_name}"


def durable_for(queue_name: str) -> str:
    """Durable consumer name; JetStream forbids dots in it."""
    return f"{queue_name.replace('.', '_')}-consumer"


# ---------------------------------------------------------------------------
# NATS connection singleton
# ---------------------------------------------------------------------------
@alru_cache(maxsize=1)
async def get_nats_connection() -> NATS:  # pragma: no cover – network
    """Singleton NATS connection for the whole process."""
    settings = get_settings()
    logger.info("Connecting to NATS %s", settings.nats_dsn)
    nc = await nats.connect(settings.nats_dsn)
    return nc


async def ensure_stream(nc: NATS) -> None:
    """
    Checks that the stream exists and creates/updates it when it is missing or
    its subjects are outdated. Idempotent: safe to call any number of times.

    Parameters
    ----------
    nc: NATS
        Active NATS connection.
    """
    jsm = nc.jetstream()
    config = StreamConfig(
        name=STREAM_NAME,
        subjects=STREAM_SUBJECTS,
        storage=StorageType.FILE,
        retention=RetentionPolicy.WORK_QUEUE,
        max_age=STREAM_MAX_AGE,
    )
    logger.debug("Checking stream '%s' for subjects %s...", STREAM_NAME, STREAM_SUBJECTS)

    try:
        stream_info = await jsm.stream_info(STREAM_NAME)
    except nats.js.errors.NotFoundError:
        await jsm.add_stream(config)
        logger.info("✅ Stream '%s' created.", STREAM_NAME)
        return

    if sorted(stream_info.config.subjects or []) != sorted(STREAM_SUBJECTS):
        logger.warning("Stream '%s' configuration is outdated. Updating...", STREAM_NAME)
        await jsm.update_stream(config)
        logger.info("✅ Stream '%s' updated.", STREAM_NAME)
    else:
        logger.debug("☑️ Stream '%s' already exists and is configured correctly.", STREAM_NAME)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
async def publish_raw(
    nc: NATS | None,
    payload: str,
    *,
    queue_name: str,
) -> PubAck:
    """Publish a raw SWIFT payload onto the subject of *queue_name*.

    The stream must already exist, see :func:`ensure_stream`.

    Parameters
    ----------
    nc: NATS | None
        Active connection; if `None`, the `get_nats_connection()` singleton is used.
    payload: str
        Wire text, sent as UTF-8 bytes without any envelope.
    queue_name: str
        Logical queue name (e.g. `input-messages`).

    Returns
    -------
    PubAck
        JetStream acknowledgement with `stream` and `seq`.
    """
    if nc is None:  # pragma: no cover – convenience
        nc = await get_nats_connection()

    js = nc.jetstream()
    return await js.publish(subject_for(queue_name), payload.encode("utf-8"))


__all__ = [
    "STREAM_NAME",
    "subject_for",
    "durable_for",
    "get_nats_connection",
    "ensure_stream",
    "publish_raw",
]
