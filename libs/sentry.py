# libs/sentry.py
"""Thin wrapper around *sentry-sdk* used by every service.

*   **Lazy init** – Sentry initialises **once** via :func:`init_sentry`.
    Without a DSN the helpers are no-ops, which keeps local runs and tests
    free of network traffic.
*   **Capture helpers** – :func:`sentry_capture` records an exception,
    :func:`sentry_capture_message` a plain event, both with optional *extras*.

Usage
-----
```python
from libs.sentry import init_sentry, sentry_capture

init_sentry(release="processor@1.0.0")
...
try:
    await queue.send(name, payload)
except Exception as e:
    sentry_capture(e, extras={"queue": name})
```
"""
from __future__ import annotations

import os
from functools import lru_cache
from typing import Any, Optional

import sentry_sdk

from libs.config import get_settings


@lru_cache(maxsize=1)
def init_sentry(*, release: str | None = None, env: str | None = None) -> None:
    """Initialise Sentry SDK once per process.

    If neither the *SENTRY_DSN* environment variable nor *settings.sentry_dsn*
    is set, the function is a no-op (and the capture helpers do nothing).
    """
    settings = get_settings()
    dsn = os.getenv("SENTRY_DSN") or settings.sentry_dsn
    if not dsn:
        return

    sentry_sdk.init(
        dsn=dsn,
        release=release,
        environment=env or settings.env,
        traces_sample_rate=float(os.getenv("SENTRY_TRACES_SAMPLE_RATE", "0.1")),
        max_value_length=8_192,  # raw MT103 payloads are attached as extras
    )


def _is_active() -> bool:
    return sentry_sdk.get_client().is_active()


def sentry_capture(exc: BaseException, *, extras: Optional[dict[str, Any]] = None) -> None:  # noqa: D401
    """Capture *exc* to Sentry if SDK is initialised.

    Parameters
    ----------
    exc
        The exception object to record.
    extras
        Extra key/value pairs to attach to the event (e.g. the raw payload).
    """
    if not _is_active():
        return

    with sentry_sdk.new_scope() as scope:
        for key, value in (extras or {}).items():
            scope.set_extra(key, value)
        sentry_sdk.capture_exception(exc)


def sentry_capture_message(
    message: str, *, level: str = "error", extras: Optional[dict[str, Any]] = None
) -> None:
    """Same as :func:`sentry_capture` for events without an exception object."""
    if not _is_active():
        return

    with sentry_sdk.new_scope() as scope:
        for key, value in (extras or {}).items():
            scope.set_extra(key, value)
        sentry_sdk.capture_message(message, level=level)
