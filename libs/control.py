# libs/control.py
"""Control/status channel between the processor host and its admin surface.

The processor never exposes a mutable "is running" flag: the admin side sends
:class:`ControlCommand` values through a :class:`ControlChannel`, the host's
control loop consumes them and publishes a :class:`ProcessorStatus` back.

Transports
----------
* :class:`InMemoryControlChannel` – same process (tests, embedded use).
* :class:`FileControlChannel` – ``command.json`` / ``status.json`` inside
  ``CONTROL_DIR``; lets ``services/processor/admin.py`` drive a running
  processor from another process.
"""
from __future__ import annotations

import asyncio
import datetime as _dt
import json
import logging
import os
import uuid
from abc import ABC, abstractmethod
from enum import Enum
from pathlib import Path
from typing import Optional

from pydantic import ValidationError as PydanticValidationError

from libs.config import Settings, get_settings
from libs.models import ProcessorStatus

logger = logging.getLogger(__name__)

__all__ = [
    "ControlCommand",
    "ControlChannel",
    "InMemoryControlChannel",
    "FileControlChannel",
    "create_control_channel",
    "STATUS_STALE_AFTER",
]

# a status older than this is reported as "not_responding"
STATUS_STALE_AFTER = _dt.timedelta(seconds=30)


class ControlCommand(str, Enum):
    START = "start"
    STOP = "stop"
    RESTART = "restart"
    GET_STATUS = "get_status"


def _not_running(state: str = "not_running") -> ProcessorStatus:
    return ProcessorStatus(state=state, is_polling=False)


class ControlChannel(ABC):
    @abstractmethod
    async def send(self, command: ControlCommand) -> None: ...

    @abstractmethod
    async def receive(self, timeout: float) -> Optional[ControlCommand]:
        """Next command, or ``None`` if none arrived within *timeout* seconds."""

    @abstractmethod
    async def publish_status(self, status: ProcessorStatus) -> None: ...

    @abstractmethod
    async def read_status(self) -> ProcessorStatus:
        """Last published status; a placeholder when nothing was published."""


class InMemoryControlChannel(ControlChannel):
    def __init__(self) -> None:
        self._commands: asyncio.Queue[ControlCommand] = asyncio.Queue()
        self._status: Optional[ProcessorStatus] = None

    async def send(self, command: ControlCommand) -> None:
        await self._commands.put(command)

    async def receive(self, timeout: float) -> Optional[ControlCommand]:
        try:
            return await asyncio.wait_for(self._commands.get(), timeout=timeout)
        except asyncio.TimeoutError:
            return None

    async def publish_status(self, status: ProcessorStatus) -> None:
        self._status = status

    async def read_status(self) -> ProcessorStatus:
        return self._status or _not_running()


class FileControlChannel(ControlChannel):
    """Commands and status as JSON files in a shared directory.

    Files are written to a temporary name and moved into place with
    :func:`os.replace`, so a reader never sees a half-written document.
    Only the latest unconsumed command is kept.
    """

    COMMAND_FILE = "command.json"
    STATUS_FILE = "status.json"

    def __init__(self, directory: Path, *, poll_interval: float = 0.1) -> None:
        self._dir = Path(directory)
        self._dir.mkdir(parents=True, exist_ok=True)
        self._poll_interval = poll_interval

    @property
    def command_path(self) -> Path:
        return self._dir / self.COMMAND_FILE

    @property
    def status_path(self) -> Path:
        return self._dir / self.STATUS_FILE

    @staticmethod
    def _write_atomic(path: Path, text: str) -> None:
        tmp = path.parent / f"{path.name}.{uuid.uuid4().hex}.tmp"
        tmp.write_text(text, encoding="utf-8")
        os.replace(tmp, path)

    async def send(self, command: ControlCommand) -> None:
        document = {
            "command": command.value,
            "timestamp": _dt.datetime.now(_dt.timezone.utc).isoformat(),
            "command_id": str(uuid.uuid4()),
        }
        await asyncio.to_thread(self._write_atomic, self.command_path, json.dumps(document, indent=2))
        logger.info("Sent command %s via %s", command.value, self.command_path)

    def _take_command(self) -> Optional[ControlCommand]:
        try:
            text = self.command_path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        self.command_path.unlink(missing_ok=True)
        try:
            return ControlCommand(json.loads(text)["command"])
        except (ValueError, KeyError, TypeError) as exc:
            logger.error("❌ Ignoring unreadable command file: %s", exc)
            return None

    async def receive(self, timeout: float) -> Optional[ControlCommand]:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while True:
            command = await asyncio.to_thread(self._take_command)
            if command is not None:
                logger.info("Received command: %s", command.value)
                return command
            remaining = deadline - loop.time()
            if remaining <= 0:
                return None
            await asyncio.sleep(min(self._poll_interval, remaining))

    async def publish_status(self, status: ProcessorStatus) -> None:
        stamped = status.model_copy(
            update={"status_updated_at": _dt.datetime.now(_dt.timezone.utc)}
        )
        await asyncio.to_thread(self._write_atomic, self.status_path, stamped.model_dump_json(indent=2))

    async def read_status(self) -> ProcessorStatus:
        try:
            text = await asyncio.to_thread(self.status_path.read_text, encoding="utf-8")
        except FileNotFoundError:
            logger.warning("Status file not found, processor may not be running")
            return _not_running()
        try:
            status = ProcessorStatus.model_validate_json(text)
        except PydanticValidationError as exc:
            logger.error("Failed to read status file: %s", exc)
            return _not_running("error")

        age = _dt.datetime.now(_dt.timezone.utc) - status.status_updated_at
        if age > STATUS_STALE_AFTER:
            logger.warning("Status file is stale (%ss), processor may not be responding", int(age.total_seconds()))
            return status.model_copy(update={"state": "not_responding", "is_polling": False})
        return status


def create_control_channel(settings: Settings | None = None) -> ControlChannel:
    """Transport chosen by ``CONTROL_TRANSPORT``."""
    settings = settings or get_settings()
    if settings.control_transport == "file":
        return FileControlChannel(settings.control_dir)
    return InMemoryControlChannel()
