# services/processor/admin.py
"""Admin CLI for a running processor (file control channel).

    python -m services.processor.admin status
    python -m services.processor.admin stop
    python -m services.processor.admin restart --control-dir /var/run/swift
"""
from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from libs.config import get_settings
from libs.control import ControlCommand, FileControlChannel

logger = logging.getLogger("processor_admin")

_COMMANDS = {
    "start": ControlCommand.START,
    "stop": ControlCommand.STOP,
    "restart": ControlCommand.RESTART,
    "status": ControlCommand.GET_STATUS,
}


def _parse_args(argv: list[str]) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Control a running MT103 processor")
    p.add_argument("command", choices=sorted(_COMMANDS))
    p.add_argument("--control-dir", type=Path, default=None,
                   help="Shared control directory (default: CONTROL_DIR)")
    p.add_argument("--wait", type=float, default=1.0,
                   help="Seconds to wait for the processor to publish a fresh status")
    return p.parse_args(argv)


async def run_admin(command: str, channel: FileControlChannel, *, wait: float = 1.0) -> str:
    """Sends *command* and returns the latest status as JSON text."""
    await channel.send(_COMMANDS[command])
    if wait > 0:
        await asyncio.sleep(wait)
    status = await channel.read_status()
    return status.model_dump_json(indent=2)


def main(argv: list[str] | None = None) -> None:  # pragma: no cover – CLI
    args = _parse_args(sys.argv[1:] if argv is None else argv)
    logging.basicConfig(level=logging.WARNING, format="%(asctime)s %(levelname)s %(message)s")
    channel = FileControlChannel(args.control_dir or get_settings().control_dir)
    print(asyncio.run(run_admin(args.command, channel, wait=args.wait)))


if __name__ == "__main__":
    main()
