"""Subprocess runner for the external generation CLIs.

Each run streams stdout/stderr into a timestamped run log and is journaled
in the project's ``commands.txt``.
"""

import asyncio
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence

from pipeline_daemon.jobs.errors import GenerationError
from pipeline_daemon.logging_config import get_logger
from pipeline_daemon.storage.commands_log import command_log, format_command

logger = get_logger(__name__)


@dataclass
class CommandResult:
    command: str
    log_path: str
    exit_code: int
    stdout_tail: str = ""


def log_stamp() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H-%M-%S-%fZ")


async def _pump(stream: Optional[asyncio.StreamReader], label: str, handle, tail: List[str]) -> None:
    if stream is None:
        return
    while True:
        line = await stream.readline()
        if not line:
            break
        text = line.decode("utf-8", errors="replace")
        handle.write(f"[{label}] {text}")
        handle.flush()
        tail.append(text)
        if len(tail) > 50:
            del tail[0]


async def run_command(
    cmd: str,
    args: Sequence[str],
    cwd: str,
    log_dir: str,
    log_name: str,
    commands_root: str,
    project_id: Optional[str] = None,
    env: Optional[Dict[str, str]] = None,
) -> CommandResult:
    """Run an external command and wait for it.

    Raises:
        GenerationError: the command could not start or exited non-zero.
            ``log_path`` and ``command`` are attached.
    """
    os.makedirs(log_dir, exist_ok=True)
    display = format_command(cmd, args)
    log_path = os.path.join(log_dir, f"{log_name}-{log_stamp()}.log")
    tail: List[str] = []

    logger.info("Running command", project_id=project_id, command=display, cwd=cwd)

    async with command_log(commands_root, format_command(cmd, args, cwd)):
        with open(log_path, "w", encoding="utf-8") as handle:
            handle.write(f"Command: {display}\n")
            handle.write(f"Started: {datetime.now(timezone.utc).isoformat()}\n")
            handle.write("--- STREAM BEGIN ---\n")
            handle.flush()
            try:
                process = await asyncio.create_subprocess_exec(
                    cmd,
                    *args,
                    cwd=cwd,
                    env={**os.environ, **(env or {})},
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                )
            except OSError as exc:
                handle.write(f"\n--- STREAM END ---\nFailed to start: {exc}\n")
                raise GenerationError(
                    f"Failed to start {cmd}: {exc}", log_path=log_path, command=display
                ) from exc

            await asyncio.gather(
                _pump(process.stdout, "STDOUT", handle, tail),
                _pump(process.stderr, "STDERR", handle, tail),
            )
            exit_code = await process.wait()
            handle.write("\n--- STREAM END ---\n")
            handle.write(f"Exit code: {exit_code}\n")

        if exit_code != 0:
            logger.error(
                "Command failed",
                project_id=project_id,
                command=display,
                exit_code=exit_code,
                log_path=log_path,
            )
            raise GenerationError(
                f"{log_name} failed with code {exit_code}",
                log_path=log_path,
                command=display,
            )

    return CommandResult(
        command=display,
        log_path=log_path,
        exit_code=exit_code,
        stdout_tail="".join(tail[-10:]),
    )


async def write_fake_run(
    cmd: str,
    args: Sequence[str],
    cwd: str,
    log_dir: str,
    log_name: str,
    commands_root: str,
    note: str,
) -> CommandResult:
    """Journal a command without running it, for fake-CLI and dummy modes."""
    os.makedirs(log_dir, exist_ok=True)
    display = format_command(cmd, args)
    log_path = os.path.join(log_dir, f"{log_name}-{log_stamp()}.log")
    async with command_log(commands_root, format_command(cmd, args, cwd)):
        with open(log_path, "w", encoding="utf-8") as handle:
            handle.write(f"Command: {display}\n[DUMMY] {note}\n")
    return CommandResult(command=display, log_path=log_path, exit_code=0)
