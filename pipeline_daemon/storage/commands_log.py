"""Append-only journal of external commands run for a project."""

import os
import shlex
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional, Sequence

COMMANDS_FILE = "commands.txt"
DONE_MARKER = "✅ DONE"
FAIL_MARKER = "❌ FAIL"
SEPARATOR = "----"


def format_command(cmd: str, args: Sequence[str], cwd: Optional[str] = None) -> str:
    line = shlex.join([cmd, *args])
    if cwd:
        return f"cd {shlex.quote(cwd)} && {line}"
    return line


def _append(path: str, text: str) -> None:
    with open(path, "a", encoding="utf-8") as handle:
        handle.write(text)


@asynccontextmanager
async def command_log(workspace_root: str, command_line: str) -> AsyncIterator[str]:
    """Record ``command_line`` and its outcome in ``<workspace_root>/commands.txt``."""
    os.makedirs(workspace_root, exist_ok=True)
    path = os.path.join(workspace_root, COMMANDS_FILE)
    _append(path, command_line + "\n")
    try:
        yield path
    except BaseException:
        _append(path, f"{FAIL_MARKER}\n{SEPARATOR}\n")
        raise
    _append(path, f"{DONE_MARKER}\n")
