"""Subprocess execution for sandbox backends.

This module provides:
- Parsing of configured command strings into exec steps
- Async subprocess execution with timeout and output tails
"""
from __future__ import annotations

import asyncio
import logging
import shlex
from dataclasses import dataclass
from pathlib import Path
from typing import List, Mapping, Optional, Sequence

logger = logging.getLogger(__name__)

# Shell metacharacters that we block (exec steps never go through a shell)
BLOCKED_METACHARACTERS = frozenset(['|', '>', '<', ';', '&', '`', '$(', '${'])

# Keep the last 8KB of each stream
MAX_TAIL_BYTES = 8 * 1024


class CommandError(ValueError):
    """Raised when a configured command string cannot become an exec step."""
    pass


def check_metacharacters(command: str) -> None:
    """Check for blocked shell metacharacters.

    Raises:
        CommandError: If command contains blocked metacharacters
    """
    for char in BLOCKED_METACHARACTERS:
        if char in command:
            raise CommandError(
                f"Command contains blocked metacharacter '{char}'. "
                f"Exec steps are not run through a shell; split them into separate steps."
            )


def parse_command(command: str) -> List[str]:
    """Parse a command string into an argument list using shlex.

    Raises:
        CommandError: If the command is empty, cannot be parsed, or uses shell syntax
    """
    check_metacharacters(command)
    try:
        args = shlex.split(command)
    except ValueError as e:
        raise CommandError(f"Cannot parse command: {e}")
    if not args:
        raise CommandError("Empty command")
    return args


def parse_steps(commands: str | Sequence[str]) -> List[List[str]]:
    """Parse one command or a sequence of commands into exec steps."""
    if isinstance(commands, str):
        return [parse_command(commands)]
    return [parse_command(command) for command in commands]


def tail(data: bytes, limit: int = MAX_TAIL_BYTES) -> str:
    text = data.decode("utf-8", errors="replace")
    if len(text) > limit:
        return "... (output truncated)\n" + text[-limit:]
    return text


@dataclass(frozen=True, slots=True)
class ProcessResult:
    exit_code: int
    stdout: str
    stderr: str


async def run_process(
    args: Sequence[str],
    *,
    cwd: Optional[Path] = None,
    env: Optional[Mapping[str, str]] = None,
    timeout: Optional[float] = None,
) -> ProcessResult:
    """Run a process and capture output tails.

    Raises:
        FileNotFoundError: If the executable does not exist
        asyncio.TimeoutError: If the process exceeds ``timeout``; the process is killed
    """
    logger.debug(f"Executing: {list(args)} (cwd={cwd})")
    process = await asyncio.create_subprocess_exec(
        *args,
        cwd=cwd,
        env=dict(env) if env is not None else None,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        process.kill()
        await process.wait()
        raise
    except asyncio.CancelledError:
        process.kill()
        raise
    return ProcessResult(
        exit_code=process.returncode if process.returncode is not None else -1,
        stdout=tail(stdout),
        stderr=tail(stderr),
    )
