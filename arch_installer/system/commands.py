"""Subprocess execution for the privileged disk and network tools.

Every external binary is invoked through run_command so the command line,
its output and its return code land in the install log. Secrets passed on the
command line are masked with ``redactions`` (argument indexes); secrets passed
on stdin are never logged.
"""

from __future__ import annotations

import subprocess
from typing import Callable, Iterable, Mapping, Optional, Sequence

from arch_installer.logging import get_logger


log = get_logger(source="command", tags=["command"])

CommandRunner = Callable[..., "subprocess.CompletedProcess[str]"]


def format_command(command: Sequence[str], redactions: Optional[Iterable[int]] = None) -> str:
    if not redactions:
        return " ".join(command)
    redacted_indexes = set(redactions)
    redacted_parts = [
        "******" if index in redacted_indexes else part for index, part in enumerate(command)
    ]
    return " ".join(redacted_parts)


def run_command(
    command: Sequence[str],
    check: bool = True,
    input_text: Optional[str] = None,
    redactions: Optional[Iterable[int]] = None,
    env: Optional[Mapping[str, str]] = None,
) -> subprocess.CompletedProcess[str]:
    command_display = format_command(command, redactions)
    log.debug(f"Running command: {command_display}")
    try:
        result = subprocess.run(
            list(command),
            check=check,
            input=input_text,
            text=True,
            capture_output=True,
            env=dict(env) if env is not None else None,
        )
    except subprocess.CalledProcessError as error:
        log.debug(f"Command failed: {command_display}")
        if error.stdout:
            log.debug(f"stdout: {error.stdout.strip()}")
        if error.stderr:
            log.debug(f"stderr: {error.stderr.strip()}")
        raise
    if result.stdout:
        log.debug(f"stdout: {result.stdout.strip()}")
    if result.stderr:
        log.debug(f"stderr: {result.stderr.strip()}")
    log.debug(f"Command completed with return code {result.returncode}")
    return result


def describe_failure(error: Exception) -> str:
    """Short cause string for a failed tool invocation."""
    if isinstance(error, subprocess.CalledProcessError):
        stderr = (error.stderr or "").strip()
        stdout = (error.stdout or "").strip()
        detail = stderr or stdout or f"exit status {error.returncode}"
        tool = error.cmd[0] if isinstance(error.cmd, (list, tuple)) and error.cmd else error.cmd
        return f"{tool}: {detail}"
    if isinstance(error, FileNotFoundError):
        return f"command not found: {error.filename or error}"
    return str(error)
