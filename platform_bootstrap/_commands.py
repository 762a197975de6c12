"""Command helpers for the external tools the bootstrap drives.

All interaction with ``aws``, ``ssh``, ``kubectl`` and ``helm`` goes through
:func:`run_command`, so tests can replace a single function.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from plumbum import local
from plumbum.commands.processes import CommandNotFound, ProcessExecutionError

from ._bootstrap_errors import CommandError, PreconditionError

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class CommandContext:
    """Execution options for :func:`run_command`."""

    env: dict[str, str] | None = None
    stdin: str | None = None
    timeout: int | None = None


def run_command(
    command: str,
    *args: str,
    context: CommandContext | None = None,
) -> str:
    """Execute an external command and return its standard output.

    Examples
    --------
    >>> run_command("printf", "hello")
    'hello'
    """

    ctx = context or CommandContext()
    logger.debug("Running %s %s", command, " ".join(args[:4]))
    try:
        bound = local[command][list(args)]
        if ctx.stdin is None:
            _, stdout, _ = bound.run(env=ctx.env, timeout=ctx.timeout)
        else:
            _, stdout, _ = (bound << ctx.stdin).run(env=ctx.env, timeout=ctx.timeout)
    except CommandNotFound as exc:
        msg = f"Command {command!r} is not installed"
        raise CommandError(msg) from exc
    except ProcessExecutionError as exc:
        stderr = (exc.stderr or "").strip()
        msg = f"Command {command!r} failed: {stderr or exc.retcode}"
        raise CommandError(msg, stderr=stderr) from exc
    return stdout


def run_json(
    command: str,
    *args: str,
    context: CommandContext | None = None,
) -> Any:
    """Run a command whose standard output is a JSON document."""

    stdout = run_command(command, *args, context=context)
    if not stdout.strip():
        return {}
    try:
        return json.loads(stdout)
    except json.JSONDecodeError as exc:
        msg = f"{command} returned invalid JSON: {exc}"
        raise CommandError(msg) from exc


def require_tools(tools: Iterable[str], *, phase: str) -> None:
    """Fail before any mutation when a required tool is missing.

    Examples
    --------
    >>> require_tools(["sh"], phase="infrastructure")
    """

    missing = []
    for tool in tools:
        try:
            local.which(tool)
        except CommandNotFound:
            missing.append(tool)
    if missing:
        msg = f"required tools not found on PATH: {', '.join(missing)}"
        raise PreconditionError(
            msg,
            phase=phase,
            remediation="Install the missing tools and re-run the phase.",
        )


__all__ = [
    "CommandContext",
    "require_tools",
    "run_command",
    "run_json",
]
