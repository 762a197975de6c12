"""Shared helpers for resolving CLI and environment inputs."""

from __future__ import annotations

import os
from collections import abc as cabc
from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True, slots=True)
class InputResolution:
    """Configuration for resolving an input from multiple sources."""

    env_key: str
    default: str | Path | None = None
    required: bool = False
    as_path: bool = False


def resolve_input(
    param_value: str | Path | None,
    resolution: InputResolution,
    env: cabc.Mapping[str, str] | None = None,
) -> str | Path | None:
    """Resolve input from parameter, environment variable, or default.

    Examples
    --------
    >>> resolve_input(None, InputResolution("AWS_REGION", "us-east-1"), {})
    'us-east-1'
    >>> resolve_input(None, InputResolution("AWS_REGION"), {"AWS_REGION": "eu-west-1"})
    'eu-west-1'
    """

    if param_value is not None:
        return param_value

    env_value = (env if env is not None else os.environ).get(resolution.env_key)
    if env_value is not None and env_value != "":
        return Path(env_value).expanduser() if resolution.as_path else env_value

    if resolution.required:
        msg = f"{resolution.env_key} is required"
        raise SystemExit(msg)

    return resolution.default


def parse_bool(value: str | None, *, default: bool = True) -> bool:
    """Parse a boolean string value.

    Examples
    --------
    >>> parse_bool("yes")
    True
    >>> parse_bool(None, default=False)
    False
    """
    if value is None:
        return default
    return value.strip().lower() in ("true", "1", "yes")


def parse_int(value: str | int | None, *, name: str, default: int) -> int:
    """Parse a positive integer input, exiting with a message on bad values.

    Examples
    --------
    >>> parse_int("3", name="NODE_COUNT", default=1)
    3
    >>> parse_int(None, name="NODE_COUNT", default=1)
    1
    """
    if value is None:
        return default
    try:
        parsed = int(value)
    except ValueError:
        msg = f"{name} must be an integer, got {value!r}"
        raise SystemExit(msg) from None
    if parsed <= 0:
        msg = f"{name} must be positive, got {parsed}"
        raise SystemExit(msg)
    return parsed
