"""Subprocess helpers for the external CLIs we drive (docker, kubectl)."""

from __future__ import annotations

import asyncio
import shutil
import subprocess
from dataclasses import dataclass
from typing import Mapping, Optional, Sequence
from urllib.parse import urlsplit, urlunsplit

__all__ = [
    "CommandResult",
    "command_exists",
    "run_command",
    "sanitize_url_for_log",
]


@dataclass(frozen=True)
class CommandResult:
    args: tuple
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    def error_text(self, limit: int = 400) -> str:
        text = (self.stderr or self.stdout or "").strip()
        return text[:limit]


def sanitize_url_for_log(url: str) -> str:
    """Sanitize URL for logging by redacting the password."""
    try:
        parts = urlsplit(url)
        if parts.password:
            netloc = f"{parts.username}:***@{parts.hostname}"
            if parts.port:
                netloc += f":{parts.port}"
        else:
            netloc = parts.netloc
        return urlunsplit((parts.scheme, netloc, parts.path, parts.query, parts.fragment))
    except Exception:
        return "***"


def command_exists(cmd: str) -> bool:
    return shutil.which(cmd) is not None


def _run_sync(
    args: Sequence[str],
    input_text: Optional[str],
    env: Optional[Mapping[str, str]],
    timeout: Optional[float],
) -> CommandResult:
    try:
        proc = subprocess.run(
            list(args),
            input=input_text,
            capture_output=True,
            text=True,
            check=False,
            timeout=timeout,
            env=dict(env) if env is not None else None,
        )
    except subprocess.TimeoutExpired as exc:
        return CommandResult(tuple(args), 124, "", f"timed out after {exc.timeout}s")
    except FileNotFoundError as exc:
        return CommandResult(tuple(args), 127, "", str(exc))
    return CommandResult(tuple(args), proc.returncode, proc.stdout or "", proc.stderr or "")


async def run_command(
    args: Sequence[str],
    *,
    input_text: Optional[str] = None,
    env: Optional[Mapping[str, str]] = None,
    timeout: Optional[float] = 120,
) -> CommandResult:
    """Run a CLI off the event loop and capture its output.

    Never raises for a non-zero exit; callers decide what a failure means.
    """
    return await asyncio.to_thread(_run_sync, args, input_text, env, timeout)
