"""Thin wrapper for delegated system tools (mount, cp, file, ip, ...)."""

from __future__ import annotations

import shlex
import subprocess
from dataclasses import dataclass
from typing import Sequence

from loguru import logger

from armboot.errors import ExternalToolFailure


@dataclass(frozen=True)
class CmdResult:
    argv: list[str]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


def _fmt_argv(argv: Sequence[str]) -> str:
    return " ".join(shlex.quote(a) for a in argv)


def run_cmd(
    argv: Sequence[str],
    *,
    check: bool = True,
    cwd: str | None = None,
    timeout: float | None = None,
    operation: str = "",
    target: str = "",
) -> CmdResult:
    """Run a command, logging it and capturing its output.

    Raises :class:`ExternalToolFailure` carrying the tool's stderr when
    *check* is set and the exit status is non-zero, or when the tool
    cannot be started at all.
    """
    argv_list = [str(a) for a in argv]
    logger.debug("CMD {}", _fmt_argv(argv_list))

    try:
        p = subprocess.run(
            argv_list,
            text=True,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            cwd=cwd,
            timeout=timeout,
        )
    except (OSError, subprocess.TimeoutExpired) as e:
        raise ExternalToolFailure(
            f"cannot run {argv_list[0]}: {e}",
            argv=argv_list,
            operation=operation,
            target=target,
        ) from e

    if p.stdout:
        logger.debug("STDOUT {}", p.stdout.strip())
    if p.stderr:
        logger.debug("STDERR {}", p.stderr.strip())

    if check and p.returncode != 0:
        raise ExternalToolFailure(
            f"command failed ({p.returncode}): {_fmt_argv(argv_list)}",
            argv=argv_list,
            returncode=p.returncode,
            stderr=p.stderr,
            operation=operation,
            target=target,
        )

    return CmdResult(argv=argv_list, returncode=p.returncode, stdout=p.stdout, stderr=p.stderr)
