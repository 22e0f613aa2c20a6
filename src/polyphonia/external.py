"""Running mafft, lofreq and samtools.

Alignment, variant calling and depth computation are left to the established
tools. These helpers locate them, run them, stream large outputs straight to
disk and turn a failed run into an error that names the tool, the command line
and the end of its stderr.
"""

from __future__ import annotations

import logging
import shlex
import shutil
import subprocess
import time
from pathlib import Path
from typing import Optional, Sequence

logger = logging.getLogger(__name__)

STDERR_TAIL_CHARS = 3000


class ExternalCommandError(RuntimeError):
    """An external tool exited with a non-zero status."""

    def __init__(
        self,
        *,
        cmd: Sequence[str],
        returncode: int,
        stderr: Optional[str] = None,
        stdout: Optional[str] = None,
    ) -> None:
        self.cmd = [str(c) for c in cmd]
        self.tool = Path(self.cmd[0]).name if self.cmd else "?"
        self.returncode = int(returncode)
        self.stderr = stderr
        self.stdout = stdout
        super().__init__(
            f"{self.tool} failed (exit code {self.returncode}).\n"
            f"Command:\n  {cmd_to_str(self.cmd)}\n"
            f"STDERR (tail):\n  {_tail(stderr)}"
        )


def cmd_to_str(cmd: Sequence[str]) -> str:
    return " ".join(shlex.quote(str(x)) for x in cmd)


def ensure_executable_in_path(exe: str, *, hint: Optional[str] = None) -> str:
    """Return the full path of ``exe``; FileNotFoundError (with ``hint``) if absent."""
    found = shutil.which(exe)
    if found is None:
        msg = f"Required executable '{exe}' was not found in your PATH."
        if hint:
            msg += "\n\n" + hint
        raise FileNotFoundError(msg)
    return found


def run_command(
    cmd: Sequence[str],
    *,
    cwd: Optional[str | Path] = None,
    stdout_path: Optional[str | Path] = None,
    check: bool = True,
) -> subprocess.CompletedProcess:
    """Run ``cmd`` and return the CompletedProcess.

    Stdout is written to ``stdout_path`` when given (``cp.stdout`` is then
    None), otherwise captured as text. Stderr is always captured.
    """
    args = [str(c) for c in cmd]
    logger.debug("Running: %s", cmd_to_str(args))
    started = time.monotonic()

    if stdout_path is not None:
        with open(stdout_path, "wt", encoding="utf-8") as out:
            cp = subprocess.run(args, cwd=cwd, stdout=out, stderr=subprocess.PIPE, text=True, check=False)
    else:
        cp = subprocess.run(args, cwd=cwd, capture_output=True, text=True, check=False)

    logger.debug("%s finished in %.1fs (exit code %d)", Path(args[0]).name, time.monotonic() - started, cp.returncode)
    if check and cp.returncode != 0:
        raise ExternalCommandError(cmd=args, returncode=cp.returncode, stderr=cp.stderr, stdout=cp.stdout)
    return cp


def _tail(s: Optional[str], n: int = STDERR_TAIL_CHARS) -> str:
    if not s:
        return "(empty)"
    s = s.rstrip()
    return s if len(s) <= n else "..." + s[-n:]
