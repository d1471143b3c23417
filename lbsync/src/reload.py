from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass

LOGGER = logging.getLogger(__name__)

FAILURE_LAUNCH = "launch"
FAILURE_EXIT = "exit"
FAILURE_TIMEOUT = "timeout"


@dataclass(frozen=True)
class ReloadResult:
    """Outcome of one reload run.

    ``failure`` is ``None`` on success, otherwise one of ``"launch"``
    (command missing or not executable), ``"exit"`` (non-zero status) or
    ``"timeout"`` (deadline exceeded, child killed).
    """

    command: str
    succeeded: bool
    returncode: int | None
    output: str
    failure: str | None = None

    @property
    def label(self) -> str:
        return self.failure or "success"


def _decode(output: bytes | str | None) -> str:
    if output is None:
        return ""
    if isinstance(output, bytes):
        return output.decode("utf-8", errors="replace")
    return output


class ReloadCommand:
    """Runs the proxy reload executable with no arguments.

    Stdout and stderr are captured together. :meth:`run` never raises; the
    caller decides what a failure means.
    """

    def __init__(self, path: str, timeout_seconds: float | None = None) -> None:
        self.path = path
        self.timeout_seconds = timeout_seconds

    def run(self) -> ReloadResult:
        try:
            completed = subprocess.run(  # noqa: S603
                [self.path],
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                timeout=self.timeout_seconds,
                check=False,
            )
        except subprocess.TimeoutExpired as exc:
            return ReloadResult(
                command=self.path,
                succeeded=False,
                returncode=None,
                output=_decode(exc.output),
                failure=FAILURE_TIMEOUT,
            )
        except OSError as exc:
            return ReloadResult(
                command=self.path,
                succeeded=False,
                returncode=None,
                output=str(exc),
                failure=FAILURE_LAUNCH,
            )

        output = _decode(completed.stdout)
        if completed.returncode != 0:
            return ReloadResult(
                command=self.path,
                succeeded=False,
                returncode=completed.returncode,
                output=output,
                failure=FAILURE_EXIT,
            )
        return ReloadResult(
            command=self.path,
            succeeded=True,
            returncode=0,
            output=output,
        )
