"""Subprocess supervision with timeouts and kill escalation."""

from __future__ import annotations

import logging
import shlex
import subprocess
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_KILL_GRACE_SECONDS = 5.0


class ProcessRunError(RuntimeError):
    """External command failed, timed out, or could not start."""

    def __init__(
        self,
        message: str,
        *,
        exit_code: int | None = None,
        output: str = "",
        timed_out: bool = False,
    ) -> None:
        super().__init__(message)
        self.exit_code = exit_code
        self.output = output
        self.timed_out = timed_out


@dataclass(slots=True)
class ProcessResult:
    """Successful command outcome."""

    exit_code: int
    output: str


class ProcessSupervisor:
    """Runs one external command at a time with a hard timeout."""

    def __init__(self, *, kill_grace_seconds: float = DEFAULT_KILL_GRACE_SECONDS) -> None:
        self.kill_grace_seconds = max(0.0, kill_grace_seconds)

    def run(
        self,
        command: str,
        args: Sequence[str] = (),
        *,
        work_dir: Path,
        timeout_seconds: float | None = None,
        env: Mapping[str, str] | None = None,
    ) -> ProcessResult:
        """Run `command args` in `work_dir`, returning only on exit code 0.

        On timeout the child gets SIGTERM, then SIGKILL once the grace period
        passes. The child is reaped on every path out of this method.
        """

        argv = [command, *args]
        display = _display_command(argv)
        try:
            process = subprocess.Popen(  # noqa: S603
                argv,
                cwd=work_dir,
                env=dict(env) if env is not None else None,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                encoding="utf-8",
                errors="replace",
            )
        except FileNotFoundError as error:
            raise ProcessRunError(f"Command not found: {command}") from error
        except OSError as error:
            raise ProcessRunError(f"{display} failed to start: {error}") from error

        timed_out = False
        try:
            try:
                output, _ = process.communicate(timeout=_effective_timeout(timeout_seconds))
            except subprocess.TimeoutExpired:
                timed_out = True
                logger.warning("%s timed out after %ss; terminating", display, timeout_seconds)
                output = self._terminate(process)
        finally:
            _reap(process)

        output = output or ""
        if timed_out:
            timeout_ms = int((timeout_seconds or 0) * 1000)
            output = f"{output}\n{display} timed out after {timeout_ms}ms".strip()
            raise ProcessRunError(
                f"{display} failed (timeout)\n{output}",
                exit_code=process.returncode,
                output=output,
                timed_out=True,
            )
        if process.returncode != 0:
            raise ProcessRunError(
                f"{display} failed ({process.returncode})\n{output}".strip(),
                exit_code=process.returncode,
                output=output,
            )
        return ProcessResult(exit_code=0, output=output)

    def _terminate(self, process: subprocess.Popen[str]) -> str:
        try:
            process.terminate()
        except OSError:
            pass
        try:
            output, _ = process.communicate(timeout=self.kill_grace_seconds)
        except subprocess.TimeoutExpired:
            logger.warning("Process %s ignored SIGTERM; killing", process.pid)
            try:
                process.kill()
            except OSError:
                pass
            output, _ = process.communicate()
        return output or ""


def render_command(template: str, values: Mapping[str, str | Path]) -> list[str]:
    """Render a shell-like command template into argv with quoted placeholder values."""

    stripped = template.strip()
    if not stripped:
        raise ValueError("Command template is empty.")
    try:
        rendered = stripped.format(
            **{key: shlex.quote(str(value)) for key, value in values.items()},
        )
    except KeyError as error:
        raise ValueError(f"Unsupported command template placeholder: {error}") from error
    argv = shlex.split(rendered)
    if not argv:
        raise ValueError("Command template rendered empty command.")
    return argv


def _effective_timeout(timeout_seconds: float | None) -> float | None:
    if timeout_seconds is None or timeout_seconds <= 0:
        return None
    return timeout_seconds


def _reap(process: subprocess.Popen[str]) -> None:
    if process.poll() is None:
        try:
            process.kill()
        except OSError:
            pass
        process.wait()
    for stream in (process.stdout, process.stderr):
        if stream is not None:
            stream.close()


def _display_command(argv: Sequence[str]) -> str:
    return " ".join(argv)
