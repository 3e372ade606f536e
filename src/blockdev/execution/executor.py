"""
External tool executor.

Runs a program with a literal argument vector (no shell), captures its
output and exit status and turns failures into blockdev errors.
"""

import itertools
import logging
import os
import subprocess
import time
from typing import Dict, Optional, Sequence

from pydantic import ValidationError as PydanticValidationError

from blockdev.errors import ExecutionFailedError, NoOutputError, ValidationError
from blockdev.types import ExecRequest, ExecResult
from blockdev.utils.logger import LogFunc, emit

logger = logging.getLogger(__name__)


class CommandExecutor:
    """
    Blocking executor for external command-line tools.

    Every call is a single attempt. The calling thread is blocked until
    the child exits (or the optional timeout kills it).
    """

    def __init__(
        self,
        timeout_sec: Optional[float] = None,
        log_func: Optional[LogFunc] = None,
    ):
        """
        Initialize the executor.

        Args:
            timeout_sec: Default timeout for every invocation (None = no timeout)
            log_func: Optional sink receiving (level, message) for every run
        """
        self.timeout_sec = timeout_sec
        self.log_func = log_func
        self._task_ids = itertools.count(1)

    def execute(
        self,
        argv: Sequence[str],
        cwd: Optional[str] = None,
        env: Optional[Dict[str, str]] = None,
        timeout_sec: Optional[float] = None,
    ) -> ExecResult:
        """
        Run a program and capture its output.

        Never raises for a failing program; inspect ``success`` on the result.

        Args:
            argv: Program name followed by its arguments
            cwd: Optional working directory
            env: Optional environment overrides
            timeout_sec: Per-call timeout overriding the executor default

        Returns:
            ExecResult with the captured output

        Raises:
            ValidationError: If argv is empty or malformed
        """
        request = self._build_request(argv, cwd, env, timeout_sec)
        argv = request.argv
        task_id = next(self._task_ids)

        self._log(logging.DEBUG, f"Running [{task_id}] {' '.join(argv)} ...")

        child_env = None
        if request.env:
            child_env = os.environ.copy()
            child_env.update(request.env)

        start_time = time.time()
        try:
            completed = subprocess.run(
                argv,
                shell=False,
                capture_output=True,
                text=True,
                errors="replace",
                cwd=request.cwd,
                env=child_env,
                timeout=request.timeout_sec,
            )
        except subprocess.TimeoutExpired as e:
            duration_ms = int((time.time() - start_time) * 1000)
            self._log(logging.DEBUG, f"[{task_id}] timed out after {request.timeout_sec}s")
            return ExecResult(
                success=False,
                stdout=_as_text(e.stdout),
                stderr=f"Process timed out after {request.timeout_sec} seconds",
                exit_code=None,
                duration_ms=duration_ms,
                argv=argv,
                timed_out=True,
            )
        except OSError as e:
            # missing binary, permission denied, bad cwd, ...
            duration_ms = int((time.time() - start_time) * 1000)
            self._log(logging.DEBUG, f"[{task_id}] failed to start: {e}")
            return ExecResult(
                success=False,
                stdout="",
                stderr=f"Failed to execute '{argv[0]}': {e}",
                exit_code=None,
                duration_ms=duration_ms,
                argv=argv,
            )

        duration_ms = int((time.time() - start_time) * 1000)
        self._log(logging.DEBUG, f"[{task_id}] stdout: {completed.stdout}")
        self._log(logging.DEBUG, f"[{task_id}] stderr: {completed.stderr}")
        self._log(logging.DEBUG, f"...done [{task_id}] (exit code: {completed.returncode})")

        return ExecResult(
            success=completed.returncode == 0,
            stdout=completed.stdout,
            stderr=completed.stderr,
            exit_code=completed.returncode,
            duration_ms=duration_ms,
            argv=argv,
        )

    def exec_and_report_error(
        self,
        argv: Sequence[str],
        cwd: Optional[str] = None,
        env: Optional[Dict[str, str]] = None,
        timeout_sec: Optional[float] = None,
    ) -> bool:
        """
        Run a program whose output is not interesting.

        Returns:
            True if the program succeeded

        Raises:
            ExecutionFailedError: If the program could not run or failed
        """
        result = self.execute(argv, cwd=cwd, env=env, timeout_sec=timeout_sec)
        if not result.success:
            raise _failure(result)
        return True

    def exec_and_capture_output(
        self,
        argv: Sequence[str],
        cwd: Optional[str] = None,
        env: Optional[Dict[str, str]] = None,
        timeout_sec: Optional[float] = None,
    ) -> str:
        """
        Run a program and return its standard output.

        Returns:
            Captured standard output (never empty)

        Raises:
            ExecutionFailedError: If the program could not run or failed
            NoOutputError: If the program succeeded without printing anything
        """
        result = self.execute(argv, cwd=cwd, env=env, timeout_sec=timeout_sec)
        if not result.success:
            raise _failure(result)
        if not result.stdout.strip():
            raise NoOutputError(result.argv)
        return result.stdout

    def _build_request(
        self,
        argv: Sequence[str],
        cwd: Optional[str],
        env: Optional[Dict[str, str]],
        timeout_sec: Optional[float],
    ) -> ExecRequest:
        if isinstance(argv, str):
            raise ValidationError("argv", argv, "must be a sequence of arguments, not a string")
        try:
            return ExecRequest(
                argv=[str(arg) for arg in argv] if argv else [],
                cwd=cwd,
                env=env or {},
                timeout_sec=timeout_sec if timeout_sec is not None else self.timeout_sec,
            )
        except PydanticValidationError as e:
            first = e.errors()[0]
            field = str(first["loc"][0]) if first["loc"] else "argv"
            raise ValidationError(field, first.get("input"), first["msg"])

    def _log(self, level: int, message: str) -> None:
        logger.log(level, message)
        emit(self.log_func, level, message)


def _as_text(output) -> str:
    if output is None:
        return ""
    if isinstance(output, bytes):
        return output.decode("utf-8", errors="replace")
    return output


def _failure(result: ExecResult) -> ExecutionFailedError:
    reason = result.stderr.strip() or result.stdout.strip() or "no diagnostic output"
    return ExecutionFailedError(
        argv=result.argv,
        reason=reason,
        exit_code=result.exit_code,
        stderr=result.stderr,
        timed_out=result.timed_out,
    )
