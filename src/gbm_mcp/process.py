"""Safe invocation of the git binary with explicit argument vectors."""

from __future__ import annotations

import logging
import os
import subprocess
import tempfile
import time
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from .constants import DEFAULT_GIT_TIMEOUT_SECONDS, GIT_BINARY, GIT_DIR_NAME, OUTPUT_PREVIEW_CHARS
from .errors import ErrorCode, GBMError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProcessResult:
    """Outcome of one git invocation. Failures are values, never exceptions."""

    success: bool
    stdout: str = ""
    stderr: str = ""
    returncode: int | None = None
    error_code: ErrorCode | None = None

    @property
    def timed_out(self) -> bool:
        return self.error_code == ErrorCode.TIMEOUT

    @property
    def not_a_repository(self) -> bool:
        return self.error_code == ErrorCode.NOT_A_REPOSITORY

    def to_error(self, action: str, details: dict | None = None) -> GBMError:
        """Normalize a failed result into a ``GBMError``."""
        detail = self.stderr.strip() or self.stdout.strip() or "unknown error"
        if self.not_a_repository:
            return GBMError(
                ErrorCode.NOT_A_REPOSITORY,
                detail,
                "Point the repository path at a directory containing .git.",
                dict(details or {}),
            )
        return GBMError(
            self.error_code or ErrorCode.PROCESS_FAILURE,
            f"Failed to {action}: {detail}",
            "Retry the operation or inspect the repository state.",
            {**(details or {}), "returncode": self.returncode},
        )


class ProcessRunner:
    """Runs git inside one repository root.

    Arguments are always passed as a vector; nothing is ever joined into a
    shell command line.
    """

    def __init__(
        self,
        repo_path: str | Path,
        timeout: float = DEFAULT_GIT_TIMEOUT_SECONDS,
        binary: str = GIT_BINARY,
    ) -> None:
        self.repo_path = Path(repo_path).expanduser()
        self.timeout = float(timeout)
        self.binary = binary

    def is_repository(self) -> bool:
        # .git is a directory in normal clones and a file in linked worktrees
        return (self.repo_path / GIT_DIR_NAME).exists()

    def run(self, args: Sequence[str]) -> ProcessResult:
        """Run ``git <args>`` and capture its output."""
        if not self.is_repository():
            return self._not_a_repository()

        command = [self.binary, *args]
        try:
            completed = subprocess.run(
                command,
                cwd=self.repo_path,
                stdin=subprocess.DEVNULL,
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
                timeout=self.timeout,
                check=False,
                env=self._env(),
            )
        except subprocess.TimeoutExpired:
            logger.warning("git command timed out after %.1fs: %s", self.timeout, command)
            return ProcessResult(
                success=False,
                stderr=f"Timed out after {self.timeout:g}s",
                error_code=ErrorCode.TIMEOUT,
            )
        except OSError as exc:
            logger.warning("git command could not start: %s (%s)", command, exc)
            return ProcessResult(
                success=False,
                stderr=str(exc),
                error_code=ErrorCode.PROCESS_FAILURE,
            )

        result = ProcessResult(
            success=completed.returncode == 0,
            stdout=completed.stdout,
            stderr=completed.stderr,
            returncode=completed.returncode,
            error_code=None if completed.returncode == 0 else ErrorCode.PROCESS_FAILURE,
        )
        self._log_result(command, result)
        return result

    def run_pipeline(self, first: Sequence[str], second: Sequence[str]) -> ProcessResult:
        """Run ``git <first> | git <second>`` without buffering through Python.

        Success depends on the second stage only; stderr of both stages is
        aggregated.
        """
        if not self.is_repository():
            return self._not_a_repository()

        first_command = [self.binary, *first]
        second_command = [self.binary, *second]
        deadline = time.monotonic() + self.timeout

        with tempfile.TemporaryFile() as first_stderr:
            try:
                producer = subprocess.Popen(
                    first_command,
                    cwd=self.repo_path,
                    stdin=subprocess.DEVNULL,
                    stdout=subprocess.PIPE,
                    stderr=first_stderr,
                    env=self._env(),
                )
            except OSError as exc:
                logger.warning("git command could not start: %s (%s)", first_command, exc)
                return ProcessResult(False, stderr=str(exc), error_code=ErrorCode.PROCESS_FAILURE)

            try:
                consumer = subprocess.Popen(
                    second_command,
                    cwd=self.repo_path,
                    stdin=producer.stdout,
                    stdout=subprocess.PIPE,
                    stderr=subprocess.PIPE,
                    env=self._env(),
                )
            except OSError as exc:
                producer.kill()
                producer.communicate()
                logger.warning("git command could not start: %s (%s)", second_command, exc)
                return ProcessResult(False, stderr=str(exc), error_code=ErrorCode.PROCESS_FAILURE)
            finally:
                # the consumer holds its own copy; closing ours lets the
                # producer see SIGPIPE if the consumer exits early
                if producer.stdout is not None:
                    producer.stdout.close()

            try:
                stdout_bytes, stderr_bytes = consumer.communicate(
                    timeout=max(0.0, deadline - time.monotonic())
                )
                producer.wait(timeout=max(0.0, deadline - time.monotonic()))
            except subprocess.TimeoutExpired:
                for process in (producer, consumer):
                    process.kill()
                consumer.communicate()
                producer.wait()
                logger.warning(
                    "git pipeline timed out after %.1fs: %s | %s",
                    self.timeout,
                    first_command,
                    second_command,
                )
                return ProcessResult(
                    success=False,
                    stderr=f"Timed out after {self.timeout:g}s",
                    error_code=ErrorCode.TIMEOUT,
                )

            first_stderr.seek(0)
            stderr_text = "".join(
                chunk.decode("utf-8", errors="replace")
                for chunk in (first_stderr.read(), stderr_bytes)
                if chunk
            )

        result = ProcessResult(
            success=consumer.returncode == 0,
            stdout=stdout_bytes.decode("utf-8", errors="replace"),
            stderr=stderr_text,
            returncode=consumer.returncode,
            error_code=None if consumer.returncode == 0 else ErrorCode.PROCESS_FAILURE,
        )
        self._log_result([*first_command, "|", *second_command], result)
        return result

    def _not_a_repository(self) -> ProcessResult:
        logger.debug("Skipping git invocation; %s is not a repository", self.repo_path)
        return ProcessResult(
            success=False,
            stderr=f"Not a git repository: {self.repo_path}",
            error_code=ErrorCode.NOT_A_REPOSITORY,
        )

    def _env(self) -> dict[str, str]:
        env = dict(os.environ)
        env["GIT_TERMINAL_PROMPT"] = "0"
        return env

    def _log_result(self, command: list[str], result: ProcessResult) -> None:
        output = result.stdout.strip()
        if result.success:
            logger.debug(
                "git ok: %s exit=%s output_len=%d preview=%r",
                command,
                result.returncode,
                len(output),
                output[:OUTPUT_PREVIEW_CHARS],
            )
            return
        logger.debug(
            "git failed: %s exit=%s stderr=%r",
            command,
            result.returncode,
            result.stderr.strip()[:OUTPUT_PREVIEW_CHARS],
        )
