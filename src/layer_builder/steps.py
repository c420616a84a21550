"""External command execution with explicit per-step outcomes."""

import os
import subprocess
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Union

from aws_lambda_powertools import Logger

from observability import metrics
from observability.logging import SERVICE_NAME

logger = Logger(service=SERVICE_NAME)

# Lines of command output kept in a failure log entry
OUTPUT_TAIL_LINES = 20


class StepStatus(str, Enum):
    SUCCESS = "success"
    RECOVERED = "recovered"
    FATAL = "fatal"


class PrerequisiteMissing(Exception):
    """A required runtime or tool is absent; the build cannot continue."""

    exit_code = 2


@dataclass
class StepResult:
    """Outcome of one build step."""

    name: str
    status: StepStatus
    returncode: Optional[int] = None
    output: str = ""
    detail: Optional[str] = None
    duration_ms: int = 0

    @property
    def ok(self) -> bool:
        return self.status is StepStatus.SUCCESS

    def tail(self, lines: int = OUTPUT_TAIL_LINES) -> str:
        return "\n".join(self.output.splitlines()[-lines:])


class CommandRunner:
    """Runs external commands and converts failures into RECOVERED results.

    Environment changes are passed per call through ``env`` and layered over
    the current process environment; the process environment itself is never
    modified.
    """

    def __init__(self, timeout: Optional[float] = None):
        self.timeout = timeout
        self.logger = logger

    def run(
        self,
        name: str,
        cmd: Sequence[Union[str, os.PathLike]],
        *,
        env: Optional[Dict[str, str]] = None,
        cwd: Optional[Path] = None,
        log_file: Optional[Path] = None,
        timeout: Optional[float] = None,
    ) -> StepResult:
        """Run ``cmd`` and return its StepResult.

        Args:
            name: Short step name used in logs and metrics
            cmd: Command and arguments
            env: Extra environment variables for this command only
            cwd: Working directory
            log_file: When given, combined stdout/stderr is written there
            timeout: Per-call override of the runner's wall-clock timeout

        Returns:
            SUCCESS on exit code 0, RECOVERED on any failure to run or
            non-zero exit
        """
        argv: List[str] = [os.fspath(part) for part in cmd]
        run_env = None
        if env:
            run_env = dict(os.environ)
            run_env.update(env)

        self.logger.info(f"▶️ {name}: {' '.join(argv)}")
        start_time = time.time()

        try:
            completed = subprocess.run(
                argv,
                env=run_env,
                cwd=os.fspath(cwd) if cwd else None,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                timeout=timeout if timeout is not None else self.timeout,
                check=False,
            )
        except subprocess.TimeoutExpired as e:
            output = _decode(e.output)
            result = StepResult(
                name=name,
                status=StepStatus.RECOVERED,
                output=output,
                detail=f"timed out after {e.timeout}s",
            )
        except (FileNotFoundError, PermissionError) as e:
            result = StepResult(
                name=name,
                status=StepStatus.RECOVERED,
                detail=f"could not execute {argv[0]}: {e}",
            )
        else:
            status = (
                StepStatus.SUCCESS if completed.returncode == 0
                else StepStatus.RECOVERED
            )
            result = StepResult(
                name=name,
                status=status,
                returncode=completed.returncode,
                output=_decode(completed.stdout),
                detail=None if status is StepStatus.SUCCESS
                else f"exit code {completed.returncode}",
            )

        result.duration_ms = int((time.time() - start_time) * 1000)
        metrics.step_duration_ms.record(result.duration_ms, {"step": name})

        if log_file is not None:
            log_file.parent.mkdir(parents=True, exist_ok=True)
            log_file.write_text(result.output, encoding="utf-8")

        self.record(result)
        return result

    def record(self, result: StepResult) -> StepResult:
        """Log a step outcome; failures are logged, never raised."""
        if result.ok:
            self.logger.info(f"✅ {result.name} finished in {result.duration_ms}ms")
        else:
            metrics.step_failures.add(1, {"step": result.name})
            self.logger.warning(
                f"⚠️ {result.name} failed ({result.detail}); continuing",
                extra={"output_tail": result.tail()},
            )
        return result


def _decode(output: Optional[Union[bytes, str]]) -> str:
    if output is None:
        return ""
    if isinstance(output, bytes):
        return output.decode("utf-8", errors="replace")
    return output
