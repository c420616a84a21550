"""Shared fixtures for layer builder tests."""

from pathlib import Path
from typing import Callable, Dict, List, Optional

import pytest

from layer_builder.steps import CommandRunner, StepResult, StepStatus


class FakeRunner(CommandRunner):
    """CommandRunner that records commands instead of executing them.

    ``responses`` maps a step name to either a StepResult template or a
    callable ``(argv, env) -> StepResult``; unknown steps succeed with no
    output.
    """

    def __init__(self, responses: Optional[Dict[str, object]] = None):
        super().__init__()
        self.responses = responses or {}
        self.calls: List[dict] = []

    def run(self, name, cmd, *, env=None, cwd=None, log_file=None, timeout=None):
        argv = [str(part) for part in cmd]
        self.calls.append({"name": name, "argv": argv, "env": env, "log_file": log_file})

        response = self.responses.get(name)
        if callable(response):
            result = response(argv, env)
        elif isinstance(response, StepResult):
            result = StepResult(
                name=name,
                status=response.status,
                returncode=response.returncode,
                output=response.output,
                detail=response.detail,
            )
        else:
            result = StepResult(name=name, status=StepStatus.SUCCESS, returncode=0)

        if log_file is not None:
            log_file.parent.mkdir(parents=True, exist_ok=True)
            log_file.write_text(result.output, encoding="utf-8")
        return self.record(result)

    def names(self) -> List[str]:
        return [call["name"] for call in self.calls]

    def call(self, name: str) -> dict:
        return next(call for call in self.calls if call["name"] == name)


def failed(output: str = "", returncode: int = 1) -> StepResult:
    return StepResult(
        name="",
        status=StepStatus.RECOVERED,
        returncode=returncode,
        output=output,
        detail=f"exit code {returncode}",
    )


def succeeded(output: str = "") -> StepResult:
    return StepResult(name="", status=StepStatus.SUCCESS, returncode=0, output=output)


@pytest.fixture
def fake_runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def make_lib() -> Callable[..., Path]:
    """Create a fake shared library file with recognizable content."""

    def _make(directory: Path, name: str, content: Optional[str] = None) -> Path:
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / name
        path.write_text(content if content is not None else f"ELF {name}")
        return path

    return _make
