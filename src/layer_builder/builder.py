"""
Chromium Lambda layer build orchestration.

Runs provisioning, finds the headless browser binary, builds its shared
library closure and optionally packages/publishes the result. Only a missing
prerequisite turns into a non-zero exit code; every other failure is logged
and the build carries on with whatever it has.
"""

import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

import logfire
from aws_lambda_powertools import Logger

from observability import metrics
from observability.logging import SERVICE_NAME

from .closure import ClosureCopier, ClosureResult, LibraryLocator, ReportWriter
from .closure.copier import make_tree_world_accessible
from .config import BuildConfig
from .inspector import find_headless_binary, request_dependency_report
from .provision import Provisioner
from .publisher import LayerPublisher
from .steps import CommandRunner, PrerequisiteMissing, StepResult, StepStatus

logger = Logger(service=SERVICE_NAME)

EXIT_OK = 0


@dataclass
class BuildOutcome:
    """Summary of one build invocation."""

    exit_code: int = EXIT_OK
    binary: Optional[Path] = None
    closure: Optional[ClosureResult] = None
    steps: List[StepResult] = field(default_factory=list)
    zip_path: Optional[Path] = None
    layer_version_arn: Optional[str] = None

    @property
    def recovered_steps(self) -> List[str]:
        return [s.name for s in self.steps if s.status is StepStatus.RECOVERED]


class LayerBuilder:
    """Builds the layer tree under ``config.out_dir``."""

    def __init__(
        self,
        config: BuildConfig,
        runner: Optional[CommandRunner] = None,
        publisher: Optional[LayerPublisher] = None,
    ):
        self.config = config
        self.runner = runner or CommandRunner(timeout=config.step_timeout)
        self.publisher = publisher
        self.reports = ReportWriter(config.out_dir)
        self.logger = logger

    def new_copier(self) -> ClosureCopier:
        return ClosureCopier(
            LibraryLocator(self.config.search_path),
            self.config.lib_dir,
            self.reports,
            fallback_search_path=self.config.fallback_search_path,
        )

    def build_closure(self, report_text: str) -> ClosureResult:
        """Closure pass over an already captured ``ldd`` report."""
        return self.new_copier().run(report_text)

    def locate_binary(self, outcome: BuildOutcome) -> Optional[Path]:
        with logfire.span("build.locate_binary"):
            binary = find_headless_binary(self.config.out_dir)
        outcome.binary = binary
        self.reports.write_build_info(binary)
        return binary

    def inspect_and_copy(self, binary: Path, outcome: BuildOutcome) -> None:
        with logfire.span("build.closure", binary=str(binary)):
            ldd = request_dependency_report(binary, self.runner)
            outcome.steps.append(ldd)
            outcome.closure = self.build_closure(ldd.output)

        if outcome.closure.missing:
            self.logger.warning(
                f"Unresolved libraries: {sorted(outcome.closure.missing)}; "
                f"see {self.reports.path('ldd-missing-names.txt')}"
            )

    def package(self, outcome: BuildOutcome, zip_path: Path, publish: bool) -> None:
        publisher = self.publisher or LayerPublisher(self.config)
        with logfire.span("build.package", zip_path=str(zip_path)):
            outcome.zip_path = publisher.package(self.config.out_dir, zip_path)
            if publish:
                outcome.layer_version_arn = publisher.publish(outcome.zip_path)

    def run(
        self,
        *,
        provision: bool = True,
        zip_path: Optional[Path] = None,
        publish: bool = False,
    ) -> BuildOutcome:
        """Run a full build.

        Args:
            provision: Install packages, Playwright and the browser first
            zip_path: Write the finished tree to this zip
            publish: Upload the zip and publish a layer version

        Returns:
            BuildOutcome; ``exit_code`` is 0 unless a prerequisite is missing
        """
        start_time = time.time()
        outcome = BuildOutcome()
        self.config.out_dir.mkdir(parents=True, exist_ok=True)
        self.logger.info(
            f"Build start: profile={self.config.profile.name} "
            f"out={self.config.out_dir}"
        )

        try:
            if provision:
                provisioner = Provisioner(self.config, self.runner)
                try:
                    with logfire.span("build.provision"):
                        provisioner.run()
                finally:
                    outcome.steps.extend(provisioner.results)

            binary = self.locate_binary(outcome)
            if binary is None:
                self.logger.error(
                    f"Headless binary not found under {self.config.out_dir}; "
                    f"check {self.config.out_dir / 'playwright-install.log'}"
                )
            else:
                self.inspect_and_copy(binary, outcome)

            make_tree_world_accessible(self.config.out_dir)

            if zip_path is not None:
                self.package(outcome, zip_path, publish)

        except PrerequisiteMissing as e:
            self.logger.error(f"❌ {e}")
            outcome.steps.append(
                StepResult(name="prerequisites", status=StepStatus.FATAL, detail=str(e))
            )
            outcome.exit_code = e.exit_code

        elapsed_ms = int((time.time() - start_time) * 1000)
        metrics.build_duration_ms.record(elapsed_ms)
        self.logger.info(
            f"Build finished in {elapsed_ms}ms with exit code {outcome.exit_code}",
            extra={"recovered_steps": outcome.recovered_steps},
        )
        return outcome
