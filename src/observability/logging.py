from __future__ import annotations

import logging
import os
from typing import Optional

import logfire

SERVICE_NAME = "chromium-layer-builder"

BUILD_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def _parse_log_level(value: Optional[str]) -> Optional[int]:
    if not value:
        return None
    level = value.strip().upper()
    mapping = {
        "CRITICAL": logging.CRITICAL,
        "ERROR": logging.ERROR,
        "WARNING": logging.WARNING,
        "WARN": logging.WARNING,
        "INFO": logging.INFO,
        "DEBUG": logging.DEBUG,
        "NOTSET": logging.NOTSET,
    }
    return mapping.get(level)


def attach_build_log(path: str) -> logging.Handler:
    """Mirror the builder's log records into a plain-text file.

    The file lands next to the other build artifacts so it ships with them.
    Attaching the same path twice is a no-op.
    """
    builder_logger = logging.getLogger(SERVICE_NAME)
    target = os.path.abspath(path)
    for handler in builder_logger.handlers:
        if (
            isinstance(handler, logging.FileHandler)
            and handler.baseFilename == target
        ):
            return handler

    os.makedirs(os.path.dirname(target), exist_ok=True)
    handler = logging.FileHandler(target, mode="w", encoding="utf-8")
    handler.setFormatter(logging.Formatter(BUILD_LOG_FORMAT))
    builder_logger.addHandler(handler)
    return handler


def setup_logfire(
    *, enable_console_output: bool = False, build_log: Optional[str] = None
) -> None:
    """Configure Logfire and bridge stdlib logging.

    - Configures Logfire with service name and token; nothing is sent
      unless LOGFIRE_TOKEN is present.
    - Optionally enables console output formatting (useful for interactive builds).
    - Bridges the stdlib root logger and the builder logger to Logfire.
    - Honors LOG_LEVEL if set; otherwise does not modify the root logger level.
    - Dials down noisy third-party loggers to WARNING.
    - Writes a plain-text copy of the build log when ``build_log`` is given.
    """

    console_opts = None
    if enable_console_output:
        console_opts = logfire.ConsoleOptions(
            colors="auto",
            include_timestamps=True,
            verbose=True,
        )

    logfire.configure(
        service_name=os.getenv("LOGFIRE_SERVICE_NAME", SERVICE_NAME),
        token=os.getenv("LOGFIRE_TOKEN"),
        send_to_logfire="if-token-present",
        console=console_opts if console_opts is not None else False,
    )

    try:
        handler_cls = getattr(
            logfire, "LogfireLoggingHandler"
        )  # type: ignore[attr-defined]
    except AttributeError:
        logging.getLogger(__name__).warning(
            "LogfireLoggingHandler unavailable; stdlib logs will not be bridged"
        )
    else:
        root_logger = logging.getLogger()
        if not any(isinstance(h, handler_cls) for h in root_logger.handlers):
            root_logger.addHandler(handler_cls())

        # Powertools loggers do not propagate to the root logger.
        builder_logger = logging.getLogger(SERVICE_NAME)
        if not any(isinstance(h, handler_cls) for h in builder_logger.handlers):
            builder_logger.addHandler(handler_cls())

    desired_level = _parse_log_level(os.getenv("LOG_LEVEL"))
    if desired_level is not None:
        logging.getLogger().setLevel(desired_level)
        logging.getLogger(SERVICE_NAME).setLevel(desired_level)

    if build_log:
        attach_build_log(build_log)

    logging.getLogger("botocore").setLevel(logging.WARNING)
    logging.getLogger("boto3").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
