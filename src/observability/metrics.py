"""Centralized Logfire metric instruments.

Creating instruments once here avoids duplicate "instrument already created"
warnings that occur when instruments are instantiated across multiple modules.
Import and use these instruments wherever metrics are recorded.
"""

from __future__ import annotations

import logfire

# Dependency closure metrics
libraries_referenced = logfire.metric_counter("libraries_referenced")
libraries_copied = logfire.metric_counter("libraries_copied")
libraries_missing = logfire.metric_counter("libraries_missing")
symlinks_materialized = logfire.metric_counter("symlinks_materialized")

# External command metrics
step_failures = logfire.metric_counter("step_failures")
step_duration_ms = logfire.metric_histogram("step_duration_ms", unit="ms")

build_duration_ms = logfire.metric_histogram("build_duration_ms", unit="ms")
