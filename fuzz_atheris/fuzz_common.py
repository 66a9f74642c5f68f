"""Shared fuzzing infrastructure for Atheris-based fuzzers.

Provides common observability, metrics, seed corpus management, finding
artifacts and reporting used by all fuzz targets. Each fuzzer imports from
this module and composes target-specific state alongside BaseFuzzerState.

Not a fuzz target itself -- no FUZZ_PLUGIN header.
"""

from __future__ import annotations

import datetime
import hashlib
import heapq
import json
import os
import pathlib
import statistics
import sys
import time
from collections import deque
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Sequence

    from pfsfuzz.errors import HarnessFinding
    from pfsfuzz.executor import ExecutionReport

try:
    import psutil
except ImportError:
    psutil = None  # type: ignore[assignment]


# --- PEP 695 Type Aliases ---

type FuzzStats = dict[str, int | str | float | list[Any]]
type InterestingInput = tuple[float, str, str]  # (neg_duration_ms, outcome, input_hash)

# --- Constants ---

GC_INTERVAL = 256
"""Periodic gc.collect() interval to reclaim Atheris instrumentation cycles."""

OUTCOMES: tuple[str, ...] = ("decode_rejected", "validation_rejected", "executed", "finding")
"""Every iteration lands in exactly one of these buckets."""


# --- Process Handle (lazy singleton) ---

_process: psutil.Process | None = None


def get_process() -> psutil.Process:
    """Lazy-initialize psutil process handle."""
    global _process  # noqa: PLW0603  # pylint: disable=global-statement
    if _process is None:
        _process = psutil.Process(os.getpid())
    return _process


# --- Dependency Checks ---


def check_dependencies(dep_names: Sequence[str], dep_modules: Sequence[Any]) -> None:
    """Verify fuzzing dependencies are importable, exit with instructions if not.

    Args:
        dep_names: Human-readable names (e.g., ["psutil", "atheris"])
        dep_modules: Corresponding module objects (None if import failed)
    """
    missing = [name for name, mod in zip(dep_names, dep_modules, strict=True) if mod is None]
    if missing:
        print("-" * 80, file=sys.stderr)
        print("ERROR: Missing required dependencies for fuzzing:", file=sys.stderr)
        for dep in missing:
            print(f"  - {dep}", file=sys.stderr)
        print("", file=sys.stderr)
        print("Install with: pip install -e '.[fuzz]'", file=sys.stderr)
        print("-" * 80, file=sys.stderr)
        sys.exit(1)


# --- Base Fuzzer State ---


@dataclass
class BaseFuzzerState:
    """Common observability state shared by all fuzzers.

    Target-specific fuzzers maintain separate dataclasses for their
    custom metrics and compose them alongside this base state.
    """

    # Core stats
    iterations: int = 0
    findings: int = 0
    status: str = "incomplete"

    # Performance tracking (bounded deques)
    performance_history: deque[float] = field(
        default_factory=lambda: deque(maxlen=10000),
    )
    memory_history: deque[float] = field(
        default_factory=lambda: deque(maxlen=1000),
    )

    # Outcome buckets and per-operation coverage
    outcome_counts: dict[str, int] = field(default_factory=dict)
    op_coverage: dict[str, int] = field(default_factory=dict)
    tolerated_counts: dict[str, int] = field(default_factory=dict)
    rejection_counts: dict[str, int] = field(default_factory=dict)

    # Interesting inputs (max-heap for slowest, in-memory corpus)
    slowest_operations: list[InterestingInput] = field(default_factory=list)
    seed_corpus: dict[str, bytes] = field(default_factory=dict)

    # Memory baseline
    initial_memory_mb: float = 0.0

    # Corpus productivity
    corpus_entries_added: int = 0
    corpus_evictions: int = 0

    # Finding artifact counter
    finding_counter: int = 0

    # Per-outcome wall time (ms)
    outcome_wall_time: dict[str, float] = field(default_factory=dict)

    # Outcome-stratified corpus buckets (outcome -> {hash -> data})
    corpus_outcome_buckets: dict[str, dict[str, bytes]] = field(default_factory=dict)

    # Configuration
    checkpoint_interval: int = 100
    seed_corpus_max_size: int = 500


# --- Outcome Accounting ---


def record_rejection(state: BaseFuzzerState, outcome: str, reason: str) -> None:
    """Count a silent decode or validation rejection."""
    state.outcome_counts[outcome] = state.outcome_counts.get(outcome, 0) + 1
    key = reason[:40]
    state.rejection_counts[key] = state.rejection_counts.get(key, 0) + 1


def record_execution(state: BaseFuzzerState, report: ExecutionReport) -> None:
    """Count a completed replay, its remote calls and tolerated errors."""
    state.outcome_counts["executed"] = state.outcome_counts.get("executed", 0) + 1
    for verdict in report.outcomes:
        kind = str(verdict.op_kind)
        state.op_coverage[kind] = state.op_coverage.get(kind, 0) + 1
    for verdict in report.tolerated:
        key = f"{verdict.op_kind}_{verdict.reason}"
        state.tolerated_counts[key] = state.tolerated_counts.get(key, 0) + 1


def record_finding(state: BaseFuzzerState) -> None:
    state.outcome_counts["finding"] = state.outcome_counts.get("finding", 0) + 1
    state.findings += 1
    state.status = "finding"


# --- Slowest Operation Tracking ---


def track_slowest_operation(
    state: BaseFuzzerState,
    duration_ms: float,
    outcome: str,
    input_hash: str,
) -> None:
    """Track top 10 slowest iterations using max-heap.

    Args:
        state: Fuzzer state to update
        duration_ms: Iteration duration in milliseconds
        outcome: Outcome bucket of the iteration
        input_hash: Truncated SHA-256 hex digest of input
    """
    entry: InterestingInput = (-duration_ms, outcome, input_hash)
    if len(state.slowest_operations) < 10:
        heapq.heappush(state.slowest_operations, entry)
    elif -duration_ms < state.slowest_operations[0][0]:
        heapq.heapreplace(state.slowest_operations, entry)


# --- Seed Corpus Management ---


def track_seed_corpus(
    state: BaseFuzzerState,
    input_key: str,
    input_data: bytes,
    *,
    outcome: str,
    is_interesting: bool,
) -> None:
    """Track interesting inputs with outcome-stratified FIFO eviction.

    Each outcome bucket gets seed_corpus_max_size // len(OUTCOMES) slots, so
    inputs that reach the cluster are not crowded out by rejected ones.
    """
    if not is_interesting:
        return

    bucket = state.corpus_outcome_buckets.setdefault(outcome, {})

    if input_key in bucket:
        return

    slots_per_outcome = max(1, state.seed_corpus_max_size // len(OUTCOMES))

    if len(bucket) >= slots_per_outcome:
        oldest_key = next(iter(bucket))
        del bucket[oldest_key]
        state.corpus_evictions += 1

    bucket[input_key] = input_data
    state.corpus_entries_added += 1

    state.seed_corpus[input_key] = input_data
    if len(state.seed_corpus) > state.seed_corpus_max_size:
        oldest = next(iter(state.seed_corpus))
        del state.seed_corpus[oldest]


# --- Input Hashing ---


def hash_input(data: bytes) -> str:
    """Compute truncated SHA-256 hex digest for corpus deduplication."""
    return hashlib.sha256(data).hexdigest()[:16]


# --- Performance / Memory Tracking ---


def record_memory(state: BaseFuzzerState) -> None:
    """Sample current RSS memory usage (call every ~100 iterations)."""
    current_mb = get_process().memory_info().rss / (1024 * 1024)
    state.memory_history.append(current_mb)


def record_iteration_metrics(
    state: BaseFuzzerState,
    outcome: str,
    start_time: float,
    input_data: bytes,
    *,
    is_interesting: bool,
) -> None:
    """Record per-iteration performance and corpus metrics.

    Call in the finally block of test_one_input.

    Args:
        state: Fuzzer state to update
        outcome: Outcome bucket for this iteration
        start_time: time.perf_counter() value from iteration start
        input_data: Raw input bytes for corpus and slowest tracking
        is_interesting: Whether input qualifies for seed corpus
    """
    elapsed_ms = (time.perf_counter() - start_time) * 1000
    state.performance_history.append(elapsed_ms)
    state.outcome_wall_time[outcome] = state.outcome_wall_time.get(outcome, 0.0) + elapsed_ms

    input_hash = hash_input(input_data)
    track_slowest_operation(state, elapsed_ms, outcome, input_hash)
    track_seed_corpus(
        state, input_hash, input_data, outcome=outcome, is_interesting=is_interesting,
    )


# --- Stats Building ---


def _add_performance_stats(state: BaseFuzzerState, stats: FuzzStats) -> None:
    """Add performance percentile stats to the stats dictionary."""
    if not state.performance_history:
        return

    perf_data = list(state.performance_history)
    n = len(perf_data)
    stats["perf_mean_ms"] = round(statistics.mean(perf_data), 3)
    stats["perf_median_ms"] = round(statistics.median(perf_data), 3)
    stats["perf_min_ms"] = round(min(perf_data), 3)
    stats["perf_max_ms"] = round(max(perf_data), 3)
    if n >= 20:
        stats["perf_p95_ms"] = round(statistics.quantiles(perf_data, n=20)[18], 3)
    if n >= 100:
        stats["perf_p99_ms"] = round(statistics.quantiles(perf_data, n=100)[98], 3)


def _add_memory_stats(state: BaseFuzzerState, stats: FuzzStats) -> None:
    """Add memory tracking stats to the stats dictionary."""
    if not state.memory_history:
        return

    mem_data = list(state.memory_history)
    stats["memory_mean_mb"] = round(statistics.mean(mem_data), 2)
    stats["memory_peak_mb"] = round(max(mem_data), 2)
    stats["memory_delta_mb"] = round(max(mem_data) - state.initial_memory_mb, 2)

    if len(mem_data) >= 40:
        first_quarter = mem_data[: len(mem_data) // 4]
        last_quarter = mem_data[-(len(mem_data) // 4) :]
        growth_mb = statistics.mean(last_quarter) - statistics.mean(first_quarter)
        stats["memory_leak_detected"] = 1 if growth_mb > 10.0 else 0
        stats["memory_growth_mb"] = round(growth_mb, 2)
    else:
        stats["memory_leak_detected"] = 0
        stats["memory_growth_mb"] = 0.0


def build_base_stats_dict(state: BaseFuzzerState) -> FuzzStats:
    """Build common stats dictionary for JSON report."""
    stats: FuzzStats = {
        "status": state.status,
        "iterations": state.iterations,
        "findings": state.findings,
    }

    _add_performance_stats(state, stats)
    _add_memory_stats(state, stats)

    for outcome in OUTCOMES:
        stats[f"outcome_{outcome}"] = state.outcome_counts.get(outcome, 0)
    if state.iterations > 0:
        executed = state.outcome_counts.get("executed", 0) + state.outcome_counts.get("finding", 0)
        stats["execution_ratio"] = round(executed / state.iterations, 4)

    stats["ops_covered"] = len(state.op_coverage)
    for kind, count in sorted(state.op_coverage.items()):
        stats[f"op_{kind}"] = count

    for key, count in sorted(state.tolerated_counts.items()):
        stats[f"tolerated_{key}"] = count

    stats["rejection_types"] = len(state.rejection_counts)
    for reason, count in sorted(state.rejection_counts.items()):
        clean_key = reason.replace(" ", "_").replace(":", "")
        stats[f"rejected_{clean_key}"] = count

    corpus_total = sum(len(b) for b in state.corpus_outcome_buckets.values())
    stats["seed_corpus_size"] = corpus_total or len(state.seed_corpus)
    stats["corpus_entries_added"] = state.corpus_entries_added
    stats["corpus_evictions"] = state.corpus_evictions
    stats["corpus_retention_rate"] = round(
        len(state.seed_corpus) / max(1, state.corpus_entries_added),
        4,
    )
    stats["slowest_operations_tracked"] = len(state.slowest_operations)

    for outcome, total_ms in sorted(state.outcome_wall_time.items()):
        stats[f"wall_time_ms_{outcome}"] = round(total_ms, 1)

    return stats


# --- Finding Artifacts ---


def write_finding_artifact(
    findings_dir: pathlib.Path,
    state: BaseFuzzerState,
    *,
    target: str,
    ops_json: str,
    finding: HarnessFinding,
    extra_meta: dict[str, Any] | None = None,
) -> None:
    """Write the offending sequence and metadata for replay without Atheris.

    The ops file holds the catalog JSON of the sequence and is read back by
    fuzz_atheris_replay_finding.py. All I/O errors are suppressed to avoid
    masking the finding that triggered the write. The PID prefix keeps
    forked libFuzzer workers from colliding.
    """
    try:
        findings_dir.mkdir(parents=True, exist_ok=True)
        state.finding_counter += 1
        prefix = f"finding_p{os.getpid()}_{state.finding_counter:04d}"

        (findings_dir / f"{prefix}_ops.json").write_text(ops_json, encoding="utf-8")

        meta: dict[str, Any] = {
            "target": target,
            "iteration": state.iterations,
            "timestamp": datetime.datetime.now(tz=datetime.UTC).isoformat(),
            "finding_type": type(finding).__name__,
            "message": str(finding),
        }
        meta.update(extra_meta or {})
        (findings_dir / f"{prefix}_meta.json").write_text(
            json.dumps(meta, indent=2, sort_keys=True), encoding="utf-8",
        )
    except OSError:
        pass


# --- Reporting ---


def emit_final_report(
    state: BaseFuzzerState,
    stats: FuzzStats,
    report_dir: pathlib.Path,
    report_filename: str,
) -> None:
    """Emit crash-proof JSON report to stderr and file.

    Args:
        state: Fuzzer state (status set to "complete")
        stats: Pre-built stats dictionary
        report_dir: Directory for the JSON report file
        report_filename: Filename for the JSON report
    """
    state.status = "complete"
    report = json.dumps(stats, sort_keys=True)

    print(
        f"\n[SUMMARY-JSON-BEGIN]{report}[SUMMARY-JSON-END]",
        file=sys.stderr,
        flush=True,
    )

    try:
        report_dir.mkdir(parents=True, exist_ok=True)
        (report_dir / report_filename).write_text(report, encoding="utf-8")
    except OSError:
        pass
