#!/usr/bin/env python3
# FUZZ_PLUGIN_HEADER_START
# FUZZ_PLUGIN: pfs - Stateful PFS operation sequences against a live cluster
# Intentional: This header is intentionally placed for dynamic plugin discovery.
# CRITICAL: DO NOT REMOVE THIS HEADER - REQUIRED FOR PLUGIN DISCOVERY
# FUZZ_PLUGIN_HEADER_END
"""Stateful PFS Sequence Fuzzer (Atheris).

Decodes each input into a sequence of repo, branch, commit and file
operations, rejects sequences whose preconditions cannot hold against the
shadow state model, and replays the rest against the cluster named by
PACHD_ADDRESS. The cluster is wiped before and after every input.

Outcomes:
- decode_rejected: Input too short or malformed (silent)
- validation_rejected: Sequence with unsatisfiable preconditions (silent)
- executed: Replayed with only tolerable remote errors
- finding: Fatal remote error or fsck problem (crash)

Finding Artifacts:
When a finding is detected, the fuzzer writes the offending sequence as
catalog JSON plus metadata to .fuzz_atheris_corpus/pfs/findings/. Replay
with fuzz_atheris_replay_finding.py against any cluster, without Atheris.

Metrics:
- Outcome distribution and execution ratio
- Per-operation remote call coverage
- Tolerated error breakdown by operation and domain reason
- Performance profiling (min/mean/median/p95/p99/max)
- Real memory usage (RSS via psutil)
- Seed corpus management

Requires Python 3.13+ (uses PEP 695 type aliases).
"""

from __future__ import annotations

import argparse
import atexit
import gc
import logging
import pathlib
import sys
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from pfsfuzz.catalog import Operation
    from pfsfuzz.service import VersionedFileService

# --- Dependency Checks ---
_psutil_mod: Any = None
_atheris_mod: Any = None

try:  # noqa: SIM105 - need module ref for check_dependencies
    import psutil as _psutil_mod  # type: ignore[no-redef]
except ImportError:
    pass

try:  # noqa: SIM105 - need module ref for check_dependencies
    import atheris as _atheris_mod  # type: ignore[no-redef]
except ImportError:
    pass

from fuzz_common import (  # noqa: E402 - after dependency capture  # pylint: disable=C0413
    GC_INTERVAL,
    BaseFuzzerState,
    build_base_stats_dict,
    check_dependencies,
    emit_final_report,
    get_process,
    record_execution,
    record_finding,
    record_iteration_metrics,
    record_memory,
    record_rejection,
    write_finding_artifact,
)

check_dependencies(["psutil", "atheris"], [_psutil_mod, _atheris_mod])

import atheris  # noqa: E402  # pylint: disable=C0412,C0413

# --- Domain Metrics ---


@dataclass
class PfsMetrics:
    """Domain-specific metrics for the PFS sequence fuzzer."""

    operations_decoded: int = 0
    operations_executed: int = 0
    longest_executed: int = 0
    tolerated_errors: int = 0
    wipes: int = 0


# --- Global State ---

_state = BaseFuzzerState(seed_corpus_max_size=500)
_domain = PfsMetrics()
_service: VersionedFileService | None = None


# --- Reporting ---

_REPORT_DIR = pathlib.Path(".fuzz_atheris_corpus") / "pfs"
_FINDINGS_DIR = _REPORT_DIR / "findings"


def _build_stats_dict() -> dict[str, Any]:
    """Build complete stats dictionary including domain metrics."""
    stats = build_base_stats_dict(_state)

    stats["operations_decoded"] = _domain.operations_decoded
    stats["operations_executed"] = _domain.operations_executed
    stats["longest_executed"] = _domain.longest_executed
    stats["tolerated_errors"] = _domain.tolerated_errors
    stats["wipes"] = _domain.wipes

    return stats


def _emit_report() -> None:
    """Emit comprehensive final report (crash-proof)."""
    stats = _build_stats_dict()

    ratio = stats.get("execution_ratio", 0.0)
    if _state.iterations >= 1000 and isinstance(ratio, float) and ratio < 0.05:
        print(
            f"[WARN] Only {ratio * 100:.1f}% of inputs reached the cluster",
            file=sys.stderr,
            flush=True,
        )

    emit_final_report(_state, stats, _REPORT_DIR, "fuzz_pfs_report.json")


atexit.register(_emit_report)


# --- Suppress logging and instrument imports ---
logging.getLogger("pfsfuzz").setLevel(logging.CRITICAL)

with atheris.instrument_imports(include=["pfsfuzz"]):
    from pfsfuzz.catalog import ops_to_json
    from pfsfuzz.client import connect
    from pfsfuzz.config import HarnessConfig
    from pfsfuzz.decoding import decode_operations
    from pfsfuzz.errors import (
        ConfigurationError,
        DecodeError,
        HarnessFinding,
        ValidationRejected,
    )
    from pfsfuzz.harness import run_case

_config: HarnessConfig | None = None


# --- Main Entry Point ---


def test_one_input(data: bytes) -> None:
    """Atheris entry point: decode, validate and replay one PFS sequence."""
    if _state.iterations == 0:
        _state.initial_memory_mb = get_process().memory_info().rss / (1024 * 1024)

    _state.iterations += 1
    _state.status = "running"

    if _state.iterations % _state.checkpoint_interval == 0:
        _emit_report()

    start_time = time.perf_counter()
    fdp = atheris.FuzzedDataProvider(data)
    outcome = "decode_rejected"
    ops: list[Operation] = []

    try:
        ops = decode_operations(fdp)
        _domain.operations_decoded += len(ops)
        outcome = "validation_rejected"

        assert _service is not None
        report = run_case(_service, ops, config=_config)
        outcome = "executed"
        _domain.wipes += 2
        _domain.operations_executed += report.executed
        _domain.longest_executed = max(_domain.longest_executed, report.executed)
        _domain.tolerated_errors += len(report.tolerated)
        record_execution(_state, report)

    except DecodeError as e:
        record_rejection(_state, outcome, f"decode_{e.reason.name}")

    except ValidationRejected as e:
        record_rejection(_state, outcome, f"precondition_{e.op.kind}")

    except HarnessFinding as e:
        outcome = "finding"
        record_finding(_state)

        print("\n" + "=" * 80, file=sys.stderr)
        print("[FINDING] PFS DEFECT DETECTED", file=sys.stderr)
        print("=" * 80, file=sys.stderr)
        print(f"Finding Type: {type(e).__name__}", file=sys.stderr)
        print(f"Message:      {e}", file=sys.stderr)
        print(f"Operations:   {len(ops)}", file=sys.stderr)
        print("-" * 80, file=sys.stderr)

        write_finding_artifact(
            _FINDINGS_DIR,
            _state,
            target="pfs",
            ops_json=ops_to_json(ops),
            finding=e,
            extra_meta={"operations": len(ops)},
        )
        raise

    finally:
        is_interesting = (
            outcome in ("executed", "finding")
            or (time.perf_counter() - start_time) * 1000 > 500.0
        )
        record_iteration_metrics(
            _state, outcome, start_time, data, is_interesting=is_interesting,
        )

        # Break reference cycles from Atheris instrumentation
        if _state.iterations % GC_INTERVAL == 0:
            gc.collect()

        if _state.iterations % 100 == 0:
            record_memory(_state)


def main() -> None:
    """Run the PFS sequence fuzzer with CLI support."""
    global _service, _config  # noqa: PLW0603  # pylint: disable=global-statement

    parser = argparse.ArgumentParser(
        description="Stateful PFS sequence fuzzer using Atheris/libFuzzer",
        epilog="All unrecognized arguments are passed to libFuzzer.",
    )
    parser.add_argument(
        "--checkpoint-interval",
        type=int,
        default=100,
        help="Emit report every N iterations (default: 100)",
    )
    parser.add_argument(
        "--seed-corpus-size",
        type=int,
        default=500,
        help="Maximum size of in-memory seed corpus (default: 500)",
    )
    parser.add_argument(
        "--log-level",
        default="CRITICAL",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Log level for the pfsfuzz logger (default: CRITICAL)",
    )

    args, remaining = parser.parse_known_args()
    _state.checkpoint_interval = args.checkpoint_interval
    _state.seed_corpus_max_size = args.seed_corpus_size
    logging.basicConfig(format="%(asctime)s %(name)s %(levelname)s %(message)s")
    logging.getLogger("pfsfuzz").setLevel(args.log_level)

    try:
        _config = HarnessConfig.from_env()
    except ConfigurationError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        sys.exit(1)
    _service = connect(_config)

    sys.argv = [sys.argv[0], *remaining]

    print()
    print("=" * 80)
    print("Stateful PFS Sequence Fuzzer (Atheris)")
    print("=" * 80)
    print(f"Cluster:    {_config.address}")
    print(f"Checkpoint: Every {_state.checkpoint_interval} iterations")
    print(f"Corpus Max: {_state.seed_corpus_max_size} entries")
    print(f"GC Cycle:   Every {GC_INTERVAL} iterations")
    print("Stopping:   Press Ctrl+C (findings auto-saved)")
    print("=" * 80)
    print()

    atheris.Setup(sys.argv, test_one_input)
    atheris.Fuzz()


if __name__ == "__main__":
    main()
