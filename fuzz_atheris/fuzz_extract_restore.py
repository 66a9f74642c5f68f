#!/usr/bin/env python3
# FUZZ_PLUGIN_HEADER_START
# FUZZ_PLUGIN: extract_restore - Extract/wipe/restore differential oracle
# Intentional: This header is intentionally placed for dynamic plugin discovery.
# CRITICAL: DO NOT REMOVE THIS HEADER - REQUIRED FOR PLUGIN DISCOVERY
# FUZZ_PLUGIN_HEADER_END
"""Extract/Restore Oracle Fuzzer (Atheris).

Builds a fixed pipeline fixture (input repo feeding a copy pipeline), then
replays a decoded sequence of input writes, pipeline updates and
extract/restore round trips. Every round trip compares masked snapshots of
commits, jobs and file contents taken before the extract and after the
restore; any difference beyond what the extract flags excluded is a finding.

Operations:
- write_input: Write the next counter value to the input file, optionally flushing
- update_pipeline: Swap the transform between copy and corrupt, optionally reprocessing
- extract_restore: Extract, wipe, restore, fsck and compare

Finding Artifacts:
Offending sequences are written as catalog JSON with metadata (including
the oracle phase and snapshot key for mismatches) to
.fuzz_atheris_corpus/extract_restore/findings/.

Metrics:
- Round trips by extract flag combination
- Corrupting updates and reprocess requests
- Outcome distribution and per-operation remote call coverage
- Performance profiling and RSS memory (psutil)

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
from dataclasses import dataclass, field
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
class OracleMetrics:
    """Domain-specific metrics for the extract/restore oracle fuzzer."""

    round_trips: int = 0
    flag_combinations: dict[str, int] = field(default_factory=dict)
    input_writes: int = 0
    corrupt_updates: int = 0
    reprocess_updates: int = 0
    mismatches: int = 0


# --- Global State ---

_state = BaseFuzzerState(seed_corpus_max_size=300)
_domain = OracleMetrics()
_service: VersionedFileService | None = None


# --- Reporting ---

_REPORT_DIR = pathlib.Path(".fuzz_atheris_corpus") / "extract_restore"
_FINDINGS_DIR = _REPORT_DIR / "findings"


def _build_stats_dict() -> dict[str, Any]:
    """Build complete stats dictionary including domain metrics."""
    stats = build_base_stats_dict(_state)

    stats["round_trips"] = _domain.round_trips
    stats["input_writes"] = _domain.input_writes
    stats["corrupt_updates"] = _domain.corrupt_updates
    stats["reprocess_updates"] = _domain.reprocess_updates
    stats["oracle_mismatches"] = _domain.mismatches
    for flags, count in sorted(_domain.flag_combinations.items()):
        stats[f"round_trip_{flags}"] = count

    return stats


def _emit_report() -> None:
    """Emit comprehensive final report (crash-proof)."""
    stats = _build_stats_dict()
    emit_final_report(_state, stats, _REPORT_DIR, "fuzz_extract_restore_report.json")


atexit.register(_emit_report)


# --- Suppress logging and instrument imports ---
logging.getLogger("pfsfuzz").setLevel(logging.CRITICAL)

with atheris.instrument_imports(include=["pfsfuzz"]):
    from pfsfuzz.catalog import ExtractRestore, UpdatePipeline, WriteInput, ops_to_json
    from pfsfuzz.client import connect
    from pfsfuzz.config import HarnessConfig
    from pfsfuzz.decoding import decode_oracle_operations
    from pfsfuzz.errors import (
        ConfigurationError,
        DecodeError,
        HarnessFinding,
        OracleMismatchError,
        ValidationRejected,
    )
    from pfsfuzz.harness import run_oracle_case

_config: HarnessConfig | None = None


def _flag_key(op: ExtractRestore) -> str:
    flags = [
        name
        for name, on in (
            ("objects", op.no_objects),
            ("repos", op.no_repos),
            ("pipelines", op.no_pipelines),
        )
        if on
    ]
    return "no_" + "_".join(flags) if flags else "full"


def _count_sequence(ops: list[Operation]) -> None:
    """Tally what a replayed sequence exercised."""
    for op in ops:
        match op:
            case ExtractRestore():
                _domain.round_trips += 1
                key = _flag_key(op)
                _domain.flag_combinations[key] = _domain.flag_combinations.get(key, 0) + 1
            case WriteInput():
                _domain.input_writes += 1
            case UpdatePipeline(corrupt=corrupt, reprocess=reprocess):
                _domain.corrupt_updates += int(corrupt)
                _domain.reprocess_updates += int(reprocess)


def _finding_meta(finding: HarnessFinding, ops: list[Operation]) -> dict[str, Any]:
    meta: dict[str, Any] = {"operations": len(ops)}
    if isinstance(finding, OracleMismatchError):
        meta["oracle_phase"] = finding.context.phase
        meta["oracle_key"] = finding.context.key
        meta["oracle_expected"] = finding.context.expected
        meta["oracle_actual"] = finding.context.actual
        meta["oracle_flags"] = finding.context.flags
    return meta


# --- Main Entry Point ---


def test_one_input(data: bytes) -> None:
    """Atheris entry point: decode and replay one oracle sequence."""
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
        ops = decode_oracle_operations(fdp)
        outcome = "validation_rejected"

        assert _service is not None
        report = run_oracle_case(_service, ops, config=_config)
        outcome = "executed"
        _count_sequence(ops)
        record_execution(_state, report)

    except DecodeError as e:
        record_rejection(_state, outcome, f"decode_{e.reason.name}")

    except ValidationRejected as e:
        record_rejection(_state, outcome, f"precondition_{e.op.kind}")

    except HarnessFinding as e:
        outcome = "finding"
        record_finding(_state)
        if isinstance(e, OracleMismatchError):
            _domain.mismatches += 1

        print("\n" + "=" * 80, file=sys.stderr)
        print("[FINDING] EXTRACT/RESTORE DEFECT DETECTED", file=sys.stderr)
        print("=" * 80, file=sys.stderr)
        print(f"Finding Type: {type(e).__name__}", file=sys.stderr)
        print(f"Message:      {e}", file=sys.stderr)
        if isinstance(e, OracleMismatchError):
            print(f"Phase:        {e.context.phase}", file=sys.stderr)
            print(f"Key:          {e.context.key}", file=sys.stderr)
            print(f"Expected:     {e.context.expected!r}", file=sys.stderr)
            print(f"Actual:       {e.context.actual!r}", file=sys.stderr)
        print("-" * 80, file=sys.stderr)

        write_finding_artifact(
            _FINDINGS_DIR,
            _state,
            target="extract_restore",
            ops_json=ops_to_json(ops),
            finding=e,
            extra_meta=_finding_meta(e, ops),
        )
        raise

    finally:
        is_interesting = (
            outcome in ("executed", "finding")
            or (time.perf_counter() - start_time) * 1000 > 1000.0
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
    """Run the extract/restore oracle fuzzer with CLI support."""
    global _service, _config  # noqa: PLW0603  # pylint: disable=global-statement

    parser = argparse.ArgumentParser(
        description="Extract/restore differential oracle fuzzer using Atheris/libFuzzer",
        epilog="All unrecognized arguments are passed to libFuzzer.",
    )
    parser.add_argument(
        "--checkpoint-interval",
        type=int,
        default=50,
        help="Emit report every N iterations (default: 50)",
    )
    parser.add_argument(
        "--seed-corpus-size",
        type=int,
        default=300,
        help="Maximum size of in-memory seed corpus (default: 300)",
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

    # Pipeline jobs make each input slow; keep libFuzzer from flagging them.
    if not any(arg.startswith("-timeout") for arg in remaining):
        remaining.append("-timeout=600")

    sys.argv = [sys.argv[0], *remaining]

    print()
    print("=" * 80)
    print("Extract/Restore Oracle Fuzzer (Atheris)")
    print("=" * 80)
    print(f"Cluster:    {_config.address}")
    print(f"Pipeline:   {_config.pipeline_image}")
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
