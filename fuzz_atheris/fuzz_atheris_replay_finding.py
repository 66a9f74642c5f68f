#!/usr/bin/env python3
"""Replay a fuzzer finding artifact to confirm reproducibility.

Reads a finding ops file (written by a fuzzer's write_finding_artifact),
replays the sequence against the cluster named by PACHD_ADDRESS with the
same wipe bracketing the fuzzer uses, and reports whether the finding
reproduces WITHOUT Atheris instrumentation.

The matching *_meta.json decides whether the sequence is a plain PFS case
or an extract/restore oracle case; without metadata, sequences containing
oracle operations are replayed as oracle cases.

Usage:
    PACHD_ADDRESS=localhost:30650 python fuzz_atheris/fuzz_atheris_replay_finding.py \\
        .fuzz_atheris_corpus/pfs/findings/finding_p123_0001_ops.json
    PACHD_ADDRESS=localhost:30650 python fuzz_atheris/fuzz_atheris_replay_finding.py \\
        .fuzz_atheris_corpus/extract_restore/findings/  # replay all

Exit codes:
    0 - No findings reproduced (or no files given)
    1 - At least one finding reproduced (real bug confirmed)
"""

from __future__ import annotations

import json
import logging
import pathlib
import sys
from typing import TYPE_CHECKING

from pfsfuzz.catalog import ExtractRestore, UpdatePipeline, WriteInput, ops_from_json
from pfsfuzz.client import connect
from pfsfuzz.config import HarnessConfig
from pfsfuzz.errors import ConfigurationError, HarnessFinding, OracleMismatchError
from pfsfuzz.harness import run_case, run_oracle_case

if TYPE_CHECKING:
    from pfsfuzz.catalog import Operation
    from pfsfuzz.service import VersionedFileService


def _is_oracle(ops: list[Operation], target: str | None) -> bool:
    if target is not None:
        return target == "extract_restore"
    # ExtractRestore also appears in PFS sequences; only the setup ops are decisive.
    if any(isinstance(op, (WriteInput, UpdatePipeline)) for op in ops):
        return True
    return bool(ops) and all(isinstance(op, ExtractRestore) for op in ops)


def replay_ops(
    service: VersionedFileService,
    ops: list[Operation],
    label: str,
    *,
    oracle: bool,
    config: HarnessConfig,
) -> bool:
    """Replay one sequence, return True if a finding reproduces."""
    runner = run_oracle_case if oracle else run_case
    try:
        report = runner(service, ops, config=config)
    except HarnessFinding as e:
        print(f"  [{label}] [CONFIRMED] {type(e).__name__}: {e}")
        if isinstance(e, OracleMismatchError):
            print(f"    Phase:    {e.context.phase}")
            print(f"    Key:      {e.context.key}")
            print(f"    Expected: {e.context.expected!r}")
            print(f"    Actual:   {e.context.actual!r}")
        return True

    print(f"  [{label}] Not reproduced ({report.executed} steps, "
          f"{len(report.tolerated)} tolerated error(s))")
    return False


def replay_file(
    service: VersionedFileService,
    path: pathlib.Path,
    config: HarnessConfig,
) -> bool:
    """Replay a single finding ops file."""
    ops = ops_from_json(path.read_text(encoding="utf-8"))
    target: str | None = None

    meta_path = path.with_name(path.name.replace("_ops.json", "_meta.json"))
    if meta_path.exists():
        try:
            meta = json.loads(meta_path.read_text(encoding="utf-8"))
            target = meta.get("target")
            print(f"  Metadata: target={target}, "
                  f"iteration={meta.get('iteration')}, "
                  f"finding={meta.get('finding_type')}")
        except (json.JSONDecodeError, OSError):
            pass

    oracle = _is_oracle(ops, target)
    print(f"  Replaying {len(ops)} operation(s) as {'oracle' if oracle else 'PFS'} case")
    return replay_ops(service, ops, path.name, oracle=oracle, config=config)


def main() -> int:
    """Entry point."""
    if len(sys.argv) < 2:
        print("Usage: python fuzz_atheris/fuzz_atheris_replay_finding.py "
              "<finding_ops.json | findings_dir/>")
        return 0

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )

    try:
        config = HarnessConfig.from_env()
    except ConfigurationError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1

    target = pathlib.Path(sys.argv[1])
    if target.is_dir():
        files = sorted(target.glob("*_ops.json"))
        if not files:
            print(f"No *_ops.json files found in {target}")
            return 0
    elif target.is_file():
        files = [target]
    else:
        print(f"Path not found: {target}", file=sys.stderr)
        return 1

    service = connect(config)
    any_reproduced = False

    print(f"Replaying {len(files)} finding(s) against {config.address}")
    print()
    for ops_file in files:
        if replay_file(service, ops_file, config):
            any_reproduced = True
        print()

    if any_reproduced:
        print("[RESULT] At least one finding REPRODUCED without Atheris (real bug)")
        return 1

    print("[RESULT] No findings reproduced without Atheris")
    print("         Possible causes: cluster state leaking between cases,")
    print("         or non-deterministic behavior during the original fuzzing run.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
