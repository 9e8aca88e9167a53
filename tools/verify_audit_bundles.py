#!/usr/bin/env python3
"""
Offline verification of enforcement evidence.

Checks, fail-closed:
1) every <audit_dir>/*.json bundle parses without duplicate keys, its stored
   audit_hash equals the recomputed hash, and its file name is
   <decision_id>--<audit_hash[:12]>.json
2) per agent, each journal row's prev_audit_hash equals the audit_hash of the
   agent's previous row (null for the agent's first row)
3) every non-null journal audit_hash has a bundle in the audit directory
"""

from __future__ import annotations

import argparse
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from constitution_os.audit import bundle_filename, compute_bundle_hash
from constitution_os.canonical_json import CanonicalJSONError, loads_strict_no_duplicates


@dataclass
class VerifyReport:
    bundles: int = 0
    journal_rows: int = 0
    errors: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


def verify_bundles(audit_dir: Path, report: VerifyReport) -> Dict[str, Path]:
    known: Dict[str, Path] = {}
    if not audit_dir.exists():
        return known

    for path in sorted(audit_dir.glob("*.json")):
        report.bundles += 1
        try:
            bundle = loads_strict_no_duplicates(path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, CanonicalJSONError) as e:
            report.errors.append(f"{path.name}: unreadable bundle ({e})")
            continue
        if not isinstance(bundle, dict) or not isinstance(bundle.get("audit_hash"), str):
            report.errors.append(f"{path.name}: missing audit_hash")
            continue

        stored = bundle["audit_hash"]
        try:
            recomputed = compute_bundle_hash(bundle)
        except CanonicalJSONError as e:
            report.errors.append(f"{path.name}: payload not canonicalizable ({e})")
            continue
        if recomputed != stored:
            report.errors.append(f"{path.name}: audit_hash mismatch (stored={stored} recomputed={recomputed})")
            continue

        decision = bundle.get("decision") or {}
        expected_name = bundle_filename(str(decision.get("decision_id")), stored)
        if path.name != expected_name:
            report.errors.append(f"{path.name}: file name does not match bundle (expected {expected_name})")
            continue
        known[stored] = path
    return known


def _read_journal(path: Path) -> List[Dict[str, Any]]:
    rows: List[Dict[str, Any]] = []
    for idx, line in enumerate(path.read_text(encoding="utf-8").splitlines(), start=1):
        raw = line.strip()
        if not raw:
            continue
        try:
            row = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ValueError(f"journal line {idx}: invalid json ({e})") from e
        if not isinstance(row, dict):
            raise ValueError(f"journal line {idx}: row must be an object")
        rows.append(row)
    return rows


def verify_journal(journal: Path, known: Optional[Dict[str, Path]], report: VerifyReport) -> None:
    if not journal.exists():
        return
    try:
        rows = _read_journal(journal)
    except ValueError as e:
        report.errors.append(str(e))
        return

    last_link: Dict[str, Optional[str]] = {}
    for idx, row in enumerate(rows, start=1):
        report.journal_rows += 1
        agent_id = str(row.get("agent_id"))
        prev = row.get("prev_audit_hash")
        current = row.get("audit_hash")

        expected_prev = last_link.get(agent_id)
        if prev != expected_prev:
            report.errors.append(
                f"journal row {idx} ({agent_id}): broken chain link (prev={prev} expected={expected_prev})"
            )
        if known is not None and current is not None and current not in known:
            report.errors.append(f"journal row {idx} ({agent_id}): no bundle for audit_hash={current}")
        last_link[agent_id] = current


def main(argv: Optional[List[str]] = None) -> int:
    ap = argparse.ArgumentParser(description="Verify audit bundles and the per-agent audit chain.")
    ap.add_argument("--audit-dir", required=True)
    ap.add_argument("--journal", default=None, help="state_log.jsonl to check chain continuity")
    args = ap.parse_args(argv)

    report = VerifyReport()
    known = verify_bundles(Path(args.audit_dir), report)
    if args.journal:
        verify_journal(Path(args.journal), known, report)

    if not report.ok:
        print(f"FAIL-CLOSED: {len(report.errors)} problem(s)")
        for err in report.errors:
            print(f"- {err}")
        return 1

    print(f"OK: bundles={report.bundles} journal_rows={report.journal_rows}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
