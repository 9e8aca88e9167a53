#!/usr/bin/env python3
from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import List, Optional

from pydantic import ValidationError

from constitution_os.config import Settings, load_articles, load_params
from constitution_os.contracts.errors import ConstitutionError
from constitution_os.contracts.models import Event
from constitution_os.enforcer import EnforcementOutcome, enforce
from constitution_os.logging_config import configure_logging
from constitution_os.scorer import finite_number
from constitution_os.state.manager import StateManager

MAX_EVIDENCE_ROWS = 8


def eprint(*args: object) -> None:
    print(*args, file=sys.stderr)


def _fmt(value: object) -> str:
    if value is None:
        return "n/a"
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def render_report(outcome: EnforcementOutcome, source: str) -> List[str]:
    decision = outcome.decision
    overall = "PASS" if decision.verdict == "PASS" else "FAIL"
    alignment = decision.alignment

    if outcome.transition is not None:
        band = outcome.transition.band
        capabilities = outcome.transition.capabilities
        active = outcome.transition.restrictions.active
        fails = outcome.transition.consecutive_fails
        prev_hash = outcome.transition.prev_audit_hash
        last_hash = outcome.transition.last_audit_hash
    else:
        agent = outcome.agent
        band = (agent.band if agent is not None else None) or "nominal"
        capabilities = (agent.capabilities if agent is not None else None) or {}
        active = agent.restrictions.active if agent is not None else []
        fails = agent.consecutive_fails if agent is not None else 0
        prev_hash = agent.audit.prev_audit_hash if agent is not None else None
        last_hash = agent.audit.last_audit_hash if agent is not None else None

    lines = [
        "CONSTITUTION-COMPLIANCE",
        f"EVENT_FILE: {source}",
        f"DECISION_ID: {decision.decision_id}",
        f"EVENT_ID: {decision.event_id}",
        f"OVERALL: {overall}",
        f"VERDICT: {decision.verdict}",
        "ENFORCEMENT: mode={} severity={} actions={}".format(
            decision.enforcement.mode or "log",
            decision.enforcement.severity,
            ",".join(decision.enforcement.actions),
        ),
        "ALIGNMENT: before={:.4f} delta={:.4f} after={:.4f}".format(
            finite_number(alignment.before) or 0.0,
            finite_number(alignment.delta) or 0.0,
            finite_number(alignment.after) or 0.0,
        ),
        f"BAND: {band}",
        "CAPABILITIES: propose={} vote_typeII_III={} sign={}".format(
            _fmt(capabilities.get("can_propose_rfc")),
            _fmt(capabilities.get("can_vote_typeII_III")),
            _fmt(capabilities.get("sign_mode")),
        ),
        f"RMZ_BOND_MULTIPLIER: {_fmt(capabilities.get('rmz_proposal_bond_multiplier'))}",
        "STATE: restrictions={} consecutive_fails={}".format(",".join(active) if active else "none", fails),
    ]
    if prev_hash or last_hash:
        lines.append(f"AUDIT_CHAIN: prev={prev_hash or 'null'} current={last_hash or 'null'}")

    audit_file = str(outcome.audit.audit_file) if outcome.audit is not None else "null"
    lines.append(f"AUDIT: hash={decision.audit_hash or 'null'} file={audit_file}")

    lines.append("EVIDENCE:")
    rows = [r for r in decision.results if r.result.value != "PASS"][:MAX_EVIDENCE_ROWS]
    if not rows:
        lines.append("- none")
    for r in rows:
        precedence = finite_number(r.precedence) or 0.0
        lines.append(f"- {r.article_id} [{r.result.value}] precedence={precedence:g} band={r.severity_band}")
    return lines


def main(argv: Optional[List[str]] = None) -> int:
    settings = Settings.from_env()

    ap = argparse.ArgumentParser(description="Evaluate one canonical event against the constitution articles.")
    ap.add_argument("event", help="canonical event JSON file")
    ap.add_argument("--articles", default="config/articles.yaml")
    ap.add_argument("--params", default=str(settings.params_path))
    ap.add_argument("--state-dir", default=str(settings.state_dir))
    ap.add_argument("--audit-dir", default=str(settings.audit_dir))
    ap.add_argument("--log-level", default="WARNING")
    ap.add_argument("--log-file", default=None)
    args = ap.parse_args(argv)

    configure_logging(args.log_level, args.log_file)

    event_path = Path(args.event)
    try:
        event = Event.model_validate(json.loads(event_path.read_text(encoding="utf-8")))
    except (OSError, json.JSONDecodeError, ValidationError) as e:
        eprint(f"FAIL-CLOSED: unreadable event {event_path}: {e}")
        return 2

    try:
        params = load_params(args.params)
        articles = load_articles(args.articles)
        manager = StateManager(
            args.state_dir,
            params=params,
            lock_retries=settings.lock_retries,
            lock_wait_ms=settings.lock_wait_ms,
        )
        outcome = enforce(event, articles, manager=manager, audit_dir=args.audit_dir, params=params)
    except ConstitutionError as e:
        eprint(f"FAIL-CLOSED: {e}")
        return 2

    for line in render_report(outcome, str(event_path)):
        print(line)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
