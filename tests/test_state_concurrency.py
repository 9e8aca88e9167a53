from __future__ import annotations

import json
import multiprocessing
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import pytest

from constitution_os.state.manager import StateManager

WRITERS = 8
DELTA = -0.125


def _assert_serialized(state_dir: Path, befores, agent_id: str) -> None:
    assert sorted(befores) == [1.0 + DELTA * k for k in range(WRITERS)][::-1]
    assert len(set(befores)) == WRITERS

    final = StateManager(state_dir).get_agent(agent_id)
    assert final.alignment_score == 0.0

    rows = [json.loads(line) for line in (state_dir / "state_log.jsonl").read_text(encoding="utf-8").splitlines()]
    assert len(rows) == WRITERS
    # journal order is the serialization order: each row chains to the previous one
    for prev, row in zip(rows, rows[1:]):
        assert row["prev_audit_hash"] == prev["audit_hash"]
        assert row["score_before"] == prev["score_after"]


def test_concurrent_writers_never_share_a_before_score(state_dir: Path, params, make_event, make_decision):
    events = [make_event("agent:shared") for _ in range(WRITERS)]
    decisions = [make_decision(delta=DELTA, audit_hash=f"h{i}") for i in range(WRITERS)]

    def run(i: int):
        # one manager per writer, same directory
        mgr = StateManager(state_dir, params=params, lock_retries=5000, lock_wait_ms=2)
        return mgr.apply_decision(events[i], decisions[i])

    with ThreadPoolExecutor(max_workers=WRITERS) as pool:
        results = list(pool.map(run, range(WRITERS)))

    _assert_serialized(state_dir, [r.alignment["before"] for r in results], "agent:shared")


def _apply_in_child(args) -> float:
    state_dir, index = args
    mgr = StateManager(state_dir, lock_retries=5000, lock_wait_ms=2)
    event = {
        "event_id": f"evt-p{index}",
        "event_type": "action.performed",
        "timestamp": "2026-03-01T12:00:00Z",
        "actor": {"agent_id": "agent:procs", "agent_level": "A1"},
    }
    decision = {
        "decision_id": f"dec-p{index}",
        "event_id": f"evt-p{index}",
        "verdict": "PASS",
        "alignment": {"delta": DELTA},
        "audit_hash": f"p{index}",
    }
    return mgr.apply_decision(event, decision).alignment["before"]


@pytest.mark.skipif("fork" not in multiprocessing.get_all_start_methods(), reason="needs fork")
def test_concurrent_processes_never_share_a_before_score(state_dir: Path):
    StateManager(state_dir).load_state()
    ctx = multiprocessing.get_context("fork")
    with ctx.Pool(processes=4) as pool:
        befores = pool.map(_apply_in_child, [(str(state_dir), i) for i in range(WRITERS)])

    _assert_serialized(state_dir, befores, "agent:procs")
