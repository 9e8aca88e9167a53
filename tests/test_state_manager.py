from __future__ import annotations

import json
from pathlib import Path

import pytest

from constitution_os.contracts.params import EngineParams
from constitution_os.contracts.state import AgentState
from constitution_os.state.derive import derive_band, derive_capabilities, restrictions_from_thresholds, utc_day
from constitution_os.state.manager import StateManager

THRESHOLDS = {"warning": 0.7, "restricted": 0.5, "quarantine": 0.3, "ban": 0.1}


# ---------------------------------------------------------------------------
# derivation helpers
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "score,band",
    [(0.05, "ban"), (0.1, "ban"), (0.25, "quarantine"), (0.45, "restricted"), (0.6, "warning"), (0.9, "nominal")],
)
def test_derive_band_table(score, band):
    assert derive_band(score, THRESHOLDS) == band


def test_derive_band_ignores_missing_or_garbage_thresholds():
    assert derive_band(0.05, {"warning": 0.7, "ban": "n/a"}) == "warning"
    assert derive_band(0.05, None) == "nominal"


def test_restriction_flags_are_independent():
    r = restrictions_from_thresholds(0.25, THRESHOLDS)
    assert (r.warning, r.restricted, r.quarantine, r.ban) == (True, True, True, False)
    assert r.active == ["warning", "restricted", "quarantine"]
    assert r.downgraded is False

    none = restrictions_from_thresholds(0.9, THRESHOLDS)
    assert none.active == []


def test_utc_day():
    assert utc_day("2026-03-01T23:30:00-02:00") == "2026-03-02"
    assert utc_day("2026-03-01T10:00:00Z") == "2026-03-01"
    assert len(utc_day(None)) == 10


def test_capabilities_fall_back_field_by_field(params: EngineParams):
    caps = derive_capabilities("warning", params, level_declared="A2")
    assert caps["sign_mode_A2A3"] == "allowlist_only"
    assert caps["rmz_proposal_bond_multiplier"] == 1.5
    assert caps["spend_multiplier"] == 1
    assert caps["can_vote_typeII_III_A2A3"] is True
    assert caps["sign_mode"] == "allowlist_only"


def test_capabilities_for_band_without_policy_use_nominal(params: EngineParams):
    caps = derive_capabilities("restricted", params, level_declared="A2")
    assert caps["sign_mode_A2A3"] == "any"
    assert caps["can_propose_rfc"] is True


def test_capabilities_hard_defaults_without_params():
    caps = derive_capabilities("nominal", None)
    assert caps == {
        "band": "nominal",
        "level_declared": "A0",
        "level_effective": "A0",
        "can_vote_typeII_III_A2A3": True,
        "can_propose_rfc_A2A3": True,
        "sign_mode_A2A3": "any",
        "spend_multiplier": 1,
        "rmz_proposal_bond_multiplier": 1,
        "can_request_promotion_A3": True,
        "can_hold_A3": True,
        "can_vote_typeII_III": True,
        "can_propose_rfc": True,
        "sign_mode": "any",
    }


def test_gated_aliases_only_bind_a2_a3(params: EngineParams):
    a2 = derive_capabilities("quarantine", params, level_declared="A2")
    assert a2["can_propose_rfc"] is False
    assert a2["can_vote_typeII_III"] is False

    a1 = derive_capabilities("quarantine", params, level_declared="A1")
    assert a1["can_propose_rfc"] is True
    assert a1["can_vote_typeII_III"] is True


def test_ban_denies_signing_even_for_a0(params: EngineParams):
    assert derive_capabilities("ban", params, level_declared="A0")["sign_mode"] == "deny"
    assert derive_capabilities("warning", params, level_declared="A0")["sign_mode"] == "any"


# ---------------------------------------------------------------------------
# registry operations
# ---------------------------------------------------------------------------


def test_load_state_creates_registry_and_journal(manager: StateManager, state_dir: Path):
    doc = manager.load_state()
    assert doc["version"] == "1.0.0"
    assert doc["agents"] == {}
    assert (state_dir / "agent_registry.json").exists()
    assert (state_dir / "state_log.jsonl").read_text(encoding="utf-8") == ""


def test_get_agent_missing(manager: StateManager):
    assert manager.get_agent("agent:nobody") is None
    assert manager.get_agent("") is None


def test_upsert_agent_merges_and_returns_copy(manager: StateManager):
    created = manager.upsert_agent("agent:alpha", {"agent_level": "A2", "team": "ops"})
    assert isinstance(created, AgentState)
    assert created.alignment_score == 1
    assert created.agent_level == "A2"

    updated = manager.upsert_agent("agent:alpha", {"alignment_score": 0.8})
    assert updated.agent_level == "A2"
    assert updated.alignment_score == 0.8
    assert updated.model_extra == {"team": "ops"}

    fetched = manager.get_agent("agent:alpha")
    fetched.restrictions.active.append("tampered")
    assert manager.get_agent("agent:alpha").restrictions.active == []


def test_upsert_agent_requires_id(manager: StateManager):
    with pytest.raises(ValueError):
        manager.upsert_agent("", {})


def test_append_log_writes_one_line_per_entry(manager: StateManager, state_dir: Path):
    manager.append_log({"kind": "note", "n": 1})
    manager.append_log({"kind": "note", "n": 2})
    lines = (state_dir / "state_log.jsonl").read_text(encoding="utf-8").splitlines()
    assert [json.loads(line)["n"] for line in lines] == [1, 2]


def test_save_state_stamps_updated_at(manager: StateManager):
    doc = manager.load_state()
    doc["updated_at"] = "old"
    saved = manager.save_state(doc)
    assert saved["updated_at"] != "old"
    assert manager.load_state()["updated_at"] == saved["updated_at"]


# ---------------------------------------------------------------------------
# apply_decision
# ---------------------------------------------------------------------------


def test_apply_decision_on_new_agent(manager, make_event, make_decision, state_dir: Path):
    event = make_event("agent:alpha", level="a1", context={"tx": {"amount": 40}})
    result = manager.apply_decision(event, make_decision(delta=-0.2, audit_hash="h1", event_id=event["event_id"]))

    assert result.agent_id == "agent:alpha"
    assert result.alignment == {"before": 1.0, "delta": -0.2, "after": pytest.approx(0.8)}
    assert result.band == "nominal"
    assert result.prev_audit_hash is None
    assert result.last_audit_hash == "h1"
    assert result.spend_daily.model_dump() == {"day_utc": "2026-03-01", "total": 40.0, "count": 1, "limit": 100.0}

    stored = manager.get_agent("agent:alpha")
    assert stored.agent_level == "A1"
    assert stored.band == "nominal"
    assert stored.last_event_id == event["event_id"]
    assert stored.last_verdict == "PASS"
    assert stored.capabilities["level_declared"] == "A1"

    rows = [json.loads(line) for line in (state_dir / "state_log.jsonl").read_text(encoding="utf-8").splitlines()]
    assert len(rows) == 1
    assert rows[0]["score_before"] == 1.0
    assert rows[0]["audit_hash"] == "h1"
    assert rows[0]["restrictions_active"] == []
    assert set(rows[0]) == {
        "ts",
        "event_id",
        "decision_id",
        "agent_id",
        "verdict",
        "score_before",
        "score_delta",
        "score_after",
        "band",
        "capabilities",
        "restrictions_active",
        "consecutive_fails",
        "spend_daily",
        "prev_audit_hash",
        "audit_hash",
    }


def test_audit_chain_continuity(manager, make_event, make_decision):
    first = manager.apply_decision(make_event(), make_decision(audit_hash="aaa"))
    second = manager.apply_decision(make_event(), make_decision(audit_hash="bbb"))
    assert second.prev_audit_hash == first.last_audit_hash == "aaa"
    assert second.last_audit_hash == "bbb"


def test_daily_spend_accumulates_then_resets(manager, make_event, make_decision):
    day1 = "2026-03-01T08:00:00Z"
    r1 = manager.apply_decision(make_event(timestamp=day1, context={"tx": {"amount": 10}}), make_decision())
    r2 = manager.apply_decision(make_event(timestamp=day1, context={"tx": {"amount": "5.5"}}), make_decision())
    r3 = manager.apply_decision(make_event(timestamp=day1, context={"note": "no tx"}), make_decision())
    assert (r1.spend_daily.total, r1.spend_daily.count) == (10, 1)
    assert (r2.spend_daily.total, r2.spend_daily.count) == (15.5, 2)
    assert (r3.spend_daily.total, r3.spend_daily.count) == (15.5, 2)

    r4 = manager.apply_decision(
        make_event(timestamp="2026-03-02T00:00:01Z", context={"tx": {"amount": 1}}), make_decision()
    )
    assert r4.spend_daily.day_utc == "2026-03-02"
    assert (r4.spend_daily.total, r4.spend_daily.count) == (1, 1)


def test_spend_limit_follows_level_template(manager, make_event, make_decision):
    r = manager.apply_decision(make_event(level="A2"), make_decision())
    assert r.spend_daily.limit == 1000
    # no template for A3: the previous limit is kept
    r = manager.apply_decision(make_event(level="A3"), make_decision())
    assert r.spend_daily.limit == 1000


def test_stored_level_used_when_event_has_none(manager, make_event, make_decision):
    manager.upsert_agent("agent:alpha", {"agent_level": "A2"})
    r = manager.apply_decision(make_event(level=None), make_decision())
    assert r.capabilities["level_declared"] == "A2"
    assert r.spend_daily.limit == 1000


def test_score_is_always_clamped(manager, make_event, make_decision):
    for delta in (-5, 3, -0.4, float("nan"), None):
        r = manager.apply_decision(make_event(), make_decision(delta=delta))
        assert 0 <= r.alignment["after"] <= 1
    assert manager.get_agent("agent:alpha").alignment_score == pytest.approx(0.6)


def test_unreadable_delta_is_zero(manager, make_event, make_decision):
    for delta in ("abc", [0.5], {"d": -1}, True):
        r = manager.apply_decision(make_event(), make_decision(delta=delta))
        assert r.alignment == {"before": 1.0, "delta": 0.0, "after": 1.0}
    assert manager.get_agent("agent:alpha").alignment_score == 1.0


def test_consecutive_fails(manager, make_event, make_decision):
    assert manager.apply_decision(make_event(), make_decision(verdict="ENFORCE")).consecutive_fails == 1
    assert manager.apply_decision(make_event(), make_decision(verdict="ENFORCE")).consecutive_fails == 2
    assert manager.apply_decision(make_event(), make_decision(verdict="WARN")).consecutive_fails == 0


def test_a3_downgraded_outside_nominal(manager, make_event, make_decision):
    r = manager.apply_decision(make_event(level="A3"), make_decision(delta=-0.35))
    assert r.band == "warning"
    assert r.restrictions.downgraded is True
    assert r.restrictions.active == ["warning", "downgraded"]
    assert r.capabilities["level_declared"] == "A3"
    assert r.capabilities["level_effective"] == "A2"
    assert manager.get_agent("agent:alpha").agent_level_effective == "A2"

    # recovery to nominal restores the declared level
    r = manager.apply_decision(make_event(level="A3"), make_decision(delta=0.5))
    assert r.band == "nominal"
    assert r.restrictions.downgraded is False
    assert r.capabilities["level_effective"] == "A3"


def test_end_to_end_core_hlp_fail_bans_agent(manager, make_event, make_decision, params):
    from constitution_os.scorer import score_alignment

    results = [{"article_id": "HLP-1", "result": "FAIL", "severity_band": "core_hlp", "weight": 1}]
    score = score_alignment(results, 1, params)
    decision = make_decision(delta=score.delta, verdict="ENFORCE", results=results)

    r = manager.apply_decision(make_event(level="A2"), decision)
    assert r.alignment == {"before": 1.0, "delta": -1.0, "after": 0.0}
    assert r.band == "ban"
    assert "ban" in r.restrictions.active
    assert r.capabilities["sign_mode"] == "deny"


def test_apply_decision_requires_both_arguments(manager, make_event, make_decision):
    with pytest.raises(ValueError):
        manager.apply_decision(None, make_decision())
    with pytest.raises(ValueError):
        manager.apply_decision(make_event(), {})


def test_unknown_actor_defaults(manager, make_decision):
    event = {"event_id": "e-anon", "event_type": "x", "timestamp": "2026-03-01T00:00:00Z"}
    r = manager.apply_decision(event, make_decision())
    assert r.agent_id == "agent:unknown"
    assert r.capabilities["level_declared"] == "A0"


def test_manager_accepts_params_mapping(state_dir, make_event, make_decision):
    mgr = StateManager(state_dir, params={"alignment_score_thresholds": THRESHOLDS})
    r = mgr.apply_decision(make_event(), make_decision(delta=-0.95))
    assert r.band == "ban"
