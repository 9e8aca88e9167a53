from __future__ import annotations

import json
from pathlib import Path

import pytest

import tools.enforce_event as enforce_event
from constitution_os.logging_config import reset_logging

REPO_ROOT = Path(__file__).resolve().parents[2]
PARAMS = REPO_ROOT / "config" / "parameters.yaml"
ARTICLES = REPO_ROOT / "config" / "articles.yaml"


@pytest.fixture(autouse=True)
def _reset_logging():
    yield
    reset_logging()


def _event_file(tmp_path: Path, **context) -> Path:
    event = {
        "event_id": "evt-cli-1",
        "event_type": "rfc.submitted",
        "timestamp": "2026-03-01T09:00:00Z",
        "actor": {"agent_id": "agent:cli", "agent_level": "A2"},
        "context": context,
    }
    path = tmp_path / "event.json"
    path.write_text(json.dumps(event), encoding="utf-8")
    return path


def _run(tmp_path: Path, event_path: Path) -> int:
    return enforce_event.main(
        [
            str(event_path),
            "--articles",
            str(ARTICLES),
            "--params",
            str(PARAMS),
            "--state-dir",
            str(tmp_path / "state"),
            "--audit-dir",
            str(tmp_path / "audit"),
        ]
    )


def test_clean_event_report(tmp_path: Path, capsys):
    path = _event_file(tmp_path, transaction={"allowlisted": True}, rfc={"change_type": "II"})
    assert _run(tmp_path, path) == 0

    out = capsys.readouterr().out.splitlines()
    assert out[0] == "CONSTITUTION-COMPLIANCE"
    assert "OVERALL: PASS" in out
    assert "BAND: nominal" in out
    assert "CAPABILITIES: propose=true vote_typeII_III=true sign=any" in out
    assert "EVIDENCE:" in out and out[-1] == "- none"
    assert len(list((tmp_path / "audit").glob("*.json"))) == 1


def test_core_violation_report(tmp_path: Path, capsys):
    path = _event_file(tmp_path, agent={"delegates_purpose": True})
    assert _run(tmp_path, path) == 0

    out = capsys.readouterr().out
    assert "OVERALL: FAIL" in out
    assert "VERDICT: ENFORCE" in out
    assert "BAND: ban" in out
    assert "sign=deny" in out
    assert "- HLP-1/NO_PURPOSE_DELEGATION [FAIL] precedence=100 band=core_hlp" in out


def test_unreadable_event_fails_closed(tmp_path: Path, capsys):
    bad = tmp_path / "event.json"
    bad.write_text("{", encoding="utf-8")
    assert _run(tmp_path, bad) == 2
    assert "FAIL-CLOSED" in capsys.readouterr().err


def test_missing_articles_fails_closed(tmp_path: Path, capsys):
    path = _event_file(tmp_path)
    code = enforce_event.main([str(path), "--articles", str(tmp_path / "none.yaml"), "--params", str(PARAMS)])
    assert code == 2
    assert "articles file not found" in capsys.readouterr().err
