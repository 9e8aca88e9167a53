from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Union

from ..contracts.params import AlignmentThresholds, EngineParams
from ..contracts.state import Restrictions
from ..contracts.status import RESTRICTION_FLAGS, SEVERITY_ORDER, Band, SignMode
from ..scorer import finite_number

Thresholds = Union[AlignmentThresholds, Mapping, None]

_SIGN_MODES = {mode.value for mode in SignMode}


def utc_day(timestamp: Union[datetime, str, None]) -> str:
    """YYYY-MM-DD of the timestamp in UTC; now when absent."""
    if timestamp is None or timestamp == "":
        moment = datetime.now(timezone.utc)
    elif isinstance(timestamp, datetime):
        moment = timestamp
    else:
        moment = datetime.fromisoformat(str(timestamp).strip().replace("Z", "+00:00"))
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).date().isoformat()


def _threshold(thresholds: Thresholds, name: str) -> Optional[float]:
    if thresholds is None:
        return None
    if isinstance(thresholds, Mapping):
        return finite_number(thresholds.get(name))
    return finite_number(getattr(thresholds, name, None))


def restrictions_from_thresholds(score: float, thresholds: Thresholds) -> Restrictions:
    """Independent flags: each is set when score <= its threshold; no threshold, no flag."""
    flags: Dict[str, bool] = {}
    for name in RESTRICTION_FLAGS:
        limit = _threshold(thresholds, name)
        flags[name] = limit is not None and score <= limit
    return Restrictions(**flags, active=[name for name in RESTRICTION_FLAGS if flags[name]])


def derive_band(score: float, thresholds: Thresholds) -> str:
    """Most severe band whose threshold the score is at or below; nominal otherwise."""
    for band in SEVERITY_ORDER:
        limit = _threshold(thresholds, band.value)
        if limit is not None and score <= limit:
            return band.value
    return Band.NOMINAL.value


def _bool_or(value: Any, fallback: bool) -> bool:
    return value if isinstance(value, bool) else fallback


def _sign_mode_or(value: Any, fallback: str) -> str:
    return value if value in _SIGN_MODES else fallback


def _number_or(value: Any, fallback: float) -> float:
    out = finite_number(value)
    return out if out is not None else fallback


def derive_capabilities(
    band: str,
    params: Optional[EngineParams],
    *,
    level_declared: Optional[str] = None,
    level_effective: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Capability set for a band. Each field is read from the band's policy,
    then from the nominal policy, then from the hard default.
    """
    policy = params.capability_policy if params is not None else {}
    nominal = policy.get(Band.NOMINAL.value) or {}
    band_cfg = policy.get(band)
    if band_cfg is None:
        band_cfg = nominal

    declared = str(level_declared or "A0").upper()
    effective = str(level_effective or declared).upper()
    is_a2a3 = effective in ("A2", "A3")

    can_vote = _bool_or(band_cfg.get("can_vote_typeII_III_A2A3"), _bool_or(nominal.get("can_vote_typeII_III_A2A3"), True))
    can_propose = _bool_or(band_cfg.get("can_propose_rfc_A2A3"), _bool_or(nominal.get("can_propose_rfc_A2A3"), True))
    sign_mode_a2a3 = _sign_mode_or(
        band_cfg.get("sign_mode_A2A3"),
        _sign_mode_or(nominal.get("sign_mode_A2A3"), SignMode.ANY.value),
    )
    band_sign_mode = SignMode.DENY.value if band == Band.BAN.value else sign_mode_a2a3

    return {
        "band": band,
        "level_declared": declared,
        "level_effective": effective,
        "can_vote_typeII_III_A2A3": can_vote,
        "can_propose_rfc_A2A3": can_propose,
        "sign_mode_A2A3": band_sign_mode,
        "spend_multiplier": _number_or(band_cfg.get("spend_multiplier"), _number_or(nominal.get("spend_multiplier"), 1)),
        "rmz_proposal_bond_multiplier": _number_or(
            band_cfg.get("rmz_proposal_bond_multiplier"),
            _number_or(nominal.get("rmz_proposal_bond_multiplier"), 1),
        ),
        "can_request_promotion_A3": _bool_or(
            band_cfg.get("can_request_promotion_A3"),
            _bool_or(nominal.get("can_request_promotion_A3"), True),
        ),
        "can_hold_A3": _bool_or(band_cfg.get("can_hold_A3"), _bool_or(nominal.get("can_hold_A3"), True)),
        "can_vote_typeII_III": can_vote if is_a2a3 else True,
        "can_propose_rfc": can_propose if is_a2a3 else True,
        "sign_mode": SignMode.ANY.value if effective == "A0" and band != Band.BAN.value else band_sign_mode,
    }
