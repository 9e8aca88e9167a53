from __future__ import annotations

from enum import Enum


class Outcome(str, Enum):
    PASS = "PASS"
    WARN = "WARN"
    FAIL = "FAIL"


class Verdict(str, Enum):
    PASS = "PASS"
    WARN = "WARN"
    ENFORCE = "ENFORCE"


class Band(str, Enum):
    NOMINAL = "nominal"
    WARNING = "warning"
    RESTRICTED = "restricted"
    QUARANTINE = "quarantine"
    BAN = "ban"


class PredicateKind(str, Enum):
    VIOLATION_IF_TRUE = "violation_if_true"
    COMPLIANT_IF_TRUE = "compliant_if_true"


class SignMode(str, Enum):
    ANY = "any"
    ALLOWLIST_ONLY = "allowlist_only"
    DENY = "deny"


AGENT_LEVELS = ("A0", "A1", "A2", "A3")

# most-severe-first; restriction flags keep this order reversed in `active`
SEVERITY_ORDER = (Band.BAN, Band.QUARANTINE, Band.RESTRICTED, Band.WARNING)
RESTRICTION_FLAGS = ("warning", "restricted", "quarantine", "ban")
