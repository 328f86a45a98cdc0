"""
Partner reference data.

Wire status vocabularies per clearinghouse product and per Medicaid state,
the substring heuristic used when a code is absent from every table, and the
per-state request profiles.
"""

from dataclasses import dataclass

from ..enums import ClaimStatus

SYSTEM_STATUS_TABLES: dict[str, dict[str, ClaimStatus]] = {
    "change healthcare": {
        "A": ClaimStatus.ACKNOWLEDGED,
        "R": ClaimStatus.REJECTED,
        "P": ClaimStatus.PENDING,
        "PAID": ClaimStatus.PAID,
        "PARTIALPAY": ClaimStatus.PARTIAL_PAID,
        "DENIED": ClaimStatus.DENIED,
    },
    "availity": {
        "ACCEPTED": ClaimStatus.ACKNOWLEDGED,
        "REJECTED": ClaimStatus.REJECTED,
        "IN PROCESS": ClaimStatus.PENDING,
        "FINALIZED": ClaimStatus.PAID,
        "DENIED": ClaimStatus.DENIED,
    },
}

STATE_STATUS_TABLES: dict[str, dict[str, ClaimStatus]] = {
    "CA": {
        "PEND": ClaimStatus.PENDING,
        "DENY": ClaimStatus.DENIED,
        "PAID": ClaimStatus.PAID,
        "PART": ClaimStatus.PARTIAL_PAID,
        "SUSP": ClaimStatus.PENDING,
        "ACKD": ClaimStatus.ACKNOWLEDGED,
    },
    "NY": {
        "A": ClaimStatus.ACKNOWLEDGED,
        "P": ClaimStatus.PENDING,
        "D": ClaimStatus.DENIED,
        "F": ClaimStatus.PAID,
        "R": ClaimStatus.DENIED,
    },
    "TX": {
        "ACCEPTED": ClaimStatus.ACKNOWLEDGED,
        "IN PROCESS": ClaimStatus.PENDING,
        "FINALIZED": ClaimStatus.PAID,
        "DENIED": ClaimStatus.DENIED,
        "PARTIAL PAY": ClaimStatus.PARTIAL_PAID,
    },
    "FL": {
        "1": ClaimStatus.ACKNOWLEDGED,
        "2": ClaimStatus.PENDING,
        "3": ClaimStatus.PAID,
        "4": ClaimStatus.DENIED,
        "5": ClaimStatus.PARTIAL_PAID,
    },
}

# Checked in order against the upper-cased code; first substring hit wins.
STATUS_HEURISTICS: tuple[tuple[str, ClaimStatus], ...] = (
    ("REJECT", ClaimStatus.REJECTED),
    ("DENY", ClaimStatus.DENIED),
    ("DENIED", ClaimStatus.DENIED),
    ("PARTIAL", ClaimStatus.PARTIAL_PAID),
    ("PAID", ClaimStatus.PAID),
    ("PEND", ClaimStatus.PENDING),
    ("ACCEPT", ClaimStatus.ACKNOWLEDGED),
    ("ACK", ClaimStatus.ACKNOWLEDGED),
)


@dataclass(frozen=True)
class StateProfile:
    """Request conventions of one state Medicaid portal."""

    xml_root_element: str
    max_batch_size: int


DEFAULT_STATE_PROFILE = StateProfile("MedicaidRequest", 100)
DEFAULT_MAX_BATCH_SIZE = 100

STATE_PROFILES: dict[str, StateProfile] = {
    "CA": StateProfile("MediCalRequest", 100),
    "NY": StateProfile("NYMedicaidRequest", 50),
    "TX": StateProfile("TXMedicaidRequest", 100),
    "FL": StateProfile("FLMedicaidRequest", 100),
}


def state_profile(state: str | None) -> StateProfile:
    if state is None:
        return DEFAULT_STATE_PROFILE
    return STATE_PROFILES.get(state.upper(), DEFAULT_STATE_PROFILE)


def heuristic_status(code: str) -> ClaimStatus | None:
    normalized = code.upper()
    for term, status in STATUS_HEURISTICS:
        if term in normalized:
            return status
    return None
