"""
X12 EDI envelopes.

Builds and parses the ISA/GS/ST framing around transaction sets. Segment
content is pluggable: a segment builder turns a payload into body segments
for one transaction set, and the parser returns a summary (interchange
header fields, transaction sets, CLM/CLP/TRN highlights) rather than a
generic X12 tree.
"""

import itertools
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any

from .exceptions import ProtocolError

SEGMENT_TERMINATOR = "~"
ELEMENT_SEPARATOR = "*"
COMPONENT_SEPARATOR = ":"
REPETITION_SEPARATOR = "^"
INTERCHANGE_VERSION = "00501"

# transaction set id -> (functional identifier code, implementation guide)
TRANSACTION_SETS: dict[str, tuple[str, str]] = {
    "837": ("HC", "005010X222A1"),
    "276": ("HR", "005010X212"),
    "270": ("HS", "005010X279A1"),
    "835": ("HP", "005010X221A1"),
}

Segment = list[str]
SegmentBuilder = Callable[[Any], list[Segment]]


class ControlNumberFactory:
    """Thread-safe source of 9-digit interchange control numbers."""

    MAX = 999_999_999

    def __init__(self, start: int | None = None):
        if start is None:
            start = int(time.time()) % self.MAX
        self._counter = itertools.count(max(start, 1))
        self._lock = threading.Lock()

    def next(self) -> int:
        with self._lock:
            return (next(self._counter) - 1) % self.MAX + 1


@dataclass
class X12Document:
    """One interchange holding one functional group and one transaction set."""

    transaction_set: str
    segments: list[Segment]
    sender_id: str
    receiver_id: str
    control_number: int
    usage_indicator: str = "P"
    created: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    transaction_control: str = "0001"

    def render(self) -> str:
        if self.transaction_set not in TRANSACTION_SETS:
            raise ProtocolError(
                f"Unsupported X12 transaction set {self.transaction_set}",
                details={"transaction_set": self.transaction_set},
            )
        if not 0 < self.control_number <= ControlNumberFactory.MAX:
            raise ProtocolError(
                "X12 control number must fit in 9 digits",
                details={"control_number": self.control_number},
            )
        functional_id, version = TRANSACTION_SETS[self.transaction_set]
        control = f"{self.control_number:09d}"
        group_control = str(self.control_number)
        sender = self.sender_id[:15]
        receiver = self.receiver_id[:15]

        header = [
            [
                "ISA", "00", " " * 10, "00", " " * 10,
                "ZZ", sender.ljust(15), "ZZ", receiver.ljust(15),
                self.created.strftime("%y%m%d"), self.created.strftime("%H%M"),
                REPETITION_SEPARATOR, INTERCHANGE_VERSION, control,
                "0", self.usage_indicator, COMPONENT_SEPARATOR,
            ],
            [
                "GS", functional_id, sender, receiver,
                self.created.strftime("%Y%m%d"), self.created.strftime("%H%M"),
                group_control, "X", version,
            ],
            ["ST", self.transaction_set, self.transaction_control, version],
        ]
        # SE01 counts ST through SE inclusive
        trailer = [
            ["SE", str(len(self.segments) + 2), self.transaction_control],
            ["GE", "1", group_control],
            ["IEA", "1", control],
        ]
        return "".join(
            ELEMENT_SEPARATOR.join("" if e is None else str(e) for e in segment)
            + SEGMENT_TERMINATOR
            for segment in header + self.segments + trailer
        )


def format_amount(value: Any) -> str:
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError) as e:
        raise ProtocolError(f"Invalid monetary amount {value!r}") from e
    return f"{amount.quantize(Decimal('0.01'))}"


def format_date(value: Any) -> str:
    if isinstance(value, datetime):
        return value.strftime("%Y%m%d")
    if isinstance(value, date):
        return value.strftime("%Y%m%d")
    return str(value).replace("-", "")[:8]


def claim_segments(payload: Any) -> list[Segment]:
    """CLM (and service date) segments for each claim in a payload."""
    claims = payload.get("claims", [payload]) if isinstance(payload, dict) else payload
    segments: list[Segment] = []
    for claim in claims:
        patient_control = claim.get("patient_control_number") or claim.get("id")
        segments.append(["CLM", str(patient_control), format_amount(claim.get("total_amount"))])
        start, end = claim.get("service_start_date"), claim.get("service_end_date")
        if start and end:
            segments.append(["DTP", "472", "RD8", f"{format_date(start)}-{format_date(end)}"])
    return segments


def status_segments(payload: Any) -> list[Segment]:
    """TRN trace segment for a claim status inquiry."""
    tracking_number = payload.get("tracking_number") if isinstance(payload, dict) else payload
    return [["TRN", "1", str(tracking_number)]]


def eligibility_segments(payload: dict[str, Any]) -> list[Segment]:
    """Subscriber and provider NM1 segments for an eligibility inquiry."""
    patient = payload.get("patient", {})
    provider = payload.get("provider", {})
    member_id = patient.get("medicaid_id") or patient.get("member_id") or patient.get("ssn", "")
    provider_id = provider.get("npi") or provider.get("provider_number", "")
    return [
        [
            "NM1", "1P", "2", provider.get("name", ""), "", "", "", "",
            "XX", str(provider_id),
        ],
        [
            "NM1", "IL", "1", patient.get("last_name", ""), patient.get("first_name", ""),
            "", "", "", "MI", str(member_id),
        ],
    ]


def remittance_segments(payload: dict[str, Any]) -> list[Segment]:
    """DTM range segment requesting remittance between two dates."""
    return [
        [
            "DTM", "582", "", "", "", "RD8",
            f"{format_date(payload.get('from_date'))}-{format_date(payload.get('to_date'))}",
        ]
    ]


def split_segments(text: str) -> list[Segment]:
    return [
        segment.strip().split(ELEMENT_SEPARATOR)
        for segment in text.split(SEGMENT_TERMINATOR)
        if segment.strip()
    ]


def _element(segment: Segment, index: int) -> str | None:
    return segment[index].strip() if len(segment) > index else None


def parse_interchange(text: str) -> dict[str, Any]:
    """Summarize an interchange.

    Raises ProtocolError when the ISA header is missing, the IEA trailer
    disagrees with it, or a transaction set is unterminated or miscounted.
    """
    segments = split_segments(text)
    if not segments or segments[0][0] != "ISA":
        raise ProtocolError("X12 interchange must begin with an ISA segment")
    isa = segments[0]
    if len(isa) < 16:
        raise ProtocolError(
            "ISA segment is truncated", details={"elements": len(isa) - 1}
        )

    summary: dict[str, Any] = {
        "sender_id": _element(isa, 6),
        "receiver_id": _element(isa, 8),
        "date": _element(isa, 9),
        "time": _element(isa, 10),
        "control_number": _element(isa, 13),
        "usage_indicator": _element(isa, 15),
        "transaction_sets": [],
        "claims": [],
        "payments": [],
        "trace_numbers": [],
        "segment_count": len(segments),
    }

    iea = next((s for s in segments if s[0] == "IEA"), None)
    if iea is None:
        raise ProtocolError("X12 interchange is missing its IEA trailer")
    if _element(iea, 2) != summary["control_number"]:
        raise ProtocolError(
            "IEA control number does not match ISA",
            details={"isa": summary["control_number"], "iea": _element(iea, 2)},
        )

    open_set: tuple[str, str, int] | None = None
    for position, segment in enumerate(segments):
        tag = segment[0]
        if tag == "ST":
            open_set = (_element(segment, 1), _element(segment, 2), position)
        elif tag == "SE":
            if open_set is None:
                raise ProtocolError("SE segment without a matching ST")
            set_id, control, start = open_set
            count = position - start + 1
            if _element(segment, 2) != control or _element(segment, 1) != str(count):
                raise ProtocolError(
                    "SE trailer does not match its transaction set",
                    details={"transaction_set": set_id, "expected_count": count},
                )
            summary["transaction_sets"].append(
                {"id": set_id, "control_number": control, "segment_count": count}
            )
            open_set = None
        elif tag == "CLM":
            summary["claims"].append(
                {
                    "patient_control_number": _element(segment, 1),
                    "total_charges": _element(segment, 2),
                }
            )
        elif tag == "CLP":
            summary["payments"].append(
                {
                    "patient_control_number": _element(segment, 1),
                    "status_code": _element(segment, 2),
                    "total_charges": _element(segment, 3),
                    "paid_amount": _element(segment, 4),
                }
            )
        elif tag == "TRN":
            summary["trace_numbers"].append(_element(segment, 2))
        elif tag == "STC":
            status = _element(segment, 1) or ""
            summary.setdefault("status", status.split(COMPONENT_SEPARATOR)[0])

    if open_set is not None:
        raise ProtocolError(
            "Transaction set is missing its SE trailer",
            details={"transaction_set": open_set[0]},
        )
    return summary
