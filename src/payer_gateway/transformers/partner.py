"""
Partner Transformer

Per-partner field mapping, status translation, pre-flight validation and
response normalization, layered over the format codecs.
"""

from collections.abc import Callable, Mapping
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any

from ..codecs import XMLCodec, file_extension_for, get_codec
from ..config import PartnerConfig
from ..enums import ClaimStatus, DataFormat, PartnerType
from ..exceptions import ConfigurationError, ProtocolError, ValidationError
from ..logger import get_logger
from ..models import BatchClaimResult, RemoteFile
from ..x12 import (
    ControlNumberFactory,
    SegmentBuilder,
    X12Document,
    claim_segments,
    eligibility_segments,
    parse_interchange,
    remittance_segments,
    status_segments,
)
from .aliases import (
    BATCH_RESULT_ALIASES,
    BENEFIT_ALIASES,
    CLAIM_ID_ALIASES,
    COVERAGE_ALIASES,
    ELIGIBILITY_CONTAINER_ALIASES,
    ELIGIBILITY_INDICATOR_ALIASES,
    ELIGIBILITY_STATUS_ALIASES,
    ELIGIBLE_FLAG_ALIASES,
    ELIGIBLE_FROM_ALIASES,
    ELIGIBLE_TO_ALIASES,
    ERROR_ALIASES,
    PLAN_ALIASES,
    REMITTANCE_FILE_ALIASES,
    STATUS_ALIASES,
    TRACKING_NUMBER_ALIASES,
    find_first,
    find_list,
)
from .tables import (
    DEFAULT_MAX_BATCH_SIZE,
    STATE_STATUS_TABLES,
    SYSTEM_STATUS_TABLES,
    heuristic_status,
    state_profile,
)

logger = get_logger(__name__)

CLAIM_REQUIRED_FIELDS = (
    "id",
    "client_id",
    "payer_id",
    "service_start_date",
    "service_end_date",
    "total_amount",
)

PATIENT_ID_FIELDS = ("medicaid_id", "ssn")
PROVIDER_ID_FIELDS = ("npi", "provider_number")

# operation -> (transaction set, default segment builder)
X12_TRANSACTIONS: dict[str, tuple[str, SegmentBuilder]] = {
    "submit_claim": ("837", claim_segments),
    "submit_batch": ("837", claim_segments),
    "check_claim_status": ("276", status_segments),
    "verify_eligibility": ("270", eligibility_segments),
    "download_remittance": ("835", remittance_segments),
}

HL7_MESSAGE_TYPES = {
    "submit_claim": "EHC^E01",
    "submit_batch": "EHC^E01",
    "check_claim_status": "EHC^E15",
    "verify_eligibility": "RQI^I01",
}

_BATCH_TRACKING_ALIASES = tuple(
    a for a in TRACKING_NUMBER_ALIASES if a not in CLAIM_ID_ALIASES
)
_CANONICAL_STATUSES = {status.value: status for status in ClaimStatus}
_TRUTHY = {"TRUE", "Y", "YES", "1", "ACTIVE", "ELIGIBLE"}


def _rename(obj: Any, mapping: Mapping[str, str]) -> Any:
    if isinstance(obj, Mapping):
        return {mapping.get(k, k): _rename(v, mapping) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_rename(item, mapping) for item in obj]
    return obj


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _as_date(value: Any) -> date | None:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value[:10])
        except ValueError:
            return None
    return None


def _truthy(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().upper() in _TRUTHY


def _messages(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return [m.get("message", str(m)) if isinstance(m, Mapping) else str(m) for m in value]
    if isinstance(value, Mapping):
        return [str(value.get("message", value))]
    return [str(value)]


class PartnerTransformer:
    """Maps the gateway's canonical objects onto one partner's dialect.

    Field mapping renames keys recursively through nested mappings and lists
    (canonical to partner on the way out, the reverse on the way in) and
    leaves unmapped keys alone. X12 and HL7 payloads are built by segment
    builders instead, so mapping does not apply to them.
    """

    def __init__(
        self,
        config: PartnerConfig,
        segment_builders: dict[str, tuple[str, SegmentBuilder]] | None = None,
        hl7_builders: dict[str, Callable[[Any], list[list[str]]]] | None = None,
        control_numbers: ControlNumberFactory | None = None,
    ):
        self.config = config
        self.field_map = dict(config.field_map)
        self.reverse_field_map = {v: k for k, v in self.field_map.items()}
        if len(self.reverse_field_map) != len(self.field_map):
            raise ConfigurationError(
                f"Field map for partner '{config.partner_id}' maps two fields to one name",
                details={"partner_id": config.partner_id},
            )
        self.status_table = self._build_status_table()
        self.segment_builders = {**X12_TRANSACTIONS, **(segment_builders or {})}
        self.hl7_builders = dict(hl7_builders or {})
        self.control_numbers = control_numbers or ControlNumberFactory()
        self.logger = logger.bind(partner_id=config.partner_id)

    def _build_status_table(self) -> dict[str, ClaimStatus]:
        table: dict[str, ClaimStatus] = {}
        if self.config.system:
            table.update(SYSTEM_STATUS_TABLES.get(self.config.system.strip().lower(), {}))
        if self.config.state:
            table.update(STATE_STATUS_TABLES.get(self.config.state, {}))
        table.update(self.config.status_map)
        return table

    @property
    def data_format(self) -> DataFormat:
        return self.config.data_format

    @property
    def max_batch_size(self) -> int:
        if self.config.max_batch_size is not None:
            return self.config.max_batch_size
        if self.config.state or self.config.partner_type is PartnerType.MEDICAID:
            return state_profile(self.config.state).max_batch_size
        return DEFAULT_MAX_BATCH_SIZE

    @property
    def xml_root_element(self) -> str:
        if self.config.xml_root_element:
            return self.config.xml_root_element
        if self.config.state or self.config.partner_type is PartnerType.MEDICAID:
            return state_profile(self.config.state).xml_root_element
        return "Request"

    @property
    def file_extension(self) -> str:
        return file_extension_for(self.data_format)

    @property
    def test_indicator(self) -> str:
        return "T" if self.config.test_mode else "P"

    # Field mapping

    def map_fields(self, obj: Any) -> Any:
        return _rename(obj, self.field_map)

    def unmap_fields(self, obj: Any) -> Any:
        return _rename(obj, self.reverse_field_map)

    # Wire conversion

    def to_wire(
        self, obj: Any, fmt: DataFormat | None = None, operation: str | None = None
    ) -> bytes:
        """Serialize a canonical object in the partner's dialect."""
        fmt = DataFormat(fmt or self.data_format)
        if fmt is DataFormat.X12:
            return get_codec(fmt).encode(self.x12_document(obj, operation or "submit_claim"))
        if fmt is DataFormat.HL7:
            return get_codec(fmt).encode(self.hl7_message(obj, operation or "submit_claim"))
        mapped = self.map_fields(obj)
        if fmt is DataFormat.XML:
            return XMLCodec(root_element=self.xml_root_element).encode(mapped)
        return get_codec(fmt).encode(mapped)

    def from_wire(self, body: bytes, fmt: DataFormat | None = None) -> Any:
        """Parse partner bytes back into canonical field names."""
        fmt = DataFormat(fmt or self.data_format)
        if not body or not body.strip():
            return {}
        decoded = get_codec(fmt).decode(body)
        if fmt in (DataFormat.X12, DataFormat.HL7):
            return decoded
        if fmt is DataFormat.XML and isinstance(decoded, dict) and len(decoded) == 1:
            (inner,) = decoded.values()
            decoded = inner if isinstance(inner, dict) else decoded
        return self.unmap_fields(decoded)

    def x12_document(self, payload: Any, operation: str) -> X12Document:
        if operation not in self.segment_builders:
            raise ProtocolError(
                f"No X12 segment builder registered for '{operation}'",
                details={"partner_id": self.config.partner_id, "operation": operation},
            )
        transaction_set, builder = self.segment_builders[operation]
        return X12Document(
            transaction_set=transaction_set,
            segments=builder(payload),
            sender_id=self.config.submitter.sender_id,
            receiver_id=self.config.submitter.receiver_id,
            control_number=self.control_numbers.next(),
            usage_indicator=self.test_indicator,
        )

    def hl7_message(self, payload: Any, operation: str) -> dict[str, Any]:
        if operation in self.hl7_builders:
            segments = self.hl7_builders[operation](payload)
        elif isinstance(payload, Mapping):
            segments = payload.get("segments") or []
        else:
            segments = list(payload or [])
        if segments and segments[0][0] == "MSH":
            return {"segments": segments}
        now = datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S")
        msh = [
            "MSH", "^~\\&", "PAYER_GATEWAY", self.config.submitter.sender_id,
            self.config.partner_id, self.config.submitter.receiver_id, now, "",
            HL7_MESSAGE_TYPES.get(operation, "EHC^E01"),
            str(self.control_numbers.next()), self.test_indicator, "2.5",
        ]
        return {"segments": [msh, *segments]}

    # Status translation

    def map_status(self, code: Any) -> ClaimStatus:
        """Canonical status for a wire code; never raises.

        Lookup order: partner table, canonical name, substring heuristic,
        then PENDING with a warning.
        """
        if isinstance(code, ClaimStatus):
            return code
        if _is_blank(code):
            self.logger.warning("Missing claim status, defaulting to PENDING")
            return ClaimStatus.PENDING
        key = str(code).strip().upper()
        if key in self.status_table:
            return self.status_table[key]
        canonical = _CANONICAL_STATUSES.get(key.lower())
        if canonical is not None:
            return canonical
        status = heuristic_status(key)
        if status is not None:
            return status
        self.logger.warning("Unknown claim status code, defaulting to PENDING", code=key)
        return ClaimStatus.PENDING

    # Validation

    def validate(self, obj: Any, target: str = "claim") -> None:
        if target == "claim":
            self.validate_claim(obj)
        elif target == "eligibility":
            self.validate_eligibility(obj.get("patient"), obj.get("provider"))
        elif target == "batch":
            self.validate_batch_size(obj)
        else:
            raise ValueError(f"Unknown validation target {target!r}")

    def validate_claim(self, claim: Any) -> None:
        if not isinstance(claim, Mapping):
            raise ValidationError("Claim must be a mapping", errors=["claim is not an object"])
        errors = [f"{name} is required" for name in CLAIM_REQUIRED_FIELDS if _is_blank(claim.get(name))]

        amount = claim.get("total_amount")
        if not _is_blank(amount):
            try:
                if Decimal(str(amount)) <= 0:
                    errors.append("total_amount must be greater than zero")
            except (InvalidOperation, ValueError):
                errors.append("total_amount must be numeric")

        start, end = claim.get("service_start_date"), claim.get("service_end_date")
        start_date, end_date = _as_date(start), _as_date(end)
        if not _is_blank(start) and start_date is None:
            errors.append("service_start_date is not a valid date")
        if not _is_blank(end) and end_date is None:
            errors.append("service_end_date is not a valid date")
        if start_date and end_date and end_date < start_date:
            errors.append("service_end_date precedes service_start_date")

        if errors:
            raise ValidationError(
                f"Claim {claim.get('id') or '<unknown>'} failed validation",
                errors=errors,
                details={"claim_id": claim.get("id"), "partner_id": self.config.partner_id},
            )

    def validate_eligibility(self, patient: Any, provider: Any) -> None:
        errors = []
        if not isinstance(patient, Mapping):
            errors.append("patient is required")
        elif all(_is_blank(patient.get(f)) for f in PATIENT_ID_FIELDS):
            errors.append("Either Medicaid ID or SSN is required for eligibility verification")
        if not isinstance(provider, Mapping) or all(
            _is_blank(provider.get(f)) for f in PROVIDER_ID_FIELDS
        ):
            errors.append("provider requires an NPI or provider number")
        if errors:
            raise ValidationError(
                "Eligibility request failed validation",
                errors=errors,
                details={"partner_id": self.config.partner_id},
            )

    def validate_batch_size(self, claims: list[Any]) -> None:
        if not claims:
            raise ValidationError("Batch contains no claims", errors=["claims is empty"])
        limit = self.max_batch_size
        if len(claims) > limit:
            raise ValidationError(
                f"Batch of {len(claims)} claims exceeds maximum batch size {limit}",
                errors=[f"batch size {len(claims)} exceeds {limit}"],
                details={
                    "partner_id": self.config.partner_id,
                    "batch_size": len(claims),
                    "max_batch_size": limit,
                },
            )

    # Outbound payloads

    def _envelope_fields(self) -> dict[str, Any]:
        submitter = self.config.submitter
        return {
            "submitter": {
                "sender_id": submitter.sender_id,
                "receiver_id": submitter.receiver_id,
                "name": submitter.submitter_name,
            },
            "test_indicator": self.test_indicator,
        }

    def prepare_claim(self, claim: Mapping[str, Any]) -> dict[str, Any]:
        return {**claim, **self._envelope_fields()}

    def prepare_batch(self, claims: list[Mapping[str, Any]], batch_id: str) -> dict[str, Any]:
        return {"batch_id": batch_id, "claims": [dict(c) for c in claims], **self._envelope_fields()}

    def prepare_status_query(self, tracking_number: str) -> dict[str, Any]:
        return {"tracking_number": tracking_number, **self._envelope_fields()}

    def prepare_eligibility(
        self, patient: Mapping[str, Any], provider: Mapping[str, Any]
    ) -> dict[str, Any]:
        return {
            "patient": dict(patient),
            "provider": dict(provider),
            "inquiry_date": date.today().isoformat(),
            **self._envelope_fields(),
        }

    def prepare_remittance_query(self, from_date: datetime, to_date: datetime) -> dict[str, Any]:
        return {"from_date": from_date.isoformat(), "to_date": to_date.isoformat()}

    # Inbound normalization

    def parse_claim_response(self, data: Any) -> dict[str, Any]:
        tracking = find_first(data, TRACKING_NUMBER_ALIASES)
        raw_status = find_first(data, STATUS_ALIASES)
        status = self.map_status(raw_status) if raw_status is not None else ClaimStatus.SUBMITTED
        return {
            "tracking_number": None if tracking is None else str(tracking),
            "status": status,
            "partner_status": raw_status,
            "response": data,
        }

    def parse_status_response(self, data: Any, tracking_number: str) -> dict[str, Any]:
        raw_status = find_first(data, STATUS_ALIASES)
        tracking = find_first(data, TRACKING_NUMBER_ALIASES, tracking_number)
        return {
            "tracking_number": str(tracking),
            "status": self.map_status(raw_status),
            "partner_status": raw_status,
            "response": data,
        }

    def parse_batch_response(
        self, data: Any, claims: list[Mapping[str, Any]]
    ) -> list[BatchClaimResult]:
        """One result per submitted claim, in submission order."""
        by_claim_id: dict[str, Mapping[str, Any]] = {}
        for entry in find_list(data, BATCH_RESULT_ALIASES):
            if isinstance(entry, Mapping):
                claim_id = find_first(entry, CLAIM_ID_ALIASES)
                if claim_id is not None:
                    by_claim_id[str(claim_id)] = entry

        results = []
        for claim in claims:
            claim_id = claim.get("id")
            entry = by_claim_id.get(str(claim_id))
            if entry is None:
                results.append(BatchClaimResult(claim_id=claim_id))
                continue
            raw_status = find_first(entry, STATUS_ALIASES)
            tracking = find_first(entry, _BATCH_TRACKING_ALIASES)
            results.append(
                BatchClaimResult(
                    claim_id=claim_id,
                    tracking_number=None if tracking is None else str(tracking),
                    status=ClaimStatus.ACKNOWLEDGED
                    if raw_status is None
                    else self.map_status(raw_status),
                    errors=_messages(find_first(entry, ERROR_ALIASES)),
                )
            )
        return results

    def parse_eligibility_response(self, data: Any) -> dict[str, Any]:
        container = find_first(data, ELIGIBILITY_CONTAINER_ALIASES)
        source = container if isinstance(container, Mapping) else data

        flag = find_first(source, ELIGIBLE_FLAG_ALIASES)
        indicator = find_first(source, ELIGIBILITY_INDICATOR_ALIASES)
        status = find_first(source, ELIGIBILITY_STATUS_ALIASES, "")
        if flag is not None:
            is_eligible = _truthy(flag)
        elif indicator is not None:
            is_eligible = str(indicator).strip().upper() in ("Y", "YES")
        else:
            is_eligible = str(status).strip().upper() in ("ACTIVE", "ELIGIBLE")

        return {
            "is_eligible": is_eligible,
            "status": status,
            "coverage": find_first(source, COVERAGE_ALIASES, {}),
            "eligible_from": find_first(source, ELIGIBLE_FROM_ALIASES),
            "eligible_to": find_first(source, ELIGIBLE_TO_ALIASES),
            "benefits": find_list(source, BENEFIT_ALIASES),
            "plan": find_first(source, PLAN_ALIASES),
            "response": data,
        }

    def parse_remittance_response(self, data: Any) -> dict[str, Any]:
        files = find_list(data, REMITTANCE_FILE_ALIASES)
        payments = data.get("payments", []) if isinstance(data, Mapping) else []
        return {"files": files, "file_count": len(files), "payments": payments, "response": data}

    def parse_remittance_files(self, files: list[RemoteFile]) -> dict[str, Any]:
        """Decode files fetched over SFTP, keeping the listing order."""
        parsed = []
        for remote in files:
            entry: dict[str, Any] = remote.to_dict()
            if self.data_format is DataFormat.X12:
                try:
                    entry["summary"] = parse_interchange(entry["content"])
                except ProtocolError as e:
                    self.logger.warning(
                        "Remittance file is not a valid X12 interchange",
                        filename=remote.filename,
                        error=e.message,
                    )
                    entry["error"] = e.to_dict()
            elif self.data_format in (DataFormat.JSON, DataFormat.FHIR, DataFormat.XML):
                try:
                    entry["data"] = self.from_wire(remote.content)
                except ProtocolError as e:
                    self.logger.warning(
                        "Remittance file could not be decoded",
                        filename=remote.filename,
                        error=e.message,
                    )
                    entry["error"] = e.to_dict()
            parsed.append(entry)
        return {"files": parsed, "file_count": len(parsed)}
