"""
Payer Gateway Enums

Enumeration definitions for transport protocols, payload formats, partner
types, canonical claim statuses and breaker states.
"""

from enum import Enum


class Protocol(str, Enum):
    """Transport protocols spoken by partners."""

    REST = "rest"
    SOAP = "soap"
    SFTP = "sftp"


class DataFormat(str, Enum):
    """Payload dialects spoken by partners."""

    JSON = "json"
    XML = "xml"
    X12 = "x12"
    HL7 = "hl7"
    FHIR = "fhir"


class PartnerType(str, Enum):
    """Kinds of external payer entities."""

    CLEARINGHOUSE = "clearinghouse"
    MEDICAID = "medicaid"
    EHR = "ehr"


class ClaimStatus(str, Enum):
    """Canonical claim statuses, independent of any partner's wire codes."""

    SUBMITTED = "submitted"
    ACKNOWLEDGED = "acknowledged"
    PENDING = "pending"
    PAID = "paid"
    PARTIAL_PAID = "partial_paid"
    DENIED = "denied"
    REJECTED = "rejected"


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class IntegrationStatus(str, Enum):
    """Partner health as reported by health checks."""

    ACTIVE = "active"
    ERROR = "error"
    CIRCUIT_OPEN = "circuit_open"


class ErrorCategory(str, Enum):
    """Categories of the structured error shape."""

    VALIDATION = "validation"
    CONNECTIVITY = "connectivity"
    REMOTE = "remote"
    PROTOCOL = "protocol"
    CIRCUIT_OPEN = "circuit_open"
    CONFIGURATION = "configuration"
    INTERNAL = "internal"
