"""
Payer Integration Gateway.

A single reliable contract for exchanging claims, eligibility and remittance
data with clearinghouses, state Medicaid portals and EHR systems over REST,
SOAP and SFTP in JSON, XML, X12, HL7 or FHIR.
"""

from .config import GatewaySettings, PartnerConfig
from .enums import ClaimStatus, CircuitState, DataFormat, PartnerType, Protocol
from .exceptions import (
    CircuitOpenError,
    ConfigurationError,
    ConnectivityError,
    GatewayError,
    ProtocolError,
    RemoteError,
    UnknownOperationError,
    UnknownPartnerError,
    ValidationError,
)
from .models import BatchResponse, HealthStatus, IntegrationResponse, RequestOptions
from .orchestrator import IntegrationOrchestrator

__version__ = "0.1.0"

__all__ = [
    "BatchResponse",
    "CircuitOpenError",
    "CircuitState",
    "ClaimStatus",
    "ConfigurationError",
    "ConnectivityError",
    "DataFormat",
    "GatewayError",
    "GatewaySettings",
    "HealthStatus",
    "IntegrationOrchestrator",
    "IntegrationResponse",
    "PartnerConfig",
    "PartnerType",
    "Protocol",
    "ProtocolError",
    "RemoteError",
    "RequestOptions",
    "UnknownOperationError",
    "UnknownPartnerError",
    "ValidationError",
]
