"""
Configuration management for the payer gateway.

This module provides:
- Immutable per-partner configuration (transport, format, credentials)
- Gateway-wide defaults for circuit breakers, retries and logging
- YAML configuration files with environment variable overrides
"""

from enum import Enum
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .enums import ClaimStatus, DataFormat, PartnerType, Protocol
from .exceptions import ConfigurationError

DEFAULT_SOAP_NAMESPACE = "http://payer-gateway.local/services"


class Environment(str, Enum):
    """Supported deployment environments."""

    DEVELOPMENT = "development"
    TESTING = "testing"
    STAGING = "staging"
    PRODUCTION = "production"


class LogLevel(str, Enum):
    """Logging levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class Credentials(BaseModel):
    """Credential bundle. HTTP auth resolves Basic, then API key, then Bearer."""

    model_config = ConfigDict(frozen=True)

    username: str | None = Field(default=None, description="Basic auth or SFTP user")
    password: str | None = Field(default=None, description="Basic auth or SFTP password")
    api_key: str | None = Field(default=None, description="API key")
    api_key_header: str = Field(default="X-API-Key", description="API key header name")
    bearer_token: str | None = Field(default=None, description="Bearer token")
    private_key: str | None = Field(default=None, description="PEM private key for SFTP")
    passphrase: str | None = Field(default=None, description="Private key passphrase")


class SubmitterInfo(BaseModel):
    """Identifiers used in X12 envelopes and outbound payloads."""

    model_config = ConfigDict(frozen=True)

    sender_id: str = Field(default="SUBMITTER", description="ISA06/GS02 sender id")
    receiver_id: str = Field(default="RECEIVER", description="ISA08/GS03 receiver id")
    submitter_name: str = Field(default="", description="Submitting organisation")


class PartnerConfig(BaseModel):
    """Configuration for one external payer entity. Immutable once built."""

    model_config = ConfigDict(frozen=True)

    partner_id: str = Field(..., min_length=1, description="Partner identifier")
    name: str = Field(default="", description="Display name")
    partner_type: PartnerType = Field(default=PartnerType.CLEARINGHOUSE)
    protocol: Protocol = Field(..., description="Transport protocol")
    data_format: DataFormat = Field(default=DataFormat.JSON)
    base_url: str = Field(..., description="Base URL, or sftp://host[:port]/root")
    port: int | None = Field(default=None, description="SFTP port override")
    credentials: Credentials = Field(default_factory=Credentials)
    submitter: SubmitterInfo = Field(default_factory=SubmitterInfo)
    endpoints: dict[str, str] = Field(
        default_factory=dict, description="Operation name to endpoint path"
    )
    headers: dict[str, str] = Field(
        default_factory=dict, description="Default headers sent on every call"
    )
    max_batch_size: int | None = Field(
        default=None, gt=0, description="Largest batch accepted; state profile if unset"
    )
    test_mode: bool = Field(default=False, description="Flag traffic as test")

    # Partner dialect
    state: str | None = Field(default=None, description="Two-letter Medicaid state")
    system: str | None = Field(default=None, description="Clearinghouse product name")
    field_map: dict[str, str] = Field(
        default_factory=dict, description="Canonical field to partner field"
    )
    status_map: dict[str, ClaimStatus] = Field(
        default_factory=dict, description="Wire status overrides"
    )
    xml_root_element: str | None = Field(default=None)
    soap_namespace: str = Field(default=DEFAULT_SOAP_NAMESPACE)
    soap_prefix: str = Field(default="ns")
    soap_action_prefix: str | None = Field(default=None)

    # SFTP
    known_hosts: str | None = Field(default=None, description="known_hosts file")
    verify_host_key: bool = Field(default=True)

    # Fault isolation overrides
    failure_threshold: int | None = Field(default=None, gt=0)
    reset_timeout_seconds: float | None = Field(default=None, gt=0)
    health_endpoint: str = Field(default="health")

    @field_validator("state")
    @classmethod
    def normalize_state(cls, v):
        """States are two-letter codes, stored upper case."""
        if v is None:
            return v
        v = v.strip().upper()
        if len(v) != 2 or not v.isalpha():
            raise ValueError(f"state must be a two-letter code, got {v!r}")
        return v

    @field_validator("status_map", mode="before")
    @classmethod
    def normalize_status_keys(cls, v):
        if isinstance(v, dict):
            return {str(k).upper(): val for k, val in v.items()}
        return v

    @property
    def display_name(self) -> str:
        return self.name or self.partner_id

    def endpoint(self, operation: str, default: str | None = None) -> str:
        """Resolve the path configured for an operation name."""
        return self.endpoints.get(operation) or default or operation


class BreakerSettings(BaseModel):
    """Circuit breaker defaults."""

    failure_threshold: int = Field(default=5, gt=0, description="Failures before OPEN")
    reset_timeout_seconds: float = Field(
        default=30.0, gt=0, description="Seconds OPEN before a probe is allowed"
    )


class RetrySettings(BaseModel):
    """Retry defaults applied when a call supplies no options."""

    retry_count: int = Field(default=2, ge=0, description="Retries after first attempt")
    retry_delay_ms: int = Field(default=1000, ge=0, description="Initial backoff")
    timeout_ms: int = Field(default=30000, gt=0, description="Per-attempt timeout")


class LoggingSettings(BaseModel):
    """Logging configuration."""

    service_name: str = Field(default="payer-gateway")
    service_version: str = Field(default="0.1.0")
    level: LogLevel = Field(default=LogLevel.INFO)
    format: str = Field(default="json", description="Log format (json|console)")
    log_file: str | None = Field(default=None)


class GatewaySettings(BaseSettings):
    """Top-level gateway configuration."""

    model_config = SettingsConfigDict(
        env_prefix="PAYER_GATEWAY_",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    environment: Environment = Field(default=Environment.DEVELOPMENT)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    breaker: BreakerSettings = Field(default_factory=BreakerSettings)
    retry: RetrySettings = Field(default_factory=RetrySettings)
    partners: list[PartnerConfig] = Field(default_factory=list)

    @field_validator("partners")
    @classmethod
    def unique_partner_ids(cls, v):
        seen: set[str] = set()
        for partner in v:
            if partner.partner_id in seen:
                raise ValueError(f"duplicate partner_id {partner.partner_id!r}")
            seen.add(partner.partner_id)
        return v

    @classmethod
    def from_yaml(cls, file_path: str | Path) -> "GatewaySettings":
        """Load configuration from YAML file."""
        try:
            with open(file_path) as f:
                data = yaml.safe_load(f) or {}
            return cls(**data)
        except FileNotFoundError:
            raise ConfigurationError(f"Configuration file not found: {file_path}")
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML configuration: {e}")
        except ValidationError as e:
            raise ConfigurationError(f"Configuration validation failed: {e}")

    @classmethod
    def from_env(cls, env_prefix: str = "PAYER_GATEWAY_") -> "GatewaySettings":
        """Load configuration from environment variables."""
        try:
            return cls(_env_prefix=env_prefix)
        except ValidationError as e:
            raise ConfigurationError(
                f"Environment configuration validation failed: {e}"
            )

    def partner(self, partner_id: str) -> PartnerConfig:
        for partner in self.partners:
            if partner.partner_id == partner_id:
                return partner
        raise ConfigurationError(
            f"Partner '{partner_id}' is not configured",
            details={"partner_id": partner_id},
        )

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json")
