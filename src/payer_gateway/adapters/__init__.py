"""Protocol adapters, selected by the partner's protocol tag."""

from ..config import PartnerConfig
from ..enums import Protocol
from ..exceptions import ConfigurationError
from .base import ProtocolAdapter
from .rest import RESTAdapter
from .sftp import SFTPAdapter
from .soap import SOAPAdapter

ADAPTERS: dict[Protocol, type[ProtocolAdapter]] = {
    Protocol.REST: RESTAdapter,
    Protocol.SOAP: SOAPAdapter,
    Protocol.SFTP: SFTPAdapter,
}


def create_adapter(config: PartnerConfig) -> ProtocolAdapter:
    """Build the adapter for a partner's configured protocol."""
    try:
        adapter_cls = ADAPTERS[config.protocol]
    except KeyError:
        raise ConfigurationError(
            f"Unsupported protocol {config.protocol!r}",
            details={"partner_id": config.partner_id},
        )
    return adapter_cls(config)


__all__ = [
    "ADAPTERS",
    "ProtocolAdapter",
    "RESTAdapter",
    "SFTPAdapter",
    "SOAPAdapter",
    "create_adapter",
]
