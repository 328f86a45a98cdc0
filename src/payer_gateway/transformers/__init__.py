"""Partner field mapping, status translation and validation."""

from .aliases import find_first, find_list
from .partner import PartnerTransformer
from .tables import STATE_PROFILES, STATE_STATUS_TABLES, SYSTEM_STATUS_TABLES, StateProfile

__all__ = [
    "PartnerTransformer",
    "STATE_PROFILES",
    "STATE_STATUS_TABLES",
    "SYSTEM_STATUS_TABLES",
    "StateProfile",
    "find_first",
    "find_list",
]
