# CryptoKeeper - Main Package
#
# Offline, single-user vault for cryptocurrency private keys and seed
# phrases. Everything stays on this machine.

__version__ = "1.0.0"
__author__ = "CryptoKeeper Team"
__description__ = "Offline encrypted vault for crypto private keys and seed phrases"

from .core import (
    EventSeverity,
    EventType,
    KeeperConfig,
    get_audit_logger,
    get_config,
)
from .vault import EntryKind, Session, VaultError

__all__ = [
    "__version__",
    "Session",
    "EntryKind",
    "VaultError",
    "KeeperConfig",
    "get_config",
    "EventType",
    "EventSeverity",
    "get_audit_logger",
]
