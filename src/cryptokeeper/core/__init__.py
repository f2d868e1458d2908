# Core Module - Shared Utilities
#
# - Audit logging
# - Configuration

from .audit_log import (
    AuditLogger,
    EventSeverity,
    EventType,
    get_audit_logger,
    log_vault_event,
    set_audit_logger,
)
from .config import (
    KeeperConfig,
    default_vault_dir,
    get_config,
    load_config,
    save_config,
    set_config,
)

__all__ = [
    # Audit Logging
    "AuditLogger",
    "EventType",
    "EventSeverity",
    "get_audit_logger",
    "set_audit_logger",
    "log_vault_event",
    # Configuration
    "KeeperConfig",
    "default_vault_dir",
    "get_config",
    "set_config",
    "load_config",
    "save_config",
]
