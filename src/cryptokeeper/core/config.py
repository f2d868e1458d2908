# Core - Configuration
#
# Per-user settings stored as JSON beside the vault:
#   ~/.cryptokeeper/config.json  (or $CRYPTOKEEPER_VAULT_DIR/config.json)
#
# Missing file -> defaults. Unreadable or invalid file -> ConfigError
# (never silently reset). Saved atomically with 0600 permissions.

import json
import logging
import os
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Optional

from ..vault.encryption import (
    DEFAULT_MEMORY_COST,
    DEFAULT_PARALLELISM,
    DEFAULT_TIME_COST,
    KdfParams,
)
from ..vault.errors import ConfigError, KeyDerivationError, VaultIOError
from ..vault.vault_store import atomic_write

logger = logging.getLogger(__name__)

VAULT_DIR_ENV = "CRYPTOKEEPER_VAULT_DIR"
VAULT_FILENAME = "vault.ck"
CONFIG_FILENAME = "config.json"

DEFAULT_CLIPBOARD_TIMEOUT = 10.0
MAX_CLIPBOARD_TIMEOUT = 300.0


def default_vault_dir() -> Path:
    """$CRYPTOKEEPER_VAULT_DIR, else ~/.cryptokeeper."""
    override = os.environ.get(VAULT_DIR_ENV)
    if override:
        return Path(override).expanduser()
    return Path.home() / ".cryptokeeper"


@dataclass
class KeeperConfig:
    """Validated user configuration."""
    vault_dir: Path = field(default_factory=default_vault_dir)
    clipboard_timeout: float = DEFAULT_CLIPBOARD_TIMEOUT
    kdf_memory_cost: int = DEFAULT_MEMORY_COST
    kdf_time_cost: int = DEFAULT_TIME_COST
    kdf_parallelism: int = DEFAULT_PARALLELISM

    def __post_init__(self):
        self.vault_dir = Path(self.vault_dir).expanduser()
        self.validate()

    def validate(self) -> None:
        """
        Raises:
            ConfigError: On out-of-range values
        """
        if not isinstance(self.clipboard_timeout, (int, float)) or isinstance(self.clipboard_timeout, bool):
            raise ConfigError("clipboard_timeout must be a number of seconds")
        if not 0 < self.clipboard_timeout <= MAX_CLIPBOARD_TIMEOUT:
            raise ConfigError(
                f"clipboard_timeout must be between 0 and {MAX_CLIPBOARD_TIMEOUT:g} seconds"
            )
        try:
            self.kdf_params.validate()
        except KeyDerivationError as e:
            raise ConfigError(f"Invalid KDF settings: {e}") from e

    @property
    def vault_path(self) -> Path:
        return self.vault_dir / VAULT_FILENAME

    @property
    def config_path(self) -> Path:
        return self.vault_dir / CONFIG_FILENAME

    @property
    def audit_log_dir(self) -> Path:
        return self.vault_dir / "audit_logs"

    @property
    def kdf_params(self) -> KdfParams:
        return KdfParams(
            memory_cost=self.kdf_memory_cost,
            time_cost=self.kdf_time_cost,
            parallelism=self.kdf_parallelism,
        )

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["vault_dir"] = str(self.vault_dir)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any], vault_dir: Optional[Path] = None) -> "KeeperConfig":
        if not isinstance(data, dict):
            raise ConfigError("Config file must contain a JSON object")
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            logger.warning("Ignoring unknown config keys: %s", sorted(unknown))
        values = {k: v for k, v in data.items() if k in known}
        if vault_dir is not None:
            values["vault_dir"] = vault_dir
        try:
            return cls(**values)
        except TypeError as e:
            raise ConfigError(f"Invalid config value: {e}") from e


def load_config(vault_dir: Optional[Path] = None) -> KeeperConfig:
    """
    Load config from <vault_dir>/config.json.

    The vault directory itself always comes from the argument or the
    environment, never from the file it is stored in.

    Returns:
        KeeperConfig (defaults if the file does not exist)

    Raises:
        ConfigError: If the file cannot be read or parsed
    """
    directory = Path(vault_dir) if vault_dir is not None else default_vault_dir()
    path = directory / CONFIG_FILENAME
    if not path.exists():
        return KeeperConfig(vault_dir=directory)
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        raise ConfigError(f"Cannot read {path}: {e}") from e
    if isinstance(data, dict):
        data.pop("vault_dir", None)
    return KeeperConfig.from_dict(data, vault_dir=directory)


def save_config(config: KeeperConfig) -> None:
    """Write config atomically with 0600 permissions."""
    config.validate()
    payload = config.to_dict()
    payload.pop("vault_dir")
    try:
        atomic_write(config.config_path, json.dumps(payload, indent=2).encode("utf-8"))
    except VaultIOError as e:
        raise ConfigError(f"Cannot save config: {e}") from e


# ── Singleton ────────────────────────────────────────────────────────

_instance: Optional[KeeperConfig] = None


def get_config() -> KeeperConfig:
    """Get or load the singleton KeeperConfig."""
    global _instance
    if _instance is None:
        _instance = load_config()
    return _instance


def set_config(instance: Optional[KeeperConfig]) -> None:
    """Replace the singleton (for testing and the CLI's --vault-dir)."""
    global _instance
    _instance = instance
