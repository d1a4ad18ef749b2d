"""
Configuration Module
====================

Frozen settings for the credential subsystem, loaded once per process.

Each section is a frozen dataclass validated on construction. Any field
listed in ``_OVERRIDES`` can be set from the environment as
``BALLOTVAULT_<SECTION>__<FIELD>``; names that look like they hold a
secret are never read from the environment.
"""

from __future__ import annotations

import os
import platform
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Final, Optional


_SENSITIVE_WORDS: Final[tuple[str, ...]] = (
    "password", "secret", "token", "credential", "private", "salt", "digest",
)

_LOG_LEVELS: Final[tuple[str, ...]] = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

DATABASE_FILENAME: Final[str] = "ballotvault.db"


def _looks_sensitive(name: str) -> bool:
    lowered = name.lower()
    return any(word in lowered for word in _SENSITIVE_WORDS)


def _platform_dirs() -> tuple[Path, Path]:
    """Return the (data, log) directories conventional for this OS."""
    home = Path.home()
    system = platform.system()

    if system == "Windows":
        local = Path(os.environ.get("LOCALAPPDATA", home / "AppData" / "Local")) / "BallotVault"
        return local, local / "Logs"
    if system == "Darwin":
        return home / "Library" / "Application Support" / "BallotVault", home / "Library" / "Logs" / "BallotVault"

    data_home = Path(os.environ.get("XDG_DATA_HOME", home / ".local" / "share"))
    state_home = Path(os.environ.get("XDG_STATE_HOME", home / ".local" / "state"))
    return data_home / "BallotVault", state_home / "BallotVault" / "logs"


def _require(condition: bool, message: str) -> None:
    if not condition:
        raise ValueError(message)


@dataclass(frozen=True, slots=True)
class PathConfig:
    """Where the database, logs and legacy-file backups live."""

    data_dir: Path = field(default_factory=lambda: _platform_dirs()[0])
    log_dir: Path = field(default_factory=lambda: _platform_dirs()[1])
    backup_dir: Optional[Path] = None

    def __post_init__(self) -> None:
        for label, path in (("data_dir", self.data_dir), ("log_dir", self.log_dir), ("backup_dir", self.backup_dir)):
            _require(path is None or path.is_absolute(), f"{label} must be absolute, got {path}")

    @property
    def database_path(self) -> Path:
        """The single SQLite file holding accounts, sessions and both logs."""
        return self.data_dir / DATABASE_FILENAME

    @property
    def legacy_backup_dir(self) -> Path:
        return self.backup_dir or self.data_dir / "backups"


@dataclass(frozen=True, slots=True)
class SecurityConfig:
    """Hashing cost, lockout policy, session lifetime and cache sizing."""

    hash_iterations: int = 10_000
    salt_length: int = 32  # bytes

    max_login_attempts: int = 5
    lockout_duration_seconds: int = 900

    session_timeout_seconds: int = 1800

    account_cache_size: int = 256
    account_cache_ttl_seconds: float = 30.0

    db_timeout_seconds: float = 5.0

    audit_retention_days: int = 365
    sweep_interval_seconds: float = 60.0

    def __post_init__(self) -> None:
        _require(self.hash_iterations >= 1, "hash_iterations must be at least 1")
        _require(self.salt_length >= 16, "salt_length must be at least 16 bytes")
        _require(self.max_login_attempts >= 1, "max_login_attempts must be at least 1")
        _require(self.lockout_duration_seconds > 0, "lockout_duration_seconds must be positive")
        _require(self.session_timeout_seconds > 0, "session_timeout_seconds must be positive")
        _require(self.account_cache_size >= 0, "account_cache_size cannot be negative")
        _require(self.db_timeout_seconds > 0, "db_timeout_seconds must be positive")
        _require(self.audit_retention_days >= 1, "audit_retention_days must be at least 1")
        _require(self.sweep_interval_seconds > 0, "sweep_interval_seconds must be positive")


@dataclass(frozen=True, slots=True)
class LoggingConfig:
    level: str = "INFO"
    max_file_size_bytes: int = 10 * 1024 * 1024
    backup_count: int = 5
    format: str = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
    enable_console: bool = True
    enable_file: bool = True
    enable_json: bool = False

    def __post_init__(self) -> None:
        _require(self.level.upper() in _LOG_LEVELS, f"Unknown log level {self.level!r}")


@dataclass(frozen=True, slots=True)
class AppConfig:
    version: str = "0.1.0"

    # Exposes the unauthenticated forgot-password route of the HTTP gateway
    allow_self_service_reset: bool = False


def _as_bool(raw: str) -> bool:
    return raw.strip().lower() in ("1", "true", "yes", "on")


# section -> (dataclass, {field: converter})
_OVERRIDES: Final[dict[str, tuple[type, dict[str, Callable[[str], Any]]]]] = {
    "paths": (PathConfig, {
        "data_dir": Path,
        "log_dir": Path,
        "backup_dir": Path,
    }),
    "security": (SecurityConfig, {
        "hash_iterations": int,
        "max_login_attempts": int,
        "lockout_duration_seconds": int,
        "session_timeout_seconds": int,
        "account_cache_size": int,
        "account_cache_ttl_seconds": float,
        "db_timeout_seconds": float,
        "audit_retention_days": int,
        "sweep_interval_seconds": float,
    }),
    "logging": (LoggingConfig, {
        "level": str,
        "enable_console": _as_bool,
        "enable_file": _as_bool,
        "enable_json": _as_bool,
    }),
    "app": (AppConfig, {
        "allow_self_service_reset": _as_bool,
    }),
}


class BallotVaultConfig:
    """
    The four configuration sections bundled into one read-only object.

    Usage:
        config = BallotVaultConfig.load()
        config.paths.database_path
        config.security.max_login_attempts

    ``load()`` applies environment overrides such as
    ``BALLOTVAULT_SECURITY__LOCKOUT_DURATION_SECONDS=600``.
    """

    __slots__ = ("paths", "security", "logging", "app")

    _instance: Optional[BallotVaultConfig] = None

    def __init__(
        self,
        paths: Optional[PathConfig] = None,
        security: Optional[SecurityConfig] = None,
        logging: Optional[LoggingConfig] = None,
        app: Optional[AppConfig] = None,
    ) -> None:
        object.__setattr__(self, "paths", paths or PathConfig())
        object.__setattr__(self, "security", security or SecurityConfig())
        object.__setattr__(self, "logging", logging or LoggingConfig())
        object.__setattr__(self, "app", app or AppConfig())

    @classmethod
    def load(cls, env_prefix: str = "BALLOTVAULT") -> BallotVaultConfig:
        """
        Build a configuration from defaults plus environment overrides.

        Raises:
            ValueError: If an override does not convert or fails validation
        """
        raw = cls._read_environment(env_prefix)
        sections: dict[str, Any] = {}

        for section, (factory, converters) in _OVERRIDES.items():
            kwargs = {
                name: convert(raw[f"{section}.{name}"])
                for name, convert in converters.items()
                if f"{section}.{name}" in raw
            }
            if kwargs:
                sections[section] = factory(**kwargs)

        return cls(**sections)

    @staticmethod
    def _read_environment(prefix: str) -> dict[str, str]:
        """Map ``PREFIX_SECTION__FIELD`` variables to ``section.field`` keys."""
        lead = f"{prefix.upper()}_"
        found: dict[str, str] = {}

        for name, value in os.environ.items():
            if not name.startswith(lead):
                continue
            key = name[len(lead):].lower().replace("__", ".")
            if not _looks_sensitive(key):
                found[key] = value

        return found

    @classmethod
    def get_instance(cls) -> BallotVaultConfig:
        if cls._instance is None:
            cls._instance = cls.load()
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """Forget the process-wide instance (tests only)."""
        cls._instance = None

    def __setattr__(self, name: str, value: Any) -> None:
        raise AttributeError(f"{type(self).__name__} is read-only")

    def __repr__(self) -> str:
        return (
            f"BallotVaultConfig(data_dir={self.paths.data_dir}, "
            f"log_level={self.logging.level}, version={self.app.version})"
        )
