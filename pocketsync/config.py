# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
PocketSync Configuration - Immutable configuration data structures.

All configuration is frozen (immutable) after creation to prevent
accidental modification while a backup or restore is running.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import List
import re

# OWASP 2023 recommendation for PBKDF2-HMAC-SHA256
DEFAULT_KDF_ITERATIONS = 600_000

# Lower bound accepted by validation (tests use small counts)
MIN_KDF_ITERATIONS = 1_000

# Matches the remote store's 1GB payload limit
DEFAULT_MAX_BLOB_BYTES = 1024 * 1024 * 1024


def _validate_profile_id(profile_id: str) -> bool:
    """Profile ids are short slugs: letters, digits, '-', '_' and '.'."""
    if not profile_id or len(profile_id) > 64:
        return False
    return re.match(r"^[A-Za-z0-9][A-Za-z0-9._-]*$", profile_id) is not None


@dataclass(frozen=True)
class SyncConfig:
    """
    Immutable configuration for the backup/restore engine.

    One config describes one local profile.
    """

    # Local profile this config belongs to (one metadata record per profile)
    profile_id: str = "primary"

    # Directory holding sync metadata, the local store and safety snapshots
    data_dir: Path = field(default_factory=lambda: Path("./pocketsync_data"))

    # PBKDF2 iteration count
    kdf_iterations: int = DEFAULT_KDF_ITERATIONS

    # Upper bound for any single transport call
    network_timeout_seconds: float = 30.0

    # Compress payloads with zstd before encryption
    compress_backups: bool = True

    # zstd compression level (1-22)
    compression_level: int = 10

    # Pre-restore safety snapshots to keep locally
    keep_safety_snapshots: int = 3

    # Refuse to upload blobs larger than this
    max_blob_bytes: int = DEFAULT_MAX_BLOB_BYTES

    def __post_init__(self) -> None:
        """Validate configuration after creation."""
        errors: List[str] = []

        if not _validate_profile_id(self.profile_id):
            errors.append(f"Invalid profile_id: {self.profile_id!r}")

        if self.kdf_iterations < MIN_KDF_ITERATIONS:
            errors.append(
                f"kdf_iterations must be >= {MIN_KDF_ITERATIONS}, got {self.kdf_iterations}"
            )

        if self.network_timeout_seconds <= 0:
            errors.append(
                f"network_timeout_seconds must be > 0, got {self.network_timeout_seconds}"
            )

        if not 1 <= self.compression_level <= 22:
            errors.append(
                f"compression_level must be between 1 and 22, got {self.compression_level}"
            )

        if self.keep_safety_snapshots < 1:
            errors.append(
                f"keep_safety_snapshots must be >= 1, got {self.keep_safety_snapshots}"
            )

        if self.max_blob_bytes < 1:
            errors.append(f"max_blob_bytes must be >= 1, got {self.max_blob_bytes}")

        # Raise all errors at once
        if errors:
            from pocketsync.exceptions import ConfigurationError

            raise ConfigurationError(
                "Configuration validation failed",
                details={"errors": errors},
            )

    @property
    def metadata_db_path(self) -> Path:
        return self.data_dir / "sync_metadata.db"

    @property
    def store_db_path(self) -> Path:
        return self.data_dir / "local_store.db"

    @property
    def snapshot_dir(self) -> Path:
        return self.data_dir / "safety_snapshots"

    def with_updates(self, **kwargs) -> "SyncConfig":
        """
        Create a new config with updated values.

        Since the config is frozen, this creates a new instance.
        """
        from dataclasses import asdict

        current = asdict(self)
        current.update(kwargs)
        return SyncConfig(**current)


def create_config(
    profile_id: str = "primary",
    data_dir: Path | str = Path("./pocketsync_data"),
    **overrides,
) -> SyncConfig:
    """
    Create a SyncConfig and make sure its data directory exists.

    Args:
        profile_id: Local profile identifier
        data_dir: Directory for metadata, local store and snapshots
        **overrides: Any other SyncConfig field

    Returns:
        Validated, frozen SyncConfig
    """
    config = SyncConfig(profile_id=profile_id, data_dir=Path(data_dir), **overrides)
    config.data_dir.mkdir(parents=True, exist_ok=True)
    return config
