# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
PocketSync Models - Data structures shared across the engine.

Timestamps are timezone-aware UTC datetimes truncated to millisecond
precision, which is what the wire formats carry.
"""

import struct
from dataclasses import dataclass, field
from datetime import datetime, timedelta, UTC
from enum import Enum
from typing import Any, Dict, List

from pocketsync.exceptions import MalformedBackup, UnsupportedVersion

# Sizes fixed by the envelope format
SALT_SIZE = 16
NONCE_SIZE = 12
TAG_SIZE = 16
KEY_SIZE = 32

ENVELOPE_MAGIC = b"PSEB"
ENVELOPE_VERSION = 1

# magic | u16 version | u64 created_at_ms
_ENVELOPE_HEADER = struct.Struct(">4sHQ")
_ENVELOPE_FIXED_SIZE = _ENVELOPE_HEADER.size + SALT_SIZE + NONCE_SIZE + TAG_SIZE

_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)

# Domain tables, keyed by table name
Tables = Dict[str, List[Dict[str, Any]]]


def utc_now() -> datetime:
    """Current UTC time truncated to milliseconds."""
    now = datetime.now(UTC)
    return now.replace(microsecond=(now.microsecond // 1000) * 1000)


def to_millis(moment: datetime) -> int:
    """Convert an aware datetime to Unix epoch milliseconds."""
    return (moment - _EPOCH) // timedelta(milliseconds=1)


def from_millis(millis: int) -> datetime:
    """Convert Unix epoch milliseconds to an aware UTC datetime."""
    return _EPOCH + timedelta(milliseconds=millis)


class ProgressStage(str, Enum):
    """Pipeline stage reported in progress updates."""

    EXPORT = "export"
    ENCRYPT = "encrypt"
    UPLOAD = "upload"
    DOWNLOAD = "download"
    DECRYPT = "decrypt"
    RESTORE = "restore"


@dataclass(frozen=True)
class ProgressUpdate:
    """One progress event emitted during a pipeline run."""

    stage: ProgressStage
    percent: int  # 0..100 within the stage
    message: str


class PassphraseStrength(str, Enum):
    """Advisory strength category."""

    WEAK = "weak"
    MEDIUM = "medium"
    STRONG = "strong"


class ValidationReason(str, Enum):
    """Why a passphrase failed validation."""

    TOO_SHORT = "TooShort"
    MISMATCH = "Mismatch"


@dataclass(frozen=True)
class ValidationResult:
    """Result of validating a passphrase and its confirmation."""

    valid: bool
    error: str | None = None
    reason: ValidationReason | None = None


@dataclass(frozen=True)
class StrengthResult:
    """Advisory passphrase strength score."""

    strength: PassphraseStrength
    score: float  # 0..100
    feedback: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class BackupSnapshot:
    """Plaintext payload of a backup: every domain table plus export metadata."""

    version: int
    created_at: datetime
    tables: Tables
    schema_version: int | None = None


@dataclass(frozen=True)
class EncryptedBackup:
    """
    The unit persisted remotely.

    Salt and nonce travel alongside the ciphertext; the header fields are
    bound into the AEAD associated data so they cannot be altered unnoticed.
    """

    salt: bytes
    nonce: bytes
    ciphertext: bytes
    auth_tag: bytes
    schema_version: int
    created_at: datetime

    def associated_data(self) -> bytes:
        """Header bytes authenticated (not encrypted) together with the payload."""
        return header_associated_data(self.schema_version, self.created_at, self.salt)

    def to_bytes(self) -> bytes:
        """Serialize to the envelope wire format."""
        return (
            _ENVELOPE_HEADER.pack(
                ENVELOPE_MAGIC, self.schema_version, to_millis(self.created_at)
            )
            + self.salt
            + self.nonce
            + self.auth_tag
            + self.ciphertext
        )

    @property
    def size_bytes(self) -> int:
        return _ENVELOPE_FIXED_SIZE + len(self.ciphertext)

    @classmethod
    def from_bytes(cls, blob: bytes) -> "EncryptedBackup":
        """
        Parse the envelope wire format.

        Raises:
            MalformedBackup: Bad magic, truncated envelope or impossible timestamp
            UnsupportedVersion: Envelope written by another format version
        """
        if len(blob) < _ENVELOPE_HEADER.size or blob[:4] != ENVELOPE_MAGIC:
            raise MalformedBackup(
                "Not a pocketsync backup (bad magic or short blob)",
                details={"size": len(blob)},
            )

        _, version, created_ms = _ENVELOPE_HEADER.unpack_from(blob)
        if version != ENVELOPE_VERSION:
            raise UnsupportedVersion(found=version, supported=ENVELOPE_VERSION)

        if len(blob) < _ENVELOPE_FIXED_SIZE:
            raise MalformedBackup(
                f"Backup too small ({len(blob)} bytes, minimum {_ENVELOPE_FIXED_SIZE})",
                details={"size": len(blob)},
            )

        try:
            created_at = from_millis(created_ms)
        except (OverflowError, ValueError) as e:
            raise MalformedBackup(
                "Backup header timestamp is out of range",
                details={"size": len(blob)},
            ) from e

        offset = _ENVELOPE_HEADER.size
        salt = blob[offset:offset + SALT_SIZE]
        offset += SALT_SIZE
        nonce = blob[offset:offset + NONCE_SIZE]
        offset += NONCE_SIZE
        auth_tag = blob[offset:offset + TAG_SIZE]
        offset += TAG_SIZE

        return cls(
            salt=salt,
            nonce=nonce,
            ciphertext=blob[offset:],
            auth_tag=auth_tag,
            schema_version=version,
            created_at=created_at,
        )


def header_associated_data(schema_version: int, created_at: datetime, salt: bytes) -> bytes:
    """Build the AEAD associated data for an envelope header."""
    return (
        _ENVELOPE_HEADER.pack(ENVELOPE_MAGIC, schema_version, to_millis(created_at))
        + salt
    )


@dataclass
class SyncMetadata:
    """Local record of the last sync and restore attempts for one profile."""

    profile_id: str
    last_sync_timestamp: datetime | None = None  # last upload attempt
    last_sync_success: bool = False
    blob_size_bytes: int = 0  # size of last successful backup
    storage_key_hash: str = ""  # first 8 chars, display only
    error_message: str | None = None
    last_successful_sync_timestamp: datetime | None = None  # last-known-good
    last_restore_timestamp: datetime | None = None
    last_restore_success: bool | None = None
    restored_blob_size: int | None = None
    restored_backup_timestamp: datetime | None = None
    restore_error_message: str | None = None

    @property
    def last_known_good(self) -> datetime | None:
        """Newest backup timestamp this device is known to be in sync with."""
        candidates = [
            t
            for t in (self.last_successful_sync_timestamp, self.restored_backup_timestamp)
            if t is not None
        ]
        return max(candidates) if candidates else None


@dataclass(frozen=True)
class ConflictStatus:
    """Outcome of the pre-upload age check."""

    cloud_is_newer: bool
    cloud_exists: bool = False
    cloud_timestamp: datetime | None = None
    warning_message: str | None = None


class ProbeFailure(str, Enum):
    """Why the pre-upload probe could not produce a ConflictStatus."""

    UNDECRYPTABLE = "undecryptable"
    UNREADABLE = "unreadable"
    NETWORK = "network"
    DERIVATION = "derivation"
    LOCAL_STATE = "local_state"


@dataclass(frozen=True)
class ProbeError:
    """Failed probe result; the caller decides how to treat it."""

    reason: ProbeFailure
    message: str


@dataclass(frozen=True)
class BackupReceipt:
    """Summary of a completed upload."""

    size_bytes: int
    created_at: datetime
    storage_key_hash: str


@dataclass(frozen=True)
class RestoreReceipt:
    """Summary of a completed restore."""

    size_bytes: int
    backup_created_at: datetime
    tables_restored: int
    records_restored: int
    safety_snapshot_id: str
