# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
PocketSync Exceptions - Custom exceptions for the pocketsync package.

Every exception carries a short, user-safe message. Messages and details
must never contain passphrases, key material or raw cryptography errors.
"""


class PocketSyncError(Exception):
    """Base exception for all pocketsync errors."""

    retryable: bool = False

    def __init__(self, message: str, details: dict | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class ConfigurationError(PocketSyncError):
    """Raised when configuration is invalid."""

    pass


class ValidationError(PocketSyncError):
    """Raised when a passphrase fails the pre-flight checks."""

    def __init__(self, message: str, reason: str, details: dict | None = None):
        self.reason = reason
        super().__init__(message, details)


class DerivationError(PocketSyncError):
    """Raised when key derivation cannot run (bad input or allocation failure)."""

    retryable = True


class AuthenticationFailed(PocketSyncError):
    """
    Raised when an authentication tag does not verify.

    Wrong passphrase and corrupted ciphertext are indistinguishable here
    and always share this one message.
    """

    retryable = True

    GENERIC_MESSAGE = "Wrong passphrase or corrupted backup"

    def __init__(self, details: dict | None = None):
        super().__init__(self.GENERIC_MESSAGE, details)


class CodecError(PocketSyncError):
    """Raised when a backup payload cannot be encoded or decoded."""

    pass


class UnsupportedVersion(CodecError):
    """Raised when a backup was written in a format this version cannot read."""

    def __init__(self, found: int, supported: int):
        self.found = found
        self.supported = supported
        super().__init__(
            f"Unsupported backup format version {found} (supported: {supported})",
            details={"found": found, "supported": supported},
        )


class MalformedBackup(CodecError):
    """Raised when a backup is structurally invalid."""

    pass


class NetworkError(PocketSyncError):
    """Raised when the remote blob transport fails."""

    retryable = True


class RateLimited(NetworkError):
    """Raised when the remote store rejects a request for rate limiting."""

    def __init__(self, retry_after: int, details: dict | None = None):
        self.retry_after = retry_after
        super().__init__(
            f"Rate limit exceeded, retry after {retry_after}s",
            details={"retry_after": retry_after, **(details or {})},
        )


class QuotaExceeded(NetworkError):
    """Raised when a backup exceeds the remote payload-size limit."""

    retryable = False


class BackupNotFound(NetworkError):
    """Raised when no remote backup exists for a storage key."""

    retryable = False


class ConcurrentOperationInProgress(PocketSyncError):
    """Raised when a second backup/restore overlaps one already running."""

    retryable = True


class ExportError(PocketSyncError):
    """Raised when the local domain store cannot be exported."""

    retryable = True


class LocalWriteError(PocketSyncError):
    """
    Raised when a verified backup could not be written to the local store.

    The backup itself decrypted and decoded fine; this is a local failure.
    """

    retryable = True
