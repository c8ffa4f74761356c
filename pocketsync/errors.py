# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Human-friendly error message helpers for PocketSync.

These helpers centralize wording for backup and restore failures so that
the pipeline, the sync metadata record and the UI all present consistent,
actionable messages. The returned strings are safe to persist and display:
they never include exception internals.
"""

import math

from pocketsync.exceptions import (
    AuthenticationFailed,
    ConcurrentOperationInProgress,
    DerivationError,
    ExportError,
    LocalWriteError,
    MalformedBackup,
    NetworkError,
    QuotaExceeded,
    RateLimited,
    UnsupportedVersion,
    ValidationError,
)


def _wait_minutes(retry_after: int) -> int:
    return max(1, math.ceil(retry_after / 60))


def describe_upload_failure(exc: BaseException) -> str:
    """
    Explain why a backup upload failed.
    """

    if isinstance(exc, ValidationError):
        return f"Backup failed: {exc.message}."
    if isinstance(exc, ExportError):
        return "Backup failed: Could not read your local data. Please try again."
    if isinstance(exc, DerivationError):
        return "Backup failed: Could not prepare encryption. Please try again."
    if isinstance(exc, QuotaExceeded):
        return (
            "Upload failed: Backup exceeds the cloud storage limit. "
            "Contact support to increase quota."
        )
    if isinstance(exc, RateLimited):
        return (
            "Upload failed: Too many uploads. "
            f"Please wait {_wait_minutes(exc.retry_after)} minutes and try again."
        )
    if isinstance(exc, NetworkError):
        return "Upload failed: Network error. Check your internet connection and try again."
    if isinstance(exc, ConcurrentOperationInProgress):
        return "Backup failed: Another sync operation is already running."
    return "Upload failed: An unexpected error occurred. Please try again or contact support."


def describe_restore_failure(exc: BaseException) -> str:
    """
    Explain why a restore failed.

    Wrong passphrase and corrupted ciphertext deliberately share one message.
    """

    if isinstance(exc, ValidationError):
        return f"Restore failed: {exc.message}."
    if isinstance(exc, AuthenticationFailed):
        return "Restore failed: Wrong passphrase or corrupted backup. Please check and try again."
    if isinstance(exc, UnsupportedVersion):
        return "Restore failed: Backup format is incompatible with this app version."
    if isinstance(exc, MalformedBackup):
        return "Restore failed: Backup data is corrupted. Try a different backup or contact support."
    if isinstance(exc, DerivationError):
        return "Restore failed: Could not prepare decryption. Please try again."
    if isinstance(exc, RateLimited):
        return (
            "Restore failed: Too many downloads. "
            f"Please wait {_wait_minutes(exc.retry_after)} minutes and try again."
        )
    if isinstance(exc, NetworkError):
        return "Restore failed: Network error. Check your internet connection and try again."
    if isinstance(exc, LocalWriteError):
        return (
            "Restore failed: Your backup is valid but could not be saved on this device. "
            "Your previous data was kept."
        )
    if isinstance(exc, ConcurrentOperationInProgress):
        return "Restore failed: Another sync operation is already running."
    return "Restore failed: An unexpected error occurred. Please try again or contact support."


def explain_passphrase_too_short(minimum: int) -> str:
    """
    Explain that the passphrase is below the length floor.
    """

    return f"Passphrase must be at least {minimum} characters"


def explain_passphrase_mismatch() -> str:
    """
    Explain that passphrase and confirmation differ.
    """

    return "Passphrases do not match"


def explain_cloud_newer(hours: int) -> str:
    """
    Warn that the cloud copy is newer than local data.
    """

    if hours > 24:
        return f"Cloud backup is {round(hours / 24)} day(s) newer than your local data."
    if hours > 1:
        return f"Cloud backup is {hours} hours newer than your local data."
    return "Cloud backup is newer than your local data."


def explain_unsynced_cloud_backup() -> str:
    """
    Warn that a cloud backup exists that this device never synced with.
    """

    return (
        "A cloud backup already exists for this passphrase and this device has "
        "never synced with it. Uploading will replace it."
    )
