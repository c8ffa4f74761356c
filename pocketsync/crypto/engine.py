# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
PocketSync Encryption Engine - AES-256-GCM authenticated encryption.

A fresh random nonce is generated inside encrypt() on every call; callers
can never supply one. Any tag failure (wrong key, bit flip, truncation,
altered associated data) surfaces as one generic AuthenticationFailed.

Nothing in this module logs plaintext, keys or passphrases.
"""

import os
from dataclasses import dataclass
from datetime import datetime

import structlog
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from pocketsync.crypto.kdf import DerivedKey
from pocketsync.exceptions import AuthenticationFailed
from pocketsync.models import (
    ENVELOPE_VERSION,
    NONCE_SIZE,
    TAG_SIZE,
    EncryptedBackup,
    header_associated_data,
)

logger = structlog.get_logger()


@dataclass(frozen=True)
class EncryptionResult:
    """Ciphertext with the nonce and tag needed to decrypt it."""

    ciphertext: bytes
    nonce: bytes
    auth_tag: bytes


def encrypt(
    plaintext: bytes | bytearray,
    key: DerivedKey,
    associated_data: bytes = b"",
) -> EncryptionResult:
    """
    Authenticated-encrypt plaintext with AES-256-GCM.

    Args:
        plaintext: Data to encrypt
        key: Derived key (not wiped by this function)
        associated_data: Authenticated but unencrypted context

    Returns:
        EncryptionResult with a freshly generated nonce
    """
    nonce = os.urandom(NONCE_SIZE)
    sealed = AESGCM(key.material).encrypt(nonce, plaintext, associated_data or None)

    logger.debug(
        "payload_encrypted",
        plaintext_size=len(plaintext),
        ciphertext_size=len(sealed) - TAG_SIZE,
    )

    return EncryptionResult(
        ciphertext=sealed[:-TAG_SIZE],
        nonce=nonce,
        auth_tag=sealed[-TAG_SIZE:],
    )


def decrypt(
    ciphertext: bytes,
    key: DerivedKey,
    nonce: bytes,
    auth_tag: bytes,
    associated_data: bytes = b"",
) -> bytes:
    """
    Verify and decrypt an AES-256-GCM ciphertext.

    Raises:
        AuthenticationFailed: Tag did not verify (wrong key or corrupted data)
    """
    if len(nonce) != NONCE_SIZE or len(auth_tag) != TAG_SIZE:
        raise AuthenticationFailed()

    try:
        plaintext = AESGCM(key.material).decrypt(
            nonce, ciphertext + auth_tag, associated_data or None
        )
    except InvalidTag:
        logger.warning("payload_authentication_failed", ciphertext_size=len(ciphertext))
        raise AuthenticationFailed() from None

    logger.debug("payload_decrypted", plaintext_size=len(plaintext))
    return plaintext


def seal_backup(
    plaintext: bytes | bytearray,
    key: DerivedKey,
    salt: bytes,
    created_at: datetime,
) -> EncryptedBackup:
    """
    Encrypt an encoded snapshot into an EncryptedBackup.

    The envelope header (version, created_at, salt) is bound into the
    associated data.
    """
    aad = header_associated_data(ENVELOPE_VERSION, created_at, salt)
    result = encrypt(plaintext, key, aad)
    return EncryptedBackup(
        salt=salt,
        nonce=result.nonce,
        ciphertext=result.ciphertext,
        auth_tag=result.auth_tag,
        schema_version=ENVELOPE_VERSION,
        created_at=created_at,
    )


def open_backup(backup: EncryptedBackup, key: DerivedKey) -> bytes:
    """Verify and decrypt an EncryptedBackup."""
    return decrypt(
        backup.ciphertext,
        key,
        backup.nonce,
        backup.auth_tag,
        backup.associated_data(),
    )
