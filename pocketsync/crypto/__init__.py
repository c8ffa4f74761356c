# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Crypto - Passphrase checks, key derivation and authenticated encryption.
"""

from pocketsync.crypto.passphrase import (
    MIN_PASSPHRASE_LENGTH,
    validate_passphrase,
    ensure_valid_passphrase,
    ensure_usable_passphrase,
    score_strength,
)

from pocketsync.crypto.kdf import (
    DerivedKey,
    generate_salt,
    derive_key,
    derive_key_async,
    derive_storage_key,
    derive_storage_key_async,
    storage_key_hash,
)

from pocketsync.crypto.engine import (
    EncryptionResult,
    encrypt,
    decrypt,
    seal_backup,
    open_backup,
)

__all__ = [
    # Passphrase
    "MIN_PASSPHRASE_LENGTH",
    "validate_passphrase",
    "ensure_valid_passphrase",
    "ensure_usable_passphrase",
    "score_strength",
    # Key derivation
    "DerivedKey",
    "generate_salt",
    "derive_key",
    "derive_key_async",
    "derive_storage_key",
    "derive_storage_key_async",
    "storage_key_hash",
    # Encryption
    "EncryptionResult",
    "encrypt",
    "decrypt",
    "seal_backup",
    "open_backup",
]
