# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
PocketSync Key Derivation - Passphrase to AES-256 key.

Uses PBKDF2-HMAC-SHA256 with a high iteration count. Derivation never fails
because a passphrase is "wrong"; that is only detected later, when the
authentication tag does not verify.

Derived keys are held in a mutable buffer so they can be zeroed as soon as
the encrypt/decrypt that needed them is done.
"""

import asyncio
import os
from concurrent.futures import ThreadPoolExecutor

import structlog
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from pocketsync.config import DEFAULT_KDF_ITERATIONS
from pocketsync.exceptions import DerivationError
from pocketsync.models import KEY_SIZE, SALT_SIZE

logger = structlog.get_logger()

# Thread pool for CPU-bound derivations
_executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="pocketsync-kdf")

# Fixed salt for the storage key; it must be identical on every device
_STORAGE_KEY_SALT = b"pocketsync/storage-key/v1"


def scrub(buffer: bytearray) -> None:
    """Overwrite a mutable buffer with zeros."""
    for i in range(len(buffer)):
        buffer[i] = 0


class DerivedKey:
    """
    Symmetric key material for a single encrypt or decrypt.

    Use as a context manager; the buffer is zeroed on exit.
    """

    __slots__ = ("_buffer", "_wiped")

    def __init__(self, material: bytearray):
        if len(material) != KEY_SIZE:
            raise DerivationError(
                "Derived key has unexpected length",
                details={"length": len(material)},
            )
        self._buffer = material
        self._wiped = False

    @property
    def material(self) -> bytearray:
        if self._wiped:
            raise DerivationError("Derived key was already wiped")
        return self._buffer

    @property
    def wiped(self) -> bool:
        return self._wiped

    def wipe(self) -> None:
        if not self._wiped:
            scrub(self._buffer)
            self._wiped = True

    def __enter__(self) -> "DerivedKey":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.wipe()

    def __repr__(self) -> str:
        return f"DerivedKey(wiped={self._wiped})"


def generate_salt() -> bytes:
    """Fresh random salt for a new backup."""
    return os.urandom(SALT_SIZE)


def _pbkdf2(secret: bytearray, salt: bytes, iterations: int, length: int) -> bytearray:
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=length,
        salt=salt,
        iterations=iterations,
    )
    return bytearray(kdf.derive(bytes(secret)))


def derive_key(
    passphrase: str,
    salt: bytes,
    iterations: int = DEFAULT_KDF_ITERATIONS,
) -> DerivedKey:
    """
    Derive a 256-bit key from passphrase + salt.

    Args:
        passphrase: User passphrase (never stored)
        salt: 16-byte salt supplied by the caller
        iterations: PBKDF2 iteration count

    Returns:
        DerivedKey holding the key material

    Raises:
        DerivationError: Invalid input or allocation failure
    """
    if not passphrase:
        raise DerivationError("Passphrase cannot be empty")
    if not isinstance(salt, (bytes, bytearray)) or len(salt) != SALT_SIZE:
        raise DerivationError(
            f"Salt must be {SALT_SIZE} bytes",
            details={"salt_length": len(salt) if salt is not None else None},
        )
    if iterations < 1:
        raise DerivationError(
            "Iteration count must be positive",
            details={"iterations": iterations},
        )

    secret = bytearray(passphrase, "utf-8")
    try:
        return DerivedKey(_pbkdf2(secret, bytes(salt), iterations, KEY_SIZE))
    except MemoryError as e:
        raise DerivationError("Not enough memory to derive key") from e
    except (TypeError, ValueError) as e:
        raise DerivationError(
            "Key derivation failed",
            details={"error_type": type(e).__name__},
        ) from e
    finally:
        scrub(secret)


def _wipe_abandoned_key(future: asyncio.Future) -> None:
    if future.cancelled() or future.exception() is not None:
        return
    future.result().wipe()
    logger.debug("abandoned_key_wiped")


async def derive_key_async(
    passphrase: str,
    salt: bytes,
    iterations: int = DEFAULT_KDF_ITERATIONS,
) -> DerivedKey:
    """
    Derive a key without blocking the event loop.

    Runs in a thread pool because PBKDF2 is CPU-bound. The worker cannot be
    interrupted, so if the caller is cancelled the key it eventually produces
    is wiped as soon as it arrives.
    """
    loop = asyncio.get_running_loop()
    future = loop.run_in_executor(_executor, derive_key, passphrase, salt, iterations)
    try:
        key = await asyncio.shield(future)
    except asyncio.CancelledError:
        future.add_done_callback(_wipe_abandoned_key)
        raise
    logger.debug("key_derived", iterations=iterations)
    return key


def derive_storage_key(
    passphrase: str,
    iterations: int = DEFAULT_KDF_ITERATIONS,
) -> str:
    """
    Derive the blob identifier for a passphrase.

    Deterministic across devices (same passphrase = same storage key) and as
    slow to brute-force as the encryption key itself.

    Returns:
        64-character lowercase hex string
    """
    if not passphrase:
        raise DerivationError("Passphrase cannot be empty")

    secret = bytearray(passphrase, "utf-8")
    try:
        digest = _pbkdf2(secret, _STORAGE_KEY_SALT, iterations, 32)
        storage_key = digest.hex()
        scrub(digest)
        return storage_key
    except MemoryError as e:
        raise DerivationError("Not enough memory to derive storage key") from e
    finally:
        scrub(secret)


async def derive_storage_key_async(
    passphrase: str,
    iterations: int = DEFAULT_KDF_ITERATIONS,
) -> str:
    """Async wrapper for derive_storage_key()."""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(_executor, derive_storage_key, passphrase, iterations)


def storage_key_hash(storage_key: str) -> str:
    """Short, display-only prefix of a storage key (safe to log)."""
    return storage_key[:8]
