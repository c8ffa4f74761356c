# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Crypto Tests for PocketSync.

These tests verify the confidentiality guarantees:
1. Passphrase gate - Short or mismatched passphrases are rejected up front
2. Key derivation - Deterministic per (passphrase, salt), fresh salt per backup
3. Authenticated encryption - Wrong keys and tampering ALWAYS fail loudly
4. Nonce freshness - A nonce is NEVER reused
"""

import asyncio
import dataclasses
import struct
import threading
from datetime import datetime, timedelta, UTC

import pytest

from pocketsync.config import MIN_KDF_ITERATIONS
from pocketsync.crypto import kdf
from pocketsync.crypto.engine import decrypt, encrypt, open_backup, seal_backup
from pocketsync.crypto.kdf import (
    DerivedKey,
    derive_key,
    derive_key_async,
    derive_storage_key,
    generate_salt,
    storage_key_hash,
)
from pocketsync.crypto.passphrase import (
    ensure_usable_passphrase,
    ensure_valid_passphrase,
    score_strength,
    validate_passphrase,
)
from pocketsync.exceptions import (
    AuthenticationFailed,
    DerivationError,
    MalformedBackup,
    UnsupportedVersion,
    ValidationError,
)
from pocketsync.models import (
    ENVELOPE_MAGIC,
    KEY_SIZE,
    EncryptedBackup,
    PassphraseStrength,
    ValidationReason,
)

ITERATIONS = MIN_KDF_ITERATIONS
CREATED_AT = datetime(2026, 5, 1, 12, 0, 0, 123000, tzinfo=UTC)


def _key(passphrase: str = "CorrectHorseBattery9!", salt: bytes | None = None) -> DerivedKey:
    return derive_key(passphrase, salt or b"\x01" * 16, ITERATIONS)


# ============================================================================
# Passphrase validation
# ============================================================================

def test_validate_short_passphrase_is_too_short():
    result = validate_passphrase("short", "short")

    assert result.valid is False
    assert result.reason == ValidationReason.TOO_SHORT
    assert "12" in result.error


def test_validate_mismatched_confirmation():
    result = validate_passphrase("longenoughpass", "different")

    assert result.valid is False
    assert result.reason == ValidationReason.MISMATCH


def test_validate_matching_passphrase_is_valid():
    result = validate_passphrase("longenoughpass", "longenoughpass")

    assert result.valid is True
    assert result.error is None
    assert result.reason is None


def test_validate_length_checked_before_confirmation():
    """A short passphrase reports TooShort even when the confirmation differs."""
    result = validate_passphrase("short", "other")

    assert result.reason == ValidationReason.TOO_SHORT


def test_validate_has_no_maximum_length():
    passphrase = "x" * 10_000

    assert validate_passphrase(passphrase, passphrase).valid is True


def test_ensure_valid_passphrase_raises_with_reason():
    with pytest.raises(ValidationError) as exc_info:
        ensure_valid_passphrase("longenoughpass", "longenoughpasS")

    assert exc_info.value.reason == "Mismatch"


def test_ensure_usable_passphrase_only_checks_length():
    ensure_usable_passphrase("twelve chars")

    with pytest.raises(ValidationError) as exc_info:
        ensure_usable_passphrase("eleven char")

    assert exc_info.value.reason == "TooShort"


# ============================================================================
# Strength scoring
# ============================================================================

def test_repeated_single_character_scores_below_mixed_passphrase():
    weak = score_strength("aaaaaaaaaaaa")
    mixed = score_strength("Tr0ub4dor&3xyz!")

    assert weak.score < mixed.score
    assert weak.score == 22.5
    assert weak.strength == PassphraseStrength.WEAK


def test_sequence_penalty_applies_case_insensitively():
    # "xyz" is an ascending run: 20 + 4 * 12.5 - 10
    result = score_strength("Tr0ub4dor&3xyz!")

    assert result.score == 60
    assert result.strength == PassphraseStrength.MEDIUM
    assert any("sequence" in line for line in result.feedback)


def test_long_varied_passphrase_is_strong():
    result = score_strength("Correct-Horse-Battery-9!")

    assert result.score == 100
    assert result.strength == PassphraseStrength.STRONG
    assert result.feedback == []


def test_short_passphrase_scores_zero():
    result = score_strength("Ab1!")

    assert result.score == 0
    assert result.strength == PassphraseStrength.WEAK


def test_non_ascii_letters_and_digits_count_only_as_symbols():
    # 13 chars: 20 base + 12.5 for the symbol class alone
    result = score_strength("ÀÉÎÕÜàéîõü²³¹")

    assert result.score == 32.5
    assert result.strength == PassphraseStrength.WEAK
    assert any("lowercase letters or uppercase letters or numbers" in line for line in result.feedback)


def test_strength_scoring_is_deterministic():
    assert score_strength("Some Passphrase 123") == score_strength("Some Passphrase 123")


# ============================================================================
# Key derivation
# ============================================================================

def test_derive_key_is_deterministic_for_same_salt():
    salt = generate_salt()

    with _key(salt=salt) as first, _key(salt=salt) as second:
        assert bytes(first.material) == bytes(second.material)
        assert len(first.material) == 32


def test_derive_key_differs_per_salt():
    with _key(salt=b"\x01" * 16) as first, _key(salt=b"\x02" * 16) as second:
        assert bytes(first.material) != bytes(second.material)


def test_derive_key_rejects_empty_passphrase():
    with pytest.raises(DerivationError):
        derive_key("", generate_salt(), ITERATIONS)


def test_derive_key_rejects_wrong_salt_length():
    with pytest.raises(DerivationError):
        derive_key("CorrectHorseBattery9!", b"short", ITERATIONS)


def test_wiped_key_is_zeroed_and_unusable():
    key = _key()
    material = key.material

    key.wipe()

    assert key.wiped is True
    assert material == bytearray(32)
    with pytest.raises(DerivationError):
        _ = key.material


def test_context_manager_wipes_key():
    with _key() as key:
        material = key.material

    assert key.wiped is True
    assert material == bytearray(32)


def test_salts_never_repeat():
    """CRITICAL: 10,000 fresh salts must all be distinct."""
    salts = {generate_salt() for _ in range(10_000)}

    assert len(salts) == 10_000


def test_storage_key_is_deterministic_hex():
    first = derive_storage_key("CorrectHorseBattery9!", ITERATIONS)
    second = derive_storage_key("CorrectHorseBattery9!", ITERATIONS)
    other = derive_storage_key("CorrectHorseBattery8!", ITERATIONS)

    assert first == second
    assert first != other
    assert len(first) == 64
    assert all(c in "0123456789abcdef" for c in first)
    assert storage_key_hash(first) == first[:8]


@pytest.mark.asyncio
async def test_derive_key_async_matches_sync():
    salt = generate_salt()

    with await derive_key_async("CorrectHorseBattery9!", salt, ITERATIONS) as async_key:
        with _key(salt=salt) as sync_key:
            assert bytes(async_key.material) == bytes(sync_key.material)


@pytest.mark.asyncio
async def test_cancelled_derivation_wipes_key_when_it_arrives(monkeypatch):
    """CRITICAL: A key finished after its caller was cancelled must be zeroed."""
    started = threading.Event()
    release = threading.Event()
    produced: list[DerivedKey] = []

    def slow_derive(passphrase, salt, iterations):
        started.set()
        release.wait(timeout=5)
        key = DerivedKey(bytearray(b"\x07" * KEY_SIZE))
        produced.append(key)
        return key

    monkeypatch.setattr(kdf, "derive_key", slow_derive)

    task = asyncio.create_task(
        kdf.derive_key_async("CorrectHorseBattery9!", generate_salt(), ITERATIONS)
    )
    await asyncio.to_thread(started.wait, 5)
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task

    release.set()
    for _ in range(200):
        if produced and produced[0].wiped:
            break
        await asyncio.sleep(0.01)

    assert produced and produced[0].wiped
    assert bytes(produced[0]._buffer) == bytes(KEY_SIZE)


# ============================================================================
# Authenticated encryption
# ============================================================================

def test_encrypt_decrypt_round_trip():
    with _key() as key:
        result = encrypt(b"symptom log", key, b"context")
        plaintext = decrypt(result.ciphertext, key, result.nonce, result.auth_tag, b"context")

    assert plaintext == b"symptom log"
    assert len(result.nonce) == 12
    assert len(result.auth_tag) == 16
    assert b"symptom log" not in result.ciphertext


def test_wrong_key_fails_authentication():
    """CRITICAL: A wrong passphrase must never produce plaintext."""
    with _key("CorrectHorseBattery9!") as right, _key("WrongPassphrase42?") as wrong:
        result = encrypt(b"private", right)

        with pytest.raises(AuthenticationFailed) as exc_info:
            decrypt(result.ciphertext, wrong, result.nonce, result.auth_tag)

    assert exc_info.value.message == "Wrong passphrase or corrupted backup"


def test_bit_flip_fails_authentication():
    with _key() as key:
        result = encrypt(b"private data", key)
        tampered = bytearray(result.ciphertext)
        tampered[0] ^= 0x01

        with pytest.raises(AuthenticationFailed):
            decrypt(bytes(tampered), key, result.nonce, result.auth_tag)


def test_truncated_tag_fails_authentication():
    with _key() as key:
        result = encrypt(b"private data", key)

        with pytest.raises(AuthenticationFailed):
            decrypt(result.ciphertext, key, result.nonce, result.auth_tag[:-1])


def test_associated_data_mismatch_fails_authentication():
    with _key() as key:
        result = encrypt(b"private data", key, b"header-a")

        with pytest.raises(AuthenticationFailed):
            decrypt(result.ciphertext, key, result.nonce, result.auth_tag, b"header-b")


def test_wrong_key_and_corruption_share_one_message():
    with _key("CorrectHorseBattery9!") as right, _key("WrongPassphrase42?") as wrong:
        result = encrypt(b"private", right)

        with pytest.raises(AuthenticationFailed) as wrong_key:
            decrypt(result.ciphertext, wrong, result.nonce, result.auth_tag)
        with pytest.raises(AuthenticationFailed) as corrupted:
            decrypt(result.ciphertext[:-1], right, result.nonce, result.auth_tag)

    assert str(wrong_key.value) == str(corrupted.value)


def test_nonces_never_repeat():
    """CRITICAL: 10,000 encryptions under one key must use distinct nonces."""
    with _key() as key:
        nonces = {encrypt(b"x", key).nonce for _ in range(10_000)}

    assert len(nonces) == 10_000


# ============================================================================
# Backup envelope
# ============================================================================

def _sealed(plaintext: bytes = b"encoded snapshot") -> tuple[EncryptedBackup, bytes]:
    salt = generate_salt()
    with _key(salt=salt) as key:
        return seal_backup(plaintext, key, salt, CREATED_AT), salt


def test_sealed_backup_survives_wire_round_trip():
    backup, salt = _sealed()

    parsed = EncryptedBackup.from_bytes(backup.to_bytes())

    assert parsed == backup
    assert parsed.size_bytes == len(backup.to_bytes())
    with _key(salt=salt) as key:
        assert open_backup(parsed, key) == b"encoded snapshot"


def test_tampered_created_at_fails_authentication():
    """Header fields are authenticated even though they are not encrypted."""
    backup, salt = _sealed()
    tampered = dataclasses.replace(backup, created_at=CREATED_AT + timedelta(days=1))

    with _key(salt=salt) as key:
        with pytest.raises(AuthenticationFailed):
            open_backup(tampered, key)


def test_tampered_wire_timestamp_fails_authentication():
    backup, salt = _sealed()
    wire = bytearray(backup.to_bytes())
    wire[13] ^= 0xFF  # low byte of the u64 created_at

    parsed = EncryptedBackup.from_bytes(bytes(wire))

    with _key(salt=salt) as key:
        with pytest.raises(AuthenticationFailed):
            open_backup(parsed, key)


def test_envelope_with_bad_magic_is_malformed():
    backup, _ = _sealed()
    wire = b"XXXX" + backup.to_bytes()[4:]

    with pytest.raises(MalformedBackup):
        EncryptedBackup.from_bytes(wire)


def test_envelope_from_future_version_is_rejected():
    backup, _ = _sealed()
    wire = bytearray(backup.to_bytes())
    struct.pack_into(">H", wire, 4, 2)

    with pytest.raises(UnsupportedVersion) as exc_info:
        EncryptedBackup.from_bytes(bytes(wire))

    assert exc_info.value.found == 2
    assert exc_info.value.supported == 1


def test_truncated_envelope_is_malformed():
    wire = ENVELOPE_MAGIC + struct.pack(">HQ", 1, 0) + b"\x00" * 10

    with pytest.raises(MalformedBackup):
        EncryptedBackup.from_bytes(wire)


def test_out_of_range_wire_timestamp_is_malformed():
    """A corrupted header timestamp is reported as a malformed backup, not a crash."""
    backup, _ = _sealed()
    wire = bytearray(backup.to_bytes())
    wire[6] ^= 0xFF  # high byte of the u64 created_at

    with pytest.raises(MalformedBackup):
        EncryptedBackup.from_bytes(bytes(wire))
