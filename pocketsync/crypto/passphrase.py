# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Passphrase validation and advisory strength scoring.

Validation is a hard gate (length floor + confirmation). Strength scoring is
UI feedback only and never blocks a backup.
"""

import string
from typing import List

from pocketsync.errors import explain_passphrase_mismatch, explain_passphrase_too_short
from pocketsync.exceptions import ValidationError
from pocketsync.models import (
    PassphraseStrength,
    StrengthResult,
    ValidationReason,
    ValidationResult,
)

MIN_PASSPHRASE_LENGTH = 12

# Score components
_CLASS_BONUS = 12.5
_REPEAT_PENALTY = 10
_SEQUENCE_PENALTY = 10
_STRONG_THRESHOLD = 70
_MEDIUM_THRESHOLD = 40

# Character classes are ASCII-only so scores agree on every platform
_ASCII_ALNUM = frozenset(string.ascii_letters + string.digits)


def validate_passphrase(passphrase: str, confirmation: str) -> ValidationResult:
    """
    Validate a new passphrase against its confirmation.

    Length is checked first, so a short passphrase reports TooShort even if
    the confirmation also differs.
    """
    if not passphrase or len(passphrase) < MIN_PASSPHRASE_LENGTH:
        return ValidationResult(
            valid=False,
            error=explain_passphrase_too_short(MIN_PASSPHRASE_LENGTH),
            reason=ValidationReason.TOO_SHORT,
        )

    if passphrase != confirmation:
        return ValidationResult(
            valid=False,
            error=explain_passphrase_mismatch(),
            reason=ValidationReason.MISMATCH,
        )

    return ValidationResult(valid=True)


def ensure_valid_passphrase(passphrase: str, confirmation: str) -> None:
    """Raise ValidationError unless validate_passphrase() accepts the pair."""
    result = validate_passphrase(passphrase, confirmation)
    if not result.valid:
        raise ValidationError(result.error or "Invalid passphrase", reason=result.reason.value)


def ensure_usable_passphrase(passphrase: str) -> None:
    """Length floor only; used where no confirmation exists (restore, probe)."""
    if not passphrase or len(passphrase) < MIN_PASSPHRASE_LENGTH:
        raise ValidationError(
            explain_passphrase_too_short(MIN_PASSPHRASE_LENGTH),
            reason=ValidationReason.TOO_SHORT.value,
        )


def _has_triple_repeat(text: str) -> bool:
    run = 1
    for prev, cur in zip(text, text[1:]):
        run = run + 1 if cur == prev else 1
        if run >= 3:
            return True
    return False


def _is_ascending_run(window: str) -> bool:
    a, b, c = window
    same_kind = (
        all("a" <= ch <= "z" for ch in window)
        or all("0" <= ch <= "9" for ch in window)
    )
    return same_kind and ord(b) == ord(a) + 1 and ord(c) == ord(b) + 1


def _has_sequence(text: str) -> bool:
    lowered = text.lower()
    return any(
        _is_ascending_run(lowered[i:i + 3]) for i in range(len(lowered) - 2)
    )


def score_strength(passphrase: str) -> StrengthResult:
    """
    Score a passphrase from 0 to 100.

    Pure and deterministic: length base score, +12.5 per character class
    present, -10 for a triple repeat, -10 for an ascending 3-character run.
    """
    feedback: List[str] = []

    if len(passphrase) < MIN_PASSPHRASE_LENGTH:
        return StrengthResult(
            strength=PassphraseStrength.WEAK,
            score=0,
            feedback=[explain_passphrase_too_short(MIN_PASSPHRASE_LENGTH)],
        )

    length = len(passphrase)
    if length >= 20:
        score = 50.0
    elif length >= 16:
        score = 35.0
    else:
        score = 20.0
        feedback.append("Use 16 or more characters for a stronger passphrase")

    classes = {
        "lowercase letters": any(ch in string.ascii_lowercase for ch in passphrase),
        "uppercase letters": any(ch in string.ascii_uppercase for ch in passphrase),
        "numbers": any(ch in string.digits for ch in passphrase),
        "symbols": any(ch not in _ASCII_ALNUM for ch in passphrase),
    }
    score += _CLASS_BONUS * sum(classes.values())
    missing = [name for name, present in classes.items() if not present]
    if missing:
        feedback.append("Add " + " or ".join(missing))

    if _has_triple_repeat(passphrase):
        score -= _REPEAT_PENALTY
        feedback.append("Avoid repeating the same character")

    if _has_sequence(passphrase):
        score -= _SEQUENCE_PENALTY
        feedback.append("Avoid sequences like 'abc' or '123'")

    score = max(0.0, min(100.0, score))

    if score >= _STRONG_THRESHOLD:
        strength = PassphraseStrength.STRONG
    elif score >= _MEDIUM_THRESHOLD:
        strength = PassphraseStrength.MEDIUM
    else:
        strength = PassphraseStrength.WEAK

    return StrengthResult(strength=strength, score=score, feedback=feedback)
