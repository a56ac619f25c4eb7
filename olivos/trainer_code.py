from __future__ import annotations

import re
from typing import Optional

from olivos.errors import InvalidCodeFormat, ScanDecodeError

TRAINER_CODE_LENGTH = 12

_NON_DIGITS = re.compile(r"\D")


def strip_to_digits(raw: Optional[str]) -> str:
    return _NON_DIGITS.sub("", raw or "")


def normalize_trainer_code(raw: Optional[str]) -> str:
    """
    Return the canonical 12-digit trainer code for typed or scanned text.

    Every non-digit is dropped and the last 12 digits are kept, so QR payloads
    carrying a prefix ("trainer:", a URL, spaces between groups) still resolve.
    Anything that leaves fewer than 12 digits raises InvalidCodeFormat.
    """
    digits = strip_to_digits(raw)[-TRAINER_CODE_LENGTH:]
    if len(digits) != TRAINER_CODE_LENGTH:
        raise InvalidCodeFormat(
            f"Trainer codes must have {TRAINER_CODE_LENGTH} digits.",
            payload={"error": "invalid_code_format", "digits": len(digits)},
        )
    return digits


def decode_scanned_code(payload) -> str:
    """Normalize a raw QR payload handed over by the browser scanner."""
    if isinstance(payload, bytes):
        try:
            payload = payload.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise ScanDecodeError("We could not read that QR code. Try moving the camera closer.") from exc
    if not isinstance(payload, str) or not payload.strip():
        raise ScanDecodeError("We could not read that QR code. Try moving the camera closer.")
    try:
        return normalize_trainer_code(payload)
    except InvalidCodeFormat as exc:
        raise InvalidCodeFormat("That QR code does not contain a valid trainer code.") from exc


def is_trainer_code(value: Optional[str]) -> bool:
    return bool(value) and len(value) == TRAINER_CODE_LENGTH and value.isdigit()


def format_trainer_code(code: Optional[str]) -> str:
    """Group a canonical code as `1234 5678 9012` for display."""
    if not is_trainer_code(code):
        return code or ""
    return " ".join(code[i:i + 4] for i in range(0, TRAINER_CODE_LENGTH, 4))
