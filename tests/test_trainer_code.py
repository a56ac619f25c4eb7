import pytest

from olivos.errors import InvalidCodeFormat, ScanDecodeError
from olivos.trainer_code import (
    decode_scanned_code,
    format_trainer_code,
    is_trainer_code,
    normalize_trainer_code,
)


@pytest.mark.parametrize(
    "raw",
    [
        "123456789012",
        "1234 5678 9012",
        " 1234-5678-9012 ",
        "trainer:99 1234 5678 9012",
        "https://example.test/friend/000123456789012",
    ],
)
def test_normalize_keeps_last_twelve_digits(raw):
    assert normalize_trainer_code(raw) == "123456789012"


@pytest.mark.parametrize("raw", ["", None, "12345", "abc defg hijk", "1234 5678 901"])
def test_normalize_rejects_short_codes(raw):
    with pytest.raises(InvalidCodeFormat) as excinfo:
        normalize_trainer_code(raw)
    assert excinfo.value.status_code == 400
    assert excinfo.value.payload["error"] == "invalid_code_format"


def test_scanned_bytes_are_decoded():
    assert decode_scanned_code(b"PoGo 1234 5678 9012") == "123456789012"


@pytest.mark.parametrize("payload", [b"\xff\xfe\xfa", "", "   ", None, 42])
def test_unreadable_scan_raises_decode_error(payload):
    with pytest.raises(ScanDecodeError):
        decode_scanned_code(payload)


def test_scan_without_a_code_is_a_format_error():
    with pytest.raises(InvalidCodeFormat) as excinfo:
        decode_scanned_code("https://example.test/hello")
    assert "valid trainer code" in excinfo.value.message


def test_format_groups_canonical_codes_only():
    assert format_trainer_code("123456789012") == "1234 5678 9012"
    assert format_trainer_code("12345") == "12345"
    assert format_trainer_code(None) == ""
    assert is_trainer_code("123456789012")
    assert not is_trainer_code("12345678901a")
