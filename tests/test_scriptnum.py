import pytest

from cltvtx.core.scriptnum import (
    MAX_SCRIPT_NUMBER,
    EncodingError,
    decode_script_number,
    encode_script_number,
)


def test_encode_script_number():
    testvec = [
        (0, ""),
        (1, "01"),
        (-1, "81"),
        (16, "10"),
        (127, "7f"),
        (-127, "ff"),
        (128, "8000"),
        (-128, "8080"),
        (255, "ff00"),
        (256, "0001"),
        (-256, "0081"),
        (32767, "ff7f"),
        (32768, "008000"),
        (484296, "c86307"),
        (0x7fffffff, "ffffff7f"),
        (0x80000000, "0000008000"),
        (-0x80000000, "0000008080"),
        (0xffffffff, "ffffffff00"),
        (MAX_SCRIPT_NUMBER, "ffffffff7f"),
        (-MAX_SCRIPT_NUMBER, "ffffffffff"),
    ]
    for n, exp in testvec:
        assert encode_script_number(n).hex() == exp, n


def test_script_number_roundtrip_is_minimal():
    for n in [0, 1, -1, 0x7f, 0x80, 0xff, 0x100, 0x7fff, 0x8000, 150,
              484296, 484300, 499999999, 500000000, 1700000000,
              0xffffffff, -0xffffffff, MAX_SCRIPT_NUMBER, -MAX_SCRIPT_NUMBER]:
        data = encode_script_number(n)
        assert decode_script_number(data) == n
        # minimal: no shorter encoding decodes to the same value
        if data:
            assert data[-1] & 0x7f or (len(data) > 1 and data[-2] & 0x80)


def test_encode_script_number_out_of_range():
    for n in [MAX_SCRIPT_NUMBER + 1, -MAX_SCRIPT_NUMBER - 1, 2**64]:
        with pytest.raises(EncodingError):
            encode_script_number(n)


def test_encode_script_number_rejects_non_int():
    for v in [True, 1.5, "1", b"\x01", None]:
        with pytest.raises(EncodingError):
            encode_script_number(v)
    assert issubclass(EncodingError, ValueError)


def test_decode_script_number_non_minimal():
    for h in ["00", "80", "0100", "0080", "ff0000", "c8630700"]:
        with pytest.raises(EncodingError):
            decode_script_number(bytes.fromhex(h))


def test_decode_script_number_sign_byte_is_minimal():
    assert decode_script_number(bytes.fromhex("8000")) == 128
    assert decode_script_number(bytes.fromhex("8080")) == -128
    assert decode_script_number(bytes.fromhex("ff00")) == 255


def test_decode_script_number_not_required_minimal():
    assert decode_script_number(bytes.fromhex("0100"), require_minimal=False) == 1
    assert decode_script_number(bytes.fromhex("80"), require_minimal=False) == 0
    assert decode_script_number(bytes.fromhex("0180"), require_minimal=False) == -1


def test_decode_script_number_overflow():
    with pytest.raises(EncodingError):
        decode_script_number(bytes.fromhex("0000000001"), max_size=4)
    with pytest.raises(EncodingError):
        decode_script_number(bytes.fromhex("010000000001"))
    assert decode_script_number(bytes.fromhex("0000000001")) == 2**32
