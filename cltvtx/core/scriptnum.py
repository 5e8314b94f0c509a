# Copyright (C) 2026 The cltvtx developers
#
# This file is part of cltvtx.
#
# It is subject to the license terms in the LICENSE file found in the top-level
# directory of this distribution.
#
# No part of cltvtx, including this file, may be copied, modified,
# propagated, or distributed except according to the terms contained in the
# LICENSE file.

"""Script number encoding

Integers pushed onto the script stack are little-endian sign-magnitude
byte strings: the most significant bit of the last byte is the sign, and
zero is the empty string. Consensus only accepts the shortest form for
operands such as the CHECKLOCKTIMEVERIFY lock value.
"""

# CHECKLOCKTIMEVERIFY takes 5-byte operands so that locktimes up to
# 0xffffffff fit
LOCKTIME_NUM_SIZE = 5

MAX_SCRIPT_NUMBER = (1 << (LOCKTIME_NUM_SIZE * 8 - 1)) - 1


class EncodingError(ValueError):
    """Value cannot be represented as (or is not) a valid script number"""


def encode_script_number(n: int) -> bytes:
    """Encode n as a minimal script number.

    0 encodes to b''. Values beyond +/- MAX_SCRIPT_NUMBER raise
    EncodingError.
    """
    if not isinstance(n, int) or isinstance(n, bool):
        raise EncodingError(
            f'script number must be an int, got {n.__class__.__name__}')
    if abs(n) > MAX_SCRIPT_NUMBER:
        raise EncodingError(
            f'{n} is outside the representable script number range '
            f'(+/- 0x{MAX_SCRIPT_NUMBER:x})')

    if n == 0:
        return b''

    neg = n < 0
    absvalue = -n if neg else n
    result = bytearray()
    while absvalue:
        result.append(absvalue & 0xff)
        absvalue >>= 8

    # The sign lives in the top bit of the last byte. If the magnitude
    # already uses that bit, an extra byte carries the sign instead.
    if result[-1] & 0x80:
        result.append(0x80 if neg else 0x00)
    elif neg:
        result[-1] |= 0x80

    return bytes(result)


def decode_script_number(data: bytes, *, max_size: int = LOCKTIME_NUM_SIZE,
                         require_minimal: bool = True) -> int:
    """Decode a script number.

    Raises EncodingError when data is longer than max_size, or when
    require_minimal is set and data is not the shortest encoding.
    """
    if len(data) > max_size:
        raise EncodingError(
            f'script number overflow: {len(data)} bytes, '
            f'at most {max_size} allowed')

    if not data:
        return 0

    if require_minimal and (data[-1] & 0x7f) == 0:
        # A trailing 0x00/0x80 is only allowed when the byte before it
        # has its top bit set. This also rejects negative zero.
        if len(data) == 1 or not (data[-2] & 0x80):
            raise EncodingError(
                f'non-minimally encoded script number: {data.hex()}')

    value = int.from_bytes(data, 'little')
    sign_bit = 0x80 << (8 * (len(data) - 1))
    if value & sign_bit:
        return -(value & ~sign_bit)
    return value


__all__ = (
    'LOCKTIME_NUM_SIZE',
    'MAX_SCRIPT_NUMBER',
    'EncodingError',
    'encode_script_number',
    'decode_script_number',
)
