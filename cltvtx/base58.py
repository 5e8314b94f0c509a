# Copyright (C) 2011 Sam Rushing
# Copyright (C) 2013-2014 The python-bitcoinlib developers
# Copyright (C) 2019 The python-bitcointx developers
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

# pylama:ignore=E501

"""Base58 and Base58Check encoding, as used by legacy addresses"""

from typing import TypeVar, Type, List, Optional

from .core.serialize import Hash

B58_DIGITS = '123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz'

_B58_VALUES = {c: i for i, c in enumerate(B58_DIGITS)}

CHECKSUM_LEN = 4

T_CBase58Data = TypeVar('T_CBase58Data', bound='CBase58Data')


class Base58Error(ValueError):
    pass


class UnexpectedBase58PrefixError(Base58Error):
    """The version prefix of decoded data is not the one expected"""


class InvalidBase58Error(Base58Error):
    """The string contains characters outside of the base58 alphabet"""


class Base58ChecksumError(Base58Error):
    pass


def encode(b: bytes) -> str:
    """Encode bytes as base58

    Each leading zero byte becomes a leading '1'.
    """
    zeros = len(b) - len(b.lstrip(b'\x00'))
    n = int.from_bytes(b, 'big')
    digits = []
    while n:
        n, rem = divmod(n, 58)
        digits.append(B58_DIGITS[rem])
    return B58_DIGITS[0] * zeros + ''.join(reversed(digits))


def decode(s: str) -> bytes:
    """Decode a base58 string to bytes"""
    zeros = len(s) - len(s.lstrip(B58_DIGITS[0]))
    n = 0
    for c in s:
        value = _B58_VALUES.get(c)
        if value is None:
            raise InvalidBase58Error(f'{c!r} is not a base58 character')
        n = n * 58 + value
    return b'\x00' * zeros + n.to_bytes((n.bit_length() + 7) // 8, 'big')


def encode_check(payload: bytes) -> str:
    """Encode payload followed by its 4-byte double-SHA256 checksum"""
    return encode(payload + Hash(payload)[:CHECKSUM_LEN])


def decode_check(s: str) -> bytes:
    """Decode a Base58Check string and return the payload

    Raises Base58ChecksumError if the checksum does not match.
    """
    raw = decode(s)
    if len(raw) < CHECKSUM_LEN:
        raise Base58Error(
            f'base58check data must be at least {CHECKSUM_LEN} bytes long')
    payload, checksum = raw[:-CHECKSUM_LEN], raw[-CHECKSUM_LEN:]
    expected = Hash(payload)[:CHECKSUM_LEN]
    if checksum != expected:
        raise Base58ChecksumError(
            f'checksum mismatch: got {checksum.hex()}, '
            f'expected {expected.hex()}')
    return payload


class CBase58Data(bytes):
    """Payload of a Base58Check string, without prefix and checksum

    Subclasses set base58_prefix to the version bytes they expect.
    Constructing from a string checks that prefix and strips it.
    """

    base58_prefix = b''

    def __new__(cls: Type[T_CBase58Data], s: str) -> T_CBase58Data:
        return cls.base58_from_bytes_match_prefix(decode_check(s))

    def __init__(self, s: Optional[str]) -> None:
        # validation hook for subclasses; s is None when built by from_bytes()
        pass

    def __str__(self) -> str:
        return encode_check(self.base58_prefix + self)

    def __repr__(self) -> str:
        return f'{self.__class__.__name__}({str(self)!r})'

    @classmethod
    def base58_get_match_candidates(cls: Type[T_CBase58Data]
                                    ) -> List[Type[T_CBase58Data]]:
        return [cls] if cls.base58_prefix else []

    @classmethod
    def base58_from_bytes_match_prefix(cls: Type[T_CBase58Data], data: bytes
                                       ) -> T_CBase58Data:
        """Pick the candidate class whose prefix starts data

        With no candidates, data is taken as-is.
        """
        candidates = cls.base58_get_match_candidates()
        if not candidates:
            return cls.from_bytes(data)

        for candidate in candidates:
            prefix = candidate.base58_prefix
            if data[:len(prefix)] == prefix:
                return candidate.from_bytes(data[len(prefix):])

        expected = ', '.join(c.base58_prefix.hex() for c in candidates)
        raise UnexpectedBase58PrefixError(
            f'{cls.__name__}: unexpected base58 prefix in {data[:1].hex()}..., '
            f'expected one of: {expected}')

    @classmethod
    def from_bytes(cls: Type[T_CBase58Data], data: bytes) -> T_CBase58Data:
        self = bytes.__new__(cls, data)
        self.__init__(None)  # type: ignore
        return self

    def to_bytes(self) -> bytes:
        """The payload as plain bytes, prefix not included"""
        return bytes(self)


__all__ = (
    'B58_DIGITS',
    'Base58Error',
    'InvalidBase58Error',
    'UnexpectedBase58PrefixError',
    'Base58ChecksumError',
    'encode',
    'decode',
    'encode_check',
    'decode_check',
    'CBase58Data',
)
