# Copyright (C) 2011 Sam Rushing
# Copyright (C) 2012-2015 The python-bitcoinlib developers
# Copyright (C) 2018-2019 The python-bitcointx developers
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

"""ECC secp256k1 keys

Private and public key classes. Curve arithmetic, RFC 6979 nonces and DER
encoding are delegated to the ecdsa library.
"""

import hashlib
from typing import Type, TypeVar, Union

from ecdsa import SECP256k1, SigningKey, VerifyingKey, BadSignatureError
from ecdsa.der import UnexpectedDER
from ecdsa.keys import MalformedPointError
from ecdsa.util import sigencode_der_canonize, sigdecode_der

from .serialize import Hash160
from ..util import ensure_isinstance

PUBLIC_KEY_SIZE = 65
COMPRESSED_PUBLIC_KEY_SIZE = 33

T_CPubKey = TypeVar('T_CPubKey', bound='CPubKey')


class CPubKey(bytes):
    """An encapsulated public key

    Attributes:

    key_id        - Hash160(pubkey)
    """

    __key_id: bytes
    __fullyvalid: bool

    def __new__(cls: Type[T_CPubKey], buf: bytes = b'') -> T_CPubKey:
        self = super().__new__(cls, buf)

        self.__fullyvalid = False
        if self._has_sec_prefix():
            try:
                VerifyingKey.from_string(bytes(self), curve=SECP256k1)
                self.__fullyvalid = True
            except MalformedPointError:
                pass

        self.__key_id = Hash160(self)
        return self

    def _has_sec_prefix(self) -> bool:
        if len(self) == COMPRESSED_PUBLIC_KEY_SIZE:
            return self[0] in (0x02, 0x03)
        if len(self) == PUBLIC_KEY_SIZE:
            return self[0] == 0x04
        return False

    @property
    def key_id(self) -> bytes:
        return self.__key_id

    def is_nonempty(self) -> bool:
        return not self.is_null()

    def is_null(self) -> bool:
        return len(self) == 0

    def is_fullyvalid(self) -> bool:
        return self.__fullyvalid

    def is_compressed(self) -> bool:
        return len(self) == COMPRESSED_PUBLIC_KEY_SIZE

    def __str__(self) -> str:
        return repr(self)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(x('{self.hex()}'))"

    def verify(self, hash: bytes, sig: bytes) -> bool:
        """Verify a DER signature over a 32-byte digest"""

        ensure_isinstance(sig, (bytes, bytearray), 'signature')
        ensure_isinstance(hash, (bytes, bytearray), 'hash')

        if len(hash) != 32:
            raise ValueError('Hash must be exactly 32 bytes long')

        if not sig or not self.is_fullyvalid():
            return False

        vk = VerifyingKey.from_string(bytes(self), curve=SECP256k1)
        try:
            return vk.verify_digest(bytes(sig), bytes(hash),
                                    sigdecode=sigdecode_der)
        except (BadSignatureError, UnexpectedDER):
            return False


class CKey(bytes):
    """An encapsulated private key

    Attributes:

    pub           - The corresponding CPubKey for this private key
    secret_bytes  - Secret data, 32 bytes

    is_compressed() - True if compressed
    """

    __pub: CPubKey
    __signing_key: SigningKey

    def __new__(cls: Type['CKey'], secret: bytes, compressed: bool = True
                ) -> 'CKey':
        ensure_isinstance(secret, (bytes, bytearray), 'secret')
        if len(secret) != 32:
            raise ValueError('secret size must be exactly 32 bytes')

        self = super().__new__(cls, secret)

        try:
            self.__signing_key = SigningKey.from_string(
                bytes(secret), curve=SECP256k1)
        except MalformedPointError:
            raise ValueError('Invalid private key data')

        vk = self.__signing_key.get_verifying_key()
        self.__pub = CPubKey(
            vk.to_string('compressed' if compressed else 'uncompressed'))
        return self

    @classmethod
    def from_secret_bytes(cls, secret: bytes, compressed: bool = True
                          ) -> 'CKey':
        return cls(secret, compressed=compressed)

    @classmethod
    def from_passphrase(cls, passphrase: Union[str, bytes],
                        compressed: bool = True) -> 'CKey':
        """Brain-wallet key: the secret is SHA256 of the passphrase.

        Only suitable for tests and demonstrations.
        """
        if isinstance(passphrase, str):
            passphrase = passphrase.encode('utf-8')
        return cls(hashlib.sha256(passphrase).digest(), compressed=compressed)

    def is_compressed(self) -> bool:
        return self.pub.is_compressed()

    @property
    def secret_bytes(self) -> bytes:
        return bytes(self[:32])

    @property
    def pub(self) -> CPubKey:
        return self.__pub

    def sign(self, hash: Union[bytes, bytearray]) -> bytes:
        """Sign a 32-byte digest, returning a low-S DER signature

        Nonces are deterministic (RFC 6979), so signing the same digest
        twice gives the same signature.
        """
        ensure_isinstance(hash, (bytes, bytearray), 'hash')
        if len(hash) != 32:
            raise ValueError('Hash must be exactly 32 bytes long')

        return self.__signing_key.sign_digest_deterministic(
            bytes(hash), hashfunc=hashlib.sha256,
            sigencode=sigencode_der_canonize)

    def verify(self, hash: bytes, sig: bytes) -> bool:
        return self.pub.verify(hash, sig)

    def __repr__(self) -> str:
        # never print the secret
        return f"{self.__class__.__name__}(pub={self.pub!r})"


__all__ = (
    'PUBLIC_KEY_SIZE',
    'COMPRESSED_PUBLIC_KEY_SIZE',
    'CPubKey',
    'CKey',
)
