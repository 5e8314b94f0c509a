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

"""Signers

A signer produces DER signatures over signature hashes for the public keys
it holds. The transaction builder only talks to this interface, so keys
can live anywhere: KeySigner keeps them in process, other implementations
may forward the digest to a hardware device or another party.
"""

from abc import ABC, abstractmethod
from typing import Dict, Iterable, Tuple

from cltvtx.core.key import CKey, CPubKey
from cltvtx.util import class_logger, ensure_isinstance


class MissingSigner(Exception):
    """No signature could be obtained for a required key"""

    def __init__(self, msg: str, *, index: int = -1,
                 pubkeys: Tuple[bytes, ...] = ()):
        super().__init__(msg)
        self.index = index
        self.pubkeys = pubkeys


class Signer(ABC):

    @abstractmethod
    def sign(self, digest: bytes, pubkey: bytes) -> bytes:
        """Sign a 32-byte digest with the key for pubkey

        Returns the DER signature without the hashtype byte. Raises
        MissingSigner if the key is not held.
        """

    @abstractmethod
    def public_keys(self) -> Tuple[CPubKey, ...]:
        ...

    def has_key(self, pubkey: bytes) -> bool:
        return pubkey in self.public_keys()


class KeySigner(Signer):
    """Signs with private keys held in memory"""

    def __init__(self, keys: Iterable[CKey]) -> None:
        self.logger = class_logger(__name__, self.__class__.__name__)
        self._keys: Dict[bytes, CKey] = {}
        for key in keys:
            ensure_isinstance(key, CKey, 'key')
            self._keys[bytes(key.pub)] = key

    def public_keys(self) -> Tuple[CPubKey, ...]:
        return tuple(key.pub for key in self._keys.values())

    def has_key(self, pubkey: bytes) -> bool:
        return bytes(pubkey) in self._keys

    def sign(self, digest: bytes, pubkey: bytes) -> bytes:
        key = self._keys.get(bytes(pubkey))
        if key is None:
            raise MissingSigner(f'no private key for {bytes(pubkey).hex()}',
                                pubkeys=(bytes(pubkey),))
        self.logger.debug(f'signing {digest.hex()} with {key.pub.hex()}')
        return key.sign(digest)


__all__ = (
    'MissingSigner',
    'Signer',
    'KeySigner',
)
