# Copyright (C) 2012-2014 The python-bitcoinlib developers
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

"""Addresses

Representing P2SH and P2PKH addresses and converting them to/from
scriptPubKeys. Which version bytes are used depends on the selected chain
parameters, see cltvtx.select_chain_params().
"""

# pylama:ignore=E501,E221

from contextlib import contextmanager
from typing import (
    Type, TypeVar, Union, Optional, List, Generator, cast
)

import cltvtx
import cltvtx.base58

from cltvtx.util import ensure_isinstance
from cltvtx.core.key import CPubKey
from cltvtx.core.script import (
    CScript, standard_keyhash_scriptpubkey, standard_scripthash_scriptpubkey
)


T_CCoinAddress = TypeVar('T_CCoinAddress', bound='CCoinAddress')
T_P2SHAddress = TypeVar('T_P2SHAddress', bound='P2SHAddress')
T_P2PKHAddress = TypeVar('T_P2PKHAddress', bound='P2PKHAddress')

ChainParamsArg = Optional[cltvtx.ChainParamsArg]


class CCoinAddressError(Exception):
    """Raised when an invalid coin address is encountered"""


class P2SHAddressError(CCoinAddressError):
    """Raised when an invalid P2SH address is encountered"""


class P2PKHAddressError(CCoinAddressError):
    """Raised when an invalid P2PKH address is encountered"""


class CCoinAddress(cltvtx.base58.CBase58Data):
    """A base58 address holding a 20-byte hash

    CCoinAddress('<address string>') returns an instance of the P2SH or
    P2PKH class of the current chain params, chosen by the version byte.
    Abstract classes (P2SHAddress, P2PKHAddress) resolve to the concrete
    class of the current chain params as well.
    """

    _data_length = 20

    def __init__(self, s: Optional[str]) -> None:
        if len(self) != self._data_length:
            raise CCoinAddressError(
                'length of the data is not {}'.format(self._data_length))

    @classmethod
    def _concrete_classes(cls: Type[T_CCoinAddress]
                          ) -> List[Type[T_CCoinAddress]]:
        params = cltvtx.get_current_chain_params()
        candidates = [params.p2sh_address_class(),
                      params.p2pkh_address_class()]
        return [cast(Type[T_CCoinAddress], c) for c in candidates
                if issubclass(c, cls)]

    @classmethod
    def base58_get_match_candidates(cls: Type[T_CCoinAddress]
                                    ) -> List[Type[T_CCoinAddress]]:
        if cls.base58_prefix:
            return [cls]
        candidates = cls._concrete_classes()
        if not candidates:
            raise TypeError(
                '{} has no address class for chain params {}'.format(
                    cls.__name__, cltvtx.get_current_chain_params().name))
        return candidates

    @classmethod
    def from_bytes(cls: Type[T_CCoinAddress], data: bytes) -> T_CCoinAddress:
        if not cls.base58_prefix:
            candidates = cls._concrete_classes()
            if len(candidates) != 1:
                raise TypeError(
                    'cannot instantiate {} from bytes, address type is '
                    'ambiguous'.format(cls.__name__))
            cls = candidates[0]
        return super(CCoinAddress, cls).from_bytes(data)  # type: ignore

    @classmethod
    def from_scriptPubKey(cls: Type[T_CCoinAddress], scriptPubKey: CScript
                          ) -> T_CCoinAddress:
        """Convert a scriptPubKey to a P2SH or P2PKH address

        Raises CCoinAddressError if the scriptPubKey isn't of either type.
        """
        ensure_isinstance(scriptPubKey, CScript, 'scriptPubKey')
        for candidate in cls._concrete_classes():
            try:
                return candidate.from_scriptPubKey(scriptPubKey)
            except CCoinAddressError:
                pass

        raise CCoinAddressError(
            'scriptPubKey is not in a recognized address format')

    def to_scriptPubKey(self) -> CScript:
        raise NotImplementedError


class P2SHAddress(CCoinAddress):

    @classmethod
    def from_redeemScript(cls: Type[T_P2SHAddress], redeemScript: CScript
                          ) -> T_P2SHAddress:
        """Create a P2SH address from a redeemScript

        Raises P2SHAddressError if the redeemScript exceeds the 520-byte
        push limit, as the output could never be spent.
        """
        ensure_isinstance(redeemScript, CScript, 'redeemScript')
        try:
            scriptPubKey = redeemScript.to_p2sh_scriptPubKey()
        except ValueError as e:
            raise P2SHAddressError(str(e)) from e
        return cls.from_scriptPubKey(scriptPubKey)

    @classmethod
    def from_scriptPubKey(cls: Type[T_P2SHAddress], scriptPubKey: CScript
                          ) -> T_P2SHAddress:
        """Convert a scriptPubKey to a P2SH address

        Raises P2SHAddressError if the scriptPubKey isn't of the correct
        form.
        """
        ensure_isinstance(scriptPubKey, CScript, 'scriptPubKey')
        if scriptPubKey.is_p2sh():
            return cls.from_bytes(scriptPubKey[2:22])
        else:
            raise P2SHAddressError('not a P2SH scriptPubKey')

    def to_scriptPubKey(self) -> CScript:
        """Convert an address to a scriptPubKey"""
        return standard_scripthash_scriptpubkey(self.to_bytes())


class P2PKHAddress(CCoinAddress):

    @classmethod
    def from_pubkey(cls: Type[T_P2PKHAddress],
                    pubkey: Union[CPubKey, bytes, bytearray],
                    accept_invalid: bool = False) -> T_P2PKHAddress:
        """Create a P2PKH address from a pubkey

        Raises P2PKHAddressError if pubkey is invalid, unless accept_invalid
        is True.
        """
        ensure_isinstance(pubkey, (CPubKey, bytes, bytearray), 'pubkey')

        if not accept_invalid:
            if not isinstance(pubkey, CPubKey):
                pubkey = CPubKey(pubkey)
            if not pubkey.is_fullyvalid():
                raise P2PKHAddressError('invalid pubkey')

        return cls.from_bytes(CPubKey(pubkey).key_id)

    @classmethod
    def from_scriptPubKey(cls: Type[T_P2PKHAddress], scriptPubKey: CScript
                          ) -> T_P2PKHAddress:
        """Convert a scriptPubKey to a P2PKH address

        Raises P2PKHAddressError if the scriptPubKey isn't of the correct
        form.
        """
        ensure_isinstance(scriptPubKey, CScript, 'scriptPubKey')
        if scriptPubKey.is_p2pkh():
            return cls.from_bytes(scriptPubKey[3:23])

        raise P2PKHAddressError('not a P2PKH scriptPubKey')

    def to_scriptPubKey(self) -> CScript:
        """Convert an address to a scriptPubKey"""
        return standard_keyhash_scriptpubkey(self.to_bytes())


class P2SHBitcoinAddress(P2SHAddress):
    base58_prefix = bytes([5])


class P2PKHBitcoinAddress(P2PKHAddress):
    base58_prefix = bytes([0])


class P2SHBitcoinTestnetAddress(P2SHAddress):
    base58_prefix = bytes([196])


class P2PKHBitcoinTestnetAddress(P2PKHAddress):
    base58_prefix = bytes([111])


class P2SHBitcoinRegtestAddress(P2SHAddress):
    base58_prefix = bytes([196])


class P2PKHBitcoinRegtestAddress(P2PKHAddress):
    base58_prefix = bytes([111])


@contextmanager
def _chain_params_or_current(params: ChainParamsArg
                             ) -> Generator['cltvtx.ChainParamsBase', None, None]:
    if params is None:
        yield cltvtx.get_current_chain_params()
    else:
        with cltvtx.ChainParams(params) as p:
            yield p


def derive_p2sh_address(redeemScript: CScript,
                        params: ChainParamsArg = None) -> P2SHAddress:
    """P2SH address of a redeem script

    The address uses the script version byte of `params`, or of the
    current chain params if not given.
    """
    with _chain_params_or_current(params) as p:
        return p.p2sh_address_class().from_redeemScript(redeemScript)


def derive_p2pkh_address(pubkey: Union[CPubKey, bytes],
                         params: ChainParamsArg = None) -> P2PKHAddress:
    with _chain_params_or_current(params) as p:
        return p.p2pkh_address_class().from_pubkey(pubkey)


def decode_address(address: str, params: ChainParamsArg = None) -> bytes:
    """Decode an address string to its 20-byte hash

    The checksum is verified, and the version byte must belong to one of
    the address classes of `params` (or of the current chain params);
    failures raise a cltvtx.base58.Base58Error subclass. A payload that is
    not 20 bytes long raises CCoinAddressError.
    """
    ensure_isinstance(address, str, 'address')
    with _chain_params_or_current(params):
        return CCoinAddress(address).to_bytes()


__all__ = (
    'CCoinAddressError',
    'P2SHAddressError',
    'P2PKHAddressError',
    'CCoinAddress',
    'P2SHAddress',
    'P2PKHAddress',
    'P2SHBitcoinAddress',
    'P2PKHBitcoinAddress',
    'P2SHBitcoinTestnetAddress',
    'P2PKHBitcoinTestnetAddress',
    'P2SHBitcoinRegtestAddress',
    'P2PKHBitcoinRegtestAddress',
    'derive_p2sh_address',
    'derive_p2pkh_address',
    'decode_address',
)
