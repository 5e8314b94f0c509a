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

"""Spending policies for P2SH outputs

A policy is the redeem script template of an output together with the
knowledge of how to unlock it: which keys have to sign on which branch,
which lock value the spending transaction must satisfy, and how the
scriptSig is laid out.
"""

import enum
from typing import Iterable, List, Mapping, Optional, Tuple, Union

from .key import CPubKey
from .script import (
    CScript, MAX_SCRIPT_ELEMENT_SIZE,
    OP_0, OP_1, OP_IF, OP_ELSE, OP_ENDIF, OP_DROP, OP_DUP, OP_HASH160,
    OP_EQUALVERIFY, OP_CHECKSIG, OP_CHECKSIGVERIFY, OP_CHECKMULTISIG,
    OP_CHECKLOCKTIMEVERIFY, standard_keyhash_scriptpubkey
)
from .serialize import Hash160
from ..util import ensure_isinstance

MAX_PUBKEYS_PER_MULTISIG = 15

PubKey_Type = Union[CPubKey, bytes, bytearray]


class InvalidPolicy(ValueError):
    """The parameters do not describe a spendable policy"""


class Branch(enum.Enum):
    """Execution path through an IF/ELSE/ENDIF redeem script"""

    IF = 1
    ELSE = 0


def agreement_hash(data: Union[bytes, bytearray, str]) -> bytes:
    """Hash160 of an agreement document, as committed to by
    standard_conditional_redeem_script()"""
    if isinstance(data, str):
        data = data.encode('utf-8')
    ensure_isinstance(data, (bytes, bytearray), 'agreement data')
    return Hash160(data)


def _check_pubkey(pubkey: PubKey_Type, description: str = 'pubkey'
                  ) -> CPubKey:
    ensure_isinstance(pubkey, (bytes, bytearray), description)
    pubkey = CPubKey(pubkey)
    if not pubkey.is_fullyvalid():
        raise InvalidPolicy(f'{description} is not a valid public key: '
                            f'{pubkey.hex()}')
    return pubkey


def _check_lock(locktime: int) -> int:
    ensure_isinstance(locktime, int, 'locktime')
    if isinstance(locktime, bool):
        raise InvalidPolicy('locktime must be an integer, not bool')
    if locktime < 0:
        raise InvalidPolicy(f'locktime must not be negative, got {locktime}')
    # nLockTime is an unsigned 32-bit field, a larger lock can never be met
    if locktime > 0xffffffff:
        raise InvalidPolicy(f'locktime {locktime} is out of range')
    return locktime


def _check_redeem_script_size(script: CScript) -> CScript:
    if len(script) > MAX_SCRIPT_ELEMENT_SIZE:
        raise InvalidPolicy(
            f'redeem script is {len(script)} bytes, more than '
            f'{MAX_SCRIPT_ELEMENT_SIZE} bytes can not be pushed to spend it')
    return script


def standard_timelock_keyhash_redeem_script(locktime: int,
                                            pubkey: PubKey_Type) -> CScript:
    """<locktime> CLTV DROP DUP HASH160 <Hash160(pubkey)> EQUALVERIFY CHECKSIG"""
    locktime = _check_lock(locktime)
    pubkey = _check_pubkey(pubkey)
    return CScript([locktime, OP_CHECKLOCKTIMEVERIFY, OP_DROP,
                    OP_DUP, OP_HASH160, pubkey.key_id,
                    OP_EQUALVERIFY, OP_CHECKSIG])


def standard_conditional_redeem_script(
    locktime: int, branch_pubkey: PubKey_Type, common_pubkey: PubKey_Type,
    commitment: Optional[bytes] = None
) -> CScript:
    """Two-path redeem script

    IF [<commitment> EQUALVERIFY] <branch_pubkey> CHECKSIGVERIFY
    ELSE <locktime> CLTV DROP
    ENDIF <common_pubkey> CHECKSIG

    The IF path needs signatures of both keys (and the 20-byte commitment,
    if given). The ELSE path only needs the common key, but not before
    the lock has passed.
    """
    locktime = _check_lock(locktime)
    branch_pubkey = _check_pubkey(branch_pubkey, 'branch pubkey')
    common_pubkey = _check_pubkey(common_pubkey, 'common pubkey')

    elements: List[Union[int, bytes]] = [OP_IF]
    if commitment is not None:
        ensure_isinstance(commitment, (bytes, bytearray), 'commitment')
        if len(commitment) != 20:
            raise InvalidPolicy('commitment must be a 20-byte hash')
        elements.extend([bytes(commitment), OP_EQUALVERIFY])
    elements.extend([branch_pubkey, OP_CHECKSIGVERIFY,
                     OP_ELSE,
                     locktime, OP_CHECKLOCKTIMEVERIFY, OP_DROP,
                     OP_ENDIF,
                     common_pubkey, OP_CHECKSIG])
    return _check_redeem_script_size(CScript(elements))


def standard_multisig_redeem_script(required: int,
                                    pubkeys: Iterable[PubKey_Type]
                                    ) -> CScript:
    """<required> <pubkey>... <n> CHECKMULTISIG

    Keys are kept in the given order, so a different order gives a
    different script (and address).
    """
    ensure_isinstance(required, int, 'required')
    pubkeys = [_check_pubkey(pub) for pub in pubkeys]
    if not pubkeys:
        raise InvalidPolicy('multisig needs at least one pubkey')
    if len(pubkeys) > MAX_PUBKEYS_PER_MULTISIG:
        raise InvalidPolicy(
            f'at most {MAX_PUBKEYS_PER_MULTISIG} pubkeys are allowed in '
            f'P2SH multisig, got {len(pubkeys)}')
    if not (1 <= required <= len(pubkeys)):
        raise InvalidPolicy(
            f'required signatures must be between 1 and {len(pubkeys)}, '
            f'got {required}')
    if len(set(pubkeys)) != len(pubkeys):
        raise InvalidPolicy('duplicate pubkeys in multisig')

    return _check_redeem_script_size(
        CScript([required, *pubkeys, len(pubkeys), OP_CHECKMULTISIG]))


class SpendPolicy:
    """Base class for spending policies

    Subclasses set redeem_script (None for outputs that are not P2SH)
    and implement the signer, lock and scriptSig methods.
    """

    redeem_script: Optional[CScript] = None
    branched = False

    def _p2sh_redeem_script(self) -> CScript:
        if self.redeem_script is None:
            raise InvalidPolicy(
                f'{self.__class__.__name__} has no redeem script')
        return self.redeem_script

    def script_pubkey(self) -> CScript:
        """The scriptPubKey of outputs locked by this policy"""
        return self._p2sh_redeem_script().to_p2sh_scriptPubKey()

    def script_code(self) -> CScript:
        """The script committed to by signature hashes"""
        return self._p2sh_redeem_script()

    def address(self, params: Optional[object] = None
                ) -> 'cltvtx.wallet.CCoinAddress':
        import cltvtx.wallet
        return cltvtx.wallet.derive_p2sh_address(self._p2sh_redeem_script(),
                                                 params)  # type: ignore

    def check_branch(self, branch: Optional[Branch]) -> Optional[Branch]:
        if self.branched:
            if branch is None:
                raise InvalidPolicy(
                    f'{self.__class__.__name__} needs a branch to be chosen')
            ensure_isinstance(branch, Branch, 'branch')
        elif branch is not None:
            raise InvalidPolicy(
                f'{self.__class__.__name__} has no branches')
        return branch

    def required_signers(self, branch: Optional[Branch] = None
                         ) -> Tuple[CPubKey, ...]:
        """Keys that may sign on the given branch"""
        raise NotImplementedError

    def signatures_needed(self, branch: Optional[Branch] = None) -> int:
        """How many of required_signers() have to sign"""
        return len(self.required_signers(branch))

    def required_locktime(self, branch: Optional[Branch] = None
                          ) -> Optional[int]:
        """Lock value the spending transaction must satisfy, if any"""
        self.check_branch(branch)
        return None

    def missing_signers(self, sigs: Mapping[bytes, bytes],
                        branch: Optional[Branch] = None
                        ) -> Tuple[CPubKey, ...]:
        """Required keys that have no signature in sigs yet

        Empty if enough signatures are present.
        """
        signers = self.required_signers(branch)
        have = [pub for pub in signers if pub in sigs]
        if len(have) >= self.signatures_needed(branch):
            return ()
        return tuple(pub for pub in signers if pub not in sigs)

    def check_agreement_hash(self, agreement_hash: Optional[bytes],
                             branch: Optional[Branch] = None
                             ) -> Optional[bytes]:
        if agreement_hash is not None:
            raise InvalidPolicy(
                f'{self.__class__.__name__} does not commit to a hash')
        return None

    def _ordered_sigs(self, sigs: Mapping[bytes, bytes],
                      branch: Optional[Branch]) -> List[bytes]:
        missing = self.missing_signers(sigs, branch)
        if missing:
            raise ValueError('signatures missing for {}'.format(
                ', '.join(pub.hex() for pub in missing)))
        result = [sigs[pub] for pub in self.required_signers(branch)
                  if pub in sigs]
        return result[:self.signatures_needed(branch)]

    def build_script_sig(self, sigs: Mapping[bytes, bytes],
                         branch: Optional[Branch] = None,
                         agreement_hash: Optional[bytes] = None) -> CScript:
        """Assemble the scriptSig from signatures keyed by pubkey

        The signatures must already carry the hashtype byte.
        """
        raise NotImplementedError

    def __repr__(self) -> str:
        return '%s(%r)' % (self.__class__.__name__, self.redeem_script)


class KeyHashPolicy(SpendPolicy):
    """Plain pay-to-pubkey-hash output, as used for funding transactions"""

    def __init__(self, pubkey: PubKey_Type) -> None:
        self.pubkey = _check_pubkey(pubkey)

    def script_pubkey(self) -> CScript:
        return standard_keyhash_scriptpubkey(self.pubkey.key_id)

    def script_code(self) -> CScript:
        return self.script_pubkey()

    def address(self, params: Optional[object] = None
                ) -> 'cltvtx.wallet.CCoinAddress':
        import cltvtx.wallet
        return cltvtx.wallet.derive_p2pkh_address(self.pubkey,
                                                  params)  # type: ignore

    def required_signers(self, branch: Optional[Branch] = None
                         ) -> Tuple[CPubKey, ...]:
        self.check_branch(branch)
        return (self.pubkey,)

    def build_script_sig(self, sigs: Mapping[bytes, bytes],
                         branch: Optional[Branch] = None,
                         agreement_hash: Optional[bytes] = None) -> CScript:
        self.check_agreement_hash(agreement_hash, branch)
        (sig,) = self._ordered_sigs(sigs, branch)
        return CScript([sig, self.pubkey])

    def __repr__(self) -> str:
        return '%s(%r)' % (self.__class__.__name__, self.pubkey)


class TimelockKeyHashPolicy(SpendPolicy):
    """Output spendable by one key, once the lock has passed"""

    def __init__(self, locktime: int, pubkey: PubKey_Type) -> None:
        self.locktime = _check_lock(locktime)
        self.pubkey = _check_pubkey(pubkey)
        self.redeem_script = standard_timelock_keyhash_redeem_script(
            self.locktime, self.pubkey)

    def required_signers(self, branch: Optional[Branch] = None
                         ) -> Tuple[CPubKey, ...]:
        self.check_branch(branch)
        return (self.pubkey,)

    def required_locktime(self, branch: Optional[Branch] = None
                          ) -> Optional[int]:
        self.check_branch(branch)
        return self.locktime

    def build_script_sig(self, sigs: Mapping[bytes, bytes],
                         branch: Optional[Branch] = None,
                         agreement_hash: Optional[bytes] = None) -> CScript:
        self.check_agreement_hash(agreement_hash, branch)
        (sig,) = self._ordered_sigs(sigs, branch)
        return CScript([sig, self.pubkey, self.script_code()])


class ConditionalPolicy(SpendPolicy):
    """Two-path output, see standard_conditional_redeem_script()

    Branch.IF needs signatures of the branch key and the common key;
    Branch.ELSE needs only the common key, after the lock.
    """

    branched = True

    def __init__(self, locktime: int, branch_pubkey: PubKey_Type,
                 common_pubkey: PubKey_Type,
                 commitment: Optional[bytes] = None) -> None:
        self.locktime = _check_lock(locktime)
        self.branch_pubkey = _check_pubkey(branch_pubkey, 'branch pubkey')
        self.common_pubkey = _check_pubkey(common_pubkey, 'common pubkey')
        self.commitment = None if commitment is None else bytes(commitment)
        self.redeem_script = standard_conditional_redeem_script(
            self.locktime, self.branch_pubkey, self.common_pubkey,
            self.commitment)

    def required_signers(self, branch: Optional[Branch] = None
                         ) -> Tuple[CPubKey, ...]:
        # order matches the scriptSig: the common signature is deepest
        if self.check_branch(branch) is Branch.IF:
            return (self.common_pubkey, self.branch_pubkey)
        return (self.common_pubkey,)

    def required_locktime(self, branch: Optional[Branch] = None
                          ) -> Optional[int]:
        if self.check_branch(branch) is Branch.ELSE:
            return self.locktime
        return None

    def check_agreement_hash(self, agreement_hash: Optional[bytes],
                             branch: Optional[Branch] = None
                             ) -> Optional[bytes]:
        if self.check_branch(branch) is Branch.ELSE or self.commitment is None:
            return super().check_agreement_hash(agreement_hash, branch)

        if agreement_hash is None:
            return self.commitment
        ensure_isinstance(agreement_hash, (bytes, bytearray), 'agreement_hash')
        if bytes(agreement_hash) != self.commitment:
            raise InvalidPolicy(
                'agreement hash {} does not match the committed hash {}'
                .format(bytes(agreement_hash).hex(), self.commitment.hex()))
        return self.commitment

    def build_script_sig(self, sigs: Mapping[bytes, bytes],
                         branch: Optional[Branch] = None,
                         agreement_hash: Optional[bytes] = None) -> CScript:
        commitment = self.check_agreement_hash(agreement_hash, branch)
        ordered = self._ordered_sigs(sigs, branch)
        elements: List[Union[int, bytes]] = list(ordered)
        if branch is Branch.IF:
            if commitment is not None:
                elements.append(commitment)
            elements.append(OP_1)
        else:
            elements.append(OP_0)
        elements.append(self.script_code())
        return CScript(elements)


class MultisigPolicy(SpendPolicy):
    """k-of-n multisig output"""

    def __init__(self, required: int, pubkeys: Iterable[PubKey_Type]) -> None:
        pubkeys = list(pubkeys)
        self.redeem_script = standard_multisig_redeem_script(required, pubkeys)
        self.required = required
        self.pubkeys = tuple(CPubKey(pub) for pub in pubkeys)

    def required_signers(self, branch: Optional[Branch] = None
                         ) -> Tuple[CPubKey, ...]:
        self.check_branch(branch)
        return self.pubkeys

    def signatures_needed(self, branch: Optional[Branch] = None) -> int:
        return self.required

    def build_script_sig(self, sigs: Mapping[bytes, bytes],
                         branch: Optional[Branch] = None,
                         agreement_hash: Optional[bytes] = None) -> CScript:
        self.check_agreement_hash(agreement_hash, branch)
        # OP_0 for the extra element CHECKMULTISIG pops
        return CScript([OP_0, *self._ordered_sigs(sigs, branch),
                        self.script_code()])


__all__ = (
    'MAX_PUBKEYS_PER_MULTISIG',
    'InvalidPolicy',
    'Branch',
    'agreement_hash',
    'standard_timelock_keyhash_redeem_script',
    'standard_conditional_redeem_script',
    'standard_multisig_redeem_script',
    'SpendPolicy',
    'KeyHashPolicy',
    'TimelockKeyHashPolicy',
    'ConditionalPolicy',
    'MultisigPolicy',
)
