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

"""Transaction builder

Collects inputs (with the policy that unlocks each of them), outputs and
the locktime, obtains signatures from a Signer or from outside, and
assembles the scriptSigs into a finished transaction.

Typical use:

    builder = TransactionBuilder()
    builder.add_input(outpoint, policy.script_pubkey(), value,
                      sequence=0, policy=policy, branch=Branch.ELSE)
    builder.add_output(address, value - fee)
    builder.lock_until_block_height(policy.locktime)
    builder.sign(signer)
    tx = builder.finalize()
"""

import datetime
from typing import Dict, List, Optional, Union

from cltvtx.core import (
    COutPoint, CMutableTxIn, CMutableTxOut, CMutableTransaction,
    CTransaction, CheckTransaction, CheckLockTimeValue, MoneyRange,
    LOCKTIME_THRESHOLD, SEQUENCE_FINAL, str_money_value
)
from cltvtx.core.key import CPubKey
from cltvtx.core.policy import Branch, InvalidPolicy, SpendPolicy
from cltvtx.core.script import CScript, SignatureHash, SIGHASH_ALL, SIGHASH_Type
from cltvtx.signer import MissingSigner, Signer
from cltvtx.util import class_logger, ensure_isinstance
from cltvtx.wallet import CCoinAddress


class SpentOutput:
    """What the builder knows about the output an input spends"""

    def __init__(self, scriptPubKey: CScript, value: int,
                 policy: Optional[SpendPolicy],
                 branch: Optional[Branch],
                 agreement_hash: Optional[bytes]) -> None:
        self.scriptPubKey = scriptPubKey
        self.value = value
        self.policy = policy
        self.branch = branch
        self.agreement_hash = agreement_hash
        # signatures with the hashtype byte, keyed by pubkey
        self.sigs: Dict[bytes, bytes] = {}

    def script_code(self) -> CScript:
        if self.policy is None:
            return self.scriptPubKey
        return self.policy.script_code()


class TransactionBuilder:

    def __init__(self, version: Optional[int] = None, locktime: int = 0,
                 hashtype: SIGHASH_Type = SIGHASH_ALL) -> None:
        self.logger = class_logger(__name__, self.__class__.__name__)
        self.tx = CMutableTransaction(nLockTime=locktime, nVersion=version)
        self.hashtype = SIGHASH_Type(hashtype)
        self.spent_outputs: List[SpentOutput] = []

    def _invalidate_signatures(self) -> None:
        for spent in self.spent_outputs:
            if spent.sigs:
                self.logger.debug('transaction changed, discarding '
                                  'collected signatures')
                spent.sigs.clear()

    def _spent_output(self, index: int) -> SpentOutput:
        ensure_isinstance(index, int, 'input index')
        if not (0 <= index < len(self.spent_outputs)):
            raise IndexError(f'input index {index} out of range '
                             f'({len(self.spent_outputs)} inputs)')
        return self.spent_outputs[index]

    def _policy(self, index: int) -> SpendPolicy:
        policy = self._spent_output(index).policy
        if policy is None:
            raise InvalidPolicy(f'input {index} has no spending policy')
        return policy

    def add_input(self, outpoint: Union[COutPoint, str],
                  prior_locking_script: Union[CScript, bytes], value: int,
                  sequence: int = SEQUENCE_FINAL, *,
                  policy: Optional[SpendPolicy] = None,
                  branch: Optional[Branch] = None,
                  agreement_hash: Optional[bytes] = None) -> int:
        """Add an input spending `outpoint`

        prior_locking_script and value describe the output being spent.
        The policy, if given, must produce that scriptPubKey. Inputs without
        a policy can not be signed by the builder, their scriptSig is left
        empty.

        Returns the index of the new input.
        """
        if isinstance(outpoint, str):
            outpoint = COutPoint.from_str(outpoint)
        ensure_isinstance(outpoint, COutPoint, 'outpoint')
        ensure_isinstance(prior_locking_script, (bytes, bytearray),
                          'prior locking script')
        prior_locking_script = CScript(prior_locking_script)
        ensure_isinstance(value, int, 'value')
        if not MoneyRange(value):
            raise ValueError(f'value {value} out of range')

        if policy is not None:
            ensure_isinstance(policy, SpendPolicy, 'policy')
            policy.check_branch(branch)
            policy.check_agreement_hash(agreement_hash, branch)
            if policy.script_pubkey() != prior_locking_script:
                raise InvalidPolicy(
                    'policy scriptPubKey {} does not match the locking '
                    'script of the spent output {}'.format(
                        policy.script_pubkey().hex(),
                        prior_locking_script.hex()))
        elif branch is not None or agreement_hash is not None:
            raise InvalidPolicy('branch and agreement_hash need a policy')

        self._invalidate_signatures()
        self.tx.vin.append(CMutableTxIn(outpoint, nSequence=sequence))
        self.spent_outputs.append(
            SpentOutput(prior_locking_script, value, policy, branch,
                        agreement_hash))
        return len(self.tx.vin) - 1

    def add_output(self, address_or_script: Union[CCoinAddress, CScript, str],
                   value: int) -> int:
        """Add an output paying `value` satoshis

        A string is parsed as an address of the current chain params.
        Returns the index of the new output.
        """
        if isinstance(address_or_script, str):
            address_or_script = CCoinAddress(address_or_script)

        if isinstance(address_or_script, CCoinAddress):
            scriptPubKey = address_or_script.to_scriptPubKey()
        else:
            ensure_isinstance(address_or_script, (bytes, bytearray),
                              'address or script')
            scriptPubKey = CScript(address_or_script)

        ensure_isinstance(value, int, 'value')
        if not MoneyRange(value):
            raise ValueError(f'value {value} out of range')

        self._invalidate_signatures()
        self.tx.vout.append(CMutableTxOut(value, scriptPubKey))
        return len(self.tx.vout) - 1

    def set_locktime(self, locktime: int) -> None:
        ensure_isinstance(locktime, int, 'locktime')
        if not (0 <= locktime <= 0xffffffff):
            raise ValueError(f'locktime {locktime} out of range')
        self._invalidate_signatures()
        self.tx.nLockTime = locktime

    def lock_until_block_height(self, height: int) -> None:
        ensure_isinstance(height, int, 'height')
        if not (0 <= height < LOCKTIME_THRESHOLD):
            raise ValueError(f'block height must be between 0 and '
                             f'{LOCKTIME_THRESHOLD - 1}, got {height}')
        self.set_locktime(height)

    def lock_until_date(self, date: Union[datetime.datetime, int]) -> None:
        """Set nLockTime to a unix timestamp (or datetime)"""
        if isinstance(date, datetime.datetime):
            date = int(date.timestamp())
        ensure_isinstance(date, int, 'date')
        if date < LOCKTIME_THRESHOLD:
            raise ValueError(f'timestamp must be at least '
                             f'{LOCKTIME_THRESHOLD}, got {date}')
        self.set_locktime(date)

    def sighash(self, index: int) -> bytes:
        """Signature hash for input `index`, as it has to be signed"""
        spent = self._spent_output(index)
        digest = SignatureHash(spent.script_code(), self.tx, index,
                               self.hashtype)
        self.logger.debug(f'sighash for input {index}: {digest.hex()}')
        return digest

    def sign_input(self, index: int, signer: Signer,
                   pubkey: Optional[bytes] = None) -> int:
        """Sign input `index` with every required key the signer holds

        If pubkey is given, only that key is used. Returns the number of
        signatures added. Raises MissingSigner if the signer holds none of
        the keys asked for.
        """
        ensure_isinstance(signer, Signer, 'signer')
        spent = self._spent_output(index)
        policy = self._policy(index)
        signers = policy.required_signers(spent.branch)

        if pubkey is not None:
            pubkey = CPubKey(pubkey)
            if pubkey not in signers:
                raise InvalidPolicy(f'{pubkey.hex()} is not a signer of '
                                    f'input {index}')
            candidates = [pubkey] if signer.has_key(pubkey) else []
        else:
            candidates = [pub for pub in signers if signer.has_key(pub)]

        if not candidates:
            raise MissingSigner(
                f'signer holds none of the keys needed for input {index}',
                index=index,
                pubkeys=signers if pubkey is None else (pubkey,))

        digest = self.sighash(index)
        for pub in candidates:
            sig = signer.sign(digest, pub) + bytes([self.hashtype])
            self.logger.debug(f'input {index} signed by {pub.hex()}')
            spent.sigs[pub] = sig
        return len(candidates)

    def sign(self, signer: Signer) -> int:
        """Sign every input the signer holds keys for

        Returns the number of signatures added. Raises MissingSigner if
        the signer could not sign anything.
        """
        ensure_isinstance(signer, Signer, 'signer')
        count = 0
        for index, spent in enumerate(self.spent_outputs):
            if spent.policy is None:
                continue
            signers = spent.policy.required_signers(spent.branch)
            if any(signer.has_key(pub) for pub in signers):
                count += self.sign_input(index, signer)

        if not count:
            raise MissingSigner('signer holds none of the required keys')
        return count

    def add_signature(self, index: int, pubkey: bytes, signature: bytes, *,
                      with_hashtype: bool = False) -> None:
        """Add a signature made elsewhere over self.sighash(index)

        The signature is checked against the current signature hash. Unless
        with_hashtype is set, the hashtype byte is appended.
        """
        spent = self._spent_output(index)
        policy = self._policy(index)
        pubkey = CPubKey(pubkey)
        if pubkey not in policy.required_signers(spent.branch):
            raise InvalidPolicy(f'{pubkey.hex()} is not a signer of '
                                f'input {index}')

        ensure_isinstance(signature, (bytes, bytearray), 'signature')
        signature = bytes(signature)
        if with_hashtype:
            if not signature or signature[-1] != self.hashtype:
                raise ValueError(f'signature does not end with hashtype '
                                 f'{int(self.hashtype)}')
            der = signature[:-1]
        else:
            der = signature
            signature = signature + bytes([self.hashtype])

        if not pubkey.verify(self.sighash(index), der):
            raise ValueError(f'signature for input {index} does not verify '
                             f'with {pubkey.hex()}')

        self.logger.debug(f'input {index}: added signature of {pubkey.hex()}')
        spent.sigs[pubkey] = signature

    def fee(self) -> int:
        return (sum(spent.value for spent in self.spent_outputs)
                - sum(txout.nValue for txout in self.tx.vout))

    def finalize(self) -> CTransaction:
        """Check all inputs, write the scriptSigs and return the transaction

        Raises MissingSigner if an input lacks signatures and a
        LocktimeError subclass (LocktimeTooLow, LocktimeTypeMismatch) if
        nLockTime does not satisfy the lock of a non-final input. Final
        inputs are only warned about. No scriptSig is written unless
        every input passes.
        """
        for index, spent in enumerate(self.spent_outputs):
            if spent.policy is None:
                self.logger.info(f'input {index} has no policy, leaving its '
                                 f'scriptSig empty')
                continue

            missing = spent.policy.missing_signers(spent.sigs, spent.branch)
            if missing:
                raise MissingSigner(
                    'input {} needs signatures of {}'.format(
                        index, ', '.join(pub.hex() for pub in missing)),
                    index=index, pubkeys=missing)

            lock = spent.policy.required_locktime(spent.branch)
            if lock is None:
                continue
            if self.tx.vin[index].is_final():
                # a lock on a final input is not enforced, nothing to check
                self.logger.warning(
                    f'input {index} has a final sequence number, the '
                    f'lock of {lock} will not be enforced')
                continue
            CheckLockTimeValue(self.tx.nLockTime, lock)

        CheckTransaction(self.tx)

        fee = self.fee()
        if fee < 0:
            raise ValueError(f'outputs exceed inputs by '
                             f'{str_money_value(-fee)}')

        script_sigs = [
            None if spent.policy is None else spent.policy.build_script_sig(
                spent.sigs, spent.branch, spent.agreement_hash)
            for spent in self.spent_outputs]

        for txin, script_sig in zip(self.tx.vin, script_sigs):
            if script_sig is not None:
                txin.scriptSig = script_sig

        tx = self.tx.to_immutable()
        self.logger.info(f'finalized {len(tx.vin)} inputs, '
                         f'{len(tx.vout)} outputs, fee {str_money_value(fee)}')
        return tx


__all__ = (
    'SpentOutput',
    'TransactionBuilder',
)
