import datetime
import logging

import pytest

from cltvtx import ChainParams
from cltvtx.builder import TransactionBuilder
from cltvtx.core import (
    CheckTransactionError, COutPoint, CTransaction, LocktimeTooLow,
    LocktimeTypeMismatch, SEQUENCE_FINAL, lx
)
from cltvtx.core.key import CKey
from cltvtx.core.policy import (
    Branch, ConditionalPolicy, InvalidPolicy, KeyHashPolicy, MultisigPolicy,
    TimelockKeyHashPolicy, agreement_hash
)
from cltvtx.core.script import CScript, SIGHASH_ALL, SIGHASH_NONE
from cltvtx.signer import KeySigner, MissingSigner
from cltvtx.wallet import derive_p2pkh_address

ALICE = CKey.from_passphrase("alice")
BOB = CKey.from_passphrase("bob")
CAROL = CKey.from_passphrase("carol")

OUTPOINT = "f106249e80307baee9f17226974b77c965941f9cd24d16e885ec235c80331ce4:0"
OTHER_OUTPOINT = "31c7b8eed66e78db9fd45c48cfbf1707779a025ab38b6f24dad38a92d3b61990:0"


@pytest.fixture(autouse=True)
def testnet():
    with ChainParams("testnet"):
        yield


def timelock_builder(lock=1000, locktime=1000, sequence=0):
    policy = TimelockKeyHashPolicy(lock, ALICE.pub)
    builder = TransactionBuilder()
    builder.add_input(OUTPOINT, policy.script_pubkey(), 100000, sequence,
                      policy=policy)
    builder.add_output(derive_p2pkh_address(BOB.pub), 90000)
    builder.set_locktime(locktime)
    return builder, policy


def test_add_input_and_output_indexes():
    builder, policy = timelock_builder()
    assert builder.add_input(OTHER_OUTPOINT, policy.script_pubkey(), 5,
                             policy=policy) == 1
    assert builder.add_output(str(derive_p2pkh_address(CAROL.pub)), 5) == 1
    assert builder.add_output(CScript([b"data"]), 0) == 2
    assert builder.tx.vin[0].prevout == COutPoint.from_str(OUTPOINT)
    assert builder.tx.vin[0].nSequence == 0
    assert builder.tx.vin[1].nSequence == SEQUENCE_FINAL
    assert builder.tx.vout[1].scriptPubKey == derive_p2pkh_address(CAROL.pub).to_scriptPubKey()


def test_add_input_policy_mismatch():
    policy = TimelockKeyHashPolicy(1000, ALICE.pub)
    other = TimelockKeyHashPolicy(1001, ALICE.pub)
    builder = TransactionBuilder()
    with pytest.raises(InvalidPolicy):
        builder.add_input(OUTPOINT, other.script_pubkey(), 100000, policy=policy)
    assert not builder.tx.vin


def test_add_input_branch_checks():
    policy = ConditionalPolicy(1000, BOB.pub, ALICE.pub)
    builder = TransactionBuilder()
    with pytest.raises(InvalidPolicy):
        builder.add_input(OUTPOINT, policy.script_pubkey(), 1, policy=policy)
    with pytest.raises(InvalidPolicy):
        builder.add_input(OUTPOINT, policy.script_pubkey(), 1,
                          policy=policy, branch=Branch.ELSE,
                          agreement_hash=agreement_hash(b"offer"))
    with pytest.raises(InvalidPolicy):
        builder.add_input(OUTPOINT, policy.script_pubkey(), 1,
                          branch=Branch.ELSE)
    with pytest.raises(InvalidPolicy):
        builder.add_input(OUTPOINT, policy.script_pubkey(), 1,
                          policy=TimelockKeyHashPolicy(1000, ALICE.pub),
                          branch=Branch.ELSE)


def test_add_invalid_values():
    policy = KeyHashPolicy(ALICE.pub)
    builder = TransactionBuilder()
    with pytest.raises(ValueError):
        builder.add_input(OUTPOINT, policy.script_pubkey(), -1, policy=policy)
    with pytest.raises(ValueError):
        builder.add_output(derive_p2pkh_address(BOB.pub), 21000000 * 100000000 + 1)
    with pytest.raises(TypeError):
        builder.add_output(derive_p2pkh_address(BOB.pub), 1.5)


def test_add_output_wrong_network_address():
    builder = TransactionBuilder()
    with ChainParams("mainnet"):
        mainnet_address = str(derive_p2pkh_address(BOB.pub))
    with pytest.raises(ValueError):
        builder.add_output(mainnet_address, 1000)


def test_sign_and_finalize():
    builder, policy = timelock_builder()
    assert builder.sign(KeySigner([ALICE])) == 1
    tx = builder.finalize()
    assert isinstance(tx, CTransaction)
    assert not tx.is_mutable()
    assert tx.nLockTime == 1000

    sig, pub, redeem = list(tx.vin[0].scriptSig)
    assert pub == ALICE.pub
    assert redeem == policy.redeem_script
    assert sig[-1] == SIGHASH_ALL
    assert ALICE.pub.verify(builder.sighash(0), sig[:-1])


def test_finalize_without_signature():
    builder, _ = timelock_builder()
    with pytest.raises(MissingSigner) as excinfo:
        builder.finalize()
    assert excinfo.value.index == 0
    assert excinfo.value.pubkeys == (ALICE.pub,)
    assert builder.tx.vin[0].scriptSig == CScript()


def test_sign_with_wrong_signer():
    builder, _ = timelock_builder()
    with pytest.raises(MissingSigner):
        builder.sign(KeySigner([BOB]))
    with pytest.raises(MissingSigner):
        builder.sign_input(0, KeySigner([BOB]))
    with pytest.raises(InvalidPolicy):
        builder.sign_input(0, KeySigner([ALICE, BOB]), BOB.pub)


def test_locktime_too_low():
    builder, _ = timelock_builder(lock=1000, locktime=999)
    builder.sign(KeySigner([ALICE]))
    with pytest.raises(LocktimeTooLow) as excinfo:
        builder.finalize()
    assert excinfo.value.locktime == 999
    assert excinfo.value.required == 1000
    # nothing was written
    assert builder.tx.vin[0].scriptSig == CScript()


def test_locktime_type_mismatch():
    builder, _ = timelock_builder(lock=1000, locktime=1500000000)
    builder.sign(KeySigner([ALICE]))
    with pytest.raises(LocktimeTypeMismatch):
        builder.finalize()


def test_locktime_above_lock():
    builder, _ = timelock_builder(lock=1000, locktime=5000)
    builder.sign(KeySigner([ALICE]))
    assert builder.finalize().nLockTime == 5000


def test_final_sequence_warns(caplog):
    builder, _ = timelock_builder(sequence=SEQUENCE_FINAL)
    builder.sign(KeySigner([ALICE]))
    with caplog.at_level(logging.WARNING, logger="cltvtx.builder"):
        builder.finalize()
    assert any("final sequence" in record.getMessage() for record in caplog.records)


def test_final_sequence_skips_lock_check(caplog):
    builder, _ = timelock_builder(lock=1000, locktime=0, sequence=SEQUENCE_FINAL)
    builder.sign(KeySigner([ALICE]))
    with caplog.at_level(logging.WARNING, logger="cltvtx.builder"):
        tx = builder.finalize()
    assert tx.nLockTime == 0
    assert tx.vin[0].nSequence == SEQUENCE_FINAL
    assert CTransaction.deserialize(tx.serialize()) == tx
    assert any("final sequence" in record.getMessage() for record in caplog.records)


def test_multisig_from_generator_needs_signatures():
    policy = MultisigPolicy(2, (key.pub for key in (ALICE, BOB, CAROL)))
    builder = TransactionBuilder()
    builder.add_input(OUTPOINT, policy.script_pubkey(), 100000, policy=policy)
    builder.add_output(derive_p2pkh_address(BOB.pub), 90000)
    with pytest.raises(MissingSigner):
        builder.finalize()
    assert builder.tx.vin[0].scriptSig == CScript()


def test_lock_until_block_height():
    builder = TransactionBuilder()
    builder.lock_until_block_height(484296)
    assert builder.tx.nLockTime == 484296
    with pytest.raises(ValueError):
        builder.lock_until_block_height(500000000)
    with pytest.raises(ValueError):
        builder.lock_until_block_height(-1)


def test_lock_until_date():
    builder = TransactionBuilder()
    builder.lock_until_date(datetime.datetime(2030, 1, 1, tzinfo=datetime.timezone.utc))
    assert builder.tx.nLockTime == 1893456000
    builder.lock_until_date(500000000)
    assert builder.tx.nLockTime == 500000000
    with pytest.raises(ValueError):
        builder.lock_until_date(499999999)


def test_set_locktime_range():
    builder = TransactionBuilder()
    with pytest.raises(ValueError):
        builder.set_locktime(2**32)


def test_mutation_discards_signatures():
    builder, _ = timelock_builder()
    builder.sign(KeySigner([ALICE]))
    builder.add_output(derive_p2pkh_address(CAROL.pub), 1000)
    with pytest.raises(MissingSigner):
        builder.finalize()

    builder.sign(KeySigner([ALICE]))
    builder.set_locktime(1001)
    with pytest.raises(MissingSigner):
        builder.finalize()

    builder.sign(KeySigner([ALICE]))
    builder.finalize()


def test_add_signature():
    builder, _ = timelock_builder()
    digest = builder.sighash(0)
    builder.add_signature(0, ALICE.pub, ALICE.sign(digest))
    tx = builder.finalize()
    assert list(tx.vin[0].scriptSig)[0] == ALICE.sign(digest) + b"\x01"


def test_add_signature_with_hashtype():
    builder, _ = timelock_builder()
    sig = ALICE.sign(builder.sighash(0)) + b"\x01"
    builder.add_signature(0, ALICE.pub, sig, with_hashtype=True)
    assert list(builder.finalize().vin[0].scriptSig)[0] == sig

    builder, _ = timelock_builder()
    with pytest.raises(ValueError):
        builder.add_signature(0, ALICE.pub, sig[:-1] + b"\x02", with_hashtype=True)


def test_add_signature_rejects_bad_signatures():
    builder, _ = timelock_builder()
    digest = builder.sighash(0)
    with pytest.raises(InvalidPolicy):
        builder.add_signature(0, BOB.pub, BOB.sign(digest))
    with pytest.raises(ValueError):
        builder.add_signature(0, ALICE.pub, ALICE.sign(b"\x00" * 32))
    with pytest.raises(ValueError):
        builder.add_signature(0, ALICE.pub, b"\x30\x00")
    with pytest.raises(IndexError):
        builder.add_signature(1, ALICE.pub, ALICE.sign(digest))


def test_hashtype():
    policy = KeyHashPolicy(ALICE.pub)
    builder = TransactionBuilder(hashtype=SIGHASH_NONE)
    builder.add_input(OUTPOINT, policy.script_pubkey(), 1000, policy=policy)
    builder.add_output(derive_p2pkh_address(BOB.pub), 900)
    builder.sign(KeySigner([ALICE]))
    sig, pub = list(builder.finalize().vin[0].scriptSig)
    assert sig[-1] == 0x02
    assert pub == ALICE.pub


def test_foreign_input_left_unsigned():
    builder, policy = timelock_builder()
    foreign = derive_p2pkh_address(CAROL.pub).to_scriptPubKey()
    builder.add_input(OTHER_OUTPOINT, foreign, 5000)
    builder.sign(KeySigner([ALICE]))
    tx = builder.finalize()
    assert tx.vin[1].scriptSig == CScript()
    assert len(list(tx.vin[0].scriptSig)) == 3


def test_fee():
    builder, _ = timelock_builder()
    assert builder.fee() == 10000
    builder.add_output(derive_p2pkh_address(CAROL.pub), 20000)
    assert builder.fee() == -10000
    builder.sign(KeySigner([ALICE]))
    with pytest.raises(ValueError):
        builder.finalize()


def test_finalize_checks_transaction():
    policy = KeyHashPolicy(ALICE.pub)
    builder = TransactionBuilder()
    builder.add_input(OUTPOINT, policy.script_pubkey(), 1000, policy=policy)
    builder.sign(KeySigner([ALICE]))
    with pytest.raises(CheckTransactionError):
        builder.finalize()

    builder = TransactionBuilder()
    builder.add_input(COutPoint(lx(OUTPOINT[:64]), 0), policy.script_pubkey(),
                      1000, policy=policy)
    builder.add_input(OUTPOINT, policy.script_pubkey(), 1000, policy=policy)
    builder.add_output(derive_p2pkh_address(BOB.pub), 900)
    builder.sign(KeySigner([ALICE]))
    with pytest.raises(CheckTransactionError):
        builder.finalize()


def test_multisig_partial_signing():
    policy = MultisigPolicy(2, [ALICE.pub, BOB.pub, CAROL.pub])
    builder = TransactionBuilder()
    builder.add_input(OUTPOINT, policy.script_pubkey(), 100000, policy=policy)
    builder.add_output(derive_p2pkh_address(BOB.pub), 90000)

    assert builder.sign(KeySigner([CAROL])) == 1
    with pytest.raises(MissingSigner) as excinfo:
        builder.finalize()
    assert excinfo.value.pubkeys == (ALICE.pub, BOB.pub)

    assert builder.sign_input(0, KeySigner([ALICE])) == 1
    tx = builder.finalize()
    sigs = list(tx.vin[0].scriptSig)
    assert sigs[0] == 0
    assert ALICE.pub.verify(builder.sighash(0), sigs[1][:-1])
    assert CAROL.pub.verify(builder.sighash(0), sigs[2][:-1])
    assert sigs[3] == policy.redeem_script
