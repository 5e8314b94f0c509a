import pytest

from cltvtx import ChainParams
from cltvtx.core import x
from cltvtx.core.key import CKey
from cltvtx.core.policy import (
    Branch,
    ConditionalPolicy,
    InvalidPolicy,
    KeyHashPolicy,
    MultisigPolicy,
    SpendPolicy,
    TimelockKeyHashPolicy,
    agreement_hash,
    standard_conditional_redeem_script,
    standard_multisig_redeem_script,
    standard_timelock_keyhash_redeem_script,
)
from cltvtx.core.script import (
    CScript,
    OP_0,
    OP_1,
    OP_CHECKLOCKTIMEVERIFY,
    OP_CHECKMULTISIG,
    OP_CHECKSIG,
    OP_CHECKSIGVERIFY,
    OP_DROP,
    OP_ELSE,
    OP_ENDIF,
    OP_EQUALVERIFY,
    OP_IF,
)
from cltvtx.core.serialize import Hash160
from cltvtx.wallet import P2PKHBitcoinTestnetAddress, P2SHBitcoinTestnetAddress

ALICE = CKey.from_passphrase("alice")
BOB = CKey.from_passphrase("bob")
CAROL = CKey.from_passphrase("carol")
FREEZE = CKey.from_passphrase("bip65 testnet demo cltv freeze")
SENDER = CKey.from_passphrase("bip65 testnet demo cltv refund sender")
RECEIVER = CKey.from_passphrase("bip65 testnet demo cltv refund receiver")

SIG_A = b"\x30" + b"\xaa" * 70 + b"\x01"
SIG_B = b"\x30" + b"\xbb" * 70 + b"\x01"
SIG_C = b"\x30" + b"\xcc" * 70 + b"\x01"


def test_timelock_keyhash_redeem_script():
    script = standard_timelock_keyhash_redeem_script(484296, FREEZE.pub)
    assert script.hex() == "03c86307b17576a9143e0a10b34f195b8b53c39d38b38fc6ec9bb1f6fe88ac"


def test_timelock_keyhash_address():
    policy = TimelockKeyHashPolicy(484296, FREEZE.pub)
    assert str(policy.address("testnet")) == "2Mxvf1GiDH687oC4FUnZFKeRbihb2d6FCBa"
    with ChainParams("testnet"):
        assert isinstance(policy.address(), P2SHBitcoinTestnetAddress)
    assert policy.script_pubkey() == policy.redeem_script.to_p2sh_scriptPubKey()
    assert policy.script_code() == policy.redeem_script
    assert policy.required_signers() == (FREEZE.pub,)
    assert policy.required_locktime() == 484296


def test_timelock_keyhash_script_sig():
    policy = TimelockKeyHashPolicy(484296, FREEZE.pub)
    script_sig = policy.build_script_sig({FREEZE.pub: SIG_A})
    assert list(script_sig) == [SIG_A, FREEZE.pub, policy.redeem_script]


def test_conditional_redeem_script_layout():
    script = standard_conditional_redeem_script(484300, RECEIVER.pub, SENDER.pub)
    assert list(script) == [
        OP_IF, RECEIVER.pub, OP_CHECKSIGVERIFY,
        OP_ELSE, x("cc6307"), OP_CHECKLOCKTIMEVERIFY, OP_DROP,
        OP_ENDIF, SENDER.pub, OP_CHECKSIG,
    ]


def test_conditional_redeem_script_with_commitment():
    h = agreement_hash(b"agreement")
    script = standard_conditional_redeem_script(150, BOB.pub, ALICE.pub, h)
    assert list(script) == [
        OP_IF, h, OP_EQUALVERIFY, BOB.pub, OP_CHECKSIGVERIFY,
        OP_ELSE, x("9600"), OP_CHECKLOCKTIMEVERIFY, OP_DROP,
        OP_ENDIF, ALICE.pub, OP_CHECKSIG,
    ]
    assert h == Hash160(b"agreement")
    assert agreement_hash("agreement") == h


def test_refund_address():
    policy = ConditionalPolicy(484300, RECEIVER.pub, SENDER.pub)
    assert str(policy.address("testnet")) == "2NAQ8BEdSBGVRbM2LLNxaFjermNm4rG6biF"


def test_conditional_branches():
    policy = ConditionalPolicy(150, BOB.pub, ALICE.pub, agreement_hash(b"offer"))
    assert policy.required_signers(Branch.IF) == (ALICE.pub, BOB.pub)
    assert policy.required_signers(Branch.ELSE) == (ALICE.pub,)
    assert policy.required_locktime(Branch.IF) is None
    assert policy.required_locktime(Branch.ELSE) == 150
    with pytest.raises(InvalidPolicy):
        policy.required_signers()
    with pytest.raises(InvalidPolicy):
        policy.required_locktime(None)


def test_conditional_script_sig_if_branch():
    h = agreement_hash(b"offer")
    policy = ConditionalPolicy(150, BOB.pub, ALICE.pub, h)
    sigs = {ALICE.pub: SIG_A, BOB.pub: SIG_B}
    script_sig = policy.build_script_sig(sigs, Branch.IF)
    assert list(script_sig) == [SIG_A, SIG_B, h, 1, policy.redeem_script]
    assert policy.build_script_sig(sigs, Branch.IF, h) == script_sig

    with pytest.raises(InvalidPolicy):
        policy.build_script_sig(sigs, Branch.IF, agreement_hash(b"other offer"))


def test_conditional_script_sig_if_branch_without_commitment():
    policy = ConditionalPolicy(484300, RECEIVER.pub, SENDER.pub)
    sigs = {SENDER.pub: SIG_A, RECEIVER.pub: SIG_B}
    assert list(policy.build_script_sig(sigs, Branch.IF)) == [
        SIG_A, SIG_B, 1, policy.redeem_script]
    with pytest.raises(InvalidPolicy):
        policy.build_script_sig(sigs, Branch.IF, agreement_hash(b"offer"))


def test_conditional_script_sig_else_branch():
    policy = ConditionalPolicy(484300, RECEIVER.pub, SENDER.pub)
    script_sig = policy.build_script_sig({SENDER.pub: SIG_A}, Branch.ELSE)
    assert script_sig == CScript([SIG_A, b"", policy.redeem_script])
    assert script_sig == CScript([SIG_A, OP_0, policy.redeem_script])
    with pytest.raises(InvalidPolicy):
        policy.build_script_sig({SENDER.pub: SIG_A}, Branch.ELSE, b"\x00" * 20)


def test_script_sig_needs_signatures():
    policy = ConditionalPolicy(150, BOB.pub, ALICE.pub)
    assert policy.missing_signers({ALICE.pub: SIG_A}, Branch.IF) == (BOB.pub,)
    assert policy.missing_signers({ALICE.pub: SIG_A}, Branch.ELSE) == ()
    with pytest.raises(ValueError):
        policy.build_script_sig({ALICE.pub: SIG_A}, Branch.IF)


def test_multisig_redeem_script():
    script = standard_multisig_redeem_script(2, [ALICE.pub, BOB.pub, CAROL.pub])
    assert list(script) == [2, ALICE.pub, BOB.pub, CAROL.pub, 3, OP_CHECKMULTISIG]
    assert script[0] == 0x52
    assert script[-2] == 0x53


def test_multisig_key_order_changes_address():
    a = MultisigPolicy(2, [ALICE.pub, BOB.pub, CAROL.pub])
    b = MultisigPolicy(2, [CAROL.pub, BOB.pub, ALICE.pub])
    assert a.redeem_script != b.redeem_script
    assert a.address("mainnet") != b.address("mainnet")
    assert a.address("testnet") == MultisigPolicy(2, [ALICE.pub, BOB.pub, CAROL.pub]).address("testnet")


def test_multisig_script_sig():
    policy = MultisigPolicy(2, [ALICE.pub, BOB.pub, CAROL.pub])
    assert policy.signatures_needed() == 2
    assert policy.missing_signers({CAROL.pub: SIG_C}) == (ALICE.pub, BOB.pub)
    assert policy.missing_signers({CAROL.pub: SIG_C, ALICE.pub: SIG_A}) == ()

    script_sig = policy.build_script_sig({CAROL.pub: SIG_C, ALICE.pub: SIG_A})
    # signatures follow key order, not insertion order
    assert list(script_sig) == [0, SIG_A, SIG_C, policy.redeem_script]

    # extra signatures are dropped
    script_sig = policy.build_script_sig({CAROL.pub: SIG_C, BOB.pub: SIG_B, ALICE.pub: SIG_A})
    assert list(script_sig) == [0, SIG_A, SIG_B, policy.redeem_script]


def test_multisig_from_generator():
    policy = MultisigPolicy(2, (key.pub for key in (ALICE, BOB, CAROL)))
    assert policy.pubkeys == (ALICE.pub, BOB.pub, CAROL.pub)
    assert policy.redeem_script == standard_multisig_redeem_script(2, [ALICE.pub, BOB.pub, CAROL.pub])
    assert policy.missing_signers({}) == (ALICE.pub, BOB.pub, CAROL.pub)
    with pytest.raises(ValueError):
        policy.build_script_sig({})


def test_multisig_one_of_one():
    policy = MultisigPolicy(1, [ALICE.pub])
    assert list(policy.redeem_script) == [1, ALICE.pub, 1, OP_CHECKMULTISIG]


@pytest.mark.parametrize(
    "required, keys",
    [
        (0, [ALICE.pub, BOB.pub]),
        (3, [ALICE.pub, BOB.pub]),
        (-1, [ALICE.pub]),
        (1, []),
        (2, [ALICE.pub, ALICE.pub]),
        (1, [ALICE.pub, x("0478d430274f8c5ec1321338151e9f27f4c676a008bdf8638d07c0b6be9ab35c71")]),
        (1, [CKey.from_passphrase(str(i)).pub for i in range(16)]),
    ],
)
def test_multisig_invalid(required, keys):
    with pytest.raises(InvalidPolicy):
        MultisigPolicy(required, keys)


def test_multisig_fifteen_keys():
    keys = [CKey.from_passphrase(str(i)).pub for i in range(15)]
    policy = MultisigPolicy(15, keys)
    assert list(policy.redeem_script)[-2:] == [15, OP_CHECKMULTISIG]
    assert policy.redeem_script[-2] == 0x5f


@pytest.mark.parametrize("locktime", [-1, 2**32, 2**40])
def test_invalid_locktime(locktime):
    with pytest.raises(InvalidPolicy):
        TimelockKeyHashPolicy(locktime, ALICE.pub)
    with pytest.raises(InvalidPolicy):
        ConditionalPolicy(locktime, BOB.pub, ALICE.pub)


def test_invalid_locktime_type():
    with pytest.raises(TypeError):
        TimelockKeyHashPolicy("484296", ALICE.pub)
    with pytest.raises(InvalidPolicy):
        TimelockKeyHashPolicy(True, ALICE.pub)


def test_conditional_invalid_commitment():
    with pytest.raises(InvalidPolicy):
        ConditionalPolicy(150, BOB.pub, ALICE.pub, b"\x00" * 32)
    with pytest.raises(InvalidPolicy):
        ConditionalPolicy(150, BOB.pub[:-1], ALICE.pub)


def test_non_branched_policy_rejects_branch():
    policy = TimelockKeyHashPolicy(484296, ALICE.pub)
    with pytest.raises(InvalidPolicy):
        policy.required_signers(Branch.ELSE)
    with pytest.raises(InvalidPolicy):
        policy.build_script_sig({ALICE.pub: SIG_A}, None, b"\x00" * 20)


def test_keyhash_policy():
    policy = KeyHashPolicy(ALICE.pub)
    assert policy.redeem_script is None
    assert policy.script_pubkey() == P2PKHBitcoinTestnetAddress.from_pubkey(ALICE.pub).to_scriptPubKey()
    assert policy.script_code() == policy.script_pubkey()
    assert str(policy.address("testnet")) == "mkESjLZW66TmHhiFX8MCaBjrhZ543PPh9a"
    assert policy.required_locktime() is None
    assert list(policy.build_script_sig({ALICE.pub: SIG_A})) == [SIG_A, ALICE.pub]


def test_base_policy_without_redeem_script():
    policy = SpendPolicy()
    with pytest.raises(InvalidPolicy):
        policy.script_pubkey()
    with pytest.raises(InvalidPolicy):
        policy.script_code()
    with pytest.raises(InvalidPolicy):
        policy.address("testnet")


def test_small_locktime_uses_small_int_opcode():
    script = standard_timelock_keyhash_redeem_script(16, ALICE.pub)
    assert script[0] == 0x60
    assert list(script)[:2] == [16, OP_CHECKLOCKTIMEVERIFY]
    assert standard_timelock_keyhash_redeem_script(0, ALICE.pub)[0] == OP_0
    assert list(standard_timelock_keyhash_redeem_script(17, ALICE.pub))[0] == x("11")
    assert OP_1 == 0x51
