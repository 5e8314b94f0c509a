# Copyright (C) 2012-2015 The python-bitcoinlib developers
# Copyright (C) 2018 The python-bitcointx developers
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

# pylama:ignore=E501,E261,E231,E221,C901

"""Scripts

Opcodes, the CScript container and the legacy (pre-segwit) signature hash
that CHECKSIG and CHECKMULTISIG verify against.
"""

import struct
from typing import (
    List, Tuple, Dict, Union, Iterable, Optional, TypeVar, Type,
    Generator, Any, cast
)

import cltvtx.core

from .scriptnum import encode_script_number
from .serialize import Hash, Hash160
from ..util import ensure_isinstance

MAX_SCRIPT_ELEMENT_SIZE = 520

ScriptElement_Type = Union['CScriptOp', int, bytes, bytearray]

T_CScript = TypeVar('T_CScript', bound='CScript')
T_int = TypeVar('T_int', bound=int)


class SIGHASH_Bitflag_Type(int):
    """A sighash modifier bit, such as ANYONECANPAY"""

    def __init__(self, value: int) -> None:
        super().__init__()
        if value & (value - 1):
            raise ValueError(f'sighash bit flag must be a power of 2, got {value}')

    def __or__(self, other: T_int) -> T_int:
        return cast(T_int, super().__or__(other))


SIGHASH_ANYONECANPAY: SIGHASH_Bitflag_Type = SIGHASH_Bitflag_Type(0x80)

T_SIGHASH_Type = TypeVar('T_SIGHASH_Type', bound='SIGHASH_Type')


class SIGHASH_Type(int):
    """Sighash type byte appended to signatures

    Instantiating with a value that is not registered raises ValueError.
    """

    _known_values: Tuple[int, ...] = ()
    _known_bitflags: SIGHASH_Bitflag_Type = SIGHASH_ANYONECANPAY

    def __init__(self, _value: int) -> None:
        super().__init__()
        base = self & ~self._known_bitflags
        if base not in self._known_values:
            raise ValueError(f'{int(self):#x} is not a known SIGHASH type')

    @classmethod
    def register_type(cls: Type[T_SIGHASH_Type], value: int) -> T_SIGHASH_Type:
        ensure_isinstance(value, int, 'sighash type to register')
        if value in cls._known_values:
            raise ValueError(f'SIGHASH type {value} is already registered')
        cls._known_values += (value,)
        return cls(value)

    @property
    def output_type(self: T_SIGHASH_Type) -> T_SIGHASH_Type:
        """The type without modifier bits: ALL, NONE or SINGLE"""
        return self.__class__(self & ~self._known_bitflags)

    @property
    def input_type(self) -> SIGHASH_Bitflag_Type:
        return SIGHASH_Bitflag_Type(self & self._known_bitflags)

    def __or__(self,  # type: ignore
               other: 'SIGHASH_Bitflag_Type'
               ) -> 'SIGHASH_Type':
        # only a modifier bit can be combined with a base type
        if int(SIGHASH_ANYONECANPAY) not in (int(self), int(other)):
            raise ValueError(
                'SIGHASH types can only be combined with '
                'SIGHASH_ANYONECANPAY')
        return SIGHASH_Type(super().__or__(other))


SIGHASH_ALL: SIGHASH_Type = SIGHASH_Type.register_type(1)
SIGHASH_NONE: SIGHASH_Type = SIGHASH_Type.register_type(2)
SIGHASH_SINGLE: SIGHASH_Type = SIGHASH_Type.register_type(3)

OPCODE_NAMES: Dict['CScriptOp', str] = {}

_opcode_instances: List['CScriptOp'] = []


class CScriptOp(int):
    """A single script opcode

    There is exactly one instance per byte value, so opcodes can be
    compared with `is`.
    """
    __slots__: List[str] = []

    @staticmethod
    def encode_op_pushdata(d: Union[bytes, bytearray]) -> bytes:
        """Shortest push of d: direct length byte, then PUSHDATA1/2/4"""
        size = len(d)
        if size < 0x4c:
            prefix = bytes([size])
        elif size <= 0xff:
            prefix = b'\x4c' + struct.pack(b'<B', size)
        elif size <= 0xffff:
            prefix = b'\x4d' + struct.pack(b'<H', size)
        elif size <= 0xffffffff:
            prefix = b'\x4e' + struct.pack(b'<I', size)
        else:
            raise ValueError('data too long to encode in a PUSHDATA op')
        return prefix + bytes(d)

    @staticmethod
    def encode_op_n(n: int) -> 'CScriptOp':
        """OP_0 .. OP_16 for 0 <= n <= 16"""
        if not (0 <= n <= 16):
            raise ValueError(f'OP_N only encodes 0 to 16, got {n}')
        return OP_0 if n == 0 else CScriptOp(OP_1 + n - 1)

    def decode_op_n(self) -> int:
        if self == OP_0:
            return 0
        if not (OP_1 <= self <= OP_16):
            raise ValueError(f'{self!r} is not an OP_N opcode')
        return int(self) - int(OP_1) + 1

    def is_small_int(self) -> bool:
        return self == OP_0 or OP_1 <= self <= OP_16

    def __str__(self) -> str:
        return repr(self)

    def __repr__(self) -> str:
        return OPCODE_NAMES.get(self, f'CScriptOp({int(self):#x})')

    def __new__(cls, n: int) -> 'CScriptOp':
        if n < len(_opcode_instances):
            return _opcode_instances[n]
        assert n == len(_opcode_instances)
        op = super().__new__(cls, n)
        _opcode_instances.append(op)
        return op


for _n in range(0x100):
    CScriptOp(_n)

# push value
OP_0 = CScriptOp(0x00)
OP_PUSHDATA1 = CScriptOp(0x4c)
OP_PUSHDATA2 = CScriptOp(0x4d)
OP_PUSHDATA4 = CScriptOp(0x4e)
OP_1NEGATE = CScriptOp(0x4f)
OP_RESERVED = CScriptOp(0x50)
OP_1 = CScriptOp(0x51)
OP_2 = CScriptOp(0x52)
OP_3 = CScriptOp(0x53)
OP_4 = CScriptOp(0x54)
OP_5 = CScriptOp(0x55)
OP_6 = CScriptOp(0x56)
OP_7 = CScriptOp(0x57)
OP_8 = CScriptOp(0x58)
OP_9 = CScriptOp(0x59)
OP_10 = CScriptOp(0x5a)
OP_11 = CScriptOp(0x5b)
OP_12 = CScriptOp(0x5c)
OP_13 = CScriptOp(0x5d)
OP_14 = CScriptOp(0x5e)
OP_15 = CScriptOp(0x5f)
OP_16 = CScriptOp(0x60)

# control
OP_NOP = CScriptOp(0x61)
OP_IF = CScriptOp(0x63)
OP_NOTIF = CScriptOp(0x64)
OP_ELSE = CScriptOp(0x67)
OP_ENDIF = CScriptOp(0x68)
OP_VERIFY = CScriptOp(0x69)
OP_RETURN = CScriptOp(0x6a)

# stack
OP_TOALTSTACK = CScriptOp(0x6b)
OP_FROMALTSTACK = CScriptOp(0x6c)
OP_2DROP = CScriptOp(0x6d)
OP_2DUP = CScriptOp(0x6e)
OP_IFDUP = CScriptOp(0x73)
OP_DEPTH = CScriptOp(0x74)
OP_DROP = CScriptOp(0x75)
OP_DUP = CScriptOp(0x76)
OP_NIP = CScriptOp(0x77)
OP_OVER = CScriptOp(0x78)
OP_SWAP = CScriptOp(0x7c)
OP_SIZE = CScriptOp(0x82)

# bit logic
OP_EQUAL = CScriptOp(0x87)
OP_EQUALVERIFY = CScriptOp(0x88)

# numeric
OP_1ADD = CScriptOp(0x8b)
OP_1SUB = CScriptOp(0x8c)
OP_NOT = CScriptOp(0x91)
OP_0NOTEQUAL = CScriptOp(0x92)
OP_ADD = CScriptOp(0x93)
OP_SUB = CScriptOp(0x94)
OP_BOOLAND = CScriptOp(0x9a)
OP_BOOLOR = CScriptOp(0x9b)
OP_NUMEQUAL = CScriptOp(0x9c)
OP_NUMEQUALVERIFY = CScriptOp(0x9d)
OP_LESSTHAN = CScriptOp(0x9f)
OP_GREATERTHAN = CScriptOp(0xa0)
OP_MIN = CScriptOp(0xa3)
OP_MAX = CScriptOp(0xa4)
OP_WITHIN = CScriptOp(0xa5)

# crypto
OP_RIPEMD160 = CScriptOp(0xa6)
OP_SHA1 = CScriptOp(0xa7)
OP_SHA256 = CScriptOp(0xa8)
OP_HASH160 = CScriptOp(0xa9)
OP_HASH256 = CScriptOp(0xaa)
OP_CODESEPARATOR = CScriptOp(0xab)
OP_CHECKSIG = CScriptOp(0xac)
OP_CHECKSIGVERIFY = CScriptOp(0xad)
OP_CHECKMULTISIG = CScriptOp(0xae)
OP_CHECKMULTISIGVERIFY = CScriptOp(0xaf)

# locktime
OP_NOP1 = CScriptOp(0xb0)
OP_CHECKLOCKTIMEVERIFY = CScriptOp(0xb1)
OP_CHECKSEQUENCEVERIFY = CScriptOp(0xb2)

OP_INVALIDOPCODE = CScriptOp(0xff)

OPCODE_NAMES.update(
    (op, name) for name, op in list(globals().items())
    if name.startswith('OP_') and isinstance(op, CScriptOp))

# alternative names, accepted by CScript.from_asm() but never printed
OP_FALSE = OP_0
OP_TRUE = OP_1
OP_NOP2 = OP_CHECKLOCKTIMEVERIFY
OP_NOP3 = OP_CHECKSEQUENCEVERIFY

OPCODES_BY_NAME: Dict[str, CScriptOp] = {
    name: op for op, name in OPCODE_NAMES.items()}
OPCODES_BY_NAME.update(OP_FALSE=OP_FALSE, OP_TRUE=OP_TRUE,
                       OP_NOP2=OP_NOP2, OP_NOP3=OP_NOP3)

# width of the length field following each PUSHDATA opcode
_PUSHDATA_LENGTH_FORMATS = {
    OP_PUSHDATA1: b'<B',
    OP_PUSHDATA2: b'<H',
    OP_PUSHDATA4: b'<I',
}


class CScriptInvalidError(Exception):
    """The script bytes can not be parsed"""


class CScriptTruncatedPushDataError(CScriptInvalidError):
    """A push runs past the end of the script; data holds what is there"""

    def __init__(self, msg: str, data: bytes):
        self.data = data
        super().__init__(msg)


class CScript(bytes):
    """Serialized script

    A bytes subclass, so indexing and len() work on bytes. Iterating
    yields opcodes, small integers and pushed data instead.
    """

    @classmethod
    def __coerce_instance(cls, other: ScriptElement_Type) -> bytes:
        if isinstance(other, CScriptOp):
            return bytes([other])
        if isinstance(other, int):
            if 0 <= other <= 16:
                return bytes([CScriptOp.encode_op_n(other)])
            if other == -1:
                return bytes([OP_1NEGATE])
            return CScriptOp.encode_op_pushdata(encode_script_number(other))
        if isinstance(other, (bytes, bytearray)):
            return CScriptOp.encode_op_pushdata(other)
        raise TypeError(f"type '{type(other).__name__}' cannot be "
                        f"represented in the script")

    # appends one element, unlike bytes.__add__
    def __add__(self: T_CScript, other: ScriptElement_Type) -> T_CScript:  # type: ignore
        return self.__class__(bytes(self) + self.__coerce_instance(other))

    def join(self, iterable: Any) -> None:  # type: ignore
        raise NotImplementedError

    def __new__(cls: Type[T_CScript],
                value: Iterable[ScriptElement_Type] = b'') -> T_CScript:
        if isinstance(value, (bytes, bytearray)):
            return super().__new__(cls, value)
        return super().__new__(
            cls, b''.join(cls.__coerce_instance(v) for v in value))

    @classmethod
    def from_asm(cls: Type[T_CScript], asm: str) -> T_CScript:
        """Parse the mnemonic form produced by to_asm()

        Opcodes are given by name, anything else must be hex data to push.
        """
        elements: List[ScriptElement_Type] = []
        for token in asm.split():
            if token in OPCODES_BY_NAME:
                elements.append(OPCODES_BY_NAME[token])
                continue
            try:
                data = bytes.fromhex(token)
            except ValueError:
                raise CScriptInvalidError(
                    f'unknown opcode or invalid hex data: {token!r}')
            if not data:
                raise CScriptInvalidError('empty data push in asm')
            elements.append(data)
        return cls(elements)

    def raw_iter(self) -> Generator[Tuple[CScriptOp, Optional[bytes], int],
                                    None, None]:
        """Yield (opcode, data, offset) for every operation

        data is None for non-push opcodes. The opcode tells which PUSHDATA
        form was used, offset is the index of the opcode byte.
        """
        pos = 0
        end = len(self)
        while pos < end:
            offset = pos
            opcode = CScriptOp(self[pos])
            pos += 1

            if opcode > OP_PUSHDATA4:
                yield (opcode, None, offset)
                continue

            if opcode < OP_PUSHDATA1:
                push_name = f'PUSHDATA({int(opcode)})'
                size = int(opcode)
            else:
                push_name = repr(opcode)[3:]
                fmt = _PUSHDATA_LENGTH_FORMATS[opcode]
                width = struct.calcsize(fmt)
                if pos + width > end:
                    raise CScriptInvalidError(
                        f'{push_name}: missing data length')
                (size,) = struct.unpack_from(fmt, self, pos)
                pos += width

            data = bytes(self[pos:pos + size])
            if len(data) < size:
                raise CScriptTruncatedPushDataError(
                    f'{push_name}: truncated data', data)
            pos += size

            yield (opcode, data, offset)

    def __iter__(self) -> Generator[Union[CScriptOp, int, bytes],  # type: ignore
                                    None, None]:
        """Iterate over decoded elements

        Pushes yield bytes, OP_0 .. OP_16 yield ints, other opcodes yield
        CScriptOp. OP_1NEGATE is yielded as -1.
        """
        for (opcode, data, _) in self.raw_iter():
            if opcode == OP_0:
                yield 0
            elif data is not None:
                yield data
            elif opcode == OP_1NEGATE:
                yield -1
            elif opcode.is_small_int():
                yield opcode.decode_op_n()
            else:
                yield opcode

    def __repr__(self) -> str:
        def _repr(o: Any) -> str:
            if isinstance(o, (bytes, bytearray)):
                return f"x('{o.hex()}')"
            return repr(o)

        ops = []
        try:
            for element in self:
                ops.append(_repr(element))
        except CScriptTruncatedPushDataError as err:
            ops.append(f'{_repr(err.data)}...<ERROR: {err}>')
        except CScriptInvalidError as err:
            ops.append(f'<ERROR: {err}>')

        return f'{self.__class__.__name__}([{", ".join(ops)}])'

    def to_asm(self) -> str:
        """Opcode names and hex-encoded pushes, separated by spaces"""
        return ' '.join(
            repr(opcode) if data is None or opcode == OP_0 else data.hex()
            for (opcode, data, _) in self.raw_iter())

    def is_p2sh(self) -> bool:
        """HASH160 <20 bytes> EQUAL, the exact form consensus recognizes"""
        return (len(self) == 23
                and self[0] == OP_HASH160
                and self[1] == 0x14
                and self[22] == OP_EQUAL)

    def is_p2pkh(self) -> bool:
        return (len(self) == 25
                and self[0] == OP_DUP
                and self[1] == OP_HASH160
                and self[2] == 0x14
                and self[23] == OP_EQUALVERIFY
                and self[24] == OP_CHECKSIG)

    def to_p2sh_scriptPubKey(self: T_CScript, checksize: bool = True
                             ) -> T_CScript:
        """The P2SH scriptPubKey that takes this script as redeemScript

        With checksize, a script over the 520-byte push limit raises
        ValueError, as no scriptSig could push it to spend the output.
        """
        if checksize and len(self) > MAX_SCRIPT_ELEMENT_SIZE:
            raise ValueError(
                f'redeemScript is {len(self)} bytes, over the '
                f'{MAX_SCRIPT_ELEMENT_SIZE}-byte limit; the P2SH output '
                f'would be unspendable')
        return self.__class__([OP_HASH160, Hash160(self), OP_EQUAL])

    def sighash(self, txTo: 'cltvtx.core.CTransaction', inIdx: int,
                hashtype: SIGHASH_Type = SIGHASH_ALL) -> bytes:
        """SignatureHash() with this script as the script code

        Unknown hashtype values raise ValueError.
        """
        return SignatureHash(self, txTo, inIdx, SIGHASH_Type(hashtype))


def FindAndDelete(script: T_CScript, sig: bytes) -> T_CScript:
    """Remove occurrences of sig that start at an opcode boundary

    Matches the consensus FindAndDelete(): after a match, scanning resumes
    at the next opcode boundary past it.
    """
    bounds = [offset for (_, _, offset) in script.raw_iter()]
    bounds.append(len(script))

    kept = []
    skip_until = 0
    for start, end in zip(bounds, bounds[1:]):
        if start < skip_until:
            continue
        if sig and script[start:start + len(sig)] == sig:
            skip_until = start + len(sig)
        else:
            kept.append(script[start:end])
    return script.__class__(b''.join(kept))


HASH_ONE = b'\x01' + b'\x00' * 31


def RawSignatureHash(script: CScript, txTo: 'cltvtx.core.CTransaction',
                     inIdx: int, hashtype: int
                     ) -> Tuple[bytes, Optional[str]]:
    """Legacy signature hash, as computed by consensus code

    Returns (hash, err). Where consensus code would hash the constant
    HASH_ONE (input index past the inputs, or SIGHASH_SINGLE without a
    matching output), HASH_ONE is returned along with an error message.
    A negative inIdx raises ValueError.
    """
    if inIdx < 0:
        raise ValueError('input index must not be negative')
    if inIdx >= len(txTo.vin):
        return (HASH_ONE, f'inIdx {inIdx} out of range ({len(txTo.vin)})')

    base_type = hashtype & 0x1f
    if base_type == SIGHASH_SINGLE and inIdx >= len(txTo.vout):
        return (HASH_ONE, f'outIdx {inIdx} out of range ({len(txTo.vout)})')

    script_code = FindAndDelete(CScript(script), CScript([OP_CODESEPARATOR]))

    txtmp = txTo.to_mutable()
    for i, txin in enumerate(txtmp.vin):
        txin.scriptSig = script_code if i == inIdx else CScript()
        if i != inIdx and base_type in (SIGHASH_NONE, SIGHASH_SINGLE):
            txin.nSequence = 0

    if base_type == SIGHASH_NONE:
        txtmp.vout = []
    elif base_type == SIGHASH_SINGLE:
        # earlier outputs are replaced by blank ones (value -1, no script)
        txtmp.vout = ([cltvtx.core.CMutableTxOut() for _ in range(inIdx)]
                      + [txtmp.vout[inIdx]])

    if hashtype & SIGHASH_ANYONECANPAY:
        txtmp.vin = [txtmp.vin[inIdx]]

    preimage = txtmp.serialize() + struct.pack(b'<i', hashtype)
    return (Hash(preimage), None)


def SignatureHash(script: CScript, txTo: 'cltvtx.core.CTransaction',
                  inIdx: int, hashtype: SIGHASH_Type = SIGHASH_ALL) -> bytes:
    """Signature hash for input inIdx of txTo

    Like RawSignatureHash(), but the HASH_ONE cases raise ValueError.
    """
    (h, err) = RawSignatureHash(script, txTo, inIdx, hashtype)
    if err is not None:
        raise ValueError(err)
    return h


compute_sighash = SignatureHash


def standard_keyhash_scriptpubkey(keyhash: bytes) -> CScript:
    ensure_isinstance(keyhash, bytes, 'keyhash')
    if len(keyhash) != 20:
        raise ValueError(f'keyhash must be 20 bytes, got {len(keyhash)}')
    return CScript([OP_DUP, OP_HASH160, keyhash, OP_EQUALVERIFY, OP_CHECKSIG])


def standard_scripthash_scriptpubkey(scripthash: bytes) -> CScript:
    ensure_isinstance(scripthash, bytes, 'scripthash')
    if len(scripthash) != 20:
        raise ValueError(f'scripthash must be 20 bytes, got {len(scripthash)}')
    return CScript([OP_HASH160, scripthash, OP_EQUAL])


__all__ = (
    'MAX_SCRIPT_ELEMENT_SIZE',
    'OPCODE_NAMES',
    'OPCODES_BY_NAME',
    'CScriptOp',
    *sorted(OPCODES_BY_NAME),
    'CScriptInvalidError',
    'CScriptTruncatedPushDataError',
    'CScript',
    'SIGHASH_ALL',
    'SIGHASH_NONE',
    'SIGHASH_SINGLE',
    'SIGHASH_ANYONECANPAY',
    'SIGHASH_Type',
    'SIGHASH_Bitflag_Type',
    'FindAndDelete',
    'HASH_ONE',
    'RawSignatureHash',
    'SignatureHash',
    'compute_sighash',
    'standard_keyhash_scriptpubkey',
    'standard_scripthash_scriptpubkey',
)
