# Copyright (C) 2012-2017 The python-bitcoinlib developers
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

"""Transaction model: outpoints, inputs, outputs and legacy transactions

Each class is immutable and has a mutable twin (CMutableTxIn for CTxIn and
so on). The module also holds the context-free transaction checks and the
nLockTime checks that OP_CHECKLOCKTIMEVERIFY performs.
"""

import binascii
import struct
from typing import (
    Union, List, Iterable, Optional, Set, TypeVar, Type, Any, Tuple, cast
)

from . import script

from .serialize import (
    ImmutableSerializable, make_mutable,
    BytesSerializer, VectorSerializer,
    ser_read, Hash, Hash160, ByteStream_Type
)

from ..util import ensure_isinstance

COIN = 100000000
MAX_MONEY = 21000000 * COIN

# nLockTime values below this are block heights, the rest unix timestamps
LOCKTIME_THRESHOLD = 500000000

SEQUENCE_FINAL = 0xffffffff

_int32 = struct.Struct('<i')
_uint32 = struct.Struct('<I')
_int64 = struct.Struct('<q')

T_CoreCoinClass = TypeVar('T_CoreCoinClass', bound='CoreCoinClass')


def MoneyRange(nValue: int) -> bool:
    # values are satoshis; a float most likely means coins were passed
    ensure_isinstance(nValue, int, 'value for MoneyRange check')
    return 0 <= nValue <= MAX_MONEY


def x(h: str) -> bytes:
    """Hex string to bytes"""
    return binascii.unhexlify(h.encode('ascii'))


def b2x(b: Union[bytes, bytearray]) -> str:
    """Bytes to hex string"""
    return bytes(b).hex()


def lx(h: str) -> bytes:
    """Hex string in display order (txids) to internal byte order"""
    return x(h)[::-1]


def b2lx(b: Union[bytes, bytearray]) -> str:
    """Bytes in internal byte order to a display-order hex string"""
    return bytes(b[::-1]).hex()


def str_money_value(value: int) -> str:
    """Satoshi amount as a decimal coin string, e.g. 150000 -> '0.0015'"""
    coins, sats = divmod(value, COIN)
    frac = f'{sats:08d}'.rstrip('0') or '0'
    return f'{coins}.{frac}'


class ValidationError(Exception):
    """Base class for transaction and lock validation failures"""


class LocktimeError(ValidationError):
    """The transaction does not satisfy a script time lock"""


class LocktimeTooLow(LocktimeError):
    """nLockTime of the transaction is below the script's lock value"""

    def __init__(self, msg: str, *, locktime: int, required: int):
        super().__init__(msg)
        self.locktime = locktime
        self.required = required


class LocktimeTypeMismatch(LocktimeError):
    """One of nLockTime and the lock value is a height, the other a timestamp"""


class SequenceFinalError(LocktimeError):
    """The input has a final nSequence, which disables nLockTime"""


class CheckTransactionError(ValidationError):
    pass


class CoreCoinClass(ImmutableSerializable):
    """Base for the transaction model classes

    A mutable twin is declared as `class CMutableX(CX, mutable_of=CX)`.
    to_mutable() and to_immutable() convert between the two.
    """

    __slots__: List[str] = []

    _mutable_cls: Type['CoreCoinClass']
    _immutable_cls: Type['CoreCoinClass']

    def __init_subclass__(cls, mutable_of: Optional[Type['CoreCoinClass']] = None,
                          **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        if mutable_of is None:
            cls._immutable_cls = cls._mutable_cls = cls
            return

        if not issubclass(cls, mutable_of):
            raise TypeError(f'{cls.__name__} must derive from '
                            f'{mutable_of.__name__}')
        make_mutable(cls)
        cls._immutable_cls = mutable_of
        cls._mutable_cls = mutable_of._mutable_cls = cls

    @classmethod
    def is_mutable(cls) -> bool:
        return cls._immutable_cls is not cls

    @classmethod
    def is_immutable(cls) -> bool:
        return cls._immutable_cls is cls

    @classmethod
    def _twin(cls: Type[T_CoreCoinClass], mutable: bool) -> Type[T_CoreCoinClass]:
        twin = cls._mutable_cls if mutable else cls._immutable_cls
        return cast(Type[T_CoreCoinClass], twin)

    def to_mutable(self) -> Any:
        return self._mutable_cls.from_instance(self)

    def to_immutable(self) -> Any:
        return self._immutable_cls.from_instance(self)

    def _copy_args(self) -> Tuple[Any, ...]:
        raise NotImplementedError

    @classmethod
    def from_instance(cls: Type[T_CoreCoinClass], other: 'CoreCoinClass'
                      ) -> T_CoreCoinClass:
        """Copy other into an instance of cls

        An immutable instance asked for as immutable is returned as is.
        """
        ensure_isinstance(other, cls._immutable_cls, 'the argument')
        if cls.is_immutable() and other.is_immutable():
            return cast(T_CoreCoinClass, other)
        return cls(*other._copy_args())  # type: ignore


T_COutPoint = TypeVar('T_COutPoint', bound='COutPoint')


class COutPoint(CoreCoinClass):
    """Reference to output n of the transaction with txid `hash`"""
    __slots__: List[str] = ['hash', 'n']

    hash: bytes
    n: int

    NULL_HASH = b'\x00' * 32

    def __init__(self, hash: Union[bytes, bytearray] = NULL_HASH,
                 n: int = 0xffffffff):
        ensure_isinstance(hash, (bytes, bytearray), 'hash')
        ensure_isinstance(n, int, 'n')
        if len(hash) != 32:
            raise ValueError(f'{self.__class__.__name__}: hash must be 32 '
                             f'bytes long, got {len(hash)}')
        if not 0 <= n <= 0xffffffff:
            raise ValueError(f'{self.__class__.__name__}: n out of uint32 '
                             f'range: {n}')
        object.__setattr__(self, 'hash', bytes(hash))
        object.__setattr__(self, 'n', n)

    def _copy_args(self) -> Tuple[Any, ...]:
        return (self.hash, self.n)

    @classmethod
    def stream_deserialize(cls: Type[T_COutPoint], f: ByteStream_Type,
                           **kwargs: Any) -> T_COutPoint:
        txid = ser_read(f, 32)
        (n,) = _uint32.unpack(ser_read(f, 4))
        return cls(txid, n)

    def stream_serialize(self, f: ByteStream_Type, **kwargs: Any) -> None:
        f.write(self.hash + _uint32.pack(self.n))

    def is_null(self) -> bool:
        return self.hash == self.NULL_HASH and self.n == 0xffffffff

    def __str__(self) -> str:
        return f'{b2lx(self.hash)}:{self.n}'

    def __repr__(self) -> str:
        if self.is_null():
            return f'{self.__class__.__name__}()'
        return f'{self.__class__.__name__}(lx({b2lx(self.hash)!r}), {self.n})'

    @classmethod
    def from_str(cls: Type[T_COutPoint], outpoint: str) -> T_COutPoint:
        """Parse the 'txid:n' form returned by str()"""
        txid, sep, n = outpoint.rpartition(':')
        try:
            if not sep:
                raise ValueError('missing ":"')
            return cls(lx(txid), int(n))
        except (ValueError, binascii.Error) as e:
            raise ValueError(f'invalid outpoint {outpoint!r}: {e}')


class CMutableOutPoint(COutPoint, mutable_of=COutPoint):
    __slots__: List[str] = []


def _as_script(value: Optional[Union[script.CScript, bytes, bytearray]],
               name: str) -> script.CScript:
    if value is None:
        return script.CScript()
    if isinstance(value, script.CScript):
        return value
    ensure_isinstance(value, (bytes, bytearray), name)
    return script.CScript(value)


T_CTxIn = TypeVar('T_CTxIn', bound='CTxIn')


class CTxIn(CoreCoinClass):
    """Transaction input: the outpoint it spends, its scriptSig and nSequence"""
    __slots__: List[str] = ['prevout', 'scriptSig', 'nSequence']

    prevout: COutPoint
    scriptSig: script.CScript
    nSequence: int

    def __init__(self, prevout: Optional[COutPoint] = None,
                 scriptSig: Optional[Union[script.CScript, bytes, bytearray]] = None,
                 nSequence: int = SEQUENCE_FINAL) -> None:
        ensure_isinstance(nSequence, int, 'nSequence')
        if not 0 <= nSequence <= 0xffffffff:
            raise ValueError(f'CTxIn: nSequence out of uint32 range: '
                             f'{nSequence}')

        if prevout is None:
            prevout = COutPoint()
        ensure_isinstance(prevout, COutPoint, 'prevout')

        outpoint_cls = COutPoint._twin(self.is_mutable())
        object.__setattr__(self, 'prevout', outpoint_cls.from_instance(prevout))
        object.__setattr__(self, 'scriptSig', _as_script(scriptSig, 'scriptSig'))
        object.__setattr__(self, 'nSequence', nSequence)

    def _copy_args(self) -> Tuple[Any, ...]:
        return (self.prevout, self.scriptSig, self.nSequence)

    @classmethod
    def stream_deserialize(cls: Type[T_CTxIn], f: ByteStream_Type,
                           **kwargs: Any) -> T_CTxIn:
        prevout = COutPoint.stream_deserialize(f, **kwargs)
        scriptSig = BytesSerializer.stream_deserialize(f, **kwargs)
        (nSequence,) = _uint32.unpack(ser_read(f, 4))
        return cls(prevout, scriptSig, nSequence)

    def stream_serialize(self, f: ByteStream_Type, **kwargs: Any) -> None:
        self.prevout.stream_serialize(f, **kwargs)
        BytesSerializer.stream_serialize(self.scriptSig, f, **kwargs)
        f.write(_uint32.pack(self.nSequence))

    def is_final(self) -> bool:
        return self.nSequence == SEQUENCE_FINAL

    def __repr__(self) -> str:
        return (f'{self.__class__.__name__}({self.prevout!r}, '
                f'{self.scriptSig!r}, {self.nSequence:#x})')


class CMutableTxIn(CTxIn, mutable_of=CTxIn):
    __slots__: List[str] = []


class CTxOut(CoreCoinClass):
    """Transaction output: an amount in satoshis and its scriptPubKey"""
    __slots__: List[str] = ['nValue', 'scriptPubKey']

    nValue: int
    scriptPubKey: script.CScript

    def __init__(self, nValue: int = -1,
                 scriptPubKey: Optional[Union[script.CScript, bytes, bytearray]] = None):
        ensure_isinstance(nValue, int, 'nValue')
        object.__setattr__(self, 'nValue', nValue)
        object.__setattr__(self, 'scriptPubKey',
                           _as_script(scriptPubKey, 'scriptPubKey'))

    def _copy_args(self) -> Tuple[Any, ...]:
        return (self.nValue, self.scriptPubKey)

    @classmethod
    def stream_deserialize(cls, f: ByteStream_Type, **kwargs: Any) -> 'CTxOut':
        (nValue,) = _int64.unpack(ser_read(f, 8))
        scriptPubKey = BytesSerializer.stream_deserialize(f, **kwargs)
        return cls(nValue, scriptPubKey)

    def stream_serialize(self, f: ByteStream_Type, **kwargs: Any) -> None:
        f.write(_int64.pack(self.nValue))
        BytesSerializer.stream_serialize(self.scriptPubKey, f, **kwargs)

    def __repr__(self) -> str:
        return (f'{self.__class__.__name__}({self.nValue}, '
                f'{self.scriptPubKey!r})')


class CMutableTxOut(CTxOut, mutable_of=CTxOut):
    __slots__: List[str] = []


T_CTransaction = TypeVar('T_CTransaction', bound='CTransaction')


class CTransaction(CoreCoinClass):
    """A legacy (non-segwit) transaction

    Immutable transactions hold their inputs and outputs in tuples,
    mutable ones in lists of mutable inputs and outputs.
    """

    __slots__: List[str] = ['nVersion', 'vin', 'vout', 'nLockTime']

    nVersion: int
    vin: Tuple[CTxIn, ...]
    vout: Tuple[CTxOut, ...]
    nLockTime: int

    CURRENT_VERSION: int = 1

    def __init__(self, vin: Iterable[CTxIn] = (), vout: Iterable[CTxOut] = (),
                 nLockTime: int = 0, nVersion: Optional[int] = None):
        ensure_isinstance(nLockTime, int, 'nLockTime')
        if not 0 <= nLockTime <= 0xffffffff:
            raise ValueError(f'CTransaction: nLockTime out of uint32 range: '
                             f'{nLockTime}')

        if nVersion is None:
            nVersion = self.CURRENT_VERSION
        ensure_isinstance(nVersion, int, 'nVersion')
        if not -0x80000000 <= nVersion <= 0x7fffffff:
            raise ValueError(f'CTransaction: nVersion out of int32 range: '
                             f'{nVersion}')

        mutable = self.is_mutable()
        container = list if mutable else tuple
        txin_cls = CTxIn._twin(mutable)
        txout_cls = CTxOut._twin(mutable)

        object.__setattr__(self, 'nVersion', nVersion)
        object.__setattr__(self, 'vin', container(
            txin_cls.from_instance(txin) for txin in vin))
        object.__setattr__(self, 'vout', container(
            txout_cls.from_instance(txout) for txout in vout))
        object.__setattr__(self, 'nLockTime', nLockTime)

    def _copy_args(self) -> Tuple[Any, ...]:
        return (self.vin, self.vout, self.nLockTime, self.nVersion)

    def GetTxid(self) -> bytes:
        """Transaction id in internal byte order; b2lx() gives display order"""
        return Hash(self.serialize())

    @classmethod
    def stream_deserialize(cls: Type[T_CTransaction], f: ByteStream_Type,
                           **kwargs: Any) -> T_CTransaction:
        """Read version, inputs, outputs and locktime

        Truncated data or bad length prefixes raise a MalformedInput
        subclass.
        """
        (nVersion,) = _int32.unpack(ser_read(f, 4))
        vin = VectorSerializer.stream_deserialize(
            f, element_class=CTxIn, **kwargs)
        vout = VectorSerializer.stream_deserialize(
            f, element_class=CTxOut, **kwargs)
        (nLockTime,) = _uint32.unpack(ser_read(f, 4))
        return cls(vin, vout, nLockTime, nVersion)

    def stream_serialize(self, f: ByteStream_Type, **kwargs: Any) -> None:
        f.write(_int32.pack(self.nVersion))
        VectorSerializer.stream_serialize(self.vin, f, **kwargs)
        VectorSerializer.stream_serialize(self.vout, f, **kwargs)
        f.write(_uint32.pack(self.nLockTime))

    def __repr__(self) -> str:
        return '{}([{}], [{}], {}, {})'.format(
            self.__class__.__name__,
            ', '.join(map(repr, self.vin)),
            ', '.join(map(repr, self.vout)),
            self.nLockTime, self.nVersion)


class CMutableTransaction(CTransaction, mutable_of=CTransaction):
    __slots__: List[str] = []


def CheckTransaction(tx: CTransaction) -> None:
    """Context-free sanity checks of a transaction

    Raises CheckTransactionError.
    """
    if not tx.vin:
        raise CheckTransactionError('transaction has no inputs')
    if not tx.vout:
        raise CheckTransactionError('transaction has no outputs')

    total = 0
    for i, txout in enumerate(tx.vout):
        if not MoneyRange(txout.nValue):
            raise CheckTransactionError(
                f'output {i} value {txout.nValue} out of range')
        total += txout.nValue
        if not MoneyRange(total):
            raise CheckTransactionError('total output value out of range')

    seen: Set[COutPoint] = set()
    for i, txin in enumerate(tx.vin):
        prevout = txin.prevout.to_immutable()
        if prevout.is_null():
            raise CheckTransactionError(f'input {i} spends a null outpoint')
        if prevout in seen:
            raise CheckTransactionError(f'input {i} spends {prevout} twice')
        seen.add(prevout)


def is_block_height(locktime: int) -> bool:
    return locktime < LOCKTIME_THRESHOLD


def CheckLockTimeValue(nLockTime: int, lock: int) -> None:
    """Compare a transaction's nLockTime with a script lock value

    Raises LocktimeTypeMismatch when one is a block height and the other
    a timestamp, and LocktimeTooLow when nLockTime is below the lock.
    """
    if lock < 0:
        raise LocktimeError(f'negative lock value {lock}')

    if is_block_height(nLockTime) != is_block_height(lock):
        raise LocktimeTypeMismatch(
            f'nLockTime {nLockTime} and lock value {lock} are not both '
            f'block heights or both timestamps')

    if nLockTime < lock:
        raise LocktimeTooLow(
            f'nLockTime {nLockTime} is below the required lock value {lock}',
            locktime=nLockTime, required=lock)


def CheckLockTime(tx: CTransaction, inIdx: int, lock: int) -> None:
    """The checks OP_CHECKLOCKTIMEVERIFY performs for input inIdx of tx

    Raises a LocktimeError subclass if the input could not satisfy
    `<lock> OP_CHECKLOCKTIMEVERIFY`.
    """
    if not 0 <= inIdx < len(tx.vin):
        raise ValueError(f'input index {inIdx} out of range, transaction '
                         f'has {len(tx.vin)} inputs')

    CheckLockTimeValue(tx.nLockTime, lock)

    # CHECKLOCKTIMEVERIFY fails on an input whose own nSequence is final
    if tx.vin[inIdx].is_final():
        raise SequenceFinalError(
            f'input {inIdx} has a final nSequence, CHECKLOCKTIMEVERIFY fails')


__all__ = (
    'COIN',
    'MAX_MONEY',
    'LOCKTIME_THRESHOLD',
    'SEQUENCE_FINAL',
    'Hash',
    'Hash160',
    'MoneyRange',
    'x',
    'b2x',
    'lx',
    'b2lx',
    'str_money_value',
    'ValidationError',
    'LocktimeError',
    'LocktimeTooLow',
    'LocktimeTypeMismatch',
    'SequenceFinalError',
    'CoreCoinClass',
    'COutPoint',
    'CMutableOutPoint',
    'CTxIn',
    'CMutableTxIn',
    'CTxOut',
    'CMutableTxOut',
    'CTransaction',
    'CMutableTransaction',
    'CheckTransactionError',
    'CheckTransaction',
    'is_block_height',
    'CheckLockTimeValue',
    'CheckLockTime',
)
