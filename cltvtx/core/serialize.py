# Copyright (C) 2012-2018 The python-bitcoinlib developers
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

"""Serialization routines

Wire encoding of transactions and their parts: compact-size integers,
length-prefixed byte strings and vectors of serializable objects. Every
failure to decode raises a MalformedInput subclass.
"""

import hashlib
import struct
from io import BytesIO
from typing import (
    List, Sequence, Union, TypeVar, Type, Generic, Any, Optional
)

from Crypto.Hash import RIPEMD160

from ..util import ensure_isinstance

ByteStream_Type = BytesIO

# largest length prefix accepted when decoding
MAX_SIZE = 0x02000000

T_unbounded = TypeVar('T_unbounded')
T_Serializable = TypeVar('T_Serializable', bound='Serializable')
T_ImmutableSerializable = TypeVar('T_ImmutableSerializable',
                                  bound='ImmutableSerializable')


def Hash(msg: Union[bytes, bytearray]) -> bytes:
    """SHA256(SHA256(msg)), as used for txids and signature hashes"""
    return hashlib.sha256(hashlib.sha256(msg).digest()).digest()


def Hash160(msg: Union[bytes, bytearray]) -> bytes:
    """RIPEMD160(SHA256(msg)), as used for P2PKH and P2SH addresses"""
    return RIPEMD160.new(hashlib.sha256(msg).digest()).digest()


class SerializationError(Exception):
    """Base class for serialization errors"""


class MalformedInput(SerializationError):
    """Serialized data does not describe a well-formed object"""


class SerializationTruncationError(MalformedInput):
    """The data ended before the object was complete"""


class DeserializationExtraDataError(MalformedInput):
    """Bytes were left over after deserializing an object

    The decoded object is kept in .obj and the left-over bytes in .padding.
    """

    def __init__(self, msg: str, obj: Any, padding: bytes):
        super().__init__(msg)
        self.obj = obj
        self.padding = padding


class DeserializationValueBoundsError(MalformedInput):
    """A decoded value is outside the range its encoding allows"""

    def __init__(self, msg: str, *, klass: Type['Serializer[Any]'],
                 value: int, upper_bound: int, lower_bound: int):
        super().__init__(msg)
        self.klass = klass
        self.value = value
        self.upper_bound = upper_bound
        self.lower_bound = lower_bound


def ser_read(f: ByteStream_Type, n: int) -> bytes:
    """Read exactly n bytes from f

    Raises SerializationTruncationError if fewer are available. Stream
    deserializers use this instead of f.read().
    """
    if n > MAX_SIZE:
        raise SerializationError(f'refusing to read {n:#x} bytes, more '
                                 f'than MAX_SIZE')
    data = f.read(n)
    if len(data) < n:
        raise SerializationTruncationError(
            f'expected {n} bytes, only {len(data)} available')
    return data


class Serializable(object):
    """Base class for objects with a wire encoding

    Subclasses implement stream_serialize() and stream_deserialize().
    Equality compares the serialized bytes.
    """

    __slots__: List[str] = []

    def stream_serialize(self, f: ByteStream_Type, **kwargs: Any) -> None:
        raise NotImplementedError

    @classmethod
    def stream_deserialize(cls: Type[T_Serializable], f: ByteStream_Type,
                           **kwargs: Any) -> T_Serializable:
        raise NotImplementedError

    def serialize(self, **kwargs: Any) -> bytes:
        f = BytesIO()
        self.stream_serialize(f, **kwargs)
        return f.getvalue()

    @classmethod
    def deserialize(cls: Type[T_Serializable], buf: Union[bytes, bytearray],
                    allow_padding: bool = False, **kwargs: Any
                    ) -> T_Serializable:
        """Decode an instance from buf

        Unless allow_padding is set, bytes left over after decoding raise
        DeserializationExtraDataError.
        """
        ensure_isinstance(buf, (bytes, bytearray), 'data to deserialize')
        f = BytesIO(buf)
        obj = cls.stream_deserialize(f, **kwargs)
        if not allow_padding:
            tail = f.read()
            if tail:
                raise DeserializationExtraDataError(
                    f'{len(tail)} byte(s) left over after deserializing '
                    f'{cls.__name__}', obj, tail)
        return obj

    def __eq__(self, other: Any) -> bool:
        if not (isinstance(other, self.__class__)
                or isinstance(self, other.__class__)):
            return NotImplemented
        return self.serialize() == other.serialize()

    def __ne__(self, other: Any) -> bool:
        return not (self == other)

    def __hash__(self) -> int:
        return hash(self.serialize())


class ImmutableSerializable(Serializable):
    """Serializable object that can not be changed after creation"""

    __slots__: List[str] = ['_cached__hash__']

    _cached__hash__: int

    def __setattr__(self, name: str, value: Any) -> None:
        raise AttributeError(f'{self.__class__.__name__} is immutable')

    def __delattr__(self, name: str) -> None:
        raise AttributeError(f'{self.__class__.__name__} is immutable')

    def __hash__(self) -> int:
        try:
            return self._cached__hash__
        except AttributeError:
            h = super().__hash__()
            object.__setattr__(self, '_cached__hash__', h)
            return h


def make_mutable(cls: Type[T_ImmutableSerializable]
                 ) -> Type[T_ImmutableSerializable]:
    """Lift the immutability of an ImmutableSerializable subclass"""
    if not issubclass(cls, ImmutableSerializable):
        raise TypeError('make_mutable() only applies to subclasses of '
                        'ImmutableSerializable')
    cls.__setattr__ = object.__setattr__  # type: ignore
    cls.__delattr__ = object.__delattr__  # type: ignore
    # a mutable object may change, so its hash can not be cached
    cls.__hash__ = Serializable.__hash__  # type: ignore
    return cls


class Serializer(Generic[T_unbounded]):
    """Encoding of values that are not Serializable themselves

    Used as a namespace of classmethods, never instantiated.
    """

    def __new__(cls: Type['Serializer[T_unbounded]']
                ) -> 'Serializer[T_unbounded]':
        raise NotImplementedError

    @classmethod
    def stream_serialize(cls, obj: T_unbounded, f: ByteStream_Type,
                         **kwargs: Any) -> None:
        raise NotImplementedError

    @classmethod
    def stream_deserialize(cls, f: ByteStream_Type,
                           **kwargs: Any) -> T_unbounded:
        raise NotImplementedError

    @classmethod
    def serialize(cls, obj: T_unbounded, **kwargs: Any) -> bytes:
        f = BytesIO()
        cls.stream_serialize(obj, f, **kwargs)
        return f.getvalue()

    @classmethod
    def deserialize(cls, buf: bytes, **kwargs: Any) -> T_unbounded:
        ensure_isinstance(buf, (bytes, bytearray), 'data to deserialize')
        f = BytesIO(buf)
        obj = cls.stream_deserialize(f, **kwargs)
        tail = f.read()
        if tail:
            raise DeserializationExtraDataError(
                f'{len(tail)} byte(s) left over after deserializing with '
                f'{cls.__name__}', obj, tail)
        return obj


class VarIntSerializer(Serializer[int]):
    """Bitcoin's compact size integers

    Values below 0xfd take one byte. Larger ones take a marker byte
    followed by a 2, 4 or 8 byte little-endian integer.
    """

    # marker -> (struct format, smallest value that needs this form)
    _wide_forms = {
        0xfd: (b'<H', 0xfd),
        0xfe: (b'<I', 0x10000),
        0xff: (b'<Q', 0x100000000),
    }

    @classmethod
    def stream_serialize(cls, obj: int, f: ByteStream_Type,
                         **kwargs: Any) -> None:
        if obj < 0:
            raise ValueError(f'varint must not be negative, got {obj}')
        if obj < 0xfd:
            f.write(bytes([obj]))
            return
        for marker, (fmt, lower_bound) in reversed(cls._wide_forms.items()):
            if obj >= lower_bound:
                f.write(bytes([marker]) + struct.pack(fmt, obj))
                return

    @classmethod
    def stream_deserialize(cls, f: ByteStream_Type,
                           allow_full_range: bool = False, **kwargs: Any
                           ) -> int:
        """Decode a compact size

        Non-canonical encodings raise DeserializationValueBoundsError, and
        so do values above MAX_SIZE unless allow_full_range is set.
        """
        marker = ser_read(f, 1)[0]
        if marker < 0xfd:
            return marker

        fmt, lower_bound = cls._wide_forms[marker]
        width = struct.calcsize(fmt)
        (value,) = struct.unpack(fmt, ser_read(f, width))

        if value < lower_bound:
            raise DeserializationValueBoundsError(
                f'non-canonical {width + 1}-byte compact size: '
                f'{value:#x} is below {lower_bound:#x}',
                klass=cls, value=value, lower_bound=lower_bound,
                upper_bound=(1 << (width * 8)) - 1)

        if value > MAX_SIZE and not allow_full_range:
            raise DeserializationValueBoundsError(
                f'compact size {value:#x} is above MAX_SIZE '
                f'({MAX_SIZE:#x})',
                klass=cls, value=value, lower_bound=lower_bound,
                upper_bound=MAX_SIZE)

        return value


class BytesSerializer(Serializer[bytes]):
    """Byte strings prefixed with their compact size length"""

    @classmethod
    def stream_serialize(cls, obj: bytes, f: ByteStream_Type,
                         **kwargs: Any) -> None:
        VarIntSerializer.stream_serialize(len(obj), f, **kwargs)
        f.write(obj)

    @classmethod
    def stream_deserialize(cls, f: ByteStream_Type, **kwargs: Any) -> bytes:
        size = VarIntSerializer.stream_deserialize(f, **kwargs)
        return ser_read(f, size)


class VectorSerializer(Serializer[Sequence[Serializable]]):
    """Compact size count followed by the serialized elements

    Deserializing needs element_class. All elements must be of one class,
    or of its mutable/immutable twin.
    """

    @classmethod
    def stream_serialize(cls, obj: Sequence[Serializable],
                         f: ByteStream_Type, **kwargs: Any) -> None:
        VarIntSerializer.stream_serialize(len(obj), f, **kwargs)
        kinds = {getattr(type(inst), '_immutable_cls', type(inst))
                 for inst in obj}
        if len(kinds) > 1:
            raise ValueError(
                'vector elements must all be of the same type, got {}'
                .format(', '.join(sorted(k.__name__ for k in kinds))))
        for inst in obj:
            inst.stream_serialize(f, **kwargs)

    @classmethod
    def stream_deserialize(
        cls, f: ByteStream_Type,
        element_class: Optional[Type[T_Serializable]] = None,
        **kwargs: Any
    ) -> List[T_Serializable]:
        if element_class is None:
            raise ValueError('element_class must be given to deserialize '
                             'a vector')
        count = VarIntSerializer.stream_deserialize(f, **kwargs)
        return [element_class.stream_deserialize(f, **kwargs)
                for _ in range(count)]


__all__ = (
    'MAX_SIZE',
    'Hash',
    'Hash160',
    'SerializationError',
    'MalformedInput',
    'SerializationTruncationError',
    'DeserializationExtraDataError',
    'DeserializationValueBoundsError',
    'ser_read',
    'Serializable',
    'ImmutableSerializable',
    'make_mutable',
    'Serializer',
    'VarIntSerializer',
    'BytesSerializer',
    'VectorSerializer',
)
