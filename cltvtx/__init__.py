# Copyright (C) 2012-2018 The python-bitcoinlib developers
# Copyright (C) 2018-2021 The python-bitcointx developers
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

"""Chain parameters

The selected network decides which base58 version bytes addresses are
encoded with and accepted from. The default comes from the NET environment
variable; select_chain_params() and the ChainParams() context manager
change it for the current thread or asyncio task.
"""

import os
from abc import ABCMeta
from contextlib import contextmanager
from typing import (
    Dict, Tuple, Union, Optional, Type, Any, Generator, TypeVar
)

import cltvtx.util

__version__ = '0.1.0'

DEFAULT_NET = 'mainnet'

T_ChainParamsMeta = TypeVar('T_ChainParamsMeta', bound='ChainParamsMeta')


class ChainParamsMeta(ABCMeta):
    """Registers every params class under the names given in its header

        class Foo(ChainParamsBase, name=('foo', 'foo/mainnet')): ...

    The first name becomes Foo.NAME.
    """

    _registry: Dict[str, Type['ChainParamsBase']] = {}

    def __new__(mcs: Type[T_ChainParamsMeta], cls_name: str,
                bases: Tuple[type, ...], dct: Dict[str, Any],
                name: Optional[Union[str, Tuple[str, ...]]] = None
                ) -> T_ChainParamsMeta:
        new_cls = super().__new__(mcs, cls_name, bases, dct)
        if name is None:
            return new_cls

        names = (name,) if isinstance(name, str) else tuple(name)
        for alias in names:
            taken_by = mcs._registry.get(alias)
            if taken_by is not None:
                raise ValueError(f'chain name {alias!r} is already taken '
                                 f'by {taken_by.__name__}')
            mcs._registry[alias] = new_cls  # type: ignore
        new_cls.NAME = names[0]  # type: ignore
        return new_cls


def find_chain_params(*, name: str) -> Optional[Type['ChainParamsBase']]:
    return ChainParamsMeta._registry.get(name)


class ChainParamsBase(metaclass=ChainParamsMeta):
    """Parameters of one network

    Subclasses name their address classes in cltvtx.wallet; the address
    classes carry the base58 version bytes.
    """

    NAME: str

    P2PKH_ADDRESS_CLASS: str
    P2SH_ADDRESS_CLASS: str

    def p2pkh_address_class(self) -> Type['cltvtx.wallet.P2PKHAddress']:
        import cltvtx.wallet
        return getattr(cltvtx.wallet, self.P2PKH_ADDRESS_CLASS)

    def p2sh_address_class(self) -> Type['cltvtx.wallet.P2SHAddress']:
        import cltvtx.wallet
        return getattr(cltvtx.wallet, self.P2SH_ADDRESS_CLASS)

    @property
    def name(self) -> str:
        return self.NAME

    def __repr__(self) -> str:
        return f'<{self.__class__.__name__}: {self.name!r}>'


class BitcoinMainnetParams(ChainParamsBase,
                           name=('bitcoin', 'bitcoin/mainnet', 'mainnet')):
    P2PKH_ADDRESS_CLASS = 'P2PKHBitcoinAddress'
    P2SH_ADDRESS_CLASS = 'P2SHBitcoinAddress'


class BitcoinTestnetParams(BitcoinMainnetParams,
                           name=('bitcoin/testnet', 'testnet', 'testnet4')):
    P2PKH_ADDRESS_CLASS = 'P2PKHBitcoinTestnetAddress'
    P2SH_ADDRESS_CLASS = 'P2SHBitcoinTestnetAddress'


class BitcoinRegtestParams(BitcoinTestnetParams,
                           name=('bitcoin/regtest', 'regtest')):
    P2PKH_ADDRESS_CLASS = 'P2PKHBitcoinRegtestAddress'
    P2SH_ADDRESS_CLASS = 'P2SHBitcoinRegtestAddress'


ChainParamsArg = Union[str, ChainParamsBase, Type[ChainParamsBase]]


def _make_params(params: ChainParamsArg, **kwargs: Any) -> ChainParamsBase:
    if isinstance(params, ChainParamsBase):
        if kwargs:
            raise ValueError('keyword arguments are only accepted together '
                             'with a chain name or a params class')
        return params

    if isinstance(params, str):
        params_cls = find_chain_params(name=params)
        if params_cls is None:
            raise ValueError(f'unknown chain {params!r}')
        return params_cls(**kwargs)

    if isinstance(params, type):
        if not issubclass(params, ChainParamsBase):
            raise TypeError(f'{params.__name__} is not a subclass of '
                            f'ChainParamsBase')
        return params(**kwargs)

    raise TypeError(f'expected a chain name, a ChainParamsBase subclass '
                    f'or instance, got {params!r}')


def select_chain_params(params: ChainParamsArg, **kwargs: Any
                        ) -> Tuple[ChainParamsBase, ChainParamsBase]:
    """Select the chain parameters to use

    params is a registered name such as 'bitcoin', 'testnet' or 'regtest',
    a ChainParamsBase subclass, or an instance of one. Only the current
    thread or asyncio task is affected.

    Returns (previous params, new params).
    """
    new = _make_params(params, **kwargs)
    prev = _chain_params_context.params
    _chain_params_context.params = new
    return prev, new


def get_current_chain_params() -> ChainParamsBase:
    return _chain_params_context.params


@contextmanager
def ChainParams(params: ChainParamsArg,
                **kwargs: Any) -> Generator[ChainParamsBase, None, None]:
    """Switch chain parameters for the duration of a with block"""
    prev, new = select_chain_params(params, **kwargs)
    try:
        yield new
    finally:
        select_chain_params(prev)


def get_net_from_env() -> str:
    return os.environ.get('NET', DEFAULT_NET)


def chain_params_from_env() -> ChainParamsBase:
    """Chain params named by the NET environment variable

    Unset or unknown values give mainnet.
    """
    params_cls = find_chain_params(name=get_net_from_env())
    return (params_cls or BitcoinMainnetParams)()


class ChainParamsContextVar(cltvtx.util.ContextVarsCompat):
    params: ChainParamsBase


_chain_params_context = ChainParamsContextVar(params=chain_params_from_env())


__all__ = (
    'ChainParamsBase',
    'BitcoinMainnetParams',
    'BitcoinTestnetParams',
    'BitcoinRegtestParams',
    'select_chain_params',
    'ChainParams',
    'get_current_chain_params',
    'find_chain_params',
    'get_net_from_env',
    'chain_params_from_env',
)
