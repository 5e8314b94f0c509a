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

"""Miscellaneous helpers shared by the cltvtx modules"""

import logging
from contextvars import ContextVar
from typing import Any, Dict, Tuple, Type, Union


def class_logger(path: str, classname: str) -> logging.Logger:
    """Return a hierarchical logger for a class."""
    return logging.getLogger(path).getChild(classname)


def ensure_isinstance(var: object,
                      type_or_types: Union[Type[Any], Tuple[Type[Any], ...]],
                      var_description: str) -> None:
    """Raise TypeError unless var is an instance of type_or_types"""
    if isinstance(var, type_or_types):
        return
    if isinstance(type_or_types, tuple):
        expected = ' or '.join(t.__name__ for t in type_or_types)
    else:
        expected = type_or_types.__name__
    raise TypeError(f'{var_description} must be {expected}, '
                    f'not {var.__class__.__name__}')


class ContextVarsCompat:
    """Attribute access to a fixed set of context variables

    Each keyword given on creation becomes a ContextVar with that default.
    Assigning an attribute only affects the current thread or asyncio task.
    """

    _vars: Dict[str, 'ContextVar[Any]']

    def __init__(self, **defaults: Any):
        if type(self) is ContextVarsCompat:
            raise TypeError('ContextVarsCompat must be subclassed')
        object.__setattr__(self, '_vars', {
            name: ContextVar(name, default=value)
            for name, value in defaults.items()})

    def __getattr__(self, name: str) -> Any:
        try:
            var = self._vars[name]
        except KeyError:
            raise AttributeError(name) from None
        return var.get()

    def __setattr__(self, name: str, value: Any) -> None:
        if name not in self._vars:
            raise AttributeError(
                f'{self.__class__.__name__} has no context variable {name}')
        self._vars[name].set(value)


__all__ = (
    'class_logger',
    'ensure_isinstance',
    'ContextVarsCompat',
)
