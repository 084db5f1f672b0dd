# Copyright (C) 2012 Anaconda, Inc
# SPDX-License-Identifier: BSD-3-Clause
"""Minimal binary package manager core: fetch, solve, and link conda packages."""

from __future__ import annotations

import sys
from os.path import abspath, dirname
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable
    from typing import Any

__all__ = (
    "__name__",
    "__version__",
    "__author__",
    "__license__",
    "__summary__",
    "MICROCONDA_PACKAGE_ROOT",
    "MicrocondaError",
    "MicrocondaMultiError",
    "MicrocondaExitZero",
)

__name__ = "microconda"
__version__ = "0.4.0"
__author__ = "Anaconda, Inc."
__license__ = "BSD-3-Clause"
__summary__ = __doc__

#: The microconda package directory.
MICROCONDA_PACKAGE_ROOT = abspath(dirname(__file__))


class MicrocondaError(Exception):
    return_code: int = 1

    def __init__(self, message: str | None, caused_by: Any = None, **kwargs):
        self.message = message or ""
        self._kwargs = kwargs
        self._caused_by = caused_by
        super().__init__(message)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}: {self}"

    def __str__(self) -> str:
        try:
            return str(self.message) % self._kwargs
        except Exception:
            print(
                f"class: {self.__class__.__name__}\n"
                f"message:\n{self.message}\nkwargs:\n{self._kwargs}\n",
                file=sys.stderr,
            )
            raise

    def dump_map(self) -> dict[str, Any]:
        result = {k: v for k, v in vars(self).items() if not k.startswith("_")}
        result.update(
            exception_type=str(type(self)),
            exception_name=self.__class__.__name__,
            message=str(self),
            error=repr(self),
            caused_by=repr(self._caused_by),
            **self._kwargs,
        )
        return result


class MicrocondaMultiError(MicrocondaError):
    def __init__(self, errors: Iterable[MicrocondaError]):
        self.errors = tuple(errors)
        super().__init__(None)

    def __repr__(self) -> str:
        return "\n".join(e.__repr__() for e in self.errors)

    def __str__(self) -> str:
        return "\n".join(str(e) for e in self.errors) + "\n"

    def dump_map(self) -> dict[str, Any]:
        return dict(
            exception_type=str(type(self)),
            exception_name=self.__class__.__name__,
            errors=tuple(error.dump_map() for error in self.errors),
            error="Multiple Errors Encountered.",
        )

    def contains(self, exception_class) -> bool:
        return any(isinstance(e, exception_class) for e in self.errors)


class MicrocondaExitZero(MicrocondaError):
    return_code = 0
