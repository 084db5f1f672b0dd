# Copyright (C) 2012 Anaconda, Inc
# SPDX-License-Identifier: BSD-3-Clause
"""Microconda exceptions."""

from __future__ import annotations

from logging import getLogger
from typing import TYPE_CHECKING

from . import MicrocondaError, MicrocondaExitZero, MicrocondaMultiError
from .common.io import dals, dashlist

if TYPE_CHECKING:
    from collections.abc import Iterable

log = getLogger(__name__)

__all__ = (
    "MicrocondaError",
    "MicrocondaMultiError",
    "MicrocondaExitZero",
)


class ArgumentError(MicrocondaError):
    return_code = 2


class MicrocondaValueError(MicrocondaError, ValueError):
    pass


class InvalidVersionSpec(MicrocondaValueError):
    def __init__(self, invalid_spec: str, details: str):
        message = "Invalid version '%(invalid_spec)s': %(details)s"
        super().__init__(message, invalid_spec=invalid_spec, details=details)


class InvalidMatchSpec(MicrocondaValueError):
    def __init__(self, invalid_spec: str, details: str):
        message = "Invalid spec '%(invalid_spec)s': %(details)s"
        super().__init__(message, invalid_spec=invalid_spec, details=details)


class ChannelError(MicrocondaError):
    pass


class OfflineError(MicrocondaError, RuntimeError):
    def __init__(self, message: str, **kwargs):
        super().__init__(message, **kwargs)


class LockError(MicrocondaError):
    def __init__(self, message: str, caused_by=None, **kwargs):
        super().__init__(message, caused_by=caused_by, **kwargs)


class FetchFailed(MicrocondaError):
    """Metadata for one channel subdir could not be retrieved."""

    def __init__(self, subdir: str, url: str, reason: str, status_code=None, caused_by=None):
        message = dals(
            """
            Unable to retrieve package metadata for %(subdir)s.
              url: %(url)s
              reason: %(reason)s
            """
        )
        super().__init__(
            message,
            caused_by=caused_by,
            subdir=subdir,
            url=url,
            reason=reason,
            status_code=status_code,
        )

    @property
    def subdir(self) -> str:
        return self._kwargs["subdir"]

    @property
    def url(self) -> str:
        return self._kwargs["url"]


class FetchFailedMulti(MicrocondaMultiError, FetchFailed):
    """Several subdirs failed; still catchable as a single FetchFailed."""

    def __init__(self, errors: Iterable[FetchFailed]):
        self.errors = tuple(errors)
        MicrocondaError.__init__(self, None)

    @property
    def subdir(self) -> str:
        return self.errors[0].subdir

    @property
    def url(self) -> str:
        return self.errors[0].url


class MicrocondaHTTPError(MicrocondaError):
    def __init__(self, message, url, status_code, reason, caused_by=None):
        super().__init__(
            message + "\nurl: %(url)s\nstatus: %(status_code)s %(reason)s",
            caused_by=caused_by,
            url=url,
            status_code=status_code,
            reason=reason,
        )

    @property
    def status_code(self):
        return self._kwargs["status_code"]


class MicrocondaSSLError(MicrocondaError):
    pass


class ChecksumMismatchError(MicrocondaError):
    def __init__(
        self,
        url,
        target_full_path,
        checksum_type,
        expected_checksum,
        actual_checksum,
    ):
        message = dals(
            """
            Mismatch between the expected content and downloaded content
            for url '%(url)s'.
              target path: %(target_full_path)s
              expected %(checksum_type)s: %(expected_checksum)s
              actual %(checksum_type)s: %(actual_checksum)s
            """
        )
        super().__init__(
            message,
            url=url,
            target_full_path=str(target_full_path),
            checksum_type=checksum_type,
            expected_checksum=expected_checksum,
            actual_checksum=actual_checksum,
        )


class CacheCorruption(ChecksumMismatchError):
    """A package archive kept failing checksum verification after a re-fetch."""


class UnsatisfiableSpecs(MicrocondaError):
    def __init__(self, specs: Iterable, message: str | None = None):
        self.specs = tuple(str(s) for s in specs)
        if message is None:
            message = dals(
                """
                The following specifications were found to be incompatible with each other:
                %(specs_formatted)s
                """
            )
        super().__init__(message, specs_formatted=dashlist(self.specs))


class PackagesNotFound(UnsatisfiableSpecs):
    def __init__(self, packages: Iterable, channel_urls: Iterable[str] = ()):
        message = dals(
            """
            The following packages are not available from current channels:
            %(specs_formatted)s

            Current channels:
            %(channels_formatted)s
            """
        )
        self.channel_urls = tuple(channel_urls)
        self._channels_formatted = dashlist(self.channel_urls)
        super().__init__(packages, message=message)
        self._kwargs["channels_formatted"] = self._channels_formatted


class InvalidPrefixState(MicrocondaError):
    def __init__(self, prefix: str, reason: str | None = None, message: str | None = None):
        super().__init__(
            message or "Invalid prefix state for %(prefix)s: %(reason)s",
            prefix=str(prefix),
            reason=reason,
        )

    @property
    def prefix(self) -> str:
        return self._kwargs["prefix"]


class PrefixNotFound(InvalidPrefixState):
    def __init__(self, prefix: str):
        super().__init__(
            prefix,
            reason="not found",
            message="Prefix does not exist or is not an environment: %(prefix)s",
        )


class PrefixAlreadyExists(InvalidPrefixState):
    def __init__(self, prefix: str):
        super().__init__(
            prefix,
            reason="already exists",
            message="Prefix already exists: %(prefix)s",
        )


class CorruptedPrefix(InvalidPrefixState):
    def __init__(self, prefix: str, path: str, caused_by=None):
        super().__init__(
            prefix,
            reason=f"unreadable metadata file {path}",
        )
        self._caused_by = caused_by


class ClobberError(MicrocondaError):
    def __init__(self, target_path, incoming_package, colliding_package):
        message = dals(
            """
            The package '%(incoming_package)s' cannot be installed because the path
              '%(target_path)s'
            is already owned by the installed package '%(colliding_package)s'.
            """
        )
        super().__init__(
            message,
            target_path=target_path,
            incoming_package=str(incoming_package),
            colliding_package=str(colliding_package),
        )


class ExecutionFailure(MicrocondaError):
    """A transaction step failed; earlier steps stay applied."""

    def __init__(self, step, last_applied=None, caused_by=None):
        message = dals(
            """
            Transaction failed while executing %(step)s.
              last applied step: %(last_applied)s
              error: %(error_detail)s
            """
        )
        self.step = step
        self.last_applied = last_applied
        super().__init__(
            message,
            caused_by=caused_by,
            step=str(step),
            last_applied=str(last_applied) if last_applied is not None else "<none>",
            error_detail=str(caused_by) if caused_by is not None else "unknown",
        )

    def dump_map(self):
        result = super().dump_map()
        result["step"] = str(self.step)
        result["last_applied"] = None if self.last_applied is None else str(self.last_applied)
        return result


class DryRunExit(MicrocondaExitZero):
    def __init__(self):
        super().__init__("Dry run. Exiting.")


class UserDeclined(MicrocondaExitZero):
    def __init__(self):
        super().__init__("Exiting.")


class BinaryPrefixReplacementError(MicrocondaError):
    def __init__(self, path, placeholder, new_prefix, original_data_length, new_data_length):
        message = dals(
            """
            Refusing to replace mismatched data length in binary file.
              path: %(path)s
              placeholder: %(placeholder)s
              new prefix: %(new_prefix)s
              original data length: %(original_data_length)d
              new data length: %(new_data_length)d
            """
        )
        super().__init__(
            message,
            path=path,
            placeholder=placeholder,
            new_prefix=new_prefix,
            original_data_length=original_data_length,
            new_data_length=new_data_length,
        )
