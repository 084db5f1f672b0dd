# Copyright (C) 2012 Anaconda, Inc
# SPDX-License-Identifier: BSD-3-Clause
"""Entry points for the create, install, remove and list operations.

Each operation runs the same pipeline: fetch channel metadata, build the
package index, solve, diff against the prefix, confirm and execute. Errors
propagate as exceptions; mapping them to exit codes is left to the caller.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from logging import getLogger
from typing import TYPE_CHECKING

from .core.index import Pool
from .core.link import UnlinkLinkTransaction
from .core.prefix_data import PrefixData
from .core.solve import Solver, SolverJob
from .core.subdir_data import fetch_subdirs, make_subdir_datas
from .exceptions import ArgumentError
from .models.channel import channels_from_values
from .reporters import confirm_yn, render

if TYPE_CHECKING:
    from collections.abc import Iterable
    from typing import Any

    from .base.context import Context
    from .core.package_cache_data import MultiPackageCache
    from .models.records import PrefixRecord

log = getLogger(__name__)


@dataclass
class OperationResult:
    transaction: UnlinkLinkTransaction
    executed: bool
    summary: dict[str, Any] = field(default_factory=dict)


def _target_prefix_data(context: Context) -> PrefixData:
    if not context.target_prefix:
        raise ArgumentError("A target prefix is required (use -p/--prefix).")
    return PrefixData(context.target_prefix)


def load_pool(context: Context, prefix_data: PrefixData | None = None) -> Pool:
    """Fetch every channel subdir and build a frozen pool from them.

    :raises FetchFailed: If one subdir failed.
    :raises FetchFailedMulti: If several subdirs failed.
    """
    channels = channels_from_values(context.channels, context.channel_alias)
    subdir_datas = make_subdir_datas(channels, context)
    report = fetch_subdirs(subdir_datas, context)
    report.raise_for_failures()
    return Pool.from_subdirs(report.succeeded, prefix_data)


def _solve_and_execute(
    context: Context,
    prefix_data: PrefixData,
    jobs: list[SolverJob],
    specs_to_add: Iterable[str] = (),
    specs_to_remove: Iterable[str] = (),
    package_cache: MultiPackageCache | None = None,
    creating: bool = False,
) -> OperationResult:
    pool = load_pool(context, prefix_data if prefix_data.is_environment() else None)
    solution = Solver(pool, jobs, allow_downgrade=context.allow_downgrade).solve()
    transaction = UnlinkLinkTransaction(
        context,
        prefix_data,
        solution,
        specs_to_add=specs_to_add,
        specs_to_remove=specs_to_remove,
        package_cache=package_cache,
    )
    summary = transaction.summary()

    if transaction.nothing_to_do and creating:
        # an empty environment is still a change worth confirming
        transaction.print_transaction_summary()
        confirm_yn(context)
        prefix_data.create()
        return OperationResult(transaction, True, summary)

    if not transaction.confirm():
        if not context.json:
            render(transaction.summary_text(), context)
        return OperationResult(transaction, False, summary)

    transaction.execute()
    return OperationResult(transaction, True, summary)


def create(
    context: Context,
    specs: Iterable[str],
    package_cache: MultiPackageCache | None = None,
) -> OperationResult:
    """Create a new environment at ``context.target_prefix`` holding ``specs``.

    :raises PrefixAlreadyExists: Before any network access, if anything
        exists at the prefix path.
    """
    prefix_data = _target_prefix_data(context)
    prefix_data.assert_absent()
    specs = list(specs)
    jobs = [SolverJob.install(spec, context.allow_downgrade) for spec in specs]
    return _solve_and_execute(
        context,
        prefix_data,
        jobs,
        specs_to_add=specs,
        package_cache=package_cache,
        creating=True,
    )


def install(
    context: Context,
    specs: Iterable[str],
    package_cache: MultiPackageCache | None = None,
) -> OperationResult:
    """Install ``specs`` into the existing environment at ``context.target_prefix``.

    :raises PrefixNotFound: If the prefix is missing or not an environment.
    """
    prefix_data = _target_prefix_data(context)
    prefix_data.assert_environment()
    specs = list(specs)
    if not specs:
        raise ArgumentError("No package specs given to install.")
    jobs = [SolverJob.install(spec, context.allow_downgrade) for spec in specs]
    return _solve_and_execute(
        context, prefix_data, jobs, specs_to_add=specs, package_cache=package_cache
    )


def remove(
    context: Context,
    specs: Iterable[str],
    package_cache: MultiPackageCache | None = None,
) -> OperationResult:
    """Remove ``specs``, and whatever depends on them, from the environment.

    :raises PrefixNotFound: If the prefix is missing or not an environment.
    :raises PackagesNotFound: If a spec matches no installed package.
    """
    prefix_data = _target_prefix_data(context)
    prefix_data.assert_environment()
    specs = list(specs)
    if not specs:
        raise ArgumentError("No package specs given to remove.")
    jobs = [SolverJob.remove(spec) for spec in specs]
    return _solve_and_execute(
        context, prefix_data, jobs, specs_to_remove=specs, package_cache=package_cache
    )


def list_packages(context: Context) -> list[PrefixRecord]:
    """The records installed in the environment, sorted by name.

    :raises PrefixNotFound: If the prefix is missing or not an environment.
    """
    prefix_data = _target_prefix_data(context)
    prefix_data.assert_environment()
    return list(prefix_data.iter_records_sorted())
