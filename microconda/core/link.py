# Copyright (C) 2012 Anaconda, Inc
# SPDX-License-Identifier: BSD-3-Clause
"""Package installation implemented as a series of link/unlink steps.

An :class:`UnlinkLinkTransaction` turns a solution into the steps that make
a prefix match it, shows and confirms the plan, and executes it. Execution
is fail-stop: every step persists its prefix record as soon as it is done,
and the first failing step raises :class:`ExecutionFailure` naming the step
and the last one applied. Nothing is rolled back.
"""

from __future__ import annotations

from dataclasses import dataclass
from logging import getLogger
from os.path import join, lexists
from typing import TYPE_CHECKING

from boltons.setutils import IndexedSet

from ..base.constants import REPODATA_RECORD_PATH, LinkType
from ..common.io import dashlist
from ..common.toposort import toposort
from ..exceptions import (
    ClobberError,
    ExecutionFailure,
    MicrocondaError,
    MicrocondaValueError,
)
from ..gateways.disk.create import hardlink_supported, link_file
from ..gateways.disk.delete import remove_empty_parent_paths, rm_rf
from ..gateways.disk.read import read_files, read_has_prefix
from ..models.match_spec import MatchSpec
from ..models.records import PrefixRecord
from ..reporters import confirm_yn, render
from ..utils import human_bytes
from .package_cache_data import MultiPackageCache
from .portability import update_prefix

if TYPE_CHECKING:
    from collections.abc import Iterable
    from typing import Any, Literal

    from ..base.context import Context
    from ..models.records import PackageRecord
    from .prefix_data import PrefixData

log = getLogger(__name__)


@dataclass(frozen=True)
class TransactionStep:
    action: Literal["link", "unlink"]
    record: PackageRecord

    def __str__(self) -> str:
        return f"{self.action} {self.record.dist_str()}"


def dependency_order(records: Iterable[PackageRecord]) -> list[PackageRecord]:
    """Sort ``records`` so each comes after the records it depends on."""
    by_name = {record.name: record for record in records}
    digraph = {}
    for name, record in by_name.items():
        deps = set()
        for dep in record.depends:
            try:
                deps.add(MatchSpec.parse(dep).name)
            except MicrocondaValueError:
                log.debug("ignoring unparseable dependency %r of %s", dep, record)
        digraph[name] = deps & by_name.keys()
    return [by_name[name] for name in toposort(digraph)]


def diff_for_unlink_link_precs(
    prefix_data: PrefixData,
    final_precs: Iterable[PackageRecord],
) -> tuple[tuple[PackageRecord, ...], tuple[PackageRecord, ...]]:
    """
    Records to unlink, in reverse dependency order, and records to link, in
    the order of ``final_precs``. A record in both the prefix and the
    solution is kept and appears in neither.
    """
    final_precs = IndexedSet(final_precs)
    previous_records = IndexedSet(dependency_order(prefix_data.iter_records()))

    unlink_precs = previous_records - final_precs
    link_precs = final_precs - previous_records

    unlink_precs = IndexedSet(
        reversed(sorted(unlink_precs, key=lambda x: previous_records.index(x)))
    )
    link_precs = IndexedSet(sorted(link_precs, key=lambda x: final_precs.index(x)))
    return tuple(unlink_precs), tuple(link_precs)


def determine_link_type(extracted_package_dir: str, target_prefix: str) -> LinkType:
    source_test_file = join(extracted_package_dir, REPODATA_RECORD_PATH)
    if hardlink_supported(source_test_file, target_prefix):
        return LinkType.hardlink
    return LinkType.copy


class UnlinkLinkTransaction:
    def __init__(
        self,
        context: Context,
        prefix_data: PrefixData,
        final_precs: Iterable[PackageRecord],
        specs_to_add: Iterable[MatchSpec | str] = (),
        specs_to_remove: Iterable[MatchSpec | str] = (),
        package_cache: MultiPackageCache | None = None,
    ):
        self.context = context
        self.prefix_data = prefix_data
        self.target_prefix = prefix_data.prefix_path
        self.specs_to_add = tuple(MatchSpec.parse(s) for s in specs_to_add)
        self.specs_to_remove = tuple(MatchSpec.parse(s) for s in specs_to_remove)
        self.package_cache = package_cache or MultiPackageCache(context)

        self.unlink_precs, self.link_precs = diff_for_unlink_link_precs(
            prefix_data, final_precs
        )
        link_names = [prec.name for prec in self.link_precs]
        if len(link_names) != len(set(link_names)):
            raise MicrocondaError(
                "Refusing to link more than one record of the same name:%(dists)s",
                dists=dashlist(prec.dist_str() for prec in self.link_precs),
            )

        self._previous_requested_specs = {
            prec.name: prec.requested_spec for prec in prefix_data.iter_records()
        }
        self.applied: list[TransactionStep] = []
        self._extracted: dict[PackageRecord, str] | None = None
        self._link_type: LinkType | None = None
        self._executed = False

        log.debug(
            "instantiating UnlinkLinkTransaction with\n"
            "  target_prefix: %s\n"
            "  unlink_precs:%s\n"
            "  link_precs:%s\n",
            self.target_prefix,
            dashlist((prec.dist_str() for prec in self.unlink_precs), 4),
            dashlist((prec.dist_str() for prec in self.link_precs), 4),
        )

    @property
    def nothing_to_do(self) -> bool:
        return not self.unlink_precs and not self.link_precs

    @property
    def steps(self) -> tuple[TransactionStep, ...]:
        """Every unlink, in reverse dependency order, then every link."""
        return tuple(
            [TransactionStep("unlink", prec) for prec in self.unlink_precs]
            + [TransactionStep("link", prec) for prec in self.link_precs]
        )

    @property
    def replaced(self) -> dict[str, tuple[PackageRecord, PackageRecord]]:
        """Name -> (old, new) for every name both unlinked and linked."""
        new_by_name = {prec.name: prec for prec in self.link_precs}
        return {
            old.name: (old, new_by_name[old.name])
            for old in self.unlink_precs
            if old.name in new_by_name
        }

    # plan reporting

    def _requested_spec(self, record: PackageRecord) -> str | None:
        for spec in self.specs_to_add:
            if spec.name == record.name:
                return str(spec)
        return self._previous_requested_specs.get(record.name)

    def _fetch_precs(self) -> list[PackageRecord]:
        return [
            prec for prec in self.link_precs if self.package_cache.download_size(prec)
        ]

    @staticmethod
    def _dump_record(record: PackageRecord) -> dict[str, Any]:
        return {
            "name": record.name,
            "version": record.version,
            "build_string": record.build,
            "build_number": record.build_number,
            "channel": record.channel,
            "platform": record.subdir,
            "dist_name": record.dist_name,
            "fn": record.fn,
            "url": record.url,
            "size": record.size,
        }

    def summary(self, success: bool = True) -> dict[str, Any]:
        """The plan as a JSON-serializable mapping."""
        return {
            "actions": {
                "FETCH": [self._dump_record(prec) for prec in self._fetch_precs()],
                "LINK": [
                    dict(self._dump_record(prec), disk_size=self.package_cache.disk_size(prec))
                    for prec in self.link_precs
                ],
                "UNLINK": [self._dump_record(prec) for prec in self.unlink_precs],
                "PREFIX": self.target_prefix,
            },
            "success": success,
            "dry_run": self.context.dry_run,
        }

    def summary_text(self) -> str:
        if self.nothing_to_do and self.prefix_data.is_environment():
            return "\n# All requested packages already installed.\n"

        lines = ["", "## Package Plan ##", ""]
        lines.append(f"  environment location: {self.target_prefix}")
        if self.specs_to_add:
            lines += ["", "  added / updated specs:"]
            lines += [f"    - {spec}" for spec in self.specs_to_add]
        if self.specs_to_remove:
            lines += ["", "  removed specs:"]
            lines += [f"    - {spec}" for spec in self.specs_to_remove]
        lines.append("")

        fetch_precs = self._fetch_precs()
        if fetch_precs:
            lines += ["", "The following packages will be downloaded:", ""]
            width = max(len(prec.dist_name) for prec in fetch_precs)
            total = 0
            for prec in fetch_precs:
                size = self.package_cache.download_size(prec)
                total += size
                lines.append(f"    {prec.dist_name:<{width}} | {human_bytes(size):>9}")
            lines.append("    " + "-" * (width + 12))
            lines.append(f"    {'Total:':>{width}}   {human_bytes(total):>9}")
            lines.append("")

        replaced = self.replaced
        new = [prec for prec in self.link_precs if prec.name not in replaced]
        removed = [prec for prec in self.unlink_precs if prec.name not in replaced]
        updated, downgraded, superseded = {}, {}, {}
        for name, (old, new_prec) in replaced.items():
            old_key = (old.version_order, old.build_number)
            new_key = (new_prec.version_order, new_prec.build_number)
            if new_key > old_key:
                updated[name] = (old, new_prec)
            elif new_key < old_key:
                downgraded[name] = (old, new_prec)
            else:
                superseded[name] = (old, new_prec)

        def add_group(header, entries):
            if not entries:
                return
            width = max(len(name) for name, _ in entries)
            lines.extend(["", header, ""])
            lines.extend(f"  {name:<{width}}  {desc}" for name, desc in entries)
            lines.append("")

        add_group(
            "The following NEW packages will be INSTALLED:",
            [(prec.name, prec.dist_str()) for prec in new],
        )
        add_group(
            "The following packages will be REMOVED:",
            [(prec.name, prec.dist_str()) for prec in removed],
        )
        for header, group in (
            ("The following packages will be UPDATED:", updated),
            (
                "The following packages will be SUPERSEDED by a higher-priority"
                " channel:",
                superseded,
            ),
            ("The following packages will be DOWNGRADED:", downgraded),
        ):
            add_group(
                header,
                [
                    (name, f"{old.dist_str()} --> {new_prec.dist_str()}")
                    for name, (old, new_prec) in sorted(group.items())
                ],
            )

        if self.link_precs:
            disk_size = sum(self.package_cache.disk_size(prec) for prec in self.link_precs)
            lines += ["", f"  Total disk space for linked packages: {human_bytes(disk_size)}", ""]
        return "\n".join(lines) + "\n"

    def print_transaction_summary(self) -> None:
        if self.context.json:
            if self.context.dry_run:
                render(self.summary(), self.context)
        else:
            render(self.summary_text(), self.context)

    def confirm(self) -> bool:
        """Show the plan and ask to proceed.

        Returns False when there is nothing to do, in which case nothing is
        shown or asked.

        :raises DryRunExit: In dry run mode, after the plan is shown.
        :raises UserDeclined: If the user answers no.
        """
        if self.nothing_to_do:
            log.info("nothing to do for %s", self.target_prefix)
            return False
        self.print_transaction_summary()
        return confirm_yn(self.context)

    # execution

    def download_and_extract(self) -> dict[PackageRecord, str]:
        if self._extracted is None:
            self._extracted = self.package_cache.ensure_all(self.link_precs)
        return self._extracted

    def verify(self) -> None:
        """
        :raises ClobberError: If a linked path belongs to another installed
            package that stays installed, or to two linked packages.
        """
        extracted = self.download_and_extract()
        unlinked_names = {prec.name for prec in self.unlink_precs}
        owners = {
            path: name
            for path, name in self.prefix_data.owners().items()
            if name not in unlinked_names
        }
        for prec in self.link_precs:
            for path in read_files(extracted[prec]):
                owner = owners.get(path)
                if owner is not None and owner != prec.name:
                    target = join(self.target_prefix, path)
                    raise ClobberError(target, prec.dist_str(), owner)
                owners[path] = prec.name

    def execute(self) -> None:
        """Apply every step in order.

        :raises ExecutionFailure: On the first step that fails.
        """
        if self._executed:
            raise MicrocondaError("This transaction has already been executed.")
        self._executed = True

        extracted = self.download_and_extract()
        self.verify()
        if not self.prefix_data.is_environment():
            self.prefix_data.create()

        for step in self.steps:
            last_applied = self.applied[-1] if self.applied else None
            log.info("%s", step)
            try:
                if step.action == "unlink":
                    self._unlink(step.record)
                else:
                    self._link(step.record, extracted[step.record])
            except Exception as e:
                log.debug("step %s failed", step, exc_info=True)
                raise ExecutionFailure(step, last_applied, caused_by=e) from e
            self.applied.append(step)

    def _link(self, record: PackageRecord, extracted_package_dir: str) -> None:
        if self._link_type is None:
            self._link_type = determine_link_type(
                extracted_package_dir, self.target_prefix
            )
        files = read_files(extracted_package_dir)
        has_prefix = read_has_prefix(join(extracted_package_dir, "info", "has_prefix"))

        linked = []
        for short_path in files:
            source = join(extracted_package_dir, short_path)
            target = join(self.target_prefix, short_path)
            if lexists(target):
                log.info("replacing unowned file %s", target)
            placeholder = has_prefix.get(short_path)
            if placeholder is None:
                link_file(source, target, self._link_type)
            else:
                # never rewrite a hard link into the package cache
                link_file(source, target, LinkType.copy)
                update_prefix(
                    target,
                    self.target_prefix,
                    placeholder.placeholder,
                    placeholder.file_mode,
                )
            linked.append(short_path)

        prefix_record = PrefixRecord.from_package_record(
            record,
            files=tuple(linked),
            requested_spec=self._requested_spec(record),
            extracted_package_dir=extracted_package_dir,
            link_type=str(self._link_type),
        )
        self.prefix_data.insert(prefix_record)

    def _unlink(self, record: PackageRecord) -> None:
        prefix_record = self.prefix_data.get(record.name)
        if prefix_record is None:
            raise MicrocondaError(
                "Package %(name)s is not installed in %(prefix)s.",
                name=record.name,
                prefix=self.target_prefix,
            )
        for short_path in prefix_record.files:
            target = join(self.target_prefix, short_path)
            if not rm_rf(target):
                raise MicrocondaError("Unable to remove %(path)s.", path=target)
            remove_empty_parent_paths(target, self.target_prefix)
        self.prefix_data.remove(record.name)

