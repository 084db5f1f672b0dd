# Copyright (C) 2012 Anaconda, Inc
# SPDX-License-Identifier: BSD-3-Clause
"""SAT-based dependency resolution over a :class:`~microconda.core.index.Pool`.

Every record in the reduced index is a SAT variable. Per package name at most
one record may be chosen, every chosen record requires some candidate of each
of its dependencies, and ``constrains`` entries exclude non-matching records.
Install jobs are hard requirements, remove jobs hard prohibitions, and every
installed package not named by a job is a soft "keep".

The optimum is found by minimizing a sequence of objectives, each within the
optimum of the ones before it:

1. number of removed keeps
2. repo priority, version and build number of the requested packages
3. repo priority, version and build number of all other packages
4. number of packages
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from logging import DEBUG, getLogger
from typing import TYPE_CHECKING

from ..base.constants import SolverAction
from ..common.io import dashlist
from ..common.logic import Clauses, minimal_unsatisfiable_subset
from ..common.toposort import toposort
from ..exceptions import InvalidMatchSpec, PackagesNotFound, UnsatisfiableSpecs
from ..models.match_spec import MatchSpec

if TYPE_CHECKING:
    from collections.abc import Iterable

    from ..models.records import PackageRecord
    from .index import Pool

log = getLogger(__name__)


@dataclass(frozen=True)
class SolverJob:
    action: SolverAction
    spec: MatchSpec

    @classmethod
    def install(cls, spec: MatchSpec | str, allow_downgrade: bool = True) -> SolverJob:
        action = (
            SolverAction.INSTALL_ALLOW_DOWNGRADE if allow_downgrade else SolverAction.INSTALL
        )
        return cls(action, MatchSpec.parse(spec))

    @classmethod
    def remove(cls, spec: MatchSpec | str) -> SolverJob:
        return cls(SolverAction.REMOVE, MatchSpec.parse(spec))

    @property
    def is_install(self) -> bool:
        return self.action in (SolverAction.INSTALL, SolverAction.INSTALL_ALLOW_DOWNGRADE)

    def __str__(self) -> str:
        return f"{self.action} {self.spec}"


def jobs_from_specs(
    specs: Iterable[str],
    action: SolverAction = SolverAction.INSTALL_ALLOW_DOWNGRADE,
) -> list[SolverJob]:
    """One job per spec string."""
    return [SolverJob(action, MatchSpec.parse(spec)) for spec in specs]


class Solver:
    """Resolve a set of jobs against a frozen pool.

    :param pool: the package index, including the installed repo if any
    :param jobs: install and remove jobs
    :param allow_downgrade: when False, an installed package may not be
        replaced by a lower version unless its job says otherwise
    """

    def __init__(self, pool: Pool, jobs: Iterable[SolverJob], allow_downgrade: bool = True):
        self.pool = pool
        self.jobs = tuple(jobs)
        self.allow_downgrade = allow_downgrade
        self._sat_records: dict[str, PackageRecord] = {}
        self.groups: dict[str, list[PackageRecord]] = {}

    @property
    def install_specs(self) -> tuple[MatchSpec, ...]:
        return tuple(job.spec for job in self.jobs if job.is_install)

    @property
    def remove_specs(self) -> tuple[MatchSpec, ...]:
        return tuple(job.spec for job in self.jobs if job.action == SolverAction.REMOVE)

    @property
    def channel_urls(self) -> tuple[str, ...]:
        return tuple(repo.url for repo in self.pool.repos if not repo.installed and repo.url)

    @property
    def installed(self) -> tuple[PackageRecord, ...]:
        repo = self.pool.installed_repo
        return tuple(repo.records) if repo else ()

    @staticmethod
    def to_sat_name(val) -> str:
        if isinstance(val, MatchSpec):
            return "@s@" + str(val)
        return f"{val.channel}/{val.subdir}::{val.fn}"

    # ------------------------------------------------------------------
    # index reduction

    def _depends(self, record: PackageRecord) -> list[MatchSpec]:
        result = []
        for dep in record.depends:
            try:
                ms = MatchSpec.parse(dep)
            except InvalidMatchSpec:
                log.warning("Ignoring invalid dependency %r of %s", dep, record)
                continue
            # virtual packages are provided by the system, never installed
            if not ms.name.startswith("__"):
                result.append(ms)
        return result

    def _constrains(self, record: PackageRecord) -> list[MatchSpec]:
        result = []
        for dep in record.constrains:
            try:
                result.append(MatchSpec.parse(dep))
            except InvalidMatchSpec:
                log.warning("Ignoring invalid constraint %r of %s", dep, record)
        return result

    def _reduce_index(self) -> None:
        """Collect every package name reachable from the jobs and the installed set."""
        queue = deque(spec.name for spec in self.install_specs if "*" not in spec.name)
        queue.extend(record.name for record in self.installed)
        for spec in self.install_specs:
            if "*" in spec.name:
                queue.extend(record.name for record in self.pool.select(spec))
        groups = {}
        while queue:
            name = queue.popleft()
            if name in groups:
                continue
            groups[name] = records = self.pool.records_by_name(name)
            for record in records:
                for ms in self._depends(record):
                    if "*" in ms.name:
                        queue.extend(r.name for r in self.pool.select(ms))
                    elif ms.name not in groups:
                        queue.append(ms.name)
        self.groups = {name: list(records) for name, records in groups.items() if records}
        log.debug(
            "reduced index: %d names, %d records",
            len(self.groups),
            sum(len(g) for g in self.groups.values()),
        )

    # ------------------------------------------------------------------
    # clause generation

    def push_MatchSpec(self, C: Clauses, spec: MatchSpec) -> str:
        sat_name = self.to_sat_name(spec)
        if C.from_name(sat_name) is not None:
            return sat_name
        if "*" in spec.name:
            candidates = [r for group in self.groups.values() for r in group]
        else:
            candidates = self.groups.get(spec.name, ())
        libs = [self.to_sat_name(r) for r in candidates if spec.match(r)]
        m = C.Any(libs)
        C.name_var(m, sat_name)
        return sat_name

    def gen_clauses(self) -> Clauses:
        C = Clauses()
        for name, group in self.groups.items():
            sat_names = []
            for record in group:
                sat_name = self.to_sat_name(record)
                self._sat_records[sat_name] = record
                C.new_var(sat_name)
                sat_names.append(sat_name)
            m = C.new_var(self.to_sat_name(MatchSpec(name)))
            # exactly one record of the group, or the group is absent
            C.Require(C.ExactlyOne, [*sat_names, C.Not(m)])

        for group in self.groups.values():
            for record in group:
                nkey = C.Not(self.to_sat_name(record))
                for ms in self._depends(record):
                    C.Require(C.Or, nkey, self.push_MatchSpec(C, ms))
                for ms in self._constrains(record):
                    excluded = [
                        self.to_sat_name(r)
                        for r in self.groups.get(ms.name, ())
                        if not ms.match(r)
                    ]
                    for other in excluded:
                        C.Require(C.Or, nkey, C.Not(other))

        for spec in self.remove_specs:
            C.Prevent(C.Any, [self.to_sat_name(r) for r in self._candidates(spec)])

        if not self.allow_downgrade:
            self._prevent_downgrades(C)

        if log.isEnabledFor(DEBUG):
            log.debug("gen_clauses returning with clause count: %d", C.get_clause_count())
        return C

    def _candidates(self, spec: MatchSpec) -> list[PackageRecord]:
        if "*" in spec.name:
            return [r for group in self.groups.values() for r in group if spec.match(r)]
        return [r for r in self.groups.get(spec.name, ()) if spec.match(r)]

    def _prevent_downgrades(self, C: Clauses) -> None:
        exempt = {
            job.spec.name
            for job in self.jobs
            if job.action == SolverAction.INSTALL_ALLOW_DOWNGRADE
        }
        for installed in self.installed:
            if installed.name in exempt:
                continue
            lower = [
                self.to_sat_name(r)
                for r in self.groups.get(installed.name, ())
                if r.version_order < installed.version_order
            ]
            if lower:
                log.debug("preventing downgrade of %s", installed)
                C.Prevent(C.Any, lower)

    def generate_spec_constraints(self, C: Clauses, specs: Iterable[MatchSpec]) -> list:
        return [(self.push_MatchSpec(C, ms),) for ms in specs]

    def generate_removal_count(self, C: Clauses, names: Iterable[str]) -> dict[str, int]:
        return {"!" + self.push_MatchSpec(C, MatchSpec(name)): 1 for name in names}

    def generate_package_count(self, C: Clauses, names: Iterable[str]) -> dict[str, int]:
        return {self.push_MatchSpec(C, MatchSpec(name)): 1 for name in names}

    def generate_version_metrics(
        self, C: Clauses, names: Iterable[str]
    ) -> tuple[dict[str, int], dict[str, int], dict[str, int]]:
        """Weights for repo priority, version and build number, best record at 0."""
        eqc = {}  # repo priority
        eqv = {}  # version
        eqb = {}  # build number
        for name in names:
            pkgs = sorted(self.groups.get(name, ()), key=self.pool.sort_key, reverse=True)
            pkey = None
            for record in pkgs:
                repo = self.pool.repo_of(record)
                key = (repo.priority, record.version_order, record.build_number)
                if pkey is None:
                    ic = iv = ib = 0
                elif pkey[0] != key[0]:
                    ic += 1
                    iv = ib = 0
                elif pkey[1] != key[1]:
                    iv += 1
                    ib = 0
                elif pkey[2] != key[2]:
                    ib += 1
                sat_name = self.to_sat_name(record)
                if ic:
                    eqc[sat_name] = ic
                if iv:
                    eqv[sat_name] = iv
                if ib:
                    eqb[sat_name] = ib
                pkey = key
        return eqc, eqv, eqb

    # ------------------------------------------------------------------
    # solving

    def _raise_not_found(self) -> None:
        not_found = [
            spec
            for spec in self.install_specs
            if ("*" in spec.name and not self.pool.select(spec))
            or ("*" not in spec.name and spec.name not in self.pool.names)
        ]
        # removing something that is not installed
        not_found.extend(
            spec
            for spec in self.remove_specs
            if not any(spec.match(r) for r in self.installed)
        )
        if not_found:
            raise PackagesNotFound(not_found, self.channel_urls)

    def dependency_sort(self, must_have: dict[str, PackageRecord]) -> list[PackageRecord]:
        digraph = {
            name: {ms.name for ms in self._depends(record)}
            for name, record in must_have.items()
        }
        sorted_keys = toposort(digraph)
        must_have = must_have.copy()
        result = [must_have.pop(key) for key in sorted_keys if key in must_have]
        result.extend(must_have.values())
        return result

    def solve(self) -> list[PackageRecord]:
        """Return the chosen records in dependency order.

        :raises PackagesNotFound: a requested name is not in any repo
        :raises UnsatisfiableSpecs: with a minimal set of conflicting requests
        """
        install_specs = self.install_specs
        log.debug(
            "Solving for:%s", dashlist(str(job) for job in self.jobs) or " (no jobs)"
        )
        self._raise_not_found()
        self._reduce_index()

        C = self.gen_clauses()

        def mysat(specs, add_if=False):
            constraints = self.generate_spec_constraints(C, specs)
            return C.sat(constraints, add_if)

        solution = mysat(install_specs, True)
        if solution is None:
            conflicts = minimal_unsatisfiable_subset(install_specs, sat=mysat)
            # keep the request order
            conflicts = [spec for spec in install_specs if spec in conflicts]
            log.debug("Conflicting specs:%s", dashlist(conflicts))
            raise UnsatisfiableSpecs(conflicts or install_specs)

        requested_names = {spec.name for spec in install_specs}
        removed_names = {spec.name for spec in self.remove_specs}
        keep_names = [
            record.name
            for record in self.installed
            if record.name not in requested_names and record.name not in removed_names
        ]
        other_names = [name for name in self.groups if name not in requested_names]

        log.debug("Solve: minimize removed packages")
        eq_removal = self.generate_removal_count(C, keep_names)
        solution, obj_removed = C.minimize(eq_removal, solution)
        log.debug("Package removal metric: %d", obj_removed)

        log.debug("Solve: maximize priority, version and build of requested packages")
        eq_req_c, eq_req_v, eq_req_b = self.generate_version_metrics(C, requested_names)
        solution, obj_c = C.minimize(eq_req_c, solution)
        solution, obj_v = C.minimize(eq_req_v, solution)
        solution, obj_b = C.minimize(eq_req_b, solution)
        log.debug(
            "Requested package priority/version/build metrics: %d/%d/%d", obj_c, obj_v, obj_b
        )

        log.debug("Solve: maximize priority, version and build of dependencies")
        eq_c, eq_v, eq_b = self.generate_version_metrics(C, other_names)
        solution, obj_c = C.minimize(eq_c, solution)
        solution, obj_v = C.minimize(eq_v, solution)
        solution, obj_b = C.minimize(eq_b, solution)
        log.debug("Dependency priority/version/build metrics: %d/%d/%d", obj_c, obj_v, obj_b)

        log.debug("Solve: prune unnecessary packages")
        eq_count = self.generate_package_count(C, other_names)
        solution, obj_count = C.minimize(eq_count, solution, trymax=True)
        log.debug("Weak dependency count: %d", obj_count)

        chosen = {}
        for lit in solution:
            if lit <= 0:
                continue
            record = self._sat_records.get(C.from_index(lit))
            if record is not None:
                chosen[record.name] = record
        result = self.dependency_sort(chosen)
        if log.isEnabledFor(DEBUG):
            log.debug("Solution:%s", dashlist(r.dist_str() for r in result))
        return result
