# Copyright (C) 2012 Anaconda, Inc
# SPDX-License-Identifier: BSD-3-Clause
"""
Boolean formula construction on top of a CNF clause list, solved with pycosat.

Nested expressions are not distributed into CNF. Instead each subexpression
gets a fresh variable x and the clauses for ``expr <-> x`` are recorded, so
every clause handed to the SAT solver is a plain disjunction of literals.

Every builder takes literals (non-zero ints, or the constants TRUE/FALSE) or
registered variable names, and returns a literal standing for the result.
Results that can be resolved without new clauses come back as TRUE, FALSE or
an existing literal.

``polarity`` may be True or False when the caller knows a result will only
ever be used positively or negatively; only half the clauses are generated
then. Use it through :meth:`Clauses.Require` and :meth:`Clauses.Prevent`.
"""

from __future__ import annotations

from itertools import combinations
from logging import DEBUG, getLogger
from sys import maxsize
from typing import TYPE_CHECKING

import pycosat

from ..base.constants import TRACE

if TYPE_CHECKING:
    from collections.abc import Callable

log = getLogger(__name__)

TRUE = maxsize
FALSE = -TRUE

_CONSTANTS = (TRUE, FALSE)


def _wants_pos(polarity) -> bool:
    return polarity in (True, None)


def _wants_neg(polarity) -> bool:
    return polarity in (False, None)


def _peak_value(solution, weights) -> int:
    return max((weights.get(s, 0) for s in solution), default=0)


def _sum_value(solution, weights) -> int:
    return sum(weights.get(s, 0) for s in solution)


class Clauses:
    """A growing CNF problem with optional names for its variables."""

    def __init__(self, m: int = 0):
        self.m = m
        self.unsat = False
        self.names: dict[str, int] = {}
        self.indices: dict[int, str] = {}
        self._clauses: list[tuple[int, ...]] = []

    # ------------------------------------------------------------------
    # bookkeeping

    def get_clause_count(self) -> int:
        return len(self._clauses)

    def save_state(self) -> tuple[int, int]:
        return len(self._clauses), self.m

    def restore_state(self, state: tuple[int, int]) -> None:
        nclauses, m = state
        del self._clauses[nclauses:]
        self.m = m

    def new_var(self, name: str | None = None) -> int:
        self.m += 1
        if name:
            self.name_var(self.m, name)
        return self.m

    def name_var(self, m: int, name: str) -> int:
        self.names[name] = m
        self.names["!" + name] = -m
        if m not in _CONSTANTS and m not in self.indices:
            self.indices[m] = name
            self.indices[-m] = "!" + name
        return m

    def from_name(self, name: str) -> int | None:
        return self.names.get(name)

    def from_index(self, m: int) -> str | None:
        return self.indices.get(m)

    def _literal(self, x):
        if isinstance(x, (tuple, list)):
            return type(x)(map(self._literal, x))
        if isinstance(x, int):
            return x
        try:
            return self.names[x]
        except KeyError:
            raise ValueError(f"Unregistered SAT variable name: {x}")

    def _materialize(self, vals):
        """Give a (positive, negative) clause pair its own variable."""
        if not isinstance(vals, tuple):
            return vals
        pos, neg = vals
        x = self.new_var()
        self._clauses.extend((-x, *c) for c in pos)
        self._clauses.extend((x, *c) for c in neg)
        return x

    def _eval(self, func: Callable, args: tuple, polarity, name):
        args = self._literal(args)
        vals = func(*args, polarity=polarity)
        if name is False:
            if isinstance(vals, tuple):
                self._clauses.extend(vals[0])
                self._clauses.extend(vals[1])
            elif vals in _CONSTANTS:
                self.unsat = self.unsat or (vals == TRUE) != polarity
            else:
                self._clauses.append((vals if polarity else -vals,))
            return None
        x = self._materialize(vals)
        if name:
            if x in _CONSTANTS:
                y = self.new_var()
                self._clauses.append((y,) if x == TRUE else (-y,))
                x = y
            self.name_var(x, name)
        return x

    # ------------------------------------------------------------------
    # public builders

    def Require(self, what: Callable, *args) -> None:
        what(*args, polarity=True, name=False)

    def Prevent(self, what: Callable, *args) -> None:
        what(*args, polarity=False, name=False)

    def Not(self, x, polarity=None, name=None):
        return self._eval(lambda v, polarity: -v, (x,), polarity, name)

    def And(self, f, g, polarity=None, name=None):
        return self._eval(self._and, (f, g), polarity, name)

    def Or(self, f, g, polarity=None, name=None):
        return self._eval(self._or, (f, g), polarity, name)

    def Xor(self, f, g, polarity=None, name=None):
        return self._eval(self._xor, (f, g), polarity, name)

    def ITE(self, c, t, f, polarity=None, name=None):
        """if c then t else f"""
        return self._eval(self._ite, (c, t, f), polarity, name)

    def All(self, vals, polarity=None, name=None):
        return self._eval(self._all, (list(vals),), polarity, name)

    def Any(self, vals, polarity=None, name=None):
        return self._eval(self._any, (list(vals),), polarity, name)

    def AtMostOne(self, vals, polarity=None, name=None):
        vals = list(vals)
        if len(vals) < 5 - (polarity is not True):
            return self._eval(self._at_most_one_nsq, (vals,), polarity, name)
        return self._eval(self._at_most_one_bdd, (vals,), polarity, name)

    def ExactlyOne(self, vals, polarity=None, name=None):
        vals = list(vals)
        if len(vals) < 2:
            return self._eval(self._exactly_one_nsq, (vals,), polarity, name)
        return self._eval(self._exactly_one_bdd, (vals,), polarity, name)

    def LinearBound(self, equation, lo, hi, preprocess=True, polarity=None, name=None):
        """lo <= sum(coeff * lit) <= hi over (coeff, lit) pairs."""
        equation = [(c, self._literal(a)) for c, a in equation]
        return self._eval(
            lambda eq, polarity: self._linear_bound(eq, lo, hi, preprocess, polarity),
            (equation,),
            polarity,
            name,
        )

    # ------------------------------------------------------------------
    # clause generators
    #
    # Each returns a literal/constant, or a (positive, negative) pair of
    # clause lists: the clauses that hold when the expression is true, and
    # the ones that hold when it is false.

    def _and(self, f, g, polarity):
        if f == FALSE or g == FALSE:
            return FALSE
        if f == TRUE:
            return g
        if g == TRUE or f == g:
            return f
        if f == -g:
            return FALSE
        return (
            [(f,), (g,)] if _wants_pos(polarity) else [],
            [(-f, -g)] if _wants_neg(polarity) else [],
        )

    def _or(self, f, g, polarity):
        if f == TRUE or g == TRUE:
            return TRUE
        if f == FALSE:
            return g
        if g == FALSE or f == g:
            return f
        if f == -g:
            return TRUE
        return (
            [(f, g)] if _wants_pos(polarity) else [],
            [(-f,), (-g,)] if _wants_neg(polarity) else [],
        )

    def _xor(self, f, g, polarity):
        if f == FALSE:
            return g
        if f == TRUE:
            return -g
        if g == FALSE:
            return f
        if g == TRUE:
            return -f
        if f == g:
            return FALSE
        if f == -g:
            return TRUE
        return (
            [(f, g), (-f, -g)] if _wants_pos(polarity) else [],
            [(-f, g), (f, -g)] if _wants_neg(polarity) else [],
        )

    def _ite(self, c, t, f, polarity):
        if c == TRUE:
            return t
        if c == FALSE:
            return f
        if t == f:
            return t
        if t in (TRUE, c):
            return self._or(c, f, polarity)
        if t in (FALSE, -c):
            return self._and(-c, f, polarity)
        if f in (FALSE, c):
            return self._and(c, t, polarity)
        if f in (TRUE, -c):
            return self._or(t, -c, polarity)
        if t == -f:
            return self._xor(c, f, polarity)
        # (t, f) redundant clause helps unit propagation
        return (
            [(-c, t), (c, f), (t, f)] if _wants_pos(polarity) else [],
            [(-c, -t), (c, -f), (-t, -f)] if _wants_neg(polarity) else [],
        )

    def _all(self, vals, polarity):
        lits = set()
        for v in vals:
            if v == TRUE:
                continue
            if v == FALSE or -v in lits:
                return FALSE
            lits.add(v)
        if not lits:
            return TRUE
        if len(lits) == 1:
            return next(iter(lits))
        return (
            [(v,) for v in lits] if _wants_pos(polarity) else [],
            [tuple(-v for v in lits)] if _wants_neg(polarity) else [],
        )

    def _any(self, vals, polarity):
        lits = set()
        for v in vals:
            if v == FALSE:
                continue
            if v == TRUE or -v in lits:
                return TRUE
            lits.add(v)
        if not lits:
            return FALSE
        if len(lits) == 1:
            return next(iter(lits))
        return (
            [tuple(lits)] if _wants_pos(polarity) else [],
            [(-v,) for v in lits] if _wants_neg(polarity) else [],
        )

    def _combine(self, parts, polarity):
        if any(p == FALSE for p in parts):
            return FALSE
        parts = [p for p in parts if p != TRUE]
        if not parts:
            return TRUE
        if len(parts) == 1:
            return parts[0]
        if all(isinstance(p, tuple) for p in parts):
            return (
                [c for p in parts for c in p[0]],
                [c for p in parts for c in p[1]],
            )
        return self._all([self._materialize(p) for p in parts], polarity)

    def _at_most_one_nsq(self, vals, polarity):
        pairs = [self._or(-v1, -v2, polarity) for v1, v2 in combinations(vals, 2)]
        return self._combine(pairs, polarity)

    def _at_most_one_bdd(self, vals, polarity):
        return self._linear_bound([(1, v) for v in vals], 0, 1, True, polarity)

    def _exactly_one_nsq(self, vals, polarity):
        return self._combine(
            [self._at_most_one_nsq(vals, polarity), self._any(vals, polarity)],
            polarity,
        )

    def _exactly_one_bdd(self, vals, polarity):
        return self._linear_bound([(1, v) for v in vals], 1, 1, True, polarity)

    @staticmethod
    def _lb_preprocess(equation):
        """Make every coefficient positive and drop constants, returning the offset."""
        offset = 0
        terms = []
        for c, a in equation:
            if a == TRUE:
                offset += c
            elif a == FALSE or not c:
                continue
            elif c < 0:
                offset += c
                terms.append((-c, -a))
            else:
                terms.append((c, a))
        return sorted(terms), offset

    def _bdd(self, equation, nterms, lo, hi, polarity):
        # Terms are sorted by increasing coefficient; peel off the largest:
        #          lo <= S + cN xN <= hi
        #   xN  => lo - cN <= S <= hi - cN
        #   !xN => lo      <= S <= hi
        # Nodes are memoized on (index, partial sum, remaining total).
        total = sum(c for c, _ in equation[:nterms])
        root = (nterms - 1, 0, total)
        stack = [root]
        memo = {}
        while stack:
            ndx, csum, total = node = stack[-1]
            if lo - csum <= 0 and hi - csum >= total:
                memo[stack.pop()] = TRUE
                continue
            if lo - csum > total or hi - csum < 0:
                memo[stack.pop()] = FALSE
                continue
            coeff, lit = equation[ndx]
            rest = total - coeff
            hi_key = (ndx - 1, csum if lit < 0 else csum + coeff, rest)
            lo_key = (ndx - 1, csum + coeff if lit < 0 else csum, rest)
            pending = [k for k in (hi_key, lo_key) if k not in memo]
            if pending:
                stack.extend(pending)
                continue
            stack.pop()
            memo[node] = self._materialize(
                self._ite(abs(lit), memo[hi_key], memo[lo_key], polarity)
            )
        return memo[root]

    def _linear_bound(self, equation, lo, hi, preprocess, polarity):
        if preprocess:
            equation, offset = self._lb_preprocess(equation)
            lo -= offset
            hi -= offset
        nterms = len(equation)
        nprune = sum(1 for c, _ in equation if c > hi)
        if nprune:
            log.log(TRACE, "Eliminating %d/%d terms for bound violation", nprune, nterms)
            nterms -= nprune
        total = sum(c for c, _ in equation[:nterms])
        if preprocess:
            lo = max(lo, 0)
            hi = min(hi, total)
        if lo > hi:
            return FALSE
        if nterms == 0:
            result = TRUE if lo == 0 else FALSE
        else:
            result = self._bdd(equation, nterms, lo, hi, polarity)
        if nprune:
            pruned = self._all([-a for _, a in equation[nterms:]], polarity)
            result = self._combine([result, pruned], polarity)
        return result

    # ------------------------------------------------------------------
    # solving

    def _run_sat(self, limit=0):
        if log.isEnabledFor(DEBUG):
            log.debug("Invoking SAT with clause count: %s", self.get_clause_count())
        solution = pycosat.solve(self._clauses, vars=self.m, prop_limit=limit)
        if solution in ("UNSAT", "UNKNOWN"):
            return None
        return solution

    def sat(self, additional=None, includeIf=False, names=False, limit=0):
        """Return one satisfying assignment, or None when there is none.

        ``additional`` clauses (literals or names) are only kept in the
        problem when ``includeIf`` is set and the result is satisfiable.
        """
        if self.unsat:
            return None
        if not self.m:
            return set() if names else []
        state = self.save_state()
        extra = []
        for clause in additional or ():
            lits = []
            satisfied = False
            for c in clause:
                c = self.names.get(c, c)
                if c == TRUE:
                    satisfied = True
                    break
                if c != FALSE:
                    lits.append(c)
            if satisfied:
                continue
            if not lits:
                return None
            extra.append(tuple(lits))
        self._clauses.extend(extra)
        solution = self._run_sat(limit)
        if extra and (solution is None or not includeIf):
            self.restore_state(state)
        if solution is None:
            return None
        if names:
            return {
                nm for nm in (self.indices.get(s) for s in solution) if nm and nm[0] != "!"
            }
        return solution

    def itersolve(self, constraints=(), m=None):
        """Yield distinct solutions, excluding each one projected onto vars 1..m."""
        exclude = []
        m = self.m if m is None else m
        while True:
            solution = self.sat([*constraints, *exclude])
            if solution is None:
                return
            yield solution
            exclude.append([-k for k in solution if -m <= k <= m])

    def minimize(self, objective, bestsol=None, trymax=False):
        """
        Minimize a linear objective given as (coeff, literal) pairs or a
        ``{name: coeff}`` mapping. The peak active coefficient is minimized
        first, then the sum, each by bisection on a LinearBound constraint.

        The bound that produced the optimum stays in the clause set, so later
        objectives are solved within the optimum of earlier ones.

        Returns the best solution and its objective value.
        """
        if isinstance(objective, dict):
            objective = [(v, self.names.get(k, k)) for k, v in objective.items()]
        else:
            objective = list(objective)

        if bestsol is None or len(bestsol) < self.m:
            log.debug("Clauses added, recomputing solution")
            bestsol = self.sat()
        if bestsol is None or self.unsat:
            log.debug("Constraints are unsatisfiable")
            return bestsol, sum(abs(c) for c, _ in objective) + 1 if objective else 1
        if not objective:
            log.debug("Empty objective, trivial solution")
            return bestsol, 0

        objective, _ = self._lb_preprocess(objective)
        if not objective:
            return bestsol, 0
        maxval = max(c for c, _ in objective)

        lo = 0
        try0 = 0
        bestval = 0
        for peak in (True, False) if maxval > 1 else (False,):
            objval = _peak_value if peak else _sum_value
            weights = {a: c for c, a in objective}
            bestval = objval(bestsol, weights)
            hi = bestval
            state = self.save_state()
            if trymax and not peak:
                try0 = hi - 1

            log.log(TRACE, "Initial %s range (%d,%d)", "peak" if peak else "sum", lo, hi)
            while True:
                mid = (lo + hi) // 2 if try0 is None else try0
                if peak:
                    self.Prevent(self.Any, tuple(a for c, a in objective if c > mid))
                    window = tuple(a for c, a in objective if lo <= c <= mid)
                    if window:
                        self.Require(self.Any, window)
                else:
                    self.Require(self.LinearBound, objective, lo, mid, False)

                newsol = self.sat()
                if newsol is None:
                    lo = mid + 1
                    log.log(TRACE, "Bisection failure, new range=(%d,%d)", lo, hi)
                    if lo > hi:
                        self.restore_state(state)
                        self.unsat = False
                        break
                else:
                    done = lo == mid
                    bestsol = newsol
                    bestval = objval(newsol, weights)
                    hi = bestval
                    log.log(TRACE, "Bisection success, new range=(%d,%d)", lo, hi)
                    if done:
                        break
                self.restore_state(state)
                self.unsat = False
                try0 = None

            log.debug("Final %s objective: %d", "peak" if peak else "sum", bestval)
            if bestval == 0:
                break
            if peak:
                # at least one term at the peak stays active, so the sum is >= peak
                objective = [(c, a) for c, a in objective if c <= bestval]
                try0 = _sum_value(bestsol, weights)
                lo = bestval

        return bestsol, bestval


def minimal_unsatisfiable_subset(items, sat: Callable, keep=()):
    """
    Shrink an unsatisfiable collection to a minimal unsatisfiable subset.

    ``sat(subset)`` must return a solution (truthy or empty list) when the
    subset is satisfiable and None when it is not, and be monotone: removing
    items never turns a satisfiable subset unsatisfiable. Items in ``keep``
    are always part of the tested subset but never reported.

    Deletion based: each item is dropped in turn and stays dropped when the
    remainder is still unsatisfiable. No proper subset of the result is
    unsatisfiable.
    """
    keep = tuple(keep)
    core = [item for item in items if item not in keep]
    if sat((*keep, *core)) is not None:
        return set()
    for item in list(core):
        trial = [x for x in core if x != item]
        if sat((*keep, *trial)) is None:
            core = trial
    return set(core)
