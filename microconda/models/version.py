# Copyright (C) 2012 Anaconda, Inc
# SPDX-License-Identifier: BSD-3-Clause
"""Conda version ordering and version predicates."""

from __future__ import annotations

import operator as op
import re
from functools import lru_cache, total_ordering
from itertools import zip_longest
from logging import getLogger

from ..exceptions import InvalidVersionSpec

log = getLogger(__name__)

version_check_re = re.compile(r"^[\*\.\+!_0-9a-z]+$")
version_split_re = re.compile("([0-9]+|[*]+|[^0-9*]+)")
version_relation_re = re.compile(r"^(=|==|!=|<=|>=|<|>|~=)(?![=<>!~])(\S+)$")
OPERATOR_START = frozenset(("=", "<", ">", "!", "~"))

#: '*' < 'DEV' < '_' < 'a' < number < 'post'
_FILL = 0


def _split_components(vstr: str, parts: list[str]) -> list[list]:
    result = []
    for part in parts:
        pieces = version_split_re.findall(part)
        if not pieces:
            raise InvalidVersionSpec(vstr, "empty version component")
        converted = []
        for piece in pieces:
            if piece.isdigit():
                converted.append(int(piece))
            elif piece == "post":
                converted.append(float("inf"))
            elif piece == "dev":
                converted.append("DEV")
            else:
                converted.append(piece)
        if not part[0].isdigit():
            # keep numbers and strings in phase
            converted.insert(0, _FILL)
        result.append(converted)
    return result


def _components_equal(t1, t2) -> bool:
    for v1, v2 in zip_longest(t1, t2, fillvalue=[]):
        for c1, c2 in zip_longest(v1, v2, fillvalue=_FILL):
            if c1 != c2:
                return False
    return True


@total_ordering
class VersionOrder:
    """Order relation between conda version strings.

    A version is an optional integer epoch followed by ``!``, the main
    version, and an optional local version after ``+``. Each is split on
    ``.`` and ``_`` into components, and each component into runs of digits
    and letters. Comparison is case-insensitive and pads with zeros, so
    ``1.1 == 1.1.0``. Strings sort before numbers, ``dev`` sorts before any
    other string and ``post`` after any number::

        1.0dev1 < 1.0a1 < 1.0rc1 < 1.0 < 1.0post1 < 1.0.1
    """

    __hash__ = None

    def __init__(self, vstr: str):
        version = str(vstr).strip().lower()
        if not version:
            raise InvalidVersionSpec(vstr, "empty version string")
        if not version_check_re.match(version):
            if "-" in version and "_" not in version:
                version = version.replace("-", "_")
            if not version_check_re.match(version):
                raise InvalidVersionSpec(vstr, "invalid character(s)")
        self.norm_version = version

        epoch_split = version.split("!")
        if len(epoch_split) > 2:
            raise InvalidVersionSpec(vstr, "duplicated epoch separator '!'")
        if len(epoch_split) == 2 and not epoch_split[0].isdigit():
            raise InvalidVersionSpec(vstr, "epoch must be an integer")
        epoch = epoch_split[0] if len(epoch_split) == 2 else "0"

        local_split = epoch_split[-1].split("+")
        if len(local_split) > 2:
            raise InvalidVersionSpec(vstr, "duplicated local version separator '+'")
        main = local_split[0]
        if not main:
            raise InvalidVersionSpec(vstr, "missing version before local version separator '+'")
        local = local_split[1].replace("_", ".").split(".") if len(local_split) == 2 else []

        if main.endswith("_"):
            # openssl-like versions keep a trailing underscore on the last component
            main_parts = main[:-1].replace("_", ".").split(".")
            main_parts[-1] += "_"
        else:
            main_parts = main.replace("_", ".").split(".")

        self.version = _split_components(vstr, [epoch, *main_parts])
        self.local = _split_components(vstr, local)

    def __str__(self):
        return self.norm_version

    def __repr__(self):
        return f'{self.__class__.__name__}("{self}")'

    def __eq__(self, other):
        if not isinstance(other, VersionOrder):
            return NotImplemented
        return _components_equal(self.version, other.version) and _components_equal(
            self.local, other.local
        )

    def __lt__(self, other):
        if not isinstance(other, VersionOrder):
            return NotImplemented
        for t1, t2 in ((self.version, other.version), (self.local, other.local)):
            for v1, v2 in zip_longest(t1, t2, fillvalue=[]):
                for c1, c2 in zip_longest(v1, v2, fillvalue=_FILL):
                    if c1 == c2:
                        continue
                    if isinstance(c1, str):
                        if not isinstance(c2, str):
                            return True
                    elif isinstance(c2, str):
                        return False
                    return c1 < c2
        return False

    def startswith(self, other: VersionOrder) -> bool:
        """True if this version matches ``other`` up to other's last element."""
        if other.local:
            if not _components_equal(self.version, other.version):
                return False
            t1, t2 = self.local, other.local
        else:
            t1, t2 = self.version, other.version
        nt = len(t2) - 1
        if not _components_equal(t1[:nt], t2[:nt]):
            return False
        v1 = [] if len(t1) <= nt else t1[nt]
        v2 = t2[nt]
        nc = len(v2) - 1
        if not _components_equal([v1[:nc]], [v2[:nc]]):
            return False
        c1 = _FILL if len(v1) <= nc else v1[nc]
        c2 = v2[nc]
        if isinstance(c2, str):
            return isinstance(c1, str) and c1.startswith(c2)
        return c1 == c2


@lru_cache(maxsize=4096)
def normalized_version(version: str) -> VersionOrder:
    """Parse a version string and return VersionOrder object."""
    return VersionOrder(version)


def _compatible_release(x: VersionOrder, y: VersionOrder) -> bool:
    return x >= y and x.startswith(VersionOrder(".".join(str(y).split(".")[:-1])))


OPERATOR_MAP = {
    "==": op.eq,
    "!=": op.ne,
    "<=": op.le,
    ">=": op.ge,
    "<": op.lt,
    ">": op.gt,
    "=": lambda x, y: x.startswith(y),
    "!=startswith": lambda x, y: not x.startswith(y),
    "~=": _compatible_release,
}

_TOKEN_RE = re.compile(r"\s*([()|,])\s*|([^()|,]+)")


def _tokenize(spec_str: str) -> list[str]:
    tokens = []
    pos = 0
    while pos < len(spec_str):
        m = _TOKEN_RE.match(spec_str, pos)
        if not m or m.end() == pos:
            raise InvalidVersionSpec(spec_str, "unable to tokenize")
        token = (m.group(1) or m.group(2) or "").strip()
        if token:
            tokens.append(token)
        pos = m.end()
    return tokens


class VersionSpec:
    """A predicate over versions.

    Atoms are ``*``, an exact version (``1.2``), a glob (``1.2.*``, ``1.*.3``)
    or an operator followed by a version (``>=1.2``, ``!=1.3.*``, ``~=1.4``).
    ``,`` joins atoms with "and", ``|`` with "or" (lower precedence), and
    parentheses group.
    """

    def __init__(self, spec_str: str):
        self.spec = str(spec_str).strip()
        if not self.spec:
            raise InvalidVersionSpec(spec_str, "empty version spec")
        self._tokens = _tokenize(self.spec)
        self._pos = 0
        self._matcher = self._parse_or()
        if self._pos != len(self._tokens):
            raise InvalidVersionSpec(self.spec, "unexpected %r" % self._tokens[self._pos])
        del self._tokens

    def __str__(self):
        return self.spec

    def __repr__(self):
        return f"{self.__class__.__name__}('{self.spec}')"

    def __eq__(self, other):
        return isinstance(other, VersionSpec) and self.spec == other.spec

    def __hash__(self):
        return hash(self.spec)

    def match(self, version) -> bool:
        if not isinstance(version, VersionOrder):
            version = normalized_version(str(version))
        return self._matcher(version)

    def is_exact(self) -> bool:
        return self._exact

    # recursive descent over the token list

    def _peek(self):
        return self._tokens[self._pos] if self._pos < len(self._tokens) else None

    def _parse_or(self):
        terms = [self._parse_and()]
        while self._peek() == "|":
            self._pos += 1
            terms.append(self._parse_and())
        if len(terms) == 1:
            return terms[0]
        self._exact = False
        return lambda v: any(t(v) for t in terms)

    def _parse_and(self):
        factors = [self._parse_factor()]
        while self._peek() == ",":
            self._pos += 1
            factors.append(self._parse_factor())
        if len(factors) == 1:
            return factors[0]
        self._exact = False
        return lambda v: all(f(v) for f in factors)

    def _parse_factor(self):
        token = self._peek()
        if token is None or token in "|,)":
            raise InvalidVersionSpec(self.spec, "expected a version")
        self._pos += 1
        if token == "(":
            inner = self._parse_or()
            if self._peek() != ")":
                raise InvalidVersionSpec(self.spec, "unbalanced parentheses")
            self._pos += 1
            self._exact = False
            return inner
        return self._atom(token)

    def _atom(self, atom: str):
        self._exact = False
        if atom == "*":
            return lambda v: True
        if atom[0] in OPERATOR_START:
            m = version_relation_re.match(atom)
            if m is None:
                raise InvalidVersionSpec(atom, "invalid operator")
            operator_str, vo_str = m.groups()
            if vo_str.endswith(".*"):
                if operator_str == "!=":
                    operator_str = "!=startswith"
                elif operator_str == "~=":
                    raise InvalidVersionSpec(atom, "invalid operator with '.*'")
                elif operator_str not in ("=", ">="):
                    log.warning("Ignoring superfluous .* in version spec %s", atom)
                vo_str = vo_str[:-2]
            func = OPERATOR_MAP[operator_str]
            target = normalized_version(vo_str)
            self._exact = operator_str == "=="
            return lambda v: func(v, target)
        if "*" in atom.rstrip("*"):
            rx = atom.replace(".", r"\.").replace("+", r"\+").replace("*", r".*")
            regex = re.compile(r"^(?:%s)$" % rx)
            return lambda v: bool(regex.match(str(v)))
        if atom.endswith("*"):
            target = normalized_version(atom.rstrip("*").rstrip("."))
            return lambda v: v.startswith(target)
        target = normalized_version(atom)
        self._exact = True
        return lambda v: v == target
