# Copyright (C) 2012 Anaconda, Inc
# SPDX-License-Identifier: BSD-3-Clause
"""Topological sorting implementation."""

from __future__ import annotations

from logging import getLogger
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Hashable, Iterable, Mapping

log = getLogger(__name__)


def _pop_weakest(graph: dict) -> Hashable:
    # cycle breaker: the node with the fewest remaining dependencies, ties by name
    key = min(graph, key=lambda k: (len(graph[k]), k))
    graph.pop(key)
    for deps in graph.values():
        deps.discard(key)
    return key


def toposort(data: Mapping[Hashable, Iterable[Hashable]]) -> list:
    """Order keys so every item comes after the items it depends on.

    Dependencies are given as a mapping of item to the items it requires.
    Items within a level are sorted for determinism. Dependency cycles do not
    raise; the cycle is broken at its least-constrained member and a debug
    message is logged.
    """
    graph = {k: set(v) for k, v in data.items()}
    for k, deps in graph.items():
        deps.discard(k)
    for dep in set().union(*graph.values()) - graph.keys() if graph else ():
        graph[dep] = set()

    result = []
    while graph:
        ready = sorted(k for k, deps in graph.items() if not deps)
        if not ready:
            log.debug("Cyclic dependencies exist among these items: %s", sorted(graph))
            ready = [_pop_weakest(graph)]
        else:
            for k in ready:
                del graph[k]
        result.extend(ready)
        for deps in graph.values():
            deps.difference_update(ready)
    return result
