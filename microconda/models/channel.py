# Copyright (C) 2012 Anaconda, Inc
# SPDX-License-Identifier: BSD-3-Clause
"""A channel is a location serving ``<subdir>/repodata.json`` files.

Channels are given as a URL (``https://host/path``), a local directory
(``/srv/channel``, ``./channel``, ``file:///srv/channel``), or a bare name
(``conda-forge``) that is resolved against the configured channel alias.
"""

from __future__ import annotations

from dataclasses import dataclass
from logging import getLogger
from os.path import basename, isabs
from typing import TYPE_CHECKING

from ..base.constants import KNOWN_SUBDIRS, REPODATA_FN
from ..common.url import is_url, join_url, path_to_url, split_anaconda_token
from ..exceptions import ChannelError

if TYPE_CHECKING:
    from collections.abc import Iterable

log = getLogger(__name__)


def _looks_like_path(value: str) -> bool:
    return isabs(value) or value.startswith(("./", "../", "~", ".\\")) or value in (".", "..")


@dataclass(frozen=True)
class Channel:
    #: Short name, used in summaries and as the ``channel`` field of records.
    name: str
    #: URL of the channel without any subdir.
    base_url: str
    #: Position in the user's channel list; 0 is the most preferred.
    position: int = 0
    #: Set when the channel was given with an explicit subdir.
    platform: str | None = None

    @classmethod
    def from_value(
        cls,
        value: str,
        channel_alias: str,
        position: int = 0,
    ) -> Channel:
        value = (value or "").strip()
        if not value:
            raise ChannelError("Empty channel value")

        if not is_url(value) and _looks_like_path(value):
            value = path_to_url(value)

        if is_url(value):
            url = value.rstrip("/")
            platform = None
            last = url.rsplit("/", 1)[-1]
            if last in KNOWN_SUBDIRS:
                url, platform = url.rsplit("/", 1)
            # the token stays in base_url but never shows in the name
            cleaned_url, _ = split_anaconda_token(url)
            alias = channel_alias.rstrip("/")
            if cleaned_url.startswith(alias + "/"):
                name = cleaned_url[len(alias) + 1 :]
            elif cleaned_url.startswith("file://"):
                name = basename(cleaned_url) or cleaned_url
            else:
                name = cleaned_url
            return cls(name, url, position, platform)

        name = value.strip("/")
        platform = None
        if "/" in name and name.rsplit("/", 1)[-1] in KNOWN_SUBDIRS:
            name, platform = name.rsplit("/", 1)
        return cls(name, join_url(channel_alias, name), position, platform)

    def subdirs(self, subdirs: Iterable[str]) -> tuple[str, ...]:
        if self.platform:
            return (self.platform,)
        return tuple(subdirs)

    def subdir_url(self, subdir: str) -> str:
        return join_url(self.base_url, subdir)

    def repodata_url(self, subdir: str) -> str:
        return join_url(self.base_url, subdir, REPODATA_FN)

    def urls(self, subdirs: Iterable[str]) -> list[str]:
        return [self.subdir_url(subdir) for subdir in self.subdirs(subdirs)]

    def __str__(self) -> str:
        return self.name


def channels_from_values(values: Iterable[str], channel_alias: str) -> tuple[Channel, ...]:
    """Build channels in priority order, dropping duplicates of the same URL."""
    seen = set()
    result = []
    for value in values:
        channel = Channel.from_value(value, channel_alias, position=len(result))
        key = (channel.base_url, channel.platform)
        if key in seen:
            log.debug("Dropping duplicate channel %s", value)
            continue
        seen.add(key)
        result.append(channel)
    return tuple(result)
