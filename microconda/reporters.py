# Copyright (C) 2012 Anaconda, Inc
# SPDX-License-Identifier: BSD-3-Clause
"""
Holds functions for output rendering in microconda
"""

from __future__ import annotations

import json
import sys
from errno import EPIPE, ESHUTDOWN
from logging import getLogger
from typing import TYPE_CHECKING

from .exceptions import DryRunExit, MicrocondaError, UserDeclined

if TYPE_CHECKING:
    from typing import Any

    from .base.context import Context

log = getLogger(__name__)
stdout_log = getLogger("microconda.stdout")


class QuietProgressBar:
    """
    Progress bar class used when no output should be printed
    """

    def __init__(self, description: str = "", **kwargs):
        self.description = description

    def update_to(self, fraction: float) -> None:
        pass

    def refresh(self) -> None:
        pass

    def close(self) -> None:
        pass


class TQDMProgressBar(QuietProgressBar):
    """
    Progress bar class used for tqdm progress bars
    """

    def __init__(self, description: str, position=None, leave=True, **kwargs):
        super().__init__(description)
        self.enabled = True

        bar_format = "{desc}{bar} | {percentage:3.0f}% "

        try:
            self.pbar = self._tqdm(
                desc=description,
                bar_format=bar_format,
                ascii=True,
                total=1,
                file=sys.stdout,
                position=position,
                leave=leave,
            )
        except OSError as e:
            if e.errno in (EPIPE, ESHUTDOWN):
                self.enabled = False
            else:
                raise

    def update_to(self, fraction: float) -> None:
        try:
            if self.enabled:
                self.pbar.update(fraction - self.pbar.n)
        except OSError as e:
            if e.errno in (EPIPE, ESHUTDOWN):
                self.enabled = False
            else:
                raise

    def close(self) -> None:
        if self.enabled:
            try:
                self.pbar.close()
            except OSError as e:
                if e.errno not in (EPIPE, ESHUTDOWN):
                    raise

    def refresh(self) -> None:
        if self.enabled:
            self.pbar.refresh()

    @staticmethod
    def _tqdm(*args, **kwargs):
        from tqdm.auto import tqdm

        return tqdm(*args, **kwargs)


def get_progress_bar(description: str, context: Context, **kwargs) -> QuietProgressBar:
    """
    Progress bar for ``description``; a silent one in json and quiet modes.
    """
    if context.show_progress:
        return TQDMProgressBar(description, **kwargs)
    return QuietProgressBar(description, **kwargs)


def render(data: Any, context: Context) -> None:
    """
    Write ``data`` to stdout, as JSON in json mode and as text otherwise.
    """
    if context.json:
        sys.stdout.write(json.dumps(data, indent=2, sort_keys=True) + "\n")
        sys.stdout.flush()
    else:
        stdout_log.info(data)


def prompt(message="Proceed", choices=("yes", "no"), default="yes") -> str:
    """
    Implementation of a prompt dialog
    """
    assert default in choices, default
    options = []

    for option in choices:
        if option == default:
            options.append(f"[{option[0]}]")
        else:
            options.append(option[0])

    message = "{} ({})? ".format(message, "/".join(options))
    choices = {alt: choice for choice in choices for alt in [choice, choice[0]]}
    choices[""] = default
    while True:
        sys.stdout.write(message)
        sys.stdout.flush()
        try:
            user_choice = sys.stdin.readline()
        except OSError as e:
            raise MicrocondaError("cannot read from stdin: %(error)s", caused_by=e, error=e)
        if not user_choice:
            # end of input counts as declining
            user_choice = "no"
        user_choice = user_choice.strip().lower()
        if user_choice not in choices:
            print(f"Invalid choice: {user_choice}")
        else:
            sys.stdout.write("\n")
            sys.stdout.flush()
            return choices[user_choice]


def confirm_yn(context: Context, message: str = "Proceed", default="yes") -> bool:
    """
    Display a "yes/no" confirmation input

    :raises DryRunExit: In dry run mode, before asking anything.
    :raises UserDeclined: If the answer is no.
    """
    if context.dry_run:
        raise DryRunExit()

    # json output is never interactive
    if context.always_yes or context.json:
        return True

    try:
        choice = prompt(message, choices=("yes", "no"), default=default)
    except KeyboardInterrupt:  # pragma: no cover
        raise UserDeclined()

    if choice == "no":
        raise UserDeclined()

    return True
