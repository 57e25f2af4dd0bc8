# -*- coding: utf-8 -*-
#
# Copyright (C) 2024-2026 Ferry Developers
#
# SPDX-License-Identifier: LGPL-3.0+

import os
import time
import collections

import ferry.typing as T
from ferry.errors import JobTimeoutError


def listify(item):
    '''
    Return a list of :item, unless :item already is a list.
    '''
    if not item:
        return []
    if type(item) == list:
        return item
    if isinstance(item, str):
        return [item]
    if isinstance(item, collections.abc.Sequence):
        return list(item)
    return [item]


def random_string(length=8):
    '''
    Generate a random alphanumerical string with length :length.
    '''
    import random
    import string

    return ''.join([random.choice(string.ascii_lowercase + string.digits) for n in range(length)])


def available_cpu_count() -> int:
    '''
    Number of CPUs this process may actually run on.
    '''
    try:
        return len(os.sched_getaffinity(0))
    except AttributeError:
        return os.cpu_count() or 1


class Deadline:
    '''
    Point in time by which a piece of work has to be done.

    A deadline is handed down into every blocking operation of a conversion
    job (decompression loops, subprocess calls), which then either
    call :check() periodically or limit their own timeout to :remaining().
    '''

    def __init__(self, timeout: T.Optional[float]):
        self.timeout = timeout
        self._expires = None
        if timeout is not None:
            self._expires = time.monotonic() + timeout

    @classmethod
    def never(cls):
        return cls(None)

    def remaining(self) -> T.Optional[float]:
        """Seconds left, or None if there is no limit."""
        if self._expires is None:
            return None
        return max(0.0, self._expires - time.monotonic())

    def expired(self) -> bool:
        if self._expires is None:
            return False
        return time.monotonic() >= self._expires

    def overrun(self) -> float:
        """Seconds elapsed since the deadline passed (0 if it did not pass yet)."""
        if self._expires is None:
            return 0.0
        return max(0.0, time.monotonic() - self._expires)

    def check(self, stage: str):
        if self.expired():
            raise JobTimeoutError(stage, self.timeout)
