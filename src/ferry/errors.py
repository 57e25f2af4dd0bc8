# -*- coding: utf-8 -*-
#
# Copyright (C) 2024-2026 Ferry Developers
#
# SPDX-License-Identifier: LGPL-3.0+

import ferry.typing as T


class FerryError(Exception):
    """Base class for all errors raised by the conversion engine."""

    pass


class ArchiveError(FerryError):
    """
    A Debian package archive could not be read.

    :member names the container member (or ``ar`` header) that failed to parse,
    so the caller can tell a broken control tarball from a broken payload.
    """

    def __init__(self, member: T.Optional[str], message: str):
        self.member = member
        self.message = message
        super().__init__(member, message)

    def __str__(self):
        if self.member:
            return '{}: {}'.format(self.member, self.message)
        return self.message


class PlanError(FerryError):
    """A build plan could not be produced for a package."""

    def __init__(self, message: str, paths: T.Iterable[str] = ()):
        self.message = message
        self.paths = tuple(paths)
        super().__init__(message, self.paths)

    def __str__(self):
        if self.paths:
            return '{} ({})'.format(self.message, ', '.join(self.paths))
        return self.message


class BuildError(FerryError):
    '''
    Building the Arch package in the sandbox failed.
    '''

    def __init__(self, stage: str, message: str, *, stdout: str = '', stderr: str = '', retryable: bool = False):
        self.stage = stage
        self.message = message
        self.stdout = stdout if stdout else ''
        self.stderr = stderr if stderr else ''
        self.retryable = retryable
        super().__init__(stage, message)

    def __str__(self):
        s = '{} failed: {}'.format(self.stage, self.message)
        if self.stderr:
            s = s + '\n' + self.stderr.strip()
        return s


class JobTimeoutError(FerryError, TimeoutError):
    """A conversion job exceeded its time budget."""

    def __init__(self, stage: str, timeout: float):
        self.stage = stage
        self.timeout = timeout
        super().__init__('Job exceeded its time limit of {:.1f}s while {}'.format(timeout, stage))


class JobCancelledError(FerryError):
    """The batch a job belongs to was cancelled before the job could finish."""

    pass


class ResolutionError(FerryError):
    """Dependencies of a package could not be resolved and the policy forbids continuing."""

    def __init__(self, warnings: T.Sequence['MapperWarning']):
        self.warnings = tuple(warnings)
        names = ', '.join(w.relation for w in self.warnings)
        super().__init__('Unresolved dependencies: {}'.format(names))


class InvalidTransitionError(FerryError):
    """A conversion job was moved into a state it can not reach from its current one."""

    pass


class MapperWarning(UserWarning):
    '''
    Non-fatal report about a relation the dependency mapper could not map
    with full confidence. These are attached to the job result and never
    abort a conversion on their own.
    '''

    UNRESOLVED = 'unresolved'
    LOW_CONFIDENCE = 'low-confidence'
    UNTRANSLATABLE = 'untranslatable'

    def __init__(self, relation: str, reason: str, *, field: str = 'depends', detail: str = ''):
        self.relation = relation
        self.reason = reason
        self.field = field
        self.detail = detail
        super().__init__(relation, reason, field, detail)

    def __str__(self):
        s = '{} ({}): {}'.format(self.relation, self.field, self.reason)
        if self.detail:
            s = s + ' - ' + self.detail
        return s

    def __eq__(self, other):
        if not isinstance(other, MapperWarning):
            return NotImplemented
        return (self.relation, self.reason, self.field, self.detail) == (
            other.relation,
            other.reason,
            other.field,
            other.detail,
        )

    def __hash__(self):
        return hash((self.relation, self.reason, self.field, self.detail))
