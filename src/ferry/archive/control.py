# -*- coding: utf-8 -*-
#
# Copyright (C) 2024-2026 Ferry Developers
#
# SPDX-License-Identifier: LGPL-3.0+

import re

from debian.deb822 import Deb822, PkgRelation

import ferry.typing as T
from ferry.logging import log
from ferry.archive.package import (
    Relation,
    DebVersion,
    ConstraintSet,
    RelationEntry,
    VersionConstraint,
)

# field names may contain any printable ASCII except space and colon, and must not start with '#' or '-'
_re_field_line = re.compile(r'^([!-\"$-,.-9;-~][!-9;-~]*):(.*)$')
_re_package_name = re.compile(r'^[a-z0-9][a-z0-9+.-]+$')


class ControlSyntaxError(ValueError):
    '''A control stanza could not be tokenized.'''

    def __init__(self, lineno: int, message: str):
        self.lineno = lineno
        super().__init__('line {}: {}'.format(lineno, message))


def tokenize_control(text: str) -> T.List[T.Tuple[str, str]]:
    '''
    Split the text of a binary package control file into (field, raw value) pairs.

    This is a strict check performed before handing the text to the deb822
    parser, which silently skips lines it can't make sense of. A control
    file must contain exactly one stanza.
    '''
    fields: T.List[T.Tuple[str, str]] = []
    seen = set()
    stanza_done = False

    for lineno, line in enumerate(text.splitlines(), start=1):
        if not line.strip():
            if fields:
                stanza_done = True
            continue
        if line.startswith('#'):
            continue
        if stanza_done:
            raise ControlSyntaxError(lineno, 'unexpected second stanza')

        if line[0] in (' ', '\t'):
            if not fields:
                raise ControlSyntaxError(lineno, 'continuation line without a field')
            fname, value = fields[-1]
            fields[-1] = (fname, value + '\n' + line)
            continue

        m = _re_field_line.match(line)
        if not m:
            raise ControlSyntaxError(lineno, 'malformed field "{}"'.format(line[:40]))
        fname = m.group(1)
        if fname.lower() in seen:
            raise ControlSyntaxError(lineno, 'duplicate field "{}"'.format(fname))
        seen.add(fname.lower())
        fields.append((fname, m.group(2).strip()))

    if not fields:
        raise ControlSyntaxError(0, 'empty control stanza')
    return fields


def parse_control_stanza(text: str) -> Deb822:
    """Validate and parse a single control stanza."""
    tokenize_control(text)
    return Deb822(text)


def split_description(value: str) -> T.Tuple[str, str]:
    '''
    Split a Description field into the synopsis and the extended description.
    '''
    lines = value.split('\n')
    short = lines[0].strip()
    long_lines = []
    for line in lines[1:]:
        if line.startswith((' ', '\t')):
            line = line[1:]
        if line.strip() == '.':
            line = ''
        long_lines.append(line.rstrip())
    return short, '\n'.join(long_lines).strip('\n')


def normalize_package_name(name: str) -> str:
    '''
    Normalize a package name for lookups: lowercase, no architecture qualifier.
    '''
    name = name.strip().lower()
    if ':' in name:
        name = name.split(':', 1)[0]
    return name


def parse_relation_field(field: str, value: T.Optional[str]) -> ConstraintSet:
    '''
    Parse the value of a relation field (e.g. Depends) into a ConstraintSet.

    Raises ValueError for relations that do not follow Debian policy syntax.
    '''
    if not value or not value.strip():
        return ConstraintSet(field)

    entries = []
    for or_group in PkgRelation.parse_relations(value):
        alternatives = []
        for rel in or_group:
            name = rel.get('name', '').strip()
            if not name:
                # trailing or doubled separators
                continue
            if not _re_package_name.match(name.lower()):
                raise ValueError('Invalid package relation "{}" in {}'.format(name, field))

            constraint = None
            if rel.get('version'):
                op, version = rel['version']
                dop = VersionConstraint.OPERATORS.get(op)
                if not dop:
                    raise ValueError('Invalid relation operator "{}" for {} in {}'.format(op, name, field))
                if op != dop:
                    log.debug('Deprecated relation operator "%s" for %s, treating it as "%s"', op, name, dop)
                # validates the version
                DebVersion.parse(version)
                constraint = VersionConstraint(dop, version)

            alternatives.append(Relation(name.lower(), constraint, rel.get('archqual')))
        if alternatives:
            entries.append(RelationEntry(tuple(alternatives)))

    return ConstraintSet(field, tuple(entries))


def parse_md5sums(text: str) -> T.Dict[str, str]:
    '''Read an md5sums control file into a mapping of absolute path to checksum.'''
    sums = {}
    for line in text.splitlines():
        line = line.strip()
        if not line:
            continue
        parts = line.split(None, 1)
        if len(parts) != 2 or len(parts[0]) != 32:
            raise ValueError('Malformed md5sums line: {}'.format(line))
        path = parts[1].strip()
        if not path.startswith('/'):
            path = '/' + path
        sums[path] = parts[0].lower()
    return sums


def parse_conffiles(text: str) -> T.List[str]:
    """Read a conffiles control file. Flags like ``remove-on-upgrade`` are ignored."""
    conffiles = []
    for line in text.splitlines():
        for part in line.split():
            if part.startswith('/'):
                conffiles.append(part)
                break
    return conffiles
