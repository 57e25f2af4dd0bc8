# -*- coding: utf-8 -*-
#
# Copyright (C) 2024-2026 Ferry Developers
#
# SPDX-License-Identifier: LGPL-3.0+

import io
import os
import re
import enum
import functools
from types import MappingProxyType
from dataclasses import field, dataclass

from debian.debian_support import Version, version_compare

import ferry.typing as T

# relation fields of a binary package, (attribute name, control field name)
RELATION_FIELDS = (
    ('pre_depends', 'Pre-Depends'),
    ('depends', 'Depends'),
    ('recommends', 'Recommends'),
    ('suggests', 'Suggests'),
    ('enhances', 'Enhances'),
    ('conflicts', 'Conflicts'),
    ('breaks', 'Breaks'),
    ('provides', 'Provides'),
    ('replaces', 'Replaces'),
)

MAINTAINER_SCRIPT_NAMES = ('preinst', 'postinst', 'prerm', 'postrm', 'config')

_re_version_part = re.compile(r'(\D*)(\d*)')


def _version_key(s: T.Optional[str]) -> T.Tuple[T.Tuple[str, int], ...]:
    '''
    Split a version part into its non-digit and numeric runs, so that
    parts dpkg considers equal (like `1.0` and `1.00`) give the same key.
    '''
    parts = []
    for m in _re_version_part.finditer(s if s else ''):
        if not m.group(0):
            break
        parts.append((m.group(1), int(m.group(2)) if m.group(2) else 0))
    while parts and parts[-1] == ('', 0):
        parts.pop()
    return tuple(parts)


@functools.total_ordering
@dataclass(frozen=True, eq=False)
class DebVersion:
    '''
    A Debian package version, ``[epoch:]upstream[-revision]``.

    Ordering follows dpkg, so ``1.0~rc1`` sorts before ``1.0``.
    '''

    epoch: int
    upstream: str
    revision: T.Optional[str] = None

    @classmethod
    def parse(cls, s: str) -> 'DebVersion':
        s = s.strip()
        if not s:
            raise ValueError('Empty version string')
        v = Version(s)
        if not v.upstream_version or not v.upstream_version[0].isdigit():
            raise ValueError('Version "{}" does not start with a digit'.format(s))
        epoch = int(v.epoch) if v.epoch else 0
        return cls(epoch, v.upstream_version, v.debian_revision if v.debian_revision else None)

    def __str__(self):
        s = self.upstream
        if self.epoch:
            s = '{}:{}'.format(self.epoch, s)
        if self.revision:
            s = '{}-{}'.format(s, self.revision)
        return s

    def __repr__(self):
        return 'DebVersion({})'.format(str(self))

    def __eq__(self, other):
        if isinstance(other, str):
            other = DebVersion.parse(other)
        if not isinstance(other, DebVersion):
            return NotImplemented
        return version_compare(str(self), str(other)) == 0

    def __lt__(self, other):
        if isinstance(other, str):
            other = DebVersion.parse(other)
        if not isinstance(other, DebVersion):
            return NotImplemented
        return version_compare(str(self), str(other)) < 0

    def __hash__(self):
        return hash((self.epoch, _version_key(self.upstream), _version_key(self.revision)))


@dataclass(frozen=True)
class VersionConstraint:
    '''A Debian version restriction, like ``(>= 1.2)``.'''

    op: str
    version: str

    # operators as used in Debian control files, with the deprecated forms mapped
    OPERATORS = {'<<': '<<', '<=': '<=', '=': '=', '>=': '>=', '>>': '>>', '<': '<=', '>': '>='}

    def __str__(self):
        return '{} {}'.format(self.op, self.version)


@dataclass(frozen=True)
class Relation:
    """A single package reference in a relation field."""

    name: str
    constraint: T.Optional[VersionConstraint] = None
    arch_qualifier: T.Optional[str] = None

    def __str__(self):
        s = self.name
        if self.arch_qualifier:
            s = s + ':' + self.arch_qualifier
        if self.constraint:
            s = '{} ({})'.format(s, self.constraint)
        return s


@dataclass(frozen=True)
class RelationEntry:
    """Alternatives of which at least one has to be satisfied (``a | b``)."""

    alternatives: T.Tuple[Relation, ...]

    def __str__(self):
        return ' | '.join(str(r) for r in self.alternatives)


@dataclass(frozen=True)
class ConstraintSet:
    '''
    All relations of one control field, in disjunctive normal form:
    every entry has to be satisfied, each entry by any of its alternatives.
    '''

    field: str
    entries: T.Tuple[RelationEntry, ...] = ()

    def __iter__(self):
        return iter(self.entries)

    def __len__(self):
        return len(self.entries)

    def __bool__(self):
        return len(self.entries) > 0

    def __str__(self):
        return ', '.join(str(e) for e in self.entries)


@dataclass(frozen=True)
class PackageRelations:
    pre_depends: ConstraintSet = ConstraintSet('pre_depends')
    depends: ConstraintSet = ConstraintSet('depends')
    recommends: ConstraintSet = ConstraintSet('recommends')
    suggests: ConstraintSet = ConstraintSet('suggests')
    enhances: ConstraintSet = ConstraintSet('enhances')
    conflicts: ConstraintSet = ConstraintSet('conflicts')
    breaks: ConstraintSet = ConstraintSet('breaks')
    provides: ConstraintSet = ConstraintSet('provides')
    replaces: ConstraintSet = ConstraintSet('replaces')

    def items(self) -> T.Iterator[T.Tuple[str, ConstraintSet]]:
        for attr, _ in RELATION_FIELDS:
            yield attr, getattr(self, attr)


class FileKind(enum.Enum):
    FILE = 'file'
    DIRECTORY = 'dir'
    SYMLINK = 'link'
    HARDLINK = 'hardlink'


@dataclass(frozen=True)
class FileEntry:
    '''
    A filesystem object in the package payload.
    Paths are absolute and normalized, link targets are kept as stored.
    '''

    path: str
    kind: FileKind
    mode: int = 0o644
    uid: int = 0
    gid: int = 0
    uname: str = 'root'
    gname: str = 'root'
    size: int = 0
    mtime: int = 0
    linkname: T.Optional[str] = None

    @property
    def is_dir(self) -> bool:
        return self.kind == FileKind.DIRECTORY


@dataclass(frozen=True)
class ArchiveOrigin:
    '''
    Where the data of a parsed package came from, so the payload
    can be streamed again later without keeping it in memory.
    '''

    name: str
    path: T.Optional[str] = None
    data: T.Optional[bytes] = field(default=None, repr=False)
    payload_member: str = ''
    payload_offset: int = 0
    payload_size: int = 0

    def open(self) -> T.BinaryIO:
        if self.data is not None:
            return io.BytesIO(self.data)
        if self.path is None:
            raise ValueError('Package origin "{}" has neither a path nor data'.format(self.name))
        return open(self.path, 'rb')

    @classmethod
    def from_source(cls, source: T.ArchiveSource, name: T.Optional[str] = None) -> 'ArchiveOrigin':
        if isinstance(source, (bytes, bytearray, memoryview)):
            return cls(name=name if name else '<memory>', data=bytes(source))
        if isinstance(source, (str, os.PathLike)):
            path = os.fspath(source)
            return cls(name=name if name else os.path.basename(path), path=os.path.abspath(path))
        # file-like object
        fname = getattr(source, 'name', None)
        if isinstance(fname, str) and os.path.isfile(fname):
            return cls(name=name if name else os.path.basename(fname), path=os.path.abspath(fname))
        if hasattr(source, 'seek'):
            source.seek(0)
        return cls(name=name if name else '<stream>', data=source.read())


@dataclass(frozen=True)
class SourcePackage:
    '''
    A validated Debian binary package.
    '''

    name: str
    version: DebVersion
    architecture: str
    maintainer: str = ''
    description: str = ''
    long_description: str = ''
    installed_size: T.Optional[int] = None
    homepage: T.Optional[str] = None
    section: T.Optional[str] = None
    priority: T.Optional[str] = None
    source: T.Optional[str] = None
    relations: PackageRelations = PackageRelations()
    files: T.Tuple[FileEntry, ...] = ()
    scripts: T.Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    conffiles: T.Tuple[str, ...] = ()
    triggers: T.Optional[str] = None
    md5sums: T.Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    extra_fields: T.Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    members: T.Tuple[str, ...] = ()
    origin: T.Optional[ArchiveOrigin] = field(default=None, compare=False, repr=False)

    @property
    def archive_name(self) -> str:
        if self.origin:
            return self.origin.name
        return '{}_{}_{}.deb'.format(self.name, self.version, self.architecture)

    @property
    def source_name(self) -> str:
        if not self.source:
            return self.name
        # Source fields may carry a version in parentheses
        return self.source.split(' ', 1)[0]

    def __str__(self):
        return '{}/{}/{}'.format(self.name, self.version, self.architecture)
