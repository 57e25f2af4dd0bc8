# -*- coding: utf-8 -*-
#
# Copyright (C) 2024-2026 Ferry Developers
#
# SPDX-License-Identifier: LGPL-3.0+

import os
import re
import json
import threading
from types import MappingProxyType
from datetime import datetime, timezone
from dataclasses import dataclass

import ferry.typing as T
from ferry.utils import json_compact_dump
from ferry.logging import log
from ferry.mapper.aliases import VIRTUAL_PACKAGES, BUILTIN_ALIASES, DROPPED_PACKAGES
from ferry.archive.control import normalize_package_name

# lowest confidence an alias match may report, keeps aliases ranked above every other method
ALIAS_MIN_CONFIDENCE = 0.9

_re_provide = re.compile(r'^([^<>=]+)(?:(<=|>=|=|<|>)(.+))?$')
_re_soname_version = re.compile(r'^(\d+(?:\.\d+)*)(?:-(?:32|64))?$')


@dataclass(frozen=True)
class ArchPackage:
    '''An Arch Linux package that dependencies can be mapped to.'''

    name: str
    version: T.Optional[str] = None
    provides: T.Tuple[str, ...] = ()
    repo: T.Optional[str] = None

    def to_data(self) -> T.Dict[str, T.Any]:
        return {'name': self.name, 'version': self.version, 'provides': list(self.provides), 'repo': self.repo}

    @classmethod
    def from_data(cls, data: T.Dict[str, T.Any]) -> 'ArchPackage':
        return cls(
            name=data['name'],
            version=data.get('version'),
            provides=tuple(data.get('provides', [])),
            repo=data.get('repo'),
        )


@dataclass(frozen=True)
class AliasEntry:
    '''
    A known mapping of a Debian package name to Arch packages.
    If :constraint is set (in Debian syntax, e.g. ">= 1.2"), the
    alias only applies to relations with exactly this constraint.
    '''

    debian_name: str
    candidates: T.Tuple[T.Tuple[str, float], ...]
    constraint: T.Optional[str] = None
    origin: str = 'builtin'

    @property
    def dropped(self) -> bool:
        """True if relations on this package should simply be omitted."""
        return len(self.candidates) == 0

    def to_data(self) -> T.Dict[str, T.Any]:
        return {
            'debian': self.debian_name,
            'candidates': [[n, c] for n, c in self.candidates],
            'constraint': self.constraint,
            'origin': self.origin,
        }

    @classmethod
    def from_data(cls, data: T.Dict[str, T.Any]) -> 'AliasEntry':
        return cls(
            debian_name=normalize_package_name(data['debian']),
            candidates=tuple((str(n), max(ALIAS_MIN_CONFIDENCE, min(1.0, float(c)))) for n, c in data['candidates']),
            constraint=data.get('constraint'),
            origin=data.get('origin', 'learned'),
        )


@dataclass(frozen=True)
class ProvidedName:
    """An entry of the provides index."""

    package: str
    version: T.Optional[str]
    soname: bool = False


def parse_provide(provide: str) -> T.Tuple[str, T.Optional[str], T.Optional[str]]:
    '''
    Split an Arch provides entry like "libfoo.so=2-64" into name, operator and version.
    '''
    m = _re_provide.match(provide.strip())
    if not m:
        raise ValueError('Invalid provides entry: {}'.format(provide))
    return m.group(1).strip(), m.group(2), m.group(3)


def soname_debian_names(name: str, version: T.Optional[str]) -> T.List[str]:
    '''
    Guess the Debian package names of a library from its soname provide,
    e.g. libfoo.so=2-64 -> libfoo2 and libbz2.so=1.0-64 -> libbz2-1.0
    '''
    if not name.endswith('.so') or not version:
        return []
    m = _re_soname_version.match(version)
    if not m:
        return []
    base = name[: -len('.so')].lower()
    sover = m.group(1)
    if base[-1:].isdigit():
        return [base + '-' + sover]
    return [base + sover]


def _builtin_alias_entries() -> T.List[AliasEntry]:
    entries = []
    for debname, archname, confidence in BUILTIN_ALIASES + VIRTUAL_PACKAGES:
        entries.append(AliasEntry(debname, ((archname, max(ALIAS_MIN_CONFIDENCE, confidence)),)))
    for debname in DROPPED_PACKAGES:
        entries.append(AliasEntry(debname, ()))
    return entries


class MappingSnapshot:
    '''
    Immutable view of the dependency mapping data: alias table and the pool of
    Arch packages (with their provides) that dependencies can resolve to.

    Built-in aliases are always part of a snapshot, but only learned aliases
    and the package pool are stored when it is persisted.
    '''

    def __init__(
        self,
        version: int = 0,
        aliases: T.Iterable[AliasEntry] = (),
        packages: T.Iterable[ArchPackage] = (),
        *,
        created: T.Optional[str] = None,
    ):
        self._version = version
        self._created = created if created else datetime.now(timezone.utc).isoformat(timespec='seconds')
        self._own_aliases = tuple(aliases)

        alias_map: T.Dict[str, T.List[AliasEntry]] = {}
        # learned aliases take precedence over built-in ones
        for entry in self._own_aliases + tuple(_builtin_alias_entries()):
            alias_map.setdefault(entry.debian_name, []).append(entry)
        self._aliases = MappingProxyType({k: tuple(v) for k, v in alias_map.items()})

        pkg_map = {}
        provides_map: T.Dict[str, T.List[ProvidedName]] = {}
        for pkg in sorted(packages, key=lambda p: p.name):
            pkg_map[pkg.name] = pkg
            for provide in pkg.provides:
                try:
                    pname, _, pversion = parse_provide(provide)
                except ValueError:
                    log.debug('Ignoring invalid provides entry "%s" of %s', provide, pkg.name)
                    continue
                provides_map.setdefault(pname.lower(), []).append(ProvidedName(pkg.name, pversion))
                for debname in soname_debian_names(pname, pversion):
                    provides_map.setdefault(debname, []).append(ProvidedName(pkg.name, None, soname=True))
        self._packages = MappingProxyType(pkg_map)
        self._provides = MappingProxyType({k: tuple(v) for k, v in provides_map.items()})
        self._pool = tuple(pkg_map.keys())

    @classmethod
    def initial(cls) -> 'MappingSnapshot':
        """A snapshot with only the built-in knowledge."""
        return cls(0, (), (), created='1970-01-01T00:00:00+00:00')

    @property
    def version(self) -> int:
        return self._version

    @property
    def created(self) -> str:
        return self._created

    @property
    def package_names(self) -> T.Tuple[str, ...]:
        """Names of all packages in the candidate pool, sorted."""
        return self._pool

    @property
    def packages(self) -> T.Tuple[ArchPackage, ...]:
        return tuple(self._packages.values())

    @property
    def learned_aliases(self) -> T.Tuple[AliasEntry, ...]:
        return self._own_aliases

    def get_package(self, name: str) -> T.Optional[ArchPackage]:
        return self._packages.get(name)

    def aliases_for(self, debian_name: str) -> T.Tuple[AliasEntry, ...]:
        return self._aliases.get(debian_name, ())

    def providers_of(self, name: str) -> T.Tuple[ProvidedName, ...]:
        return self._provides.get(name, ())

    def with_aliases(self, entries: T.Iterable[AliasEntry]) -> 'MappingSnapshot':
        '''
        Create the next snapshot, with :entries added to the learned aliases.
        Entries for the same Debian name and constraint replace older ones.
        '''
        new_entries = list(entries)
        keys = {(e.debian_name, e.constraint) for e in new_entries}
        kept = [e for e in self._own_aliases if (e.debian_name, e.constraint) not in keys]
        return MappingSnapshot(self._version + 1, new_entries + kept, self._packages.values())

    def with_packages(self, packages: T.Iterable[ArchPackage]) -> 'MappingSnapshot':
        """Create the next snapshot, with a new package pool."""
        return MappingSnapshot(self._version + 1, self._own_aliases, packages)

    def to_data(self) -> T.Dict[str, T.Any]:
        return {
            'format': MappingStore.FORMAT_VERSION,
            'version': self._version,
            'created': self._created,
            'aliases': [e.to_data() for e in self._own_aliases],
            'packages': [p.to_data() for p in self._packages.values()],
        }

    @classmethod
    def from_data(cls, data: T.Dict[str, T.Any]) -> 'MappingSnapshot':
        fmt = data.get('format')
        if fmt != MappingStore.FORMAT_VERSION:
            raise ValueError('Unsupported mapping snapshot format: {}'.format(fmt))
        return cls(
            int(data['version']),
            [AliasEntry.from_data(a) for a in data.get('aliases', [])],
            [ArchPackage.from_data(p) for p in data.get('packages', [])],
            created=data.get('created'),
        )


class MappingStore:
    '''
    Directory of versioned mapping snapshot files.

    Every change is written as a new file, ``mapping-<version>.json``. Existing
    files are never modified, so readers in other threads or processes always
    see a complete snapshot.
    '''

    FORMAT_VERSION = 1

    _re_fname = re.compile(r'^mapping-(\d+)\.json$')

    def __init__(self, directory: T.PathUnion, *, keep: int = 5):
        self._dir = os.fspath(directory)
        self._keep = keep
        self._lock = threading.Lock()

    @property
    def directory(self) -> str:
        return self._dir

    def _snapshot_files(self) -> T.List[T.Tuple[int, str]]:
        if not os.path.isdir(self._dir):
            return []
        result = []
        for fname in os.listdir(self._dir):
            m = self._re_fname.match(fname)
            if m:
                result.append((int(m.group(1)), os.path.join(self._dir, fname)))
        result.sort()
        return result

    def current_version(self) -> int:
        files = self._snapshot_files()
        return files[-1][0] if files else 0

    def load(self) -> MappingSnapshot:
        '''
        Load the newest readable snapshot, or the built-in one if there is none.
        '''
        for version, fname in reversed(self._snapshot_files()):
            try:
                with open(fname, 'r', encoding='utf-8') as f:
                    snapshot = MappingSnapshot.from_data(json.load(f))
            except (OSError, ValueError, KeyError, TypeError) as e:
                log.warning('Ignoring unreadable mapping snapshot %s: %s', fname, str(e))
                continue
            if snapshot.version != version:
                log.warning('Mapping snapshot %s claims to be version %s, ignoring it', fname, snapshot.version)
                continue
            return snapshot
        return MappingSnapshot.initial()

    def publish(self, snapshot: MappingSnapshot) -> MappingSnapshot:
        '''
        Persist :snapshot as the newest version.

        :return: The snapshot as it was stored, with its final version number.
        '''
        os.makedirs(self._dir, exist_ok=True)
        with self._lock:
            while True:
                version = self.current_version() + 1
                stored = MappingSnapshot(
                    version, snapshot.learned_aliases, snapshot.packages, created=snapshot.created
                )
                target = os.path.join(self._dir, 'mapping-{:06d}.json'.format(version))
                tmp_fname = os.path.join(self._dir, '.mapping-{:06d}.json.{}.tmp'.format(version, os.getpid()))
                with open(tmp_fname, 'wb') as f:
                    f.write(json_compact_dump(stored.to_data(), as_bytes=True))
                    f.flush()
                    os.fsync(f.fileno())
                try:
                    # link() refuses to overwrite, so a concurrent writer can never be clobbered
                    os.link(tmp_fname, target)
                except FileExistsError:
                    continue
                finally:
                    os.unlink(tmp_fname)
                break

        log.info('Published dependency mapping snapshot version %s', stored.version)
        self.prune()
        return stored

    def learn(self, entries: T.Iterable[AliasEntry]) -> MappingSnapshot:
        """Add learned aliases and publish the result as a new snapshot."""
        entries = [
            AliasEntry(normalize_package_name(e.debian_name), e.candidates, e.constraint, 'learned') for e in entries
        ]
        return self.publish(self.load().with_aliases(entries))

    def refresh(self, index) -> MappingSnapshot:
        '''
        Replace the candidate package pool with the contents of a PackageIndex.
        '''
        packages = list(index.packages())
        log.info('Refreshing dependency mapping candidate pool with %s packages', len(packages))
        return self.publish(self.load().with_packages(packages))

    def prune(self, keep: T.Optional[int] = None):
        """Delete all but the newest :keep snapshot files."""
        if keep is None:
            keep = self._keep
        if keep < 1:
            return
        files = self._snapshot_files()
        for _, fname in files[:-keep]:
            try:
                os.unlink(fname)
            except FileNotFoundError:
                pass
