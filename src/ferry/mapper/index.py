# -*- coding: utf-8 -*-
#
# Copyright (C) 2024-2026 Ferry Developers
#
# SPDX-License-Identifier: LGPL-3.0+

import os
import tarfile
from abc import ABC, abstractmethod
from glob import glob

import zstandard

import ferry.typing as T
from ferry.logging import log
from ferry.mapper.snapshot import ArchPackage

ZSTD_MAGIC = b'\x28\xb5\x2f\xfd'


class PackageIndex(ABC):
    '''
    Source of the Arch Linux packages dependencies can be mapped to.
    '''

    @abstractmethod
    def packages(self) -> T.Iterator[ArchPackage]:
        """Enumerate all available packages with their provides."""
        pass


class StaticPackageIndex(PackageIndex):
    '''
    Package index with a fixed list of packages, e.g. from a previously exported list.
    '''

    def __init__(self, packages: T.Iterable[T.Union[ArchPackage, T.Tuple]]):
        self._packages = []
        for pkg in packages:
            if not isinstance(pkg, ArchPackage):
                name, version, *rest = pkg
                pkg = ArchPackage(name, version, tuple(rest[0]) if rest else ())
            self._packages.append(pkg)

    def packages(self) -> T.Iterator[ArchPackage]:
        return iter(self._packages)


def parse_desc(text: str) -> T.Dict[str, T.List[str]]:
    '''
    Parse a pacman database "desc" file, which consists of
    blocks of "%KEY%" lines followed by values.
    '''
    data: T.Dict[str, T.List[str]] = {}
    key = None
    for line in text.splitlines():
        line = line.strip()
        if not line:
            key = None
            continue
        if line.startswith('%') and line.endswith('%') and len(line) > 2:
            key = line[1:-1]
            data[key] = []
            continue
        if key:
            data[key].append(line)
    return data


class SyncDatabaseIndex(PackageIndex):
    '''
    Read packages from pacman sync databases (e.g. /var/lib/pacman/sync/core.db).
    '''

    def __init__(self, db_files: T.Iterable[T.PathUnion]):
        self._db_files = [os.fspath(f) for f in db_files]

    @classmethod
    def from_directory(cls, path: T.PathUnion = '/var/lib/pacman/sync') -> 'SyncDatabaseIndex':
        return cls(sorted(glob(os.path.join(os.fspath(path), '*.db'))))

    def _read_db(self, fname: str) -> T.Iterator[ArchPackage]:
        repo = os.path.basename(fname)
        if repo.endswith('.db'):
            repo = repo[: -len('.db')]

        with open(fname, 'rb') as fh:
            magic = fh.read(4)
            fh.seek(0)
            if magic == ZSTD_MAGIC:
                dctx = zstandard.ZstdDecompressor()
                stream = dctx.stream_reader(fh, read_across_frames=True)
                tar = tarfile.open(fileobj=stream, mode='r|')
            else:
                stream = None
                tar = tarfile.open(fileobj=fh, mode='r|*')
            try:
                for member in tar:
                    if not member.isfile() or os.path.basename(member.name) != 'desc':
                        continue
                    f = tar.extractfile(member)
                    if not f:
                        continue
                    desc = parse_desc(f.read().decode('utf-8', errors='replace'))
                    names = desc.get('NAME')
                    if not names:
                        continue
                    versions = desc.get('VERSION', [None])
                    yield ArchPackage(names[0], versions[0], tuple(desc.get('PROVIDES', [])), repo)
            finally:
                tar.close()
                if stream is not None:
                    stream.close()

    def packages(self) -> T.Iterator[ArchPackage]:
        for fname in self._db_files:
            log.debug('Reading package database %s', fname)
            try:
                yield from self._read_db(fname)
            except (tarfile.TarError, zstandard.ZstdError, EOFError) as e:
                raise ValueError('Unable to read package database {}: {}'.format(fname, e)) from e
