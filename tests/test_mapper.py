# -*- coding: utf-8 -*-
#
# Copyright (C) 2024-2026 Ferry Developers
#
# SPDX-License-Identifier: LGPL-3.0+

import io
import os
import tarfile

import pytest
import zstandard
from pebble import ThreadPool

from ferry.errors import MapperWarning
from ferry.mapper import (
    AliasEntry,
    MatchMethod,
    ArchPackage,
    MappingStore,
    ArchConstraint,
    MappingSnapshot,
    DependencyMapper,
    SyncDatabaseIndex,
    StaticPackageIndex,
    UntranslatableConstraint,
    vercmp,
    version_satisfies,
    translate_constraint,
)
from ferry.archive import PackageRelations, VersionConstraint, parse_relation_field
from ferry.mapper.snapshot import parse_provide, soname_debian_names
from ferry.mapper.heuristics import derive_names, similarity_matches


def test_vercmp():
    assert vercmp('1.0', '1.0') == 0
    assert vercmp('1.0', '1.0.1') == -1
    assert vercmp('1.10', '1.9') == 1
    assert vercmp('1:1.0', '2.0') == 1
    assert vercmp('1.0-2', '1.0-1') == 1
    # the release is only compared if both sides have one
    assert vercmp('1.0', '1.0-5') == 0
    # trailing letters denote pre-releases
    assert vercmp('1.0a', '1.0') == -1
    assert vercmp('1.0rc1', '1.0') == -1

    assert version_satisfies('1.5-1', '>=', '1.2')
    assert version_satisfies('1.5-1', '<', '2')
    assert not version_satisfies('1.5-1', '=', '1.4')
    with pytest.raises(ValueError):
        version_satisfies('1.0', '~=', '1.0')


def test_translate_constraint():
    assert translate_constraint(VersionConstraint('>=', '2.34')) == ArchConstraint('>=', '2.34')
    assert str(translate_constraint(VersionConstraint('>>', '1:2.0~rc1-3'))) == '>=1:2.0rc1'
    assert str(translate_constraint(VersionConstraint('<<', '3.0'))) == '<3.0'
    assert str(translate_constraint(VersionConstraint('=', '1.2.3-0ubuntu1'))) == '=1.2.3'

    # a later revision of the same upstream version satisfies "later than"
    c = translate_constraint(VersionConstraint('>>', '1.2-3'))
    assert c == ArchConstraint('>=', '1.2')
    assert version_satisfies('1.2-4', c.op, c.version)
    assert not version_satisfies('1.1-9', c.op, c.version)
    c = translate_constraint(VersionConstraint('>>', '1.2'))
    assert version_satisfies('1.2-1', c.op, c.version)

    # and an earlier revision satisfies "earlier than"
    c = translate_constraint(VersionConstraint('<<', '1.2-3'))
    assert c == ArchConstraint('<=', '1.2')
    assert version_satisfies('1.2-1', c.op, c.version)
    assert not version_satisfies('1.3-1', c.op, c.version)
    c = translate_constraint(VersionConstraint('<<', '1.2'))
    assert not version_satisfies('1.2-1', c.op, c.version)

    with pytest.raises(UntranslatableConstraint):
        translate_constraint(VersionConstraint('>=', '2.0-rc-1'))
    with pytest.raises(UntranslatableConstraint):
        translate_constraint(VersionConstraint('!=', '1.0'))


def test_provides_parsing():
    assert parse_provide('libfoo.so=2-64') == ('libfoo.so', '=', '2-64')
    assert parse_provide('sh') == ('sh', None, None)
    assert soname_debian_names('libfoo.so', '2-64') == ['libfoo2']
    assert soname_debian_names('libbz2.so', '1.0-64') == ['libbz2-1.0']
    assert soname_debian_names('libfoo.so', None) == []
    assert soname_debian_names('sh', '1') == []


def test_name_heuristics():
    names = dict(derive_names('python3-yaml'))
    assert names['python3-yaml'] == 1.0
    assert names['python-yaml'] == 0.95

    names = dict(derive_names('libbz2-1.0'))
    assert 'libbz2' in names
    assert 'bz2' in names

    names = dict(derive_names('libxml2-utils'))
    assert names['libxml2'] == 0.85

    pool = ['python', 'python-requests', 'python-requestz', 'glibc']
    matches = similarity_matches('python3-requests', pool, 0.8)
    assert matches[0][0] == 'python-requests'
    assert matches[0][1] == pytest.approx(30 / 31)
    assert all(score >= 0.8 for _, score in matches)
    assert similarity_matches('python3-requests', [], 0.8) == []


class TestDependencyMapper:
    @pytest.fixture(autouse=True)
    def setup(self, snapshot):
        self._mapper = DependencyMapper(snapshot)

    def _resolve(self, field, value):
        return self._mapper.resolve(parse_relation_field(field, value))

    def test_alias(self):
        rset = self._resolve('depends', 'libc6 (>= 2.34)')
        assert not rset.warnings
        entry = rset.entries[0]
        assert entry.method == MatchMethod.ALIAS
        assert entry.best.name == 'glibc'
        assert entry.best.confidence >= 0.9
        assert str(entry.best) == 'glibc>=2.34'

    def test_provides(self):
        rset = self._resolve('depends', 'libfoo2 (>= 1.2)')
        assert not rset.warnings

        entry = rset.entries[0]
        assert entry.method == MatchMethod.PROVIDES
        assert entry.best.name == 'libfoo'
        assert str(entry.best) == 'libfoo>=1.2'
        assert entry.best.confidence == 0.8
        assert entry.best.confidence > 0.7

        # a package implicitly provides its own name
        entry = self._resolve('depends', 'openssl').entries[0]
        assert entry.method == MatchMethod.PROVIDES
        assert entry.best.name == 'openssl'
        assert entry.best.confidence == 0.88

        # direct provides entries
        entry = self._resolve('depends', 'sh').entries[0]
        assert entry.best.name == 'bash'
        assert entry.best.confidence == 0.85

        # the provided version does not satisfy the constraint
        entry = self._resolve('depends', 'openssl (>= 4.0)').entries[0]
        assert entry.best.name == 'openssl'
        assert entry.best.confidence == pytest.approx(0.83)

    def test_heuristic(self):
        rset = self._resolve('recommends', 'python3-requests')
        assert not rset.warnings
        entry = rset.entries[0]
        assert entry.method == MatchMethod.HEURISTIC
        assert entry.best.name == 'python-requests'
        assert 0.6 < entry.best.confidence <= 0.7

        rset = self._resolve('depends', 'libxml2-utils')
        entry = rset.entries[0]
        assert entry.best.name == 'libxml2'
        assert entry.method == MatchMethod.HEURISTIC
        assert len(rset.warnings) == 1
        assert rset.warnings[0].reason == MapperWarning.LOW_CONFIDENCE

    def test_unresolved(self):
        rset = self._resolve('depends', 'libc6, zzqqx-nothing (>= 1.0)')
        assert len(rset.entries) == 2
        assert rset.entries[0].resolved
        assert not rset.entries[1].resolved
        assert rset.entries[1].method == MatchMethod.UNRESOLVED
        assert rset.unresolved == (rset.entries[1],)

        assert len(rset.warnings) == 1
        w = rset.warnings[0]
        assert w.reason == MapperWarning.UNRESOLVED
        assert w.field == 'depends'
        assert w.relation == 'zzqqx-nothing (>= 1.0)'

    def test_alternatives(self):
        entry = self._resolve('depends', 'libfoo1-nonexist | libc6').entries[0]
        assert entry.alternative.name == 'libc6'
        assert entry.best.name == 'glibc'

        # pacman can't express this, so the version is dropped
        rset = self._resolve('depends', 'libc6 (<< 2.0) | libc6 (>= 3.0)')
        assert rset.entries[0].best.constraint is None
        assert rset.warnings[0].reason == MapperWarning.UNTRANSLATABLE

    def test_untranslatable_version(self):
        rset = self._resolve('depends', 'libc6 (>= 2.0-rc-1)')
        entry = rset.entries[0]
        assert entry.best.name == 'glibc'
        assert entry.best.constraint is None
        assert len(rset.warnings) == 1
        assert rset.warnings[0].reason == MapperWarning.UNTRANSLATABLE

    def test_dropped(self):
        rset = self._resolve('depends', 'debconf (>= 0.5) | debconf-2.0, libc6')
        assert not rset.warnings
        assert rset.entries[0].dropped
        assert rset.entries[0].resolved
        assert not rset.entries[0].candidates
        assert rset.entries[1].best.name == 'glibc'

    def test_overrides(self, snapshot):
        mapper = DependencyMapper(snapshot, overrides={'libfoo2': ['libfoo-git']})
        entry = mapper.resolve(parse_relation_field('depends', 'libfoo2')).entries[0]
        assert entry.method == MatchMethod.ALIAS
        assert entry.best.name == 'libfoo-git'
        assert entry.best.confidence == 1.0

    def test_resolve_relations(self):
        deps = parse_relation_field('depends', 'libc6')
        provides = parse_relation_field('provides', 'hello-world')
        result = self._mapper.resolve_relations(PackageRelations(depends=deps, provides=provides))
        assert 'depends' in result
        assert 'provides' not in result
        assert 'enhances' not in result

    def test_cache(self, snapshot):
        first = self._mapper.lookup('python3-requests')
        cache = self._mapper.cache
        assert cache.get('python3-requests') == first
        assert self._mapper.lookup('Python3-Requests:any') == first
        assert cache.snapshot_version == snapshot.version

        # views never change once handed out
        view = cache.view()
        self._mapper.lookup('libfoo2')
        assert 'libfoo2' not in view
        assert 'libfoo2' in cache.view()

        self._mapper.use_snapshot(snapshot.with_aliases([AliasEntry('python3-requests', (('python-requests', 1.0),))]))
        assert len(self._mapper.cache) == 0
        assert self._mapper.lookup('python3-requests')[0].method == MatchMethod.ALIAS

    def test_concurrent_resolution(self):
        relations = ['libc6 (>= 2.34), libfoo2, python3-requests', 'zlib1g, libssl3 | openssl', 'zzqqx-nothing']
        expected = [self._resolve('depends', r) for r in relations]
        mapper = DependencyMapper(self._mapper.snapshot)

        pool = ThreadPool(max_workers=4)
        futures = [
            pool.schedule(mapper.resolve, args=(parse_relation_field('depends', relations[i % 3]),)) for i in range(30)
        ]
        pool.close()
        pool.join()
        for i, future in enumerate(futures):
            assert future.result() == expected[i % 3]


class TestMappingStore:
    @pytest.fixture(autouse=True)
    def setup(self, tmp_path, arch_index):
        self._dir = tmp_path / 'mappings'
        self._store = MappingStore(self._dir, keep=3)
        self._index = arch_index

    def test_empty(self):
        snapshot = self._store.load()
        assert snapshot.version == 0
        assert snapshot.package_names == ()
        # built-in knowledge is always there
        assert snapshot.aliases_for('libc6')

    def test_publish_load(self):
        snap = self._store.refresh(self._index)
        assert snap.version == 1
        assert 'glibc' in snap.package_names

        loaded = self._store.load()
        assert loaded.version == 1
        assert loaded.package_names == snap.package_names
        assert loaded.get_package('libfoo').provides == ('libfoo.so=2-64',)
        assert os.path.isfile(os.path.join(str(self._dir), 'mapping-000001.json'))

    def test_learn(self):
        self._store.refresh(self._index)
        snap = self._store.learn([AliasEntry('libwidget3', (('widget', 0.95),), constraint='>= 3.1')])
        assert snap.version == 2

        loaded = self._store.load()
        (alias,) = loaded.learned_aliases
        assert alias.debian_name == 'libwidget3'
        assert alias.origin == 'learned'
        assert alias.constraint == '>= 3.1'

        mapper = DependencyMapper(store=self._store)
        assert mapper.snapshot.version == 2
        entry = mapper.resolve(parse_relation_field('depends', 'libwidget3 (>= 3.1)')).entries[0]
        assert entry.method == MatchMethod.ALIAS
        assert entry.best.name == 'widget'
        # the alias only applies to exactly this constraint
        entry = mapper.resolve(parse_relation_field('depends', 'libwidget3 (>= 4)')).entries[0]
        assert entry.method != MatchMethod.ALIAS

    def test_prune_and_reload(self):
        mapper = DependencyMapper(store=self._store)
        assert not mapper.reload()

        for _ in range(5):
            self._store.refresh(self._index)
        files = sorted(os.listdir(str(self._dir)))
        assert files == ['mapping-000003.json', 'mapping-000004.json', 'mapping-000005.json']

        assert mapper.reload()
        assert mapper.snapshot.version == 5
        assert not mapper.reload()

    def test_broken_snapshot(self):
        self._store.refresh(self._index)
        with open(os.path.join(str(self._dir), 'mapping-000002.json'), 'w') as f:
            f.write('{"format": 1, "version": 2, "aliases": [')
        assert self._store.load().version == 1

        # the next publish does not overwrite the broken file
        snap = self._store.refresh(StaticPackageIndex([ArchPackage('glibc', '2.40-1')]))
        assert snap.version == 3
        assert self._store.load().package_names == ('glibc',)


def _write_sync_db(fname, compress):
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode='w') as tar:
        for name, version, provides in (('glibc', '2.39-1', ['libc.so=6-64']), ('zlib', '1:1.3.1-2', [])):
            desc = '%NAME%\n{}\n\n%VERSION%\n{}\n\n'.format(name, version)
            if provides:
                desc += '%PROVIDES%\n' + '\n'.join(provides) + '\n\n'
            data = desc.encode('utf-8')
            tinfo = tarfile.TarInfo('{}-{}/desc'.format(name, version))
            tinfo.size = len(data)
            tar.addfile(tinfo, io.BytesIO(data))
    raw = buf.getvalue()
    if compress:
        raw = zstandard.ZstdCompressor().compress(raw)
    with open(fname, 'wb') as f:
        f.write(raw)


@pytest.mark.parametrize('compress', [True, False])
def test_sync_database_index(tmp_path, compress):
    _write_sync_db(str(tmp_path / 'core.db'), compress)

    index = SyncDatabaseIndex.from_directory(tmp_path)
    packages = {p.name: p for p in index.packages()}
    assert set(packages.keys()) == {'glibc', 'zlib'}
    assert packages['glibc'].provides == ('libc.so=6-64',)
    assert packages['glibc'].repo == 'core'
    assert packages['zlib'].version == '1:1.3.1-2'
