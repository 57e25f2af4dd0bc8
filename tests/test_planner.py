# -*- coding: utf-8 -*-
#
# Copyright (C) 2024-2026 Ferry Developers
#
# SPDX-License-Identifier: LGPL-3.0+

import pytest

from ferry.errors import PlanError, MapperWarning
from ferry.mapper import DependencyMapper
from ferry.archive import FileKind, FileEntry, DebVersion, ArchiveReader
from ferry.planner import (
    PathRule,
    PathRewriter,
    PackagePlanner,
    InstallScriptTranslator,
    convert_version,
    sanitize_pkgname,
)

from .conftest import DebBuilder, make_hello


def test_sanitize_pkgname():
    assert sanitize_pkgname('hello') == 'hello'
    assert sanitize_pkgname('Foo_Bar') == 'foo_bar'
    assert sanitize_pkgname('lib~weird') == 'lib-weird'
    assert sanitize_pkgname('--.x') == 'x'
    assert sanitize_pkgname('gtk+3.0') == 'gtk+3.0'
    with pytest.raises(PlanError):
        sanitize_pkgname('...')


def test_convert_version():
    assert convert_version(DebVersion.parse('2.10-3')) == (0, '2.10', '3')
    assert convert_version(DebVersion.parse('1:2.0~rc1-0ubuntu3')) == (1, '2.0rc1', '1')
    assert convert_version(DebVersion.parse('1.0+dfsg-12')) == (0, '1.0+dfsg', '12')
    assert convert_version(DebVersion.parse('1.0-beta-2')) == (0, '1.0_beta', '2')
    assert convert_version(DebVersion.parse('5.4')) == (0, '5.4', '1')
    assert convert_version(DebVersion.parse('3.1-007build1')) == (0, '3.1', '7')


class TestPathRewriter:
    @pytest.fixture(autouse=True)
    def setup(self):
        self._rw = PathRewriter()

    def test_rewrite(self):
        rw = self._rw
        assert rw.rewrite('/lib/x86_64-linux-gnu/libfoo.so.2') == '/usr/lib/libfoo.so.2'
        assert rw.rewrite('/usr/lib/aarch64-linux-gnu/libfoo.so.2') == '/usr/lib/libfoo.so.2'
        assert rw.rewrite('/lib/i386-linux-gnu/libfoo.so.2') == '/usr/lib32/libfoo.so.2'
        assert rw.rewrite('/usr/include/x86_64-linux-gnu/foo.h') == '/usr/include/foo.h'
        assert rw.rewrite('/lib/systemd/system/hello.service') == '/usr/lib/systemd/system/hello.service'
        assert rw.rewrite('/sbin/hello') == '/usr/bin/hello'
        assert rw.rewrite('/usr/sbin/hello') == '/usr/bin/hello'
        assert rw.rewrite('/bin') == '/usr/bin'
        assert rw.rewrite('/usr/share/lintian/overrides/hello') is None
        assert rw.rewrite('/etc/hello.conf') == '/etc/hello.conf'
        assert rw.rewrite('/library/thing') == '/library/thing'

        rw = PathRewriter(extra_rules=[PathRule('/opt/hello', '/usr/lib/hello'), PathRule('/usr/share/doc', None)])
        assert rw.rewrite('/opt/hello/bin/hello') == '/usr/lib/hello/bin/hello'
        assert rw.rewrite('/usr/share/doc/hello/copyright') is None
        assert rw.rewrite('/sbin/hello') == '/usr/bin/hello'

    def test_link_targets(self):
        rw = self._rw
        assert rw.rewrite_link_target('/lib/x86_64-linux-gnu/libfoo.so', '/usr/lib/libfoo.so', 'libfoo.so.2') == (
            'libfoo.so.2'
        )
        assert rw.rewrite_link_target('/usr/bin/sh', '/usr/bin/sh', '/bin/bash') == '/usr/bin/bash'
        assert rw.rewrite_link_target('/usr/bin/hi', '/usr/bin/hi', 'hello') == 'hello'
        assert rw.rewrite_link_target('/usr/bin/tool', '/usr/bin/tool', '../../sbin/tool') == 'tool'

    def test_plan_tree(self):
        entries = [
            FileEntry('/bin', FileKind.DIRECTORY, 0o755),
            FileEntry('/bin/hello', FileKind.FILE, 0o755, size=10),
            FileEntry('/usr', FileKind.DIRECTORY, 0o755),
            FileEntry('/usr/bin', FileKind.DIRECTORY, 0o755),
            FileEntry('/usr/bin/hello-helper', FileKind.HARDLINK, linkname='/bin/hello'),
            FileEntry('/lib64', FileKind.SYMLINK, 0o777, linkname='usr/lib'),
            FileEntry('/usr/share/lintian', FileKind.DIRECTORY, 0o755),
        ]
        planned = {p.target: p for p in self._rw.plan_tree(entries)}

        assert set(planned.keys()) == {'/usr/bin', '/usr/bin/hello', '/usr', '/usr/bin/hello-helper'}
        assert planned['/usr/bin/hello'].source == '/bin/hello'
        assert planned['/usr/bin/hello'].size == 10
        assert planned['/usr/bin/hello-helper'].linkname == '/usr/bin/hello'

    def test_collisions(self):
        entries = [
            FileEntry('/bin/hello', FileKind.FILE, 0o755),
            FileEntry('/usr/bin/hello', FileKind.FILE, 0o755),
        ]
        with pytest.raises(PlanError) as e:
            self._rw.plan_tree(entries)
        assert e.value.paths == ('/bin/hello', '/usr/bin/hello')

        entries = [
            FileEntry('/lib/hello', FileKind.FILE),
            FileEntry('/usr/lib/hello/data', FileKind.FILE),
        ]
        with pytest.raises(PlanError):
            self._rw.plan_tree(entries)

        entries = [FileEntry('/usr/bin/hi', FileKind.HARDLINK, linkname='/usr/share/lintian/x')]
        with pytest.raises(PlanError):
            self._rw.plan_tree(entries)


class TestInstallScripts:
    @pytest.fixture(autouse=True)
    def setup(self):
        self._translator = InstallScriptTranslator()

    def test_no_scripts(self):
        assert self._translator.translate({}) is None
        assert self._translator.translate({'postinst': '  \n'}) is None

    def test_translate(self):
        postinst = '\n'.join(
            [
                '#!/bin/sh',
                'set -e',
                '# keep this comment: db_get is fine here',
                'if [ "$1" = "configure" ]; then',
                '    /sbin/ldconfig',
                '    invoke-rc.d hello restart',
                'fi',
                '. /usr/share/debconf/confmodule',
                '',
            ]
        )
        prerm = '#!/bin/bash\ndeb-systemd-invoke stop hello.service\n'
        install = self._translator.translate({'postinst': postinst, 'prerm': prerm})

        text = install.text
        assert 'post_install() {\n    _ferry_postinst configure\n}' in text
        assert 'post_upgrade() {\n    _ferry_postinst configure "$2"\n}' in text
        assert 'pre_remove() {\n    _ferry_prerm remove\n}' in text
        assert 'pre_install()' not in text
        assert "/bin/sh -s -- \"$@\" <<'FERRY_POSTINST_EOF'" in text
        assert '/bin/bash -s --' in text

        assert '    /usr/bin/ldconfig' in text
        assert '    systemctl restart hello' in text
        assert 'systemctl stop hello.service' in text
        assert '# keep this comment: db_get is fine here' in text
        assert '# ferry: unsupported construct "debconf", kept as-is\n. /usr/share/debconf/confmodule' in text

        assert install.warnings == ('postinst:8: unsupported construct "debconf"',)

    def test_unsupported(self):
        install = self._translator.translate(
            {'postinst': '#!/usr/bin/ruby\nputs 1\n', 'config': '#!/bin/sh\nexit 0\n'}, has_triggers=True
        )
        assert install.text == ''
        assert len(install.warnings) == 3
        assert install.warnings[0].startswith('postinst: unsupported interpreter')

        install = self._translator.translate({'postrm': 'rm -rf /var/lib/hello\n'})
        assert 'post_remove() {\n    _ferry_postrm remove\n}' in install.text
        assert not install.warnings


class TestPackagePlanner:
    @pytest.fixture(autouse=True)
    def setup(self, snapshot, monkeypatch):
        monkeypatch.delenv('SOURCE_DATE_EPOCH', raising=False)
        self._reader = ArchiveReader()
        self._mapper = DependencyMapper(snapshot)
        self._planner = PackagePlanner()

    def _plan(self, deb: DebBuilder, planner=None):
        pkg = self._reader.parse(deb.build())
        resolved = self._mapper.resolve_relations(pkg.relations)
        return (planner if planner else self._planner).plan(pkg, resolved)

    def test_plan_hello(self):
        plan = self._plan(make_hello())
        target = plan.target

        assert target.pkgname == 'hello'
        assert target.pkgbase == 'hello'
        assert target.pkgver == '2.10'
        assert target.pkgrel == '3'
        assert target.epoch == 0
        assert target.arch == 'x86_64'
        assert target.full_version == '2.10-3'
        assert target.artifact_name == 'hello-2.10-3-x86_64.pkg.tar.zst'
        assert target.pkgdesc == 'friendly greeter'
        assert target.url == 'https://example.org/hello'
        assert target.packager == 'Ferry Test Suite <ferry@example.org>'
        assert target.license == ('custom',)
        assert target.depends == ('glibc>=2.34',)
        assert target.backup == ('etc/hello.conf',)
        assert target.builddate == 1700000000
        assert target.size == sum(f.size for f in plan.files)
        assert target.size > 0

        targets = {f.target: f for f in plan.files}
        assert targets['/usr/bin/hi'].kind == FileKind.SYMLINK
        assert targets['/usr/bin/hello'].mode == 0o755
        assert plan.install_script is None
        assert not plan.warnings
        assert not plan.substitutions
        assert 'depends' in plan.resolved

        deb = make_hello()
        deb.field('Source', 'hello-src (2.10-1)')
        assert self._plan(deb).target.pkgbase == 'hello-src'

    def test_relations(self):
        deb = make_hello()
        deb.field('Pre-Depends', 'zlib1g')
        deb.field('Depends', 'libc6 (>= 2.34), libfoo2 (>= 1.2), zlib1g')
        deb.field('Recommends', 'python3-requests')
        deb.field('Suggests', 'libfoo2, python3-requests')
        deb.field('Conflicts', 'openssl')
        deb.field('Breaks', 'bash (<< 5.0), openssl')
        deb.field('Replaces', 'zlib1g')
        deb.field('Provides', 'hello-world (= 2.10), hello-data')
        target = self._plan(deb).target

        assert target.depends == ('zlib', 'glibc>=2.34', 'libfoo>=1.2')
        assert target.optdepends == (
            'python-requests: recommended by the Debian package',
            'libfoo: suggested by the Debian package',
        )
        assert target.conflicts == ('openssl', 'bash<5.0')
        assert target.replaces == ('zlib',)
        assert target.provides == ('hello-world=2.10', 'hello-data')

    def test_unresolved(self):
        deb = make_hello()
        deb.field('Depends', 'libc6, zzqqx-nothing')
        plan = self._plan(deb)
        assert plan.target.depends == ('glibc',)
        assert len(plan.unresolved) == 1
        assert plan.unresolved[0].reason == MapperWarning.UNRESOLVED

        # optional relations never count as unresolved hard dependencies
        deb = make_hello()
        deb.field('Suggests', 'zzqqx-nothing')
        plan = self._plan(deb)
        assert len(plan.warnings) == 1
        assert not plan.unresolved

    def test_versions_and_arches(self):
        deb = make_hello(version='1:2.0~rc1-0ubuntu2', architecture='all')
        plan = self._plan(deb)
        target = plan.target
        assert target.full_version == '1:2.0rc1-1'
        assert target.arch == 'any'
        assert target.artifact_name == 'hello-1:2.0rc1-1-any.pkg.tar.zst'
        assert [s.field for s in plan.substitutions] == ['pkgver', 'pkgrel']

        plan = self._plan(make_hello(architecture='mips64el'))
        assert plan.target.arch == 'mips64el'

        with pytest.raises(PlanError):
            self._plan(make_hello(architecture='hurd-i386'))

    def test_layout_and_scripts(self):
        deb = DebBuilder('hello-tools', '1.0-1')
        deb.add_file('/sbin/hello-admin', 'binary', mode=0o755)
        deb.add_file('/lib/x86_64-linux-gnu/libhello.so.1', 'lib')
        deb.add_symlink('/lib/x86_64-linux-gnu/libhello.so', 'libhello.so.1')
        deb.add_file('/usr/share/lintian/overrides/hello-tools', 'ignored')
        deb.add_script('postinst', '#!/bin/sh\nset -e\nldconfig\n')
        deb.control_extra['triggers'] = b'activate-noawait ldconfig\n'
        plan = self._plan(deb)

        targets = {f.target: f for f in plan.files}
        assert '/usr/bin/hello-admin' in targets
        assert '/usr/lib/libhello.so.1' in targets
        assert targets['/usr/lib/libhello.so'].linkname == 'libhello.so.1'
        assert not any(t.startswith('/usr/share/lintian') for t in targets)
        assert not any(t.startswith('/lib') for t in targets)

        assert 'post_install() {' in plan.install_script
        assert plan.script_warnings == ('triggers: dpkg triggers are not supported, skipped',)

        with pytest.raises(PlanError):
            deb = make_hello()
            deb.add_file('/bin/hello', 'clash')
            self._plan(deb)

    def test_source_date_epoch(self, monkeypatch):
        planner = PackagePlanner(source_date_epoch=1234567890)
        assert self._plan(make_hello(), planner).target.builddate == 1234567890

        monkeypatch.setenv('SOURCE_DATE_EPOCH', '1111111111')
        assert self._plan(make_hello(), PackagePlanner()).target.builddate == 1111111111

    def test_hooks_from_config(self, localconfig):
        localconfig.hooks.pre_build.append('true')
        localconfig.hooks.post_stage.append('touch usr/share/doc/hello/STAMP')
        plan = self._plan(make_hello(), PackagePlanner())
        assert plan.pre_build_hooks == ('true',)
        assert plan.post_stage_hooks == ('touch usr/share/doc/hello/STAMP',)
