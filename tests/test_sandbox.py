# -*- coding: utf-8 -*-
#
# Copyright (C) 2024-2026 Ferry Developers
#
# SPDX-License-Identifier: LGPL-3.0+

import os
import gzip
import shutil
import hashlib
import tarfile
import dataclasses

import pytest
import zstandard

from ferry.utils import Deadline
from ferry.errors import BuildError, ArchiveError, JobTimeoutError
from ferry.mapper import DependencyMapper
from ferry.archive import ArchiveReader
from ferry.planner import PackagePlanner
from ferry.sandbox import (
    SandboxBuilder,
    SandboxSession,
    ProcessExecutor,
    BubblewrapExecutor,
    create_executor,
    read_package_info,
    read_package_contents,
)
from ferry.localconfig import LocalConfig

from .conftest import DebBuilder, make_hello


def read_members(fname):
    '''
    Read all members of a package file into a dict of name -> (TarInfo, data).
    '''
    result = {}
    with open(fname, 'rb') as f:
        with zstandard.ZstdDecompressor().stream_reader(f, read_across_frames=True) as reader:
            with tarfile.open(fileobj=reader, mode='r|') as tar:
                for tinfo in tar:
                    data = None
                    if tinfo.isfile():
                        data = tar.extractfile(tinfo).read()
                    result[tinfo.name] = (tinfo, data)
    return result


def sha256_of(fname):
    with open(fname, 'rb') as f:
        return hashlib.sha256(f.read()).hexdigest()


class TestSession:
    def test_lifecycle(self, sandbox_root):
        session = SandboxSession(sandbox_root, 'hello-2.10-3-x86_64')
        assert not session.active
        assert session.build_id.startswith('hello-2.10-3-x86_64-')
        with pytest.raises(RuntimeError):
            session.path

        with session:
            path = session.path
            assert session.active
            assert os.path.isdir(session.staging_dir)
            assert os.path.isdir(session.meta_dir)
            assert os.path.isdir(session.out_dir)
            assert os.path.dirname(path) == sandbox_root
            assert (os.stat(path).st_mode & 0o777) == 0o700

        assert not os.path.exists(path)
        assert session.destroyed
        # no-op
        session.destroy()
        with pytest.raises(RuntimeError):
            session.create()

    def test_destroy_readonly_tree(self, sandbox_root):
        session = SandboxSession(sandbox_root, 'readonly')
        session.create()
        subdir = os.path.join(session.staging_dir, 'usr')
        os.mkdir(subdir)
        with open(os.path.join(subdir, 'file'), 'w') as f:
            f.write('data')
        os.chmod(subdir, 0o500)

        session.destroy()
        assert os.listdir(sandbox_root) == []


def test_executors(localconfig, tmp_path):
    executor = create_executor()
    assert isinstance(executor, ProcessExecutor)
    out, err, ret = executor.run('echo "$FOO"; echo bar >&2; exit 4', cwd=str(tmp_path), env={'FOO': 'foo'})
    assert out == 'foo\n'
    assert err == 'bar\n'
    assert ret == 4

    bwrap = BubblewrapExecutor('/usr/bin/bwrap')
    cmd = bwrap.command_for('make install', tmp_path)
    assert cmd[0] == '/usr/bin/bwrap'
    assert '--unshare-all' in cmd
    assert cmd[cmd.index('--bind') + 1] == str(tmp_path)
    assert cmd[cmd.index('--chdir') + 1] == str(tmp_path)
    assert cmd[-3:] == ['/bin/sh', '-c', 'make install']

    LocalConfig.reset()
    with pytest.raises(ValueError):
        create_executor(LocalConfig(data={'Sandbox': {'executor': 'chroot'}}))


def test_executor_selection(monkeypatch):
    LocalConfig.reset()
    conf = LocalConfig(data={})
    assert conf.executor == 'auto'

    monkeypatch.setattr(shutil, 'which', lambda name: '/opt/bin/' + name)
    executor = create_executor(conf)
    assert isinstance(executor, BubblewrapExecutor)
    assert executor.command_for('true', '/tmp')[0] == '/opt/bin/bwrap'

    monkeypatch.setattr(shutil, 'which', lambda name: None)
    monkeypatch.setattr(os, 'geteuid', lambda: 1000)
    assert isinstance(create_executor(conf), ProcessExecutor)
    LocalConfig.reset()


def test_executor_refuses_root(monkeypatch):
    monkeypatch.setattr(os, 'geteuid', lambda: 0)
    with pytest.raises(ValueError) as e:
        ProcessExecutor()
    assert 'allow_root' in str(e.value)

    executor = ProcessExecutor(allow_root=True)
    assert executor.user is None

    # without bwrap, the fallback is held to the same rule
    LocalConfig.reset()
    monkeypatch.setattr(shutil, 'which', lambda name: None)
    with pytest.raises(ValueError):
        create_executor(LocalConfig(data={}))
    LocalConfig.reset()
    assert isinstance(create_executor(LocalConfig(data={'Sandbox': {'allow_root': True}})), ProcessExecutor)
    LocalConfig.reset()


class TestSandboxBuilder:
    @pytest.fixture(autouse=True)
    def setup(self, tmp_path, snapshot, sandbox_root, monkeypatch):
        monkeypatch.delenv('SOURCE_DATE_EPOCH', raising=False)
        self._reader = ArchiveReader()
        self._mapper = DependencyMapper(snapshot)
        self._planner = PackagePlanner()
        self._out_dir = str(tmp_path / 'out')
        self._sandbox_root = sandbox_root
        self._builder = SandboxBuilder(self._out_dir, reader=self._reader)
        self._indir = tmp_path / 'in'
        self._indir.mkdir(exist_ok=True)

    def _plan(self, deb: DebBuilder):
        pkg = self._reader.parse(deb.write(self._indir))
        return self._planner.plan(pkg, self._mapper.resolve_relations(pkg.relations))

    def _assert_sandbox_clean(self):
        assert not os.path.exists(self._sandbox_root) or os.listdir(self._sandbox_root) == []

    def test_build(self):
        plan = self._plan(make_hello())
        artifact = self._builder.build(plan)

        assert artifact.filename == 'hello-2.10-3-x86_64.pkg.tar.zst'
        assert artifact.path == os.path.join(self._out_dir, artifact.filename)
        assert artifact.pkgname == 'hello'
        assert artifact.version == '2.10-3'
        assert artifact.arch == 'x86_64'
        assert artifact.size == os.path.getsize(artifact.path)
        assert artifact.sha256 == sha256_of(artifact.path)
        assert os.listdir(self._out_dir) == [artifact.filename]
        self._assert_sandbox_clean()

        info = read_package_info(artifact.path)
        assert info['pkgname'] == ['hello']
        assert info['pkgver'] == ['2.10-3']
        assert info['arch'] == ['x86_64']
        assert info['depend'] == ['glibc>=2.34']
        assert info['backup'] == ['etc/hello.conf']
        assert info['packager'] == ['Ferry Test Suite <ferry@example.org>']
        assert info['builddate'] == ['1700000000']
        assert info['size'] == [str(plan.target.size)]

        _, names = read_package_contents(artifact.path)
        assert names[:3] == ['.PKGINFO', '.BUILDINFO', '.MTREE']
        assert names[3:] == sorted(names[3:])
        assert '.INSTALL' not in names

        members = read_members(artifact.path)
        tinfo, data = members['usr/bin/hello']
        assert data == b'#!/bin/sh\necho "Hello World"\n'
        assert tinfo.mode == 0o755
        assert tinfo.uname == 'root'
        assert tinfo.mtime == 1700000000
        tinfo, _ = members['usr/bin/hi']
        assert tinfo.issym()
        assert tinfo.linkname == 'hello'
        assert members['etc/hello.conf'][1] == b'greeting = hello\n'
        assert members['usr/share/doc/hello'][0].isdir()

        mtree = gzip.decompress(members['.MTREE'][1]).decode('utf-8')
        assert mtree.startswith('#mtree\n')
        hello_line = [l for l in mtree.splitlines() if l.startswith('./usr/bin/hello ')][0]
        assert 'mode=755' in hello_line
        assert 'sha256digest={}'.format(hashlib.sha256(members['usr/bin/hello'][1]).hexdigest()) in hello_line

        buildinfo = members['.BUILDINFO'][1].decode('utf-8')
        assert 'format = 2' in buildinfo
        assert 'pkgarch = x86_64' in buildinfo

    def test_reproducible(self):
        plan = self._plan(make_hello())
        first = self._builder.build(plan)
        first_sha = sha256_of(first.path)

        second = self._builder.build(self._plan(make_hello()))
        assert second.path == first.path
        assert second.sha256 == first_sha
        assert os.listdir(self._out_dir) == [first.filename]

    def test_install_script_and_hardlinks(self):
        deb = DebBuilder('tools', '1.0-1')
        deb.add_file('/usr/bin/tool', b'#!/bin/sh\necho tool\n', mode=0o755)
        deb.add_hardlink('/usr/bin/tool-alias', '/usr/bin/tool')
        deb.add_script('postinst', '#!/bin/sh\nset -e\necho installed\n')
        artifact = self._builder.build(self._plan(deb))

        _, names = read_package_contents(artifact.path)
        assert names[:4] == ['.PKGINFO', '.BUILDINFO', '.MTREE', '.INSTALL']

        members = read_members(artifact.path)
        assert 'post_install() {' in members['.INSTALL'][1].decode('utf-8')
        tinfo, _ = members['usr/bin/tool-alias']
        assert tinfo.islnk()
        assert tinfo.linkname == 'usr/bin/tool'

    def test_hooks(self):
        plan = self._plan(make_hello())
        plan = dataclasses.replace(
            plan,
            pre_build_hooks=('test -d "$FERRY_STAGING_DIR"',),
            post_stage_hooks=(
                'test -x usr/bin/hello',
                'printf "%s %s" "$FERRY_PKGNAME" "$FERRY_PKGVER" > usr/share/doc/hello/BUILD',
            ),
        )
        artifact = self._builder.build(plan)

        members = read_members(artifact.path)
        tinfo, data = members['usr/share/doc/hello/BUILD']
        assert data == b'hello 2.10-3'
        assert tinfo.uname == 'root'

        info = read_package_info(artifact.path)
        assert info['size'] == [str(plan.target.size + len(b'hello 2.10-3'))]

    def test_failing_hook(self):
        plan = dataclasses.replace(self._plan(make_hello()), post_stage_hooks=('echo "no space left" >&2; exit 3',))
        with pytest.raises(BuildError) as e:
            self._builder.build(plan)

        assert e.value.stage == 'hook'
        assert 'exit code 3' in str(e.value)
        assert 'no space left' in e.value.stderr
        self._assert_sandbox_clean()
        assert not os.path.exists(self._out_dir) or os.listdir(self._out_dir) == []

    def test_checksum_mismatch(self):
        deb = make_hello()
        deb._md5sums['usr/bin/hello'] = '0' * 32
        with pytest.raises(ArchiveError) as e:
            self._builder.build(self._plan(deb))
        assert e.value.member == 'data.tar.xz'
        self._assert_sandbox_clean()

    def test_deadline(self):
        plan = self._plan(make_hello())
        with pytest.raises(JobTimeoutError):
            self._builder.build(plan, deadline=Deadline(0))
        self._assert_sandbox_clean()

        plan = dataclasses.replace(plan, post_stage_hooks=('sleep 10',))
        with pytest.raises(JobTimeoutError):
            self._builder.build(plan, deadline=Deadline(1))
        self._assert_sandbox_clean()

    def test_removed_session_does_not_publish(self, monkeypatch):
        plan = self._plan(make_hello())
        session = self._builder.new_session(plan)
        verify = self._builder._verify

        def verify_then_remove(*args):
            verify(*args)
            session.destroy()

        monkeypatch.setattr(self._builder, '_verify', verify_then_remove)
        with session:
            with pytest.raises(BuildError) as e:
                self._builder.build(plan, session=session)

        assert e.value.stage == 'publish'
        assert 'removed before publishing' in str(e.value)
        assert session.result is None
        assert not os.path.exists(self._out_dir) or os.listdir(self._out_dir) == []
        self._assert_sandbox_clean()
