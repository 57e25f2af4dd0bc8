# -*- coding: utf-8 -*-
#
# Copyright (C) 2024-2026 Ferry Developers
#
# SPDX-License-Identifier: LGPL-3.0+

import io
import os
import time
import hashlib
import tarfile

import pytest
import zstandard

from ferry.mapper import ArchPackage, MappingSnapshot, StaticPackageIndex
from ferry.logging import set_verbose
from ferry.localconfig import LocalConfig

# unconditionally enable verbose mode
set_verbose(True)


def build_ar(members):
    '''
    Create an ar archive from a list of (name, data) tuples.
    '''
    out = bytearray(b'!<arch>\n')
    for name, data in members:
        hdr = '{:<16}{:<12}{:<6}{:<6}{:<8}{:<10}'.format(name, 1700000000, 0, 0, '100644', len(data))
        out += hdr.encode('ascii') + b'`\n'
        out += data
        if len(data) % 2:
            out += b'\n'
    return bytes(out)


def build_tarball(entries, compression):
    buf = io.BytesIO()
    mode = 'w:' + compression if compression in ('gz', 'xz', 'bz2') else 'w'
    with tarfile.open(fileobj=buf, mode=mode, format=tarfile.GNU_FORMAT) as tar:
        for tinfo, data in entries:
            tar.addfile(tinfo, io.BytesIO(data) if data is not None else None)
    raw = buf.getvalue()
    if compression == 'zst':
        raw = zstandard.ZstdCompressor().compress(raw)
    return raw


class DebBuilder:
    '''
    Assemble Debian binary packages for tests.
    '''

    def __init__(self, name='hello', version='1.0-1', architecture='amd64'):
        self.control = {
            'Package': name,
            'Version': version,
            'Architecture': architecture,
            'Maintainer': 'Jane Doe <jane@example.org>',
            'Installed-Size': '20',
            'Section': 'misc',
            'Priority': 'optional',
            'Homepage': 'https://example.org/hello',
            'Description': 'friendly greeter\n This package greets the world.\n .\n It is very polite.',
        }
        self.scripts = {}
        self.conffiles = []
        self.control_extra = {}
        self.control_compression = 'gz'
        self.data_compression = 'xz'
        self.mtime = 1700000000
        self._entries = []
        self._dirs = set()
        self._md5sums = {}

    def field(self, key, value):
        self.control[key] = value
        return self

    def _tinfo(self, path, kind, mode):
        tinfo = tarfile.TarInfo('.' + path)
        tinfo.type = kind
        tinfo.mode = mode
        tinfo.mtime = self.mtime
        tinfo.uname = 'root'
        tinfo.gname = 'root'
        return tinfo

    def _ensure_parents(self, path):
        parts = path.strip('/').split('/')[:-1]
        cur = ''
        for part in parts:
            cur = cur + '/' + part
            self.add_dir(cur)

    def add_dir(self, path, mode=0o755):
        if path in self._dirs:
            return self
        self._ensure_parents(path)
        self._dirs.add(path)
        self._entries.append((self._tinfo(path + '/', tarfile.DIRTYPE, mode), None))
        return self

    def add_file(self, path, data, mode=0o644):
        if isinstance(data, str):
            data = data.encode('utf-8')
        self._ensure_parents(path)
        tinfo = self._tinfo(path, tarfile.REGTYPE, mode)
        tinfo.size = len(data)
        self._entries.append((tinfo, data))
        self._md5sums[path.lstrip('/')] = hashlib.md5(data).hexdigest()
        return self

    def add_symlink(self, path, target):
        self._ensure_parents(path)
        tinfo = self._tinfo(path, tarfile.SYMTYPE, 0o777)
        tinfo.linkname = target
        self._entries.append((tinfo, None))
        return self

    def add_hardlink(self, path, target):
        self._ensure_parents(path)
        tinfo = self._tinfo(path, tarfile.LNKTYPE, 0o644)
        tinfo.linkname = '.' + target
        self._entries.append((tinfo, None))
        return self

    def add_script(self, name, text):
        self.scripts[name] = text
        return self

    def add_conffile(self, path, data):
        self.add_file(path, data)
        self.conffiles.append(path)
        return self

    def control_text(self):
        lines = []
        for key, value in self.control.items():
            if value is None:
                continue
            lines.append('{}: {}'.format(key, value))
        return '\n'.join(lines) + '\n'

    def control_tarball(self):
        files = [('control', self.control_text().encode('utf-8'), 0o644)]
        if self._md5sums:
            text = ''.join('{}  {}\n'.format(h, p) for p, h in self._md5sums.items())
            files.append(('md5sums', text.encode('utf-8'), 0o644))
        if self.conffiles:
            files.append(('conffiles', ''.join(c + '\n' for c in self.conffiles).encode('utf-8'), 0o644))
        for name, text in self.scripts.items():
            files.append((name, text.encode('utf-8'), 0o755))
        for name, data in self.control_extra.items():
            files.append((name, data, 0o644))

        entries = [(self._tinfo('/', tarfile.DIRTYPE, 0o755), None)]
        for name, data, mode in files:
            tinfo = self._tinfo('/' + name, tarfile.REGTYPE, mode)
            tinfo.size = len(data)
            entries.append((tinfo, data))
        return build_tarball(entries, self.control_compression)

    def data_tarball(self):
        root = self._tinfo('/', tarfile.DIRTYPE, 0o755)
        return build_tarball([(root, None)] + self._entries, self.data_compression)

    def members(self):
        control_suffix = '.' + self.control_compression if self.control_compression else ''
        data_suffix = '.' + self.data_compression if self.data_compression else ''
        return [
            ('debian-binary', b'2.0\n'),
            ('control.tar' + control_suffix, self.control_tarball()),
            ('data.tar' + data_suffix, self.data_tarball()),
        ]

    def build(self):
        return build_ar(self.members())

    def write(self, directory, fname=None):
        if not fname:
            version = self.control['Version'].split(':')[-1]
            fname = '{}_{}_{}.deb'.format(self.control['Package'], version, self.control['Architecture'])
        path = os.path.join(str(directory), fname)
        with open(path, 'wb') as f:
            f.write(self.build())
        return path


def make_hello(name='hello', version='2.10-3', architecture='amd64'):
    '''A small, but complete package.'''
    deb = DebBuilder(name, version, architecture)
    deb.field('Depends', 'libc6 (>= 2.34)')
    deb.add_file('/usr/bin/hello', b'#!/bin/sh\necho "Hello World"\n', mode=0o755)
    deb.add_file('/usr/share/doc/hello/copyright', 'Copyright: 2024 Jane Doe\n')
    deb.add_conffile('/etc/hello.conf', 'greeting = hello\n')
    deb.add_symlink('/usr/bin/hi', 'hello')
    return deb


@pytest.fixture(autouse=True)
def localconfig(tmp_path):
    '''
    Retrieve a Ferry LocalConfig object which is set up for testing,
    with all its directories in a temporary location.
    '''
    LocalConfig.reset()
    cache_dir = tmp_path / 'cache'
    data = {
        'CacheLocation': str(cache_dir),
        'Workspace': str(tmp_path / 'work'),
        'Packager': 'Ferry Test Suite <ferry@example.org>',
        'Mapper': {
            'snapshot_dir': str(tmp_path / 'mappings'),
        },
        'Sandbox': {
            'executor': 'process',
            'allow_root': True,
            'compression_level': 3,
            'work_root': str(tmp_path / 'sandbox'),
        },
        'Scheduler': {
            'workers': 2,
            'job_timeout': 120,
        },
    }
    conf = LocalConfig(data=data)
    yield conf
    LocalConfig.reset()


@pytest.fixture
def sandbox_root(localconfig):
    return localconfig.sandbox_root


@pytest.fixture
def deb_builder():
    '''Factory for test package builders.'''
    return DebBuilder


@pytest.fixture
def hello_deb(tmp_path):
    indir = tmp_path / 'in'
    indir.mkdir(exist_ok=True)
    return make_hello().write(indir)


@pytest.fixture
def arch_index():
    '''
    A small pool of Arch packages to map dependencies to.
    '''
    return StaticPackageIndex(
        [
            ArchPackage('glibc', '2.39+r52-1', ('libc.so=6-64', 'libm.so=6-64')),
            ArchPackage('zlib', '1:1.3.1-2', ('libz.so=1-64',)),
            ArchPackage('libfoo', '1.5-1', ('libfoo.so=2-64',)),
            ArchPackage('openssl', '3.3.1-1', ('libssl.so=3-64', 'libcrypto.so=3-64')),
            ArchPackage('python', '3.12.4-1'),
            ArchPackage('python-requests', '2.32.3-1'),
            ArchPackage('bash', '5.2.026-2', ('sh',)),
            ArchPackage('gtk3', '1:3.24.43-1', ('libgtk-3.so=0-64', 'libgdk-3.so=0-64')),
            ArchPackage('libxml2', '2.12.7-1', ('libxml2.so=2-64',)),
        ]
    )


@pytest.fixture
def snapshot(arch_index):
    return MappingSnapshot.initial().with_packages(arch_index.packages())


def wait_for(predicate, timeout=10.0):
    start = time.monotonic()
    while time.monotonic() - start < timeout:
        if predicate():
            return True
        time.sleep(0.05)
    return False
