# -*- coding: utf-8 -*-
#
# Copyright (C) 2024-2026 Ferry Developers
#
# SPDX-License-Identifier: LGPL-3.0+

'''
Reading and writing of the pacman binary package format.
'''

import io
import os
import gzip
import stat
import hashlib
import tarfile
from contextlib import contextmanager
from dataclasses import dataclass

import zstandard

import ferry.typing as T
from ferry import __version__
from ferry.utils import Deadline
from ferry.planner import BuildPlan, PlannedFile, TargetMetadata

# metadata files in the order they are stored in front of the payload
METADATA_FILES = ('.PKGINFO', '.BUILDINFO', '.MTREE', '.INSTALL')

READ_CHUNK_SIZE = 1024 * 256

# characters which don't need escaping in mtree paths
_MTREE_SAFE = frozenset(
    'abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789' + '/._-+@,:%=~^'
)


def render_pkginfo(target: TargetMetadata) -> str:
    '''
    Generate the content of a .PKGINFO file, in the field order makepkg uses.
    '''
    lines = ['# Generated by ferry {}'.format(__version__)]
    lines.append('pkgname = {}'.format(target.pkgname))
    lines.append('pkgbase = {}'.format(target.pkgbase if target.pkgbase else target.pkgname))
    lines.append('xdata = pkgtype=pkg')
    lines.append('pkgver = {}'.format(target.full_version))
    lines.append('pkgdesc = {}'.format(target.pkgdesc))
    if target.url:
        lines.append('url = {}'.format(target.url))
    lines.append('builddate = {}'.format(target.builddate))
    lines.append('packager = {}'.format(target.packager))
    lines.append('size = {}'.format(target.size))
    lines.append('arch = {}'.format(target.arch))

    for key, values in (
        ('license', target.license),
        ('replaces', target.replaces),
        ('conflict', target.conflicts),
        ('provides', target.provides),
        ('backup', target.backup),
        ('depend', target.depends),
        ('optdepend', target.optdepends),
    ):
        for value in values:
            lines.append('{} = {}'.format(key, value))
    return '\n'.join(lines) + '\n'


def parse_pkginfo(text: str) -> T.Dict[str, T.List[str]]:
    '''
    Parse a .PKGINFO file into a dictionary of lists, as every key may occur more than once.
    '''
    result: T.Dict[str, T.List[str]] = {}
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith('#'):
            continue
        key, sep, value = line.partition(' = ')
        if not sep:
            raise ValueError('Invalid .PKGINFO line: {}'.format(line))
        result.setdefault(key.strip(), []).append(value.strip())
    return result


def render_buildinfo(plan: BuildPlan) -> str:
    target = plan.target
    # identifies the exact recipe this package was built from
    recipe = hashlib.sha256()
    recipe.update(render_pkginfo(target).encode('utf-8'))
    for f in plan.files:
        recipe.update('{}\0{}\0{}\0{:o}\n'.format(f.source, f.target, f.kind.value, f.mode).encode('utf-8'))
    if plan.install_script:
        recipe.update(plan.install_script.encode('utf-8'))

    lines = [
        'format = 2',
        'pkgname = {}'.format(target.pkgname),
        'pkgbase = {}'.format(target.pkgbase if target.pkgbase else target.pkgname),
        'pkgver = {}'.format(target.full_version),
        'pkgarch = {}'.format(target.arch),
        'pkgbuild_sha256sum = {}'.format(recipe.hexdigest()),
        'packager = {}'.format(target.packager),
        'builddate = {}'.format(target.builddate),
        'builddir = /build',
        'startdir = /startdir',
        'buildtool = ferry',
        'buildtoolver = {}'.format(__version__),
        'buildenv = !distcc',
        'options = !strip',
        'options = !debug',
    ]
    return '\n'.join(lines) + '\n'


def _mtree_escape(path: str) -> str:
    res = []
    for c in path:
        if c in _MTREE_SAFE:
            res.append(c)
        else:
            for b in c.encode('utf-8'):
                res.append('\\{:03o}'.format(b))
    return ''.join(res)


@dataclass(frozen=True)
class PackageMember:
    '''
    A file which will be written into the package archive.
    :source is the file on disk, None for directories and links.
    '''

    name: str
    kind: str
    mode: int
    mtime: int
    uid: int = 0
    gid: int = 0
    uname: str = 'root'
    gname: str = 'root'
    size: int = 0
    linkname: T.Optional[str] = None
    source: T.Optional[str] = None


def collect_members(root: T.PathUnion, planned: T.Mapping[str, PlannedFile], default_mtime: int) -> T.List[PackageMember]:
    '''
    Collect the payload below :root, sorted by name.

    Ownership, modes and timestamps are taken from the plan where it knows the
    file, files created by hooks belong to root. Files sharing an inode are
    stored as hard links to the first of them.
    '''
    root = os.fspath(root)
    members = []
    seen_inodes: T.Dict[T.Tuple[int, int], str] = {}

    paths = []
    for dirpath, dirnames, filenames in os.walk(root):
        for name in dirnames + filenames:
            paths.append(os.path.join(dirpath, name))
    rel_paths = sorted(os.path.relpath(p, root) for p in paths)

    for rel in rel_paths:
        fname = os.path.join(root, rel)
        st = os.lstat(fname)
        pf = planned.get('/' + rel)
        mode = pf.mode if pf else stat.S_IMODE(st.st_mode)
        mtime = pf.mtime if pf else default_mtime
        owner = dict(uid=pf.uid, gid=pf.gid, uname=pf.uname, gname=pf.gname) if pf else {}

        if stat.S_ISDIR(st.st_mode):
            members.append(PackageMember(rel, 'dir', mode, mtime, **owner))
        elif stat.S_ISLNK(st.st_mode):
            members.append(PackageMember(rel, 'link', 0o777, mtime, linkname=os.readlink(fname), **owner))
        elif stat.S_ISREG(st.st_mode):
            key = (st.st_dev, st.st_ino)
            if st.st_nlink > 1 and key in seen_inodes:
                members.append(PackageMember(rel, 'hardlink', mode, mtime, linkname=seen_inodes[key], **owner))
                continue
            seen_inodes[key] = rel
            members.append(PackageMember(rel, 'file', mode, mtime, size=st.st_size, source=fname, **owner))
        else:
            raise ValueError('Unsupported file type in package tree: {}'.format(rel))
    return members


def _file_digests(fname: str) -> T.Tuple[str, str]:
    md5 = hashlib.md5()
    sha256 = hashlib.sha256()
    with open(fname, 'rb') as f:
        while True:
            chunk = f.read(READ_CHUNK_SIZE)
            if not chunk:
                break
            md5.update(chunk)
            sha256.update(chunk)
    return md5.hexdigest(), sha256.hexdigest()


def render_mtree(members: T.Sequence[PackageMember]) -> bytes:
    '''
    Generate the gzip-compressed .MTREE file pacman uses to validate installed files.
    '''
    by_name = {m.name: m for m in members}
    lines = ['#mtree', '/set type=file uid=0 gid=0 mode=644']
    for m in members:
        parts = ['./' + _mtree_escape(m.name), 'time={}.0'.format(m.mtime)]
        if m.uid != 0:
            parts.append('uid={}'.format(m.uid))
        if m.gid != 0:
            parts.append('gid={}'.format(m.gid))
        if m.kind == 'dir':
            parts.append('mode={:o}'.format(m.mode))
            parts.append('type=dir')
        elif m.kind == 'link':
            parts.append('mode=777')
            parts.append('type=link')
            parts.append('link=' + _mtree_escape(m.linkname))
        else:
            if m.mode != 0o644:
                parts.append('mode={:o}'.format(m.mode))
            if m.kind == 'hardlink':
                # hard links carry the digest of the file they point to
                target = by_name[m.linkname]
                size, source = target.size, target.source
            else:
                size, source = m.size, m.source
            parts.append('size={}'.format(size))
            md5, sha256 = _file_digests(source)
            parts.append('md5digest={}'.format(md5))
            parts.append('sha256digest={}'.format(sha256))
        lines.append(' '.join(parts))

    buf = io.BytesIO()
    with gzip.GzipFile(fileobj=buf, mode='wb', mtime=0) as gz:
        gz.write(('\n'.join(lines) + '\n').encode('utf-8'))
    return buf.getvalue()


def _tarinfo_for(m: PackageMember) -> tarfile.TarInfo:
    tinfo = tarfile.TarInfo(m.name)
    tinfo.mode = m.mode
    tinfo.mtime = m.mtime
    tinfo.uid = m.uid
    tinfo.gid = m.gid
    tinfo.uname = m.uname
    tinfo.gname = m.gname
    if m.kind == 'dir':
        tinfo.type = tarfile.DIRTYPE
    elif m.kind == 'link':
        tinfo.type = tarfile.SYMTYPE
        tinfo.linkname = m.linkname
    elif m.kind == 'hardlink':
        tinfo.type = tarfile.LNKTYPE
        tinfo.linkname = m.linkname
    else:
        tinfo.type = tarfile.REGTYPE
        tinfo.size = m.size
    return tinfo


def write_package(
    fname: T.PathUnion,
    metadata: T.Sequence[T.Tuple[str, bytes]],
    members: T.Sequence[PackageMember],
    *,
    mtime: int,
    level: int = 19,
    deadline: T.Optional[Deadline] = None,
):
    '''
    Write a zstd-compressed package tarball.

    The metadata files come first, followed by the payload in the given order.
    Since every header value is taken from the arguments, identical input
    always produces an identical file.
    '''
    cctx = zstandard.ZstdCompressor(level=level, write_checksum=True)
    with open(fname, 'wb') as f:
        with cctx.stream_writer(f, closefd=False) as writer:
            with tarfile.open(fileobj=writer, mode='w|', format=tarfile.PAX_FORMAT) as tar:
                for name, data in metadata:
                    tinfo = tarfile.TarInfo(name)
                    tinfo.size = len(data)
                    tinfo.mode = 0o644
                    tinfo.mtime = mtime
                    tinfo.uname = 'root'
                    tinfo.gname = 'root'
                    tar.addfile(tinfo, io.BytesIO(data))

                for m in members:
                    if deadline:
                        deadline.check('building')
                    tinfo = _tarinfo_for(m)
                    if tinfo.type == tarfile.REGTYPE:
                        with open(m.source, 'rb') as src:
                            tar.addfile(tinfo, src)
                    else:
                        tar.addfile(tinfo)
        f.flush()
        os.fsync(f.fileno())


@contextmanager
def _open_package(fname: T.PathUnion):
    with open(fname, 'rb') as f:
        dctx = zstandard.ZstdDecompressor()
        with dctx.stream_reader(f, read_across_frames=True, closefd=False) as reader:
            with tarfile.open(fileobj=reader, mode='r|') as tar:
                yield tar


def read_package_info(fname: T.PathUnion) -> T.Dict[str, T.List[str]]:
    '''
    Read the .PKGINFO metadata of a .pkg.tar.zst file.
    '''
    with _open_package(fname) as tar:
        for tinfo in tar:
            if tinfo.name == '.PKGINFO' and tinfo.isfile():
                data = tar.extractfile(tinfo).read()
                return parse_pkginfo(data.decode('utf-8'))
    raise ValueError('Package {} has no .PKGINFO file'.format(os.fspath(fname)))


def read_package_contents(fname: T.PathUnion) -> T.Tuple[T.Dict[str, T.List[str]], T.List[str]]:
    '''
    Read a complete .pkg.tar.zst file.

    :return: Tuple of the parsed .PKGINFO and the names of all archive members, in archive order.
    '''
    info = None
    names = []
    with _open_package(fname) as tar:
        for tinfo in tar:
            names.append(tinfo.name)
            if tinfo.name == '.PKGINFO' and tinfo.isfile():
                info = parse_pkginfo(tar.extractfile(tinfo).read().decode('utf-8'))
    if info is None:
        raise ValueError('Package {} has no .PKGINFO file'.format(os.fspath(fname)))
    return info, names
