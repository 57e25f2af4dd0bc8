# -*- coding: utf-8 -*-
#
# Copyright (C) 2024-2026 Ferry Developers
#
# SPDX-License-Identifier: LGPL-3.0+

import io
import zlib
import lzma
import hashlib
import tarfile
from types import MappingProxyType
from contextlib import contextmanager

import zstandard

import ferry.typing as T
from ferry.utils import Deadline, normalize_member_path
from ferry.errors import ArchiveError, JobTimeoutError
from ferry.logging import log
from ferry.archive.arfile import ArMember, open_member, read_ar_members
from ferry.archive.control import (
    ControlSyntaxError,
    parse_md5sums,
    parse_conffiles,
    split_description,
    parse_control_stanza,
    parse_relation_field,
)
from ferry.archive.package import (
    RELATION_FIELDS,
    MAINTAINER_SCRIPT_NAMES,
    FileKind,
    FileEntry,
    DebVersion,
    ArchiveOrigin,
    SourcePackage,
    PackageRelations,
)

# compression suffixes of control.tar / data.tar members we can read
TARBALL_COMPRESSION = {
    '': '',
    '.gz': 'gz',
    '.xz': 'xz',
    '.lzma': 'xz',
    '.bz2': 'bz2',
    '.zst': 'zst',
}

# errors that signal a broken or truncated compressed stream
STREAM_ERRORS = (tarfile.TarError, EOFError, OSError, zlib.error, lzma.LZMAError, zstandard.ZstdError)

# control tarball files we keep
CONTROL_MEMBER_FILES = ('control', 'md5sums', 'conffiles', 'triggers', 'shlibs', 'symbols') + MAINTAINER_SCRIPT_NAMES

# the control tarball should be tiny, refuse to read anything bigger than this
MAX_CONTROL_FILE_SIZE = 16 * 1024 * 1024

# control fields that end up in the SourcePackage attributes
_KNOWN_FIELDS = {
    'package',
    'version',
    'architecture',
    'maintainer',
    'description',
    'installed-size',
    'homepage',
    'section',
    'priority',
    'source',
} | {f.lower() for _, f in RELATION_FIELDS}


def tarball_compression(member_name: str) -> str:
    '''
    Return the compression kind of a ``control.tar*`` or ``data.tar*`` member.
    '''
    base, sep, suffix = member_name.partition('.tar')
    if not sep or base not in ('control', 'data'):
        raise ArchiveError(member_name, 'not a tarball member')
    comp = TARBALL_COMPRESSION.get(suffix)
    if comp is None:
        raise ArchiveError(member_name, 'unsupported compression "{}"'.format(suffix.lstrip('.')))
    return comp


class _GuardedFile(io.RawIOBase):
    '''
    File object for a tarball entry, which reports decompression
    failures as an ArchiveError for the member they occurred in.
    '''

    def __init__(self, fileobj, member_name: str):
        super().__init__()
        self._f = fileobj
        self._member_name = member_name

    def readable(self):
        return True

    def read(self, size=-1):
        try:
            return self._f.read(size)
        except (ArchiveError, JobTimeoutError):
            raise
        except STREAM_ERRORS as e:
            raise ArchiveError(self._member_name, 'corrupt or truncated stream: {}'.format(e)) from e

    def readinto(self, b):
        data = self.read(len(b))
        b[: len(data)] = data
        return len(data)


@contextmanager
def _open_tarball(fileobj: T.BinaryIO, member: ArMember, deadline: T.Optional[Deadline]):
    comp = tarball_compression(member.name)
    stream = open_member(fileobj, member, deadline)
    zreader = None
    try:
        try:
            if comp == 'zst':
                zreader = zstandard.ZstdDecompressor().stream_reader(stream, read_across_frames=True, closefd=False)
                tar = tarfile.open(fileobj=zreader, mode='r|')
            else:
                tar = tarfile.open(fileobj=stream, mode='r|' + comp)
        except (ArchiveError, JobTimeoutError):
            raise
        except STREAM_ERRORS as e:
            raise ArchiveError(member.name, 'corrupt or truncated stream: {}'.format(e)) from e

        with tar:
            yield tar
    finally:
        if zreader is not None:
            zreader.close()
        stream.close()


def _iter_tarball(tar: tarfile.TarFile, member_name: str) -> T.Iterator[tarfile.TarInfo]:
    it = iter(tar)
    while True:
        try:
            tinfo = next(it)
        except StopIteration:
            return
        except (ArchiveError, JobTimeoutError):
            raise
        except STREAM_ERRORS as e:
            raise ArchiveError(member_name, 'corrupt or truncated stream: {}'.format(e)) from e
        yield tinfo


def _file_entry_for(tinfo: tarfile.TarInfo, member_name: str) -> T.Optional[FileEntry]:
    try:
        path = normalize_member_path(tinfo.name)
    except ValueError as e:
        raise ArchiveError(member_name, str(e))
    if path is None:
        return None

    linkname = None
    if tinfo.isdir():
        kind = FileKind.DIRECTORY
    elif tinfo.issym():
        kind = FileKind.SYMLINK
        linkname = tinfo.linkname
    elif tinfo.islnk():
        kind = FileKind.HARDLINK
        try:
            linkname = normalize_member_path(tinfo.linkname)
        except ValueError as e:
            raise ArchiveError(member_name, str(e))
    elif tinfo.isreg():
        kind = FileKind.FILE
    else:
        raise ArchiveError(member_name, 'unsupported entry type for "{}"'.format(path))

    uname = tinfo.uname if tinfo.uname else ('root' if tinfo.uid == 0 else str(tinfo.uid))
    gname = tinfo.gname if tinfo.gname else ('root' if tinfo.gid == 0 else str(tinfo.gid))
    return FileEntry(
        path=path,
        kind=kind,
        mode=tinfo.mode & 0o7777,
        uid=tinfo.uid,
        gid=tinfo.gid,
        uname=uname,
        gname=gname,
        size=tinfo.size if kind == FileKind.FILE else 0,
        mtime=int(tinfo.mtime),
        linkname=linkname,
    )


class ArchiveReader:
    '''
    Read Debian binary packages.

    Parsing validates the complete container and the control metadata and
    builds a manifest of the payload, but never holds the payload in memory.
    File contents are streamed with :iter_payload() later on.
    '''

    def __init__(self, *, max_control_size: int = MAX_CONTROL_FILE_SIZE):
        self._max_control_size = max_control_size

    def parse(
        self, source: T.ArchiveSource, *, name: T.Optional[str] = None, deadline: T.Optional[Deadline] = None
    ) -> SourcePackage:
        '''
        Parse a .deb file, given as bytes, a path or a binary file object.

        :return: The validated package. Any defect raises an ArchiveError naming the broken member.
        '''
        try:
            origin = ArchiveOrigin.from_source(source, name)
        except OSError as e:
            raise ArchiveError(None, 'unable to read package: {}'.format(e)) from e

        try:
            f = origin.open()
        except OSError as e:
            raise ArchiveError(None, 'unable to open package: {}'.format(e)) from e
        with f:
            members = read_ar_members(f)
            control_member, data_member = self._check_members(f, members)
            control_files = self._read_control_files(f, control_member, deadline)
            files = self._read_manifest(f, data_member, deadline)

        origin = ArchiveOrigin(
            name=origin.name,
            path=origin.path,
            data=origin.data,
            payload_member=data_member.name,
            payload_offset=data_member.offset,
            payload_size=data_member.size,
        )
        pkg = self._make_package(control_member.name, control_files, files, members, origin)
        log.debug('Read package %s from %s (%s files)', str(pkg), origin.name, len(files))
        return pkg

    def _check_members(self, f: T.BinaryIO, members: T.List[ArMember]) -> T.Tuple[ArMember, ArMember]:
        if not members:
            raise ArchiveError(None, 'package container is empty')
        first = members[0]
        if first.name != 'debian-binary':
            raise ArchiveError(first.name, 'first member must be "debian-binary"')
        if first.size > 64:
            raise ArchiveError(first.name, 'member is unreasonably large')
        f.seek(first.offset)
        fmt_version = f.read(first.size).decode('ascii', errors='replace').strip()
        if not fmt_version.startswith('2.'):
            raise ArchiveError(first.name, 'unsupported package format version "{}"'.format(fmt_version))

        # members starting with an underscore are reserved for local use and ignored
        rest = [m for m in members[1:] if not m.name.startswith('_')]
        if not rest or not rest[0].name.startswith('control.tar'):
            raise ArchiveError(
                rest[0].name if rest else 'control.tar', 'expected the control tarball after "debian-binary"'
            )
        if len(rest) < 2 or not rest[1].name.startswith('data.tar'):
            raise ArchiveError(rest[1].name if len(rest) > 1 else 'data.tar', 'expected the data tarball after the control tarball')
        if len(rest) > 2:
            raise ArchiveError(rest[2].name, 'unexpected member after the data tarball')

        control_member, data_member = rest[0], rest[1]
        # raises for unknown compression
        tarball_compression(control_member.name)
        tarball_compression(data_member.name)
        return control_member, data_member

    def _read_control_files(
        self, f: T.BinaryIO, member: ArMember, deadline: T.Optional[Deadline]
    ) -> T.Dict[str, bytes]:
        result = {}
        with _open_tarball(f, member, deadline) as tar:
            for tinfo in _iter_tarball(tar, member.name):
                if not tinfo.isreg():
                    continue
                try:
                    path = normalize_member_path(tinfo.name)
                except ValueError as e:
                    raise ArchiveError(member.name, str(e))
                fname = path[1:] if path else None
                if fname not in CONTROL_MEMBER_FILES:
                    continue
                if tinfo.size > self._max_control_size:
                    raise ArchiveError(member.name, 'control file "{}" is too large'.format(fname))
                data = _GuardedFile(tar.extractfile(tinfo), member.name).read()
                if len(data) != tinfo.size:
                    raise ArchiveError(member.name, 'control file "{}" is truncated'.format(fname))
                result[fname] = data

        if 'control' not in result:
            raise ArchiveError(member.name, 'no "control" file found')
        return result

    def _read_manifest(self, f: T.BinaryIO, member: ArMember, deadline: T.Optional[Deadline]) -> T.List[FileEntry]:
        entries: T.Dict[str, FileEntry] = {}
        with _open_tarball(f, member, deadline) as tar:
            for tinfo in _iter_tarball(tar, member.name):
                entry = _file_entry_for(tinfo, member.name)
                if not entry:
                    continue
                prev = entries.get(entry.path)
                if prev and not (prev.is_dir and entry.is_dir):
                    raise ArchiveError(member.name, 'duplicate path "{}" in payload'.format(entry.path))
                entries[entry.path] = entry
        return list(entries.values())

    def _make_package(
        self,
        control_member: str,
        control_files: T.Dict[str, bytes],
        files: T.List[FileEntry],
        members: T.List[ArMember],
        origin: ArchiveOrigin,
    ) -> SourcePackage:
        try:
            text = control_files['control'].decode('utf-8')
        except UnicodeDecodeError as e:
            raise ArchiveError(control_member, 'control file is not valid UTF-8: {}'.format(e))
        try:
            stanza = parse_control_stanza(text)
        except ControlSyntaxError as e:
            raise ArchiveError(control_member, 'malformed control file, {}'.format(e))

        for req in ('Package', 'Version', 'Architecture'):
            if not stanza.get(req, '').strip():
                raise ArchiveError(control_member, 'required field "{}" is missing'.format(req))

        try:
            version = DebVersion.parse(stanza['Version'])
        except ValueError as e:
            raise ArchiveError(control_member, 'invalid version: {}'.format(e))

        relations = {}
        for attr, fname in RELATION_FIELDS:
            try:
                relations[attr] = parse_relation_field(attr, stanza.get(fname))
            except ValueError as e:
                raise ArchiveError(control_member, str(e))

        installed_size = None
        isize_str = stanza.get('Installed-Size', '').strip()
        if isize_str:
            try:
                installed_size = int(isize_str)
            except ValueError:
                log.warning('Ignoring invalid Installed-Size "%s" in %s', isize_str, origin.name)

        short_desc, long_desc = split_description(stanza.get('Description', ''))

        scripts = {}
        for sname in MAINTAINER_SCRIPT_NAMES:
            if sname in control_files:
                scripts[sname] = control_files[sname].decode('utf-8', errors='surrogateescape')
        try:
            md5sums = parse_md5sums(control_files.get('md5sums', b'').decode('utf-8', errors='replace'))
        except ValueError as e:
            raise ArchiveError(control_member, str(e))
        conffiles = parse_conffiles(control_files.get('conffiles', b'').decode('utf-8', errors='replace'))
        triggers = None
        if control_files.get('triggers', b'').strip():
            triggers = control_files['triggers'].decode('utf-8', errors='replace')

        extra = {}
        for key, value in stanza.items():
            if key.lower() not in _KNOWN_FIELDS:
                extra[key] = value

        return SourcePackage(
            name=stanza['Package'].strip().lower(),
            version=version,
            architecture=stanza['Architecture'].strip(),
            maintainer=stanza.get('Maintainer', '').strip(),
            description=short_desc,
            long_description=long_desc,
            installed_size=installed_size,
            homepage=stanza.get('Homepage', '').strip() or None,
            section=stanza.get('Section', '').strip() or None,
            priority=stanza.get('Priority', '').strip() or None,
            source=stanza.get('Source', '').strip() or None,
            relations=PackageRelations(**relations),
            files=tuple(files),
            scripts=MappingProxyType(scripts),
            conffiles=tuple(conffiles),
            triggers=triggers,
            md5sums=MappingProxyType(md5sums),
            extra_fields=MappingProxyType(extra),
            members=tuple(m.name for m in members),
            origin=origin,
        )

    def iter_payload(
        self, pkg: SourcePackage, *, deadline: T.Optional[Deadline] = None
    ) -> T.Iterator[T.Tuple[FileEntry, T.Optional[T.BinaryIO]]]:
        '''
        Stream the payload of a parsed package.

        Yields (entry, fileobj) tuples in archive order; fileobj is only set for
        regular files and has to be consumed before advancing the iterator.
        '''
        origin = pkg.origin
        if not origin or not origin.payload_member:
            raise ValueError('Package {} has no payload to stream'.format(str(pkg)))
        member = ArMember(name=origin.payload_member, offset=origin.payload_offset, size=origin.payload_size)

        with origin.open() as f:
            with _open_tarball(f, member, deadline) as tar:
                for tinfo in _iter_tarball(tar, member.name):
                    entry = _file_entry_for(tinfo, member.name)
                    if not entry:
                        continue
                    fobj = None
                    if entry.kind == FileKind.FILE:
                        fobj = _GuardedFile(tar.extractfile(tinfo), member.name)
                    yield entry, fobj

    def verify_payload_checksums(self, pkg: SourcePackage, *, deadline: T.Optional[Deadline] = None) -> T.List[str]:
        '''
        Compare the payload against the md5sums shipped in the package.

        :return: List of problems found, empty if everything matches.
        '''
        problems = []
        seen = set()
        for entry, fobj in self.iter_payload(pkg, deadline=deadline):
            if fobj is None:
                continue
            expected = pkg.md5sums.get(entry.path)
            if not expected:
                continue
            h = hashlib.md5()
            while True:
                chunk = fobj.read(1024 * 64)
                if not chunk:
                    break
                h.update(chunk)
            seen.add(entry.path)
            if h.hexdigest() != expected:
                problems.append('checksum mismatch: {}'.format(entry.path))
        for path in sorted(set(pkg.md5sums.keys()) - seen):
            problems.append('listed in md5sums, but missing from payload: {}'.format(path))
        return problems
