# -*- coding: utf-8 -*-
#
# Copyright (C) 2024-2026 Ferry Developers
#
# SPDX-License-Identifier: LGPL-3.0+

'''
Minimal reader for the Unix ``ar`` container format used by .deb files.
Only the common format without symbol tables or long-name tables is
supported, which is all dpkg-deb ever writes.
'''

import io
import os
from dataclasses import dataclass

import ferry.typing as T
from ferry.errors import ArchiveError
from ferry.utils import Deadline

AR_MAGIC = b'!<arch>\n'
AR_HEADER_SIZE = 60
AR_HEADER_END = b'`\n'

# read in chunks of this size from archive members
READ_CHUNK_SIZE = 1024 * 256


@dataclass(frozen=True)
class ArMember:
    name: str
    offset: int  # position of the member data in the container
    size: int
    mtime: int = 0
    mode: int = 0o644


def _parse_header_number(member: str, value: bytes, base: int = 10) -> int:
    s = value.decode('ascii', errors='replace').strip()
    if not s:
        return 0
    try:
        return int(s, base)
    except ValueError:
        raise ArchiveError(member, 'malformed ar member header (bad numeric field "{}")'.format(s))


def read_ar_members(fileobj: T.BinaryIO) -> T.List[ArMember]:
    '''
    Read the table of contents of an ``ar`` archive.

    Every member is checked to lie completely within the file, so a truncated
    container is reported with the name of the first member that is cut off.
    '''
    fileobj.seek(0, os.SEEK_END)
    total_size = fileobj.tell()
    fileobj.seek(0)

    magic = fileobj.read(len(AR_MAGIC))
    if magic != AR_MAGIC:
        raise ArchiveError(None, 'not a Debian package (missing ar archive signature)')

    members = []
    pos = len(AR_MAGIC)
    while pos < total_size:
        fileobj.seek(pos)
        hdr = fileobj.read(AR_HEADER_SIZE)
        if len(hdr) == 1 and hdr == b'\n':
            # trailing padding byte of the last member
            break
        if len(hdr) < AR_HEADER_SIZE:
            last = members[-1].name if members else None
            raise ArchiveError(last, 'truncated ar member header after this member')

        raw_name = hdr[0:16].decode('ascii', errors='replace').rstrip()
        if hdr[58:60] != AR_HEADER_END:
            raise ArchiveError(raw_name if raw_name else None, 'malformed ar member header (bad terminator)')
        if raw_name in ('/', '//', '/SYM64/'):
            raise ArchiveError(raw_name, 'unsupported ar symbol or name table')
        name = raw_name[:-1] if raw_name.endswith('/') else raw_name
        if not name:
            raise ArchiveError(None, 'ar member without a name')

        mtime = _parse_header_number(name, hdr[16:28])
        mode = _parse_header_number(name, hdr[40:48], 8)
        size = _parse_header_number(name, hdr[48:58])

        data_start = pos + AR_HEADER_SIZE
        if data_start + size > total_size:
            raise ArchiveError(
                name,
                'member is truncated (header declares {} bytes, only {} available)'.format(
                    size, max(0, total_size - data_start)
                ),
            )

        members.append(ArMember(name=name, offset=data_start, size=size, mtime=mtime, mode=mode))
        pos = data_start + size + (size % 2)

    return members


class MemberReader(io.RawIOBase):
    '''
    Read-only view on the data of a single ``ar`` member.

    The view keeps its own position, so several of them may share one file
    object as long as they are not read from different threads.
    '''

    def __init__(self, fileobj: T.BinaryIO, member: ArMember, deadline: T.Optional[Deadline] = None):
        super().__init__()
        self._fileobj = fileobj
        self._member = member
        self._pos = member.offset
        self._end = member.offset + member.size
        self._deadline = deadline

    @property
    def member(self) -> ArMember:
        return self._member

    def readable(self):
        return True

    def readinto(self, b):
        if self._deadline:
            self._deadline.check('reading {}'.format(self._member.name))
        remaining = self._end - self._pos
        if remaining <= 0:
            return 0
        n = min(len(b), remaining)
        self._fileobj.seek(self._pos)
        data = self._fileobj.read(n)
        if not data:
            raise ArchiveError(self._member.name, 'unexpected end of file')
        b[: len(data)] = data
        self._pos += len(data)
        return len(data)


def open_member(fileobj: T.BinaryIO, member: ArMember, deadline: T.Optional[Deadline] = None) -> io.BufferedReader:
    """Open a buffered stream of the data of :member."""
    return io.BufferedReader(MemberReader(fileobj, member, deadline), buffer_size=READ_CHUNK_SIZE)
