# -*- coding: utf-8 -*-
#
# Copyright (C) 2024-2026 Ferry Developers
#
# SPDX-License-Identifier: LGPL-3.0+

import os
import re
import stat
import shutil
import tempfile

import ferry.typing as T

# Match safe filenames
re_file_safe = re.compile(r'^[a-zA-Z0-9@_+][a-zA-Z0-9@_.~+-]*$')


def check_filename_safe(fname: T.PathUnion) -> bool:
    """Check if a filename contains only safe characters"""
    if not re_file_safe.match(str(fname)):
        return False
    return True


def normalize_member_path(name: str) -> T.Optional[str]:
    '''
    Turn a path stored in a tarball ("./usr/bin/foo", "usr/bin/foo/")
    into an absolute, normalized path. Returns None for the archive root
    and raises ValueError for paths escaping it.
    '''
    parts = []
    for part in name.split('/'):
        if not part or part == '.':
            continue
        if part == '..':
            raise ValueError('Path "{}" escapes the archive root'.format(name))
        parts.append(part)
    if not parts:
        return None
    return '/' + '/'.join(parts)


def publish_file(src: T.PathUnion, dst: T.PathUnion, *, mode: int = 0o644):
    '''
    Move the finished file :src to :dst atomically.

    If both are on different filesystems, the file is copied next to :dst
    first and then renamed, so :dst never appears half-written.
    '''
    src = os.fspath(src)
    dst = os.fspath(dst)
    os.chmod(src, mode)
    try:
        os.replace(src, dst)
        return
    except OSError as e:
        import errno

        if e.errno != errno.EXDEV:
            raise

    fd, tmp_fname = tempfile.mkstemp(dir=os.path.dirname(dst) or '.', prefix='.', suffix='.part')
    os.close(fd)
    try:
        shutil.copyfile(src, tmp_fname)
        os.chmod(tmp_fname, mode)
        os.replace(tmp_fname, dst)
    except BaseException:
        if os.path.lexists(tmp_fname):
            os.unlink(tmp_fname)
        raise
    os.unlink(src)


def force_rmtree(path: T.PathUnion):
    '''
    Remove a directory tree, even if files or directories in it
    have been made read-only. Missing trees are ignored.
    '''

    def _onerror(func, fpath, exc_info):
        exc = exc_info[1]
        if isinstance(exc, FileNotFoundError):
            return
        if isinstance(exc, PermissionError):
            parent = os.path.dirname(fpath)
            os.chmod(parent, stat.S_IRWXU)
            if os.path.isdir(fpath) and not os.path.islink(fpath):
                os.chmod(fpath, stat.S_IRWXU)
                shutil.rmtree(fpath, onerror=_onerror)
            else:
                os.unlink(fpath)
            return
        raise exc

    if not os.path.lexists(path):
        return
    shutil.rmtree(path, onerror=_onerror)
