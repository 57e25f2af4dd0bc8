# -*- coding: utf-8 -*-
#
# Copyright (C) 2024-2026 Ferry Developers
#
# SPDX-License-Identifier: LGPL-3.0+

import os
import tempfile
import threading
from contextlib import contextmanager

import ferry.typing as T
from ferry.utils import force_rmtree, random_string, check_filename_safe
from ferry.logging import log


class SandboxSession:
    '''
    Private working tree of a single package build.

    The tree is created when the session is entered and removed again
    when it is left, no matter how. :destroy() may also be called from a
    different thread to tear down a build that hangs.
    '''

    def __init__(self, root_dir: T.PathUnion, identity: str):
        self._root_dir = os.fspath(root_dir)
        self._identity = identity
        self._build_id = '{}-{}'.format(identity, random_string(8))
        self._path: T.Optional[str] = None
        self._destroyed = False
        self._lock = threading.RLock()
        self.result = None

    @property
    def identity(self) -> str:
        return self._identity

    @property
    def build_id(self) -> str:
        return self._build_id

    @property
    def path(self) -> str:
        if not self._path:
            raise RuntimeError('Sandbox session {} is not active'.format(self._build_id))
        return self._path

    @property
    def staging_dir(self) -> str:
        """Root of the package filesystem tree."""
        return os.path.join(self.path, 'staging')

    @property
    def meta_dir(self) -> str:
        return os.path.join(self.path, 'meta')

    @property
    def out_dir(self) -> str:
        return os.path.join(self.path, 'out')

    @property
    def active(self) -> bool:
        return self._path is not None

    @property
    def destroyed(self) -> bool:
        return self._destroyed

    @contextmanager
    def guard(self):
        '''
        Keep the session from being destroyed while the block runs.
        Yields whether the working tree still exists.
        '''
        with self._lock:
            yield self._path is not None

    def create(self):
        with self._lock:
            if self._destroyed:
                raise RuntimeError('Sandbox session {} was already destroyed'.format(self._build_id))
            if self._path:
                return
            os.makedirs(self._root_dir, exist_ok=True)
            prefix = self._identity if check_filename_safe(self._identity) else 'build'
            path = tempfile.mkdtemp(prefix=prefix + '-', dir=self._root_dir)
            os.chmod(path, 0o700)
            for subdir in ('staging', 'meta', 'out'):
                os.mkdir(os.path.join(path, subdir), 0o755)
            self._path = path
        log.debug('Created sandbox %s in %s', self._build_id, path)

    def destroy(self):
        '''
        Remove the working tree. Calling this more than once is harmless.
        '''
        with self._lock:
            self._destroyed = True
            path = self._path
            self._path = None
        if path:
            force_rmtree(path)
            log.debug('Removed sandbox %s', self._build_id)

    def __enter__(self):
        self.create()
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.destroy()
        return False
