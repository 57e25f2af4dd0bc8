# -*- coding: utf-8 -*-
#
# Copyright (C) 2024-2026 Ferry Developers
#
# SPDX-License-Identifier: LGPL-3.0+

import os
import pwd
import shutil
from abc import ABC, abstractmethod

import ferry.typing as T
from ferry.utils import run_command
from ferry.logging import log
from ferry.localconfig import LocalConfig

# result of a command run: (stdout, stderr, returncode)
ExecResult = T.Tuple[str, str, int]


class Executor(ABC):
    '''
    Runs commands on behalf of a build, isolated from the rest of the system
    as far as the implementation is able to.
    '''

    name = 'abstract'

    def prepare(self, workdir: T.PathUnion):
        """Make :workdir usable for the commands this executor runs."""
        pass

    @abstractmethod
    def run(
        self,
        command: str,
        *,
        cwd: T.PathUnion,
        env: T.Optional[T.Dict[str, str]] = None,
        timeout: T.Optional[float] = None,
    ) -> ExecResult:
        '''
        Run the shell command :command in :cwd.

        Raises CommandTimeoutError if it did not finish within :timeout seconds.
        '''
        pass


def _base_env(env: T.Optional[T.Dict[str, str]]) -> T.Dict[str, str]:
    result = {
        'PATH': '/usr/local/sbin:/usr/local/bin:/usr/bin:/usr/sbin:/bin:/sbin',
        'LANG': 'C.UTF-8',
        'LC_ALL': 'C.UTF-8',
    }
    if env:
        result.update(env)
    return result


class ProcessExecutor(Executor):
    '''
    Run commands as plain child processes.

    When running as root, commands are executed as the configured
    unprivileged build user instead. Without one, running as root is refused
    unless :allow_root is set.
    '''

    name = 'process'

    def __init__(self, build_user: T.Optional[str] = None, allow_root: bool = False):
        self._user = None
        self._uid = None
        self._gid = None
        if build_user and os.geteuid() == 0:
            try:
                pw = pwd.getpwnam(build_user)
            except KeyError:
                raise ValueError('Build user "{}" does not exist'.format(build_user))
            self._user = build_user
            self._uid = pw.pw_uid
            self._gid = pw.pw_gid
        elif os.geteuid() == 0:
            if not allow_root:
                raise ValueError(
                    'Refusing to run hooks as root: configure a build user, or set "allow_root" to run them anyway'
                )
            log.warning('Running as root without a build user, hooks will run with full privileges')

    @property
    def user(self) -> T.Optional[str]:
        return self._user

    def prepare(self, workdir: T.PathUnion):
        if self._uid is None:
            return
        for root, dirs, files in os.walk(workdir):
            os.lchown(root, self._uid, self._gid)
            for name in dirs + files:
                os.lchown(os.path.join(root, name), self._uid, self._gid)

    def run(self, command, *, cwd, env=None, timeout=None):
        run_env = _base_env(env)
        if self._user:
            run_env['HOME'] = os.fspath(cwd)
            run_env['USER'] = self._user
        out, err, ret = run_command(
            ['/bin/sh', '-c', command],
            cwd=cwd,
            env=run_env,
            timeout=timeout,
            user=self._uid,
            group=self._gid,
        )
        return out if out else '', err if err else '', ret


class BubblewrapExecutor(Executor):
    '''
    Run commands in a bubblewrap container: the host is visible read-only,
    the working directory is the only writable location and the command has
    no network access.
    '''

    name = 'bwrap'

    def __init__(self, bwrap_exe: T.Optional[str] = None):
        if not bwrap_exe:
            bwrap_exe = shutil.which('bwrap')
        if not bwrap_exe:
            raise ValueError('Unable to find the "bwrap" executable')
        self._bwrap_exe = bwrap_exe

    def command_for(self, command: str, cwd: T.PathUnion) -> T.List[str]:
        cwd = os.fspath(cwd)
        # fmt: off
        return [
            self._bwrap_exe,
            '--unshare-all',
            '--die-with-parent',
            '--new-session',
            '--ro-bind', '/', '/',
            '--bind', cwd, cwd,
            '--proc', '/proc',
            '--dev', '/dev',
            '--tmpfs', '/tmp',
            '--chdir', cwd,
            '--setenv', 'HOME', '/tmp',
            '--',
            '/bin/sh', '-c', command,
        ]
        # fmt: on

    def run(self, command, *, cwd, env=None, timeout=None):
        out, err, ret = run_command(
            self.command_for(command, cwd),
            cwd=cwd,
            env=_base_env(env),
            timeout=timeout,
        )
        return out if out else '', err if err else '', ret


def create_executor(config: T.Optional[LocalConfig] = None) -> Executor:
    '''
    Create the executor selected in the configuration.

    With "auto", commands run in a bubblewrap container if bwrap is
    available and as plain processes otherwise.
    '''
    lconf = config if config else LocalConfig()
    if lconf.executor == 'auto':
        bwrap_exe = shutil.which('bwrap')
        if bwrap_exe:
            return BubblewrapExecutor(bwrap_exe)
        log.warning('Bubblewrap is not available, hooks will run without isolation')
        return ProcessExecutor(lconf.build_user, lconf.allow_root)
    if lconf.executor == 'process':
        return ProcessExecutor(lconf.build_user, lconf.allow_root)
    if lconf.executor in ('bwrap', 'bubblewrap'):
        return BubblewrapExecutor()
    raise ValueError('Unknown executor "{}" configured'.format(lconf.executor))
