# -*- coding: utf-8 -*-
#
# Copyright (C) 2024-2026 Ferry Developers
#
# SPDX-License-Identifier: LGPL-3.0+

import os
import shlex
import signal
import subprocess

import ferry.typing as T


class SubprocessError(Exception):
    def __init__(self, out, err, ret, cmd):
        self.out = out
        self.err = err
        self.ret = ret
        self.cmd = cmd

    def __str__(self):
        return "%s: %d\n%s" % (str(self.cmd), self.ret, str(self.err))


class CommandTimeoutError(SubprocessError):
    '''A command was killed because it ran out of time.'''

    def __init__(self, out, err, cmd, timeout):
        super().__init__(out, err, -int(signal.SIGKILL), cmd)
        self.timeout = timeout

    def __str__(self):
        return '%s: killed after %.1fs' % (str(self.cmd), self.timeout)


def _kill_process_group(pipe):
    try:
        os.killpg(pipe.pid, signal.SIGKILL)
    except ProcessLookupError:
        pass


# Input may be a byte string, a unicode string, or a file-like object
def run_command(
    command,
    input=None,
    capture_output=True,
    *,
    cwd: T.Optional[T.PathUnion] = None,
    env: T.Optional[T.Dict[str, str]] = None,
    timeout: T.Optional[float] = None,
    user: T.Optional[T.Union[str, int]] = None,
    group: T.Optional[T.Union[str, int]] = None,
):
    '''
    Run :command and return a (stdout, stderr, returncode) tuple.

    The command runs in its own process group, so on timeout the whole
    tree of processes it spawned is killed and CommandTimeoutError is raised.
    '''
    if not isinstance(command, list):
        command = shlex.split(command)

    if not input:
        input = None
    elif isinstance(input, str):
        input = input.encode('utf-8')
    elif not isinstance(input, bytes):
        input = input.read()

    p_stdout = None
    p_stderr = None
    if capture_output:
        p_stdout = subprocess.PIPE
        p_stderr = subprocess.PIPE

    extra_args = {}
    if user is not None:
        extra_args['user'] = user
    if group is not None:
        extra_args['group'] = group
        extra_args['extra_groups'] = []

    try:
        pipe = subprocess.Popen(
            command,
            shell=False,
            cwd=cwd,
            env=env,
            stdin=subprocess.PIPE,
            stdout=p_stdout,
            stderr=p_stderr,
            start_new_session=True,
            **extra_args,
        )
    except OSError as e:
        return (None, str(e), -1)

    try:
        (output, stderr) = pipe.communicate(input=input, timeout=timeout)
    except subprocess.TimeoutExpired:
        _kill_process_group(pipe)
        (output, stderr) = pipe.communicate()
        if capture_output:
            (output, stderr) = (c.decode('utf-8', errors='replace') for c in (output, stderr))
        raise CommandTimeoutError(output, stderr, command, timeout)
    except BaseException:
        _kill_process_group(pipe)
        pipe.wait()
        raise

    if capture_output:
        (output, stderr) = (c.decode('utf-8', errors='replace') for c in (output, stderr))
    return (output, stderr, pipe.returncode)

