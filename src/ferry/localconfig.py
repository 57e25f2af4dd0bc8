# -*- coding: utf-8 -*-
#
# Copyright (C) 2024-2026 Ferry Developers
#
# SPDX-License-Identifier: LGPL-3.0+

import os
import tempfile
from dataclasses import field, dataclass

import tomlkit

import ferry.typing as T
from ferry.utils import listify, available_cpu_count


def get_config_file(fname):
    '''
    Determine the path of a local Ferry configuration file.
    '''

    path = os.path.join('/etc/ferry/', fname)
    if os.path.isfile(path):
        return path
    path = os.path.join('config', fname)
    if os.path.isfile(path):
        return path
    return None


class LocalConfig:
    '''
    Local, machine-specific configuration for the conversion engine.

    Every setting has a built-in default, a configuration file
    only needs to contain the values that should differ.
    '''

    @dataclass
    class PathRule:
        '''
        A single filesystem layout rule.
        Paths starting with :prefix are moved below :target, or
        dropped from the package if :target is None.
        '''

        prefix: str
        target: T.Optional[str] = None

    @dataclass
    class HooksConfig:
        '''
        Commands run inside the sandbox while building a package.
        The configuration is loaded from a :LocalConfig.
        '''

        pre_build: T.List[str] = field(default_factory=list)
        post_stage: T.List[str] = field(default_factory=list)

    instance = None

    class __LocalConfig:
        def __init__(self, fname=None, data=None):
            if not fname and data is None:
                fname = get_config_file('ferry.toml')
            self.fname = fname

            cdata = data if data is not None else {}
            if fname:
                if not os.path.isfile(fname):
                    raise Exception('Unable to find configuration file "{}"'.format(fname))
                with open(fname) as toml_file:
                    cdata = tomlkit.load(toml_file)

            # location for various temporary caches that can be deleted at any time
            self._cache_dir = str(cdata.get('CacheLocation', os.path.join(tempfile.gettempdir(), 'ferry-cache')))
            self._workspace = str(cdata.get('Workspace', os.path.join(self._cache_dir, 'work')))
            self._packager = str(cdata.get('Packager', 'Unknown Packager'))

            cmapper = cdata.get('Mapper', {})
            self._similarity_threshold = float(cmapper.get('similarity_threshold', 0.8))
            self._low_confidence = float(cmapper.get('low_confidence', 0.6))
            self._max_candidates = int(cmapper.get('max_candidates', 3))
            self._snapshot_dir = str(cmapper.get('snapshot_dir', os.path.join(self._cache_dir, 'mappings')))
            self._keep_snapshots = int(cmapper.get('keep_snapshots', 5))
            if not 0.0 < self._similarity_threshold <= 1.0:
                raise Exception('Mapper similarity threshold must be in (0, 1], got {}'.format(self._similarity_threshold))

            # user-defined Debian -> Arch aliases, taking precedence over the built-in ones
            self._aliases = {}
            for debname, archnames in cmapper.get('aliases', {}).items():
                self._aliases[str(debname)] = [str(n) for n in listify(archnames)]

            cplanner = cdata.get('Planner', {})
            self._path_rules = []
            for rule in cplanner.get('path_rules', []):
                self._path_rules.append(LocalConfig.PathRule(str(rule['from']), str(rule['to'])))
            for prefix in cplanner.get('drop_paths', []):
                self._path_rules.append(LocalConfig.PathRule(str(prefix), None))
            self._license = str(cplanner.get('license', 'custom'))

            csandbox = cdata.get('Sandbox', {})
            self._executor = str(csandbox.get('executor', 'auto'))
            self._build_user = csandbox.get('build_user')
            if self._build_user is not None:
                self._build_user = str(self._build_user)
            self._allow_root = bool(csandbox.get('allow_root', False))
            self._compression_level = int(csandbox.get('compression_level', 19))
            self._sandbox_root = str(csandbox.get('work_root', os.path.join(self._workspace, 'sandbox')))

            cscheduler = cdata.get('Scheduler', {})
            self._workers = int(cscheduler.get('workers', 0))
            if self._workers <= 0:
                self._workers = available_cpu_count()
            self._job_timeout = cscheduler.get('job_timeout', 1800)
            if self._job_timeout is not None:
                self._job_timeout = float(self._job_timeout)
                if self._job_timeout <= 0:
                    self._job_timeout = None

            chooks = cdata.get('Hooks', {})
            self._hooks = LocalConfig.HooksConfig(
                pre_build=[str(c) for c in listify(chooks.get('pre_build'))],
                post_stage=[str(c) for c in listify(chooks.get('post_stage'))],
            )

        @property
        def workspace(self) -> str:
            return self._workspace

        @property
        def cache_dir(self) -> str:
            return self._cache_dir

        @property
        def packager(self) -> str:
            """Value for the packager field of generated packages."""
            return self._packager

        @property
        def similarity_threshold(self) -> float:
            """Minimum similarity a heuristic dependency match needs to be considered at all."""
            return self._similarity_threshold

        @property
        def low_confidence(self) -> float:
            return self._low_confidence

        @property
        def max_candidates(self) -> int:
            return self._max_candidates

        @property
        def snapshot_dir(self) -> str:
            return self._snapshot_dir

        @property
        def keep_snapshots(self) -> int:
            return self._keep_snapshots

        @property
        def aliases(self) -> T.Dict[str, T.List[str]]:
            return self._aliases

        @property
        def path_rules(self) -> T.List['LocalConfig.PathRule']:
            """Additional path rules, applied before the built-in ones."""
            return self._path_rules

        @property
        def license(self) -> str:
            return self._license

        @property
        def executor(self) -> str:
            return self._executor

        @property
        def build_user(self) -> T.Optional[str]:
            """Unprivileged user to run hooks as, if we are started as root."""
            return self._build_user

        @property
        def allow_root(self) -> bool:
            return self._allow_root

        @property
        def compression_level(self) -> int:
            return self._compression_level

        @property
        def sandbox_root(self) -> str:
            return self._sandbox_root

        @property
        def workers(self) -> int:
            return self._workers

        @property
        def job_timeout(self) -> T.Optional[float]:
            return self._job_timeout

        @property
        def hooks(self):
            return self._hooks

    def __init__(self, fname=None, *, data=None):
        if not LocalConfig.instance:
            LocalConfig.instance = LocalConfig.__LocalConfig(fname, data)

    def __getattr__(self, name):
        return getattr(self.instance, name)

    @staticmethod
    def reset():
        '''Drop the loaded configuration, so the next access loads it again.'''
        LocalConfig.instance = None
