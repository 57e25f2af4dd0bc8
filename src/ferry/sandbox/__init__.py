# -*- coding: utf-8 -*-
#
# Copyright (C) 2024-2026 Ferry Developers
#
# SPDX-License-Identifier: LGPL-3.0+

from ferry.sandbox.builder import Artifact, SandboxBuilder
from ferry.sandbox.session import SandboxSession
from ferry.sandbox.executor import Executor, ProcessExecutor, BubblewrapExecutor, create_executor
from ferry.sandbox.pkgformat import parse_pkginfo, render_pkginfo, read_package_info, read_package_contents

__all__ = [
    'Artifact',
    'SandboxBuilder',
    'SandboxSession',
    'Executor',
    'ProcessExecutor',
    'BubblewrapExecutor',
    'create_executor',
    'parse_pkginfo',
    'render_pkginfo',
    'read_package_info',
    'read_package_contents',
]
