# -*- coding: utf-8 -*-
#
# Copyright (C) 2024-2026 Ferry Developers
#
# SPDX-License-Identifier: LGPL-3.0+

from ferry.utils.json import json_compact_dump
from ferry.utils.misc import Deadline, listify, random_string, available_cpu_count
from ferry.utils.arches import multiarch_triplets, debian_to_arch_architecture
from ferry.utils.command import SubprocessError, CommandTimeoutError, run_command
from ferry.utils.fileutil import force_rmtree, publish_file, check_filename_safe, normalize_member_path

__all__ = [
    'Deadline',
    'listify',
    'random_string',
    'available_cpu_count',
    'json_compact_dump',
    'multiarch_triplets',
    'debian_to_arch_architecture',
    'SubprocessError',
    'CommandTimeoutError',
    'run_command',
    'force_rmtree',
    'publish_file',
    'check_filename_safe',
    'normalize_member_path',
]
