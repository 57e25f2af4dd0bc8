# -*- coding: utf-8 -*-
#
# Copyright (C) 2024-2026 Ferry Developers
#
# SPDX-License-Identifier: LGPL-3.0+

__version__ = '0.1.0'

from ferry.errors import (
    BuildError,
    PlanError,
    FerryError,
    ArchiveError,
    MapperWarning,
    JobTimeoutError,
    ResolutionError,
)
from ferry.scheduler import JobState, JobResult, ResolutionPolicy
from ferry.conversion import inspect, convert_batch
from ferry.localconfig import LocalConfig, get_config_file

__all__ = [
    'BuildError',
    'PlanError',
    'FerryError',
    'ArchiveError',
    'MapperWarning',
    'JobTimeoutError',
    'ResolutionError',
    'JobState',
    'JobResult',
    'ResolutionPolicy',
    'inspect',
    'convert_batch',
    'LocalConfig',
    'get_config_file',
]
