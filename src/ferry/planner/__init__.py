# -*- coding: utf-8 -*-
#
# Copyright (C) 2024-2026 Ferry Developers
#
# SPDX-License-Identifier: LGPL-3.0+

from ferry.planner.plan import (
    BuildPlan,
    Substitution,
    TargetMetadata,
    PackagePlanner,
    convert_version,
    sanitize_pkgname,
)
from ferry.planner.paths import PathRule, PlannedFile, PathRewriter, default_path_rules
from ferry.planner.scripts import InstallScript, InstallScriptTranslator

__all__ = [
    'BuildPlan',
    'Substitution',
    'TargetMetadata',
    'PackagePlanner',
    'convert_version',
    'sanitize_pkgname',
    'PathRule',
    'PlannedFile',
    'PathRewriter',
    'default_path_rules',
    'InstallScript',
    'InstallScriptTranslator',
]
