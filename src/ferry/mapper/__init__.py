# -*- coding: utf-8 -*-
#
# Copyright (C) 2024-2026 Ferry Developers
#
# SPDX-License-Identifier: LGPL-3.0+

from ferry.mapper.index import PackageIndex, SyncDatabaseIndex, StaticPackageIndex
from ferry.mapper.resolver import (
    MAPPED_FIELDS,
    Candidate,
    MatchMethod,
    ResolvedSet,
    ResolvedEntry,
    ArchConstraint,
    MappedCandidate,
    ResolutionCache,
    DependencyMapper,
    UntranslatableConstraint,
    translate_constraint,
)
from ferry.mapper.snapshot import AliasEntry, ArchPackage, MappingStore, MappingSnapshot
from ferry.mapper.archversion import vercmp, version_satisfies

__all__ = [
    'PackageIndex',
    'SyncDatabaseIndex',
    'StaticPackageIndex',
    'MAPPED_FIELDS',
    'Candidate',
    'MatchMethod',
    'ResolvedSet',
    'ResolvedEntry',
    'ArchConstraint',
    'MappedCandidate',
    'ResolutionCache',
    'DependencyMapper',
    'UntranslatableConstraint',
    'translate_constraint',
    'AliasEntry',
    'ArchPackage',
    'MappingStore',
    'MappingSnapshot',
    'vercmp',
    'version_satisfies',
]
