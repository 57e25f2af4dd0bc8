# -*- coding: utf-8 -*-
#
# Copyright (C) 2024-2026 Ferry Developers
#
# SPDX-License-Identifier: LGPL-3.0+

from ferry.archive.reader import ArchiveReader, tarball_compression
from ferry.archive.arfile import ArMember, read_ar_members
from ferry.archive.control import (
    tokenize_control,
    parse_relation_field,
    normalize_package_name,
)
from ferry.archive.package import (
    RELATION_FIELDS,
    Relation,
    FileKind,
    FileEntry,
    DebVersion,
    ConstraintSet,
    RelationEntry,
    SourcePackage,
    PackageRelations,
    VersionConstraint,
)

__all__ = [
    'ArchiveReader',
    'tarball_compression',
    'ArMember',
    'read_ar_members',
    'tokenize_control',
    'parse_relation_field',
    'normalize_package_name',
    'RELATION_FIELDS',
    'Relation',
    'FileKind',
    'FileEntry',
    'DebVersion',
    'ConstraintSet',
    'RelationEntry',
    'SourcePackage',
    'PackageRelations',
    'VersionConstraint',
]
