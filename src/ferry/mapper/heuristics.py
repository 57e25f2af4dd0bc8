# -*- coding: utf-8 -*-
#
# Copyright (C) 2024-2026 Ferry Developers
#
# SPDX-License-Identifier: LGPL-3.0+

'''
Name heuristics to find Arch counterparts of Debian packages that
neither have a curated alias nor are provided by any Arch package.
'''

import re
from difflib import SequenceMatcher

import ferry.typing as T

# Debian package naming conventions and their Arch equivalent, (pattern, replacement, weight)
RENAME_RULES = (
    (re.compile(r'^python3-(.+)$'), r'python-\1', 0.95),
    (re.compile(r'^lib(.+)-perl$'), r'perl-\1', 0.9),
    (re.compile(r'^ruby-(.+)$'), r'ruby-\1', 0.95),
    (re.compile(r'^node-(.+)$'), r'nodejs-\1', 0.9),
    (re.compile(r'^golang-(.+)-dev$'), r'go-\1', 0.8),
    (re.compile(r'^lib(.+)-dev$'), r'\1', 0.8),
    (re.compile(r'^(.+)-dbg$'), r'\1-debug', 0.8),
    (re.compile(r'^(.+)-doc$'), r'\1-docs', 0.85),
    (re.compile(r'^fonts-(.+)$'), r'ttf-\1', 0.8),
    (re.compile(r'^gstreamer1\.0-(.+)$'), r'gst-\1', 0.9),
    (re.compile(r'^gir1\.2-(.+)-[\d.]+$'), r'\1', 0.75),
    (re.compile(r'^libqt5(.+?)5?$'), r'qt5-\1', 0.75),
    (re.compile(r'^libqt6(.+?)6?$'), r'qt6-\1', 0.75),
    (re.compile(r'^libboost-.+$'), 'boost-libs', 0.85),
    (re.compile(r'^libllvm\d+$'), 'llvm-libs', 0.95),
)

# suffixes Debian appends to library package names for ABI transitions
_re_abi_suffix = re.compile(r'(t64|v5|c2a?|ldbl|gf)$')
# trailing soname version of a library package, like the "2" in libfoo2 or "-1.0" in libbz2-1.0
_re_soversion = re.compile(r'^(lib[a-z0-9+.-]*?[a-z+])[-.]?[0-9][0-9.]*$')
_re_soversion_dashed = re.compile(r'^(lib[a-z0-9+.-]+?)-[0-9][0-9.]*$')

# packaging split suffixes that usually live in the main package on Arch
_SPLIT_SUFFIXES = ('-common', '-data', '-bin', '-utils', '-runtime')


def derive_names(name: str) -> T.List[T.Tuple[str, float]]:
    '''
    Derive possible Arch package names from a Debian package name.

    :return: List of (name, weight) pairs, the weight expressing how much we trust
        the derivation. The unmodified name is always the first entry.
    '''
    result: T.Dict[str, float] = {name: 1.0}

    def add(n: str, w: float):
        if n and len(n) > 1 and result.get(n, 0) < w:
            result[n] = w

    for rule, replacement, weight in RENAME_RULES:
        if rule.match(name):
            add(rule.sub(replacement, name), weight)

    if name.startswith('lib'):
        n = _re_abi_suffix.sub('', name)
        w = 0.97
        add(n, w)
        # progressively strip soname versions: libbz2-1.0 -> libbz2 -> libbz
        for _ in range(3):
            m = _re_soversion_dashed.match(n) or _re_soversion.match(n)
            if not m or m.group(1) == n:
                break
            n = m.group(1).rstrip('-.')
            w = w * 0.97
            add(n, w)
            # Arch usually names libraries without the "lib" prefix
            add(n[3:], w * 0.95)

    for suffix in _SPLIT_SUFFIXES:
        if name.endswith(suffix):
            add(name[: -len(suffix)], 0.85)

    return sorted(result.items(), key=lambda x: (-x[1], x[0]))


def similarity_matches(
    name: str, pool: T.Sequence[str], threshold: float, limit: int = 3
) -> T.List[T.Tuple[str, float]]:
    '''
    Score the names in :pool against a Debian package name.

    Exact matches of a derived name score its weight, fuzzy matches the string
    similarity multiplied by it. Only matches with a score of at least
    :threshold are returned, best first.
    '''
    if not pool:
        return []

    pool_set = set(pool)
    scores: T.Dict[str, float] = {}
    derived = derive_names(name)

    for key, weight in derived:
        if key in pool_set and scores.get(key, 0) < weight:
            scores[key] = weight

    matcher = SequenceMatcher()
    for key, weight in derived:
        # no fuzzy match can reach the threshold with this derivation
        if weight < threshold:
            continue
        matcher.set_seq2(key)
        min_ratio = threshold / weight
        for candidate in pool:
            if candidate == key:
                continue
            matcher.set_seq1(candidate)
            if (
                matcher.real_quick_ratio() >= min_ratio
                and matcher.quick_ratio() >= min_ratio
                and matcher.ratio() >= min_ratio
            ):
                score = matcher.ratio() * weight
                if scores.get(candidate, 0) < score:
                    scores[candidate] = score

    matches = [(n, s) for n, s in scores.items() if s >= threshold]
    matches.sort(key=lambda x: (-x[1], x[0]))
    return matches[:limit]
