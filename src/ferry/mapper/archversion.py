# -*- coding: utf-8 -*-
#
# Copyright (C) 2024-2026 Ferry Developers
#
# SPDX-License-Identifier: LGPL-3.0+

'''
Version comparison as done by pacman (libalpm's vercmp).
'''

import ferry.typing as T


def _rpmvercmp(a: str, b: str) -> int:
    if a == b:
        return 0

    one, two = a, b
    i = j = 0
    # end of the previous segment, used to compare separator lengths
    pi = pj = 0
    while i < len(one) and j < len(two):
        while i < len(one) and not one[i].isalnum():
            i += 1
        while j < len(two) and not two[j].isalnum():
            j += 1

        # ran to the end of either
        if i >= len(one) or j >= len(two):
            break

        # separators of different length
        if (i - pi) != (j - pj):
            return -1 if (i - pi) < (j - pj) else 1

        pi, pj = i, j
        if one[pi].isdigit():
            while pi < len(one) and one[pi].isdigit():
                pi += 1
            while pj < len(two) and two[pj].isdigit():
                pj += 1
            isnum = True
        else:
            while pi < len(one) and one[pi].isalpha():
                pi += 1
            while pj < len(two) and two[pj].isalpha():
                pj += 1
            isnum = False

        seg1 = one[i:pi]
        seg2 = two[j:pj]

        # numeric segments are always newer than alpha segments
        if not seg2:
            return 1 if isnum else -1

        if isnum:
            seg1 = seg1.lstrip('0')
            seg2 = seg2.lstrip('0')
            if len(seg1) != len(seg2):
                return 1 if len(seg1) > len(seg2) else -1

        if seg1 != seg2:
            return -1 if seg1 < seg2 else 1

        i, j = pi, pj

    if i >= len(one) and j >= len(two):
        return 0

    # a remaining alpha string never beats an empty string
    rest1 = one[i:]
    rest2 = two[j:]
    if (not rest1 and not rest2[:1].isalpha()) or rest1[:1].isalpha():
        return -1
    return 1


def split_evr(version: str) -> T.Tuple[str, str, T.Optional[str]]:
    '''
    Split an Arch version string into epoch, version and release.
    '''
    s = 0
    while s < len(version) and version[s].isdigit():
        s += 1
    if s < len(version) and version[s] == ':':
        epoch = version[:s] if s > 0 else '0'
        rest = version[s + 1 :]
    else:
        epoch = '0'
        rest = version

    release = None
    if '-' in rest:
        rest, release = rest.rsplit('-', 1)
    return epoch, rest, release


def vercmp(a: str, b: str) -> int:
    '''
    Compare two Arch package versions.

    :return: -1, 0 or 1 if :a is older than, equal to or newer than :b
    '''
    if a == b:
        return 0
    epoch1, ver1, rel1 = split_evr(a)
    epoch2, ver2, rel2 = split_evr(b)

    ret = _rpmvercmp(epoch1, epoch2)
    if ret == 0:
        ret = _rpmvercmp(ver1, ver2)
        if ret == 0 and rel1 and rel2:
            ret = _rpmvercmp(rel1, rel2)
    return ret


def version_satisfies(version: str, op: str, required: str) -> bool:
    '''
    Check whether :version fulfils the constraint ":op :required" (Arch operators).
    '''
    c = vercmp(version, required)
    if op == '=':
        return c == 0
    if op == '<':
        return c < 0
    if op == '<=':
        return c <= 0
    if op == '>':
        return c > 0
    if op == '>=':
        return c >= 0
    raise ValueError('Unknown version operator: {}'.format(op))
