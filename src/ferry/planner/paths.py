# -*- coding: utf-8 -*-
#
# Copyright (C) 2024-2026 Ferry Developers
#
# SPDX-License-Identifier: LGPL-3.0+

import posixpath
from dataclasses import dataclass

import ferry.typing as T
from ferry.utils import multiarch_triplets
from ferry.errors import PlanError
from ferry.logging import log
from ferry.archive.package import FileKind, FileEntry


@dataclass(frozen=True)
class PathRule:
    '''
    Move everything below :prefix to :target, or drop it if :target is None.
    '''

    prefix: str
    target: T.Optional[str]

    def matches(self, path: str) -> bool:
        return path == self.prefix or path.startswith(self.prefix + '/')

    def apply(self, path: str) -> T.Optional[str]:
        if self.target is None:
            return None
        rest = path[len(self.prefix) :]
        return self.target + rest if self.target != '/' else (rest if rest else '/')


def default_path_rules() -> T.List[PathRule]:
    '''
    Rules moving a Debian filesystem layout to the Arch one:
    no multiarch directories, everything in /usr, only /usr/bin for executables.
    '''
    rules = []
    for triplet in multiarch_triplets():
        target = '/usr/lib32' if triplet.startswith('i386') else '/usr/lib'
        rules.append(PathRule('/usr/lib/' + triplet, target))
        rules.append(PathRule('/lib/' + triplet, target))
        rules.append(PathRule('/usr/include/' + triplet, '/usr/include'))
    rules.extend(
        [
            PathRule('/usr/share/lintian', None),
            PathRule('/usr/share/bug', None),
            PathRule('/usr/lib64', '/usr/lib'),
            PathRule('/lib64', '/usr/lib'),
            PathRule('/lib32', '/usr/lib32'),
            PathRule('/lib', '/usr/lib'),
            PathRule('/usr/sbin', '/usr/bin'),
            PathRule('/sbin', '/usr/bin'),
            PathRule('/bin', '/usr/bin'),
        ]
    )
    return rules


@dataclass(frozen=True)
class PlannedFile:
    '''
    A payload entry together with its location in the Arch package.
    '''

    source: str
    target: str
    kind: FileKind
    mode: int = 0o644
    uid: int = 0
    gid: int = 0
    uname: str = 'root'
    gname: str = 'root'
    size: int = 0
    mtime: int = 0
    linkname: T.Optional[str] = None

    @property
    def is_dir(self) -> bool:
        return self.kind == FileKind.DIRECTORY


class PathRewriter:
    '''
    Translates payload paths with an ordered rule table; the first matching rule wins.
    '''

    def __init__(self, rules: T.Optional[T.Sequence[PathRule]] = None, extra_rules: T.Sequence[PathRule] = ()):
        if rules is None:
            rules = default_path_rules()
        self._rules = tuple(extra_rules) + tuple(rules)

    @property
    def rules(self) -> T.Tuple[PathRule, ...]:
        return self._rules

    def rewrite(self, path: str) -> T.Optional[str]:
        """Return the new location of :path, or None if it is not shipped."""
        for rule in self._rules:
            if rule.matches(path):
                return rule.apply(path)
        return path

    def rewrite_link_target(self, link_path: str, new_link_path: str, target: str) -> str:
        '''
        Rewrite the target of a symbolic link located at :link_path, which
        will be installed as :new_link_path.
        '''
        if target.startswith('/'):
            new_target = self.rewrite(posixpath.normpath(target))
            return new_target if new_target else target

        resolved = posixpath.normpath(posixpath.join(posixpath.dirname(link_path), target))
        if resolved.startswith('//') or not resolved.startswith('/'):
            return target
        new_resolved = self.rewrite(resolved)
        if not new_resolved:
            return target
        if new_resolved == resolved and posixpath.dirname(link_path) == posixpath.dirname(new_link_path):
            return target
        return posixpath.relpath(new_resolved, posixpath.dirname(new_link_path))

    def plan_tree(self, entries: T.Iterable[FileEntry]) -> T.List[PlannedFile]:
        '''
        Map all payload entries to their Arch locations.

        Directories landing on the same path are merged, any other collision
        raises a PlanError, so no two payload files ever overwrite each other.
        '''
        by_target: T.Dict[str, PlannedFile] = {}
        order: T.List[str] = []

        for entry in entries:
            target = self.rewrite(entry.path)
            if target is None:
                log.debug('Not shipping %s', entry.path)
                continue

            linkname = entry.linkname
            if entry.kind == FileKind.SYMLINK:
                linkname = self.rewrite_link_target(entry.path, target, entry.linkname or '')
                resolved = posixpath.normpath(posixpath.join(posixpath.dirname(target), linkname))
                if resolved == target:
                    # compatibility links of a split /usr, e.g. /lib -> usr/lib
                    log.debug('Dropping self-referencing link %s', entry.path)
                    continue
            elif entry.kind == FileKind.HARDLINK:
                linkname = self.rewrite(entry.linkname or '')
                if not linkname:
                    raise PlanError('Hard link target is not shipped', (entry.path, entry.linkname or ''))

            planned = PlannedFile(
                source=entry.path,
                target=target,
                kind=entry.kind,
                mode=entry.mode,
                uid=entry.uid,
                gid=entry.gid,
                uname=entry.uname,
                gname=entry.gname,
                size=entry.size,
                mtime=entry.mtime,
                linkname=linkname,
            )

            prev = by_target.get(target)
            if prev is not None:
                if prev.is_dir and planned.is_dir:
                    continue
                raise PlanError(
                    'Paths collide at {} after layout conversion'.format(target), (prev.source, planned.source)
                )
            by_target[target] = planned
            order.append(target)

        # a file may not end up where another entry expects a directory
        non_dirs = {t for t, p in by_target.items() if not p.is_dir}
        for t in order:
            parent = posixpath.dirname(t)
            while parent not in ('/', ''):
                if parent in non_dirs:
                    raise PlanError(
                        'Path {} is both a file and a directory after layout conversion'.format(parent),
                        (by_target[parent].source, by_target[t].source),
                    )
                parent = posixpath.dirname(parent)

        return [by_target[t] for t in order]
