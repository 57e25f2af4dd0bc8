# -*- coding: utf-8 -*-
#
# Copyright (C) 2024-2026 Ferry Developers
#
# SPDX-License-Identifier: LGPL-3.0+

import os
import re
from types import MappingProxyType
from dataclasses import field, dataclass

import ferry.typing as T
from ferry.utils import debian_to_arch_architecture
from ferry.errors import PlanError, MapperWarning
from ferry.logging import log
from ferry.mapper import MAPPED_FIELDS, ResolvedSet, UntranslatableConstraint, translate_constraint
from ferry.localconfig import LocalConfig
from ferry.archive.package import DebVersion, SourcePackage
from ferry.planner.paths import PathRule, PlannedFile, PathRewriter
from ferry.planner.scripts import InstallScriptTranslator

# relation fields that make a package uninstallable if they can't be mapped
HARD_DEPENDENCY_FIELDS = ('pre_depends', 'depends')

_re_pkgname_invalid = re.compile(r'[^a-z0-9@._+-]')
_re_pkgname_valid = re.compile(r'^[a-z0-9@_+][a-z0-9@._+-]*$')
_re_pkgver_invalid = re.compile(r'[^A-Za-z0-9._+]')


@dataclass(frozen=True)
class Substitution:
    '''
    A value we had to change to make it acceptable for pacman.
    '''

    field: str
    original: str
    replacement: str

    def __str__(self):
        return '{}: "{}" -> "{}"'.format(self.field, self.original, self.replacement)


def sanitize_pkgname(name: str) -> str:
    '''
    Make :name a valid pacman package name.
    '''
    new = _re_pkgname_invalid.sub('-', name.strip().lower())
    new = new.lstrip('-.')
    if not new:
        raise PlanError('Package name "{}" can not be turned into a valid Arch package name'.format(name))
    return new


def convert_version(version: DebVersion) -> T.Tuple[int, str, str]:
    '''
    Split a Debian version into Arch epoch, pkgver and pkgrel.

    Tildes are dropped (so "1.0~rc1" becomes "1.0rc1", which pacman also sorts
    before "1.0"), characters pacman forbids in pkgver become underscores and
    the pkgrel is the leading number of the Debian revision.
    '''
    pkgver = version.upstream.replace('~', '')
    pkgver = _re_pkgver_invalid.sub('_', pkgver)
    if not pkgver:
        raise PlanError('Version "{}" has no usable upstream part'.format(version))

    pkgrel = '1'
    if version.revision:
        m = re.match(r'^(\d+)', version.revision)
        if m and m.group(1).lstrip('0'):
            pkgrel = m.group(1).lstrip('0')
    return version.epoch, pkgver, pkgrel


@dataclass(frozen=True)
class TargetMetadata:
    '''
    Metadata of the Arch package, as written to .PKGINFO.
    '''

    pkgname: str
    pkgver: str
    pkgrel: str
    arch: str
    epoch: int = 0
    pkgbase: str = ''
    pkgdesc: str = ''
    url: str = ''
    packager: str = 'Unknown Packager'
    builddate: int = 0
    size: int = 0
    license: T.Tuple[str, ...] = ()
    depends: T.Tuple[str, ...] = ()
    optdepends: T.Tuple[str, ...] = ()
    conflicts: T.Tuple[str, ...] = ()
    provides: T.Tuple[str, ...] = ()
    replaces: T.Tuple[str, ...] = ()
    backup: T.Tuple[str, ...] = ()

    @property
    def full_version(self) -> str:
        """The version as pacman displays it, [epoch:]pkgver-pkgrel"""
        ver = '{}-{}'.format(self.pkgver, self.pkgrel)
        if self.epoch:
            ver = '{}:{}'.format(self.epoch, ver)
        return ver

    @property
    def artifact_name(self) -> str:
        return '{}-{}-{}.pkg.tar.zst'.format(self.pkgname, self.full_version, self.arch)

    def validate(self):
        if not self.pkgname or not _re_pkgname_valid.match(self.pkgname):
            raise PlanError('Invalid package name "{}"'.format(self.pkgname))
        if not self.pkgver or _re_pkgver_invalid.search(self.pkgver):
            raise PlanError('Invalid package version "{}"'.format(self.pkgver))
        if not re.match(r'^\d+(\.\d+)?$', self.pkgrel):
            raise PlanError('Invalid package release "{}"'.format(self.pkgrel))
        if not self.arch:
            raise PlanError('Package {} has no architecture'.format(self.pkgname))


@dataclass(frozen=True)
class BuildPlan:
    '''
    Everything needed to build one Arch package. Plans are pure data,
    creating one has no effect on the system.
    '''

    source: SourcePackage
    target: TargetMetadata
    files: T.Tuple[PlannedFile, ...]
    install_script: T.Optional[str] = None
    pre_build_hooks: T.Tuple[str, ...] = ()
    post_stage_hooks: T.Tuple[str, ...] = ()
    warnings: T.Tuple[MapperWarning, ...] = ()
    script_warnings: T.Tuple[str, ...] = ()
    substitutions: T.Tuple[Substitution, ...] = ()
    resolved: T.Mapping[str, ResolvedSet] = field(default_factory=lambda: MappingProxyType({}))

    @property
    def unresolved(self) -> T.Tuple[MapperWarning, ...]:
        '''Warnings about hard dependencies which could not be mapped at all.'''
        return tuple(
            w
            for w in self.warnings
            if w.reason == MapperWarning.UNRESOLVED and w.field in HARD_DEPENDENCY_FIELDS
        )

    def validate(self):
        self.target.validate()


def _relation_strings(resolved: T.Optional[ResolvedSet], exclude: T.Collection[str], with_version: bool = True):
    result = []
    if not resolved:
        return result
    for entry in resolved:
        best = entry.best
        if not best or best.name in exclude:
            continue
        s = str(best) if with_version else best.name
        if s not in result:
            result.append(s)
    return result


class PackagePlanner:
    '''
    Combines package metadata, mapped dependencies and the filesystem
    layout rules into a BuildPlan.
    '''

    def __init__(
        self,
        config: T.Optional[LocalConfig] = None,
        *,
        rewriter: T.Optional[PathRewriter] = None,
        source_date_epoch: T.Optional[int] = None,
    ):
        lconf = config if config else LocalConfig()
        if rewriter is None:
            rewriter = PathRewriter(extra_rules=[PathRule(r.prefix, r.target) for r in lconf.path_rules])
        self._rewriter = rewriter
        self._scripts = InstallScriptTranslator(self._rewriter)
        self._packager = lconf.packager
        self._license = lconf.license
        self._pre_build_hooks = tuple(lconf.hooks.pre_build)
        self._post_stage_hooks = tuple(lconf.hooks.post_stage)

        if source_date_epoch is None and os.environ.get('SOURCE_DATE_EPOCH'):
            try:
                source_date_epoch = int(os.environ['SOURCE_DATE_EPOCH'])
            except ValueError:
                log.warning('Ignoring invalid SOURCE_DATE_EPOCH value')
        self._source_date_epoch = source_date_epoch

    @property
    def rewriter(self) -> PathRewriter:
        return self._rewriter

    def _provides(self, pkg: SourcePackage, pkgname: str) -> T.List[str]:
        provides = []
        for entry in pkg.relations.provides:
            for rel in entry.alternatives:
                name = sanitize_pkgname(rel.name)
                if name == pkgname:
                    continue
                s = name
                if rel.constraint and rel.constraint.op == '=':
                    try:
                        s = name + str(translate_constraint(rel.constraint))
                    except UntranslatableConstraint:
                        log.debug('Dropping version of provided name %s', rel.name)
                if s not in provides:
                    provides.append(s)
        return provides

    def plan(self, pkg: SourcePackage, resolved: T.Mapping[str, ResolvedSet]) -> BuildPlan:
        '''
        Create the build plan for :pkg, with its relations already mapped by the DependencyMapper.
        '''
        substitutions = []

        pkgname = sanitize_pkgname(pkg.name)
        if pkgname != pkg.name:
            substitutions.append(Substitution('pkgname', pkg.name, pkgname))

        epoch, pkgver, pkgrel = convert_version(pkg.version)
        if pkgver != pkg.version.upstream:
            substitutions.append(Substitution('pkgver', pkg.version.upstream, pkgver))
        if pkg.version.revision and pkgrel != pkg.version.revision:
            substitutions.append(Substitution('pkgrel', pkg.version.revision, pkgrel))

        try:
            arch, known = debian_to_arch_architecture(pkg.architecture)
        except ValueError as e:
            raise PlanError(str(e))
        if not known:
            log.warning('Unknown architecture "%s" for %s, using it unchanged', pkg.architecture, pkg.name)

        files = self._rewriter.plan_tree(pkg.files)

        provides = self._provides(pkg, pkgname)
        own_names = set([pkgname, pkg.name] + [p.split('=', 1)[0] for p in provides])

        depends = _relation_strings(resolved.get('pre_depends'), own_names)
        for dep in _relation_strings(resolved.get('depends'), own_names):
            if dep not in depends:
                depends.append(dep)

        optdepends = []
        for field_name, reason in (('recommends', 'recommended'), ('suggests', 'suggested')):
            for name in _relation_strings(resolved.get(field_name), own_names, with_version=False):
                if not any(o.split(':', 1)[0] == name for o in optdepends):
                    optdepends.append('{}: {} by the Debian package'.format(name, reason))

        conflicts = _relation_strings(resolved.get('conflicts'), own_names)
        for dep in _relation_strings(resolved.get('breaks'), own_names):
            if dep not in conflicts:
                conflicts.append(dep)
        replaces = _relation_strings(resolved.get('replaces'), own_names)

        backup = []
        for conffile in pkg.conffiles:
            target = self._rewriter.rewrite(conffile)
            if target:
                backup.append(target.lstrip('/'))

        builddate = self._source_date_epoch
        if builddate is None:
            builddate = max([f.mtime for f in files], default=0)

        target = TargetMetadata(
            pkgname=pkgname,
            pkgbase=sanitize_pkgname(pkg.source_name),
            epoch=epoch,
            pkgver=pkgver,
            pkgrel=pkgrel,
            arch=arch,
            pkgdesc=pkg.description if pkg.description else pkg.name,
            url=pkg.homepage if pkg.homepage else '',
            packager=self._packager,
            builddate=builddate,
            size=sum(f.size for f in files),
            license=(self._license,),
            depends=tuple(depends),
            optdepends=tuple(optdepends),
            conflicts=tuple(conflicts),
            provides=tuple(provides),
            replaces=tuple(replaces),
            backup=tuple(backup),
        )
        target.validate()

        warnings = []
        for field_name in MAPPED_FIELDS:
            rset = resolved.get(field_name)
            if rset:
                warnings.extend(rset.warnings)

        install = self._scripts.translate(pkg.scripts, has_triggers=bool(pkg.triggers))

        for s in substitutions:
            log.info('Changed %s of %s', str(s), pkg.name)

        return BuildPlan(
            source=pkg,
            target=target,
            files=tuple(files),
            install_script=install.text if install and install.text else None,
            pre_build_hooks=self._pre_build_hooks,
            post_stage_hooks=self._post_stage_hooks,
            warnings=tuple(warnings),
            script_warnings=install.warnings if install else (),
            substitutions=tuple(substitutions),
            resolved=MappingProxyType(dict(resolved)),
        )
