# -*- coding: utf-8 -*-
#
# Copyright (C) 2024-2026 Ferry Developers
#
# SPDX-License-Identifier: LGPL-3.0+

import re
import enum
import threading
from types import MappingProxyType
from dataclasses import dataclass

import ferry.typing as T
from ferry.errors import MapperWarning
from ferry.logging import log
from ferry.localconfig import LocalConfig
from ferry.archive.control import normalize_package_name
from ferry.archive.package import (
    Relation,
    DebVersion,
    ConstraintSet,
    RelationEntry,
    PackageRelations,
    VersionConstraint,
)
from ferry.mapper.snapshot import ALIAS_MIN_CONFIDENCE, MappingStore, MappingSnapshot
from ferry.mapper.heuristics import similarity_matches
from ferry.mapper.archversion import version_satisfies

# relation fields that are mapped to Arch packages
MAPPED_FIELDS = ('pre_depends', 'depends', 'recommends', 'suggests', 'conflicts', 'breaks', 'replaces')

# confidence bands of the different match methods, they must not overlap
PROVIDES_SELF_CONFIDENCE = 0.88
PROVIDES_CONFIDENCE = 0.85
PROVIDES_SONAME_CONFIDENCE = 0.8
PROVIDES_UNSATISFIED_PENALTY = 0.05
HEURISTIC_MAX_CONFIDENCE = 0.7

ARCH_OPERATORS = {'<<': '<', '<=': '<=', '=': '=', '>=': '>=', '>>': '>'}

_re_arch_pkgver = re.compile(r'^[A-Za-z0-9._+]+$')


class MatchMethod(enum.Enum):
    '''
    How a Debian relation was mapped, in order of trust.
    '''

    ALIAS = 'alias'
    PROVIDES = 'provides'
    HEURISTIC = 'heuristic'
    UNRESOLVED = 'unresolved'

    def __str__(self):
        return self.value


class UntranslatableConstraint(ValueError):
    pass


@dataclass(frozen=True)
class ArchConstraint:
    '''A version restriction in pacman syntax.'''

    op: str
    version: str

    def __str__(self):
        return self.op + self.version


def translate_constraint(constraint: VersionConstraint) -> ArchConstraint:
    '''
    Express a Debian version constraint with pacman operators and version syntax.

    The epoch is kept, the Debian revision is dropped (it has no relation to
    the Arch pkgrel) and tildes are removed, which keeps pre-releases sorting
    before the release with pacman's version comparison.

    Strict operators are relaxed where dropping the revision would make the
    constraint reject versions Debian accepts: `>> 1.2-3` and `>> 1.2` both
    admit 1.2-4, and `<< 1.2-3` admits 1.2-1.
    '''
    op = ARCH_OPERATORS.get(constraint.op)
    if not op:
        raise UntranslatableConstraint('unknown operator "{}"'.format(constraint.op))
    try:
        v = DebVersion.parse(constraint.version)
    except ValueError as e:
        raise UntranslatableConstraint(str(e))

    pkgver = v.upstream.replace('~', '')
    if not pkgver or not _re_arch_pkgver.match(pkgver):
        raise UntranslatableConstraint('version "{}" can not be expressed for pacman'.format(constraint.version))
    if v.epoch:
        pkgver = '{}:{}'.format(v.epoch, pkgver)
    # pacman ignores the pkgrel of installed packages when the constraint has none
    if constraint.op == '>>' or (constraint.op == '<<' and v.revision):
        op = op + '='
    return ArchConstraint(op, pkgver)


@dataclass(frozen=True)
class Candidate:
    '''
    An Arch package a Debian name may map to.
    :provided_version is the version the candidate provides the name with, if known.
    '''

    name: str
    confidence: float
    method: MatchMethod
    provided_version: T.Optional[str] = None


@dataclass(frozen=True)
class MappedCandidate:
    """A candidate with the version constraint of the relation applied."""

    name: str
    confidence: float
    method: MatchMethod
    constraint: T.Optional[ArchConstraint] = None

    def __str__(self):
        if self.constraint:
            return self.name + str(self.constraint)
        return self.name


@dataclass(frozen=True)
class ResolvedEntry:
    '''
    Mapping result for one relation entry (a group of alternatives).
    '''

    entry: RelationEntry
    field: str
    candidates: T.Tuple[MappedCandidate, ...] = ()
    alternative: T.Optional[Relation] = None
    dropped: bool = False

    @property
    def resolved(self) -> bool:
        return self.dropped or len(self.candidates) > 0

    @property
    def best(self) -> T.Optional[MappedCandidate]:
        return self.candidates[0] if self.candidates else None

    @property
    def method(self) -> MatchMethod:
        if self.candidates:
            return self.candidates[0].method
        if self.dropped:
            return MatchMethod.ALIAS
        return MatchMethod.UNRESOLVED


@dataclass(frozen=True)
class ResolvedSet:
    field: str
    entries: T.Tuple[ResolvedEntry, ...] = ()
    warnings: T.Tuple[MapperWarning, ...] = ()

    def __iter__(self):
        return iter(self.entries)

    def __len__(self):
        return len(self.entries)

    @property
    def unresolved(self) -> T.Tuple[ResolvedEntry, ...]:
        return tuple(e for e in self.entries if not e.resolved)


class ResolutionCache:
    '''
    Cache of name lookups, shared between all jobs of a process.

    Lookups read an immutable mapping without locking. Writers build a new
    mapping and swap the reference, the lock only serializes writers.
    '''

    def __init__(self, snapshot_version: int):
        self._snapshot_version = snapshot_version
        self._entries: T.Mapping[str, T.Tuple[Candidate, ...]] = MappingProxyType({})
        self._lock = threading.Lock()

    @property
    def snapshot_version(self) -> int:
        return self._snapshot_version

    def get(self, name: str) -> T.Optional[T.Tuple[Candidate, ...]]:
        return self._entries.get(name)

    def view(self) -> T.Mapping[str, T.Tuple[Candidate, ...]]:
        """The current cache contents. The returned mapping never changes."""
        return self._entries

    def publish(self, updates: T.Mapping[str, T.Tuple[Candidate, ...]]):
        if not updates:
            return
        with self._lock:
            merged = dict(self._entries)
            for key, value in updates.items():
                merged.setdefault(key, value)
            self._entries = MappingProxyType(merged)

    def __len__(self):
        return len(self._entries)


class DependencyMapper:
    '''
    Map Debian package relations onto Arch Linux packages.

    Each name is looked up in the alias table first, then in the provides
    index of the candidate pool and finally with name heuristics. Results for a
    name only depend on the mapping snapshot and the configuration, so they
    are cached for as long as the snapshot is in use.
    '''

    def __init__(
        self,
        snapshot: T.Optional[MappingSnapshot] = None,
        *,
        store: T.Optional[MappingStore] = None,
        config: T.Optional[LocalConfig] = None,
        overrides: T.Optional[T.Mapping[str, T.Sequence[str]]] = None,
    ):
        lconf = config if config else LocalConfig()
        self._store = store
        if snapshot is None:
            snapshot = store.load() if store else MappingSnapshot.initial()

        self._threshold = lconf.similarity_threshold
        self._low_confidence = lconf.low_confidence
        self._max_candidates = max(1, lconf.max_candidates)
        if overrides is None:
            overrides = lconf.aliases
        self._overrides = {normalize_package_name(k): tuple(v) for k, v in overrides.items()}

        # snapshot and the cache derived from it are always replaced together
        self._state = (snapshot, ResolutionCache(snapshot.version))

    @property
    def snapshot(self) -> MappingSnapshot:
        return self._state[0]

    @property
    def cache(self) -> ResolutionCache:
        return self._state[1]

    def use_snapshot(self, snapshot: MappingSnapshot):
        '''
        Switch to a different mapping snapshot. Resolutions already running
        finish with the snapshot they started with.
        '''
        self._state = (snapshot, ResolutionCache(snapshot.version))
        log.debug('Dependency mapper now uses snapshot version %s', snapshot.version)

    def reload(self) -> bool:
        """Switch to the newest snapshot of the store, if it changed."""
        if not self._store:
            return False
        snapshot = self._store.load()
        if snapshot.version == self.snapshot.version:
            return False
        self.use_snapshot(snapshot)
        return True

    def _compute_candidates(self, snapshot: MappingSnapshot, name: str) -> T.Tuple[Candidate, ...]:
        # user-configured aliases
        if name in self._overrides:
            return tuple(Candidate(n, 1.0, MatchMethod.ALIAS) for n in self._overrides[name])

        # aliases without constraint, constraint-specific ones are handled by the caller
        for alias in snapshot.aliases_for(name):
            if alias.constraint is None:
                return tuple(
                    Candidate(n, max(ALIAS_MIN_CONFIDENCE, c), MatchMethod.ALIAS)
                    for n, c in alias.candidates
                )

        # provides index, every package implicitly provides its own name
        found: T.Dict[str, Candidate] = {}
        pkg = snapshot.get_package(name)
        if pkg:
            found[pkg.name] = Candidate(pkg.name, PROVIDES_SELF_CONFIDENCE, MatchMethod.PROVIDES, pkg.version)
        for provider in snapshot.providers_of(name):
            confidence = PROVIDES_SONAME_CONFIDENCE if provider.soname else PROVIDES_CONFIDENCE
            prev = found.get(provider.package)
            if prev and prev.confidence >= confidence:
                continue
            found[provider.package] = Candidate(provider.package, confidence, MatchMethod.PROVIDES, provider.version)
        if found:
            return tuple(sorted(found.values(), key=lambda c: (-c.confidence, c.name)))

        # name heuristics
        matches = similarity_matches(name, snapshot.package_names, self._threshold, self._max_candidates)
        return tuple(
            Candidate(n, round(score * HEURISTIC_MAX_CONFIDENCE, 4), MatchMethod.HEURISTIC) for n, score in matches
        )

    def lookup(self, name: str) -> T.Tuple[Candidate, ...]:
        '''
        Find the Arch candidates for a Debian package name, ignoring versions.
        '''
        snapshot, cache = self._state
        key = normalize_package_name(name)
        cands = cache.get(key)
        if cands is None:
            cands = self._compute_candidates(snapshot, key)
            cache.publish({key: cands})
        return cands

    def _apply_constraint(
        self, cands: T.Tuple[Candidate, ...], constraint: T.Optional[ArchConstraint]
    ) -> T.List[MappedCandidate]:
        result = []
        for c in cands:
            confidence = c.confidence
            if constraint and c.method == MatchMethod.PROVIDES and c.provided_version:
                if not version_satisfies(c.provided_version, constraint.op, constraint.version):
                    confidence = confidence - PROVIDES_UNSATISFIED_PENALTY
            result.append(MappedCandidate(c.name, round(confidence, 4), c.method, constraint))
        result.sort(key=lambda c: (-c.confidence, c.name))
        return result[: self._max_candidates]

    def _resolve_entry(
        self,
        snapshot: MappingSnapshot,
        cache: ResolutionCache,
        updates: T.Dict[str, T.Tuple[Candidate, ...]],
        field: str,
        entry: RelationEntry,
        warnings: T.List[MapperWarning],
    ) -> ResolvedEntry:
        chosen = None
        for alt in entry.alternatives:
            key = normalize_package_name(alt.name)

            # constraint-specific aliases
            if alt.constraint is not None and key not in self._overrides:
                specific = [a for a in snapshot.aliases_for(key) if a.constraint == str(alt.constraint)]
                if specific:
                    mapped = tuple(
                        MappedCandidate(n, max(ALIAS_MIN_CONFIDENCE, c), MatchMethod.ALIAS)
                        for n, c in specific[0].candidates
                    )
                    if not mapped:
                        return ResolvedEntry(entry, field, (), alt, dropped=True)
                    chosen = (alt, mapped)
                    break

            if key not in self._overrides and any(a.dropped and a.constraint is None for a in snapshot.aliases_for(key)):
                log.debug('Dropping relation on Debian-specific package %s', alt.name)
                return ResolvedEntry(entry, field, (), alt, dropped=True)

            cands = cache.get(key)
            if cands is None:
                cands = updates.get(key)
            if cands is None:
                cands = self._compute_candidates(snapshot, key)
                updates[key] = cands
            if not cands:
                continue

            arch_constraint = None
            if alt.constraint is not None:
                try:
                    arch_constraint = translate_constraint(alt.constraint)
                except UntranslatableConstraint as e:
                    warnings.append(
                        MapperWarning(
                            str(alt), MapperWarning.UNTRANSLATABLE, field=field, detail='{}, dropped the version'.format(e)
                        )
                    )
            chosen = (alt, tuple(self._apply_constraint(cands, arch_constraint)))
            break

        if not chosen:
            warnings.append(MapperWarning(str(entry), MapperWarning.UNRESOLVED, field=field))
            return ResolvedEntry(entry, field)

        alt, mapped = chosen
        best = mapped[0]

        # pacman has no alternatives: contradicting constraints on the same target can't be expressed
        if best.constraint is not None:
            for other in entry.alternatives:
                if other is alt or other.constraint is None:
                    continue
                if normalize_package_name(other.name) == normalize_package_name(alt.name):
                    warnings.append(
                        MapperWarning(
                            str(entry),
                            MapperWarning.UNTRANSLATABLE,
                            field=field,
                            detail='alternatives with different versions of one package, dropped the version',
                        )
                    )
                    mapped = tuple(MappedCandidate(c.name, c.confidence, c.method, None) for c in mapped)
                    best = mapped[0]
                    break

        if best.method == MatchMethod.HEURISTIC and best.confidence < self._low_confidence:
            warnings.append(
                MapperWarning(
                    str(entry),
                    MapperWarning.LOW_CONFIDENCE,
                    field=field,
                    detail='best guess {} ({:.2f})'.format(best.name, best.confidence),
                )
            )
        return ResolvedEntry(entry, field, mapped, alt)

    def resolve(self, constraints: ConstraintSet) -> ResolvedSet:
        '''
        Map all relations of a field.

        Unresolved entries never raise, they are reported as warnings in
        the returned set. Whether that is acceptable is up to the caller.
        '''
        snapshot, cache = self._state
        updates: T.Dict[str, T.Tuple[Candidate, ...]] = {}
        warnings: T.List[MapperWarning] = []
        entries = []
        for entry in constraints:
            entries.append(self._resolve_entry(snapshot, cache, updates, constraints.field, entry, warnings))

        # publish everything we learned in this cycle at once
        cache.publish(updates)
        return ResolvedSet(constraints.field, tuple(entries), tuple(warnings))

    def resolve_relations(self, relations: PackageRelations) -> T.Dict[str, ResolvedSet]:
        """Map all relation fields of a package that have an Arch equivalent."""
        result = {}
        for field, constraints in relations.items():
            if field not in MAPPED_FIELDS:
                continue
            result[field] = self.resolve(constraints)
        return result
