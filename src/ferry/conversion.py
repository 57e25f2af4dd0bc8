# -*- coding: utf-8 -*-
#
# Copyright (C) 2024-2026 Ferry Developers
#
# SPDX-License-Identifier: LGPL-3.0+

import ferry.typing as T
from ferry.mapper import MappingStore, PackageIndex, DependencyMapper
from ferry.logging import log
from ferry.archive import ArchiveReader, SourcePackage
from ferry.planner import PackagePlanner
from ferry.sandbox import Executor, SandboxBuilder
from ferry.scheduler import JobResult, ResolutionPolicy, ConversionScheduler
from ferry.localconfig import LocalConfig


def convert_batch(
    paths: T.Sequence[T.ArchiveSource],
    output_dir: T.PathUnion,
    policy: T.Union[ResolutionPolicy, str] = ResolutionPolicy.PERMISSIVE,
    *,
    config: T.Optional[LocalConfig] = None,
    index: T.Optional[PackageIndex] = None,
    store: T.Optional[MappingStore] = None,
    executor: T.Optional[Executor] = None,
    max_workers: T.Optional[int] = None,
    job_timeout: T.Optional[float] = None,
) -> T.List[JobResult]:
    '''
    Convert Debian packages into Arch Linux packages.

    :param paths: The .deb files to convert.
    :param output_dir: Directory to place the finished packages in.
    :param policy: How to deal with dependencies that could not be mapped.
    :param index: If set, the dependency mapping candidates are refreshed from this index first.
    :param store: Where mapping snapshots are kept, defaults to the configured snapshot directory.
    :return: One JobResult per input, in input order.
    '''
    lconf = config if config else LocalConfig()
    if not isinstance(policy, ResolutionPolicy):
        policy = ResolutionPolicy(policy)

    if store is None:
        store = MappingStore(lconf.snapshot_dir, keep=lconf.keep_snapshots)
    if index is not None:
        store.refresh(index)

    reader = ArchiveReader()
    mapper = DependencyMapper(store=store, config=lconf)
    planner = PackagePlanner(lconf)
    builder = None
    if policy != ResolutionPolicy.DRY_RUN:
        builder = SandboxBuilder(output_dir, executor=executor, reader=reader, config=lconf)

    scheduler = ConversionScheduler(
        mapper,
        planner,
        builder,
        reader=reader,
        policy=policy,
        max_workers=max_workers,
        job_timeout=job_timeout,
        config=lconf,
    )
    results = scheduler.run(list(paths))
    log.debug('Dependency cache holds %s names after the batch', len(mapper.cache))
    return results


def inspect(path: T.ArchiveSource) -> SourcePackage:
    '''
    Read a .deb file and return its validated metadata and file manifest, without converting it.
    '''
    return ArchiveReader().parse(path)
