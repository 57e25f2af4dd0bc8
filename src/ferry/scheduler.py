# -*- coding: utf-8 -*-
#
# Copyright (C) 2024-2026 Ferry Developers
#
# SPDX-License-Identifier: LGPL-3.0+

import os
import enum
import time
import threading
import concurrent.futures
from dataclasses import dataclass

from pebble import ThreadPool

import ferry.typing as T
from ferry.utils import Deadline
from ferry.errors import (
    MapperWarning,
    JobTimeoutError,
    ResolutionError,
    JobCancelledError,
    InvalidTransitionError,
)
from ferry.logging import log, job_log
from ferry.mapper import DependencyMapper
from ferry.sandbox import Artifact, SandboxBuilder, SandboxSession
from ferry.archive import ArchiveReader, SourcePackage
from ferry.planner import BuildPlan, PackagePlanner
from ferry.localconfig import LocalConfig
from ferry.planner.plan import HARD_DEPENDENCY_FIELDS

# how long a job may overrun its deadline before we tear it down ourselves
DEFAULT_GRACE_PERIOD = 10.0
POLL_INTERVAL = 0.2


class JobState(enum.Enum):
    '''
    State of a conversion job. Jobs only ever move forward.
    '''

    PENDING = 'pending'
    EXTRACTING = 'extracting'
    RESOLVING = 'resolving'
    PLANNING = 'planning'
    BUILDING = 'building'
    DONE = 'done'
    FAILED = 'failed'
    CANCELLED = 'cancelled'

    def __str__(self):
        return self.value

    @property
    def terminal(self) -> bool:
        return self in (JobState.DONE, JobState.FAILED, JobState.CANCELLED)


_TRANSITIONS = {
    JobState.PENDING: (JobState.EXTRACTING,),
    JobState.EXTRACTING: (JobState.RESOLVING,),
    JobState.RESOLVING: (JobState.PLANNING,),
    JobState.PLANNING: (JobState.BUILDING, JobState.DONE),
    JobState.BUILDING: (JobState.DONE,),
}


class ResolutionPolicy(enum.Enum):
    '''
    What to do with dependencies that could not be mapped.
    '''

    STRICT = 'strict'  # unresolved Depends/Pre-Depends fail the job
    PERMISSIVE = 'permissive'  # report them and build anyway
    DRY_RUN = 'dry-run'  # plan the package, but don't build it

    def __str__(self):
        return self.value


@dataclass(frozen=True)
class JobResult:
    '''
    Outcome of one conversion job.
    '''

    index: int
    source: str
    state: JobState
    artifact: T.Optional[Artifact] = None
    warnings: T.Tuple[MapperWarning, ...] = ()
    error: T.Optional[Exception] = None
    failed_stage: T.Optional[str] = None
    plan: T.Optional[BuildPlan] = None
    package: T.Optional[SourcePackage] = None
    elapsed: float = 0.0

    @property
    def ok(self) -> bool:
        return self.state == JobState.DONE


class ConversionJob:
    '''
    A single archive moving through the conversion pipeline.
    '''

    def __init__(self, index: int, source: T.ArchiveSource, name: T.Optional[str] = None):
        self.index = index
        self.source = source
        if not name:
            if isinstance(source, (str, os.PathLike)):
                name = os.path.basename(os.fspath(source))
            else:
                name = 'job-{}'.format(index)
        self.name = name
        self.deadline: T.Optional[Deadline] = None
        self.session: T.Optional[SandboxSession] = None
        self.package: T.Optional[SourcePackage] = None
        self.plan: T.Optional[BuildPlan] = None
        self.warnings: T.List[MapperWarning] = []
        self.result: T.Optional[JobResult] = None

        self._state = JobState.PENDING
        self._history: T.List[T.Tuple[JobState, float]] = [(JobState.PENDING, time.monotonic())]
        self._started: T.Optional[float] = None
        self._lock = threading.Lock()

    @property
    def state(self) -> JobState:
        return self._state

    @property
    def history(self) -> T.List[JobState]:
        with self._lock:
            return [s for s, _ in self._history]

    @property
    def elapsed(self) -> float:
        if self._started is None:
            return 0.0
        return time.monotonic() - self._started

    def start(self, timeout: T.Optional[float]):
        self._started = time.monotonic()
        self.deadline = Deadline(timeout)

    def advance(self, new_state: JobState):
        '''
        Move the job into :new_state. FAILED and CANCELLED are reachable from
        every state that is not final, everything else only in pipeline order.
        '''
        with self._lock:
            if self._state.terminal:
                raise InvalidTransitionError('Job {} is already {}'.format(self.name, self._state))
            if new_state not in (JobState.FAILED, JobState.CANCELLED) and new_state not in _TRANSITIONS[self._state]:
                raise InvalidTransitionError(
                    'Job {} can not move from {} to {}'.format(self.name, self._state, new_state)
                )
            self._state = new_state
            self._history.append((new_state, time.monotonic()))

    def finish(self, state: JobState, *, artifact=None, error=None, failed_stage=None) -> T.Optional[JobResult]:
        '''
        Move the job into a final state and record its result.
        Returns None if the job was already finished by someone else.
        '''
        with self._lock:
            if self._state.terminal:
                return None
            if state not in (JobState.FAILED, JobState.CANCELLED) and state not in _TRANSITIONS[self._state]:
                raise InvalidTransitionError('Job {} can not move from {} to {}'.format(self.name, self._state, state))
            self._state = state
            self._history.append((state, time.monotonic()))
            self.result = JobResult(
                index=self.index,
                source=self.name,
                state=state,
                artifact=artifact,
                warnings=tuple(self.warnings),
                error=error,
                failed_stage=failed_stage,
                plan=self.plan,
                package=self.package,
                elapsed=self.elapsed,
            )
            return self.result


class ConversionScheduler:
    '''
    Runs the conversion pipeline for a batch of archives on a pool of
    worker threads.

    Jobs are independent of each other: a failing job never affects any
    other job of the batch. The only state they share is the resolution
    cache of the dependency mapper.
    '''

    def __init__(
        self,
        mapper: DependencyMapper,
        planner: PackagePlanner,
        builder: T.Optional[SandboxBuilder],
        *,
        reader: T.Optional[ArchiveReader] = None,
        policy: ResolutionPolicy = ResolutionPolicy.PERMISSIVE,
        max_workers: T.Optional[int] = None,
        job_timeout: T.Optional[float] = None,
        grace_period: float = DEFAULT_GRACE_PERIOD,
        config: T.Optional[LocalConfig] = None,
    ):
        lconf = config if config else LocalConfig()
        self._mapper = mapper
        self._planner = planner
        self._builder = builder
        self._reader = reader if reader else ArchiveReader()
        self._policy = policy
        self._workers = max_workers if max_workers else lconf.workers
        self._job_timeout = job_timeout if job_timeout is not None else lconf.job_timeout
        self._grace_period = grace_period
        self._cancelled = threading.Event()

    @property
    def policy(self) -> ResolutionPolicy:
        return self._policy

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self):
        '''
        Cancel the running batch, or the next one if no batch is running.
        Jobs that did not start yet are not started, running jobs stop at
        their next stage boundary unless they are already building their package.
        '''
        if not self._cancelled.is_set():
            log.info('Cancelling conversion batch')
        self._cancelled.set()

    def _cancel_job(self, job: ConversionJob) -> JobResult:
        job_log(job.name).info('Cancelled while %s', job.state)
        result = job.finish(JobState.CANCELLED, error=JobCancelledError('Batch was cancelled'))
        return result if result else job.result

    def _check_unresolved(self, warnings: T.Sequence[MapperWarning]):
        if self._policy != ResolutionPolicy.STRICT:
            return
        unresolved = [
            w for w in warnings if w.reason == MapperWarning.UNRESOLVED and w.field in HARD_DEPENDENCY_FIELDS
        ]
        if unresolved:
            raise ResolutionError(unresolved)

    def _run_job(self, job: ConversionJob) -> JobResult:
        jlog = job_log(job.name)
        if self._cancelled.is_set():
            return self._cancel_job(job)

        job.start(self._job_timeout)
        stage = JobState.EXTRACTING
        try:
            job.advance(JobState.EXTRACTING)
            pkg = self._reader.parse(job.source, name=job.name, deadline=job.deadline)
            job.package = pkg
            jlog.debug('Read %s', str(pkg))
            if self._cancelled.is_set():
                return self._cancel_job(job)

            stage = JobState.RESOLVING
            job.advance(JobState.RESOLVING)
            job.deadline.check(str(stage))
            resolved = self._mapper.resolve_relations(pkg.relations)
            for rset in resolved.values():
                job.warnings.extend(rset.warnings)
            for w in job.warnings:
                jlog.warning('%s', str(w))
            self._check_unresolved(job.warnings)
            if self._cancelled.is_set():
                return self._cancel_job(job)

            stage = JobState.PLANNING
            job.advance(JobState.PLANNING)
            job.deadline.check(str(stage))
            job.plan = self._planner.plan(pkg, resolved)
            for sw in job.plan.script_warnings:
                jlog.info('Maintainer scripts: %s', sw)
            if self._policy == ResolutionPolicy.DRY_RUN:
                jlog.info('Planned %s', job.plan.target.artifact_name)
                return job.finish(JobState.DONE) or job.result
            if self._cancelled.is_set():
                return self._cancel_job(job)

            # from here on, the job runs to completion even if the batch is cancelled
            stage = JobState.BUILDING
            job.advance(JobState.BUILDING)
            job.deadline.check(str(stage))
            with self._builder.new_session(job.plan) as session:
                job.session = session
                artifact = self._builder.build(job.plan, deadline=job.deadline, session=session)

            result = job.finish(JobState.DONE, artifact=artifact)
            job.session = None
            jlog.info('Converted to %s in %.1fs', artifact.filename, job.elapsed)
            return result if result else job.result
        except Exception as e:
            job.session = None
            result = job.finish(JobState.FAILED, error=e, failed_stage=str(stage))
            if result is None:
                # the job was already finished, e.g. torn down after a timeout
                jlog.debug('Discarding late error: %s', str(e))
                return job.result
            jlog.error('Failed while %s: %s', stage, str(e))
            return result

    def _finish_timeout(self, job: ConversionJob) -> T.Optional[JobResult]:
        stage = job.state
        return job.finish(
            JobState.FAILED,
            error=JobTimeoutError(str(stage), job.deadline.timeout),
            failed_stage=str(stage),
        )

    def _force_timeout(self, job: ConversionJob) -> T.Optional[JobResult]:
        '''
        Tear down a job that overran its deadline and did not stop on its own.

        Returns None if the job already published its package, it is
        then left to finish on its own.
        '''
        session = job.session
        if session:
            # no package can be published while we hold the session
            with session.guard():
                if session.result is not None:
                    return None
                result = self._finish_timeout(job)
                session.destroy()
        else:
            result = self._finish_timeout(job)
        if result:
            job_log(job.name).error('Did not stop after exceeding its time limit, sandbox was removed')
            return result
        return job.result

    def _wait_for(self, job: ConversionJob, future) -> JobResult:
        while True:
            done, _ = concurrent.futures.wait([future], timeout=POLL_INTERVAL)
            if done:
                return future.result()
            deadline = job.deadline
            if deadline and deadline.overrun() > self._grace_period:
                result = self._force_timeout(job)
                if result:
                    return result

    def run(self, sources: T.Sequence[T.ArchiveSource]) -> T.List[JobResult]:
        '''
        Convert all :sources.

        A :meth:`cancel` issued before this is called cancels the whole batch.

        :return: One result per source, in the order of :sources.
        '''
        try:
            return self._run_batch(sources)
        finally:
            self._cancelled.clear()

    def _run_batch(self, sources: T.Sequence[T.ArchiveSource]) -> T.List[JobResult]:
        if self._mapper.reload():
            log.info('Using mapping snapshot %s', self._mapper.snapshot.version)

        jobs = [ConversionJob(i, src) for i, src in enumerate(sources)]
        if not jobs:
            return []
        log.info('Converting %s packages with %s workers', len(jobs), self._workers)

        pool = ThreadPool(max_workers=max(1, min(self._workers, len(jobs))))
        try:
            futures = [pool.schedule(self._run_job, args=(job,)) for job in jobs]
            results = [self._wait_for(job, future) for job, future in zip(jobs, futures)]
        finally:
            pool.close()
        try:
            pool.join(timeout=self._grace_period)
        except TimeoutError:
            log.warning('Some conversion jobs did not stop in time, leaving them behind')
            pool.stop()

        failed = len([r for r in results if r.state == JobState.FAILED])
        log.info('Batch finished: %s converted, %s failed', len([r for r in results if r.ok]), failed)
        return results
