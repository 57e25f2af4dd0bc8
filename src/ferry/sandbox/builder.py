# -*- coding: utf-8 -*-
#
# Copyright (C) 2024-2026 Ferry Developers
#
# SPDX-License-Identifier: LGPL-3.0+

import os
import hashlib
import dataclasses
from dataclasses import dataclass

import ferry.typing as T
from ferry.utils import Deadline, CommandTimeoutError, force_rmtree, publish_file
from ferry.errors import PlanError, BuildError, ArchiveError, JobTimeoutError
from ferry.logging import log
from ferry.archive import FileKind, ArchiveReader
from ferry.planner import BuildPlan, PlannedFile
from ferry.localconfig import LocalConfig
from ferry.sandbox.session import SandboxSession
from ferry.sandbox.executor import Executor, create_executor
from ferry.sandbox.pkgformat import (
    PackageMember,
    render_mtree,
    write_package,
    render_pkginfo,
    collect_members,
    render_buildinfo,
    read_package_contents,
)

COPY_CHUNK_SIZE = 1024 * 256


@dataclass(frozen=True)
class Artifact:
    '''
    A finished and verified Arch package in the output directory.
    '''

    path: str
    pkgname: str
    version: str
    arch: str
    size: int
    sha256: str

    @property
    def filename(self) -> str:
        return os.path.basename(self.path)


def _safe_join(root: str, path: str) -> str:
    '''
    Location of the absolute package path :path below :root.
    Raises if a symlink in the tree would redirect it out of :root.
    '''
    dest = os.path.join(root, path.lstrip('/'))
    parent = os.path.realpath(os.path.dirname(dest))
    real_root = os.path.realpath(root)
    if parent != real_root and not parent.startswith(real_root + os.sep):
        raise BuildError('staging', 'Path {} would be written outside of the package tree'.format(path))
    return dest


class SandboxBuilder:
    '''
    Build Arch packages from build plans.

    Every build happens in a private sandbox session which is removed
    afterwards. Only verified packages ever reach the output directory.
    '''

    def __init__(
        self,
        output_dir: T.PathUnion,
        *,
        executor: T.Optional[Executor] = None,
        reader: T.Optional[ArchiveReader] = None,
        config: T.Optional[LocalConfig] = None,
    ):
        lconf = config if config else LocalConfig()
        self._output_dir = os.path.abspath(os.fspath(output_dir))
        self._executor = executor if executor else create_executor(lconf)
        self._reader = reader if reader else ArchiveReader()
        self._sandbox_root = lconf.sandbox_root
        self._compression_level = lconf.compression_level

    @property
    def output_dir(self) -> str:
        return self._output_dir

    @property
    def executor(self) -> Executor:
        return self._executor

    def new_session(self, plan: BuildPlan) -> SandboxSession:
        '''Create (but not enter) the sandbox session for :plan.'''
        target = plan.target
        identity = '{}-{}-{}'.format(target.pkgname, target.full_version.replace(':', '_'), target.arch)
        return SandboxSession(self._sandbox_root, identity)

    def _stage_payload(self, plan: BuildPlan, staging: str, deadline: Deadline):
        planned: T.Dict[str, PlannedFile] = {f.source: f for f in plan.files}
        md5sums = plan.source.md5sums

        for entry, fobj in self._reader.iter_payload(plan.source, deadline=deadline):
            deadline.check('building')
            pf = planned.get(entry.path)
            if pf is None:
                continue
            dest = _safe_join(staging, pf.target)

            if pf.kind == FileKind.DIRECTORY:
                os.makedirs(dest, mode=0o755, exist_ok=True)
                continue
            os.makedirs(os.path.dirname(dest), mode=0o755, exist_ok=True)

            if pf.kind == FileKind.SYMLINK:
                os.symlink(pf.linkname, dest)
            elif pf.kind == FileKind.HARDLINK:
                os.link(_safe_join(staging, pf.linkname), dest, follow_symlinks=False)
            else:
                md5 = hashlib.md5()
                fd = os.open(dest, os.O_WRONLY | os.O_CREAT | os.O_EXCL | os.O_NOFOLLOW, 0o600)
                with os.fdopen(fd, 'wb') as out:
                    while True:
                        chunk = fobj.read(COPY_CHUNK_SIZE)
                        if not chunk:
                            break
                        md5.update(chunk)
                        out.write(chunk)
                os.chmod(dest, (pf.mode & 0o777) | 0o600)

                expected = md5sums.get(entry.path)
                if expected and expected != md5.hexdigest():
                    raise ArchiveError(
                        plan.source.origin.payload_member if plan.source.origin else None,
                        'checksum mismatch for {}'.format(entry.path),
                    )

    def _stage(self, plan: BuildPlan, session: SandboxSession, deadline: Deadline):
        '''
        Unpack the payload into the staging tree. A failure to write the tree
        is retried once with a clean tree.
        '''
        staging = session.staging_dir
        for attempt in (1, 2):
            try:
                self._stage_payload(plan, staging, deadline)
                return
            except (ArchiveError, BuildError, JobTimeoutError):
                raise
            except OSError as e:
                if session.destroyed:
                    raise BuildError('staging', 'sandbox was torn down during the build') from e
                if attempt == 2:
                    raise BuildError('staging', 'unable to stage payload: {}'.format(e)) from e
                log.warning('Staging %s failed (%s), retrying', plan.target.pkgname, str(e))
                force_rmtree(staging)
                os.mkdir(staging, 0o755)

    def _hook_env(self, plan: BuildPlan, session: SandboxSession) -> T.Dict[str, str]:
        target = plan.target
        return {
            'FERRY_STAGING_DIR': session.staging_dir,
            'FERRY_PKGNAME': target.pkgname,
            'FERRY_PKGVER': target.full_version,
            'FERRY_ARCH': target.arch,
            'FERRY_SOURCE_PACKAGE': plan.source.name,
            'SOURCE_DATE_EPOCH': str(target.builddate),
        }

    def _run_hooks(self, kind: str, hooks: T.Sequence[str], plan: BuildPlan, session: SandboxSession, deadline: Deadline):
        env = self._hook_env(plan, session)
        for hook in hooks:
            deadline.check('building')
            log.info('Running %s hook for %s: %s', kind, plan.target.pkgname, hook)
            try:
                out, err, ret = self._executor.run(
                    hook, cwd=session.staging_dir, env=env, timeout=deadline.remaining()
                )
            except CommandTimeoutError as e:
                if deadline.expired():
                    raise JobTimeoutError('building', deadline.timeout) from e
                raise BuildError('hook', 'Hook "{}" timed out'.format(hook), stdout=e.out, stderr=e.err) from e
            if ret != 0:
                raise BuildError(
                    'hook',
                    '{} hook "{}" failed with exit code {}'.format(kind, hook, ret),
                    stdout=out,
                    stderr=err,
                )

    def _assemble(self, plan: BuildPlan, session: SandboxSession, deadline: Deadline) -> T.Tuple[str, T.List[str]]:
        '''
        Write the package file into the session's output directory.
        :return: The file name and the names of all archive members.
        '''
        target = plan.target
        planned = {f.target: f for f in plan.files}
        try:
            members = collect_members(session.staging_dir, planned, target.builddate)
        except ValueError as e:
            raise BuildError('compress', str(e)) from e

        # hooks may have changed the payload
        size = sum(m.size for m in members if m.kind == 'file')
        if size != target.size:
            target = dataclasses.replace(target, size=size)
            plan = dataclasses.replace(plan, target=target)

        metadata = [
            ('.PKGINFO', render_pkginfo(target).encode('utf-8')),
            ('.BUILDINFO', render_buildinfo(plan).encode('utf-8')),
        ]
        meta_dir = session.meta_dir
        for name, data in metadata:
            with open(os.path.join(meta_dir, name), 'wb') as f:
                f.write(data)
        if plan.install_script:
            with open(os.path.join(meta_dir, '.INSTALL'), 'wb') as f:
                f.write(plan.install_script.encode('utf-8'))

        meta_members = [
            PackageMember(name, 'file', 0o644, target.builddate, size=len(data), source=os.path.join(meta_dir, name))
            for name, data in metadata
        ]
        if plan.install_script:
            fname = os.path.join(meta_dir, '.INSTALL')
            meta_members.append(
                PackageMember('.INSTALL', 'file', 0o644, target.builddate, size=os.path.getsize(fname), source=fname)
            )

        metadata.append(('.MTREE', render_mtree(meta_members + members)))
        if plan.install_script:
            metadata.append(('.INSTALL', plan.install_script.encode('utf-8')))

        pkg_fname = os.path.join(session.out_dir, target.artifact_name)
        try:
            write_package(
                pkg_fname,
                metadata,
                members,
                mtime=target.builddate,
                level=self._compression_level,
                deadline=deadline,
            )
        except JobTimeoutError:
            raise
        except OSError as e:
            raise BuildError('compress', 'unable to write package: {}'.format(e)) from e

        names = [name for name, _ in metadata] + [m.name for m in members]
        return pkg_fname, names

    def _verify(self, plan: BuildPlan, pkg_fname: str, expected_members: T.List[str]):
        '''
        Re-read the written package and compare it with what we meant to write.
        '''
        target = plan.target
        try:
            info, names = read_package_contents(pkg_fname)
        except Exception as e:
            raise BuildError('verify', 'unable to read back package: {}'.format(e)) from e

        for key, expected in (('pkgname', target.pkgname), ('pkgver', target.full_version), ('arch', target.arch)):
            found = info.get(key, [])
            if found != [expected]:
                raise BuildError('verify', '{} mismatch, expected "{}" but found {}'.format(key, expected, found))
        if names != expected_members:
            missing = sorted(set(expected_members) - set(names))
            extra = sorted(set(names) - set(expected_members))
            raise BuildError(
                'verify', 'package contents differ from the plan (missing: {}, unexpected: {})'.format(missing, extra)
            )

    def _publish(self, plan: BuildPlan, pkg_fname: str) -> Artifact:
        sha256 = hashlib.sha256()
        with open(pkg_fname, 'rb') as f:
            while True:
                chunk = f.read(COPY_CHUNK_SIZE)
                if not chunk:
                    break
                sha256.update(chunk)
        size = os.path.getsize(pkg_fname)

        dest = os.path.join(self._output_dir, os.path.basename(pkg_fname))
        try:
            os.makedirs(self._output_dir, exist_ok=True)
            publish_file(pkg_fname, dest)
        except OSError as e:
            raise BuildError('publish', 'unable to publish {}: {}'.format(os.path.basename(dest), e)) from e

        target = plan.target
        return Artifact(
            path=dest,
            pkgname=target.pkgname,
            version=target.full_version,
            arch=target.arch,
            size=size,
            sha256=sha256.hexdigest(),
        )

    def build(
        self, plan: BuildPlan, *, deadline: T.Optional[Deadline] = None, session: T.Optional[SandboxSession] = None
    ) -> Artifact:
        '''
        Build the package described by :plan.

        If :session is given, it has to be entered already and is used for
        the build, otherwise a new session is created and removed afterwards.
        '''
        plan.validate()
        if not plan.source.origin:
            raise PlanError('Plan for {} has no package to read the payload from'.format(plan.target.pkgname))
        if deadline is None:
            deadline = Deadline.never()

        if session is None:
            with self.new_session(plan) as own_session:
                return self.build(plan, deadline=deadline, session=own_session)

        log.info('Building %s in %s', plan.target.artifact_name, session.build_id)
        self._executor.prepare(session.path)
        self._run_hooks('pre_build', plan.pre_build_hooks, plan, session, deadline)

        self._stage(plan, session, deadline)
        self._executor.prepare(session.path)
        self._run_hooks('post_stage', plan.post_stage_hooks, plan, session, deadline)
        deadline.check('building')

        pkg_fname, members = self._assemble(plan, session, deadline)
        self._verify(plan, pkg_fname, members)
        deadline.check('building')
        with session.guard() as alive:
            if not alive:
                raise BuildError('publish', 'sandbox {} was removed before publishing'.format(session.build_id))
            artifact = self._publish(plan, pkg_fname)
            session.result = artifact
        log.info('Built %s', artifact.filename)
        return artifact

