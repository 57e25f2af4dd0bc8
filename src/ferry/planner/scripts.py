# -*- coding: utf-8 -*-
#
# Copyright (C) 2024-2026 Ferry Developers
#
# SPDX-License-Identifier: LGPL-3.0+

'''
Translation of Debian maintainer scripts into a pacman install file.
'''

import re
from dataclasses import dataclass

import ferry.typing as T
from ferry.planner.paths import PathRewriter

# pacman install function -> (Debian script, arguments)
INSTALL_FUNCTIONS = (
    ('pre_install', 'preinst', 'install'),
    ('post_install', 'postinst', 'configure'),
    ('pre_upgrade', 'preinst', 'upgrade "$2"'),
    ('post_upgrade', 'postinst', 'configure "$2"'),
    ('pre_remove', 'prerm', 'remove'),
    ('post_remove', 'postrm', 'remove'),
)

# commands that have a direct replacement on Arch Linux
TRANSLATIONS = (
    (re.compile(r'\bdeb-systemd-invoke\b'), 'systemctl'),
    (re.compile(r'\binvoke-rc\.d\s+([A-Za-z0-9@._-]+)\s+(start|stop|restart|reload|force-reload)\b'), r'systemctl \2 \1'),
)

# constructs that only work on Debian, (pattern, description)
UNSUPPORTED_CONSTRUCTS = (
    (re.compile(r'(^|[\s;&|(])\.\s+/usr/share/debconf/confmodule'), 'debconf'),
    (re.compile(r'\bdb_(get|set|input|go|purge|fset|fget|subst|register|unregister|stop|reset)\b'), 'debconf'),
    (re.compile(r'\bdpkg-maintscript-helper\b'), 'dpkg-maintscript-helper'),
    (re.compile(r'\bdpkg-divert\b'), 'dpkg-divert'),
    (re.compile(r'\bdpkg-trigger\b'), 'dpkg-trigger'),
    (re.compile(r'\bdpkg-query\b'), 'dpkg-query'),
    (re.compile(r'\bdpkg-statoverride\b'), 'dpkg-statoverride'),
    (re.compile(r'\bdpkg\s+--'), 'dpkg'),
    (re.compile(r'\bupdate-alternatives\b'), 'update-alternatives'),
    (re.compile(r'\bupdate-rc\.d\b'), 'update-rc.d'),
    (re.compile(r'\bdeb-systemd-helper\b'), 'deb-systemd-helper'),
    (re.compile(r'\bpy3compile\b|\bpy3clean\b|\bpycompile\b|\bpyclean\b'), 'Debian python helpers'),
    (re.compile(r'\bucf(r|q)?\s'), 'ucf'),
)

# absolute paths in scripts that may point into a relocated directory
_re_script_path = re.compile(r'(?<![\w/.-])(/(?:usr/)?(?:s?bin|lib(?:32|64)?)(?:/[A-Za-z0-9@_.+-]+)*)')

ANNOTATION_PREFIX = '# ferry: unsupported'


@dataclass(frozen=True)
class InstallScript:
    '''
    Translated maintainer scripts, as content for a pacman ``.INSTALL`` file.
    '''

    text: str
    warnings: T.Tuple[str, ...] = ()


def _interpreter_for(script: str) -> T.Tuple[T.Optional[str], T.Optional[str]]:
    '''
    Determine how to feed :script to its interpreter on stdin.
    Returns (command, problem), the command being None if we can't run the script.
    '''
    first = script.split('\n', 1)[0]
    if not first.startswith('#!'):
        return '/bin/sh -s --', None
    parts = first[2:].split()
    if not parts:
        return '/bin/sh -s --', None
    interp = parts[0]
    if interp == '/usr/bin/env' and len(parts) > 1:
        interp = parts[1]
    base = interp.rsplit('/', 1)[-1]
    if base in ('sh', 'dash'):
        return '/bin/sh -s --', None
    if base == 'bash':
        return '/bin/bash -s --', None
    if base.startswith('perl'):
        return '/usr/bin/perl -', None
    if base.startswith('python3') or base == 'python':
        return '/usr/bin/python3 -', None
    return None, 'unsupported interpreter "{}"'.format(interp)


class InstallScriptTranslator:
    '''
    Turns Debian maintainer scripts into the functions pacman calls at
    install, upgrade and removal time.

    Each original script is embedded unchanged (apart from the command and
    path translations we know to be safe) and invoked with the arguments
    dpkg would have used. Lines we can not translate are kept and annotated.
    '''

    def __init__(self, rewriter: T.Optional[PathRewriter] = None):
        self._rewriter = rewriter if rewriter else PathRewriter()

    def _rewrite_paths(self, line: str) -> str:
        def repl(m):
            new = self._rewriter.rewrite(m.group(1))
            return new if new else m.group(1)

        return _re_script_path.sub(repl, line)

    def translate_script(self, name: str, script: str) -> T.Tuple[str, T.List[str]]:
        '''
        Translate the body of a single maintainer script.
        :return: The new body and a list of warnings.
        '''
        warnings = []
        lines = []
        for lineno, line in enumerate(script.split('\n'), start=1):
            if lineno == 1 and line.startswith('#!'):
                lines.append(line)
                continue
            stripped = line.lstrip()
            if stripped.startswith('#'):
                lines.append(line)
                continue

            found = []
            for pattern, what in UNSUPPORTED_CONSTRUCTS:
                if pattern.search(line) and what not in found:
                    found.append(what)
            if found:
                indent = line[: len(line) - len(stripped)]
                for what in found:
                    lines.append('{}{} construct "{}", kept as-is'.format(indent, ANNOTATION_PREFIX, what))
                    warnings.append('{}:{}: unsupported construct "{}"'.format(name, lineno, what))
                lines.append(line)
                continue

            for pattern, replacement in TRANSLATIONS:
                line = pattern.sub(replacement, line)
            lines.append(self._rewrite_paths(line))

        return '\n'.join(lines), warnings

    def translate(self, scripts: T.Mapping[str, str], *, has_triggers: bool = False) -> T.Optional[InstallScript]:
        '''
        Create the pacman install file for a package's maintainer scripts.

        :return: The install script, or None if the package has no scripts we could use.
        '''
        warnings = []
        bodies = {}
        for name in ('preinst', 'postinst', 'prerm', 'postrm'):
            script = scripts.get(name)
            if not script or not script.strip():
                continue
            if '\x00' in script:
                warnings.append('{}: binary maintainer scripts are not supported, skipped'.format(name))
                continue
            interp, problem = _interpreter_for(script)
            if not interp:
                warnings.append('{}: {}, skipped'.format(name, problem))
                continue
            body, script_warnings = self.translate_script(name, script)
            warnings.extend(script_warnings)
            bodies[name] = (interp, body)

        if scripts.get('config'):
            warnings.append('config: debconf configuration scripts are not supported, skipped')
        if has_triggers:
            warnings.append('triggers: dpkg triggers are not supported, skipped')

        if not bodies:
            if not warnings:
                return None
            return InstallScript('', tuple(warnings))

        out = ['# Generated from Debian maintainer scripts', '']
        for name, (interp, body) in bodies.items():
            delimiter = 'FERRY_{}_EOF'.format(name.upper())
            while delimiter in body:
                delimiter = delimiter + '_'
            out.append('_ferry_{}() {{'.format(name))
            out.append("    {} \"$@\" <<'{}'".format(interp, delimiter))
            out.append(body.rstrip('\n'))
            out.append(delimiter)
            out.append('}')
            out.append('')

        for func, script, args in INSTALL_FUNCTIONS:
            if script not in bodies:
                continue
            out.append('{}() {{'.format(func))
            out.append('    _ferry_{} {}'.format(script, args))
            out.append('}')
            out.append('')

        return InstallScript('\n'.join(out).rstrip('\n') + '\n', tuple(warnings))
