# -*- coding: utf-8 -*-
#
# Copyright (C) 2024-2026 Ferry Developers
#
# SPDX-License-Identifier: LGPL-3.0+

import re

import ferry.typing as T

# Debian architecture name -> Arch Linux CARCH
DEBIAN_TO_ARCH_ARCHITECTURES = {
    'all': 'any',
    'amd64': 'x86_64',
    'i386': 'i686',
    'arm64': 'aarch64',
    'armhf': 'armv7h',
    'armel': 'arm',
    'riscv64': 'riscv64',
    'ppc64el': 'powerpc64le',
    'loong64': 'loong64',
}

# multiarch tuple used in library paths, per Debian architecture
DEBIAN_MULTIARCH_TRIPLETS = {
    'amd64': 'x86_64-linux-gnu',
    'i386': 'i386-linux-gnu',
    'arm64': 'aarch64-linux-gnu',
    'armhf': 'arm-linux-gnueabihf',
    'armel': 'arm-linux-gnueabi',
    'riscv64': 'riscv64-linux-gnu',
    'ppc64el': 'powerpc64le-linux-gnu',
    'loong64': 'loongarch64-linux-gnu',
}

_re_arch_name = re.compile(r'^[a-z0-9_]+$')


def debian_to_arch_architecture(debarch: str) -> T.Tuple[str, bool]:
    '''
    Translate a Debian architecture name into the name Arch Linux uses.

    Returns a tuple of the translated name and whether it was found in the
    translation table. Unknown, but syntactically valid names are passed through.
    '''
    debarch = debarch.strip().lower()
    arch = DEBIAN_TO_ARCH_ARCHITECTURES.get(debarch)
    if arch:
        return arch, True
    if not _re_arch_name.match(debarch):
        raise ValueError('Invalid architecture name: {}'.format(debarch))
    return debarch, False


def multiarch_triplets() -> T.List[str]:
    return sorted(set(DEBIAN_MULTIARCH_TRIPLETS.values()))
