# -*- coding: utf-8 -*-
#
# Copyright (C) 2024-2026 Ferry Developers
#
# SPDX-License-Identifier: LGPL-3.0+

'''
Curated Debian -> Arch Linux package name aliases.
'''

# (Debian name, Arch name, confidence)
BUILTIN_ALIASES = (
    # base system
    ('libc6', 'glibc', 1.0),
    ('libc6-dev', 'glibc', 0.95),
    ('libc-bin', 'glibc', 0.95),
    ('libstdc++6', 'gcc-libs', 1.0),
    ('libgcc-s1', 'gcc-libs', 1.0),
    ('libgcc1', 'gcc-libs', 1.0),
    ('libatomic1', 'gcc-libs', 0.95),
    ('libgomp1', 'gcc-libs', 0.95),
    ('zlib1g', 'zlib', 1.0),
    ('zlib1g-dev', 'zlib', 0.95),
    ('libbz2-1.0', 'bzip2', 1.0),
    ('liblzma5', 'xz', 1.0),
    ('libzstd1', 'zstd', 1.0),
    ('liblz4-1', 'lz4', 1.0),
    ('libpcre3', 'pcre', 1.0),
    ('libpcre2-8-0', 'pcre2', 1.0),
    ('libreadline8', 'readline', 1.0),
    ('libncurses6', 'ncurses', 1.0),
    ('libncursesw6', 'ncurses', 1.0),
    ('libtinfo6', 'ncurses', 0.95),
    ('libexpat1', 'expat', 1.0),
    ('libidn2-0', 'libidn2', 1.0),
    ('libunistring2', 'libunistring', 1.0),
    ('libffi8', 'libffi', 1.0),
    ('libffi7', 'libffi', 1.0),
    ('libgmp10', 'gmp', 1.0),
    ('libmpfr6', 'mpfr', 1.0),
    ('libmpc3', 'libmpc', 1.0),
    ('libuuid1', 'util-linux-libs', 1.0),
    ('libblkid1', 'util-linux-libs', 1.0),
    ('libmount1', 'util-linux-libs', 1.0),
    ('libselinux1', 'libselinux', 0.9),
    ('libcap2', 'libcap', 1.0),
    ('libattr1', 'attr', 1.0),
    ('libacl1', 'acl', 1.0),
    ('libudev1', 'systemd-libs', 1.0),
    ('libsystemd0', 'systemd-libs', 1.0),
    ('libdbus-1-3', 'dbus', 1.0),
    ('libxml2', 'libxml2', 1.0),
    ('libsqlite3-0', 'sqlite', 1.0),
    ('libcurl4', 'curl', 1.0),
    ('libcurl3-gnutls', 'curl', 0.95),
    ('libicu72', 'icu', 0.95),
    ('libicu74', 'icu', 0.95),
    # crypto
    ('libssl1.1', 'openssl-1.1', 0.95),
    ('libssl3', 'openssl', 1.0),
    ('libssl3t64', 'openssl', 1.0),
    ('libssl-dev', 'openssl', 0.95),
    ('libgnutls30', 'gnutls', 1.0),
    ('libgcrypt20', 'libgcrypt', 1.0),
    ('libgpg-error0', 'libgpg-error', 1.0),
    ('gpg', 'gnupg', 0.95),
    ('libsodium23', 'libsodium', 1.0),
    ('libnettle8', 'nettle', 1.0),
    ('libhogweed6', 'nettle', 0.95),
    ('libp11-kit0', 'p11-kit', 1.0),
    ('libtasn1-6', 'libtasn1', 1.0),
    ('libnss3', 'nss', 1.0),
    ('libnspr4', 'nspr', 1.0),
    ('ca-certificates', 'ca-certificates', 1.0),
    # utilities
    ('mawk', 'gawk', 0.9),
    ('awk', 'gawk', 0.95),
    ('xz-utils', 'xz', 1.0),
    ('procps', 'procps-ng', 1.0),
    ('adduser', 'shadow', 0.9),
    ('passwd', 'shadow', 0.95),
    ('login', 'shadow', 0.95),
    ('bsdutils', 'util-linux', 0.95),
    ('python3', 'python', 1.0),
    ('python3-minimal', 'python', 0.95),
    ('perl-base', 'perl', 1.0),
    ('default-jre', 'java-runtime', 1.0),
    ('default-jre-headless', 'java-runtime-headless', 1.0),
    ('default-jdk', 'java-environment', 1.0),
    ('openjdk-17-jre', 'jre17-openjdk', 1.0),
    ('openjdk-17-jre-headless', 'jre17-openjdk-headless', 1.0),
    ('openjdk-21-jre', 'jre21-openjdk', 1.0),
    ('openjdk-21-jre-headless', 'jre21-openjdk-headless', 1.0),
    ('x11-utils', 'xorg-xprop', 0.9),
    ('x11-xserver-utils', 'xorg-xset', 0.9),
    # X11 / graphics
    ('libx11-6', 'libx11', 1.0),
    ('libx11-xcb1', 'libx11', 0.95),
    ('libxext6', 'libxext', 1.0),
    ('libxrender1', 'libxrender', 1.0),
    ('libxrandr2', 'libxrandr', 1.0),
    ('libxi6', 'libxi', 1.0),
    ('libxcursor1', 'libxcursor', 1.0),
    ('libxcomposite1', 'libxcomposite', 1.0),
    ('libxdamage1', 'libxdamage', 1.0),
    ('libxfixes3', 'libxfixes', 1.0),
    ('libxinerama1', 'libxinerama', 1.0),
    ('libxkbcommon0', 'libxkbcommon', 1.0),
    ('libxkbfile1', 'libxkbfile', 1.0),
    ('libxcb1', 'libxcb', 1.0),
    ('libxcb-shm0', 'libxcb', 0.95),
    ('libxcb-render0', 'libxcb', 0.95),
    ('libxcb-xfixes0', 'libxcb', 0.95),
    ('libxcb-randr0', 'libxcb', 0.95),
    ('libxcb-dri3-0', 'libxcb', 0.95),
    ('libxss1', 'libxss', 1.0),
    ('libxtst6', 'libxtst', 1.0),
    ('libxshmfence1', 'libxshmfence', 1.0),
    ('libgl1', 'libglvnd', 0.95),
    ('libegl1', 'libglvnd', 0.95),
    ('libgles2', 'libglvnd', 0.95),
    ('libglx0', 'libglvnd', 0.95),
    ('libgl1-mesa-dri', 'mesa', 0.95),
    ('libgbm1', 'mesa', 0.95),
    ('libdrm2', 'libdrm', 1.0),
    ('libvulkan1', 'vulkan-icd-loader', 1.0),
    ('libwayland-client0', 'wayland', 1.0),
    ('libwayland-server0', 'wayland', 0.95),
    ('libfontconfig1', 'fontconfig', 1.0),
    ('libfreetype6', 'freetype2', 1.0),
    ('libpng16-16', 'libpng', 1.0),
    ('libjpeg62-turbo', 'libjpeg-turbo', 1.0),
    ('libjpeg-turbo8', 'libjpeg-turbo', 1.0),
    ('libtiff6', 'libtiff', 1.0),
    ('libwebp7', 'libwebp', 1.0),
    # desktop libraries
    ('libgtk-3-0', 'gtk3', 1.0),
    ('libgtk-3-0t64', 'gtk3', 1.0),
    ('libgtk-4-1', 'gtk4', 1.0),
    ('libgtk2.0-0', 'gtk2', 1.0),
    ('libglib2.0-0', 'glib2', 1.0),
    ('libglib2.0-0t64', 'glib2', 1.0),
    ('libgdk-pixbuf-2.0-0', 'gdk-pixbuf2', 1.0),
    ('libgdk-pixbuf2.0-0', 'gdk-pixbuf2', 1.0),
    ('libpango-1.0-0', 'pango', 1.0),
    ('libpangocairo-1.0-0', 'pango', 0.95),
    ('libcairo2', 'cairo', 1.0),
    ('libcairo-gobject2', 'cairo', 0.95),
    ('libatk1.0-0', 'at-spi2-core', 0.95),
    ('libatk-bridge2.0-0', 'at-spi2-core', 1.0),
    ('libatspi2.0-0', 'at-spi2-core', 0.95),
    ('libharfbuzz0b', 'harfbuzz', 1.0),
    ('librsvg2-2', 'librsvg', 1.0),
    ('libsecret-1-0', 'libsecret', 1.0),
    ('libnotify4', 'libnotify', 1.0),
    ('libappindicator3-1', 'libappindicator-gtk3', 1.0),
    ('libayatana-appindicator3-1', 'libayatana-appindicator', 1.0),
    ('libsoup-3.0-0', 'libsoup3', 1.0),
    ('libwebkit2gtk-4.1-0', 'webkit2gtk-4.1', 1.0),
    ('libcups2', 'libcups', 1.0),
    ('libqt5core5a', 'qt5-base', 1.0),
    ('libqt5gui5', 'qt5-base', 0.95),
    ('libqt5widgets5', 'qt5-base', 0.95),
    ('libqt5network5', 'qt5-base', 0.95),
    ('libqt5dbus5', 'qt5-base', 0.95),
    ('libqt5svg5', 'qt5-svg', 1.0),
    ('libqt6core6', 'qt6-base', 1.0),
    ('libqt6gui6', 'qt6-base', 0.95),
    ('libqt6widgets6', 'qt6-base', 0.95),
    # audio / video
    ('libasound2', 'alsa-lib', 1.0),
    ('libasound2t64', 'alsa-lib', 1.0),
    ('libpulse0', 'libpulse', 1.0),
    ('libpipewire-0.3-0', 'pipewire', 1.0),
    ('libopenal1', 'openal', 1.0),
    ('libsndfile1', 'libsndfile', 1.0),
    ('libvorbis0a', 'libvorbis', 1.0),
    ('libogg0', 'libogg', 1.0),
    ('libopus0', 'opus', 1.0),
    ('libflac12', 'flac', 1.0),
    ('libmp3lame0', 'lame', 1.0),
    ('libavcodec60', 'ffmpeg', 0.95),
    ('libavformat60', 'ffmpeg', 0.95),
    ('libavutil58', 'ffmpeg', 0.95),
    ('libswscale7', 'ffmpeg', 0.95),
    ('libswresample4', 'ffmpeg', 0.95),
    ('libgstreamer1.0-0', 'gstreamer', 1.0),
    ('gstreamer1.0-plugins-base', 'gst-plugins-base', 1.0),
    ('gstreamer1.0-plugins-good', 'gst-plugins-good', 1.0),
    ('gstreamer1.0-libav', 'gst-libav', 1.0),
    ('libva2', 'libva', 1.0),
    ('libvdpau1', 'libvdpau', 1.0),
    ('libsdl2-2.0-0', 'sdl2', 1.0),
)

# Debian-specific packages that have no meaning on Arch Linux, relations on them are dropped
DROPPED_PACKAGES = (
    'debconf',
    'debconf-2.0',
    'cdebconf',
    'dpkg',
    'install-info',
    'lsb-base',
    'init-system-helpers',
    'sysvinit-utils',
    'dh-python',
)

# virtual package names defined by Debian policy, mapped to a sensible Arch default
VIRTUAL_PACKAGES = (
    ('java-runtime', 'java-runtime', 1.0),
    ('java-runtime-headless', 'java-runtime-headless', 1.0),
    ('java2-runtime', 'java-runtime', 0.95),
    ('www-browser', 'firefox', 0.9),
    ('x-terminal-emulator', 'xterm', 0.9),
    ('editor', 'nano', 0.9),
    ('mail-transport-agent', 'smtp-server', 0.9),
    ('default-dbus-session-bus', 'dbus', 0.95),
    ('dbus-session-bus', 'dbus', 0.95),
    ('gsettings-backend', 'dconf', 0.9),
    ('libgl1-mesa-glx', 'mesa', 0.95),
)
