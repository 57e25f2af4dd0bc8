# -*- coding: utf-8 -*-
#
# Copyright (C) 2024-2026 Ferry Developers
#
# SPDX-License-Identifier: LGPL-3.0+

import logging as log
import threading

__all__ = ['log', 'set_verbose', 'get_verbose', 'job_log']

__verbose_logging = False
_lock = threading.RLock()

log.basicConfig(level=log.INFO, format='%(asctime)s - %(levelname)s: %(message)s', datefmt='%Y-%d-%m %H:%M:%S')


def set_verbose(enabled):
    global __verbose_logging

    with _lock:
        __verbose_logging = enabled

        if enabled:
            log.basicConfig(
                level=log.DEBUG, format='%(asctime)s - %(levelname)s: %(message)s', datefmt='%Y-%d-%m %H:%M:%S'
            )
            log.getLogger().setLevel(log.DEBUG)
        else:
            log.basicConfig(
                level=log.INFO, format='%(asctime)s - %(levelname)s: %(message)s', datefmt='%Y-%d-%m %H:%M:%S'
            )


def get_verbose():
    return __verbose_logging


class _JobLogAdapter(log.LoggerAdapter):
    '''Prefix every message with the job it belongs to.'''

    def process(self, msg, kwargs):
        return '[{}] {}'.format(self.extra['job'], msg), kwargs


def job_log(job_name: str) -> log.LoggerAdapter:
    '''
    Get a logger for messages concerning a single conversion job.
    '''
    return _JobLogAdapter(log.getLogger('ferry.jobs'), {'job': job_name})


#
# Global module configuration, to auto-reload it when using multiprocess
# or multithreading code.
#
set_verbose(__verbose_logging)
