# coding: utf-8

# PyAbund: Abundance estimation from distance sampling data, with bias-corrected bootstrap intervals

# Copyright (C) 2021 Jean-Philippe Meuret

# This program is free software: you can redistribute it and/or modify it under the terms
# of the GNU General Public License as published by the Free Software Foundation,
# either version 3 of the License, or (at your option) any later version.
# This program is distributed in the hope that it will be useful, but WITHOUT ANY WARRANTY;
# without even the implied warranty of MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.
# See the GNU General Public License for more details.
# You should have received a copy of the GNU General Public License along with this program.
# If not, see https://www.gnu.org/licenses/.

# Submodule "executor": Run independent jobs (ex: bootstrap iterations) sequentially or in parallel

import os
import concurrent.futures as cofu

from . import log

logger = log.logger('abd.exr')


class ImmediateFuture:

    """Already done concurrent.futures.Future look-alike, for SequentialExecutor

    Exceptions raised by the job are kept and re-raised by result(), as for a real Future.
    """

    def __init__(self, func, *args, **kwargs):

        self._result = None
        self._exception = None
        try:
            self._result = func(*args, **kwargs)
        except Exception as exc:
            self._exception = exc

    def result(self, timeout=None):

        if self._exception is not None:
            raise self._exception

        return self._result

    def exception(self, timeout=None):

        return self._exception

    def cancel(self):

        return False

    def cancelled(self):

        return False

    def running(self):

        return False

    def done(self):

        return True


class SequentialExecutor(cofu.Executor):

    """Non-parallel concurrent.futures.Executor: jobs are run at submit time, in the caller thread
    """

    def __init__(self):

        logger.info2('Started the SequentialExecutor.')

    def submit(self, func, *args, **kwargs):

        return ImmediateFuture(func, *args, **kwargs)

    def map(self, func, *iterables, timeout=None, chunksize=1):

        return map(func, *iterables)

    def shutdown(self, wait=True, cancel_futures=False):

        pass


class Executor:

    """Simpler front-end to concurrent.futures executors, with a pure sequential fallback
    """

    # The only SequentialExecutor (no state, one is enough)
    TheSeqExor = None

    def __init__(self, threads=None, processes=None, name_prefix='', mp_context=None):

        """Ctor

        Parameters:
        :param threads: None or >= 0 ; 0 for auto-number (see workers()) ;
                        None for pure sequential calling (no thread at all) ;
                        must be None if processes is not None
        :param processes: None or >= 0 ; 0 for auto-number (see workers()) ;
                          None for pure sequential calling ;
                          must be None if threads is not None
        :param name_prefix: See concurrent.futures.ThreadPoolExecutor
        :param mp_context: See concurrent.futures.ProcessPoolExecutor
        """

        assert (threads is None and (processes is None or processes >= 0)) \
               or (processes is None and (threads is None or threads >= 0)), \
               'An Executor can\'t implement multi-threading _and_ multi-processing at the same time'

        self.threads = threads
        self.processes = processes

        if threads is not None:
            self.realExor = cofu.ThreadPoolExecutor(max_workers=threads or None, thread_name_prefix=name_prefix)
            logger.info1('Started a ThreadPoolExecutor(max_workers={})'.format(threads or 'None'))

        elif processes is not None:
            self.realExor = cofu.ProcessPoolExecutor(max_workers=processes or None, mp_context=mp_context)
            logger.info1('Started a ProcessPoolExecutor(max_workers={})'.format(processes or 'None'))

        else:
            if Executor.TheSeqExor is None:
                Executor.TheSeqExor = SequentialExecutor()
            self.realExor = Executor.TheSeqExor

    def workers(self):

        """Expected number of workers, from the specified number of threads / processes
        (same rules as the concurrent.futures executors, Python >= 3.8)"""

        if self.threads is None:
            if self.processes is None:
                return 1
            return self.processes or os.cpu_count()

        return self.threads or min(32, os.cpu_count() + 4)

    def isParallel(self):

        return self.realExor is not Executor.TheSeqExor and self.workers() > 1

    def isAsync(self):

        return self.realExor is not Executor.TheSeqExor

    def submit(self, func, *args, **kwargs):

        assert self.realExor is not None, 'Can\'t submit after shutdown'

        return self.realExor.submit(func, *args, **kwargs)

    def map(self, func, *iterables, timeout=None, chunksize=1):

        return self.realExor.map(func, *iterables, timeout=timeout, chunksize=chunksize)

    def asCompleted(self, futures):

        return iter(futures) if not self.isAsync() else cofu.as_completed(futures)

    def shutdown(self, wait=True):

        if self.realExor is not None and self.isAsync():
            logger.info2(self.realExor.__class__.__name__ + ' shut down.')
            self.realExor.shutdown(wait=wait)
        self.realExor = None
