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

# Submodule "log": Thin layer above logging, with finer debug and info levels, and easier configuration.

import sys
import pathlib as pl
import logging
from logging import NOTSET, DEBUG, INFO, WARNING, ERROR, CRITICAL

# Number of sub-levels under DEBUG and INFO (DEBUG1 = DEBUG - 1, ... DEBUG8 = DEBUG - 8, same for INFO).
KSubLevels = 8

DEBUG0 = DEBUG
INFO0 = INFO
logging.addLevelName(DEBUG0, 'DEBUG0')
logging.addLevelName(INFO0, 'INFO0')

DEBUG1, DEBUG2, DEBUG3, DEBUG4, DEBUG5, DEBUG6, DEBUG7, DEBUG8 = (DEBUG - lvl for lvl in range(1, KSubLevels + 1))
INFO1, INFO2, INFO3, INFO4, INFO5, INFO6, INFO7, INFO8 = (INFO - lvl for lvl in range(1, KSubLevels + 1))

for _lvl in range(1, KSubLevels + 1):
    logging.addLevelName(DEBUG - _lvl, f'DEBUG{_lvl}')
    logging.addLevelName(INFO - _lvl, f'INFO{_lvl}')


def _levelMethod(level):

    def _log(self, msg, *args, **kwargs):
        if self.isEnabledFor(level):
            self._log(level, msg, args, **kwargs)

    return _log


class Logger(logging.Logger):

    """A Logger class with methods for the added sub-levels (info1 ... info8, debug1 ... debug8)
    """

    Configured = False

    info0 = logging.Logger.info
    debug0 = logging.Logger.debug

    @staticmethod
    def _handlerId(hdlr):
        if isinstance(hdlr, pl.Path):
            hdlr = hdlr.as_posix()
        return f'File({hdlr})' if isinstance(hdlr, str) else f'Stream({hdlr.name})'

    @staticmethod
    def configure(loggers=[dict(name='abd', level=logging.INFO)],
                  level=NOTSET, handlers=[sys.stdout], fileMode='w', verbose=False,
                  format='%(asctime)s %(process)d %(name)s %(levelname)s\t%(message)s', reset=False):

        """Configure the logging system: root logger handlers and level, and some children levels

        Parameters:
        :param loggers: if not None, list of dict(name, [level]) to apply to children loggers
        :param level: level for the root logger only, see logging.Logger.setLevel
        :param handlers: list of handler specs ; according to type,
            * str / pathlib.Path: logging.FileHandler for the given file path-name
            * otherwise: logging.StreamHandler (sys.stdout, ...)
        :param fileMode: see logging.FileHandler ctor
        :param format: see logging.Handler.setFormatter
        :param verbose: if True, write a first INFO msg to the handlers' targets
        :param reset: if True, remove any root handler first (useful in jupyter notebooks)
        """

        # Handlers are attached to the root logger only (children propagate):
        # multiple FileHandlers on the same file give intermixed lines.
        root = logging.getLogger()

        if reset:
            while root.handlers:
                root.handlers.pop()

        formatter = logging.Formatter(format)
        for hdlr in handlers:
            if isinstance(hdlr, (str, pl.Path)):
                handler = logging.FileHandler(pl.Path(hdlr).as_posix(), mode=fileMode)
            else:
                handler = logging.StreamHandler(stream=hdlr)
            handler.setFormatter(formatter)
            root.addHandler(handler)

        msg = None
        if verbose:
            msg = 'Logging to {}'.format(', '.join(Logger._handlerId(hdlr) for hdlr in handlers))
            root.setLevel(INFO)
            root.info(msg)

        if not verbose or level != INFO:
            root.setLevel(level)

        for logrCfg in loggers or []:
            logr = logging.getLogger(logrCfg['name'])
            if msg:
                logr.info(msg)
            if 'level' in logrCfg:
                logr.setLevel(logrCfg['level'])

        Logger.Configured = True

    @staticmethod
    def logger(name, level=None, reset=False):

        """Create or retrieve, and maybe update, the logger with given name

        Parameters:
        :param name: name of the target logger (see logging.getLogger)
        :param level: if not None, level to set (see logging.Logger.setLevel)
        :param reset: if True, remove any handler of this logger (ex: jupyter default ones)
        """

        if not Logger.Configured:
            Logger.configure(level=INFO, reset=reset)

        logr = logging.getLogger(name)

        if reset:
            while logr.handlers:
                logr.handlers.pop()

        if level is not None:
            logr.setLevel(level)

        return logr


for _lvl in range(1, KSubLevels + 1):
    setattr(Logger, f'debug{_lvl}', _levelMethod(DEBUG - _lvl))
    setattr(Logger, f'info{_lvl}', _levelMethod(INFO - _lvl))

logging.setLoggerClass(Logger)

configure = Logger.configure

logger = Logger.logger
