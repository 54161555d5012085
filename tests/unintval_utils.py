# coding: utf-8

# PyAbund: Abundance estimation from distance sampling data, with bias-corrected bootstrap intervals

# Copyright (C) 2021 Jean-Philippe Meuret, Sylvain Sainnier

# This program is free software: you can redistribute it and/or modify it under the terms
# of the GNU General Public License as published by the Free Software Foundation,
# either version 3 of the License, or (at your option) any later version.
# This program is distributed in the hope that it will be useful, but WITHOUT ANY WARRANTY;
# without even the implied warranty of MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.
# See the GNU General Public License for more details.
# You should have received a copy of the GNU General Public License along with this program.
# If not, see https://www.gnu.org/licenses/.

# Common tools for automated unit and integration tests

import pathlib as pl
import shutil

import numpy as np
import pandas as pd

import pyabund as abd

from conftest import pTestDir, pTmpDir, pLogFile


# Temporary work folder default (see setupWorkDir below).
pWorkDir = pTmpDir / 'work'

# Setup local logger
_logger = abd.logger('uiv.tst')


def setupLogger(name, level=abd.DEBUG, otherLoggers=None):
    """Create logger for tests and configure logging"""
    otherLoggers = otherLoggers or {'abd': abd.INFO2, 'abd.eng': abd.INFO, 'abd.exr': abd.INFO}
    for dLvl in [dict(name='matplotlib', level=abd.WARNING)] \
                + [dict(name=nm, level=lvl) for nm, lvl in otherLoggers.items()] \
                + [dict(name='uiv.tst', level=level)]:
        _ = abd.logger(dLvl['name'], level=dLvl['level'])

    return abd.logger(name, level)


def logBegin(what):
    """Log beginning of tests"""
    _logger.info(f'Testing pyabund: {what} ...')
    _logger.info('Current folder: ' + pl.Path().absolute().as_posix())
    _logger.info('Computation platform:')
    for k, v in abd.runtime.items():
        _logger.info(f'* {k}: {v}')


def logEnd(what, rc=None):
    """Log end of tests"""
    sts = {-1: 'Not run', 0: 'Success', None: None}.get(rc, 'Error')
    msg = f'see {pLogFile.as_posix()}' if sts is None else f'{sts} (code: {rc})'
    _logger.info(f'Done testing pyabund: {what} => {msg}.\n')


def setupWorkDir(dirName='work', cleanup=True):
    global pWorkDir
    pWorkDir = pTmpDir / dirName
    if cleanup:
        cleanupWorkDir()
    pWorkDir.mkdir(parents=True, exist_ok=True)

    return pWorkDir


def cleanupWorkDir():
    if pWorkDir.is_dir():
        shutil.rmtree(pWorkDir, ignore_errors=True)


class StubDetectionFunction:

    """Detection function stand-in with a fixed effective width (no likelihood behind),
    for exact checks of abundance formulas"""

    def __init__(self, esw, wLo=0, wHi=100, pointTransects=False, convergence=0):

        self._esw = esw
        self.wLo = wLo
        self.wHi = wHi
        self.pointTransects = pointTransects
        self.convergence = convergence
        self.message = ''
        self.likeForm = 'halfnorm'
        self.expansions = 0
        self.series = 'cosine'
        self.covarNames = []
        self.hasCovariates = False
        self.xScl = wLo
        self.xSclSpec = None
        self.gxSclSpec = 1.0
        self.observer = 'both'
        self.registry = None
        self.dfFitData = None

    def converged(self):
        return self.convergence == 0

    def effectiveStripWidth(self):
        return self._esw

    def effectiveRadius(self):
        return self._esw

    def esw(self):
        return self._esw


class StubEngine:

    """DSEngine stand-in returning, for each successive fit call, the next outcome of a cycled list:
    a StubDetectionFunction (from an (esw, convergence) tuple), or an exception instance to raise"""

    def __init__(self, outcomes):

        self.outcomes = list(outcomes)
        self.nCalls = 0

    def fit(self, formula, data, likelihood='halfnorm', wLo=0, wHi=None, expansions=0, series='cosine',
            xScl=None, gxScl=1.0, observer='both', pointTransects=False):

        outcome = self.outcomes[self.nCalls % len(self.outcomes)]
        self.nCalls += 1
        if isinstance(outcome, Exception):
            raise outcome

        esw, convergence = outcome
        return StubDetectionFunction(esw, wLo=wLo, wHi=wHi, pointTransects=pointTransects,
                                     convergence=convergence)


def simulatedSurvey(nSites=20, length=1000, sigma=20.0, nPerSite=10, groupSizes=(1, 2, 3),
                    covariate=False, pointTransects=False, seed=2021):
    """Simulated line (or point) transect survey with half-normal distances (and maybe a covariate
    'obs' with 2 levels with different sigmas)

    :returns: tuple(detections DataFrame, sites DataFrame)
    """

    rng = np.random.default_rng(seed)

    siteIds = [f'T{i:02d}' for i in range(nSites)]
    dfSites = pd.DataFrame({'siteID': siteIds})
    if not pointTransects:
        dfSites['length'] = float(length)

    nDets = nSites * nPerSite
    obs = rng.choice(['a', 'b'], size=nDets)
    sigmas = np.where(obs == 'b', 2 * sigma, sigma) if covariate else np.full(nDets, sigma)
    if pointTransects:
        dists = sigmas * np.sqrt(rng.chisquare(2, size=nDets))  # Rayleigh
    else:
        dists = np.abs(rng.normal(0, sigmas))
    dfDetections = pd.DataFrame({'siteID': np.repeat(siteIds, nPerSite),
                                 'groupsize': rng.choice(groupSizes, size=nDets),
                                 'dist': dists})
    if covariate:
        dfDetections['obs'] = obs

    return dfDetections, dfSites
