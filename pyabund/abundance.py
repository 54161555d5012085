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

# Submodule "abundance": Abundance (or density) estimation from a fitted detection function,
# with bias-corrected bootstrap confidence interval (sites resampled, detection function refitted)
#
# The abundance estimate is N = n.indiv * area / (2 * ESW * total transect length) for line transects,
# and N = n.indiv * area / (pi * ER**2 * number of points) for point transects,
# where n.indiv = avg. group size * n (number of detections), and ESW / ER the effective strip width / radius ;
# with covariates, n.indiv / ESW is replaced by the sum over detections of group size / integral of the density.

from collections import namedtuple as ntuple

import numpy as np
import pandas as pd

from . import log
from .data import SiteCol, GroupSizeCol, DistCol, LengthCol, checkColumns, checkSurveyData, truncate
from .integration import normalizingConstant, NumericIntegrationError
from .engine import MLEngine, FitError
from .bootstrap import resampleSites, resampleScaling, refitSpecs, biasCorrectedInterval
from .executor import Executor

logger = log.logger('abd.abd')


NHatEstimate = ntuple('NHatEstimate', ['nHat', 'n', 'area', 'esw', 'tranLen', 'totSites', 'avgGroupSize',
                                       'nSkipped'])


def closedFormNHat(n, avgGroupSize, esw, area, tranLen=None, totSites=None, pointTransects=False):

    """Abundance when detection probability is the same for all detections (no covariates)"""

    if pointTransects:
        return avgGroupSize * n * area / (np.pi * esw ** 2 * totSites)

    return avgGroupSize * n * area / (2 * esw * tranLen)


def covariateNHat(dfunc, dfTruncDetections, esw, area, tranLen=None):

    """Abundance as a sum over detections of group size / normalizing constant (Horvitz-Thompson like)

    Detections whose normalizing constant can't be computed are skipped (= no contribution).

    Note: For point transects, the area factor is pi * ER * n (n = number of detections), not the number of points.

    :returns: tuple(abundance, number of skipped detections)
    """

    covars = dfunc.designMatrix(dfTruncDetections)
    dists = dfTruncDetections[DistCol].to_numpy(dtype=float)
    groupSizes = dfTruncDetections[GroupSizeCol].to_numpy(dtype=float)

    # Constants only depend on the covariate row.
    dConstants = dict()

    sumTerms, nSkipped = 0.0, 0
    for ind, (dist, groupSize) in enumerate(zip(dists, groupSizes)):
        row = None if covars is None else covars[ind:ind + 1]
        key = None if row is None else tuple(row[0])
        if key not in dConstants:
            try:
                dConstants[key] = normalizingConstant(dist, dfunc.likeForm, dfunc.wLo, dfunc.wHi, covars=row,
                                                      a=dfunc.parameters, expansions=dfunc.expansions,
                                                      pointTransects=dfunc.pointTransects, series=dfunc.series,
                                                      registry=dfunc.registry)
            except NumericIntegrationError as exc:
                logger.debug1(f'Skipping detection #{ind}: {exc}')
                dConstants[key] = None
        if dConstants[key] is None:
            nSkipped += 1
            continue
        sumTerms += groupSize / dConstants[key]

    if nSkipped:
        logger.warning(f'{nSkipped} of {len(dists)} detection(s) skipped (normalizing constant failure)')

    n = len(dists)
    areaFactor = np.pi * esw * n if dfunc.pointTransects else 2 * tranLen

    return sumTerms * area / areaFactor, nSkipped


def estimateNHat(dfunc, dfDetections, dfSites, area=1):

    """Abundance (area > 1) or density (area = 1) from a fitted detection function, for 1 sample of data

    No change is made to the input data.

    Parameters:
    :param dfunc: the detection function (engine.DetectionFunction-like: wLo, wHi, pointTransects,
                  hasCovariates, effectiveStripWidth(), effectiveRadius(), ...)
    :param dfDetections: detections (siteID, groupsize, dist, + covariates if any)
    :param dfSites: sites (siteID, + length for line transects)
    :param area: study area (same units as distances, squared)

    :returns: NHatEstimate(nHat, n, area, esw, tranLen (None for points), totSites, avgGroupSize, nSkipped)
    """

    dfTrunc = truncate(dfDetections, dfunc.wLo, dfunc.wHi)

    n = len(dfTrunc)
    avgGroupSize = dfTrunc[GroupSizeCol].mean() if n > 0 else np.nan

    totSites = len(dfSites)
    if dfunc.pointTransects:
        tranLen = None
        esw = dfunc.effectiveRadius()
    else:
        tranLen = dfSites[LengthCol].sum()
        esw = dfunc.effectiveStripWidth()

    nSkipped = 0
    if n == 0:
        nHat = 0.0
    elif dfunc.hasCovariates:
        nHat, nSkipped = covariateNHat(dfunc, dfTrunc, esw, area, tranLen=tranLen)
    else:
        nHat = closedFormNHat(n, avgGroupSize, esw, area, tranLen=tranLen, totSites=totSites,
                              pointTransects=dfunc.pointTransects)

    return NHatEstimate(nHat=nHat, n=n, area=area, esw=esw, tranLen=tranLen, totSites=totSites,
                        avgGroupSize=avgGroupSize, nSkipped=nSkipped)


def unitNHats(dfunc, dfDetections, dfSites, area=1):

    """Site-level abundance (or density) estimates, with the given detection function

    Sites with no (truncated) detection get a 0 estimate ; note that site estimates do not necessarily
    average to the global one (covariates, point transects).

    :returns: DataFrame with columns siteID, rawcount (sum of truncated group sizes), nhat (1 row per site)
    """

    sRawCounts = truncate(dfDetections, dfunc.wLo, dfunc.wHi).groupby(SiteCol)[GroupSizeCol].sum()

    dfUnits = pd.DataFrame({SiteCol: dfSites[SiteCol].to_numpy()})
    dfUnits['rawcount'] = dfUnits[SiteCol].map(sRawCounts).fillna(0)

    nHats = list()
    for siteId, rawCount in zip(dfUnits[SiteCol], dfUnits['rawcount']):
        if rawCount == 0:
            nHats.append(0.0)
            continue
        nHats.append(estimateNHat(dfunc, dfDetections[dfDetections[SiteCol] == siteId],
                                  dfSites[dfSites[SiteCol] == siteId], area=area).nHat)
    dfUnits['nhat'] = nHats

    return dfUnits


# Bootstrap replicate status codes.
RepOK = 'ok'
RepNotConverged = 'not converged'
RepFitError = 'fit error'
RepTooWide = 'effective width > wHi'
RepNotFinite = 'non-finite estimate'


def bootReplicate(dfunc, engine, dfDetections, dfSites, area, seedSeq):

    """Compute one bootstrap replicate of the abundance estimate:
    resample sites, refit the detection function, and estimate abundance

    :param seedSeq: the numpy.random.SeedSequence to use for this replicate (independent random draws)
    :returns: tuple(estimate or NaN if missing, replicate status code)
    """

    rng = np.random.default_rng(seedSeq)

    dfNewSites, dfNewDetections, _ = resampleSites(dfSites, dfDetections, rng)
    gxSclSpec = resampleScaling(dfunc.gxSclSpec, rng)

    try:
        dfuncBs = engine.fit(data=dfNewDetections, **refitSpecs(dfunc, gxSclSpec))
    except FitError as exc:
        logger.debug2(f'Replicate refit failed: {exc}')
        return np.nan, RepFitError

    if dfuncBs.convergence != 0:
        return np.nan, RepNotConverged

    # Implausibly large effective width (degenerate fit)
    eswBs = dfuncBs.esw()
    if not eswBs <= dfunc.wHi:
        return np.nan, RepTooWide

    nHat = estimateNHat(dfuncBs, dfNewDetections, dfNewSites, area=area).nHat
    if not np.isfinite(nHat):
        return np.nan, RepNotFinite

    return nHat, RepOK


class AbundanceEstimate(ntuple('AbundanceEstimate',
                               ['nHat', 'ci', 'ciProbs', 'B', 'nMissing', 'alpha', 'n', 'area', 'esw',
                                'tranLen', 'totSites', 'avgGroupSize', 'nSkipped', 'dfunc', 'dfUnitNHats'])):

    """Abundance estimate, confidence interval, bootstrap replicates, ... (immutable)"""

    __slots__ = ()

    def summary(self):

        """Human readable summary, as a multi-line string"""

        lines = [f'Detection function: {self.dfunc!r}',
                 f'{"Effective radius" if self.tranLen is None else "Effective strip width"}: {self.esw:.6g}',
                 f'Number of detections: {self.n}, average group size: {self.avgGroupSize:.4g}',
                 f'Number of sites: {self.totSites}'
                 + ('' if self.tranLen is None else f', total transect length: {self.tranLen:.6g}'),
                 f'Area: {self.area:.6g}',
                 f'{"Abundance" if self.area != 1 else "Density"} estimate: {self.nHat:.6g}']
        if self.alpha is not None:
            lines.append(f'{100 * self.alpha:.4g}% bias-corrected bootstrap confidence interval:'
                         f' [{self.ci[0]:.6g}, {self.ci[1]:.6g}]'
                         f' (quantiles {self.ciProbs[0]:.4f}, {self.ciProbs[1]:.4f})')
            lines.append(f'Bootstrap: {len(self.B) - self.nMissing} valid of {len(self.B)} iterations'
                         f' ({self.nMissing} did not converge)')
        if self.nSkipped:
            lines.append(f'Skipped detections (normalizing constant failure): {self.nSkipped}')

        return '\n'.join(lines)

    def toSeries(self):

        """Main figures as a pd.Series (no bootstrap replicates, no site estimates)"""

        return pd.Series({'nHat': self.nHat, 'ciLow': self.ci[0], 'ciHigh': self.ci[1],
                          'ciProbLow': self.ciProbs[0], 'ciProbHigh': self.ciProbs[1],
                          'confLevel': self.alpha, 'nBoot': len(self.B), 'nMissing': self.nMissing,
                          'n': self.n, 'area': self.area, 'esw': self.esw, 'tranLen': self.tranLen,
                          'totSites': self.totSites, 'avgGroupSize': self.avgGroupSize, 'nSkipped': self.nSkipped})


class AbundanceAnalysis:

    """Abundance estimation with bias-corrected bootstrap confidence interval, from a fitted detection function

    Bootstrap iterations are independent (1 random seed sequence child per iteration),
    and can be run in parallel through an Executor: results don't depend on it.
    """

    # Progress report step (fraction of iterations)
    ProgressStep = 0.1

    def __init__(self, dfunc, detectionData, siteData, engine=None, area=1, ci=0.95, R=500, byId=False,
                 seed=None, executor=None, threads=None):

        """Ctor

        Parameters:
        :param dfunc: the detection function fitted on detectionData
        :param detectionData: detections, as a DataFrame or data.DetectionDataSet
        :param siteData: sites, as a DataFrame or data.SiteDataSet
        :param engine: the DSEngine for refitting the detection function on bootstrap replicates
                       (None => a default MLEngine)
        :param area: study area ; 1 => density estimate (in 1 / squared distance unit)
        :param ci: confidence level of the bias-corrected bootstrap interval ; None => no bootstrap
        :param R: number of bootstrap iterations
        :param byId: if True, also compute site-level estimates
        :param seed: int, None or numpy.random.SeedSequence, for the bootstrap random draws
        :param executor: Executor for running bootstrap iterations (not owned ; None => see threads)
        :param threads: if executor is None, number of parallel threads (None => sequential)
        :raises data.DataError: on any input data contract violation
        """

        assert area > 0, f'Invalid area {area}: should be > 0'
        assert ci is None or 0 < ci < 1, f'Invalid confidence level {ci}: should be None or in ]0, 1['
        assert ci is None or (int(R) == R and R >= 1), f'Invalid number of bootstrap iterations {R}: should be >= 1'

        self.dfDetections, self.dfSites = checkSurveyData(detectionData, siteData,
                                                          pointTransects=dfunc.pointTransects)
        checkColumns(self.dfDetections, 'detection', dfunc.covarNames)

        if not dfunc.converged():
            logger.warning(f'Detection function did not converge: {dfunc.message}')

        self.dfunc = dfunc
        self.engine = engine if engine is not None else MLEngine(registry=dfunc.registry)
        self.area = area
        self.ci = ci
        self.R = int(R)
        self.byId = byId
        self.seedSeq = seed if isinstance(seed, np.random.SeedSequence) else np.random.SeedSequence(seed)
        self.executor = executor
        self.threads = threads

    def _bootstrap(self, nHat0):

        """Run the bootstrap iterations

        :returns: tuple(np.ndarray of R replicates (NaN = missing), pd.Series of replicate status counts)
        """

        logger.info(f'Computing bootstrap confidence interval on N ({self.R} iterations,'
                    f' seed entropy {self.seedSeq.entropy}) ...')

        executor = self.executor if self.executor is not None else Executor(threads=self.threads)

        B = np.full(self.R, np.nan)
        statuses = [None] * self.R
        try:
            dFutures = {executor.submit(bootReplicate, self.dfunc, self.engine, self.dfDetections, self.dfSites,
                                        self.area, seedSeq): ind
                        for ind, seedSeq in enumerate(self.seedSeq.spawn(self.R))}

            nDone, nextReport = 0, self.ProgressStep
            for future in executor.asCompleted(dFutures):
                ind = dFutures[future]
                B[ind], statuses[ind] = future.result()
                nDone += 1
                if nDone >= nextReport * self.R:
                    logger.info1(f'... {nDone} / {self.R} iterations done')
                    nextReport += self.ProgressStep
        finally:
            if executor is not self.executor:
                executor.shutdown()

        return B, pd.Series(statuses).value_counts()

    def run(self):

        """Compute the estimate (and its confidence interval, and site-level estimates if requested)

        :returns: AbundanceEstimate
        """

        est0 = estimateNHat(self.dfunc, self.dfDetections, self.dfSites, area=self.area)
        logger.info(f'Estimate: {est0.nHat} ({est0.n} detections, ESW/ER = {est0.esw})')

        B, nMissing = np.full(0, np.nan), 0
        ciLow, ciHigh, pLow, pHigh = np.nan, np.nan, np.nan, np.nan
        if self.ci is not None:

            B, sStatuses = self._bootstrap(est0.nHat)
            nMissing = int(np.isnan(B).sum())
            if nMissing > 0:
                logger.warning(f'{nMissing} of {self.R} iterations did not converge.')
                for status, count in sStatuses.items():
                    if status != RepOK:
                        logger.info1(f'* {status}: {count}')

            bci = biasCorrectedInterval(B, est0.nHat, self.ci)
            ciLow, ciHigh, pLow, pHigh = bci.low, bci.high, bci.pLow, bci.pHigh
            if bci.nValues == 0:
                logger.warning('No valid bootstrap iteration: undefined confidence interval')
            else:
                logger.info(f'{100 * self.ci:.4g}% confidence interval: [{ciLow}, {ciHigh}]')

        dfUnitNHats = unitNHats(self.dfunc, self.dfDetections, self.dfSites, area=self.area) if self.byId else None

        return AbundanceEstimate(nHat=est0.nHat, ci=(ciLow, ciHigh), ciProbs=(pLow, pHigh), B=B,
                                 nMissing=nMissing, alpha=self.ci, n=est0.n, area=self.area, esw=est0.esw,
                                 tranLen=est0.tranLen, totSites=est0.totSites, avgGroupSize=est0.avgGroupSize,
                                 nSkipped=est0.nSkipped, dfunc=self.dfunc, dfUnitNHats=dfUnitNHats)


def estimateAbundance(dfunc, detectionData, siteData, area=1, ci=0.95, R=500, byId=False,
                      engine=None, seed=None, executor=None, threads=None):

    """Estimate abundance (or density) given a fitted detection function and survey data,
    with a bias-corrected bootstrap confidence interval (sites resampled, detection function refitted)

    See AbundanceAnalysis for parameters.

    :returns: AbundanceEstimate
    :raises data.DataError: on any input data contract violation (before any computation)
    """

    return AbundanceAnalysis(dfunc, detectionData, siteData, engine=engine, area=area, ci=ci, R=R, byId=byId,
                             seed=seed, executor=executor, threads=threads).run()
