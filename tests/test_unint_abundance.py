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

# Automated unit and integration tests for "abundance" submodule

# To run : simply run "pytest" and check standard output + ./tmp/pytest.{datetime}.log for details

import numpy as np
import pandas as pd

import pytest

import pyabund as abd
from pyabund import abundance as abn
from pyabund.engine import DetectionFunction

import unintval_utils as uivu


# Mark module
pytestmark = pytest.mark.unintests

# Setup local logger.
logger = uivu.setupLogger('unt.abn', level=abd.DEBUG,
                          otherLoggers={'abd.abd': abd.INFO, 'abd.eng': abd.INFO})

KWhat2Test = 'abundance'


###############################################################################
#                         Actions to be done before any test                  #
###############################################################################
def testBegin():
    uivu.logBegin(what=KWhat2Test)


###############################################################################
#                         Input Data Preparation                              #
###############################################################################
@pytest.fixture
def lineSurvey_fxt():

    """10 sites of length 100, 50 detections (5 per site) of group size 2, all within [0, 100]"""

    siteIds = [f'S{i}' for i in range(10)]
    dfSites = pd.DataFrame({'siteID': siteIds, 'length': 100.0})
    dfDetections = pd.DataFrame({'siteID': np.repeat(siteIds, 5),
                                 'groupsize': 2,
                                 'dist': np.tile([0.0, 10.0, 25.0, 60.0, 100.0], 10)})

    return dfDetections, dfSites


def halfnormDetFunc(sigma=20.0, wHi=60.0, pointTransects=False, **kwargs):

    """A fitted-like half-normal detection function, with given parameters"""

    return DetectionFunction(likeForm='halfnorm', parameters=[sigma], parameterNames=['Sigma'],
                             wLo=0.0, wHi=wHi, pointTransects=pointTransects, **kwargs)


###############################################################################
#                                Test Cases                                   #
###############################################################################

def testEstimateNHatLines(lineSurvey_fxt):

    dfDetections, dfSites = lineSurvey_fxt
    dfunc = uivu.StubDetectionFunction(esw=50.0, wLo=0, wHi=100)

    est = abd.estimateNHat(dfunc, dfDetections, dfSites, area=10000)

    # avgGroupSize * n * area / (2 * esw * totalLength) = 2 * 50 * 10000 / (2 * 50 * 1000)
    assert est.nHat == pytest.approx(10.0)
    assert est.n == 50 and est.avgGroupSize == 2
    assert est.esw == 50.0 and est.tranLen == 1000.0 and est.totSites == 10
    assert est.area == 10000 and est.nSkipped == 0

    # Density when area = 1 (default)
    assert abd.estimateNHat(dfunc, dfDetections, dfSites).nHat == pytest.approx(10.0 / 10000)

    # Truncation (bounds included): 0 and 100 excluded here, 10, 25 and 60 kept
    dfunc = uivu.StubDetectionFunction(esw=50.0, wLo=5, wHi=60)
    est = abd.estimateNHat(dfunc, dfDetections, dfSites, area=10000)
    assert est.n == 30
    assert est.nHat == pytest.approx(2 * 30 * 10000 / (2 * 50 * 1000))

    # No input change
    assert len(dfDetections) == 50 and list(dfDetections.columns) == ['siteID', 'groupsize', 'dist']

    # No detection left after truncation => 0
    dfunc = uivu.StubDetectionFunction(esw=50.0, wLo=101, wHi=200)
    est = abd.estimateNHat(dfunc, dfDetections, dfSites, area=10000)
    assert est.n == 0 and est.nHat == 0 and np.isnan(est.avgGroupSize)

    logger.info0('PASS testEstimateNHatLines: closed form, truncation, no detection')


def testEstimateNHatPoints(lineSurvey_fxt):

    dfDetections, dfSites = lineSurvey_fxt
    dfSites = dfSites.drop(columns=['length'])
    dfunc = uivu.StubDetectionFunction(esw=20.0, wLo=0, wHi=100, pointTransects=True)

    est = abd.estimateNHat(dfunc, dfDetections, dfSites, area=10000)

    assert est.nHat == pytest.approx(2 * 50 * 10000 / (np.pi * 20.0 ** 2 * 10))
    assert est.tranLen is None and est.totSites == 10

    logger.info0('PASS testEstimateNHatPoints: closed form')


def testClosedFormVsCovariatePaths():

    dfDetections, dfSites = uivu.simulatedSurvey(nSites=10, nPerSite=8, sigma=20.0, seed=3)
    area = 1e6

    # Half-normal with g(0) = 1: the integral of the density is the effective strip width
    dfunc = halfnormDetFunc(sigma=20.0, wHi=60.0)
    est = abd.estimateNHat(dfunc, dfDetections, dfSites, area=area)
    dfTrunc = abd.truncate(dfDetections, dfunc.wLo, dfunc.wHi)
    nHatCov, nSkipped = abn.covariateNHat(dfunc, dfTrunc, est.esw, area, tranLen=est.tranLen)
    assert nSkipped == 0
    assert nHatCov == pytest.approx(est.nHat, rel=1e-5)

    # Covariate path taken with a covariate that has no effect (constant 0) => same estimate
    dfDetsCov = dfDetections.assign(k=0.0)
    dfuncCov = DetectionFunction(likeForm='halfnorm', parameters=[np.log(20.0), 0.7],
                                 parameterNames=['(Intercept)', 'k'], wLo=0.0, wHi=60.0,
                                 covarNames=['k'], dCovarLevels={'k': None}, dfFitData=dfTrunc.assign(k=0.0))
    assert dfuncCov.hasCovariates
    estCov = abd.estimateNHat(dfuncCov, dfDetsCov, dfSites, area=area)
    assert estCov.esw == pytest.approx(est.esw, rel=1e-9)
    assert estCov.nHat == pytest.approx(est.nHat, rel=1e-5)

    logger.info0('PASS testClosedFormVsCovariatePaths')


def testCovariateSkippedRows():

    # A likelihood whose normalizing constant fails for some covariate rows (negative scale parameter)
    registry = abd.LikelihoodRegistry()
    halfnorm = abd.resolve('halfnorm')

    def signedDensity(a, dist, covars=None, **kwargs):
        values = halfnorm.density([abs(a[0])], dist, **kwargs)
        return values if covars is None or covars[0, 1] == 0 else -values

    registry.register('signed', signedDensity, halfnorm.startValues)

    dfDetections = pd.DataFrame({'siteID': ['A', 'A', 'B', 'B'], 'groupsize': [1, 1, 2, 2],
                                 'dist': [1.0, 5.0, 10.0, 15.0], 'bad': [0, 1, 0, 1]})
    dfSites = pd.DataFrame({'siteID': ['A', 'B'], 'length': [10.0, 10.0]})
    dfunc = DetectionFunction(likeForm='signed', parameters=[20.0, 0.0], parameterNames=['Sigma', 'bad'],
                              wLo=0.0, wHi=50.0, covarNames=['bad'], dCovarLevels={'bad': None},
                              dfFitData=dfDetections.iloc[[0, 2]], registry=registry)

    est = abd.estimateNHat(dfunc, dfDetections, dfSites, area=100.0)

    # Rows with bad == 1 skipped ; others: groupsize / integral
    assert est.nSkipped == 2 and est.n == 4
    constant = abd.normalizingConstant(1.0, 'halfnorm', 0.0, 50.0, None, [20.0])
    assert est.nHat == pytest.approx((1 + 2) / constant * 100.0 / (2 * 20.0), rel=1e-6)

    logger.info0('PASS testCovariateSkippedRows')


def testUnitNHats(lineSurvey_fxt):

    dfDetections, dfSites = lineSurvey_fxt
    dfSites = pd.concat([dfSites, pd.DataFrame({'siteID': ['Empty'], 'length': [100.0]})], ignore_index=True)
    dfunc = uivu.StubDetectionFunction(esw=50.0, wLo=0, wHi=60)

    dfUnits = abd.unitNHats(dfunc, dfDetections, dfSites, area=10000)

    assert list(dfUnits.columns) == ['siteID', 'rawcount', 'nhat']
    assert dfUnits.siteID.tolist() == dfSites.siteID.tolist()

    # Zero-detection site: exactly 0
    sEmpty = dfUnits.set_index('siteID').loc['Empty']
    assert sEmpty.rawcount == 0 and sEmpty.nhat == 0

    # Other sites: 4 truncated detections of size 2 on 100 length units
    dfOthers = dfUnits[dfUnits.siteID != 'Empty']
    assert (dfOthers.rawcount == 8).all()
    assert dfOthers.nhat.to_numpy() == pytest.approx(2 * 4 * 10000 / (2 * 50 * 100))

    logger.info0('PASS testUnitNHats: zero-detection sites')


def testAbundanceAnalysisChecks(lineSurvey_fxt):

    dfDetections, dfSites = lineSurvey_fxt
    dfunc = uivu.StubDetectionFunction(esw=50.0, wHi=100)
    engine = uivu.StubEngine([(50.0, 0)])

    # Data errors, before any computation
    dfBad = dfDetections.copy()
    dfBad.loc[0, 'siteID'] = 'Unknown'
    with pytest.raises(abd.DataError):
        abd.estimateAbundance(dfunc, dfBad, dfSites, engine=engine, R=10)
    with pytest.raises(abd.DataError):
        abd.estimateAbundance(dfunc, dfDetections.drop(columns=['dist']), dfSites, engine=engine, R=10)
    assert engine.nCalls == 0

    # Bad arguments
    for kwargs in [dict(area=0), dict(ci=1.0), dict(ci=0), dict(R=0)]:
        with pytest.raises(AssertionError):
            abd.AbundanceAnalysis(dfunc, dfDetections, dfSites, engine=engine, **kwargs)

    logger.info0('PASS testAbundanceAnalysisChecks')


def testEstimateAbundanceNoCI(lineSurvey_fxt):

    dfDetections, dfSites = lineSurvey_fxt
    dfunc = uivu.StubDetectionFunction(esw=50.0, wHi=100)
    engine = uivu.StubEngine([(50.0, 0)])

    est = abd.estimateAbundance(dfunc, abd.DetectionDataSet(dfDetections), abd.SiteDataSet(dfSites),
                                area=10000, ci=None, engine=engine)

    assert est.nHat == pytest.approx(10.0)
    assert len(est.B) == 0 and est.nMissing == 0 and est.alpha is None
    assert np.isnan(est.ci[0]) and np.isnan(est.ci[1])
    assert est.dfUnitNHats is None
    assert engine.nCalls == 0

    assert 'Abundance estimate: 10' in est.summary()
    assert est.toSeries()['nHat'] == pytest.approx(10.0)

    logger.info0('PASS testEstimateAbundanceNoCI')


def testEstimateAbundanceEndToEnd():

    dfDetections, dfSites = uivu.simulatedSurvey(nSites=20, nPerSite=10, sigma=20.0, seed=5)
    engine = abd.MLEngine()
    dfunc = engine.fit('dist ~ 1', dfDetections, likelihood='halfnorm', wHi=60.0)

    est = abd.estimateAbundance(dfunc, dfDetections, dfSites, area=1e6, ci=0.9, R=20, byId=True,
                                engine=engine, seed=123)

    assert np.isfinite(est.nHat) and est.nHat > 0
    assert len(est.B) == 20 and est.alpha == 0.9
    assert est.nMissing == np.isnan(est.B).sum()
    assert est.ci[0] <= est.ci[1]
    assert 0 < est.ciProbs[0] < est.ciProbs[1] < 1
    assert est.dfunc is dfunc

    # Site estimates: 1 row per site
    assert len(est.dfUnitNHats) == len(dfSites)
    assert (est.dfUnitNHats.nhat >= 0).all()

    assert 'confidence interval' in est.summary()

    logger.info0('PASS testEstimateAbundanceEndToEnd: real MLEngine')


def testEstimateAbundanceCovariates():

    dfDetections, dfSites = uivu.simulatedSurvey(nSites=10, nPerSite=15, sigma=10.0, covariate=True, seed=17)
    engine = abd.MLEngine()
    dfunc = engine.fit('dist ~ obs', dfDetections, likelihood='halfnorm')

    est = abd.estimateAbundance(dfunc, dfDetections, dfSites, area=1e6, R=5, engine=engine, seed=1)

    assert np.isfinite(est.nHat) and est.nHat > 0 and est.nSkipped == 0
    assert len(est.B) == 5

    logger.info0('PASS testEstimateAbundanceCovariates: real MLEngine')


###############################################################################
#                         Actions to be done after all tests                  #
###############################################################################
def testEnd():
    uivu.logEnd(what=KWhat2Test)
