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

# Submodule "bootstrap": Site resampling for bootstrap replicates, and bias-corrected percentile intervals

from collections import namedtuple as ntuple

import numpy as np
import pandas as pd
from scipy import stats as sstats

from . import log
from .data import SiteCol

logger = log.logger('abd.bst')


def resampleSites(dfSites, dfDetections, rng):

    """Draw one bootstrap replicate of the survey: sites resampled with replacement,
    and detections of each drawn site repeated as many times as it was drawn

    Parameters:
    :param dfSites: sites table (1 row per site, unique siteID)
    :param dfDetections: detections table
    :param rng: the numpy.random.Generator to draw from

    :returns: tuple(new sites DataFrame, new detections DataFrame, pd.Series siteID => multiplicity
                    (only drawn sites, sum = len(dfSites)))
    """

    iDrawn = rng.choice(len(dfSites), size=len(dfSites), replace=True)
    dfNewSites = dfSites.iloc[iDrawn].reset_index(drop=True)

    sFreq = dfNewSites[SiteCol].value_counts(sort=False)
    sFreq.name = 'freq'

    # Repeat each detection of a drawn site as many times as its site was drawn.
    aDetFreq = dfDetections[SiteCol].map(sFreq).fillna(0).astype(int).to_numpy()
    dfNewDetections = dfDetections.iloc[np.repeat(np.arange(len(dfDetections)), aDetFreq)].reset_index(drop=True)

    return dfNewSites, dfNewDetections, sFreq


def resampleScaling(gxSclSpec, rng):

    """Bootstrap version of a g(x) scaling specification:
    rows of a double observer table resampled with replacement (same number), or the same scalar"""

    if isinstance(gxSclSpec, pd.DataFrame):
        return gxSclSpec.iloc[rng.choice(len(gxSclSpec), size=len(gxSclSpec), replace=True)] \
                        .reset_index(drop=True)

    return gxSclSpec


def refitFormula(dfunc):

    """Formula for refitting the same detection function (same covariates, or intercept only)"""

    return 'dist ~ ' + (' + '.join(dfunc.covarNames) if dfunc.hasCovariates else '1')


def refitSpecs(dfunc, gxSclSpec):

    """DSEngine.fit arguments (except data) for refitting the same detection function on a replicate"""

    return dict(formula=refitFormula(dfunc), likelihood=dfunc.likeForm, wLo=dfunc.wLo, wHi=dfunc.wHi,
                expansions=dfunc.expansions, series=dfunc.series, xScl=dfunc.xSclSpec, gxScl=gxSclSpec,
                observer=dfunc.observer, pointTransects=dfunc.pointTransects)


BCInterval = ntuple('BCInterval', ['low', 'high', 'pLow', 'pHigh', 'z0', 'nValues'])


def biasCorrectedInterval(values, theta0, confLevel=0.95):

    """Bias-corrected percentile bootstrap interval (no acceleration ; Manly, 1997, section 3.4)

    Missing (NaN) values are ignored.

    Note: Replicates equal to theta0 count half in the proportion p of replicates greater than theta0,
    where the usual definition (strictly greater only) counts them as not greater: with the latter,
    replicates all equal to theta0 give p = 0, z0 = +inf and quantile levels [1, 1] instead of
    z0 = 0 and the central levels, and any tie pushes the interval upwards ;
    both definitions agree when no replicate equals theta0.

    Parameters:
    :param values: bootstrap replicates of the estimate (NaN for missing ones)
    :param theta0: the estimate on original data
    :param confLevel: confidence level in ]0, 1[

    :returns: BCInterval(low, high, pLow, pHigh, z0, nValues) ; NaN bounds (and levels) if no valid value
    """

    assert 0 < confLevel < 1, f'Invalid confidence level {confLevel}: should be in ]0, 1['

    values = np.asarray(values, dtype=float)
    values = values[~np.isnan(values)]
    if len(values) == 0:
        return BCInterval(np.nan, np.nan, np.nan, np.nan, np.nan, 0)

    p = (np.sum(values > theta0) + 0.5 * np.sum(values == theta0)) / len(values)
    z0 = sstats.norm.ppf(1 - p)
    zAlpha = sstats.norm.ppf(1 - (1 - confLevel) / 2)
    pLow = sstats.norm.cdf(2 * z0 - zAlpha)
    pHigh = sstats.norm.cdf(2 * z0 + zAlpha)

    low, high = np.quantile(values, [pLow, pHigh])

    logger.debug1(f'Bias-corrected interval: p={p:.4f}, z0={z0:.4f}, levels=[{pLow:.4f}, {pHigh:.4f}]'
                  f' => [{low}, {high}] from {len(values)} values')

    return BCInterval(low, high, pLow, pHigh, z0, len(values))
