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

# Submodule "engine": Detection function engines (fitting a likelihood to distances), and fitted models

import re
import copy

from collections import namedtuple as ntuple

import numpy as np
import pandas as pd
from scipy import optimize as sopt
from scipy import integrate as sint

from . import log
from .data import DataSet, DataError, DistCol
from .likelihood import Series, resolve

logger = log.logger('abd.eng', level=log.INFO)  # Initial config (can be changed later)

# Number of points (odd, for Simpson's rule) of the distance grid for effective width computation.
KGridPoints = 201

# Double observer table columns (detected by observer 1, by observer 2).
Obs1Col = 'obsby1'
Obs2Col = 'obsby2'
Observers = ['both', '1', '2']


class FitError(Exception):

    """The detection function could not even be fitted (no usable data, ...)"""

    pass


def parseFormula(formula):

    """Parse a 'dist ~ 1' or 'dist ~ cov1 + cov2' formula

    :returns: tuple(distance column name, list of covariate column names)
    :raises ValueError: if bad syntax
    """

    mtch = re.fullmatch(r'\s*([\w.]+)\s*~\s*(.+?)\s*', formula)
    if not mtch:
        raise ValueError(f'Bad detection function formula "{formula}": should be like "dist ~ 1" or "dist ~ a + b"')

    covarNames = [term.strip() for term in mtch.group(2).split('+')]
    if any(not re.fullmatch(r'[\w.]+', term) for term in covarNames):
        raise ValueError(f'Bad covariate term(s) in formula "{formula}"')

    return mtch.group(1), [term for term in covarNames if term != '1']


def covarLevels(dfData, covarNames):

    """Levels of categorical covariates (None for numeric ones)"""

    return {name: None if pd.api.types.is_numeric_dtype(dfData[name]) else sorted(dfData[name].unique())
            for name in covarNames}


def designMatrix(dfData, covarNames, dLevels):

    """Intercept + covariates design matrix (categorical covariates as treatment-coded dummies)

    :returns: tuple(np.ndarray of shape (len(dfData), nCols), column names)
    """

    cols, colNames = [np.ones(len(dfData))], ['(Intercept)']
    for name in covarNames:
        levels = dLevels.get(name)
        if levels is None:
            cols.append(dfData[name].to_numpy(dtype=float))
            colNames.append(name)
        else:
            cats = pd.Categorical(dfData[name], categories=levels)
            for level in levels[1:]:
                cols.append(np.asarray(cats == level, dtype=float))
                colNames.append(f'{name}{level}')

    return np.column_stack(cols), colNames


def gxFromDoubleObserver(dfObs, observer='both'):

    """Detection probability at the scaling distance from a double observer table
    (1 row per detection near the scaling distance, columns obsby1 and obsby2 = detected by observer 1, 2 ?)

    :param observer: 'both' => probability that at least one of the 2 observers detects,
                     '1' or '2' => probability for the given observer
    """

    assert observer in Observers, f'Invalid observer {observer}: should be in {Observers}'
    missCols = [col for col in [Obs1Col, Obs2Col] if col not in dfObs.columns]
    if missCols:
        raise DataError(f"Missing column(s) {', '.join(missCols)} in double observer data",
                        table='double observer', field=missCols[0])

    sObs1, sObs2 = dfObs[Obs1Col].astype(bool), dfObs[Obs2Col].astype(bool)
    n11 = (sObs1 & sObs2).sum()
    if n11 == 0:
        raise FitError('No detection by both observers: can\'t estimate g(x) from double observer data')

    p1 = n11 / sObs2.sum()  # Observer 1 detects, given observer 2 did
    p2 = n11 / sObs1.sum()

    return {'both': 1 - (1 - p1) * (1 - p2), '1': p1, '2': p2}[observer]


class DetectionFunction:

    """A fitted detection function: likelihood, parameters, truncation, scaling, ... (not to be modified)

    Provides detection probability, effective strip width and effective radius.
    """

    def __init__(self, likeForm, parameters, parameterNames, wLo, wHi, expansions=0, series='cosine',
                 covarNames=[], dCovarLevels={}, pointTransects=False, convergence=0, message='',
                 xScl=None, xSclSpec=None, gxSclSpec=1.0, gxScl=1.0, observer='both', loglik=np.nan, dfFitData=None,
                 formula=None, registry=None):

        """Ctor (usually called by a DSEngine)

        Parameters:
        :param likeForm: name of the likelihood (see likelihood module)
        :param parameters: fitted parameters
        :param parameterNames: names of the parameters
        :param wLo: left truncation distance
        :param wHi: right truncation distance
        :param expansions: number of expansion terms
        :param series: expansion series
        :param covarNames: covariate column names (empty if none)
        :param dCovarLevels: categorical covariate levels (see covarLevels)
        :param pointTransects: True for point transects, False for line transects
        :param convergence: 0 if fit converged, otherwise an error code
        :param message: optimiser message
        :param xScl: distance at which g is scaled (None => wLo)
        :param xSclSpec: xScl specification, as given for the fit (None, a distance, or 'max')
        :param gxSclSpec: g(xScl) specification, as given for the fit: a scalar, or a double observer table
        :param gxScl: the resulting scalar value of g at xScl
        :param observer: see gxFromDoubleObserver
        :param loglik: maximised log-likelihood
        :param dfFitData: the (truncated) detections used for the fit
        :param formula: the fit formula
        :param registry: likelihood registry (None => default one)
        """

        self.likeForm = likeForm
        self.parameters = np.asarray(parameters, dtype=float)
        self.parameterNames = list(parameterNames)
        self.wLo = wLo
        self.wHi = wHi
        self.expansions = expansions
        self.series = series
        self.covarNames = list(covarNames)
        self.dCovarLevels = dict(dCovarLevels)
        self.pointTransects = pointTransects
        self.convergence = convergence
        self.message = message
        self.xScl = wLo if xScl is None else xScl
        self.xSclSpec = xSclSpec
        self.gxSclSpec = gxSclSpec
        self.gxScl = gxScl
        self.observer = observer
        self.loglik = loglik
        self.dfFitData = dfFitData
        self.formula = formula or DistCol + ' ~ ' + (' + '.join(self.covarNames) or '1')
        self.registry = registry

        resolve(likeForm, registry=registry)  # Fail early if unknown.

    @property
    def density(self):

        # Resolved on demand, as density functions may not be picklable (multi-process bootstrap).
        return resolve(self.likeForm, registry=self.registry).density

    @property
    def hasCovariates(self):

        return len(self.covarNames) > 0

    def converged(self):

        return self.convergence == 0

    def designMatrix(self, dfDetections):

        """Covariate design matrix (with intercept) for the given detections, None if no covariates"""

        if not self.hasCovariates:
            return None

        return designMatrix(dfDetections, self.covarNames, self.dCovarLevels)[0]

    def _gRaw(self, dist, covars):

        return self.density(self.parameters, dist, covars=covars, pointSurvey=False, wLo=self.wLo, wHi=self.wHi,
                            series=self.series, expansions=self.expansions, scale=False)

    def g(self, dist, covars=None):

        """Detection probability at given distances, scaled for g(xScl) = gxScl

        :param dist: distances (1D)
        :param covars: None, or 1 covariate row, or n covariate rows (=> a n x len(dist) result)
        """

        dist = np.atleast_1d(np.asarray(dist, dtype=float))
        if covars is not None:
            covars = np.atleast_2d(covars)
            if covars.shape[0] > 1:
                dist = np.broadcast_to(dist, (covars.shape[0], dist.shape[-1]))

        raw = self._gRaw(dist, covars)
        rawAtXScl = self._gRaw(np.full(dist.shape[:-1] + (1,), float(self.xScl)), covars)

        return self.gxScl * raw / rawAtXScl

    def _meanIntegral(self, distWeighted):

        grid = np.linspace(self.wLo, self.wHi, KGridPoints)
        covars = self.designMatrix(self.dfFitData) if self.hasCovariates else None
        values = self.g(grid, covars)
        if distWeighted:
            values = values * grid

        return float(np.mean(sint.simpson(values, x=grid, axis=-1)))

    def effectiveStripWidth(self):

        """Effective strip width: integral of g over [wLo, wHi] (mean over fitted detections if covariates)"""

        return self._meanIntegral(distWeighted=False)

    def effectiveRadius(self):

        """Effective radius: sqrt(2 * integral of x.g(x) over [wLo, wHi]) (mean integral if covariates)"""

        return float(np.sqrt(2 * self._meanIntegral(distWeighted=True)))

    def esw(self):

        return self.effectiveRadius() if self.pointTransects else self.effectiveStripWidth()

    def aic(self):

        return 2 * len(self.parameters) - 2 * self.loglik

    def describe(self):

        """Main characteristics, as a pd.Series"""

        sDesc = pd.Series({'Likelihood': self.likeForm, 'Formula': self.formula,
                           'Series': self.series if self.expansions else 'none', 'Expansions': self.expansions,
                           'Survey': 'point transects' if self.pointTransects else 'line transects',
                           'Left trunc. dist.': self.wLo, 'Right trunc. dist.': self.wHi,
                           'Convergence': self.convergence, 'Log-likelihood': self.loglik, 'AIC': self.aic(),
                           'x scale': self.xScl, 'g(x scale)': self.gxScl,
                           'Effective radius' if self.pointTransects else 'ESW': self.esw()})
        sParams = pd.Series(self.parameters, index=self.parameterNames)

        return pd.concat([sDesc, sParams])

    def __repr__(self):

        return '{}({}, params=[{}], w=[{}, {}], conv={})' \
               .format(self.__class__.__name__, self.formula + ' / ' + self.likeForm,
                       ', '.join(f'{p:.4g}' for p in self.parameters), self.wLo, self.wHi, self.convergence)


# DSEngine (abstract) class.
# An engine for fitting detection functions to distance data, with same options (engine ctor params),
# but various parameters (fit() parameters).
class DSEngine:

    def __init__(self, registry=None, **options):

        """Ctor
        :param registry: likelihood registry to resolve likelihood names (None => default one)
        :param options: engine specific options (see derived classes)
        """

        # Save specific options (as a named tuple for easier use through dot operator).
        options = copy.deepcopy(options)
        self.OptionsClass = ntuple('Options', options.keys())
        self.options = self.OptionsClass(**options)

        self.registry = registry

    def fit(self, formula, data, likelihood='halfnorm', wLo=0, wHi=None, expansions=0, series='cosine',
            xScl=None, gxScl=1.0, observer='both', pointTransects=False):

        """Fit a detection function

        Parameters:
        :param formula: 'dist ~ 1' (no covariates) or 'dist ~ cov1 + cov2 ...'
        :param data: detections, as a DataFrame or a DataSet
        :param likelihood: name of the likelihood to fit
        :param wLo: left truncation distance
        :param wHi: right truncation distance (None => max distance)
        :param expansions: number of expansion terms
        :param series: expansion series, in likelihood.Series
        :param xScl: distance at which g is scaled (None => wLo ; 'max' => distance of max. g)
        :param gxScl: value of g at xScl: a scalar, or a double observer table (see gxFromDoubleObserver)
        :param observer: see gxFromDoubleObserver
        :param pointTransects: True for point transects, False for line transects
        :returns: a DetectionFunction (check its convergence member)
        :raises FitError: if no fit possible
        """

        raise NotImplementedError('Abstract DSEngine.fit method must no be called: see derived classes')


class MLEngine(DSEngine):

    """Maximum likelihood fitting of detection functions, through scipy.optimize.minimize"""

    # Lowest density value when computing log-likelihood (avoids log(0)).
    MinDensity = 1e-300

    # Negative log-likelihood value for non-computable parameter sets.
    HugeNegLogLik = 1e300

    def __init__(self, registry=None, method='L-BFGS-B', maxIter=1000):

        """Ctor
        :param registry: likelihood registry (None => default one)
        :param method: scipy.optimize.minimize method, among those supporting bounds
        :param maxIter: max. number of iterations of the optimiser
        """

        assert method in ['L-BFGS-B', 'TNC', 'SLSQP', 'Powell', 'Nelder-Mead', 'trust-constr'], \
               f'Unsupported optimisation method {method} (must support bounds)'

        super().__init__(registry=registry, method=method, maxIter=maxIter)

    def fit(self, formula, data, likelihood='halfnorm', wLo=0, wHi=None, expansions=0, series='cosine',
            xScl=None, gxScl=1.0, observer='both', pointTransects=False):

        distCol, covarNames = parseFormula(formula)
        dfData = data.dfData if isinstance(data, DataSet) else data

        missCols = [col for col in [distCol] + covarNames if col not in dfData.columns]
        if missCols:
            raise DataError(f"Missing column(s) {', '.join(missCols)} in detection data for formula {formula}",
                            table='detection', field=missCols[0])

        assert series in Series, f'Invalid expansion series {series}: should be in {Series}'
        assert expansions >= 0, f'Invalid number of expansions {expansions}: should be >= 0'
        if wHi is None:
            wHi = dfData[distCol].max()
        assert 0 <= wLo < wHi, f'Invalid truncation distances [{wLo}, {wHi}]: should be 0 <= wLo < wHi'

        dfFit = dfData[(dfData[distCol] >= wLo) & (dfData[distCol] <= wHi)]
        if dfFit.empty:
            raise FitError(f'No detection left in [{wLo}, {wHi}] to fit a detection function to')

        like = resolve(likelihood, registry=self.registry)
        dist = dfFit[distCol].to_numpy(dtype=float)

        dLevels = covarLevels(dfFit, covarNames)
        covars, covarColNames = designMatrix(dfFit, covarNames, dLevels) if covarNames else (None, [])

        dStart = like.startValues(dist, expansions, wLo, wHi, covars=covars)
        paramNames = covarColNames + dStart['parameterNames'][len(covarColNames):]

        def _negLogLik(a):
            dens = like.density(a, dist, covars=covars, pointSurvey=pointTransects, wLo=wLo, wHi=wHi,
                                series=series, expansions=expansions, scale=True)
            nll = -np.sum(np.log(np.maximum(dens, self.MinDensity)))
            return nll if np.isfinite(nll) else self.HugeNegLogLik

        logger.debug1(f'Fitting {likelihood} ({formula}) to {len(dist)} distances in [{wLo}, {wHi}] ...')
        with np.errstate(all='ignore'):
            res = sopt.minimize(_negLogLik, dStart['start'], method=self.options.method,
                                bounds=list(zip(dStart['lowerBounds'], dStart['upperBounds'])),
                                options=dict(maxiter=self.options.maxIter))

        convergence = 0 if res.success else 1
        if convergence:
            logger.debug1(f'... {likelihood} fit did not converge: {res.message}')

        gxValue = gxFromDoubleObserver(gxScl, observer) if isinstance(gxScl, pd.DataFrame) else float(gxScl)
        assert 0 < gxValue <= 1, f'Invalid g(x) scaling value {gxValue}: should be in ]0, 1]'

        dfunc = DetectionFunction(likeForm=likelihood, parameters=res.x, parameterNames=paramNames,
                                  wLo=wLo, wHi=wHi, expansions=expansions, series=series,
                                  covarNames=covarNames, dCovarLevels=dLevels, pointTransects=pointTransects,
                                  convergence=convergence, message=str(res.message),
                                  xScl=None if xScl == 'max' else xScl,
                                  xSclSpec=xScl,
                                  gxSclSpec=gxScl, gxScl=gxValue, observer=observer, loglik=-res.fun,
                                  dfFitData=dfFit, formula=formula, registry=self.registry)

        # Anchor x at the max. of the fitted g if requested.
        if xScl == 'max':
            grid = np.linspace(wLo, wHi, KGridPoints)
            rawValues = dfunc._gRaw(np.broadcast_to(grid, (len(covars), KGridPoints)) if covars is not None
                                    else grid, covars)
            dfunc.xScl = grid[np.argmax(np.atleast_2d(rawValues).mean(axis=0))]

        logger.debug1(f'... done: {dfunc}')

        return dfunc