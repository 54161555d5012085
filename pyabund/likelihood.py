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

# Submodule "likelihood": Registry of detection function likelihoods, resolved by name, and built-in ones
#
# A likelihood is a pair of functions:
# * density(a, dist, covars=None, pointSurvey=False, wLo=0, wHi=None, series='cosine', expansions=0, scale=True)
#   => per-observation values (np.ndarray), of the key function times its expansion series,
#      times the distance for point surveys, and divided by its integral over [wLo, wHi] if scale,
# * startValues(dist, expansions, wLo, wHi, covars=None)
#   => dict(start=, lowerBounds=, upperBounds=, parameterNames=) for the optimiser.
#
# Parameters layout (vector a): key function parameters first, and then expansion coefficients ;
# with covariates (design matrix with intercept column, 1 row per observation),
# the scale parameter of the key function is exp(covars @ a[:nCovarCols]).

from collections import namedtuple as ntuple

import numpy as np
from numpy.polynomial import hermite_e as herme
from scipy import integrate as sint

from . import log

logger = log.logger('abd.lik')

# Supported expansion series.
Series = ['cosine', 'hermite', 'simple']

# Number of points (odd, for Simpson's rule) of the grid used for scaling densities.
KScaleGridPoints = 201


class UnknownLikelihoodError(KeyError):

    """No likelihood registered under the requested name"""

    pass


Likelihood = ntuple('Likelihood', ['name', 'density', 'startValues'])


class LikelihoodRegistry:

    """Name => Likelihood mapping, for dynamic resolution of likelihoods by name"""

    def __init__(self):

        self._dLikes = dict()

    def register(self, name, density, startValues, replace=False):

        """Register a likelihood under a name

        :param name: the name of the likelihood
        :param density: the density function (see module header for the expected interface)
        :param startValues: the start values and bounds function (see module header)
        :param replace: if False, registering an already registered name is an error
        """

        assert callable(density) and callable(startValues), 'density and startValues must be callables'
        if name in self._dLikes and not replace:
            raise ValueError(f'Likelihood {name} already registered')

        self._dLikes[name] = Likelihood(name=name, density=density, startValues=startValues)
        logger.debug1(f'Registered likelihood {name}')

        return self._dLikes[name]

    def resolve(self, name):

        try:
            return self._dLikes[name]
        except KeyError:
            raise UnknownLikelihoodError(f'Unknown likelihood "{name}" ; should be one of {self.names()}') \
                from None

    def names(self):

        return list(self._dLikes.keys())

    def __contains__(self, name):

        return name in self._dLikes

    def __len__(self):

        return len(self._dLikes)


def _column(param, dist):

    """Make a per-observation parameter vector broadcastable against a 2D (observation x grid) distance array"""

    if np.ndim(dist) == 2 and np.ndim(param) == 1:
        return param[:, np.newaxis]

    return param


def _scaleParam(a, covars):

    """Scale parameter of a key function (and the number of parameters it takes in a)"""

    if covars is None:
        return a[0], 1

    covars = np.atleast_2d(covars)
    nCols = covars.shape[1]

    return np.exp(covars @ a[:nCols]), nCols


def _expansion(dist, sigma, coefs, series, wHi):

    """Expansion series factor: 1 + sum(coefs[j] * term_j(dist)), terms of order 2, 3, ..."""

    factor = 1.0
    for j, coef in enumerate(coefs):
        order = j + 2
        if series == 'cosine':
            term = np.cos(order * np.pi * dist / wHi)
        elif series == 'simple':
            term = (dist / wHi) ** (2 * order)
        elif series == 'hermite':
            hCoefs = np.zeros(2 * order + 1)
            hCoefs[-1] = 1
            term = herme.hermeval(dist / sigma, hCoefs)
        else:
            raise ValueError(f'Unsupported expansion series {series} ; should be in {Series}')
        factor = factor + coef * term

    return factor


def halfnormKey(a, dist, covars=None):

    sigma, nKey = _scaleParam(a, covars)
    sigma = _column(sigma, dist)

    return np.exp(-dist ** 2 / (2 * sigma ** 2)), sigma, nKey


def hazrateKey(a, dist, covars=None):

    sigma, nScale = _scaleParam(a, covars)
    sigma = _column(sigma, dist)
    shape = a[nScale]
    with np.errstate(divide='ignore'):
        key = 1 - np.exp(-(dist / sigma) ** (-shape))

    return key, sigma, nScale + 1


def negexpKey(a, dist, covars=None):

    rate, nKey = _scaleParam(a, covars)
    rate = _column(rate, dist)

    return np.exp(-rate * dist), 1 / rate, nKey


def uniformKey(a, dist, covars=None):

    if covars is not None:
        raise ValueError('uniform likelihood does not support covariates')

    threshold, knee = a[0], a[1]
    with np.errstate(over='ignore'):
        key = 1 - 1 / (1 + np.exp(-knee * (dist - threshold)))

    return key, threshold, 2


def _detectionFn(keyFn, a, dist, covars, series, expansions, wHi):

    key, sigma, nKey = keyFn(a, dist, covars)
    assert len(a) == nKey + expansions, \
           f'Bad number of parameters {len(a)}: should be {nKey} (key) + {expansions} (expansions)'

    return np.maximum(key * _expansion(dist, sigma, a[nKey:], series, wHi), 0)


def _integral(keyFn, a, covars, pointSurvey, wLo, wHi, series, expansions):

    """Integral over [wLo, wHi] of the unscaled density, through Simpson's rule on a regular grid
    (1 value per covariate row if any, a scalar otherwise)"""

    grid = np.linspace(wLo, wHi, KScaleGridPoints)
    if covars is not None:
        covars = np.atleast_2d(covars)
        grid = np.broadcast_to(grid, (covars.shape[0], KScaleGridPoints))

    values = _detectionFn(keyFn, a, grid, covars, series, expansions, wHi)
    if pointSurvey:
        values = values * grid

    return sint.simpson(values, x=grid, axis=-1)


def makeDensity(keyFn):

    """Build a density function (see module header for its interface) from a key function

    A key function keyFn(a, dist, covars) returns tuple(key values, scale param, number of params used in a)
    """

    def density(a, dist, covars=None, pointSurvey=False, wLo=0, wHi=None,
                series='cosine', expansions=0, scale=True):

        a = np.asarray(a, dtype=float)
        dist = np.asarray(dist, dtype=float)
        if wHi is None:
            wHi = dist.max()

        values = _detectionFn(keyFn, a, dist, covars, series, expansions, wHi)
        if pointSurvey:
            values = values * dist

        if scale:
            values = values / _integral(keyFn, a, covars, pointSurvey, wLo, wHi, series, expansions)

        return values

    density.__name__ = keyFn.__name__.replace('Key', 'Density')

    return density


def _startLayout(scale, scaleBounds, covars):

    """Start value, bounds and names of the scale parameter (as log-link coefficients with covariates)"""

    if covars is None:
        return [scale], [scaleBounds[0]], [scaleBounds[1]], ['Sigma']

    nCols = np.atleast_2d(covars).shape[1]

    return [np.log(scale)] + [0.0] * (nCols - 1), [-np.inf] * nCols, [np.inf] * nCols, \
           [f'b{i}' for i in range(nCols)]


def _withExpansions(start, lower, upper, names, expansions):

    return dict(start=np.array(start + [0.0] * expansions),
                lowerBounds=np.array(lower + [-np.inf] * expansions),
                upperBounds=np.array(upper + [np.inf] * expansions),
                parameterNames=names + [f'a{j + 1}' for j in range(expansions)])


def halfnormStart(dist, expansions, wLo, wHi, covars=None):

    dist = np.asarray(dist, dtype=float)
    sigma = np.sqrt(np.mean(dist ** 2)) if len(dist) else (wHi - wLo) / 2
    sigma = max(sigma, (wHi - wLo) / 1000)

    return _withExpansions(*_startLayout(sigma, ((wHi - wLo) / 1e4, 100 * wHi), covars), expansions)


def hazrateStart(dist, expansions, wLo, wHi, covars=None):

    dist = np.asarray(dist, dtype=float)
    sigma = np.sqrt(np.mean(dist ** 2)) if len(dist) else (wHi - wLo) / 2
    sigma = max(sigma, (wHi - wLo) / 1000)

    start, lower, upper, names = _startLayout(sigma, ((wHi - wLo) / 1e4, 100 * wHi), covars)

    return _withExpansions(start + [2.0], lower + [0.01], upper + [100.0], names + ['Shape'], expansions)


def negexpStart(dist, expansions, wLo, wHi, covars=None):

    dist = np.asarray(dist, dtype=float)
    meanDist = np.mean(dist - wLo) if len(dist) else (wHi - wLo) / 2
    rate = 1 / max(meanDist, (wHi - wLo) / 1000)

    start, lower, upper, names = _startLayout(rate, (1e-4 / wHi, np.inf), covars)
    if covars is None:
        names = ['Beta']

    return _withExpansions(start, lower, upper, names, expansions)


def uniformStart(dist, expansions, wLo, wHi, covars=None):

    if covars is not None:
        raise ValueError('uniform likelihood does not support covariates')

    return _withExpansions([wLo + 0.8 * (wHi - wLo), 10 / (wHi - wLo)], [wLo, 1e-4 / (wHi - wLo)],
                           [wHi, np.inf], ['Threshold', 'Knee'], expansions)


# The default registry, with built-in likelihoods.
TheRegistry = LikelihoodRegistry()

TheRegistry.register('halfnorm', makeDensity(halfnormKey), halfnormStart)
TheRegistry.register('hazrate', makeDensity(hazrateKey), hazrateStart)
TheRegistry.register('negexp', makeDensity(negexpKey), negexpStart)
TheRegistry.register('uniform', makeDensity(uniformKey), uniformStart)


def register(name, density, startValues, replace=False):

    """Register a likelihood into the default registry"""

    return TheRegistry.register(name, density, startValues, replace=replace)


def resolve(name, registry=None):

    """Resolve a likelihood from its name, in the given registry (default: the default one)

    :raises UnknownLikelihoodError: if not registered
    """

    return (TheRegistry if registry is None else registry).resolve(name)
