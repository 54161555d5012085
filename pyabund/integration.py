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

# Submodule "integration": Normalizing constant of a likelihood over the truncation range

import numpy as np
import scipy
from scipy import integrate as sint

from . import log, runtime
from .likelihood import resolve

runtime.update(scipy=scipy.__version__)

logger = log.logger('abd.int')


class NumericIntegrationError(ArithmeticError):

    """Numerical integration did not converge, or gave a non-positive or non-finite value"""

    pass


def normalizingConstant(dist, likeForm, wLo, wHi, covars, a, expansions=0, pointTransects=False,
                        series='cosine', registry=None):

    """Area under the (unscaled) density of a likelihood over [wLo, wHi], for 1 covariate row

    Dividing a group size by this constant gives the contribution of the detection to total abundance
    (inverse of its detection probability, in distance units).

    Parameters:
    :param dist: the detection distance (does not change the result, kept for traceability)
    :param likeForm: name of the likelihood
    :param wLo: left truncation distance
    :param wHi: right truncation distance
    :param covars: None, or the covariate row of the detection (intercept included), as a 1 x q array
    :param a: likelihood parameters
    :param expansions: number of expansion terms
    :param pointTransects: if True, integrate x * density(x)
    :param series: expansion series
    :param registry: the likelihood registry to use (None => default one)

    :returns: the (> 0) constant
    :raises UnknownLikelihoodError: if no such likelihood
    :raises NumericIntegrationError: if the integral did not converge, or is <= 0 or not finite
    """

    density = resolve(likeForm, registry=registry).density
    if covars is not None:
        covars = np.atleast_2d(np.asarray(covars, dtype=float))

    def _integrand(x):
        return density(a, np.array([x]), covars=covars, pointSurvey=pointTransects, wLo=wLo, wHi=wHi,
                       series=series, expansions=expansions, scale=False)[0]

    # When not converging, quad appends an explanation message to its output.
    result = sint.quad(_integrand, wLo, wHi, full_output=1, limit=100)
    value = result[0]
    if len(result) > 3:
        raise NumericIntegrationError(f'Integral of {likeForm} over [{wLo}, {wHi}] did not converge'
                                      f' (dist={dist}): {result[3]}')

    if not np.isfinite(value) or value <= 0:
        raise NumericIntegrationError(f'Integral of {likeForm} over [{wLo}, {wHi}] is not > 0: {value}'
                                      f' (dist={dist})')

    logger.debug4(f'normalizingConstant({likeForm}, dist={dist}) = {value}')

    return value
