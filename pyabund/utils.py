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

# Submodule "utils": Everything useful that does not fit elsewhere ...

import re
import types
import runpy
import pathlib as pl


# Names of usual imports in parameter files, not to be considered as parameters.
KUsualModules = ['sys', 'os', 'pl', 'pathlib', 'dt', 'datetime', 'pd', 'pandas',
                 'math', 'np', 'numpy', 'abd', 'pyabund', 'log', 'logger']


def loadPythonData(path, **kwargs):

    """Load parameters from a python source file, as a types.SimpleNamespace for dot access to values by name

    Note: Private names (starting with '_') and usual module names are dropped from the loaded data.

    Parameters:
    :param path: Path to the python source file (if suffix omitted, .py is assumed)
    :param kwargs: Optional initial values for the loaded data (overridable by the file)

    :returns: tuple(explicit pl.Path of the file, the types.SimpleNamespace of loaded data, or None if no such file)
    """

    path = pl.Path(path)
    if not path.suffix:
        path = path.with_suffix('.py')

    if not path.is_file():
        return path, None

    data = {key: value for key, value in runpy.run_path(path.as_posix(), init_globals=kwargs).items()
            if not key.startswith('_') and key not in KUsualModules}

    return path, types.SimpleNamespace(**data)


def parseKeyValues(text):

    """Parse a "key1=value1,key2=value2" string into a dict of str values

    Only simple values supported: no ',', '=', quote, space inside.
    :raises ValueError: on any syntax error
    """

    dValues = dict()
    if not text:
        return dValues

    for item in text.split(','):
        mtch = re.fullmatch(r'\s*([A-Za-z_][A-Za-z0-9_]*)\s*=\s*([^\s=\'"]*)\s*', item)
        if not mtch:
            raise ValueError(f'Bad key=value item "{item}"')
        dValues[mtch.group(1)] = mtch.group(2)

    return dValues
