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

# Automated unit and integration tests for "main" submodule (command line application)

# To run : simply run "pytest" and check standard output + ./tmp/pytest.{datetime}.log for details

import pandas as pd

import pytest

import pyabund as abd
from pyabund.main import main

import unintval_utils as uivu


# Mark module
pytestmark = pytest.mark.unintests

# Setup local logger.
logger = uivu.setupLogger('unt.mai', level=abd.DEBUG,
                          otherLoggers={'abd.main': abd.INFO, 'abd.abd': abd.INFO, 'abd.rep': abd.INFO})

KWhat2Test = 'main'


###############################################################################
#                         Actions to be done before any test                  #
###############################################################################
def testBegin():
    uivu.logBegin(what=KWhat2Test)


###############################################################################
#                         Input Data Preparation                              #
###############################################################################
KParamsText = """
detectionsFile = 'detections.csv'
sitesFile = 'sites.csv'
likelihood = 'halfnorm'
wHi = 60.0
area = 1e6
R = 5
byId = True
seed = 2021
studyName = studyName if 'studyName' in dir() else 'simul'
"""


@pytest.fixture()
def inputs_fxt():

    """Work folder with survey data files and a parameter file inside"""

    pWorkDir = uivu.setupWorkDir('unt-mai')

    dfDetections, dfSites = uivu.simulatedSurvey(nSites=8, nPerSite=8, seed=5)
    dfDetections.to_csv(pWorkDir / 'detections.csv', sep='\t', index=False)
    dfSites.to_csv(pWorkDir / 'sites.csv', sep='\t', index=False)

    pParFile = pWorkDir / 'params.py'
    with open(pParFile, 'w') as file:
        file.write(KParamsText)

    return pWorkDir, pParFile


###############################################################################
#                                Test Cases                                   #
###############################################################################

def testMainCheckRun(inputs_fxt):

    pWorkDir, pParFile = inputs_fxt

    # Without -u: only checks, no output
    rc = main(['-p', pParFile.as_posix(), '-w', pWorkDir.as_posix(), '-n', '-r', 'excel'],
              standaloneLogConfig=False)

    assert rc == 0
    assert not (pWorkDir / 'simul.xlsx').exists()

    logger.info0('PASS testMainCheckRun')


def testMainRealRun(inputs_fxt):

    pWorkDir, pParFile = inputs_fxt

    rc = main(['-u', '-p', pParFile.with_suffix('').as_posix(), '-w', pWorkDir.as_posix(), '-n',
               '-r', 'Excel,html', '-s', 'studyName=north'],
              standaloneLogConfig=False)

    assert rc == 0

    pExcelFile = pWorkDir / 'north.xlsx'
    assert pExcelFile.is_file()
    dfSummary = pd.read_excel(pExcelFile, sheet_name='Summary')
    sSummary = dfSummary.set_index('Name').Value
    assert float(sSummary['Bootstrap iterations']) == 5

    assert (pWorkDir / 'north.html').is_file()

    uivu.cleanupWorkDir()

    logger.info0('PASS testMainRealRun')


def testMainErrors(inputs_fxt):

    pWorkDir, pParFile = inputs_fxt

    # Unsupported report format
    rc = main(['-p', pParFile.as_posix(), '-r', 'excel,pdf'], standaloneLogConfig=False)
    assert rc == 2

    # Missing parameter file
    rc = main(['-p', (pWorkDir / 'no-such-params.py').as_posix()], standaloneLogConfig=False)
    assert rc == 2

    # Bad special parameter syntax
    rc = main(['-p', pParFile.as_posix(), '-s', 'studyName=a b'], standaloneLogConfig=False)
    assert rc == 2

    # Invalid number of threads
    rc = main(['-p', pParFile.as_posix(), '-m', '-2'], standaloneLogConfig=False)
    assert rc == 2

    # Missing data file
    (pWorkDir / 'sites.csv').unlink()
    rc = main(['-p', pParFile.as_posix()], standaloneLogConfig=False)
    assert rc == 2

    # Missing mandatory -p argument: argparse exits
    with pytest.raises(SystemExit) as excInfo:
        main(['-u'], standaloneLogConfig=False)
    assert excInfo.value.code == 2

    logger.info0('PASS testMainErrors')


def testMainBadData(inputs_fxt):

    pWorkDir, pParFile = inputs_fxt

    # Detections referencing a site absent from the sites table => unexpected error (DataError)
    dfDetections = pd.read_csv(pWorkDir / 'detections.csv', sep='\t')
    dfDetections.loc[0, 'siteID'] = 'no-such-site'
    dfDetections.to_csv(pWorkDir / 'detections.csv', sep='\t', index=False)

    rc = main(['-p', pParFile.as_posix()], standaloneLogConfig=False)
    assert rc == 1

    uivu.cleanupWorkDir()

    logger.info0('PASS testMainBadData')


###############################################################################
#                         Actions to be done after all tests                  #
###############################################################################
def testEnd():
    uivu.logEnd(what=KWhat2Test)
