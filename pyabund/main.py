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

# Submodule "main": The command line application (python -m pyabund)

import re
import sys
import tempfile
import pathlib as pl
import argparse

import pandas as pd

from . import log, runtime
from .utils import loadPythonData, parseKeyValues
from .data import DataSet, DetectionDataSet, SiteDataSet, checkSurveyData
from .engine import MLEngine
from .abundance import AbundanceAnalysis
from .report import AbundanceReport


class _Logger:

    """Local logger, taking care of output log file at shutdown time"""

    def __init__(self, standaloneConfig=None):

        """
        :param dict standaloneConfig: the standalone logging configuration
            if not None, the logging system we be reconfigured for standard pyabund logging
            to sys.stdout and a session log file ; standaloneConfig must be a dict with following keys:
            * logNamePrefix str: prefix for the session log file name
            * runTimestamp str: extension prefix for the session log file name
            * mainLevel: logging level for the 'abd.main' logger (the one for this main module) ;
            otherwise, no reconfiguration will be achieved, thus inheriting the currently-in-place logging configuration
        """

        self.standaloneConfig = standaloneConfig

        # Plug this logger to the 'abd.main' standard one
        self.logger = log.logger(name='abd.main')
        for meth in dir(self.logger):
            if any(meth.startswith(prefix)
                   for prefix in ['exception', 'critical', 'error', 'warning', 'info', 'debug']):
                setattr(self, meth, getattr(self.logger, meth))

        # Configuration for openOperation and closeOperation methods
        self.openOpr = 'Checking'
        self.dOprStart = dict()

        # Configure logging if specified
        if self.standaloneConfig:

            # Log to sys.stdout, and also to a temporary log file (unique folder).
            logNamePrefix = self.standaloneConfig['logNamePrefix']
            runTimestamp = self.standaloneConfig['runTimestamp']
            mainLevel = self.standaloneConfig['mainLevel']
            self.runLogFileName = f'{logNamePrefix}.{runTimestamp}.log'
            self.runLogFileName = pl.Path(tempfile.mkdtemp(prefix='pyabund')) / self.runLogFileName
            self.logLevels = [dict(name='matplotlib', level=log.WARNING),
                              dict(name='abd', level=log.INFO1),
                              dict(name='abd.eng', level=log.INFO),
                              dict(name='abd.exr', level=log.INFO),
                              dict(name='abd.main', level=mainLevel)]
            log.configure(handlers=[sys.stdout, self.runLogFileName], reset=True, loggers=self.logLevels)

            self.info1('Logging session to temporary ' + self.runLogFileName.as_posix())

            # Fallback final log file path-name as long as it is not specified :
            # current folder, generic (timestamped) name.
            self.finalLogFileName = pl.Path('.') / self.runLogFileName.name

    def setFinalLogPrefix(self, prefix=None):

        if self.standaloneConfig:

            if prefix is not None:
                self.finalLogFileName = pl.Path(prefix + f".{self.standaloneConfig['runTimestamp']}.log")
                self.info1(f'On shutdown, will give back session log to {self.finalLogFileName.as_posix()}')
            else:
                self.finalLogFileName = None

    def giveBackLogFile(self):

        if self.standaloneConfig:

            # Release the log file
            log.configure(handlers=[sys.stdout], reset=True, loggers=self.logLevels)

            # Actually move and rename the log file if it is needed, or delete it if not.
            if self.finalLogFileName is not None:
                self.finalLogFileName.parent.mkdir(parents=True, exist_ok=True)
                self.runLogFileName.replace(self.finalLogFileName)
            else:
                self.runLogFileName.unlink()

            # Remove initial parent folder, now empty (was specially created for).
            self.runLogFileName.parent.rmdir()

    def setRealRun(self, realRun=True):

        if realRun:
            self.openOpr = 'Running'
            self.info('This is a real run: requested operation will be actually run !')
        else:
            self.openOpr = 'Checking'
            self.warning('Not a real run, only checking requested operations ...')

    def openOperation(self, oprText):

        self.info(f'{self.openOpr} {oprText} ...')
        self.dOprStart[oprText] = pd.Timestamp.now()

    def closeOperation(self, oprText):

        elapsed = str(pd.Timestamp.now() - self.dOprStart[oprText]).replace('0 days ', '')
        self.info(f'Done {self.openOpr.lower()} {oprText} ({elapsed}).')
        del self.dOprStart[oprText]


class _Application:

    """The Application class"""

    # Parameters (from the parameter file) and their default values (None => required).
    DParamDefaults = dict(detectionsFile=None, sitesFile=None, separator='\t',
                          formula='dist ~ 1', likelihood='halfnorm', wLo=0, wHi=None,
                          expansions=0, series='cosine', pointTransects=False,
                          xScl=None, gxScl=1.0, observer='both',
                          area=1, ci=0.95, R=500, byId=False, seed=None,
                          studyName='abundance', reportTitle='Abundance estimation', reportSubTitle='')

    def __init__(self, args, standaloneLogConfig=True, logNamePrefix='pyabund-main'):

        """Constructor

        :param list args: the list of command line arguments (ex: ['-p', 'params.py', '--workdir', '/tmp', ...]) ;
            sys.argv[1:] can be used for that !
        :param bool standaloneLogConfig: if True, the logging system we be reconfigured for standard pyabund logging
            ('abd.main' logger included) to sys.stdout and a session log file with name prefixed by logNamePrefix ;
            otherwise, no reconfiguration will be achieved, thus inheriting the currently in place logging configuration
        :param str logNamePrefix: prefix for the session log file (only used if standaloneLogConfig)
        """

        # Date+time of the run (for log file, ... etc).
        self.runTimestamp = pd.Timestamp.now().strftime('%y%m%d-%H%M%S')

        # The local Logger object
        standaloneLogConfig = None if not standaloneLogConfig \
                                   else dict(runTimestamp=self.runTimestamp,
                                             logNamePrefix=logNamePrefix,
                                             mainLevel=log.DEBUG2 if '-v' in args or '--verbose' in args else log.INFO1)
        self.logger = _Logger(standaloneConfig=standaloneLogConfig)

        # Parse command-line arguments
        self.rawArgs, self.args = self._parseArgs(args)

        # Let's go !
        self.logger.info('Current folder: ' + pl.Path().absolute().as_posix())
        self.logger.info('Computation platform:')
        for k, v in runtime.items():
            self.logger.info(f'* {k}: {v}')

    def _parseArgs(self, args):

        """Parse raw arguments into a SimpleNamespace through argparse.parse_args"""

        # Create the argument parse
        argser = argparse.ArgumentParser(prog='pyabund',  # usage='python -m pyabund',
                                         description='Estimate abundance (or density) from distance sampling'
                                                     ' survey data, with a bias-corrected bootstrap'
                                                     ' confidence interval',
                                         epilog='Exit codes:'
                                                ' 0 if OK,'
                                                ' 2 if any command line argument issue,'
                                                ' 1 if any other (unexpected) issue.')

        # Define expected arguments
        argser.add_argument('-u', '--run', dest='realRun', action='store_true', default=False,
                            help='Actually run specified estimation (not only check parameters and data)')
        argser.add_argument('-v', '--verbose', dest='verbose', action='store_true', default=False,
                            help='Display more infos about the work to be done')
        argser.add_argument('-p', '--params', dest='paramFile', type=str, required=True,
                            help='Path-name of python file (.py assumed if no extension / suffix given) specifying'
                                 ' data files, detection function and estimation parameters')
        argser.add_argument('-s', '--speparams', dest='speParams', type=str, default='',
                            help='Comma-separated key=value items specifying "special" parameters'
                                 ' defined before the parameter file is loaded, just as overridable built-in variables'
                                 r' (syntax and limitations: string-only values, with no space or ,;\'"$&! inside)')
        argser.add_argument('-w', '--workdir', dest='workDir', type=str, default='.',
                            help='Work folder = where to store output files'
                                 ' (Note: a timestamp sub-folder YYMMDD-HHMMSS is auto-appended,'
                                 ' if not already such, and not -n/--notimestamp)')
        argser.add_argument('-n', '--notimestamp', dest='noTimestamp', action='store_true', default=False,
                            help='Inhibit auto-timestamped work sub-folder creation (under work folder)')
        argser.add_argument('-r', '--reports', dest='reports', type=str, default='none',
                            help='Which reports to generate, through comma-separated keywords'
                                 ' among {excel, html, none} (case does not matter, none ignored if not alone)')
        if self.logger.standaloneConfig:
            argser.add_argument('-l', '--logprefix', dest='logPrefix', type=str, default=None,
                                help='Target log file path-name prefix'
                                     ' (will be post-fixed by .<YYMMDD-HHMMSS timestamp>.log)'
                                     f" (Default: <work folder>/{self.logger.standaloneConfig['logNamePrefix']}"
                                     " if -u/--run, else 'none' ; if special value 'none', no log saved)")
        argser.add_argument('-m', '--threads', dest='threads', type=int, default=1,
                            help='Number of parallel threads to use for bootstrap iterations'
                                 ' (default: 1 for no parallelism ; 0 => auto-determined number from CPU specs)')

        # Parse given args and return the resulting SimpleNamespace.
        self.logger.info(f"Command line arguments: {' '.join(args)}")

        return args, argser.parse_args(args)

    def _decodeReportArg(self, repArg):

        """Decode value for the --reports argument

        :returns: set of formats among {'excel', 'html'} (empty for 'none'), or None if any unsupported one
        """

        repFormats = set(item.strip().lower() for item in repArg.split(',') if item.strip())
        if len(repFormats) > 1:
            repFormats.discard('none')

        unsupRepFmts = [fmt for fmt in repFormats if fmt not in ['none', 'html', 'excel']]
        if unsupRepFmts:
            self.logger.error('Unsupported report format(s) {}'.format(', '.join(unsupRepFmts)))
            return None

        repFormats.discard('none')
        self.logger.debug1(f'Reports: {repFormats}')

        return repFormats

    def _loadParams(self):

        """Load parameter python file, passing "special" parameters if any, and apply defaults

        :returns: the parameter SimpleNamespace, or None if any issue (already logged)
        """

        try:
            speParams = parseKeyValues(self.args.speParams)
        except ValueError as exc:
            self.logger.error(f'Syntax error in special parameters "{self.args.speParams}": {exc}'
                              ' (should be "name1=value1,name2=value2,...")')
            return None

        paramFile, pars = loadPythonData(path=self.args.paramFile, **speParams)
        if not pars:
            self.logger.error(f'Failed to load parameter file {paramFile.as_posix()}')
            return None
        self.logger.debug1('Parameters: ' + ', '.join(vars(pars)))

        for name, default in self.DParamDefaults.items():
            if name not in vars(pars):
                if default is None and name in ['detectionsFile', 'sitesFile']:
                    self.logger.error(f'Missing parameter {name} in parameter file {paramFile.as_posix()}')
                    return None
                setattr(pars, name, default)

        # Relative data file paths are relative to the parameter file.
        for name in ['detectionsFile', 'sitesFile']:
            path = pl.Path(getattr(pars, name))
            if not path.is_absolute():
                path = paramFile.parent / path
            setattr(pars, name, path)

        return pars

    RC_OK = 0
    RC_UXPTD_ERROR = 1
    RC_ERROR = 2

    def run(self):

        try:
            rc = self._run()
        except Exception:
            self.logger.exception('Unexpected error')
            rc = self.RC_UXPTD_ERROR

        return rc

    def _run(self):

        """The run function: call it to run this Main object"""

        self.logger.setRealRun(self.args.realRun)

        # 1. Check args and load parameters.
        if self.args.threads == 1:
            self.args.threads = None  # No need for asynchronism: enforce sequential run.
        elif self.args.threads < 0:
            self.logger.error(f'Invalid number of threads {self.args.threads}: should be >= 0')
            return self.RC_ERROR

        self.args.reports = self._decodeReportArg(self.args.reports)
        if self.args.reports is None:
            return self.RC_ERROR

        self.logger.info1('Arguments:')
        for k, v in vars(self.args).items():
            self.logger.info1(f'* {k}: {v}')

        pars = self._loadParams()
        if pars is None:
            return self.RC_ERROR

        # 2. Work folder and log file.
        workDir = pl.Path(self.args.workDir)
        if not (self.args.noTimestamp or re.match('.*[0-9]{6}-[0-9]{4,6}$', workDir.name)):
            workDir = workDir / self.runTimestamp
        self.logger.info(f'Work folder: {workDir.as_posix()}')

        if self.logger.standaloneConfig:
            if not self.args.realRun:
                self.args.logPrefix = None  # No need for a log file at the end here !
            elif self.args.logPrefix is None:
                self.args.logPrefix = workDir.as_posix() + f'/{pars.studyName}'
            elif self.args.logPrefix.lower() == 'none':
                self.args.logPrefix = None
            self.logger.setFinalLogPrefix(self.args.logPrefix)

        # 3. Load and check survey data.
        oprText = 'survey data loading'
        self.logger.openOperation(oprText)

        for name in ['detectionsFile', 'sitesFile']:
            if not getattr(pars, name).is_file():
                self.logger.error(f'Data file {name} {getattr(pars, name).as_posix()} not found')
                return self.RC_ERROR

        dsDetections = DetectionDataSet(pars.detectionsFile, separator=pars.separator)
        dsSites = SiteDataSet(pars.sitesFile, separator=pars.separator)
        checkSurveyData(dsDetections, dsSites, pointTransects=pars.pointTransects)

        self.logger.closeOperation(oprText)

        if not self.args.realRun:
            self.logger.info('Checks done, seems you can now really run this, through -u / --run :-)')
            return self.RC_OK

        workDir.mkdir(parents=True, exist_ok=True)

        # 4. Fit detection function.
        oprText = 'detection function fit'
        self.logger.openOperation(oprText)

        engine = MLEngine()
        gxScl = pars.gxScl
        if isinstance(gxScl, (str, pl.Path)):  # Double observer table file.
            gxScl = DataSet(gxScl, separator=pars.separator).dfData
        dfunc = engine.fit(formula=pars.formula, data=dsDetections, likelihood=pars.likelihood,
                           wLo=pars.wLo, wHi=pars.wHi, expansions=pars.expansions, series=pars.series,
                           xScl=pars.xScl, gxScl=gxScl, observer=pars.observer,
                           pointTransects=pars.pointTransects)
        self.logger.info(f'Detection function: {dfunc}')

        self.logger.closeOperation(oprText)

        # 5. Estimate abundance.
        oprText = 'abundance estimation'
        self.logger.openOperation(oprText)

        estimate = AbundanceAnalysis(dfunc, dsDetections, dsSites, engine=engine, area=pars.area, ci=pars.ci,
                                     R=pars.R, byId=pars.byId, seed=pars.seed, threads=self.args.threads).run()
        for line in estimate.summary().split('\n'):
            self.logger.info(line)

        self.logger.closeOperation(oprText)

        # 6. Reports.
        if self.args.reports:

            oprText = 'report generation'
            self.logger.openOperation(oprText)

            report = AbundanceReport(estimate, title=pars.reportTitle, subTitle=pars.reportSubTitle,
                                     tgtFolder=workDir.as_posix(), tgtPrefix=pars.studyName)
            if 'excel' in self.args.reports:
                report.toExcel()
            if 'html' in self.args.reports:
                report.toHtml()

            self.logger.closeOperation(oprText)

        return self.RC_OK

    def shutdown(self):

        self.logger.giveBackLogFile()


def main(args, standaloneLogConfig=True, logNamePrefix='pyabund-main'):

    """The main function: create the application object and run it

    :param list args: the list of command line arguments (ex: ['-p', 'params.py', '--workdir', '/tmp', ...]) ;
        None: sys.argv[1:] can be used for this !
    :param bool standaloneLogConfig: if True, the logging system we be reconfigured for standard pyabund logging
        ('abd.main' logger included) to sys.stdout and a session log file with name prefixed by logNamePrefix ;
        otherwise, no reconfiguration will be achieved, thus inheriting the currently in place logging configuration
    :param str logNamePrefix: prefix for the session log file (only used if standaloneLogConfig)
    """

    app = _Application(args, standaloneLogConfig=standaloneLogConfig, logNamePrefix=logNamePrefix)

    rc = app.run()

    app.shutdown()

    return rc
