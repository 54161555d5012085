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

# Submodule "report": HTML and Excel report generation for an abundance estimate

import sys
import os
import re
import pathlib as pl

import datetime as dt
import codecs

import numpy as np
import pandas as pd
from scipy import integrate as sint

import jinja2
import matplotlib.pyplot as plt

from . import log, runtime, __version__
from .data import DistCol
from .engine import KGridPoints

runtime.update(matplotlib=sys.modules['matplotlib'].__version__, jinja2=jinja2.__version__)

logger = log.logger('abd.rep')

# Actual package install dir.
KInstDirPath = pl.Path(__file__).parent.resolve()


class AbundanceReport:

    """HTML and workbook report for an abundance estimate (abundance.AbundanceEstimate):
    summary, detection function, bootstrap distribution, site-level estimates"""

    PlotImgPrfxDetFunc = 'detfunc'
    PlotImgPrfxBootDist = 'bootdist'

    def __init__(self, estimate, title, subTitle='', description='', keywords='',
                 tgtFolder='.', tgtPrefix='abundance'):

        """Ctor

        Parameters:
        :param estimate: the abundance.AbundanceEstimate to report about
        :param title: main page title (and <title> tag in HTML header)
        :param subTitle: main page sub-title (under the title, lower font size)
        :param description: main page description text (under the sub-title, lower font size)
        :param keywords: for HTML header <meta name="keywords" ...>
        :param tgtFolder: target folder for the report (for _all_ generated files)
        :param tgtPrefix: default target file name for the report
        """

        assert os.path.isdir(tgtFolder), 'Target folder {} doesn\'t seem to exist ...'.format(tgtFolder)

        self.estimate = estimate
        self.title = title
        self.subTitle = subTitle
        self.description = description
        self.keywords = keywords

        self.tgtPrefix = tgtPrefix
        self.tgtFolder = tgtFolder

        self.tmplEnv = None

    @staticmethod
    def _libVersions():

        return {'Python': sys.version.split()[0],
                'NumPy': runtime['numpy'],
                'Pandas': runtime['pandas'],
                'SciPy': runtime['scipy'],
                'Matplotlib': runtime['matplotlib'],
                'Jinja': runtime['jinja2']}

    # Output file pathname generation.
    def targetFilePathName(self, suffix, prefix=None, tgtFolder=None):

        return os.path.join(tgtFolder or self.tgtFolder, (prefix or self.tgtPrefix) + suffix)

    # Get Jinja2 template environment for HTML reports.
    def getTemplateEnv(self):

        # Build and configure jinja2 environment if not already done.
        if self.tmplEnv is None:
            self.tmplEnv = jinja2.Environment(loader=jinja2.FileSystemLoader([KInstDirPath]),
                                              trim_blocks=True, lstrip_blocks=True)

        return self.tmplEnv

    def summaryTable(self):

        """Main figures of the estimate, as a 2-column DataFrame (Name, Value)"""

        est = self.estimate
        pointTransects = est.tranLen is None
        dSummary = {'Survey type': 'point transects' if pointTransects else 'line transects',
                    'Number of detections': est.n,
                    'Average group size': est.avgGroupSize,
                    'Number of sites': est.totSites}
        if not pointTransects:
            dSummary['Total transect length'] = est.tranLen
        dSummary.update({'Effective radius' if pointTransects else 'Effective strip width': est.esw,
                         'Area': est.area,
                         'Abundance' if est.area != 1 else 'Density': est.nHat})
        if est.alpha is not None:
            dSummary.update({'Confidence level': est.alpha,
                             'CI low': est.ci[0], 'CI high': est.ci[1],
                             'CI low quantile': est.ciProbs[0], 'CI high quantile': est.ciProbs[1],
                             'Bootstrap iterations': len(est.B),
                             'Missing iterations': est.nMissing})
        dSummary['Skipped detections'] = est.nSkipped

        return pd.DataFrame(dict(Name=list(dSummary.keys()), Value=list(dSummary.values())))

    def detFuncTable(self):

        return self.estimate.dfunc.describe().to_frame(name='Value')

    def bootstrapTable(self):

        return pd.DataFrame({'Iteration': np.arange(1, len(self.estimate.B) + 1), 'nHat': self.estimate.B})

    def asWorkbook(self):

        """Format as a "generic" workbook format, i.e. as a dict(name=(DataFrame, useIndex))
        where each item is a named worksheet"""

        ddfWbk = {'Summary': (self.summaryTable(), False),
                  'Detection function': (self.detFuncTable(), True)}
        if len(self.estimate.B) > 0:
            ddfWbk['Bootstrap'] = (self.bootstrapTable(), False)
        if self.estimate.dfUnitNHats is not None:
            ddfWbk['Sites'] = (self.estimate.dfUnitNHats, False)

        return ddfWbk

    def toExcel(self, fileName=None, engine='openpyxl', ext='.xlsx'):

        """Export to a workbook file format

        Parameters:
        :param fileName: target file path name ; None => self.tgtFolder/self.tgtPrefix + ext
        :param engine: Python module to use for exporting
        :param ext: extension of target file, if not specified in filename
        """

        fileName = fileName or self.targetFilePathName(suffix=ext)

        with pd.ExcelWriter(fileName, engine=engine) as xlsxWriter:
            logger.info(f'Building workbook report {fileName} ...')
            for wstName, (dfWstData, wstIndex) in self.asWorkbook().items():
                dfWstData.to_excel(xlsxWriter, sheet_name=wstName, index=wstIndex)

        logger.info('... done.')

        return fileName

    @staticmethod
    def _finishPlot(fig, axes, title, xLabel, yLabel, tgtFilePathName, colors, fontSizes, legend=True):

        if legend:
            axes.legend(fontsize=fontSizes['legend'])
        axes.set_title(label=title, fontdict=dict(fontsize=fontSizes['title']), pad=10)
        axes.set_xlabel(xLabel, fontsize=fontSizes['axes'])
        axes.set_ylabel(yLabel, fontsize=fontSizes['axes'])
        axes.tick_params(axis='both', labelsize=fontSizes['ticks'])
        axes.grid(True, which='major', zorder=0)
        axes.set_facecolor(colors['background'])
        fig.patch.set_facecolor(colors['background'])

        fig.tight_layout()
        fig.savefig(tgtFilePathName, bbox_inches='tight', facecolor=axes.figure.get_facecolor(), edgecolor='none')

        # Memory cleanup
        axes.clear()
        fig.clear()
        plt.close(fig)

    def generatePlots(self, imgFormat='png', imgSize=(640, 400), bins=20,
                      colors=dict(background='#f9fbf3', histograms='blue', curves='red', bounds='green'),
                      fontSizes=dict(title=11, axes=10, ticks=9, legend=10)):

        """Generate plot image files (in self.tgtFolder)

        * the fitted detection function over the scaled histogram of fitted distances
          (probability density and distance weighted histogram for point transects),
        * the distribution of bootstrap replicates, with the estimate and confidence interval bounds.

        :returns: dict(plot title => image file name) of the generated plots
        """

        est = self.estimate
        dfunc = est.dfunc

        plt.ioff()

        figSize = (imgSize[0] / plt.rcParams['figure.dpi'], imgSize[1] / plt.rcParams['figure.dpi'])

        dPlots = dict()

        # Detection function (only when fitted distances are available).
        if dfunc.dfFitData is not None and len(dfunc.dfFitData) > 0:

            title = 'Detection function'
            tgtFileName = self.PlotImgPrfxDetFunc + '.' + imgFormat.lower()
            dPlots[title] = tgtFileName

            dists = dfunc.dfFitData[DistCol].to_numpy(dtype=float)
            grid = np.linspace(dfunc.wLo, dfunc.wHi, KGridPoints)
            covars = dfunc.designMatrix(dfunc.dfFitData)
            gValues = np.atleast_2d(dfunc.g(grid, covars)).mean(axis=0)

            fig = plt.figure(figsize=figSize)
            axes = fig.subplots()

            # Histogram scaled so that its area is the effective width (lines), or as a pdf (points).
            if dfunc.pointTransects:
                pdfValues = grid * gValues
                pdfValues = pdfValues / sint.simpson(pdfValues, x=grid)
                axes.hist(dists, bins=bins, range=(dfunc.wLo, dfunc.wHi), density=True,
                          color=colors['histograms'], alpha=0.5, label='Observed', zorder=5)
                axes.plot(grid, pdfValues, color=colors['curves'], linewidth=2, label='Fitted pdf', zorder=10)
                yLabel = 'Probability density'
            else:
                heights, edges = np.histogram(dists, bins=bins, range=(dfunc.wLo, dfunc.wHi), density=True)
                axes.bar(edges[:-1], heights * est.esw, width=np.diff(edges), align='edge',
                         color=colors['histograms'], alpha=0.5, label='Observed (scaled)', zorder=5)
                axes.plot(grid, gValues, color=colors['curves'], linewidth=2, label='Fitted g(x)', zorder=10)
                yLabel = 'Detection probability'

            self._finishPlot(fig, axes, f'{title}: {dfunc.likeForm} ({dfunc.formula})', 'Distance', yLabel,
                             os.path.join(self.tgtFolder, tgtFileName), colors, fontSizes)

        # Bootstrap distribution
        B = est.B[~np.isnan(est.B)]
        if len(B) > 0:

            title = 'Bootstrap distribution'
            tgtFileName = self.PlotImgPrfxBootDist + '.' + imgFormat.lower()
            dPlots[title] = tgtFileName

            fig = plt.figure(figsize=figSize)
            axes = fig.subplots()

            axes.hist(B, bins=bins, color=colors['histograms'], alpha=0.7, label='Replicates', zorder=5)
            axes.axvline(est.nHat, color=colors['curves'], linewidth=2, label='Estimate', zorder=10)
            for bound in est.ci:
                if np.isfinite(bound):
                    axes.axvline(bound, color=colors['bounds'], linewidth=2, linestyle='--', zorder=10)
            axes.plot([], [], color=colors['bounds'], linestyle='--', label=f'{100 * est.alpha:.4g}% CI')

            self._finishPlot(fig, axes, f'{title} ({len(B)} valid of {len(est.B)} iterations)',
                             'Abundance' if est.area != 1 else 'Density', 'Count',
                             os.path.join(self.tgtFolder, tgtFileName), colors, fontSizes)

        return dPlots

    def toHtml(self):

        """Generate HTML report (and its plot images) in self.tgtFolder

        :returns: the HTML file path name
        """

        logger.info(f'Building HTML report {self.targetFilePathName(suffix=".html")} ...')

        dPlots = self.generatePlots()

        dfUnits = self.estimate.dfUnitNHats
        genDateTime = dt.datetime.now().strftime('%d/%m/%Y %H:%M:%S')
        tmpl = self.getTemplateEnv().get_template('report/abund.htpl')
        html = tmpl.render(summary=self.summaryTable().to_html(index=False, na_rep=''),
                           detfunc=self.detFuncTable().to_html(header=False, na_rep=''),
                           sites=None if dfUnits is None else dfUnits.to_html(index=False, na_rep=''),
                           plots=dPlots, estimate=self.estimate,
                           title=self.title, subtitle=self.subTitle.replace('\n', '<br>'),
                           description=self.description.replace('\n', '<br>'), keywords=self.keywords,
                           genDateTime=genDateTime, version=__version__, libVersions=self._libVersions())
        html = re.sub('(?:[ \t]*\n){2,}', '\n'*2, html)  # Cleanup blank line series to one only.

        htmlPathName = self.targetFilePathName(suffix='.html')
        with codecs.open(htmlPathName, mode='w', encoding='utf-8-sig') as tgtFile:
            tgtFile.write(html)

        logger.info('... done.')

        return htmlPathName
