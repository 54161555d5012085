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

# Submodule "data": Input survey data sets (detections, sites), and checks of their contract

import pathlib as pl
from packaging import version as pkgver

import numpy as np
import pandas as pd

from . import log, runtime

runtime.update(numpy=np.__version__, pandas=pd.__version__)

logger = log.logger('abd.dat')

# Standard column names.
SiteCol = 'siteID'
GroupSizeCol = 'groupsize'
DistCol = 'dist'
LengthCol = 'length'


class DataError(ValueError):

    """Fatal violation of the input data contract (missing column or value, unknown site, ...)"""

    def __init__(self, message, table=None, field=None):

        super().__init__(message)
        self.table = table
        self.field = field


class DataSet:

    """A tabular data set built by concatenating various-formatted source tables into one."""

    def __init__(self, sources, dRenameCols={}, dComputeCols={}, importDecFields=[],
                 sheet=None, skipRows=None, headerRows=0, separator='\t', encoding='utf-8'):

        """Ctor
        :param sources: data sources to read from ; input support provided for:
             * pandas.DataFrame,
             * Excel .xlsx and .xls files (through 'openpyxl' module),
             * tab-separated .csv/.txt files,
             * OpenDoc .ods files (through 'odfpy' module) ;
             when multiple sources provided, they are supposed to have compatible columns names,
             and data rows from each source are appended 1 source after the previous.
        :param dRenameCols: dict for renaming input columns right after loading data
        :param dComputeCols: name and compute method for computed columns to be auto-added ;
                             as a dict { new col. name => constant, or function to apply
                             to each row to auto-compute the new column } ;
                             note: these columns can also be renamed, through dRenameCols
        :param importDecFields: for smart ./, decimal character management in CSV sources
        :param sheet: name of the sheet to read from, for multi-sheet workbooks
        :param skipRows: list of indexes of initial rows to skip for file sources (before the column names row)
        :param headerRows: index (or list of) of rows holding columns names (default 0 => 1st row)
        :param separator: columns separator for CSV sources
        :param encoding: encoding for CSV sources
        """

        if not isinstance(sources, list):
            sources = [sources]

        ldfData = list()
        for source in sources:
            if isinstance(source, (str, pl.Path)):
                dfData = self._fromDataFile(source, sheet=sheet, decimalFields=importDecFields,
                                            skipRows=skipRows, headerRows=headerRows,
                                            separator=separator, encoding=encoding)
            elif isinstance(source, pd.DataFrame):
                dfData = source.copy()
                logger.info1('Loaded {} rows x {} columns from data frame'.format(len(dfData), len(dfData.columns)))
            elif isinstance(source, DataSet):
                dfData = source.dfData.copy()
            else:
                raise TypeError('Source for DataSet must be a pandas.DataFrame, a DataSet or an existing file')
            ldfData.append(dfData)

        self._dfData = pd.concat(ldfData, ignore_index=True) if len(ldfData) > 1 else ldfData[0]

        if self._dfData.empty:
            logger.warning('No data in source data set')
            return

        logger.info(f'Loaded {len(self)} x {len(self.columns)} total rows x columns in data set ...')
        logger.info('... found columns: [{}]'.format('|'.join(str(c) for c in self.columns)))

        if dRenameCols:
            dComputeCols = {dRenameCols.get(col, col): comp for col, comp in dComputeCols.items()}
            self.renameColumns(dRenameCols)

        if dComputeCols:
            self.addColumns(dComputeCols)

    # Wrapper around pd.read_csv for smart ./, decimal character management (pandas is not smart on this)
    @staticmethod
    def _csv2df(fileName, decCols, skipRows=None, headerRows=0, sep='\t', encoding='utf-8'):

        df = pd.read_csv(fileName, sep=sep, skiprows=skipRows, header=headerRows, encoding=encoding)
        if any(df[col].dropna().apply(lambda v: isinstance(v, str)).any() for col in decCols if col in df.columns):
            df = pd.read_csv(fileName, sep=sep, skiprows=skipRows, header=headerRows, encoding=encoding,
                             decimal=',')

        return df

    SupportedFileExts = \
        ['.xlsx', '.xls', '.csv', '.txt'] + (['.ods'] if pkgver.parse(pd.__version__).release >= (0, 25) else [])

    @classmethod
    def _fromDataFile(cls, sourceFpn, sheet=None, skipRows=None, headerRows=0,
                      decimalFields=[], separator='\t', encoding='utf-8'):

        sourceFpn = pl.Path(sourceFpn)
        if not sourceFpn.exists():
            raise FileNotFoundError('Source file for DataSet not found : {}'.format(sourceFpn))

        ext = sourceFpn.suffix.lower()
        assert ext in cls.SupportedFileExts, \
               'Unsupported source file type {}: not from {{{}}}'.format(ext, ','.join(cls.SupportedFileExts))

        logger.info1('Loading set from file {} ...'.format(sourceFpn.as_posix()))

        if ext in ['.xlsx', '.xls', '.ods']:
            dfData = pd.read_excel(sourceFpn, sheet_name=sheet or 0, skiprows=skipRows, header=headerRows)
        else:
            dfData = cls._csv2df(sourceFpn, decCols=decimalFields, sep=separator, encoding=encoding,
                                 skipRows=skipRows, headerRows=headerRows)

        logger.info1('... loaded {} rows x {} columns'.format(len(dfData), len(dfData.columns)))

        return dfData

    def __len__(self):

        return len(self._dfData)

    @property
    def empty(self):

        return self._dfData.empty

    @property
    def columns(self):

        return self._dfData.columns

    @property
    def dfData(self):

        return self._dfData

    @dfData.setter
    def dfData(self, dfData_):

        raise NotImplementedError('No change allowed to data ; create a new dataset !')

    @staticmethod
    def _addComputedColumns(dfData, dComputeCols):

        for colName, computeCol in dComputeCols.items():
            if callable(computeCol):
                dfData[colName] = dfData.apply(computeCol, axis='columns')
            else:
                dfData[colName] = computeCol

        return dfData

    def addColumns(self, dComputeCols):

        """Add computed columns to the data set

        :param dComputeCols: dict new col. name => constant, or function to apply
                             to each row to compute its value
        """

        self._addComputedColumns(self._dfData, dComputeCols)

    def renameColumns(self, dRenameCols):

        self._dfData.rename(columns=dRenameCols, inplace=True)

    def toExcel(self, fileName, sheetName=None, index=False, engine=None):

        """Save data table to a worksheet file (.xlsx through 'openpyxl', .ods through 'odfpy')"""

        self._dfData.to_excel(fileName, sheet_name=sheetName or 'Data', index=index, engine=engine)


def checkColumns(dfData, table, requiredCols):

    """Check that required columns are there, and hold no missing value

    :raises DataError: at the first offending column
    """

    for col in requiredCols:
        if col not in dfData.columns:
            raise DataError(f"There is no column named '{col}' in {table} data", table=table, field=col)

    for col in requiredCols:
        nNans = dfData[col].isna().sum()
        if nNans > 0:
            raise DataError(f"Please remove the {nNans} row(s) for which {table} column '{col}' is missing",
                            table=table, field=col)


class DetectionDataSet(DataSet):

    """Detections data set: 1 row per detection, with at least siteID, groupsize and dist columns
    (+ optional covariate columns)"""

    RequiredCols = [SiteCol, GroupSizeCol, DistCol]

    def __init__(self, sources, dRenameCols={}, dComputeCols={}, sheet=None, separator='\t'):

        super().__init__(sources, dRenameCols=dRenameCols, dComputeCols=dComputeCols,
                         importDecFields=[DistCol, GroupSizeCol], sheet=sheet, separator=separator)

    def check(self):

        checkColumns(self._dfData, 'detection', self.RequiredCols)

        for col, sbBad, rule in [(GroupSizeCol, self._dfData[GroupSizeCol] <= 0, '> 0'),
                                 (DistCol, self._dfData[DistCol] < 0, '>= 0')]:
            if sbBad.any():
                raise DataError(f'{sbBad.sum()} invalid value(s) in column {col} of detection data: should be {rule}',
                                table='detection', field=col)

        return self


class SiteDataSet(DataSet):

    """Sites (transects / points) data set: 1 row per surveyed site, with at least a siteID column,
    and a length column for line transects"""

    def __init__(self, sources, dRenameCols={}, dComputeCols={}, sheet=None, separator='\t'):

        super().__init__(sources, dRenameCols=dRenameCols, dComputeCols=dComputeCols,
                         importDecFields=[LengthCol], sheet=sheet, separator=separator)

    def check(self, pointTransects=False):

        checkColumns(self._dfData, 'site', [SiteCol] if pointTransects else [SiteCol, LengthCol])

        sbDupl = self._dfData[SiteCol].duplicated()
        if sbDupl.any():
            raise DataError('Duplicate site id(s) in site data: {}'
                            .format(', '.join(str(sid) for sid in self._dfData.loc[sbDupl, SiteCol].unique())),
                            table='site', field=SiteCol)

        if not pointTransects:
            sbBad = self._dfData[LengthCol] <= 0
            if sbBad.any():
                raise DataError(f'{sbBad.sum()} invalid value(s) in column {LengthCol} of site data: should be > 0',
                                table='site', field=LengthCol)

        return self


def checkSurveyData(detectionData, siteData, pointTransects=False):

    """Check the input contract of detection and site data, before any computation

    :param detectionData: DataFrame or DetectionDataSet
    :param siteData: DataFrame or SiteDataSet
    :param pointTransects: if False, sites must have a length column
    :returns: tuple(detections DataFrame, sites DataFrame) (copies)
    :raises DataError: on missing columns or values, duplicate sites, detections from unknown sites
    """

    dsDetections = detectionData if isinstance(detectionData, DetectionDataSet) \
                   else DetectionDataSet(detectionData)
    dsSites = siteData if isinstance(siteData, SiteDataSet) else SiteDataSet(siteData)

    dsDetections.check()
    dsSites.check(pointTransects=pointTransects)

    dfDetections, dfSites = dsDetections.dfData.copy(), dsSites.dfData.copy()

    sbUnknown = ~dfDetections[SiteCol].isin(dfSites[SiteCol])
    if sbUnknown.any():
        unknownIds = dfDetections.loc[sbUnknown, SiteCol].unique()
        raise DataError('{} detection site id(s) not found in site data: {}'
                        .format(len(unknownIds), ', '.join(str(sid) for sid in unknownIds)),
                        table='detection', field=SiteCol)

    logger.info1(f'Survey data OK: {len(dfDetections)} detections on {len(dfSites)} sites')

    return dfDetections, dfSites


def truncate(dfDetections, wLo, wHi):

    """Keep only detections with wLo <= distance <= wHi (bounds included)"""

    return dfDetections[(dfDetections[DistCol] >= wLo) & (dfDetections[DistCol] <= wHi)]
