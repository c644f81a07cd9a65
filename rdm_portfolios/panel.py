"""
Panel assembly: one row per (gvkey, formation_year) holding the R&D,
book equity and sales known at the formation date, market equity observed
in the formation month, and the realized holding-period return.
"""

import numpy as np
import pandas as pd

from .config import FORMATION_MONTH
from .data_pull import collapse_duplicates

PANEL_COLUMNS = [
    'gvkey', 'permno', 'formation_year', 'datadate', 'fyear',
    'xrd', 'sale', 'ceq', 'me', 'rdm', 'rds', 'annual_ret', 'n_months',
]


def formation_year(report_dates: pd.Series, formation_month: int = FORMATION_MONTH,
                   lag_months: int = 0) -> pd.Series:
    """
    First formation year in which a report dated report_dates is public.

    A report whose effective date (report date + lag_months) falls on or
    before the formation month feeds that year's sort; anything later waits
    for the next year's. E.g. with an April formation month:
    Dec 1999 -> 2000, Apr 2000 -> 2000, Jun 2000 -> 2001.
    """
    dates = pd.to_datetime(pd.Series(report_dates))
    if lag_months:
        dates = dates + pd.DateOffset(months=lag_months)
    return dates.dt.year + (dates.dt.month > formation_month).astype(int)


def holding_year(dates: pd.Series, formation_month: int = FORMATION_MONTH) -> pd.Series:
    """
    Formation year whose holding window contains each date.

    Holding window for formation year Y runs from the month after the
    formation month of Y through the formation month of Y + 1
    (May Y .. April Y+1 for an April formation).
    """
    dates = pd.to_datetime(pd.Series(dates))
    return dates.dt.year - (dates.dt.month <= formation_month).astype(int)


def link_securities(monthly: pd.DataFrame, links: pd.DataFrame) -> pd.DataFrame:
    """
    Attach gvkey to each security-month inside a valid link interval.

    Link intervals are half-open: linkdt <= date < linkenddt. A security-month
    matching several companies keeps the link with the earliest linkdt
    (then smallest gvkey). A company-month matching several securities keeps
    the primary link, then the earliest linkdt, then the smallest permno.
    """
    link_cols = ['permno', 'gvkey', 'linkdt', 'linkenddt']
    if 'linkprim' in links.columns:
        link_cols.append('linkprim')
    merged = monthly.merge(links[link_cols], on='permno', how='inner')
    merged = merged[(merged['date'] >= merged['linkdt']) & (merged['date'] < merged['linkenddt'])].copy()

    merged = collapse_duplicates(
        merged, ['permno', 'date'], ['linkdt', 'gvkey'], [True, True], 'security-month link')

    if 'linkprim' in merged.columns:
        merged['_not_primary'] = (merged['linkprim'] != 'P').astype(int)
    else:
        merged['_not_primary'] = 0
    merged = collapse_duplicates(
        merged, ['gvkey', 'date'], ['_not_primary', 'linkdt', 'permno'], [True, True, True],
        'company-month link')

    drop = ['linkdt', 'linkenddt', '_not_primary'] + (['linkprim'] if 'linkprim' in merged.columns else [])
    return merged.drop(columns=drop).sort_values(['gvkey', 'date']).reset_index(drop=True)


def collapse_fundamentals(fundamentals: pd.DataFrame, formation_month: int = FORMATION_MONTH,
                          lag_months: int = 0) -> pd.DataFrame:
    """
    Tag each report with its formation year and keep one report per
    (gvkey, formation_year): the latest datadate.
    """
    fund = fundamentals.copy()
    fund['formation_year'] = formation_year(fund['datadate'], formation_month, lag_months).values
    return collapse_duplicates(
        fund, ['gvkey', 'formation_year'], ['datadate'], [False], 'fundamental')


def annual_holding_returns(monthly: pd.DataFrame, formation_month: int = FORMATION_MONTH) -> pd.DataFrame:
    """Compound ret_adj over each security's holding window."""
    df = monthly[['permno', 'date', 'ret_adj']].copy()
    df['formation_year'] = holding_year(df['date'], formation_month).values
    grouped = df.groupby(['permno', 'formation_year'])['ret_adj']
    out = pd.DataFrame({
        'annual_ret': grouped.apply(lambda r: (1 + r).prod() - 1),
        'n_months': grouped.size(),
    })
    return out.reset_index()


def build_panel(fundamentals: pd.DataFrame, monthly: pd.DataFrame, links: pd.DataFrame,
                formation_month: int = FORMATION_MONTH, lag_months: int = 0,
                require_realized_return: bool = True) -> pd.DataFrame:
    """
    Merge fundamentals and market data into the firm-year panel and derive
    rdm = xrd / me and rds = xrd / sale.

    Fundamentals without a linked security trading in the formation month are
    dropped. With require_realized_return, so are firm-years with no return
    in the holding window.
    """
    fund = collapse_fundamentals(fundamentals, formation_month, lag_months)
    linked = link_securities(monthly, links)

    at_formation = linked[linked['date'].dt.month == formation_month]
    at_formation = pd.DataFrame({
        'gvkey': at_formation['gvkey'].values,
        'permno': at_formation['permno'].values,
        'formation_year': at_formation['date'].dt.year.values,
        'me': at_formation['mktcap'].values,
    })

    fund_cols = [c for c in ['gvkey', 'formation_year', 'datadate', 'fyear', 'xrd', 'sale', 'ceq']
                 if c in fund.columns]
    panel = fund[fund_cols].merge(at_formation, on=['gvkey', 'formation_year'], how='inner')

    annual = annual_holding_returns(monthly, formation_month)
    panel = panel.merge(annual, on=['permno', 'formation_year'], how='left')
    if require_realized_return:
        panel = panel[panel['annual_ret'].notna()].copy()

    panel['rdm'] = np.where((panel['me'] > 0) & panel['xrd'].notna(),
                            panel['xrd'] / panel['me'], np.nan)
    panel['rds'] = np.where((panel['sale'] > 0) & panel['xrd'].notna(),
                            panel['xrd'] / panel['sale'], np.nan)

    cols = [c for c in PANEL_COLUMNS if c in panel.columns]
    return panel[cols].sort_values(['formation_year', 'gvkey']).reset_index(drop=True)
