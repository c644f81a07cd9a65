"""
Portfolio construction: yearly quantile sorts on the ranking signal,
bucket returns over each holding window, and the top-minus-bottom spread.

Assignments and bucket returns are long format (one row per
firm-year-bucket and per month-bucket) so nothing is built up column by
column.
"""

import numpy as np
import pandas as pd

from .config import FORMATION_MONTH, N_BUCKETS
from .panel import holding_year


# =============================================================================
# Sorting
# =============================================================================

def assign_portfolios(panel: pd.DataFrame, n_buckets: int = N_BUCKETS,
                      signal: str = 'rdm') -> pd.DataFrame:
    """
    Bucket every firm-year with a defined signal, independently per year.

    Within a year firms are ranked by signal ascending, ties broken by gvkey
    ascending, and bucket = floor(position * n_buckets / count) + 1. Bucket
    sizes within a year differ by at most one; bucket n_buckets holds the
    highest signal values.
    """
    defined = panel[panel[signal].notna()]
    defined = defined.sort_values(['formation_year', signal, 'gvkey'], kind='mergesort')
    pos = defined.groupby('formation_year').cumcount().values
    size = defined.groupby('formation_year')['gvkey'].transform('size').values
    out = defined.copy()
    out['signal'] = out[signal]
    out['bucket'] = (pos * n_buckets // np.maximum(size, 1) + 1).astype('int64')
    return out.reset_index(drop=True)


def sort_year(panel: pd.DataFrame, year: int, n_buckets: int = N_BUCKETS,
              signal: str = 'rdm') -> pd.Series:
    """Bucket labels for one formation year, indexed by gvkey."""
    one_year = panel[panel['formation_year'] == year]
    assigned = assign_portfolios(one_year, n_buckets, signal)
    return pd.Series(assigned['bucket'].values, index=assigned['gvkey'].values, name='bucket')


def bucket_breakpoints(assignments: pd.DataFrame) -> pd.DataFrame:
    """Min / max signal per (formation_year, bucket); the data-dependent cut-points."""
    return (assignments.groupby(['formation_year', 'bucket'])['signal']
            .agg(['min', 'max', 'count'])
            .reset_index())


# =============================================================================
# Returns
# =============================================================================

def calc_equal_weighted_return(group):
    """Simple average of returns"""
    return group['ret_adj'].mean()


def calc_value_weighted_return(group):
    """Formation market-cap weighted average of returns"""
    weights = group['me'] / group['me'].sum()
    return (weights * group['ret_adj']).sum()


def held_positions(assignments: pd.DataFrame, monthly: pd.DataFrame,
                   formation_month: int = FORMATION_MONTH) -> pd.DataFrame:
    """Firm-months inside each assignment's holding window."""
    m = monthly[['permno', 'date', 'ret_adj']].copy()
    m['formation_year'] = holding_year(m['date'], formation_month).values
    m['period'] = m['date'].dt.to_period('M')
    keep = ['gvkey', 'permno', 'formation_year', 'bucket', 'me']
    return assignments[keep].merge(m, on=['permno', 'formation_year'], how='inner')


def bucket_monthly_returns(assignments: pd.DataFrame, monthly: pd.DataFrame,
                           formation_month: int = FORMATION_MONTH,
                           weighting: str = 'equal') -> pd.DataFrame:
    """
    Monthly return of each bucket over its holding window.

    Long format: period, date, formation_year, bucket, ret, n_firms.
    """
    if weighting not in ('equal', 'value'):
        raise ValueError(f"Unknown weighting {weighting!r}")
    held = held_positions(assignments, monthly, formation_month)
    if weighting == 'value':
        held = held[held['me'] > 0]

    keys = ['period', 'formation_year', 'bucket']
    if held.empty:
        return pd.DataFrame(columns=keys + ['date', 'ret', 'n_firms'])
    grouped = held.groupby(keys)
    if weighting == 'equal':
        ret = grouped[['ret_adj']].apply(calc_equal_weighted_return)
    else:
        ret = grouped[['ret_adj', 'me']].apply(calc_value_weighted_return)

    out = pd.DataFrame({
        'date': grouped['date'].max(),
        'ret': ret,
        'n_firms': grouped['gvkey'].nunique(),
    }).reset_index()
    return out.sort_values(['period', 'bucket']).reset_index(drop=True)


def long_short_series(bucket_returns: pd.DataFrame, n_buckets: int = N_BUCKETS) -> pd.DataFrame:
    """
    Monthly top-minus-bottom spread, one row per month in the sample range.

    A month where either leg is empty keeps long_short = NaN and
    defined = False; it is never filled with zero.
    """
    wide = bucket_returns.pivot_table(index='period', columns='bucket', values='ret', aggfunc='first')
    counts = bucket_returns.pivot_table(index='period', columns='bucket', values='n_firms', aggfunc='sum')
    if len(wide):
        full = pd.period_range(wide.index.min(), wide.index.max(), freq='M', name='period')
    else:
        full = pd.PeriodIndex([], freq='M', name='period')
    wide = wide.reindex(index=full, columns=range(1, n_buckets + 1))
    counts = counts.reindex(index=full, columns=range(1, n_buckets + 1)).fillna(0).astype('int64')

    out = pd.DataFrame(index=full)
    out['long'] = wide[n_buckets]
    out['short'] = wide[1]
    out['long_short'] = out['long'] - out['short']
    out['defined'] = out['long'].notna() & out['short'].notna()
    out['n_long'] = counts[n_buckets]
    out['n_short'] = counts[1]
    return out


def annual_long_short(assignments: pd.DataFrame, n_buckets: int = N_BUCKETS) -> pd.DataFrame:
    """
    Yearly spread: mean annual_ret of the top bucket minus mean annual_ret of
    the bottom bucket, per formation year.
    """
    means = (assignments.dropna(subset=['annual_ret'])
             .groupby(['formation_year', 'bucket'])['annual_ret'].mean()
             .unstack('bucket'))
    means = means.reindex(columns=range(1, n_buckets + 1))
    out = pd.DataFrame(index=means.index)
    out['long'] = means[n_buckets]
    out['short'] = means[1]
    out['long_short'] = out['long'] - out['short']
    out['defined'] = out['long'].notna() & out['short'].notna()
    return out


def bucket_return_table(bucket_returns: pd.DataFrame) -> pd.DataFrame:
    """Wide view of the bucket panel: period x bucket."""
    return bucket_returns.pivot_table(index='period', columns='bucket', values='ret', aggfunc='first')


def summarize_returns(returns: pd.DataFrame, periods_per_year: int = 12) -> pd.DataFrame:
    """Mean, volatility, annualized mean and t-stat of the mean per column."""
    rows = []
    for col in returns.columns:
        r = pd.to_numeric(returns[col], errors='coerce').dropna()
        n = len(r)
        std = r.std(ddof=1) if n > 1 else np.nan
        rows.append({
            'series': col,
            'mean': r.mean() if n else np.nan,
            'std': std,
            'ann_mean': r.mean() * periods_per_year if n else np.nan,
            'ann_vol': std * np.sqrt(periods_per_year) if n > 1 else np.nan,
            't_stat': r.mean() / (std / np.sqrt(n)) if n > 1 and std > 0 else np.nan,
            'n_obs': n,
        })
    return pd.DataFrame(rows).set_index('series')
