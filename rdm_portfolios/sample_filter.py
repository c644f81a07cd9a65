"""
Complete-panel filter.

Keeps firms that have the ranking signal in the base year and enough annual
observations from then on, trading cross-sectional breadth for series
completeness.
"""

import pandas as pd

from .config import BASE_YEAR, MIN_CONSECUTIVE_YEARS, OBS_POLICY


def _leading_run(years, base_year):
    """Length of the run of consecutive years starting at base_year."""
    present = set(years)
    run = 0
    while base_year + run in present:
        run += 1
    return run


def observation_counts(panel, base_year=BASE_YEAR, signal='rdm'):
    """
    Per gvkey: whether the signal is defined in base_year, the consecutive
    run of defined years starting there, and the total defined years from
    base_year on.
    """
    defined = panel.loc[panel[signal].notna() & (panel['formation_year'] >= base_year),
                        ['gvkey', 'formation_year']].drop_duplicates()
    grouped = defined.groupby('gvkey')['formation_year']
    counts = pd.DataFrame({
        'in_base_year': grouped.apply(lambda y: bool((y == base_year).any())),
        'consecutive': grouped.apply(lambda y: _leading_run(y, base_year)),
        'total': grouped.size(),
    })
    counts.index.name = 'gvkey'
    return counts


def eligible_firms(panel, base_year=BASE_YEAR, min_obs=MIN_CONSECUTIVE_YEARS,
                   policy=OBS_POLICY, signal='rdm'):
    """gvkeys that pass the complete-panel requirement."""
    if policy not in ('consecutive', 'total'):
        raise ValueError(f"Unknown policy {policy!r}; expected 'consecutive' or 'total'")
    counts = observation_counts(panel, base_year, signal)
    if counts.empty:
        return pd.Index([], name='gvkey')
    keep = counts['in_base_year'].astype(bool) & (counts[policy] >= min_obs)
    return counts.index[keep]


def filter_complete_panel(panel, base_year=BASE_YEAR, min_obs=MIN_CONSECUTIVE_YEARS,
                          policy=OBS_POLICY, signal='rdm'):
    """
    Restrict the panel to eligible firms and formation years >= base_year.

    A firm without the signal in base_year is dropped entirely, however
    complete its later history. Under 'consecutive' a single gap inside the
    first min_obs years disqualifies the firm; under 'total' only the count
    matters.
    """
    firms = eligible_firms(panel, base_year, min_obs, policy, signal)
    out = panel[panel['gvkey'].isin(firms) & (panel['formation_year'] >= base_year)]
    return out.reset_index(drop=True)
