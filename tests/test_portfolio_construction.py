import numpy as np
import pandas as pd
import pytest

from rdm_portfolios.portfolio_construction import (
    annual_long_short,
    assign_portfolios,
    bucket_breakpoints,
    bucket_monthly_returns,
    long_short_series,
    sort_year,
    summarize_returns,
)


def _cross_section(n, year=2000, seed=0):
    rng = np.random.default_rng(seed)
    return pd.DataFrame({
        'gvkey': [f'G{i:04d}' for i in range(n)],
        'permno': np.arange(n) + 1,
        'formation_year': year,
        'rdm': rng.permutation(np.linspace(0.01, 1.0, n)),
        'me': 10.0,
        'annual_ret': 0.0,
    })


class TestSorting:

    @pytest.mark.parametrize('n', [5, 7, 12, 23, 101])
    def test_buckets_partition_firms_evenly(self, n):
        cs = _cross_section(n)
        assigned = assign_portfolios(cs, n_buckets=5)
        assert sorted(assigned['gvkey']) == sorted(cs['gvkey'])
        assert not assigned['gvkey'].duplicated().any()
        sizes = assigned['bucket'].value_counts()
        assert set(sizes.index) == {1, 2, 3, 4, 5}
        assert sizes.max() - sizes.min() <= 1

    def test_higher_signal_never_in_lower_bucket(self):
        assigned = assign_portfolios(_cross_section(37), n_buckets=5)
        ranges = assigned.groupby('bucket')['rdm'].agg(['min', 'max'])
        for b in range(1, 5):
            assert ranges.loc[b, 'max'] < ranges.loc[b + 1, 'min']

    def test_missing_signal_excluded(self):
        cs = _cross_section(10)
        cs.loc[3, 'rdm'] = np.nan
        assigned = assign_portfolios(cs)
        assert len(assigned) == 9
        assert cs.loc[3, 'gvkey'] not in set(assigned['gvkey'])

    def test_ties_broken_by_gvkey(self):
        cs = pd.DataFrame({
            'gvkey': ['D', 'B', 'A', 'C', 'E'],
            'formation_year': 2000,
            'rdm': [0.5, 0.5, 0.5, 0.5, 0.5],
        })
        buckets = sort_year(cs, 2000)
        assert buckets.to_dict() == {'A': 1, 'B': 2, 'C': 3, 'D': 4, 'E': 5}

    def test_sort_is_independent_per_year(self):
        y1 = _cross_section(10, year=2000)
        y2 = _cross_section(10, year=2001)
        # Same firms, signal scaled up 100x in the second year
        y2['rdm'] = y1['rdm'] * 100
        both = assign_portfolios(pd.concat([y1, y2]))
        b1 = both[both['formation_year'] == 2000].set_index('gvkey')['bucket']
        b2 = both[both['formation_year'] == 2001].set_index('gvkey')['bucket']
        pd.testing.assert_series_equal(b1.sort_index(), b2.sort_index(), check_names=False)

    def test_sort_is_reproducible_under_row_order(self):
        cs = _cross_section(23)
        first = sort_year(cs, 2000).sort_index()
        second = sort_year(cs.sample(frac=1.0, random_state=3), 2000).sort_index()
        pd.testing.assert_series_equal(first, second)

    def test_fewer_firms_than_buckets_leaves_buckets_empty(self):
        assigned = assign_portfolios(_cross_section(3), n_buckets=5)
        assert assigned['bucket'].tolist() == sorted(assigned['bucket'].tolist())
        assert len(set(assigned['bucket'])) == 3

    def test_breakpoints(self):
        assigned = assign_portfolios(_cross_section(10), n_buckets=5)
        bp = bucket_breakpoints(assigned)
        assert bp['count'].tolist() == [2, 2, 2, 2, 2]
        assert (bp['min'] <= bp['max']).all()


def _assignments(buckets):
    """buckets: {gvkey: (permno, bucket, me)} for formation year 2000"""
    return pd.DataFrame([
        {'gvkey': g, 'permno': p, 'formation_year': 2000, 'bucket': b, 'me': me, 'signal': 0.0}
        for g, (p, b, me) in buckets.items()
    ])


def _monthly(rows):
    return pd.DataFrame(rows, columns=['permno', 'date', 'ret_adj']).assign(date=lambda d: pd.to_datetime(d['date']))


class TestBucketReturns:

    def test_equal_weighted_within_holding_window(self):
        assignments = _assignments({'A': (1, 1, 10.0), 'B': (2, 1, 30.0), 'C': (3, 5, 10.0)})
        monthly = _monthly([
            (1, '2000-04-28', 0.50),   # formation month, before the window
            (1, '2000-05-31', 0.02),
            (2, '2000-05-31', 0.04),
            (3, '2000-05-31', 0.10),
            (1, '2001-04-30', 0.01),
            (2, '2001-04-30', 0.03),
            (3, '2001-04-30', 0.05),
            (3, '2001-05-31', 0.99),   # next year's window
        ])
        out = bucket_monthly_returns(assignments, monthly, formation_month=4)
        assert sorted(out['period'].astype(str).unique()) == ['2000-05', '2001-04']
        may = out[out['period'] == pd.Period('2000-05', freq='M')].set_index('bucket')
        assert may.loc[1, 'ret'] == pytest.approx(0.03)
        assert may.loc[1, 'n_firms'] == 2
        assert may.loc[5, 'ret'] == pytest.approx(0.10)

    def test_value_weighted_uses_formation_market_equity(self):
        assignments = _assignments({'A': (1, 1, 10.0), 'B': (2, 1, 30.0)})
        monthly = _monthly([(1, '2000-05-31', 0.02), (2, '2000-05-31', 0.04)])
        out = bucket_monthly_returns(assignments, monthly, weighting='value')
        assert out.loc[0, 'ret'] == pytest.approx(0.25 * 0.02 + 0.75 * 0.04)

    def test_unknown_weighting_rejected(self):
        with pytest.raises(ValueError):
            bucket_monthly_returns(_assignments({'A': (1, 1, 10.0)}), _monthly([]), weighting='cap')

    @pytest.mark.parametrize('weighting', ['equal', 'value'])
    def test_no_held_months_gives_empty_frame(self, weighting):
        assignments = _assignments({'A': (1, 1, 10.0)})
        monthly = _monthly([(1, '2003-05-31', 0.02)])   # outside the 2000 window
        out = bucket_monthly_returns(assignments, monthly, weighting=weighting)
        assert out.empty
        assert {'period', 'bucket', 'ret', 'n_firms'} <= set(out.columns)


class TestLongShort:

    def test_monthly_spread_and_undefined_months(self):
        bucket_returns = pd.DataFrame({
            'period': pd.PeriodIndex(['2000-05', '2000-05', '2000-06', '2000-08', '2000-08'], freq='M'),
            'bucket': [1, 5, 1, 1, 5],
            'ret': [0.01, 0.05, 0.02, 0.00, 0.03],
            'n_firms': [3, 3, 3, 2, 2],
        })
        ls = long_short_series(bucket_returns, n_buckets=5)
        assert [str(p) for p in ls.index] == ['2000-05', '2000-06', '2000-07', '2000-08']
        assert ls.loc[pd.Period('2000-05', freq='M'), 'long_short'] == pytest.approx(0.04)
        # empty top bucket in June, no data in July: flagged, never zero
        for month in ('2000-06', '2000-07'):
            row = ls.loc[pd.Period(month, freq='M')]
            assert np.isnan(row['long_short'])
            assert not row['defined']
        assert ls['defined'].sum() == 2
        assert ls.loc[pd.Period('2000-08', freq='M'), 'n_long'] == 2

    def test_annual_spread_from_known_returns(self):
        assignments = pd.DataFrame({
            'gvkey': ['a', 'b', 'c', 'd'],
            'formation_year': 2000,
            'bucket': [1, 1, 5, 5],
            'annual_ret': [0.01, 0.02, 0.05, 0.07],
        })
        annual = annual_long_short(assignments, n_buckets=5)
        assert annual.loc[2000, 'long_short'] == pytest.approx(0.045)
        assert annual.loc[2000, 'defined']

    def test_annual_spread_undefined_without_bottom_bucket(self):
        assignments = pd.DataFrame({
            'gvkey': ['c'], 'formation_year': 2000, 'bucket': [5], 'annual_ret': [0.05],
        })
        annual = annual_long_short(assignments, n_buckets=5)
        assert np.isnan(annual.loc[2000, 'long_short'])
        assert not annual.loc[2000, 'defined']


def test_summarize_returns():
    returns = pd.DataFrame({'a': [0.01, 0.03, 0.02, np.nan]})
    summary = summarize_returns(returns)
    assert summary.loc['a', 'n_obs'] == 3
    assert summary.loc['a', 'mean'] == pytest.approx(0.02)
    assert summary.loc['a', 'ann_mean'] == pytest.approx(0.24)
    assert summary.loc['a', 't_stat'] == pytest.approx(0.02 / (0.01 / np.sqrt(3)))
