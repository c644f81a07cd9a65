import numpy as np
import pandas as pd
import pytest

from rdm_portfolios.data_pull import RawData, clean_compustat, clean_crsp_monthly, clean_link_table

TODAY = pd.Timestamp('2024-01-01')
N_FIRMS = 10


def month_ends(start, end):
    return pd.period_range(start, end, freq='M').to_timestamp(how='end').normalize()


def make_msf(permnos, start='1995-01', end='2001-12', seed=0):
    """Raw CRSP monthly rows: price 10, 1,000 shares (thousands) -> $10M market cap."""
    rng = np.random.default_rng(seed)
    rows = []
    for i, permno in enumerate(permnos):
        for date in month_ends(start, end):
            rows.append({
                'permno': permno,
                'date': date,
                'ret': 0.005 + 0.002 * i + rng.normal(0, 0.04),
                'prc': 10.0,
                'shrout': 1000.0,
                'exchcd': 1,
            })
    return pd.DataFrame(rows)


def make_funda(gvkeys, fyears=range(1994, 2001)):
    rows = []
    for i, gvkey in enumerate(gvkeys):
        for fy in fyears:
            rows.append({
                'gvkey': gvkey,
                'datadate': pd.Timestamp(f'{fy}-12-31'),
                'fyear': fy,
                'xrd': float(i + 1),
                'sale': 100.0,
                'ceq': 50.0,
            })
    return pd.DataFrame(rows)


def make_links(gvkeys, permnos):
    return pd.DataFrame({
        'gvkey': list(gvkeys),
        'lpermno': list(permnos),
        'linkdt': pd.Timestamp('1980-01-01'),
        'linkenddt': pd.NaT,
        'linktype': 'LC',
        'linkprim': 'P',
    })


def make_factors(start='1990-01', end='2005-12', seed=1):
    rng = np.random.default_rng(seed)
    idx = pd.period_range(start, end, freq='M', name='period')
    n = len(idx)
    return pd.DataFrame({
        'mkt_rf': rng.normal(0.006, 0.045, n),
        'smb': rng.normal(0.002, 0.03, n),
        'hml': rng.normal(0.003, 0.03, n),
        'rf': np.full(n, 0.003),
    }, index=idx)


def write_french_csv(path, factors):
    """Write factors (decimals) in the Ken French CSV layout (percent)."""
    lines = [
        'This file was created by CMPT_ME_BEME_RETS using the 202312 CRSP database.',
        'The 1-month TBill return is from Ibbotson and Associates, Inc.',
        '',
        ',Mkt-RF,SMB,HML,RF',
    ]
    for period, row in factors.iterrows():
        lines.append(f"{period.strftime('%Y%m')},{row['mkt_rf']*100:.4f},{row['smb']*100:.4f},"
                     f"{row['hml']*100:.4f},{row['rf']*100:.4f}")
    lines += [
        '',
        ' Annual Factors: January-December ',
        ',Mkt-RF,SMB,HML,RF',
        '1995,  35.20,  -7.31,   4.20,   5.60',
        '',
        'Copyright 2023 Kenneth R. French',
    ]
    path.write_text('\n'.join(lines) + '\n')
    return path


@pytest.fixture
def gvkeys():
    return [f'{i:06d}' for i in range(1, N_FIRMS + 1)]


@pytest.fixture
def permnos():
    return [10000 + i for i in range(1, N_FIRMS + 1)]


@pytest.fixture
def raw_data(gvkeys, permnos):
    delist = pd.DataFrame(columns=['permno', 'dlstdt', 'dlret', 'dlstcd'])
    return RawData(
        fundamentals=clean_compustat(make_funda(gvkeys)),
        monthly=clean_crsp_monthly(make_msf(permnos), delist),
        links=clean_link_table(make_links(gvkeys, permnos), today=TODAY),
    )


@pytest.fixture
def factors():
    return make_factors()
