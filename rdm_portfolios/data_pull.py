"""
Data acquisition: Compustat fundamentals, CRSP monthly returns and the CCM
link table from WRDS, plus the Fama-French factor file.

Everything downstream consumes the cleaned frames in a RawData bundle, so a
snapshot saved once with save_raw_data can be re-run without a connection.
"""

import warnings
from dataclasses import dataclass
from pathlib import Path

import numpy as np
import pandas as pd

from .errors import AlignmentError, DataQualityWarning, MissingInputError

# NYSE (1), AMEX (2), NASDAQ (3)
MAJOR_EXCHANGES = (1, 2, 3)

FACTOR_COLUMNS = ['mkt_rf', 'smb', 'hml', 'rf']

# Ken French files mark missing observations with these codes
MISSING_CODES = [-99.99, -999, -9999]

RAW_FILES = {
    'fundamentals': 'compustat_fundamentals',
    'monthly': 'crsp_monthly',
    'links': 'ccm_links',
}

DATE_COLUMNS = {
    'fundamentals': ['datadate'],
    'monthly': ['date'],
    'links': ['linkdt', 'linkenddt'],
}

# =============================================================================
# WRDS queries
# =============================================================================

COMPUSTAT_QUERY = """
    SELECT gvkey, datadate, fyear, xrd, sale, ceq
    FROM comp.funda
    WHERE fyear BETWEEN {start_year} AND {end_year}
        AND indfmt = 'INDL'               -- industrial format (standard)
        AND datafmt = 'STD'               -- standardized data
        AND popsrc = 'D'                  -- domestic population
        AND consol = 'C'                  -- consolidated statements
        AND curcd = 'USD'
"""

CRSP_MONTHLY_QUERY = """
    SELECT a.permno, a.date, a.ret, a.prc, a.shrout, b.exchcd
    FROM crsp.msf AS a
    LEFT JOIN crsp.msenames AS b
        ON a.permno = b.permno
        AND b.namedt <= a.date
        AND a.date <= b.nameendt
    WHERE a.date BETWEEN '{start_year}-01-01' AND '{end_year}-12-31'
"""

DELIST_QUERY = """
    SELECT permno, dlstdt, dlret, dlstcd
    FROM crsp.msedelist
    WHERE dlstdt BETWEEN '{start_year}-01-01' AND '{end_year}-12-31'
"""

CCM_QUERY = """
    SELECT gvkey, lpermno, linkdt, linkenddt, linktype, linkprim
    FROM crsp.ccmxpf_lnkhist
    WHERE linktype IN ('LC', 'LU')      -- confirmed or usable links
        AND linkprim IN ('P', 'C')      -- primary security only
"""


@dataclass(frozen=True)
class RawData:
    """Cleaned upstream tables, ready for panel assembly."""
    fundamentals: pd.DataFrame
    monthly: pd.DataFrame
    links: pd.DataFrame


def collapse_duplicates(df, keys, order, ascending, label):
    """Keep the first row per key under the given sort; warn if anything was dropped."""
    dup = df.duplicated(keys, keep=False)
    if not dup.any():
        return df
    examples = df.loc[dup, keys].drop_duplicates().head(10)
    warnings.warn(
        f"{int(dup.sum())} {label} rows share {keys} across {len(df.loc[dup, keys].drop_duplicates())} keys; "
        f"kept first by {order}. Examples: {examples.to_dict('records')}",
        DataQualityWarning,
        stacklevel=3,
    )
    df = df.sort_values(keys + order, ascending=[True] * len(keys) + ascending, kind='mergesort')
    return df.drop_duplicates(keys, keep='first')


# =============================================================================
# Cleaning
# =============================================================================

def clean_compustat(funda: pd.DataFrame) -> pd.DataFrame:
    """Parse dates and coerce accounting items to numeric."""
    out = funda.copy()
    out['datadate'] = pd.to_datetime(out['datadate'])
    for col in ['xrd', 'sale', 'ceq']:
        if col not in out.columns:
            out[col] = np.nan
        out[col] = pd.to_numeric(out[col], errors='coerce')
    out = out.dropna(subset=['gvkey', 'datadate'])
    return out.reset_index(drop=True)


def clean_crsp_monthly(msf: pd.DataFrame, delist: pd.DataFrame = None) -> pd.DataFrame:
    """
    Incorporate delisting returns, restrict to the major exchanges and
    compute market cap.

    Delisting returns are matched on (permno, calendar month) and compounded:
    ret_adj = (1 + ret) * (1 + dlret) - 1. In a delisting month with no
    regular return the delisting return stands alone.

    A security-month repeated by overlapping msenames spells keeps the row
    with the lowest exchcd; several delisting events in one month keep the
    latest dlstdt. Both collapses warn.
    """
    crsp = msf.copy()
    crsp['date'] = pd.to_datetime(crsp['date'])
    for col in ['ret', 'prc', 'shrout', 'exchcd']:
        crsp[col] = pd.to_numeric(crsp[col], errors='coerce')
    crsp = collapse_duplicates(crsp, ['permno', 'date'], ['exchcd'], [True], 'security-month')
    crsp['month'] = crsp['date'].dt.to_period('M')

    if delist is not None and len(delist):
        dl = delist.copy()
        dl['dlstdt'] = pd.to_datetime(dl['dlstdt'])
        dl['dlret'] = pd.to_numeric(dl['dlret'], errors='coerce')
        dl['month'] = dl['dlstdt'].dt.to_period('M')
        dl = collapse_duplicates(dl, ['permno', 'month'], ['dlstdt'], [False], 'delisting')
        keep = ['permno', 'month', 'dlret'] + (['dlstcd'] if 'dlstcd' in dl.columns else [])
        crsp = crsp.drop(columns=[c for c in ['dlret', 'dlstcd'] if c in crsp.columns])
        crsp = crsp.merge(dl[keep], on=['permno', 'month'], how='left')
    elif 'dlret' not in crsp.columns:
        crsp['dlret'] = np.nan
    crsp['dlret'] = pd.to_numeric(crsp['dlret'], errors='coerce')

    crsp['ret_adj'] = np.where(
        crsp['dlret'].notna(),
        (1 + crsp['ret'].fillna(0.0)) * (1 + crsp['dlret']) - 1,
        crsp['ret']
    )

    # Remove NA returns and returns < -100%
    crsp = crsp[crsp['ret_adj'].notna() & (crsp['ret_adj'] >= -1.0)]
    crsp = crsp[crsp['exchcd'].isin(MAJOR_EXCHANGES)].copy()

    # prc is negative when it is a bid/ask midpoint; shrout is in thousands,
    # so mktcap is in $ millions like Compustat items
    crsp['mktcap'] = crsp['prc'].abs() * crsp['shrout'] / 1000.0

    crsp = crsp.drop(columns=['month'])
    return crsp.sort_values(['permno', 'date']).reset_index(drop=True)


def clean_link_table(ccm: pd.DataFrame, today: pd.Timestamp = None) -> pd.DataFrame:
    """Parse link dates; an open-ended link is valid until today."""
    links = ccm.rename(columns={'lpermno': 'permno'}).copy()
    if today is None:
        today = pd.Timestamp.today().normalize()
    links['linkdt'] = pd.to_datetime(links['linkdt'])
    links['linkenddt'] = pd.to_datetime(links['linkenddt']).fillna(today)
    links = links.dropna(subset=['gvkey', 'permno', 'linkdt'])
    links['permno'] = links['permno'].astype('int64')
    return links.reset_index(drop=True)


# =============================================================================
# WRDS pull
# =============================================================================

def pull_wrds_data(conn, start_year: int, end_year: int) -> RawData:
    """
    Pull and clean the three upstream tables.

    conn is an open wrds.Connection; the caller owns it. CRSP months run one
    year past end_year so the last formation year has its holding window.
    """
    print("\nPulling Compustat annual fundamentals...")
    funda = conn.raw_sql(COMPUSTAT_QUERY.format(start_year=start_year, end_year=end_year))
    fundamentals = clean_compustat(funda)
    print(f"✓ Retrieved {len(fundamentals):,} firm-year observations")
    print(f"  - Unique firms (gvkey): {fundamentals['gvkey'].nunique():,}")
    rd_reported = fundamentals['xrd'].notna() & (fundamentals['xrd'] > 0)
    print(f"  - Observations with positive R&D: {rd_reported.sum():,} ({100*rd_reported.mean():.1f}%)")

    print("\nPulling CCM link table...")
    links = clean_link_table(conn.raw_sql(CCM_QUERY))
    print(f"✓ Retrieved {len(links):,} GVKEY-PERMNO links")

    crsp_end = end_year + 1
    print("\nPulling CRSP monthly stock file...")
    msf = conn.raw_sql(CRSP_MONTHLY_QUERY.format(start_year=start_year, end_year=crsp_end))
    print(f"✓ Retrieved {len(msf):,} stock-month observations")

    print("\nPulling delisting returns...")
    delist = conn.raw_sql(DELIST_QUERY.format(start_year=start_year, end_year=crsp_end))
    print(f"✓ Retrieved {len(delist):,} delisting events")

    monthly = clean_crsp_monthly(msf, delist)
    print(f"✓ Cleaned CRSP: {len(monthly):,} rows on NYSE/AMEX/NASDAQ")
    print(f"  - Delisting adjustments applied: {monthly['dlret'].notna().sum():,}")

    return RawData(fundamentals=fundamentals, monthly=monthly, links=links)


# =============================================================================
# Factor file
# =============================================================================

def load_factor_file(path) -> pd.DataFrame:
    """
    Load a Ken French monthly 3-factor CSV (percent units) into decimals.

    Only YYYYMM rows are kept, which drops the header text, the annual
    block and the copyright footer. Indexed by monthly Period.
    """
    path = Path(path)
    if not path.exists():
        raise MissingInputError(f"Missing factor file: {path}")

    raw = pd.read_csv(path, header=None, names=['date'] + FACTOR_COLUMNS,
                      dtype=str, skip_blank_lines=True)
    c0 = raw['date'].astype(str).str.strip()
    df = raw.loc[c0.str.fullmatch(r"\d{6}")].copy()
    if df.empty:
        raise MissingInputError(f"No monthly rows found in factor file: {path}")

    df['period'] = pd.to_datetime(df['date'].str.strip(), format='%Y%m').dt.to_period('M')
    for col in FACTOR_COLUMNS:
        s = pd.to_numeric(df[col].str.strip(), errors='coerce')
        df[col] = s.replace(MISSING_CODES, np.nan) / 100.0

    dupes = df['period'][df['period'].duplicated()]
    if len(dupes):
        raise AlignmentError(f"Duplicate months in factor file: {sorted(dupes.astype(str).unique())}")

    return df.set_index('period')[FACTOR_COLUMNS].sort_index()


# =============================================================================
# Snapshots
# =============================================================================

def save_raw_data(raw: RawData, data_dir, output_format: str = 'parquet') -> list:
    """Write the bundle to data_dir; returns the written paths."""
    data_dir = Path(data_dir)
    data_dir.mkdir(parents=True, exist_ok=True)
    written = []
    for attr, stem in RAW_FILES.items():
        df = getattr(raw, attr)
        if output_format in ('parquet', 'both'):
            df.to_parquet(data_dir / f'{stem}.parquet', index=False)
            written.append(data_dir / f'{stem}.parquet')
        if output_format in ('csv', 'both'):
            df.to_csv(data_dir / f'{stem}.csv', index=False)
            written.append(data_dir / f'{stem}.csv')
    return written


def load_raw_data(data_dir) -> RawData:
    """
    Load a saved snapshot, preferring parquet over CSV.

    Any table that is absent or empty aborts the run.
    """
    data_dir = Path(data_dir)
    frames = {}
    for attr, stem in RAW_FILES.items():
        parquet_path = data_dir / f'{stem}.parquet'
        csv_path = data_dir / f'{stem}.csv'
        if parquet_path.exists():
            df = pd.read_parquet(parquet_path)
        elif csv_path.exists():
            df = pd.read_csv(csv_path, parse_dates=DATE_COLUMNS[attr])
        else:
            raise MissingInputError(f"Missing input table '{stem}' in {data_dir}")
        if df.empty:
            raise MissingInputError(f"Input table '{stem}' is empty")
        frames[attr] = df
    return RawData(**frames)
