"""
RDM Portfolio Analysis
Complete Pipeline: Panel Assembly + Portfolio Construction + Risk Evaluation

1. Loads the Compustat / CRSP / CCM snapshot (or pulls it from WRDS)
2. Builds the firm-year RDM panel at the April formation date
3. Applies the complete-panel filter
4. Sorts firms into RDM quintiles every year and computes bucket returns
5. Computes the Q5 - Q1 long-short spread (monthly and annual)
6. Estimates CAPM and Fama-French 3-factor alphas, historical VaR and ES
"""

import argparse
from dataclasses import dataclass
from pathlib import Path

import pandas as pd

from .config import StudyConfig
from .data_pull import RawData, load_factor_file, load_raw_data, pull_wrds_data, save_raw_data
from .errors import StudyError
from .panel import build_panel
from .portfolio_construction import (
    annual_long_short,
    assign_portfolios,
    bucket_breakpoints,
    bucket_monthly_returns,
    bucket_return_table,
    long_short_series,
    summarize_returns,
)
from .risk_analysis import RiskReport, evaluate_long_short
from .sample_filter import filter_complete_panel


@dataclass(frozen=True)
class StudyResults:
    panel: pd.DataFrame
    sample: pd.DataFrame
    assignments: pd.DataFrame
    breakpoints: pd.DataFrame
    bucket_returns: pd.DataFrame
    long_short: pd.DataFrame
    annual_long_short: pd.DataFrame
    summary: pd.DataFrame
    risk: RiskReport


def _banner(title: str):
    print("\n" + "=" * 80)
    print(title)
    print("=" * 80)


def run_study(raw: RawData, factors: pd.DataFrame, cfg: StudyConfig = StudyConfig()) -> StudyResults:
    """Run panel assembly through risk evaluation on an in-memory snapshot."""

    # =========================================================================
    # PART 1: PANEL ASSEMBLY
    # =========================================================================

    _banner("PART 1: PANEL ASSEMBLY")

    print("\nStep 1: Building firm-year panel...")
    panel = build_panel(
        raw.fundamentals, raw.monthly, raw.links,
        formation_month=cfg.formation_month,
        lag_months=cfg.reporting_lag_months,
        require_realized_return=cfg.require_realized_return,
    )
    print(f"✓ Panel: {len(panel):,} firm-years, {panel['gvkey'].nunique():,} firms")
    if len(panel):
        print(f"  - Formation years: {panel['formation_year'].min()} to {panel['formation_year'].max()}")
    print(f"  - Firm-years with defined {cfg.signal.upper()}: {panel[cfg.signal].notna().sum():,}")

    print("\nStep 2: Applying complete-panel filter...")
    sample = filter_complete_panel(
        panel, base_year=cfg.base_year, min_obs=cfg.min_obs,
        policy=cfg.obs_policy, signal=cfg.signal,
    )
    print(f"✓ Sample: {sample['gvkey'].nunique():,} firms with {cfg.signal.upper()} in {cfg.base_year} "
          f"and >= {cfg.min_obs} {cfg.obs_policy} years")
    print(f"  - Firm-years kept: {len(sample):,} ({len(panel) - len(sample):,} removed)")
    if sample.empty:
        raise StudyError(
            f"No firm has {cfg.signal.upper()} in base_year={cfg.base_year} and >= {cfg.min_obs} "
            f"{cfg.obs_policy} years; lower min_obs or pick a base_year inside the data")

    # =========================================================================
    # PART 2: PORTFOLIO CONSTRUCTION
    # =========================================================================

    _banner("PART 2: PORTFOLIO CONSTRUCTION")

    print(f"\nStep 3: Sorting firms into {cfg.n_buckets} {cfg.signal.upper()} portfolios each year...")
    assignments = assign_portfolios(sample, n_buckets=cfg.n_buckets, signal=cfg.signal)
    breakpoints = bucket_breakpoints(assignments)
    print(f"✓ Assigned {len(assignments):,} firm-years across {assignments['formation_year'].nunique():,} years")

    print(f"\nStep 4: Calculating {cfg.weighting}-weighted bucket returns...")
    bucket_returns = bucket_monthly_returns(
        assignments, raw.monthly, formation_month=cfg.formation_month, weighting=cfg.weighting)
    long_short = long_short_series(bucket_returns, n_buckets=cfg.n_buckets)
    annual = annual_long_short(assignments, n_buckets=cfg.n_buckets)
    print(f"✓ Bucket returns for {bucket_returns['period'].nunique():,} months")
    undefined = int((~long_short['defined']).sum())
    if undefined:
        print(f"  ⚠ {undefined} months with an empty leg; long-short left undefined")

    wide = bucket_return_table(bucket_returns)
    wide.columns = [f'Q{b}' for b in wide.columns]
    wide[f'Q{cfg.n_buckets}-Q1'] = long_short['long_short']
    summary = summarize_returns(wide)

    print("\nAnnualized Returns (mean * 12):")
    for name, row in summary.iterrows():
        print(f"  {name}: {row['ann_mean']*100:.2f}%")

    # =========================================================================
    # PART 3: RISK EVALUATION
    # =========================================================================

    _banner("PART 3: RISK EVALUATION")

    print("\nStep 5: Aligning long-short returns with factors...")
    risk = evaluate_long_short(long_short['long_short'], factors, levels=cfg.confidence_levels)
    print(f"✓ Aligned {len(risk.aligned):,} months")

    print("\nModel: (R_p - R_f) = α + β'F + ε")
    for reg in risk.regressions:
        alpha_t = float(reg.tvalues['const'])
        alpha_p = float(reg.pvalues['const'])
        print(f"\n  {reg.model.upper()}")
        print(f"    Alpha (monthly):     {reg.alpha_monthly*100:>8.3f}%")
        print(f"    Alpha (annual):      {reg.alpha_annual*100:>8.3f}%")
        print(f"    Alpha t-stat:        {alpha_t:>8.3f}")
        print(f"    Alpha p-value:       {alpha_p:>8.4f}")
        print(f"    R-squared:           {reg.r_squared:>8.3f}")
        print(f"    Observations:        {reg.n_obs:>8d}")
    print("\nSignificance levels: *** p<0.01, ** p<0.05, * p<0.10")

    print("\nStep 6: Historical VaR / Expected Shortfall...")
    for _, row in risk.tail_risk.iterrows():
        if row['sufficient']:
            print(f"  {row['series']:<12} {row['level']:.0%}: VaR {row['var']*100:>7.2f}%  "
                  f"ES {row['es']*100:>7.2f}%")
        else:
            print(f"  {row['series']:<12} {row['level']:.0%}: insufficient data ({row['n_obs']} obs)")

    return StudyResults(
        panel=panel,
        sample=sample,
        assignments=assignments,
        breakpoints=breakpoints,
        bucket_returns=bucket_returns,
        long_short=long_short,
        annual_long_short=annual,
        summary=summary,
        risk=risk,
    )


def write_outputs(results: StudyResults, cfg: StudyConfig = StudyConfig()) -> list:
    """Save result tables (and figures if enabled) under cfg.output_dir."""
    out_dir = Path(cfg.output_dir)
    out_dir.mkdir(parents=True, exist_ok=True)

    tables = {
        'long_short_monthly.csv': results.long_short,
        'long_short_annual.csv': results.annual_long_short,
        'bucket_returns.csv': results.bucket_returns,
        'bucket_breakpoints.csv': results.breakpoints,
        'return_summary.csv': results.summary,
        'factor_regressions.csv': results.risk.regression_table,
        'tail_risk.csv': results.risk.tail_risk,
    }
    written = []
    for name, df in tables.items():
        index = name in ('long_short_monthly.csv', 'long_short_annual.csv', 'return_summary.csv')
        df.to_csv(out_dir / name, index=index)
        written.append(out_dir / name)
        print(f"✓ Saved: {out_dir / name}")

    if cfg.save_figures:
        from .plots import save_figures
        for path in save_figures(results.long_short['long_short'], out_dir, window=cfg.rolling_window):
            written.append(path)
            print(f"✓ Saved: {path}")
    return written


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="RDM quintile portfolio study")
    parser.add_argument('--pull', action='store_true', help="pull fresh data from WRDS before running")
    parser.add_argument('--data-dir')
    parser.add_argument('--output-dir')
    parser.add_argument('--factor-file')
    parser.add_argument('--base-year', type=int)
    parser.add_argument('--min-obs', type=int)
    parser.add_argument('--policy', dest='obs_policy', choices=['consecutive', 'total'])
    parser.add_argument('--signal', choices=['rdm', 'rds'])
    parser.add_argument('--weighting', choices=['equal', 'value'])
    parser.add_argument('--lag-months', dest='reporting_lag_months', type=int)
    parser.add_argument('--no-figures', action='store_true')
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)
    cfg = StudyConfig().with_overrides(
        data_dir=args.data_dir,
        output_dir=args.output_dir,
        factor_file=args.factor_file,
        base_year=args.base_year,
        min_obs=args.min_obs,
        obs_policy=args.obs_policy,
        signal=args.signal,
        weighting=args.weighting,
        reporting_lag_months=args.reporting_lag_months,
        save_figures=False if args.no_figures else None,
    )

    _banner("RDM PORTFOLIO ANALYSIS")
    print(f"Sample: fiscal years {cfg.start_year}-{cfg.end_year}, base year {cfg.base_year}")
    print(f"Signal: {cfg.signal.upper()}, {cfg.n_buckets} buckets, formation month {cfg.formation_month}")

    if args.pull:
        import wrds

        print("\nConnecting to WRDS...")
        conn = wrds.Connection()
        try:
            raw = pull_wrds_data(conn, cfg.start_year, cfg.end_year)
        finally:
            conn.close()
            print("✓ WRDS connection closed")
        for path in save_raw_data(raw, cfg.data_dir, cfg.output_format):
            print(f"✓ Saved: {path}")
    else:
        print(f"\nLoading snapshot from {cfg.data_dir}...")
        raw = load_raw_data(cfg.data_dir)
        print(f"✓ Compustat rows: {len(raw.fundamentals):,}")
        print(f"✓ CRSP rows: {len(raw.monthly):,}")
        print(f"✓ Link rows: {len(raw.links):,}")

    factors = load_factor_file(cfg.factor_file)
    print(f"✓ Factor months: {len(factors):,} ({factors.index.min()} to {factors.index.max()})")

    results = run_study(raw, factors, cfg)

    _banner("SAVING OUTPUTS")
    write_outputs(results, cfg)

    _banner("ANALYSIS COMPLETE!")
    return results


if __name__ == '__main__':
    main()
