"""
Risk evaluation of the long-short spread.

Factor regressions (CAPM, Fama-French three-factor) on excess returns and
historical, non-parametric Value-at-Risk / Expected Shortfall.
"""

import math
from dataclasses import dataclass

import numpy as np
import pandas as pd
import statsmodels.api as sm

from .config import CONFIDENCE_LEVELS
from .errors import AlignmentError

FACTOR_MODELS = {
    'capm': ['mkt_rf'],
    'ff3': ['mkt_rf', 'smb', 'hml'],
}

COMPARISON_FACTORS = ['mkt_rf', 'smb', 'hml']


# =============================================================================
# Alignment
# =============================================================================

def _as_monthly_periods(index: pd.Index) -> pd.PeriodIndex:
    if isinstance(index, pd.PeriodIndex):
        return index.asfreq('M')
    return pd.DatetimeIndex(index).to_period('M')


def align_with_factors(series: pd.Series, factors: pd.DataFrame, strict: bool = True) -> pd.DataFrame:
    """
    Join a monthly return series to the factor table on the calendar month.

    Duplicated months in either input raise AlignmentError. Months where the
    series is undefined (NaN) are left out. With strict, a defined month
    that the factor table does not cover raises AlignmentError; otherwise
    only the overlap is kept.
    """
    s = series.copy()
    s.index = _as_monthly_periods(s.index)
    f = factors.copy()
    f.index = _as_monthly_periods(f.index)

    for name, idx in (('return series', s.index), ('factor table', f.index)):
        dupes = idx[idx.duplicated()]
        if len(dupes):
            raise AlignmentError(f"Duplicate months in {name}: {sorted(dupes.astype(str).unique())}")

    s = s.dropna()
    missing = s.index.difference(f.index)
    if strict and len(missing):
        raise AlignmentError(
            f"{len(missing)} months of the return series are missing from the factor table "
            f"(first: {missing.min()}, last: {missing.max()})"
        )

    aligned = s.rename('ret').to_frame().join(f, how='inner')
    aligned.index.name = 'period'
    return aligned


# =============================================================================
# Regressions
# =============================================================================

def significance_stars(p_value: float) -> str:
    if p_value < 0.01:
        return "***"
    elif p_value < 0.05:
        return "**"
    elif p_value < 0.10:
        return "*"
    return ""


@dataclass(frozen=True)
class FactorRegression:
    model: str
    params: pd.Series
    bse: pd.Series
    tvalues: pd.Series
    pvalues: pd.Series
    r_squared: float
    n_obs: int

    @property
    def alpha_monthly(self) -> float:
        return float(self.params['const'])

    @property
    def alpha_annual(self) -> float:
        return self.alpha_monthly * 12

    def to_frame(self) -> pd.DataFrame:
        rows = []
        for term in self.params.index:
            p = float(self.pvalues[term])
            rows.append({
                'model': self.model,
                'term': 'alpha' if term == 'const' else term,
                'coef': float(self.params[term]),
                'std_err': float(self.bse[term]),
                't_stat': float(self.tvalues[term]),
                'p_value': p,
                'significance': significance_stars(p),
                'r_squared': self.r_squared,
                'n_obs': self.n_obs,
            })
        return pd.DataFrame(rows)


def run_factor_regression(aligned: pd.DataFrame, model: str = 'capm', ret_col: str = 'ret') -> FactorRegression:
    """
    OLS of (ret - rf) on the model's factors with an intercept.

    Model: (R_p - R_f) = alpha + beta' F + epsilon
    """
    if model not in FACTOR_MODELS:
        raise ValueError(f"Unknown model {model!r}; expected one of {sorted(FACTOR_MODELS)}")
    cols = FACTOR_MODELS[model]
    data = aligned.dropna(subset=[ret_col, 'rf'] + cols)
    if len(data) < len(cols) + 2:
        raise ValueError(f"{model}: need at least {len(cols) + 2} aligned months, got {len(data)}")

    y = (data[ret_col] - data['rf']).astype(float)
    X = sm.add_constant(data[cols].astype(float), has_constant='add')
    results = sm.OLS(y, X).fit()

    return FactorRegression(
        model=model,
        params=results.params,
        bse=results.bse,
        tvalues=results.tvalues,
        pvalues=results.pvalues,
        r_squared=float(results.rsquared),
        n_obs=int(results.nobs),
    )


def regression_table(regressions) -> pd.DataFrame:
    """Stack FactorRegression results into one tidy table."""
    return pd.concat([r.to_frame() for r in regressions], ignore_index=True)


# =============================================================================
# Tail risk
# =============================================================================

def min_tail_obs(level: float) -> int:
    """Smallest sample with at least one observation in the (1 - level) tail."""
    return int(math.ceil(round(1.0 / (1.0 - level), 9)))


def _clean(returns) -> np.ndarray:
    r = pd.to_numeric(pd.Series(returns), errors='coerce').dropna()
    return r.to_numpy(dtype=float)


def historical_var(returns, level: float = 0.95) -> float:
    """
    Historical VaR as a return: the (1 - level) empirical quantile, linear
    between order statistics. Losses are negative numbers.

    NaN when the sample has fewer than min_tail_obs(level) observations.
    """
    r = _clean(returns)
    if len(r) < min_tail_obs(level):
        return np.nan
    return float(np.percentile(r, 100 * (1 - level)))


def expected_shortfall(returns, level: float = 0.95) -> float:
    """Mean of the returns at or below historical_var; NaN when VaR is."""
    r = _clean(returns)
    var = historical_var(r, level)
    if np.isnan(var):
        return np.nan
    return float(r[r <= var].mean())


@dataclass(frozen=True)
class TailRisk:
    level: float
    var: float
    es: float
    n_obs: int
    sufficient: bool


def tail_risk(returns, level: float = 0.95) -> TailRisk:
    """VaR and ES at one level, with an explicit insufficient-data flag."""
    r = _clean(returns)
    sufficient = len(r) >= min_tail_obs(level)
    return TailRisk(
        level=level,
        var=historical_var(r, level),
        es=expected_shortfall(r, level),
        n_obs=len(r),
        sufficient=sufficient,
    )


def tail_risk_table(series_by_name: dict, levels=CONFIDENCE_LEVELS) -> pd.DataFrame:
    rows = []
    for name, returns in series_by_name.items():
        for level in levels:
            tr = tail_risk(returns, level)
            rows.append({
                'series': name,
                'level': level,
                'var': tr.var,
                'es': tr.es,
                'n_obs': tr.n_obs,
                'sufficient': tr.sufficient,
            })
    return pd.DataFrame(rows)


# =============================================================================
# Combined
# =============================================================================

@dataclass(frozen=True)
class RiskReport:
    aligned: pd.DataFrame
    regressions: tuple
    regression_table: pd.DataFrame
    tail_risk: pd.DataFrame


def evaluate_long_short(long_short: pd.Series, factors: pd.DataFrame,
                        levels=CONFIDENCE_LEVELS, strict: bool = True) -> RiskReport:
    """
    Align the spread to the factors, run both factor models and compute tail
    risk for the spread and, over the same months, the comparison factors.
    """
    aligned = align_with_factors(long_short, factors, strict=strict)
    regressions = tuple(run_factor_regression(aligned, model) for model in FACTOR_MODELS)
    series = {'long_short': aligned['ret']}
    for col in COMPARISON_FACTORS:
        series[col] = aligned[col]
    return RiskReport(
        aligned=aligned,
        regressions=regressions,
        regression_table=regression_table(regressions),
        tail_risk=tail_risk_table(series, levels),
    )
