"""
Diagnostic figures for the long-short spread.
"""

from pathlib import Path

import matplotlib
matplotlib.use('Agg')
import matplotlib.pyplot as plt
import pandas as pd
import statsmodels.api as sm

from .config import ROLLING_WINDOW


def _as_timestamps(series):
    s = series.dropna()
    if isinstance(s.index, pd.PeriodIndex):
        s.index = s.index.to_timestamp()
    return s


def plot_time_series(series, path, title='RDM long-short return (Q5 - Q1)'):
    s = _as_timestamps(series)
    fig, ax = plt.subplots(figsize=(11, 5))
    ax.plot(s.index, s.values, color='steelblue', linewidth=1)
    ax.axhline(0, color='black', linestyle=':', linewidth=0.8)
    ax.set_title(title, fontsize=13, fontweight='bold')
    ax.set_ylabel('Monthly return')
    ax.grid(True, alpha=0.3)
    plt.tight_layout()
    plt.savefig(path, dpi=150, bbox_inches='tight')
    plt.close(fig)


def plot_histogram(series, path, bins=40):
    s = series.dropna()
    fig, ax = plt.subplots(figsize=(8, 5))
    ax.hist(s.values, bins=bins, color='steelblue', alpha=0.8, edgecolor='white')
    ax.axvline(s.mean(), color='red', linestyle='--', linewidth=1.5, label=f'Mean = {s.mean():.4f}')
    ax.set_title('Distribution of monthly long-short returns', fontsize=13, fontweight='bold')
    ax.set_xlabel('Monthly return')
    ax.legend(fontsize=10)
    ax.grid(True, alpha=0.3)
    plt.tight_layout()
    plt.savefig(path, dpi=150, bbox_inches='tight')
    plt.close(fig)


def plot_qq(series, path):
    s = series.dropna()
    fig, ax = plt.subplots(figsize=(7, 7))
    sm.qqplot(s.values, line='s', ax=ax)
    ax.set_title('Normal Q-Q plot of long-short returns', fontsize=13, fontweight='bold')
    ax.grid(True, alpha=0.3)
    plt.tight_layout()
    plt.savefig(path, dpi=150, bbox_inches='tight')
    plt.close(fig)


def rolling_variance(series, window=ROLLING_WINDOW):
    """Rolling variance on the full monthly range; a window touching an undefined month stays NaN."""
    s = series.copy()
    if not isinstance(s.index, pd.PeriodIndex):
        s.index = pd.DatetimeIndex(s.index).to_period('M')
    if len(s):
        s = s.reindex(pd.period_range(s.index.min(), s.index.max(), freq='M'))
    s.index = s.index.to_timestamp()
    return s.rolling(window=window, min_periods=window).var()


def plot_rolling_variance(series, path, window=ROLLING_WINDOW):
    rolling_var = rolling_variance(series, window)
    fig, ax = plt.subplots(figsize=(11, 5))
    ax.plot(rolling_var.index, rolling_var.values, color='darkorange', linewidth=1.2)
    ax.set_title(f'{window}-month rolling variance of long-short returns', fontsize=13, fontweight='bold')
    ax.set_ylabel('Variance')
    ax.grid(True, alpha=0.3)
    plt.tight_layout()
    plt.savefig(path, dpi=150, bbox_inches='tight')
    plt.close(fig)


def save_figures(series, output_dir, window=ROLLING_WINDOW):
    """Write all four diagnostics; returns the file paths."""
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    paths = {
        'long_short_series.png': lambda p: plot_time_series(series, p),
        'long_short_histogram.png': lambda p: plot_histogram(series, p),
        'long_short_qq.png': lambda p: plot_qq(series, p),
        'long_short_rolling_variance.png': lambda p: plot_rolling_variance(series, p, window),
    }
    written = []
    for name, draw in paths.items():
        draw(output_dir / name)
        written.append(output_dir / name)
    return written
