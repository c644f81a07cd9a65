"""
R&D intensity portfolio study.

Pipeline:
- data pull (Compustat, CRSP, CCM link table)
- panel assembly (firm-year RDM at the April formation date)
- complete-panel sample filter
- quintile portfolio sorts
- bucket and long-short returns
- CAPM / Fama-French alphas, historical VaR and Expected Shortfall
"""

__version__ = "0.1.0"
