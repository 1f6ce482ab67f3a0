"""
Statistical utilities for set-based association testing
"""

import numpy as np
from typing import Union
from scipy import stats

# p-value recorded for skipped sets; anything above REPORT_PVALUE_CEILING is
# left out of the reports
SKIP_PVALUE = 2.0
REPORT_PVALUE_CEILING = 1.5


def chisq_pvalue(statistic: Union[float, np.ndarray], df: float) -> Union[float, np.ndarray]:
    """Right-tail chi-square p-value

    Args:
        statistic: Observed chi-square statistic(s)
        df: Degrees of freedom

    Returns:
        P(X >= statistic) for X ~ chi-square(df)
    """
    pvalue = stats.chi2.sf(statistic, df)
    if np.ndim(pvalue) == 0:
        return float(pvalue)
    return pvalue


def chisq_from_pvalue(pvalues: Union[float, np.ndarray], df: float = 1.0) -> Union[float, np.ndarray]:
    """Chi-square statistic matching a p-value (inverse survival function)"""
    pvalues = np.clip(np.asarray(pvalues, dtype=np.float64), 0.0, 1.0)
    statistic = stats.chi2.isf(pvalues, df)
    if np.ndim(statistic) == 0:
        return float(statistic)
    return statistic


def is_reportable(pvalue: float) -> bool:
    """Whether a set p-value belongs in the output report"""
    return bool(np.isfinite(pvalue) and pvalue <= REPORT_PVALUE_CEILING)
