import numpy as np
import pytest
from scipy import stats

from pymbat.utils import stats as stats_utils


def test_chisq_pvalue_matches_survival_function() -> None:
    assert stats_utils.chisq_pvalue(4.0, 3) == pytest.approx(stats.chi2.sf(4.0, 3))
    assert stats_utils.chisq_pvalue(4.0, 3) == pytest.approx(0.2615, abs=1e-4)
    assert stats_utils.chisq_pvalue(0.0, 2) == pytest.approx(1.0)


def test_chisq_pvalue_vectorised() -> None:
    values = np.array([1.0, 3.84, 10.0])

    pvalues = stats_utils.chisq_pvalue(values, 1)

    np.testing.assert_allclose(pvalues, stats.chi2.sf(values, 1))


def test_chisq_from_pvalue_inverts_chisq_pvalue() -> None:
    chisq = stats_utils.chisq_from_pvalue(0.05, df=1)

    assert chisq == pytest.approx(3.841458820694124)
    assert stats_utils.chisq_pvalue(chisq, 1) == pytest.approx(0.05)


def test_chisq_from_pvalue_clips_out_of_range() -> None:
    assert stats_utils.chisq_from_pvalue(1.5) == pytest.approx(0.0)
    assert np.isinf(stats_utils.chisq_from_pvalue(0.0))


def test_is_reportable_filters_sentinel() -> None:
    assert stats_utils.is_reportable(0.3)
    assert stats_utils.is_reportable(1.0)
    assert not stats_utils.is_reportable(stats_utils.SKIP_PVALUE)
    assert not stats_utils.is_reportable(np.nan)
