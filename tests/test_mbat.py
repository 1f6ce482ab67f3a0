import numpy as np
import pytest
from scipy import stats

from pymbat.association.mbat import (
    MBAT_Test,
    SingularCovarianceError,
    joint_chisq,
    single_variant_test,
    skipped_result,
)
from pymbat.utils.data_types import GenotypeMatrix
from pymbat.utils.stats import SKIP_PVALUE


def _duplicate_genotypes() -> GenotypeMatrix:
    a = [0, 1, 2, 0, 1, 2, 0, 1]
    c = [0, 0, 1, 1, 2, 2, 1, 0]
    return GenotypeMatrix(np.array([a, a, c], dtype=np.int8).T)


def test_identity_scenario_three_variants() -> None:
    vscore, pvalue = joint_chisq(np.eye(3), beta=[2.0, 0.0, 0.0], se=[1.0, 1.0, 1.0])

    assert vscore == pytest.approx(4.0)
    assert pvalue == pytest.approx(stats.chi2.sf(4.0, 3))
    assert pvalue == pytest.approx(0.2615, abs=1e-4)


def test_identity_reduces_to_sum_of_single_chisq() -> None:
    beta = np.array([1.0, 2.0, -1.0])
    se = np.array([0.5, 1.0, 2.0])

    vscore, pvalue = joint_chisq(np.eye(3), beta, se)

    assert vscore == pytest.approx(np.sum((beta / se) ** 2))
    assert vscore == pytest.approx(8.25)
    assert pvalue == pytest.approx(stats.chi2.sf(8.25, 3))


def test_correlated_pair_uses_inverse_covariance() -> None:
    D = np.array([[1.0, 0.5], [0.5, 1.0]])

    vscore, pvalue = joint_chisq(D, beta=[1.0, 1.0], se=[1.0, 1.0])

    # [1 1] V^-1 [1 1]^T with V^-1 = [[1, -.5], [-.5, 1]] / 0.75
    assert vscore == pytest.approx(1.0 / 0.75)
    assert pvalue == pytest.approx(stats.chi2.sf(1.0 / 0.75, 2))


def test_singular_covariance_raises() -> None:
    with pytest.raises(SingularCovarianceError):
        joint_chisq(np.ones((2, 2)), beta=[1.0, 1.0], se=[1.0, 1.0])
    with pytest.raises(SingularCovarianceError):
        joint_chisq(np.eye(2), beta=[1.0, 1.0], se=[1.0, 0.0])
    with pytest.raises(SingularCovarianceError):
        joint_chisq(np.zeros((0, 0)), beta=[], se=[])


def test_singular_error_is_a_linalg_error() -> None:
    assert issubclass(SingularCovarianceError, np.linalg.LinAlgError)


def test_mismatched_dimensions_raise_value_error() -> None:
    with pytest.raises(ValueError):
        joint_chisq(np.eye(3), beta=[1.0, 1.0], se=[1.0, 1.0])


def test_single_variant_test_uses_one_degree_of_freedom() -> None:
    result = single_variant_test('GENE1', 'rs1', 0.01)

    assert result.n_tested == 1
    assert result.n_snps == 1
    assert result.chisq == pytest.approx(stats.chi2.isf(0.01, 1))
    assert result.pvalue == pytest.approx(0.01)
    assert result.snps_tested == ['rs1']
    assert not result.skipped


def test_single_variant_test_skips_missing_pvalue() -> None:
    result = single_variant_test('GENE1', 'rs1', float('nan'))

    assert result.skipped
    assert result.reason == 'invalid'
    assert result.pvalue == SKIP_PVALUE
    assert result.n_snps == 1
    assert result.n_tested == 0


def test_near_singular_covariance_is_rejected_by_condition_number() -> None:
    # invertible in floating point, but with condition number 1e18
    D = np.eye(2)

    with pytest.raises(SingularCovarianceError, match="condition number"):
        joint_chisq(D, beta=[1.0, 1.0], se=[1.0, 1e-9])

    with pytest.raises(SingularCovarianceError, match="condition number"):
        joint_chisq(np.diag([1.0, 1e-17]), beta=[1.0, 1.0], se=[1.0, 1.0])


def test_mbat_test_without_reduction_skips_near_duplicate_pair() -> None:
    geno = _duplicate_genotypes()

    with pytest.warns(RuntimeWarning, match="not invertible"):
        result = MBAT_Test(geno, [0, 1], beta=[0.2, 0.2], se=[0.05, 0.05],
                           set_name='DUP', threshold=np.inf)

    assert result.skipped
    assert result.reason == 'singular'
    assert result.n_snps == 2


def test_skipped_result_carries_sentinel() -> None:
    result = skipped_result('SET1', 'empty')

    assert result.skipped
    assert result.pvalue == SKIP_PVALUE
    assert result.n_snps == 0
    assert result.n_tested == 0


def test_mbat_test_removes_duplicate_before_joint_test() -> None:
    geno = _duplicate_genotypes()
    beta = np.array([0.2, 0.2, -0.1])
    se = np.array([0.05, 0.05, 0.04])

    result = MBAT_Test(geno, [0, 1, 2], beta, se, names=['a', 'b', 'c'], set_name='SET1')

    assert not result.skipped
    assert result.n_snps == 3
    assert result.n_tested == 2
    assert 'c' in result.snps_tested
    assert len(set(result.snps_tested) & {'a', 'b'}) == 1

    kept = [['a', 'b', 'c'].index(name) for name in result.snps_tested]
    data = geno[:, kept].astype(float)
    D = np.corrcoef(data, rowvar=False)
    expected_chisq, expected_p = joint_chisq(D, beta[kept], se[kept])
    assert result.chisq == pytest.approx(expected_chisq, rel=1e-8)
    assert result.pvalue == pytest.approx(expected_p, rel=1e-8)


def test_mbat_test_on_independent_block_matches_direct_statistic() -> None:
    rng = np.random.default_rng(2024)
    data = rng.integers(0, 3, size=(300, 4)).astype(np.int8)
    geno = GenotypeMatrix(data)
    beta = np.array([0.05, -0.02, 0.01, 0.03])
    se = np.full(4, 0.02)

    result = MBAT_Test(geno, [0, 1, 2, 3], beta, se, set_name='BLOCK')

    D = np.corrcoef(data.astype(float), rowvar=False)
    expected_chisq, expected_p = joint_chisq(D, beta, se)
    assert result.n_tested == 4
    assert result.chisq == pytest.approx(expected_chisq, rel=1e-8)
    assert result.pvalue == pytest.approx(expected_p, rel=1e-8)


def test_mbat_test_skips_when_covariance_is_singular() -> None:
    geno = GenotypeMatrix(np.array([[0, 1], [1, 0], [2, 1], [1, 2]], dtype=np.int8))

    with pytest.warns(RuntimeWarning):
        result = MBAT_Test(geno, [0, 1], beta=[0.1, 0.2], se=[0.0, 0.0], set_name='ZERO_SE')

    assert result.skipped
    assert result.reason == 'singular'
    assert result.pvalue == SKIP_PVALUE
    assert result.n_tested == 0


def test_mbat_test_empty_set_is_skipped() -> None:
    result = MBAT_Test(_duplicate_genotypes(), [], beta=[], se=[], set_name='NONE')

    assert result.skipped
    assert result.reason == 'empty'
