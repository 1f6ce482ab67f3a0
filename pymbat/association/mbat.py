"""
Multivariate set-based association test (MBAT) on summary statistics.

For a set of m variants with effects beta, standard errors se and LD
correlation matrix D (after VIF reduction), the implied covariance of the
joint effect vector is V = (se seᵀ) ∘ D and the test statistic is the
quadratic form βᵀ V⁻¹ β, referred to a chi-square with m degrees of freedom.
"""

import warnings
from typing import Optional, Sequence, Tuple, Union

import numpy as np

from ..matrix.correlation import MBAT_LD
from ..matrix.vif import MBAT_VIF, VIF_THRESHOLD
from ..utils.data_types import CohortContext, GenotypeMatrix, SetTestResult
from ..utils.stats import SKIP_PVALUE, chisq_from_pvalue, chisq_pvalue


class SingularCovarianceError(np.linalg.LinAlgError):
    """The joint covariance of a set cannot be inverted."""


def joint_chisq(D: np.ndarray, beta: Sequence[float], se: Sequence[float]) -> Tuple[float, float]:
    """Quadratic-form chi-square statistic and p-value for a reduced set.

    Args:
        D: Correlation matrix (n × n) of the retained variants
        beta: Effect sizes (length n)
        se: Standard errors (length n)

    Returns:
        (Vscore, Vscore_p) with Vscore = βᵀ V⁻¹ β and Vscore_p its chi-square
        survival probability on n degrees of freedom.

    Raises:
        SingularCovarianceError: V is empty, singular, or numerically
            indistinguishable from singular.
    """
    D = np.asarray(D, dtype=np.float64)
    beta = np.asarray(beta, dtype=np.float64)
    se = np.asarray(se, dtype=np.float64)
    n = beta.shape[0]

    if n == 0:
        raise SingularCovarianceError("No variants left to test")
    if se.shape[0] != n or D.shape != (n, n):
        raise ValueError("beta, se and the correlation matrix must have matching dimensions")

    V = np.outer(se, se) * D
    if not np.all(np.isfinite(V)):
        raise SingularCovarianceError("Covariance matrix has non-finite entries")

    cond = np.linalg.cond(V)
    if not np.isfinite(cond) or cond > 1.0 / np.finfo(np.float64).eps:
        raise SingularCovarianceError(f"Covariance matrix is singular (condition number {cond:.3g})")

    try:
        V_inv = np.linalg.inv(V)
    except np.linalg.LinAlgError as exc:
        raise SingularCovarianceError(str(exc)) from exc

    vscore = float(beta @ V_inv @ beta)
    if not np.isfinite(vscore) or vscore < 0.0:
        raise SingularCovarianceError(f"Invalid test statistic {vscore}")

    return vscore, chisq_pvalue(vscore, n)


def skipped_result(name: str, reason: str, n_snps: int = 0) -> SetTestResult:
    """Sentinel result for a set that is not tested"""
    return SetTestResult(name=name, n_snps=n_snps, n_tested=0, chisq=0.0,
                         pvalue=SKIP_PVALUE, skipped=True, reason=reason)


def single_variant_test(name: str, snp: str, pvalue: float,
                        n_snps: int = 1) -> SetTestResult:
    """1-df test of a set holding one variant, from that variant's own chi-square"""
    if not np.isfinite(pvalue):
        return skipped_result(name, "invalid", n_snps=n_snps)
    chisq = chisq_from_pvalue(pvalue, df=1.0)
    return SetTestResult(name=name, n_snps=n_snps, n_tested=1, chisq=chisq,
                         pvalue=chisq_pvalue(chisq, 1.0), snps_tested=[str(snp)])


def MBAT_Test(geno: Union[CohortContext, GenotypeMatrix, np.ndarray],
              snp_indices: Sequence[int],
              beta: Sequence[float],
              se: Sequence[float],
              names: Optional[Sequence[str]] = None,
              set_name: str = "",
              threshold: float = VIF_THRESHOLD,
              verbose: bool = False) -> SetTestResult:
    """Run LD construction, VIF reduction and the joint test for one set.

    Args:
        geno: Genotype source handed to MBAT_LD
        snp_indices: Variant indices of the set
        beta: Effect sizes aligned to snp_indices
        se: Standard errors aligned to snp_indices
        names: Variant names aligned to snp_indices
        set_name: Label of the set/gene (for messages and the result)
        threshold: VIF threshold for collinearity removal
        verbose: Print reduction details

    Returns:
        SetTestResult; a set whose covariance turns out singular, or that
        loses every variant, comes back skipped with the sentinel p-value.
    """
    snp_indices = np.asarray(snp_indices, dtype=int)
    n_snps = int(snp_indices.shape[0])
    if n_snps == 0:
        return skipped_result(set_name, "empty")
    if names is None:
        names = [str(i) for i in snp_indices]

    R = MBAT_LD(geno, snp_indices)
    reduction = MBAT_VIF(R, beta, se, names, threshold=threshold)

    if verbose:
        print(f"{set_name}: {reduction.n_kept} of {n_snps} SNPs retained after "
              f"{len(reduction.removed)} VIF removals")

    if reduction.n_kept < 1:
        return skipped_result(set_name, "collapsed", n_snps=n_snps)

    try:
        vscore, vscore_p = joint_chisq(reduction.matrix, reduction.beta, reduction.se)
    except SingularCovarianceError as exc:
        warnings.warn(
            f"MBAT: covariance of [{set_name}] is not invertible after VIF reduction "
            f"({reduction.n_kept} SNPs); set skipped: {exc}",
            RuntimeWarning,
        )
        return skipped_result(set_name, "singular", n_snps=n_snps)

    return SetTestResult(name=set_name, n_snps=n_snps, n_tested=reduction.n_kept,
                         chisq=vscore, pvalue=vscore_p,
                         snps_tested=list(reduction.names))
