"""
LD (Pearson correlation) matrix among the variants of a set.

The genotype columns are expected to be mean-centred already (see
GenotypeMatrix.get_centered_columns); the builder only forms the
cross-product matrix and scales it by the column sums of squares.
"""

from typing import Optional, Sequence, Union

import numba
import numpy as np

from ..utils.data_types import CohortContext, GenotypeMatrix


@numba.jit(nopython=True, parallel=True, cache=True)
def _normalise_crossproducts_jit(C, sumsq):
    """Scale C[i, j] by sqrt(sumsq[i] * sumsq[j]); zero denominators give 0."""
    m = C.shape[0]
    out = np.empty_like(C)
    for i in numba.prange(m):  # each worker owns row i
        for j in range(m):
            denom = np.sqrt(sumsq[i] * sumsq[j])
            if denom > 0.0:
                out[i, j] = C[i, j] / denom
            else:
                out[i, j] = 0.0
    return out


def correlation_from_genotype(X: np.ndarray) -> np.ndarray:
    """Correlation matrix of the columns of a centred genotype subset.

    Args:
        X: Genotype subset (n_individuals × m), columns already centred

    Returns:
        m × m symmetric matrix with C[i, j] = X_i·X_j / sqrt(|X_i|² |X_j|²).
        Columns with zero sum of squares (constant genotype) get zero rows
        and columns, including a zero on the diagonal.
    """
    X = np.asarray(X, dtype=np.float64)
    if X.ndim != 2:
        raise ValueError("Genotype subset must be 2-dimensional")

    m = X.shape[1]
    if m == 0:
        return np.zeros((0, 0), dtype=np.float64)

    sumsq = np.einsum("ij,ij->j", X, X)
    C = X.T @ X
    C = _normalise_crossproducts_jit(np.ascontiguousarray(C), np.ascontiguousarray(sumsq))
    # Average with the transpose so floating error cannot break symmetry
    return (C + C.T) / 2.0


def MBAT_LD(geno: Union[CohortContext, GenotypeMatrix, np.ndarray],
            snp_indices: Optional[Sequence[int]] = None) -> np.ndarray:
    """Build the LD correlation matrix for a variant set.

    Args:
        geno: CohortContext (indices refer to summary variants), GenotypeMatrix
            (indices refer to genotype columns) or a plain array that is
            already the centred genotype subset
        snp_indices: Variant indices of the set; required unless geno is an
            array subset

    Returns:
        Correlation matrix (len(snp_indices) × len(snp_indices))
    """
    if isinstance(geno, CohortContext):
        if snp_indices is None:
            raise ValueError("snp_indices are required with a CohortContext")
        X = geno.genotype_columns(snp_indices)
    elif isinstance(geno, GenotypeMatrix):
        if snp_indices is None:
            raise ValueError("snp_indices are required with a GenotypeMatrix")
        X = geno.get_centered_columns(snp_indices)
    else:
        X = np.asarray(geno, dtype=np.float64)
        if snp_indices is not None:
            X = X[:, np.asarray(snp_indices, dtype=int)]
    return correlation_from_genotype(X)
