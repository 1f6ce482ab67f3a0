"""
Collinearity reduction on LD correlation matrices.

vif_iteration finds the single worst variant by Variance Inflation Factor;
MBAT_VIF drives it until no variant exceeds the threshold, shrinking the
matrix and the beta/se/name arrays together one variant at a time.
prune_correlated is the plain pairwise-|r| pruner used for quick LD thinning.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Sequence

import numpy as np

VIF_THRESHOLD = 10.0
EIGEN_TOLERANCE = 1e-5     # eigenvalues below this are treated as zero
INVERSE_CONSISTENCY = 0.01  # max |R_inv[:, j]·R[j, :] - 1| for a usable multiple R²
VIF_SATURATION = 1e8        # VIF assigned to perfectly collinear variants


@dataclass
class VIFDiagnostics:
    vif: np.ndarray
    multi_rsq: np.ndarray
    max_rsq: np.ndarray
    max_pos: np.ndarray
    eff_m: int


@dataclass
class VIFReduction:
    matrix: np.ndarray
    beta: np.ndarray
    se: np.ndarray
    names: List[str]
    kept_indices: np.ndarray
    removed: List[str] = field(default_factory=list)
    n_iterations: int = 0

    @property
    def n_kept(self) -> int:
        return self.matrix.shape[0]


def _pseudo_inverse(R: np.ndarray):
    eigenvals, eigenvecs = np.linalg.eigh(R)
    keep = eigenvals >= EIGEN_TOLERANCE
    inv_vals = np.zeros_like(eigenvals)
    inv_vals[keep] = 1.0 / eigenvals[keep]
    R_inv = (eigenvecs * inv_vals) @ eigenvecs.T
    return R_inv, int(keep.sum())


def vif_diagnostics(R: np.ndarray) -> VIFDiagnostics:
    """Per-variant VIF of a correlation matrix.

    The multiple R² of each variant is read off the diagonal of a
    tolerance-truncated inverse of R. Where the truncated inverse does not
    reproduce R's row (the variant lies in a near-singular direction) the
    multiple R² is taken as 1. The largest pairwise r² of a variant overrides
    its multiple R² when it is larger.
    """
    R = np.asarray(R, dtype=np.float64)
    size = R.shape[0]

    R_inv, eff_m = _pseudo_inverse(R)

    q_diag = np.einsum("ij,ji->j", R_inv, R)
    multi_rsq = np.ones(size, dtype=np.float64)
    consistent = np.abs(q_diag - 1.0) < INVERSE_CONSISTENCY
    with np.errstate(divide='ignore', invalid='ignore'):
        multi_rsq[consistent] = 1.0 - 1.0 / np.diag(R_inv)[consistent]
    multi_rsq = np.minimum(multi_rsq, 1.0)

    rsq = R * R
    np.fill_diagonal(rsq, 0.0)
    max_pos = np.argmax(rsq, axis=0)
    max_rsq = rsq[max_pos, np.arange(size)]
    multi_rsq = np.maximum(multi_rsq, max_rsq)

    vif = np.full(size, VIF_SATURATION, dtype=np.float64)
    finite = np.abs(1.0 - multi_rsq) >= EIGEN_TOLERANCE
    vif[finite] = np.abs(1.0 / (1.0 - multi_rsq[finite]))

    return VIFDiagnostics(vif=vif, multi_rsq=multi_rsq, max_rsq=max_rsq,
                          max_pos=max_pos, eff_m=eff_m)


def vif_iteration(R: np.ndarray, threshold: float = VIF_THRESHOLD) -> int:
    """Position of the variant to remove next, or -1 when none exceeds threshold.

    Args:
        R: Correlation matrix of the current variants (not modified)
        threshold: VIF a variant must strictly exceed to be removed

    Returns:
        Index (row of R) of the variant with the largest VIF above threshold;
        the lowest index wins ties. -1 if no VIF exceeds threshold or R has
        fewer than two variants.
    """
    R = np.asarray(R, dtype=np.float64)
    if R.ndim != 2 or R.shape[0] != R.shape[1]:
        raise ValueError("Correlation matrix must be square")
    if R.shape[0] < 2:
        return -1

    vif = vif_diagnostics(R).vif
    pos = int(np.argmax(vif))
    if vif[pos] > threshold:
        return pos
    return -1


def MBAT_VIF(R: np.ndarray,
             beta: Sequence[float],
             se: Sequence[float],
             names: Optional[Sequence[str]] = None,
             threshold: float = VIF_THRESHOLD,
             verbose: bool = False) -> VIFReduction:
    """Iteratively strip collinear variants until every VIF is at most threshold.

    Each removal builds the next matrix and arrays fresh from the list of
    surviving positions, so the caller's inputs are left untouched and the
    dimension drops by exactly one per iteration.

    Args:
        R: Correlation matrix (m × m) of the set
        beta: Effect sizes aligned to R
        se: Standard errors aligned to R
        names: Variant names aligned to R (defaults to positions)
        threshold: VIF threshold
        verbose: Print each removal

    Returns:
        VIFReduction with the reduced matrix, the matching beta/se/names, the
        positions kept (relative to the input), the removed names in removal
        order and the number of iterations run.
    """
    D = np.array(R, dtype=np.float64, copy=True)
    snp_beta = np.array(beta, dtype=np.float64, copy=True)
    snp_se = np.array(se, dtype=np.float64, copy=True)
    m = D.shape[0] if D.ndim == 2 else -1
    if D.ndim != 2 or D.shape[1] != m:
        raise ValueError("Correlation matrix must be square")
    snp_names = [str(n) for n in names] if names is not None else [str(i) for i in range(m)]
    if not (len(snp_beta) == len(snp_se) == len(snp_names) == m):
        raise ValueError("beta, se and names must match the correlation matrix dimension")

    kept = np.arange(m)
    removed: List[str] = []
    n_iterations = 0

    while True:
        n_iterations += 1
        pos = vif_iteration(D, threshold=threshold)
        if pos < 0:
            break

        if verbose:
            print(f"   VIF: removing {snp_names[pos]} ({D.shape[0]} -> {D.shape[0] - 1} SNPs)")
        removed.append(snp_names[pos])

        survivors = np.array([i for i in range(D.shape[0]) if i != pos], dtype=int)
        D = D[np.ix_(survivors, survivors)]
        snp_beta = snp_beta[survivors]
        snp_se = snp_se[survivors]
        snp_names = [snp_names[i] for i in survivors]
        kept = kept[survivors]

    return VIFReduction(matrix=D, beta=snp_beta, se=snp_se, names=snp_names,
                        kept_indices=kept, removed=removed, n_iterations=n_iterations)


def prune_correlated(R: np.ndarray, cutoff: float) -> np.ndarray:
    """Indices to drop so that no remaining pair has |r| above cutoff.

    Every pair (i, j), i > j, with |R[i, j]| > cutoff contributes one removal.
    The member of a pair involved in more correlated pairs overall is the one
    removed; on a tie it is i.

    Returns:
        Sorted unique indices to remove
    """
    R = np.asarray(R, dtype=np.float64)
    lower = np.tril(np.abs(R) > cutoff, k=-1)
    rm_1, rm_2 = np.nonzero(lower)
    if rm_1.size == 0:
        return np.array([], dtype=int)

    counts = np.bincount(np.concatenate([rm_1, rm_2]), minlength=R.shape[0])
    swap = counts[rm_1] < counts[rm_2]
    removal = np.where(swap, rm_2, rm_1)
    return np.unique(removal)
