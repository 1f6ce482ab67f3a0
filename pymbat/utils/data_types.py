"""
Core data structures for pyMBAT package
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Union, Tuple, Dict, Any, List, Sequence

import numpy as np
import pandas as pd


class GenotypeMap:
    """Reference SNP map of the genotype panel

    Expected columns: [SNP, CHROM, POS] with optional [REF, ALT]
    """

    def __init__(self, data: Union[pd.DataFrame, str, Path]):
        if isinstance(data, (str, Path)):
            self.data = pd.read_csv(data)
        elif isinstance(data, pd.DataFrame):
            self.data = data.reset_index(drop=True).copy()
        else:
            raise ValueError("Data must be DataFrame or file path")

        required_cols = ['SNP', 'CHROM', 'POS']
        for col in required_cols:
            if col not in self.data.columns:
                raise ValueError(f"Missing required column: {col}")
        self.data['SNP'] = self.data['SNP'].astype(str)

    @property
    def snp_ids(self) -> pd.Series:
        """SNP identifiers"""
        return self.data['SNP']

    @property
    def has_alleles(self) -> bool:
        """Whether REF/ALT alleles are available for harmonisation"""
        return 'REF' in self.data.columns and 'ALT' in self.data.columns

    @property
    def n_markers(self) -> int:
        """Number of markers"""
        return len(self.data)

    def to_dataframe(self) -> pd.DataFrame:
        """Convert to pandas DataFrame"""
        return self.data.copy()


class GenotypeMatrix:
    """Genotype accessor (n_individuals × n_markers)

    Columns follow the order of the matching GenotypeMap. Missing calls are
    coded as -9 or NaN.
    """

    def __init__(self, data: Union[np.ndarray, str, Path],
                 shape: Optional[Tuple[int, int]] = None,
                 dtype: np.dtype = np.int8,
                 missing_value: float = -9):

        if isinstance(data, np.ndarray):
            self._data = data
        elif isinstance(data, (str, Path)):
            if shape is None:
                raise ValueError("Shape required for memory-mapped files")
            self._data = np.memmap(data, dtype=dtype, mode='r', shape=shape)
        else:
            raise ValueError("Data must be array or file path")

        if self._data.ndim != 2:
            raise ValueError("Genotype matrix must be 2-dimensional")
        self.missing_value = missing_value

    @property
    def shape(self) -> Tuple[int, int]:
        """Matrix shape (n_individuals, n_markers)"""
        return self._data.shape

    @property
    def n_individuals(self) -> int:
        return self.shape[0]

    @property
    def n_markers(self) -> int:
        return self.shape[1]

    def __getitem__(self, key):
        return self._data[key]

    def get_centered_columns(self, indices: Union[np.ndarray, Sequence[int]]) -> np.ndarray:
        """Get marker columns centred on their mean, with missing calls set to 0.

        Setting a missing call to zero after centring is mean imputation, so
        cross-products of the returned columns are proportional to Pearson
        covariances. A column with no valid calls comes back all zero.
        Returns a fresh float64 array of shape (n_individuals, len(indices)).
        """
        indices = np.asarray(indices, dtype=int)
        batch = self._data[:, indices].astype(np.float64, copy=True)
        if batch.size == 0:
            return batch

        missing_mask = (batch == self.missing_value) | np.isnan(batch)
        valid_counts = (~missing_mask).sum(axis=0)
        batch[missing_mask] = 0.0
        with np.errstate(divide='ignore', invalid='ignore'):
            means = np.where(valid_counts > 0, batch.sum(axis=0) / valid_counts, 0.0)
        batch -= means[np.newaxis, :]
        batch[missing_mask] = 0.0
        return batch


class AssociationSummary:
    """Harmonised per-variant association summary statistics

    One entry per retained variant, ordered as in the reference map:
    [SNP, CHROM, POS, BETA, SE, P] plus the genotype column of each variant.
    """

    def __init__(self, snp: Sequence[str], chrom: Sequence[Any], pos: Sequence[int],
                 beta: Sequence[float], se: Sequence[float], pvalues: Sequence[float],
                 geno_index: Optional[Sequence[int]] = None):
        self.snp = np.asarray(snp, dtype=str)
        self.chrom = np.asarray(chrom).astype(str)
        self.pos = np.asarray(pos, dtype=np.int64)
        self.beta = np.asarray(beta, dtype=np.float64)
        self.se = np.asarray(se, dtype=np.float64)
        self.pvalues = np.asarray(pvalues, dtype=np.float64)
        if geno_index is None:
            geno_index = np.arange(len(self.snp))
        self.geno_index = np.asarray(geno_index, dtype=int)

        n = len(self.snp)
        for name, values in (('chrom', self.chrom), ('pos', self.pos), ('beta', self.beta),
                             ('se', self.se), ('pvalues', self.pvalues),
                             ('geno_index', self.geno_index)):
            if len(values) != n:
                raise ValueError(f"All summary arrays must have same length ({name} has {len(values)}, expected {n})")

        self._name_index: Dict[str, int] = {}
        for idx, name in enumerate(self.snp):
            self._name_index.setdefault(str(name), idx)

    @property
    def n_variants(self) -> int:
        return len(self.snp)

    def index_of(self, name: str) -> Optional[int]:
        """Variant index for a SNP name, or None when it is not in the summary"""
        return self._name_index.get(str(name))

    def resolve(self, names: Sequence[str]) -> np.ndarray:
        """Indices of the names found in the summary, in input order; misses are dropped"""
        found = []
        for name in names:
            idx = self.index_of(name)
            if idx is not None:
                found.append(idx)
        return np.asarray(found, dtype=int)

    def to_dataframe(self) -> pd.DataFrame:
        return pd.DataFrame({
            'SNP': self.snp,
            'CHROM': self.chrom,
            'POS': self.pos,
            'BETA': self.beta,
            'SE': self.se,
            'P': self.pvalues,
        })


@dataclass(frozen=True)
class CohortContext:
    """Read-only inputs shared by every set test"""
    genotype: GenotypeMatrix
    summary: AssociationSummary

    def genotype_columns(self, variant_indices: Sequence[int]) -> np.ndarray:
        """Centred genotype columns for summary variant indices"""
        variant_indices = np.asarray(variant_indices, dtype=int)
        return self.genotype.get_centered_columns(self.summary.geno_index[variant_indices])


@dataclass
class SetTestResult:
    name: str
    n_snps: int
    n_tested: int
    chisq: float
    pvalue: float
    skipped: bool = False
    reason: Optional[str] = None
    snps_tested: List[str] = field(default_factory=list)
