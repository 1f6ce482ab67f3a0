"""
pyMBAT: set-based multivariate association testing on GWAS summary statistics

Aggregates per-SNP effects over SNP sets or gene windows into a single
quadratic-form chi-square test, after removing collinear SNPs from the LD
matrix by iterative Variance Inflation Factor (VIF) elimination.
"""

import os
import warnings

# Suppress OpenMP deprecation warnings that occur with Numba parallel processing
os.environ.setdefault('KMP_WARNINGS', 'off')
warnings.filterwarnings('ignore', message='.*omp_set_nested.*deprecated.*')
warnings.filterwarnings('ignore', category=UserWarning, message='.*omp_set_nested.*')

__version__ = "0.1.0"
__author__ = "pyMBAT Development Team"

from .matrix.correlation import MBAT_LD
from .matrix.vif import MBAT_VIF, vif_iteration, prune_correlated
from .association.mbat import MBAT_Test, joint_chisq, SingularCovarianceError
from .pipelines.sbat import SetBasedPipeline

__all__ = [
    'MBAT_LD',
    'MBAT_VIF',
    'MBAT_Test',
    'vif_iteration',
    'prune_correlated',
    'joint_chisq',
    'SingularCovarianceError',
    'SetBasedPipeline',
]
