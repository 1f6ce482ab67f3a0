"""
Map gene regions (extended by a window) onto the boundary SNPs of the
association summary.
"""

from typing import Dict

import numpy as np
import pandas as pd

from ..utils.data_types import AssociationSummary

NA = "NA"


def _group_variants_by_chrom(chrom_values: np.ndarray) -> Dict[str, np.ndarray]:
    """Variant indices per chromosome, in summary order"""
    groups: Dict[str, np.ndarray] = {}
    for chrom in pd.unique(chrom_values):
        groups[str(chrom)] = np.flatnonzero(chrom_values == chrom)
    return groups


def map_genes_to_snps(genes: pd.DataFrame,
                      summary: AssociationSummary,
                      window: int = 50000) -> pd.DataFrame:
    """Resolve the first and last SNP of each gene window

    The window of a gene on chromosome c spans [START - window, END + window].
    The start SNP is the first SNP on c at or beyond the window start. The
    end SNP is the SNP sitting exactly on the window end, otherwise the SNP
    just before the first SNP past it; when no SNP on c lies past the window
    end, the last SNP of c is used. Unresolved boundaries are "NA" with
    index -1.

    Args:
        genes: DataFrame with columns GENE, CHROM, START, END
        summary: Association summary ordered by chromosome and position
        window: Window added to both sides of the gene (bp)

    Returns:
        Copy of genes with SNP_START, SNP_END, IDX_START and IDX_END columns
    """
    chrom_groups = _group_variants_by_chrom(summary.chrom)

    n_genes = len(genes)
    idx_start = np.full(n_genes, -1, dtype=int)
    idx_end = np.full(n_genes, -1, dtype=int)

    gene_chroms = genes['CHROM'].astype(str).to_numpy()
    lower = genes['START'].to_numpy(dtype=np.int64) - int(window)
    upper = genes['END'].to_numpy(dtype=np.int64) + int(window)

    for i in range(n_genes):
        chrom_idx = chrom_groups.get(gene_chroms[i])
        if chrom_idx is None or chrom_idx.size == 0:
            continue
        chrom_pos = summary.pos[chrom_idx]

        hits = np.flatnonzero(chrom_pos >= lower[i])
        if hits.size == 0:
            continue
        idx_start[i] = chrom_idx[hits[0]]

        hits = np.flatnonzero(chrom_pos >= upper[i])
        if hits.size == 0:
            idx_end[i] = chrom_idx[-1]
            continue
        found = chrom_idx[hits[0]]
        if summary.pos[found] == upper[i]:
            idx_end[i] = found
        elif found > 0:
            idx_end[i] = found - 1

    mapped = genes.copy()
    mapped['IDX_START'] = idx_start
    mapped['IDX_END'] = idx_end
    mapped['SNP_START'] = [summary.snp[k] if k >= 0 else NA for k in idx_start]
    mapped['SNP_END'] = [summary.snp[k] if k >= 0 else NA for k in idx_end]
    return mapped
