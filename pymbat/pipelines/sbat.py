"""
Set-Based Association Pipeline Module

Runs the multivariate set-based test (MBAT) over user-defined SNP sets or
gene windows: resolves members against the harmonised association summary,
applies the skip policies, dispatches each set to the per-set test and
writes the tab-separated reports.
"""

import warnings
from pathlib import Path
from typing import List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd
from joblib import Parallel, delayed

from ..association.mbat import MBAT_Test, single_variant_test, skipped_result
from ..data.gene_mapping import map_genes_to_snps, NA
from ..data.loaders import (
    load_association_file, harmonize_association, load_snpset_file,
    load_gene_annotation, load_map_file,
)
from ..matrix.vif import VIF_THRESHOLD
from ..utils.data_types import (
    AssociationSummary, CohortContext, GenotypeMap, GenotypeMatrix, SetTestResult,
)
from ..utils.stats import is_reportable

MAX_SET_SNPS = 20000
MAX_GENE_SNPS = 10000
DEFAULT_GENE_WINDOW = 50000

SET_REPORT_COLUMNS = ['Set', 'Set.SNPs', 'SNPsTested', 'Chisq(Obs)', 'Pvalue']
GENE_REPORT_COLUMNS = ['Gene', 'Chr', 'Start', 'End', 'No.SNPs', 'SNPsTested',
                       'SNP_start', 'SNP_end', 'Chisq(Obs)', 'Pvalue']


def _run_set_job(context: CohortContext, name: str, snp_indx: np.ndarray,
                 threshold: float) -> SetTestResult:
    """Worker: test one resolved, non-skipped set."""
    summary = context.summary
    if snp_indx.size == 1:
        k = int(snp_indx[0])
        return single_variant_test(name, summary.snp[k], summary.pvalues[k])
    return MBAT_Test(
        context,
        snp_indx,
        summary.beta[snp_indx],
        summary.se[snp_indx],
        names=summary.snp[snp_indx].tolist(),
        set_name=name,
        threshold=threshold,
    )


class SetBasedPipeline:
    """
    Pipeline for set-based (SBAT-MULTI) and gene-based multivariate tests.

    Typical workflow:
        1. Initialize pipeline with an output prefix
        2. Load association results, genotype panel and its SNP map
        3. Run SNP-set and/or gene tests; reports are written next to the prefix

    Example:
        >>> pipeline = SetBasedPipeline(output_prefix='./results/trait1')
        >>> pipeline.load_data('trait1.ma', genotype, 'panel.bim')
        >>> set_results = pipeline.run_sets('pathways.setlist')
        >>> gene_results = pipeline.run_genes('glist-hg19.txt', window=50000)
    """

    def __init__(self,
                 output_prefix: Optional[Union[str, Path]] = None,
                 vif_threshold: float = VIF_THRESHOLD,
                 max_set_snps: int = MAX_SET_SNPS,
                 max_gene_snps: int = MAX_GENE_SNPS,
                 cpu: int = 1,
                 verbose: bool = True):
        """
        Args:
            output_prefix: Reports go to <prefix>.mbat and <prefix>.gene.mbat;
                None keeps results in memory only
            vif_threshold: VIF above which a variant is removed from a set
            max_set_snps: Largest SNP set that is tested
            max_gene_snps: Largest gene window that is tested
            cpu: Worker processes for the per-set loop (0 = all cores)
            verbose: Print progress information
        """
        self.output_prefix = Path(output_prefix) if output_prefix is not None else None
        if self.output_prefix is not None:
            self.output_prefix.parent.mkdir(parents=True, exist_ok=True)
        self.vif_threshold = vif_threshold
        self.max_set_snps = max_set_snps
        self.max_gene_snps = max_gene_snps
        self.cpu = cpu
        self.verbose = verbose

        self.context: Optional[CohortContext] = None
        self.gene_map: Optional[pd.DataFrame] = None

    def load_data(self,
                  association: Union[str, Path, pd.DataFrame],
                  genotype: Union[GenotypeMatrix, np.ndarray],
                  geno_map: Union[GenotypeMap, pd.DataFrame, str, Path]) -> AssociationSummary:
        """Load and harmonise association results against the genotype panel."""
        if isinstance(association, pd.DataFrame):
            assoc_df = association
        else:
            if self.verbose:
                print(f"\nReading SNP association results from [{association}].")
            assoc_df = load_association_file(association, verbose=self.verbose)

        if isinstance(geno_map, GenotypeMap):
            ref_map = geno_map
        elif isinstance(geno_map, pd.DataFrame):
            ref_map = GenotypeMap(geno_map)
        else:
            ref_map = load_map_file(geno_map)

        if not isinstance(genotype, GenotypeMatrix):
            genotype = GenotypeMatrix(np.asarray(genotype))
        if genotype.n_markers != ref_map.n_markers:
            raise ValueError(
                f"Genotype matrix has {genotype.n_markers} markers but the map lists {ref_map.n_markers}"
            )

        summary = harmonize_association(assoc_df, ref_map, verbose=self.verbose)
        self.context = CohortContext(genotype=genotype, summary=summary)
        return summary

    def _require_context(self) -> CohortContext:
        if self.context is None:
            raise RuntimeError("No data loaded; call load_data() first")
        return self.context

    def _n_workers(self, n_jobs: int) -> int:
        cpu = self.cpu
        if cpu == 0:
            import multiprocessing
            cpu = multiprocessing.cpu_count()
        return max(1, min(cpu, n_jobs))

    def _evaluate(self, jobs: List[Tuple[int, str, np.ndarray]], label: str) -> List[Tuple[int, SetTestResult]]:
        """Run the per-set test over (slot, name, indices) jobs."""
        context = self._require_context()
        n_workers = self._n_workers(len(jobs))

        if n_workers > 1:
            if self.verbose:
                print(f"Using parallel processing with {n_workers} workers")
            results = Parallel(n_jobs=n_workers, backend='loky')(
                delayed(_run_set_job)(context, name, snp_indx, self.vif_threshold)
                for _, name, snp_indx in jobs
            )
            return [(slot, res) for (slot, _, _), res in zip(jobs, results)]

        out = []
        n_jobs = len(jobs)
        for i, (slot, name, snp_indx) in enumerate(jobs):
            out.append((slot, _run_set_job(context, name, snp_indx, self.vif_threshold)))
            if self.verbose and ((i + 1) % 100 == 0 or (i + 1) == n_jobs):
                print(f"{i + 1} of {n_jobs} {label}.", end='\r')
        if self.verbose and n_jobs:
            print()
        return out

    def run_sets(self,
                 snpsets: Union[str, Path, Tuple[Sequence[str], Sequence[Sequence[str]]]],
                 write: bool = True) -> List[SetTestResult]:
        """Run the multivariate test on each SNP set.

        Args:
            snpsets: Set-list file, or a (set_names, snp_sets) pair
            write: Write <prefix>.mbat when an output prefix is configured

        Returns:
            One SetTestResult per input set (skipped sets included)
        """
        context = self._require_context()
        summary = context.summary

        if isinstance(snpsets, (str, Path)):
            set_names, snp_sets = load_snpset_file(snpsets)
        else:
            set_names, snp_sets = snpsets
        set_names = [str(s) for s in set_names]
        if len(set_names) != len(snp_sets):
            raise ValueError("Each set name needs exactly one member list")

        if self.verbose:
            print("\nRunning set-based multivariate association test (SBAT-MULTI)...")

        results: List[Optional[SetTestResult]] = [None] * len(set_names)
        jobs: List[Tuple[int, str, np.ndarray]] = []
        n_mapped = 0
        for i, (name, members) in enumerate(zip(set_names, snp_sets)):
            snp_indx = summary.resolve(members)
            if len(members) < 1 or snp_indx.size < 1:
                results[i] = skipped_result(name, "empty")
                continue
            n_mapped += 1
            if snp_indx.size > self.max_set_snps:
                warnings.warn(
                    f"Too many SNPs in the set [{name}] ({snp_indx.size}). Maximum limit is "
                    f"{self.max_set_snps}. This set is ignored in the analysis.",
                    RuntimeWarning,
                )
                results[i] = skipped_result(name, "oversized")
                continue
            jobs.append((i, name, snp_indx))

        if n_mapped < 1:
            raise ValueError("Error: no SNP set can be mapped to the SNP data. "
                             "Please check the SNP names in the set file.")

        for slot, res in self._evaluate(jobs, 'sets'):
            results[slot] = res

        if write and self.output_prefix is not None:
            self.write_report(self.results_to_dataframe(results), f"{self.output_prefix}.mbat")
        return results

    def run_genes(self,
                  genes: Union[str, Path, pd.DataFrame],
                  window: int = DEFAULT_GENE_WINDOW,
                  write: bool = True) -> List[SetTestResult]:
        """Run the multivariate test on each gene window.

        Args:
            genes: Gene annotation file or DataFrame [CHROM, START, END, GENE]
            window: Window (bp) added to both ends of each gene
            write: Write <prefix>.gene.mbat when an output prefix is configured

        Returns:
            One SetTestResult per gene (skipped genes included); the boundary
            mapping is kept in self.gene_map
        """
        context = self._require_context()
        summary = context.summary

        gene_df = genes if isinstance(genes, pd.DataFrame) else load_gene_annotation(genes)

        if self.verbose:
            print(f"Mapping the physical positions of genes to SNP data "
                  f"(gene boundaries: {window // 1000}Kb away from UTRs) ...")
        gene_map = map_genes_to_snps(gene_df, summary, window=window)
        self.gene_map = gene_map

        idx_start = gene_map['IDX_START'].to_numpy()
        idx_end = gene_map['IDX_END'].to_numpy()
        mapped = (idx_start >= 0) & (idx_end >= 0)
        if int(mapped.sum()) < 1:
            raise ValueError("Error: no gene can be mapped to the SNP data. "
                             "Please check the input data regarding chr and bp.")
        if self.verbose:
            print(f"{int(mapped.sum())} genes have been mapped to SNP data.")
            print("\nRunning set-based association test (SBAT) for genes ...")

        gene_names = gene_map['GENE'].astype(str).tolist()
        results: List[Optional[SetTestResult]] = [None] * len(gene_names)
        jobs: List[Tuple[int, str, np.ndarray]] = []
        for i, name in enumerate(gene_names):
            if not mapped[i] or idx_start[i] > idx_end[i]:
                results[i] = skipped_result(name, "unmapped")
                continue
            n_snps = int(idx_end[i] - idx_start[i] + 1)
            if n_snps > self.max_gene_snps:
                warnings.warn(
                    f"Too many SNPs in the gene region [{name}] ({n_snps}). Maximum limit is "
                    f"{self.max_gene_snps}. This gene is ignored in the analysis.",
                    RuntimeWarning,
                )
                results[i] = skipped_result(name, "oversized")
                continue
            jobs.append((i, name, np.arange(idx_start[i], idx_end[i] + 1)))

        for slot, res in self._evaluate(jobs, 'genes'):
            results[slot] = res

        if write and self.output_prefix is not None:
            self.write_report(self.results_to_dataframe(results, gene_map=gene_map),
                              f"{self.output_prefix}.gene.mbat")
        return results

    @staticmethod
    def results_to_dataframe(results: Sequence[SetTestResult],
                             gene_map: Optional[pd.DataFrame] = None) -> pd.DataFrame:
        """Report table of the tested sets (skipped sets are omitted).

        With gene_map (as returned by map_genes_to_snps, row-aligned with
        results) the gene report layout is produced, otherwise the set layout.
        """
        rows = []
        if gene_map is None:
            for res in results:
                if not is_reportable(res.pvalue):
                    continue
                rows.append([res.name, res.n_snps, res.n_tested, res.chisq, res.pvalue])
            return pd.DataFrame(rows, columns=SET_REPORT_COLUMNS)

        if len(gene_map) != len(results):
            raise ValueError("gene_map must have one row per result")
        for res, (_, gene) in zip(results, gene_map.iterrows()):
            if not is_reportable(res.pvalue):
                continue
            rows.append([res.name, gene['CHROM'], gene['START'], gene['END'],
                         res.n_snps, res.n_tested,
                         gene.get('SNP_START', NA), gene.get('SNP_END', NA),
                         res.chisq, res.pvalue])
        return pd.DataFrame(rows, columns=GENE_REPORT_COLUMNS)

    def write_report(self, df: pd.DataFrame, filename: Union[str, Path]) -> Path:
        """Write a report table as tab-separated text."""
        filename = Path(filename)
        if self.verbose:
            print(f"\nSaving the results of the SBAT analyses to [{filename}] ...")
        try:
            df.to_csv(filename, sep='\t', index=False)
        except OSError as exc:
            raise OSError(f"Can not open the file [{filename}] to write.") from exc
        return filename
