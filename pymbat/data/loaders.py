"""
Data loading utilities for association summaries, SNP sets, gene
annotations and reference SNP maps
"""

import warnings
from pathlib import Path
from typing import Union, Tuple, List, Optional

import numpy as np
import pandas as pd

from ..utils.data_types import GenotypeMap, AssociationSummary

ASSOC_COLUMNS = ['SNP', 'A1', 'A2', 'FREQ', 'BETA', 'SE', 'P']
SET_TERMINATOR = 'END'


def _is_number(value: str) -> bool:
    try:
        float(value)
    except ValueError:
        return False
    return True


def load_association_file(filepath: Union[str, Path], verbose: bool = True) -> pd.DataFrame:
    """Load multi-SNP association results

    Expected format: whitespace-delimited, 7 fields per line
    [SNP, A1, A2, freq, beta, se, p]. A leading header line is skipped.
    Lines with a different field count, and records whose beta, se or p is
    not a finite number, are excluded.

    Returns:
        DataFrame with columns SNP, A1, A2, FREQ, BETA, SE, P
    """
    filepath = Path(filepath)
    if not filepath.exists():
        raise FileNotFoundError(f"Error: can not open the file [{filepath}] to read.")

    rows = []
    n_malformed = 0
    first_line = True
    with filepath.open('r') as fh:
        for line in fh:
            parts = line.split()
            if not parts:
                continue
            is_first, first_line = first_line, False
            if len(parts) != len(ASSOC_COLUMNS):
                n_malformed += 1
                continue
            if is_first and not (_is_number(parts[4]) and _is_number(parts[5]) and _is_number(parts[6])):
                # header
                continue
            rows.append(parts)

    df = pd.DataFrame(rows, columns=ASSOC_COLUMNS)
    for col in ('FREQ', 'BETA', 'SE', 'P'):
        df[col] = pd.to_numeric(df[col], errors='coerce')

    valid = np.isfinite(df[['BETA', 'SE', 'P']].to_numpy(dtype=np.float64)).all(axis=1)
    n_invalid = int((~valid).sum())
    if n_invalid:
        df = df.loc[valid].reset_index(drop=True)

    if verbose:
        if n_malformed:
            print(f"Warning: {n_malformed} line(s) in [{filepath}] do not have "
                  f"{len(ASSOC_COLUMNS)} fields and are excluded.")
        if n_invalid:
            print(f"Warning: {n_invalid} SNP(s) in [{filepath}] have missing or non-numeric "
                  f"beta, se or p and are excluded.")
    return df


def harmonize_association(assoc_df: pd.DataFrame,
                          geno_map: GenotypeMap,
                          verbose: bool = True) -> AssociationSummary:
    """Align association records to the reference SNP map

    Records are kept when the SNP is in the map and, when the map carries
    REF/ALT, both A1 and A2 are alleles of that SNP. Records with missing or
    non-numeric beta, se or p are excluded. Duplicate SNP records
    keep their first occurrence. The result follows the map order and points
    each variant at its genotype column.
    """
    missing_cols = [c for c in ('SNP', 'A1', 'A2', 'BETA', 'SE', 'P') if c not in assoc_df.columns]
    if missing_cols:
        raise ValueError(f"Association data is missing columns: {', '.join(missing_cols)}")

    assoc = assoc_df.copy()
    assoc['SNP'] = assoc['SNP'].astype(str)
    n_dup = int(assoc['SNP'].duplicated().sum())
    if n_dup:
        assoc = assoc.drop_duplicates(subset='SNP', keep='first')
        warnings.warn(f"Dropped {n_dup} duplicated SNP records from the association results", RuntimeWarning)

    stats_values = assoc[['BETA', 'SE', 'P']].apply(pd.to_numeric, errors='coerce')
    valid = np.isfinite(stats_values.to_numpy(dtype=np.float64)).all(axis=1)
    n_invalid = int((~valid).sum())
    assoc = assoc.assign(BETA=stats_values['BETA'], SE=stats_values['SE'], P=stats_values['P']).loc[valid]

    map_df = geno_map.to_dataframe()
    map_df['GENO_INDEX'] = np.arange(len(map_df))
    map_df = map_df.drop_duplicates(subset='SNP', keep='first')

    merged = assoc.merge(map_df, on='SNP', how='inner', sort=False)
    n_not_in_map = len(assoc) - len(merged)

    n_bad_allele = 0
    if geno_map.has_alleles and len(merged) > 0:
        ref = merged['REF'].astype(str)
        alt = merged['ALT'].astype(str)
        a1 = merged['A1'].astype(str)
        a2 = merged['A2'].astype(str)
        ok = ((a1 == ref) | (a1 == alt)) & ((a2 == ref) | (a2 == alt))
        n_bad_allele = int((~ok).sum())
        if n_bad_allele and verbose:
            preview = ', '.join(merged.loc[~ok, 'SNP'].head(5).tolist())
            print(f"Warning: {n_bad_allele} SNP(s) have alleles inconsistent with the reference "
                  f"and are excluded ({preview}{', ...' if n_bad_allele > 5 else ''}).")
        merged = merged.loc[ok]

    merged = merged.sort_values('GENO_INDEX', kind='mergesort').reset_index(drop=True)

    if len(merged) < 1:
        raise ValueError("Error: no SNP is included in the analysis.")
    if merged['CHROM'].isna().any():
        raise ValueError("Error: chromosome information is missing.")
    pos = pd.to_numeric(merged['POS'], errors='coerce')
    if pos.isna().any() or (pos < 1).any():
        raise ValueError("Error: bp information is missing.")

    if verbose:
        if n_invalid:
            print(f"{n_invalid} SNP(s) with missing or non-numeric beta, se or p are excluded.")
        if n_not_in_map:
            print(f"{n_not_in_map} SNP(s) in the association results are absent from the reference map.")
        print(f"Association p-values of {len(merged)} SNPs have been included.")

    return AssociationSummary(
        snp=merged['SNP'].to_numpy(),
        chrom=merged['CHROM'].astype(str).to_numpy(),
        pos=pos.astype(np.int64).to_numpy(),
        beta=merged['BETA'].to_numpy(dtype=np.float64),
        se=merged['SE'].to_numpy(dtype=np.float64),
        pvalues=merged['P'].to_numpy(dtype=np.float64),
        geno_index=merged['GENO_INDEX'].to_numpy(dtype=int),
    )


def load_snpset_file(filepath: Union[str, Path]) -> Tuple[List[str], List[List[str]]]:
    """Load SNP sets

    Expected format: a set name, its member SNPs, then the keyword END;
    repeated for each set. Tokens may be separated by any whitespace.

    Returns:
        Tuple of (set_names, snp_sets)
    """
    filepath = Path(filepath)
    if not filepath.exists():
        raise FileNotFoundError(f"Error: can not open the file [{filepath}] to read.")

    set_names: List[str] = []
    snp_sets: List[List[str]] = []
    current: Optional[List[str]] = None
    with filepath.open('r') as fh:
        for token in fh.read().split():
            if current is None:
                set_names.append(token)
                current = []
            elif token == SET_TERMINATOR:
                snp_sets.append(current)
                current = None
            else:
                current.append(token)
    if current is not None:
        # last set without END
        snp_sets.append(current)

    if not set_names:
        raise ValueError(f"No SNP set found in [{filepath}]")
    return set_names, snp_sets


def load_gene_annotation(filepath: Union[str, Path]) -> pd.DataFrame:
    """Load gene annotations

    Expected format: whitespace-delimited [CHR, START, END, GENE], no header.

    Returns:
        DataFrame with columns CHROM, START, END, GENE
    """
    filepath = Path(filepath)
    if not filepath.exists():
        raise FileNotFoundError(f"Error: can not open the file [{filepath}] to read.")

    df = pd.read_csv(filepath, sep=r'\s+', header=None, dtype=str, comment='#')
    if df.shape[1] < 4:
        raise ValueError(f"Gene annotation file must have 4 columns [CHR START END GENE], got {df.shape[1]}")
    df = df.iloc[:, :4]
    df.columns = ['CHROM', 'START', 'END', 'GENE']

    start = pd.to_numeric(df['START'], errors='coerce')
    end = pd.to_numeric(df['END'], errors='coerce')
    bad = start.isna() | end.isna()
    if bad.any():
        # header or malformed rows
        df = df.loc[~bad]
        start = start[~bad]
        end = end[~bad]

    df = df.assign(START=start.astype(np.int64), END=end.astype(np.int64))
    df['CHROM'] = df['CHROM'].astype(str)
    return df.reset_index(drop=True)


def load_map_file(filepath: Union[str, Path]) -> GenotypeMap:
    """Load the reference SNP map

    Accepts CSV/TSV with a header, or a PLINK .bim file (REF = A2 and
    ALT = A1, the PLINK convention).
    """
    filepath = Path(filepath)
    if not filepath.exists():
        raise FileNotFoundError(f"Map file not found: {filepath}")

    suffix = filepath.suffix.lower()
    if suffix == '.bim':
        df = pd.read_csv(filepath, sep=r'\s+', header=None, dtype={0: str, 1: str, 4: str, 5: str})
        df = df.iloc[:, :6]
        df.columns = ['CHROM', 'SNP', 'CM', 'POS', 'ALT', 'REF']
        df = df[['SNP', 'CHROM', 'POS', 'REF', 'ALT']]
    elif suffix == '.csv':
        df = pd.read_csv(filepath)
    else:
        df = pd.read_csv(filepath, sep='\t')

    col_mapping = {
        'Chr': 'CHROM', 'chr': 'CHROM', 'CHR': 'CHROM', 'chromosome': 'CHROM',
        'Pos': 'POS', 'pos': 'POS', 'position': 'POS', 'bp': 'POS', 'BP': 'POS',
        'snp': 'SNP', 'marker': 'SNP', 'rs': 'SNP',
        'ref': 'REF', 'alt': 'ALT',
    }
    for old_name, new_name in col_mapping.items():
        if old_name in df.columns and new_name not in df.columns:
            df = df.rename(columns={old_name: new_name})

    return GenotypeMap(df)
