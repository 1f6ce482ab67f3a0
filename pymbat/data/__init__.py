"""Input loaders and gene-to-SNP mapping"""
