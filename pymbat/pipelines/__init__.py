"""End-to-end set and gene test pipelines"""
