"""Shared data structures and statistics helpers"""
