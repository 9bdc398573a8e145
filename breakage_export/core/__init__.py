"""
Core modules for breakage export.

This package contains consolidation, line encoding, export targets and
the two export channels.
"""
