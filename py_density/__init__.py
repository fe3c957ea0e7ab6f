"""
Density-function graph engine: parse, resolve and evaluate density documents.
"""

__version__ = "0.1.0"
