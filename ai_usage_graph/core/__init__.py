"""
Core modules for AI Usage Graph.

This package contains the pricing resolver, the parallel aggregation
engine, and the summary and report rollups built on top of it.
"""

__version__ = "0.1.0"
