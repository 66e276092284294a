"""
Utilities

Symbol normalization, settings, logging setup and the shuffled worker pool.
"""

__version__ = "0.1.0"
