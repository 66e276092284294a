"""
Pipeline Module

Incremental quote refresh, metric recomputation and history checks
over the download universe.
"""

__version__ = "0.1.0"
