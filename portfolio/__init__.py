"""
Portfolio Module

Screens symbols on stored metrics and allocates capital with the
iterative REDP optimizer.
"""

__version__ = "0.1.0"
