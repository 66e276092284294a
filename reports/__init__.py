"""
Reports Module

Display formatting for portfolio report rows.
"""

__version__ = "0.1.0"
