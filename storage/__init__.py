"""
Storage Module

SQLite persistence for quotes, metrics, instrument info, the download
universe and refresh runs, behind the thread-safe Store handle.
"""

__version__ = "0.1.0"
