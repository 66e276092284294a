"""
Data Ingestion Module

Handles fetching and validating data from external sources:
- yfinance for daily quotes and instrument info
"""

__version__ = "0.1.0"
