"""
Tests for yfinance adapter - mocked network calls, no live API hits in CI.
"""

import pytest
from unittest.mock import Mock, patch
from datetime import date

import pandas as pd

from ingestion.providers.yfinance_adapter import (
    YFinanceError,
    fetch_history,
    fetch_info,
    fetch_raw_history,
)


def provider_frame():
    return pd.DataFrame({
        'Open': [185.25, 186.10],
        'High': [186.80, 187.45],
        'Low': [184.50, 185.80],
        'Close': [185.92, 187.11],
        'Volume': [65284300, 58414500],
    }, index=pd.DatetimeIndex(['2024-01-15', '2024-01-16'], name='Date'))


class TestFetchRawHistory:

    @patch('ingestion.providers.yfinance_adapter.yf.download')
    def test_success(self, mock_download):
        mock_download.return_value = provider_frame()

        result = fetch_raw_history('AAPL', date(2024, 1, 15), date(2024, 1, 16))

        mock_download.assert_called_once_with(
            'AAPL',
            start='2024-01-15',
            end='2024-01-17',
            progress=False,
        )
        assert len(result) == 2
        assert result[0] == {
            'Date': '2024-01-15',
            'Open': 185.25, 'High': 186.80, 'Low': 184.50, 'Close': 185.92,
            'Volume': 65284300,
        }

    @patch('ingestion.providers.yfinance_adapter.yf.download')
    def test_multiindex_columns_flattened(self, mock_download):
        frame = provider_frame()
        frame.columns = pd.MultiIndex.from_product([frame.columns, ['AAPL']])
        mock_download.return_value = frame

        result = fetch_raw_history('AAPL', date(2024, 1, 15), date(2024, 1, 16))

        assert result[1]['Close'] == 187.11

    @patch('ingestion.providers.yfinance_adapter.yf.download')
    def test_empty_response(self, mock_download):
        mock_download.return_value = pd.DataFrame()

        assert fetch_raw_history('AAPL', date(2024, 1, 15), date(2024, 1, 16)) == []

    @patch('ingestion.providers.yfinance_adapter.yf.download')
    def test_start_after_end_skips_fetch(self, mock_download):
        assert fetch_raw_history('AAPL', date(2024, 1, 17), date(2024, 1, 16)) == []
        mock_download.assert_not_called()

    @patch('ingestion.providers.yfinance_adapter.yf.download')
    def test_provider_failure_wrapped(self, mock_download):
        mock_download.side_effect = RuntimeError('rate limited')

        with pytest.raises(YFinanceError, match="rate limited"):
            fetch_raw_history('AAPL', date(2024, 1, 15), date(2024, 1, 16))

    def test_invalid_ticker(self):
        with pytest.raises(YFinanceError, match="invalid characters"):
            fetch_raw_history('AA PL', date(2024, 1, 15), date(2024, 1, 16))


class TestFetchHistory:

    @patch('ingestion.providers.yfinance_adapter.yf.download')
    def test_provider_ticker_and_canonical_rows(self, mock_download):
        mock_download.return_value = provider_frame()

        result = fetch_history('brk-b', date(2024, 1, 15), date(2024, 1, 16))

        assert mock_download.call_args[0][0] == 'BRK-B'
        assert result[0]['symbol'] == 'brk-b'
        assert result[0]['date'] == date(2024, 1, 15)
        assert result[1]['close'] == 187.11


class TestFetchInfo:

    @patch('ingestion.providers.yfinance_adapter.yf.Ticker')
    def test_name_and_beta(self, mock_ticker):
        mock_ticker.return_value = Mock(info={'longName': 'Apple Inc.', 'beta': 1.24})

        assert fetch_info('aapl') == {'name': 'Apple Inc.', 'beta': 1.24}
        mock_ticker.assert_called_once_with('AAPL')

    @patch('ingestion.providers.yfinance_adapter.yf.Ticker')
    def test_failure_wrapped(self, mock_ticker):
        mock_ticker.side_effect = RuntimeError('404')

        with pytest.raises(YFinanceError, match="404"):
            fetch_info('aapl')
