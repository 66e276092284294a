"""
Tests for normalizers - pure transforms from provider shape to quotes.
"""

import pytest
from datetime import date, datetime

from ingestion.transforms.normalizers import NormalizationError, normalize_info, normalize_quotes


class TestNormalizeQuotes:

    def test_field_mapping(self):
        raw = [{
            'Date': '2024-01-15',
            'Open': 185.25, 'High': 186.80, 'Low': 184.50, 'Close': 185.92,
            'Volume': 65284300,
        }]

        result = normalize_quotes(raw, symbol='aapl')

        assert result == [{
            'symbol': 'aapl',
            'date': date(2024, 1, 15),
            'open': 185.25, 'high': 186.80, 'low': 184.50, 'close': 185.92,
            'volume': 65284300,
        }]

    def test_dedup_keeps_last_and_sorts(self):
        raw = [
            {'Date': '2024-01-16', 'Close': 2.0},
            {'Date': '2024-01-15', 'Close': 1.0},
            {'Date': '2024-01-16', 'Close': 3.0},
        ]

        result = normalize_quotes(raw, symbol='aapl')

        assert [row['date'] for row in result] == [date(2024, 1, 15), date(2024, 1, 16)]
        assert result[1]['close'] == 3.0

    def test_missing_optional_fields_are_none(self):
        result = normalize_quotes([{'Date': datetime(2024, 1, 15, 16, 0), 'Close': 1.0}], symbol='aapl')

        assert result[0]['date'] == date(2024, 1, 15)
        assert result[0]['open'] is None
        assert result[0]['volume'] is None

    def test_nan_close_rejected(self):
        with pytest.raises(NormalizationError, match="no close"):
            normalize_quotes([{'Date': '2024-01-15', 'Close': float('nan')}], symbol='aapl')

    def test_bad_date_rejected(self):
        with pytest.raises(NormalizationError, match="Unparseable"):
            normalize_quotes([{'Date': 'yesterday', 'Close': 1.0}], symbol='aapl')

    def test_empty(self):
        assert normalize_quotes([], symbol='aapl') == []


class TestNormalizeInfo:

    def test_long_name_preferred(self):
        info = normalize_info({'longName': 'Apple Inc.', 'shortName': 'Apple', 'beta': 1.24})
        assert info == {'name': 'Apple Inc.', 'beta': 1.24}

    def test_fallbacks(self):
        assert normalize_info({'shortName': 'Apple'}) == {'name': 'Apple', 'beta': None}
        assert normalize_info(None) == {'name': None, 'beta': None}
