"""
Tests for normalizers - raw export records to canonical shape.
"""

import pytest
from datetime import date, datetime
from decimal import Decimal

from ingestion.transforms.normalizers import (
    NormalizationError,
    normalize_positions,
    normalize_prices,
    normalize_securities,
    normalize_transactions,
    transaction_id_for,
)
from ingestion.transforms.validators import (
    validate_position_row,
    validate_price_row,
    validate_security_row,
    validate_transaction_row,
)


INGESTED_AT = datetime(2024, 2, 1, 6, 0, 0)


class TestNormalizePositions:
    """Tests for normalize_positions."""

    def test_camel_case_export(self):
        raw = [{
            'accountId': 'ACC-001',
            'securityId': 'SEC-AAPL',
            'positionDate': '2024-01-31',
            'quantity': '100',
            'averageCost': '$1,150.50',
            'marketValue': 120000,
        }]

        rows = normalize_positions(raw, source='custodian', ingested_at=INGESTED_AT)

        assert rows == [{
            'account_id': 'ACC-001',
            'security_id': 'SEC-AAPL',
            'date': date(2024, 1, 31),
            'quantity': Decimal('100'),
            'average_cost': Decimal('1150.50'),
            'market_value': Decimal('120000'),
            'source': 'custodian',
            'ingested_at': INGESTED_AT,
        }]
        validate_position_row(rows[0])

    def test_market_value_derived(self):
        rows = normalize_positions(
            [{'account_id': 'A', 'security_id': 'S', 'date': '2024-01-31',
              'quantity': 10, 'average_cost': 0.1}],
            source='custodian', ingested_at=INGESTED_AT
        )

        assert rows[0]['market_value'] == Decimal('1.0')

    def test_duplicates_keep_last(self):
        raw = [
            {'account_id': 'A', 'security_id': 'S', 'date': '2024-01-31', 'quantity': 1,
             'average_cost': 1, 'market_value': 1},
            {'account_id': 'A', 'security_id': 'S', 'date': '2024-01-31', 'quantity': 2,
             'average_cost': 1, 'market_value': 2},
        ]

        rows = normalize_positions(raw, source='custodian', ingested_at=INGESTED_AT)

        assert len(rows) == 1
        assert rows[0]['quantity'] == 2

    def test_bad_number(self):
        with pytest.raises(NormalizationError, match='quantity'):
            normalize_positions(
                [{'account_id': 'A', 'security_id': 'S', 'date': '2024-01-31', 'quantity': 'ten'}],
                source='custodian', ingested_at=INGESTED_AT
            )

    def test_empty(self):
        assert normalize_positions([], source='custodian', ingested_at=INGESTED_AT) == []


class TestNormalizeTransactions:
    """Tests for normalize_transactions."""

    def test_aliases_and_generated_id(self):
        raw = [{
            'accountId': 'ACC-001',
            'transactionDate': '2024-01-19T15:30:00',
            'transactionType': 'sell',
            'securityId': 'SEC-AAPL',
            'quantity': '-40',
            'price': '160',
        }]

        rows = normalize_transactions(raw, source='custodian', ingested_at=INGESTED_AT)
        row = rows[0]

        assert row['type'] == 'SELL'
        assert row['date'] == date(2024, 1, 19)
        assert row['quantity'] == Decimal('40')
        assert len(row['transaction_id']) == 32
        validate_transaction_row(row)

    def test_generated_id_is_stable(self):
        raw = [{'account_id': 'ACC-001', 'date': '2024-01-10', 'type': 'DEPOSIT', 'amount': 5000}]

        first = normalize_transactions(raw, source='custodian', ingested_at=INGESTED_AT)
        second = normalize_transactions(raw, source='custodian', ingested_at=datetime(2024, 3, 1))

        assert first[0]['transaction_id'] == second[0]['transaction_id']
        assert first[0]['transaction_id'] == transaction_id_for(first[0])

    def test_explicit_id_kept(self):
        rows = normalize_transactions(
            [{'id': 99, 'account_id': 'A', 'date': '2024-01-10', 'type': 'WITHDRAWAL', 'amount': -10}],
            source='custodian', ingested_at=INGESTED_AT
        )

        assert rows[0]['transaction_id'] == '99'
        assert rows[0]['amount'] == Decimal('-10')

    def test_missing_type_without_id(self):
        with pytest.raises(NormalizationError):
            normalize_transactions(
                [{'account_id': 'A', 'date': '2024-01-10', 'amount': 10}],
                source='custodian', ingested_at=INGESTED_AT
            )

    def test_bad_date(self):
        with pytest.raises(NormalizationError, match='date'):
            normalize_transactions(
                [{'account_id': 'A', 'date': '01/10/2024', 'type': 'BUY'}],
                source='custodian', ingested_at=INGESTED_AT
            )


class TestNormalizePrices:
    """Tests for normalize_prices."""

    def test_ohlcv_headers(self):
        raw = [{
            'security_id': 'SEC-AAPL', 'Date': '2024-01-31', 'Open': 184.0, 'High': 186.5,
            'Low': 183.2, 'Close': 185.0, 'Volume': 52000000.0,
        }]

        rows = normalize_prices(raw, source='vendor', ingested_at=INGESTED_AT)

        assert rows[0]['close'] == Decimal('185.0')
        assert rows[0]['volume'] == 52000000
        validate_price_row(rows[0])

    def test_correction_keeps_last(self):
        raw = [
            {'security_id': 'S', 'date': '2024-01-31', 'close': 10},
            {'security_id': 'S', 'date': '2024-01-31', 'close': 11},
        ]

        rows = normalize_prices(raw, source='vendor', ingested_at=INGESTED_AT)

        assert len(rows) == 1
        assert rows[0]['close'] == 11
        assert rows[0]['volume'] is None


class TestNormalizeSecurities:
    """Tests for normalize_securities."""

    def test_canonical_labels(self):
        rows = normalize_securities(
            [{'securityId': 'SEC-BND', 'ticker': 'bnd', 'name': 'Total Bond ETF',
              'assetClass': 'Fixed Income', 'currency': 'usd'}],
            ingested_at=INGESTED_AT
        )

        row = rows[0]
        assert row['id'] == 'SEC-BND'
        assert row['symbol'] == 'BND'
        assert row['asset_class'] == 'FIXED_INCOME'
        assert row['currency'] == 'USD'
        validate_security_row(row)

    def test_currency_default(self):
        rows = normalize_securities([{'id': 'X', 'symbol': 'X'}], ingested_at=INGESTED_AT)

        assert rows[0]['currency'] == 'USD'
        assert rows[0]['asset_class'] is None
