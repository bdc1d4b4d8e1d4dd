"""
Data Ingestion Module

Normalizes and validates custodian and market data exports:
- Positions and transactions per account
- Daily security prices
- Security reference data
"""

__version__ = "0.0.1"
