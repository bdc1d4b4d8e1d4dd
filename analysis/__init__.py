"""
Analysis Engine Module

Builds investment reports for client accounts from stored data:
- AUM reconciliation (BOP, flows, market P&L, EOP)
- Time-weighted returns, gross and net of fees
- Holdings, weights, concentration and attribution
- Management, performance and tiered fees
- Tax lots, realized P&L and wash sales
- Quality control checks
"""

__version__ = "0.0.1"
