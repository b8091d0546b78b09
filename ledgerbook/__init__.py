"""
Ledgerbook

Multi-tenant bookkeeping backend with double-entry voucher posting,
mock bank account transactions, GST computation and Tally-compatible
Excel import/export. All monetary values use Decimal precision.
"""

__version__ = "1.0.0"
