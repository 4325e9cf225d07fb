"""
Nova Banking Ledger

Retail banking backend: accounts, transfers, payments, account and fund
requests with administrator review. Every balance mutation runs as a single
atomic unit of work with an audit trail.
"""

__version__ = "1.0.0"
