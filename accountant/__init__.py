"""
Celo Accountant

Derives a versioned ledger of address-level credits and debits from
on-chain events and provides:
- Epoch processing with revision-scoped idempotent loads
- Concurrent collection across event categories
- Reconciliation against on-chain balances
- HTTP and CLI triggers for processing, backfills and status
"""

__version__ = "0.1.0"
