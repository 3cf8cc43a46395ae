"""Ledger derivation, loading and reconciliation."""
