"""Ledger services: each owns its transaction and commits or rolls back."""
