"""Synthetic workload for the ledger service."""
