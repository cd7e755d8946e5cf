"""Gym Ledger - accounting synchronization backend."""
