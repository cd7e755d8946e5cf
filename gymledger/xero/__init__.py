"""Xero provider adapter."""
