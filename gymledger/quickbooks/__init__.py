"""QuickBooks Online provider adapter."""
