"""Bearer-token authentication for admin endpoints."""
