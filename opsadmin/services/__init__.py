"""Clients for the external entity platform and the dashboard aggregation."""
