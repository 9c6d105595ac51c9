"""Admin REST API for loan and clinical-operations entities."""

__version__ = "1.0.0"
