"""Core utilities and shared application primitives.

Modules in this package should be framework-agnostic where possible and
focused on configuration, error taxonomy, validation, and small reusable
helpers.
"""
