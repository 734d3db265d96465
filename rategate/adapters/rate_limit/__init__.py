"""Rate limiting and blocking adapters.

This package provides a small abstraction layer so the admission façade can
run against Redis in production and against an in-memory store in tests
without changing the API layer.
"""
