"""
Products API - Product Catalog Service

HTTP service for creating, fetching and listing products, instrumented with
OpenTelemetry tracing and metrics and trace-correlated structured logs.
"""

__version__ = "1.0.0"
