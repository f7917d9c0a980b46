"""Library Catalog Client - Services Package

This package contains the transport modules used by the coordinators:
- Pooled async HTTP client abstraction
- Typed catalog REST API endpoints
"""
