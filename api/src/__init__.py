"""HTTP service bootstrap.

This package wires a FastAPI application (security headers, CORS, body
parsing, fallback error handling) around a mounted route collaborator and
starts the listener once MongoDB is reachable.
"""

__version__ = "1.0.0"
