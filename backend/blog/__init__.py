"""Application package for the blog backend.

This package exposes the service, repository and model modules used by
the FastAPI application in `blog.main`. It is intentionally
lightweight; individual modules contain the concrete implementations
and documentation.
"""
