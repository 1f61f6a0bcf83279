"""
API Package

FastAPI REST API for QueryLens.

Subpackages:
- routers: API route handlers (chat, permissions, schema)

Main module:
- main: FastAPI application setup
"""
