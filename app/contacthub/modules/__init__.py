"""
Feature modules live under this package.

Each module owns its models, services and JSON routes, and reuses the platform
primitives (auth, RBAC, changelog, cache, DB session).
"""
