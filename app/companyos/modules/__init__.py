"""
Feature modules live under this package.

Each module owns its blueprint, models and service layer while reusing the
platform primitives (auth, RBAC, audit, storage, DB session).
"""
