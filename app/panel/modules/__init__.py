"""
Feature modules live under this package.

Each module owns its routes, models and service functions, while reusing
platform primitives (auth, RBAC, audit, DB session) from app.panel.
"""
