"""
Feature modules live under this package.

Each module owns its models, service layer and JSON routes, and reuses
platform primitives (identity, role gating, DB session, domain events).
"""
