"""
Permissions Service package for the clinic staff portal.

This package decides whether a principal (staff or doctor account) may
perform an action on a resource. It provides:

- app.main: PermissionEngine, the per-session composition root.
- app.rules: Data model, role baseline table and the policy resolver.
- app.cache: Effective-set cache with freshness window and invalidation.
- app.store: Boundary to the external permission store.
- app.services: Permission catalog, assignments and statistics.
- app.query: Permission gates and navigation tree filtering.

Guidelines:
- Queries are synchronous and served from the in-memory snapshot.
- Only snapshot loads and administrative mutations await the store.
- Every failure on the query path resolves to DENY.
"""
