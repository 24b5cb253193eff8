"""Backend API of the habitat restoration project tracker.

The service tracks treatment units (mapped features of a restoration
project) and the treatments applied to them year by year.

- Request-scoped PostgreSQL sessions drawn from a bounded pool, each bound
  to the caller's identity for row-level authorization
- Zipped shapefile ingestion through ogr2ogr, with per-feature validation
  against the feature type and treatment type vocabularies
- Idempotent loading of treatment units and yearly treatments
- FastAPI routers with dependency injection for testability

See module sub-docstrings for details.
"""
