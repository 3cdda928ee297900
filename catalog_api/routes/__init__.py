# Routes package init
"""
Catalog Backend — API Routes Package
====================================

Route Inventory:
    - regionais.py:  GET  /api/v1/regionais         (active regionais)
                     GET  /api/v1/regionais/all     (all versions)
                     POST /api/v1/regionais/sync    (on-demand reconciliation)
    - health.py:     GET  /health, /health/liveness, /health/readiness

Routes stay thin: resolve dependencies, call a service, return a schema.
Synchronization logic lives in catalog_api.services.
"""
