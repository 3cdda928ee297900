"""
Catalog Backend — Application Package Initializer
=================================================

What: Marks the `catalog_api` directory as a Python package.
Why:  Enables module imports like `from catalog_api.config import settings`.
Who:  Used implicitly by Python's import system and explicitly by Alembic, pytest, and uvicorn.

Architecture Note:
    The backend follows the same layered split for every feature:

    ┌─────────────────────────────────────┐
    │           Routes (API Layer)        │  ← HTTP concerns only
    ├─────────────────────────────────────┤
    │     Services (Sync + Store Logic)   │  ← Fetch, plan, apply, schedule
    ├─────────────────────────────────────┤
    │       Models & Schemas (Data)       │  ← SQLAlchemy ORM + Pydantic
    ├─────────────────────────────────────┤
    │        Database (Persistence)       │  ← Async SQLAlchemy sessions
    └─────────────────────────────────────┘

    The regional reconciliation engine lives entirely in the services layer:
    upstream_client → sync_planner → sync_applier, driven by regional_sync.
    Routes only expose it; they never touch the planner or the store directly.
"""

__version__ = "1.0.0"
