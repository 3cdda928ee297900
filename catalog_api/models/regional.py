"""
Catalog Backend — Regional SQLAlchemy Model
===========================================

What:  ORM model for the `regionais` table, the local mirror of the external
       regional reference list.
Why:   The reconciler keeps history: a row is never deleted, and a rename is
       recorded as a new row rather than an in-place update.
Who:   Written only by the sync applier (through RegionalTransaction);
       read by the planner and the /api/v1/regionais routes.

Table Design Rationale:
    - id: surrogate integer key; one external_id can own many historical rows
    - external_id: NOT unique; at most one row per external_id is active
    - active: the currently effective version for its external_id
    - created_at / updated_at: UTC, set by the application on insert / inactivation

Indexes:
    idx_regionais_external_id_active  (external_id, active)  planner lookups
    idx_regionais_active              (active)               active list
    uq_regionais_external_id_active   UNIQUE (external_id) WHERE active
        The database itself refuses a second active row for the same key, so a
        buggy plan fails the transaction instead of corrupting the mirror.
"""

from datetime import datetime, timezone

from sqlalchemy import BigInteger, Boolean, DateTime, Index, Integer, String, text
from sqlalchemy.orm import Mapped, mapped_column

from catalog_api.database import Base

# Upper bound of the name column; the fetcher rejects longer upstream names.
NAME_MAX_LENGTH = 200


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class RegionalRecord(Base):
    """
    One version of a regional as seen from the upstream.

    Lifecycle:
        1. Inserted with active=True (new upstream key, or replacement after a rename)
        2. Flipped to active=False exactly once (key disappeared, or name changed)
        3. Never reactivated, never deleted
    """

    __tablename__ = "regionais"

    id: Mapped[int] = mapped_column(
        Integer,
        primary_key=True,
        autoincrement=True,
        comment="Surrogate key, unique per row",
    )

    external_id: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        comment="Identifier from the upstream system (not unique across history)",
    )

    name: Mapped[str] = mapped_column(
        String(NAME_MAX_LENGTH),
        nullable=False,
        comment="Regional label as published by the upstream",
    )

    active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        server_default=text("true"),
        comment="Whether this row is the effective version for its external_id",
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utc_now,
        server_default=text("CURRENT_TIMESTAMP"),
        comment="When this version was inserted (UTC)",
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utc_now,
        onupdate=utc_now,
        server_default=text("CURRENT_TIMESTAMP"),
        comment="Last mutation of this row (UTC)",
    )

    __table_args__ = (
        Index("idx_regionais_external_id_active", external_id, active),
        Index("idx_regionais_active", active),
        Index(
            "uq_regionais_external_id_active",
            external_id,
            unique=True,
            postgresql_where=text("active"),
            sqlite_where=text("active"),
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<RegionalRecord(id={self.id}, external_id={self.external_id}, "
            f"name='{self.name}', active={self.active})>"
        )
