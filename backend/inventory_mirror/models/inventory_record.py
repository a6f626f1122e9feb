"""InventoryRecord model for the mirrored upstream catalog."""

from datetime import UTC, datetime
from typing import Any

from sqlalchemy import JSON, BigInteger, DateTime, Float, Index, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from inventory_mirror.database import Base


class InventoryRecord(Base):
    """
    One item of the mirrored catalog.

    `id` is the upstream identifier and the upsert key, so re-ingesting a
    page rewrites the same rows instead of adding new ones.
    """

    __tablename__ = "inventory_records"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)

    # Filterable attributes
    make: Mapped[str] = mapped_column(String(100), nullable=False, server_default="", index=True)
    model: Mapped[str | None] = mapped_column(String(100), index=True)
    year: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")
    fuel: Mapped[str | None] = mapped_column(String(50))
    transmission: Mapped[str | None] = mapped_column(String(50))
    color: Mapped[str | None] = mapped_column(String(50))
    body_type: Mapped[str | None] = mapped_column(String(50))
    condition: Mapped[str | None] = mapped_column(String(50))

    # Identification
    vin: Mapped[str | None] = mapped_column(String(32))
    lot_number: Mapped[str | None] = mapped_column(String(50))

    # Sort keys
    price_cents: Mapped[int | None] = mapped_column(BigInteger)
    mileage: Mapped[int | None] = mapped_column(Integer)
    rank_score: Mapped[float | None] = mapped_column(Float)

    images: Mapped[list[str] | None] = mapped_column(JSON)
    raw_payload: Mapped[dict[str, Any] | None] = mapped_column(JSON)

    # Metadata. Timestamps are set in Python so every dialect stores them in
    # the same format the keyset predicate binds.
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
        server_default=func.now(),
        nullable=False,
    )

    __table_args__ = (
        # Keyset pagination indexes: (sort key, id) for every sortable column
        Index("idx_inventory_price_id", price_cents, id),
        Index("idx_inventory_year_id", year, id),
        Index("idx_inventory_mileage_id", mileage, id),
        Index("idx_inventory_make_id", make, id),
        Index("idx_inventory_rank_id", rank_score, id),
        Index("idx_inventory_created_id", created_at, id),
    )

    def __repr__(self) -> str:
        return f"<InventoryRecord {self.id}: {self.year} {self.make} {self.model}>"
