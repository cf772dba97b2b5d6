from sqlalchemy import BigInteger, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from climbnotes.database import Base


class SyncRowRecord(Base):
    """Authoritative copy of one synced entity (or its tombstone) for one user."""

    __tablename__ = "sync_rows"

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    sync_key: Mapped[str] = mapped_column(String(1024), nullable=False)
    record_type: Mapped[str] = mapped_column(String(32), nullable=False)

    gym_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    route_id: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    attempt_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    rope_number: Mapped[str | None] = mapped_column(String(64), nullable=True)
    color: Mapped[str | None] = mapped_column(String(64), nullable=True)
    set_date: Mapped[str | None] = mapped_column(String(32), nullable=True)
    grade: Mapped[str | None] = mapped_column(String(16), nullable=True)
    climb_date: Mapped[str | None] = mapped_column(String(32), nullable=True)
    attempt_index: Mapped[str | None] = mapped_column(String(16), nullable=True)
    climb_style: Mapped[str | None] = mapped_column(String(32), nullable=True)
    completion_style: Mapped[str | None] = mapped_column(String(32), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[str | None] = mapped_column(String(32), nullable=True)

    # Server write time (drives pull cursors)
    updated_at: Mapped[str] = mapped_column(String(32), nullable=False)
    updated_at_ms: Mapped[int] = mapped_column(BigInteger, nullable=False)

    # Client edit time (drives conflict detection)
    client_updated_at: Mapped[str | None] = mapped_column(String(32), nullable=True)
    client_updated_at_ms: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    __table_args__ = (
        UniqueConstraint("user_id", "sync_key", name="uq_sync_rows_user_sync_key"),
        Index("idx_sync_rows_user_updated", "user_id", "updated_at_ms", "sync_key"),
    )
