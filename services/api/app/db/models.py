from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class CartSession(Base):
    """One create or edit flow, from the first item added to the final save.

    The cart, form fields and stock book are stored as JSON so a session survives
    between requests. `snapshot_json` and `persisted_json` are only used by edit
    sessions: the items as loaded, and the last saved (quantity, unit price) per
    persisted order item.

    `saving` is claimed with a single conditional UPDATE for the length of one save.
    A claim older than FLORIST_SAVE_LOCK_TIMEOUT seconds counts as abandoned.
    """

    __tablename__ = "cart_sessions"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    kind: Mapped[str] = mapped_column(String, nullable=False)  # CREATE | EDIT
    status: Mapped[str] = mapped_column(String, nullable=False, default="OPEN")

    location_id: Mapped[str] = mapped_column(String, nullable=False)
    order_id: Mapped[str | None] = mapped_column(String, nullable=True)
    order_status: Mapped[str] = mapped_column(String, nullable=False, default="Draft")

    cart_json: Mapped[dict] = mapped_column(JSON, nullable=False)
    fields_json: Mapped[dict] = mapped_column(JSON, nullable=False)
    stock_json: Mapped[dict] = mapped_column(JSON, nullable=False)
    snapshot_json: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    persisted_json: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)

    saving: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    saving_started_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)


class EventLog(Base):
    __tablename__ = "event_log"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    session_id: Mapped[str | None] = mapped_column(ForeignKey("cart_sessions.id"), nullable=True)
    order_id: Mapped[str | None] = mapped_column(String, nullable=True)

    event_type: Mapped[str] = mapped_column(String, nullable=False)
    event_payload_json: Mapped[dict] = mapped_column(JSON, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
