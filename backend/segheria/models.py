"""SQLAlchemy models."""
from sqlalchemy import (
    Boolean, Column, String, Integer, DateTime, Text,
    ForeignKey, CheckConstraint, Index,
)
from sqlalchemy.dialects.postgresql import UUID, JSONB
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import uuid
from .database import Base


USER_ROLES = ("admin", "collaboratore", "operatore")
REGISTRATION_STATUSES = ("pending", "active")
LINE_STATUSES = ("production", "delivery", "ready_for_delivery", "documented", "completed")


class User(Base):
    """Application user; credentials and first-access state live on the row."""
    __tablename__ = "users"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    email = Column(String(255), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=False)
    role = Column(String(50), nullable=False, default="collaboratore", index=True)
    password_hash = Column(String(255), nullable=False)
    password_changed_at = Column(DateTime(timezone=True), nullable=True)
    # Monotonically increasing version used to revoke previously issued tokens.
    token_version = Column(Integer, nullable=False, default=0)
    email_confirmed = Column(Boolean, nullable=False, default=True)
    registration_status = Column(String(20), nullable=False, default="pending")
    # Plain one-time code kept for display to administrators while pending.
    otp = Column(String(32), nullable=True)
    otp_expires_at = Column(DateTime(timezone=True), nullable=True)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint(role.in_(USER_ROLES), name="chk_user_role"),
        CheckConstraint(
            registration_status.in_(REGISTRATION_STATUSES),
            name="chk_user_registration_status",
        ),
    )


class Client(Base):
    """Customer (ragione sociale / partita IVA)."""
    __tablename__ = "clients"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    company_name = Column(String(255), nullable=False, index=True)
    vat_number = Column(String(50), nullable=True)
    email = Column(String(255), nullable=True)
    phone = Column(String(50), nullable=True)
    addresses = Column(JSONB, nullable=False, default=list)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    products = relationship("ClientProduct", back_populates="client", cascade="all, delete-orphan")
    orders = relationship("Order", back_populates="client")


class ClientProduct(Base):
    """Catalog entry scoped to one client."""
    __tablename__ = "client_products"

    id = Column(Integer, primary_key=True, autoincrement=True)
    client_id = Column(UUID(as_uuid=True), ForeignKey("clients.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    dimensions = Column(String(255), nullable=True)
    heat_treated = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    client = relationship("Client", back_populates="products")
    order_lines = relationship("OrderLine", back_populates="product")


class Order(Base):
    """Customer order; its product rows are OrderLines."""
    __tablename__ = "orders"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    order_number = Column(String(50), unique=True, nullable=False, index=True)
    client_id = Column(UUID(as_uuid=True), ForeignKey("clients.id"), nullable=False, index=True)
    ordered_at = Column(DateTime(timezone=True), server_default=func.now())
    note = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=True, onupdate=func.now())

    client = relationship("Client", back_populates="orders")
    lines = relationship("OrderLine", back_populates="order", cascade="all, delete-orphan")


class OrderLine(Base):
    """One (order, client product) pairing with its own status and payload.

    payload keys: quantity, deliveryDate, note, deliveries[{data, note}],
    completedAt{timestamp, user}, productionConfirmedAt{timestamp, user}.
    """
    __tablename__ = "order_lines"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(UUID(as_uuid=True), ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("client_products.id"), nullable=False, index=True)
    status = Column(String(30), nullable=False, default="production", index=True)
    group_code = Column(String(64), nullable=True)
    payload = Column(JSONB, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint(status.in_(LINE_STATUSES), name="chk_order_line_status"),
        Index("idx_order_lines_group_code", "group_code", postgresql_where=(group_code != None)),  # noqa: E711
    )

    order = relationship("Order", back_populates="lines")
    product = relationship("ClientProduct", back_populates="order_lines")


class AuditEvent(Base):
    """Append-only action log."""
    __tablename__ = "audit_events"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    action = Column(String(64), nullable=False, index=True)
    entity_type = Column(String(32), nullable=False)
    entity_id = Column(String(64), nullable=True, index=True)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    user_name = Column(String(255), nullable=True)
    details = Column(JSONB, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
