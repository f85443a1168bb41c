from sqlalchemy import Column, Integer, Float, String, Text, DateTime, ForeignKey, JSON, Enum as SQLEnum
from sqlalchemy.orm import relationship
from datetime import datetime
from database import Base
import enum

class VehicleType(str, enum.Enum):
    TWO_WHEELER = "two-wheeler"
    THREE_WHEELER = "three-wheeler"
    HEAVY_TRUCK = "heavy-truck"

class OrderStatus(str, enum.Enum):
    CREATED = "created"
    ASSIGNED = "assigned"
    ACCEPTED = "accepted"
    PICKED_UP = "picked_up"
    IN_TRANSIT = "in_transit"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"

# Statuses during which a driver is actively working the order
ACTIVE_STATUSES = (
    OrderStatus.ASSIGNED,
    OrderStatus.ACCEPTED,
    OrderStatus.PICKED_UP,
    OrderStatus.IN_TRANSIT,
)

class ProofType(str, enum.Enum):
    PICKUP = "pickup"
    DELIVERY = "delivery"
    OTHER = "other"

def _enum_values(enum_cls):
    return [member.value for member in enum_cls]

class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    customer_id = Column(Integer, nullable=False, index=True)
    driver_id = Column(Integer, ForeignKey("drivers.id"), nullable=True, index=True)
    vehicle_type = Column(SQLEnum(VehicleType, values_callable=_enum_values), nullable=False)

    from_address = Column(String(500), nullable=True)
    from_latitude = Column(Float, nullable=True)
    from_longitude = Column(Float, nullable=True)
    to_address = Column(String(500), nullable=True)
    to_latitude = Column(Float, nullable=True)
    to_longitude = Column(Float, nullable=True)

    distance_km = Column(Float, nullable=False, default=0)
    price = Column(Float, nullable=False, default=0)
    weight_kg = Column(Float, nullable=True)
    contact_number = Column(String(20), nullable=True)

    actual_distance_km = Column(Float, nullable=True)
    adjusted_price = Column(Float, nullable=True)
    fare_breakdown = Column(JSON, nullable=True)

    status = Column(SQLEnum(OrderStatus, values_callable=_enum_values), nullable=False, default=OrderStatus.CREATED, index=True)
    rating = Column(Integer, nullable=True)
    review = Column(Text, nullable=True)

    version = Column(Integer, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    # Relationships
    driver = relationship("Driver", back_populates="orders")
    status_history = relationship(
        "OrderStatusHistory",
        back_populates="order",
        order_by="OrderStatusHistory.id",
        cascade="all, delete-orphan",
    )
    proofs = relationship(
        "OrderProof",
        back_populates="order",
        order_by="OrderProof.id",
        cascade="all, delete-orphan",
    )

    # Concurrent writers racing on the same row lose with StaleDataError
    __mapper_args__ = {"version_id_col": version}

    def __repr__(self):
        return f"<Order(id={self.id}, status={self.status}, driver_id={self.driver_id})>"

class OrderStatusHistory(Base):
    """Append-only audit trail, one row per accepted status change"""
    __tablename__ = "order_status_history"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    status = Column(SQLEnum(OrderStatus, values_callable=_enum_values), nullable=False)
    actor_id = Column(String(50), nullable=False)
    actor_role = Column(String(20), nullable=False)
    note = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    order = relationship("Order", back_populates="status_history")

class OrderProof(Base):
    __tablename__ = "order_proofs"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    url = Column(String(500), nullable=False)
    proof_type = Column(SQLEnum(ProofType, values_callable=_enum_values), nullable=False, default=ProofType.OTHER)
    submitted_by = Column(String(50), nullable=False)
    note = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    order = relationship("Order", back_populates="proofs")
