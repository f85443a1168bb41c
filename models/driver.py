from sqlalchemy import Column, Integer, Float, String, Boolean, DateTime, Enum as SQLEnum
from sqlalchemy.orm import relationship
from datetime import datetime
from database import Base
from models.order import VehicleType

class Driver(Base):
    __tablename__ = "drivers"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, unique=True, index=True, nullable=False)

    # Operational state
    is_online = Column(Boolean, nullable=False, default=False, index=True)
    is_active = Column(Boolean, nullable=False, default=False, index=True)
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)
    last_seen_at = Column(DateTime, nullable=True, index=True)  # heartbeat

    vehicle_type = Column(SQLEnum(VehicleType, values_callable=lambda e: [m.value for m in e]), nullable=True)
    capacity_kg = Column(Float, nullable=False, default=50)

    full_name = Column(String(100), nullable=True)
    vehicle_number = Column(String(50), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    orders = relationship("Order", back_populates="driver")

    @property
    def has_location(self) -> bool:
        return self.latitude is not None and self.longitude is not None

    def __repr__(self):
        return f"<Driver(id={self.id}, user_id={self.user_id}, online={self.is_online}, active={self.is_active})>"
