from sqlalchemy import Column, Integer, String, Boolean, DateTime, Text, ForeignKey, Enum, JSON
from sqlalchemy.sql import func
from database import Base
import enum

class NotificationType(str, enum.Enum):
    # Customer notifications
    DRIVER_ASSIGNED = "driver_assigned"
    ORDER_DELIVERED = "order_delivered"
    ORDER_CANCELLED = "order_cancelled"

    # Driver notifications
    ORDER_ASSIGNED = "order_assigned"
    ORDER_UNASSIGNED = "order_unassigned"

NOTIFICATION_TITLES = {
    NotificationType.DRIVER_ASSIGNED: "Driver assigned",
    NotificationType.ORDER_DELIVERED: "Order delivered",
    NotificationType.ORDER_CANCELLED: "Order cancelled",
    NotificationType.ORDER_ASSIGNED: "New delivery assigned",
    NotificationType.ORDER_UNASSIGNED: "Delivery cancelled",
}

NOTIFICATION_MESSAGES = {
    NotificationType.DRIVER_ASSIGNED: "A driver has been assigned to your order #{order_id}.",
    NotificationType.ORDER_DELIVERED: "Your order #{order_id} has been delivered. Amount due: {amount}.",
    NotificationType.ORDER_CANCELLED: "Your order #{order_id} has been cancelled.",
    NotificationType.ORDER_ASSIGNED: "Order #{order_id} ({vehicle_type}, {distance_km} km) has been assigned to you.",
    NotificationType.ORDER_UNASSIGNED: "Order #{order_id} was cancelled and removed from your queue.",
}

class Notification(Base):
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, nullable=False, index=True)
    role = Column(String(20), nullable=False, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=True)
    type = Column(Enum(NotificationType), nullable=False)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    extra_data = Column(JSON, nullable=True)
    is_read = Column(Boolean, default=False, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    def __repr__(self):
        return f"<Notification {self.type} for user {self.user_id}>"
