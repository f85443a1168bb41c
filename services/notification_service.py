from sqlalchemy.orm import Session
from models import Notification, NotificationType, ActorRole, Order, Driver
from models.notification import NOTIFICATION_TITLES, NOTIFICATION_MESSAGES
from services.sms_service import SMSService
from utils.distance import format_distance
from typing import Optional, Dict, Any, List
import logging

logger = logging.getLogger(__name__)

class NotificationService:
    """Service for creating and reading in-app notifications"""

    @staticmethod
    def render(notification_type: NotificationType, metadata: Optional[Dict[str, Any]] = None) -> tuple:
        title = NOTIFICATION_TITLES.get(notification_type, f"Notification: {notification_type.value}")
        template = NOTIFICATION_MESSAGES.get(notification_type, "")
        message = template
        if metadata and template:
            try:
                message = template.format(**metadata)
            except KeyError:
                # Missing key in metadata, use template as-is
                pass
        return title, message

    @staticmethod
    def create_notification(
        db: Session,
        user_id: int,
        role: ActorRole,
        notification_type: NotificationType,
        order_id: Optional[int] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> Notification:
        title, message = NotificationService.render(notification_type, metadata)
        notification = Notification(
            user_id=user_id,
            role=role.value if hasattr(role, "value") else str(role),
            order_id=order_id,
            type=notification_type,
            title=title,
            message=message,
            extra_data=metadata,
            is_read=False
        )
        db.add(notification)
        db.commit()
        db.refresh(notification)
        return notification

    @staticmethod
    def get_user_notifications(db: Session, user_id: int, unread_only: bool = False, limit: int = 50) -> List[Notification]:
        query = db.query(Notification).filter(Notification.user_id == user_id)
        if unread_only:
            query = query.filter(Notification.is_read == False)
        return query.order_by(Notification.created_at.desc(), Notification.id.desc()).limit(limit).all()

    @staticmethod
    def get_unread_count(db: Session, user_id: int) -> int:
        return db.query(Notification).filter(
            Notification.user_id == user_id,
            Notification.is_read == False
        ).count()

    @staticmethod
    def mark_as_read(db: Session, notification_id: int, user_id: int) -> bool:
        notification = db.query(Notification).filter(
            Notification.id == notification_id,
            Notification.user_id == user_id
        ).first()
        if not notification:
            return False
        notification.is_read = True
        db.commit()
        return True

class OrderNotifier:
    """
    Turns order events into user-facing messages.
    Called after the order change is committed; failures are the caller's to log.
    """

    def __init__(self, db: Session):
        self.db = db

    def _driver_user_id(self, driver_id: Optional[int]) -> Optional[int]:
        if driver_id is None:
            return None
        driver = self.db.query(Driver).filter(Driver.id == driver_id).first()
        return driver.user_id if driver else None

    def order_assigned(self, order: Order):
        NotificationService.create_notification(
            self.db,
            user_id=order.customer_id,
            role=ActorRole.CUSTOMER,
            notification_type=NotificationType.DRIVER_ASSIGNED,
            order_id=order.id,
            metadata={"order_id": order.id, "driver_id": order.driver_id},
        )
        driver_user_id = self._driver_user_id(order.driver_id)
        if driver_user_id is not None:
            NotificationService.create_notification(
                self.db,
                user_id=driver_user_id,
                role=ActorRole.DRIVER,
                notification_type=NotificationType.ORDER_ASSIGNED,
                order_id=order.id,
                metadata={
                    "order_id": order.id,
                    "vehicle_type": order.vehicle_type.value,
                    "distance_km": order.distance_km,
                    "distance": format_distance(order.distance_km or 0),
                },
            )

    def order_delivered(self, order: Order):
        amount = order.adjusted_price if order.adjusted_price is not None else order.price
        NotificationService.create_notification(
            self.db,
            user_id=order.customer_id,
            role=ActorRole.CUSTOMER,
            notification_type=NotificationType.ORDER_DELIVERED,
            order_id=order.id,
            metadata={"order_id": order.id, "amount": amount},
        )
        SMSService.send_delivery_completed(order.id, order.contact_number)

    def order_cancelled(self, order: Order):
        NotificationService.create_notification(
            self.db,
            user_id=order.customer_id,
            role=ActorRole.CUSTOMER,
            notification_type=NotificationType.ORDER_CANCELLED,
            order_id=order.id,
            metadata={"order_id": order.id},
        )
        driver_user_id = self._driver_user_id(order.driver_id)
        if driver_user_id is not None:
            NotificationService.create_notification(
                self.db,
                user_id=driver_user_id,
                role=ActorRole.DRIVER,
                notification_type=NotificationType.ORDER_UNASSIGNED,
                order_id=order.id,
                metadata={"order_id": order.id},
            )
