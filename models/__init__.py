from models.actor import Actor, ActorRole, SYSTEM_ACTOR
from models.order import Order, OrderStatus, OrderStatusHistory, OrderProof, ProofType, VehicleType
from models.driver import Driver
from models.message import ChatMessage
from models.notification import Notification, NotificationType
from models.log import SystemLog, ErrorLog, UserActivityLog, LogLevel, LogCategory

__all__ = ["Actor", "ActorRole", "SYSTEM_ACTOR", "Order", "OrderStatus", "OrderStatusHistory", "OrderProof", "ProofType", "VehicleType", "Driver", "ChatMessage", "Notification", "NotificationType", "SystemLog", "ErrorLog", "UserActivityLog", "LogLevel", "LogCategory"]
