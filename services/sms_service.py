"""
SMS Notification Service using Twilio
Sends order completion texts to the contact number on the order
"""
from typing import Optional
import logging

import requests
from twilio.http.http_client import TwilioHttpClient
from twilio.rest import Client
from twilio.base.exceptions import TwilioException

from config import settings

logger = logging.getLogger(__name__)

class SMSService:
    """Service to send SMS notifications via Twilio"""

    @staticmethod
    def is_configured() -> bool:
        """Check if Twilio is properly configured"""
        return all([settings.twilio_account_sid, settings.twilio_auth_token, settings.twilio_phone_number])

    @staticmethod
    def format_number(to_number: str) -> Optional[str]:
        """Normalise to E.164, assuming the default country code when no prefix is given"""
        if not to_number:
            return None
        if to_number.startswith("+"):
            return to_number
        digits = "".join(ch for ch in to_number if ch.isdigit())
        if len(digits) < 10:
            return None
        return f"{settings.default_country_code}{digits}"

    @staticmethod
    def send_sms(to_number: str, message: str) -> bool:
        """
        Send SMS to a phone number
        Returns True if successful, False otherwise
        """
        if not SMSService.is_configured():
            logger.info("Twilio not configured. Skipping SMS.")
            return False

        formatted_number = SMSService.format_number(to_number)
        if not formatted_number:
            logger.warning(f"Invalid phone number: {to_number}")
            return False

        try:
            client = Client(
                settings.twilio_account_sid,
                settings.twilio_auth_token,
                http_client=TwilioHttpClient(timeout=settings.sms_timeout_seconds),
            )
            sms = client.messages.create(
                body=message,
                from_=settings.twilio_phone_number,
                to=formatted_number
            )
            logger.info(f"SMS sent to {formatted_number}: {sms.sid}")
            return True
        except (TwilioException, requests.RequestException) as e:
            logger.error(f"Failed to send SMS to {formatted_number}: {e}")
            return False

    @staticmethod
    def send_delivery_completed(order_id: int, to_number: Optional[str]) -> bool:
        if not to_number:
            return False
        message = f"Your order {order_id} has been delivered. Thank you for choosing us!"
        return SMSService.send_sms(to_number, message)
