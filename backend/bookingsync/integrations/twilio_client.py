from typing import Optional

from twilio.rest import Client

from bookingsync.core.config import Settings, get_settings
from bookingsync.core.errors import ConfigurationError


class TwilioClient:
    def __init__(self, settings: Optional[Settings] = None):
        settings = settings or get_settings()
        self.account_sid = settings.twilio_account_sid
        self.auth_token = settings.twilio_auth_token
        self.phone_number = settings.twilio_phone_number
        if not self.account_sid or not self.auth_token:
            raise ConfigurationError("Twilio credentials are not configured")
        self.client = Client(self.account_sid, self.auth_token)

    def send_sms(self, to: str, message: str, from_: str | None = None):
        """Send an SMS to the specified phone number"""
        from_number = from_ or self.phone_number
        if not from_number:
            raise ConfigurationError("Missing Twilio from number for SMS.")
        return self.client.messages.create(to=to, from_=from_number, body=message)


_twilio_client: Optional[TwilioClient] = None


def get_twilio_client() -> TwilioClient:
    """Shared client, created on first send so import never needs credentials."""
    global _twilio_client
    if _twilio_client is None:
        _twilio_client = TwilioClient()
    return _twilio_client
