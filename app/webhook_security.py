"""
Webhook Security Module

Verification helpers for Google Calendar push notifications.
Google does not sign notifications; the only shared secret is the channel
token set when the channel is registered and echoed back in X-Goog-Channel-Token.
"""

import hmac
import logging
from typing import Optional

logger = logging.getLogger(__name__)


def constant_time_compare(a: str, b: str) -> bool:
    """
    Compare two strings in constant time to prevent timing attacks.
    Uses hmac.compare_digest which is designed for this purpose.
    """
    if not a or not b:
        return False
    return hmac.compare_digest(a, b)


def verify_channel_token(received: Optional[str], expected: Optional[str], channel_id: Optional[str] = None) -> bool:
    """
    Check the channel token of a push notification.

    Any token is accepted when no expected token is configured.
    """
    if not expected:
        return True

    if constant_time_compare(received or "", expected):
        return True

    logger.warning(f"🚫 Calendar notification with invalid channel token (channel {channel_id})")
    return False
