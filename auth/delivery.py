"""
auth/delivery.py -- The out-of-band channel that carries codes and welcome messages.

The identity core only needs to know whether a send succeeded. SMTP, SMS
gateways and templates live behind this interface. Implementations return
False on failure rather than raising; the service turns False into
DeliveryFailed.

LoggingDelivery is the development implementation. It records that a message
would have been sent, masking the destination and never writing the code
itself to the log.
"""

from __future__ import annotations

import logging
from typing import Protocol

logger = logging.getLogger("identity.auth.delivery")


class Delivery(Protocol):
    def send_verification_code(self, destination: str, code: str) -> bool: ...

    def send_welcome(self, destination: str) -> bool: ...


def mask_destination(destination: str) -> str:
    """a.person@example.com -> a***@example.com, +15551234567 -> ***4567."""
    if "@" in destination:
        local, _, domain = destination.partition("@")
        return f"{local[:1]}***@{domain}"
    return f"***{destination[-4:]}"


class LoggingDelivery:
    """Pretend-sender for local development. Always succeeds."""

    def send_verification_code(self, destination: str, code: str) -> bool:
        logger.info("Verification code dispatched to %s", mask_destination(destination))
        return True

    def send_welcome(self, destination: str) -> bool:
        logger.info("Welcome message dispatched to %s", mask_destination(destination))
        return True
