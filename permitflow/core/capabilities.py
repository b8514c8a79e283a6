"""Injectable capabilities used by the core.

Each side effect the core can produce outside the store (activity logging,
mail delivery, push delivery) sits behind a small interface. Activity
logging and push fall back to no-op implementations; mail has no fallback,
so an unconfigured channel is visible to the caller. Wiring a real
implementation is a configuration choice made by the entry points.
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional, Protocol, Any, Dict

import aiosmtplib
from pywebpush import webpush, WebPushException

from permitflow.core.config import Settings

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Activity logging
# ---------------------------------------------------------------------------


class ActivityLogger(Protocol):
    def log(
        self,
        action: str,
        category: str,
        entity_type: Optional[str],
        entity_id: Optional[str],
        description: str,
    ) -> None:
        ...


class NullActivityLogger:
    def log(self, action, category, entity_type, entity_id, description) -> None:
        return None


class LoggingActivityLogger:
    """Writes activity records to the ``permitflow.activity`` logger."""
    
    def __init__(self, name: str = "permitflow.activity"):
        self._logger = logging.getLogger(name)
    
    def log(self, action, category, entity_type, entity_id, description) -> None:
        self._logger.info(
            "%s [%s] %s:%s %s",
            action,
            category,
            entity_type or "-",
            entity_id or "-",
            description,
        )


# ---------------------------------------------------------------------------
# Mail channel
# ---------------------------------------------------------------------------


class MailChannel(Protocol):
    def send(self, to_address: str, subject: str, body: str) -> bool:
        """Deliver one message. Returns False or raises on failure."""
        ...


class SmtpMailChannel:
    """Delivers HTML email over SMTP with a bounded timeout."""
    
    def __init__(self, settings: Settings):
        self.settings = settings
    
    def send(self, to_address: str, subject: str, body: str) -> bool:
        msg = MIMEMultipart("alternative")
        msg["From"] = f"{self.settings.smtp_from_name} <{self.settings.smtp_from_email}>"
        msg["To"] = to_address
        msg["Subject"] = subject
        msg.attach(MIMEText(body, "html"))
        
        asyncio.run(
            aiosmtplib.send(
                msg,
                hostname=self.settings.smtp_host,
                port=self.settings.smtp_port,
                username=self.settings.smtp_user,
                password=self.settings.smtp_password,
                start_tls=self.settings.smtp_use_tls,
                timeout=self.settings.mail_timeout,
            )
        )
        return True


def build_mail_channel(settings: Settings) -> Optional[MailChannel]:
    """SMTP channel, or None when no SMTP host is configured."""
    if not settings.smtp_host:
        return None
    return SmtpMailChannel(settings)


# ---------------------------------------------------------------------------
# Push transport
# ---------------------------------------------------------------------------


@dataclass
class PushTarget:
    """The parts of a stored subscription a transport needs."""
    
    endpoint: str
    p256dh: str
    auth: str


@dataclass
class PushResponse:
    """Outcome of a single delivery attempt as reported by the push service."""
    
    status_code: int
    reason: Optional[str] = None
    
    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300
    
    @property
    def gone(self) -> bool:
        """The push service no longer knows this endpoint."""
        return self.status_code in (404, 410)


class PushTransport(Protocol):
    def send(self, target: PushTarget, payload: str) -> PushResponse:
        """Attempt one delivery. Raises on transport-level failures."""
        ...


class NullPushTransport:
    def send(self, target: PushTarget, payload: str) -> PushResponse:
        logger.warning("Push transport not configured, skipping delivery")
        return PushResponse(status_code=204, reason="skipped")


class WebPushTransport:
    """Web Push (RFC 8030) delivery with VAPID authentication."""
    
    def __init__(self, settings: Settings):
        self.settings = settings
    
    def send(self, target: PushTarget, payload: str) -> PushResponse:
        subscription_info: Dict[str, Any] = {
            "endpoint": target.endpoint,
            "keys": {"p256dh": target.p256dh, "auth": target.auth},
        }
        try:
            response = webpush(
                subscription_info,
                data=payload,
                vapid_private_key=self.settings.vapid_private_key,
                vapid_claims={"sub": self.settings.vapid_subject},
                timeout=self.settings.push_timeout,
                ttl=self.settings.push_ttl,
            )
        except WebPushException as e:
            if e.response is None:
                raise
            return PushResponse(status_code=e.response.status_code, reason=str(e))
        return PushResponse(status_code=response.status_code)


def build_push_transport(settings: Settings) -> PushTransport:
    if not settings.vapid_private_key:
        return NullPushTransport()
    return WebPushTransport(settings)


def encode_payload(payload: Dict[str, Any]) -> str:
    return json.dumps(payload, separators=(",", ":"), default=str)
