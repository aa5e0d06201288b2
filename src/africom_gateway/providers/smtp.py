"""Outbound email over SMTP."""

import logging
import re
import smtplib
import time
from collections.abc import Callable
from email.message import EmailMessage
from email.utils import make_msgid

from africom_gateway.config import SmtpConfig
from africom_gateway.enums import Channel, DeliveryState, SendStatus
from africom_gateway.exceptions import ProviderConfigurationError
from africom_gateway.providers.base import (
    WILDCARD,
    Balance,
    DeliveryStatus,
    ProviderAdapter,
    ProviderCapabilities,
    SendOptions,
    SendOutcome,
    elapsed_ms,
    mask_recipient,
)

logger = logging.getLogger(__name__)

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class SmtpProvider(ProviderAdapter):
    """Sends email through a relay; not metered, so balance is always 0."""

    def __init__(
        self,
        config: SmtpConfig,
        capabilities: ProviderCapabilities | None = None,
        smtp_factory: Callable[..., smtplib.SMTP] = smtplib.SMTP,
    ) -> None:
        if not config.is_configured:
            raise ProviderConfigurationError("SMTP requires SMTP_HOST")

        super().__init__(
            capabilities
            or ProviderCapabilities(
                name="smtp",
                supported_countries=(WILDCARD,),
                channel=Channel.EMAIL,
                priority=config.priority,
                timeout_seconds=config.timeout_seconds,
            )
        )
        self._config = config
        self._smtp_factory = smtp_factory

    def send(self, options: SendOptions) -> SendOutcome:
        if not _EMAIL_RE.match(options.recipient or ""):
            return self._reject_invalid(options, "Recipient must be an email address", "INVALID_EMAIL")
        if not options.message:
            return self._reject_invalid(options, "Message body cannot be empty", "INVALID_EMAIL")

        message_id = make_msgid(idstring=options.message_id)
        msg = EmailMessage()
        msg["From"] = options.sender_id or self._config.from_address
        msg["To"] = options.recipient
        msg["Subject"] = options.subject or "(no subject)"
        msg["Message-ID"] = message_id
        msg.set_content(options.message)

        log_ctx = {"provider": self.name, "recipient": mask_recipient(options.recipient)}
        started = time.monotonic()
        try:
            with self._smtp_factory(
                self._config.host,
                self._config.port,
                timeout=self._config.timeout_seconds,
            ) as server:
                if self._config.use_tls:
                    server.starttls()
                if self._config.user:
                    server.login(self._config.user, self._config.password)
                server.send_message(msg)
            outcome = self._outcome(
                True,
                SendStatus.SENT,
                "Email accepted by relay",
                external_id=message_id,
            )
        except smtplib.SMTPAuthenticationError as exc:
            outcome = self._outcome(
                False,
                SendStatus.AUTHENTICATION_ERROR,
                str(exc),
                error_code=str(exc.smtp_code),
            )
        except smtplib.SMTPRecipientsRefused as exc:
            outcome = self._outcome(
                False,
                SendStatus.REJECTED,
                f"Recipient refused: {exc.recipients}",
                error_code="RECIPIENT_REFUSED",
            )
        except (smtplib.SMTPException, OSError) as exc:
            logger.exception("SMTP send failed", extra=log_ctx)
            outcome = self._outcome(
                False,
                SendStatus.PROVIDER_ERROR,
                str(exc) or "SMTP error",
                error_code="SMTP_ERROR",
            )

        latency = elapsed_ms(started)
        self.stats.record_attempt(outcome.success, latency)
        logger.info(
            "Email send finished",
            extra={**log_ctx, "success": outcome.success, "status": outcome.status, "latency_ms": round(latency, 1)},
        )
        return outcome

    def get_delivery_status(self, external_id: str) -> DeliveryStatus:
        return DeliveryStatus(
            state=DeliveryState.UNKNOWN,
            external_id=external_id,
            error="SMTP relays do not expose delivery status",
        )

    def check_balance(self) -> Balance:
        return Balance(amount=0.0, currency=self._config.currency)
