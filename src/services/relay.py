"""Relay collaborator: best-effort external delivery of notifications (email)."""
from __future__ import annotations

import time
from typing import Any, Optional, Protocol

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from core.config import Settings, get_settings
from core.logging_config import get_logger, log_external_call
from core.utils import CircuitBreaker

LOGGER = get_logger(__name__)


class Relay(Protocol):
    """Anything that can push a subject/body pair to an address."""

    def send(self, to_address: str, subject: str, body: str) -> bool:
        """Return True on confirmed delivery, False otherwise."""
        ...


_ses_circuit: Optional[CircuitBreaker] = None


def _get_ses_circuit(settings: Settings) -> CircuitBreaker:
    global _ses_circuit
    if _ses_circuit is None:
        _ses_circuit = CircuitBreaker(
            name="ses_relay",
            failure_threshold=settings.relay_failure_threshold,
            recovery_timeout=settings.relay_recovery_timeout,
        )
    return _ses_circuit


class SesEmailRelay:
    """
    Email relay over Amazon SES.

    Failures are reported as False, never raised; a circuit breaker stops
    hammering SES while it is down.
    """

    def __init__(
        self,
        from_address: str,
        region: Optional[str] = None,
        client: Any = None,
        circuit: Optional[CircuitBreaker] = None,
    ):
        self.from_address = from_address
        self.client = client or boto3.client("ses", region_name=region)
        self.circuit = circuit or CircuitBreaker(name="ses_relay", failure_threshold=3, recovery_timeout=300)

    def send(self, to_address: str, subject: str, body: str) -> bool:
        if not self.circuit.can_execute():
            LOGGER.warning("SES circuit breaker is open, skipping email relay")
            return False

        start = time.perf_counter()
        try:
            self.client.send_email(
                Source=self.from_address,
                Destination={"ToAddresses": [to_address]},
                Message={
                    "Subject": {"Data": subject},
                    "Body": {"Text": {"Data": body}},
                },
            )
        except (BotoCoreError, ClientError) as e:
            self.circuit.record_failure()
            log_external_call(
                LOGGER, "ses", "send_email", False,
                (time.perf_counter() - start) * 1000, error=str(e),
            )
            return False

        self.circuit.record_success()
        log_external_call(LOGGER, "ses", "send_email", True, (time.perf_counter() - start) * 1000)
        return True


class DryRunRelay:
    """Logs instead of sending. Used while DRY_RUN is on."""

    def send(self, to_address: str, subject: str, body: str) -> bool:
        LOGGER.info(f"[DRY RUN] Email to {to_address}: {subject} - {body[:50]}")
        return True


def get_relay(settings: Optional[Settings] = None) -> Optional[Relay]:
    """
    Build the configured relay.

    Returns:
        None when the email relay is disabled or unconfigured, a dry-run
        relay while DRY_RUN is set, otherwise the SES relay.
    """
    settings = settings or get_settings()
    if not settings.is_email_relay_enabled():
        return None
    if settings.dry_run:
        return DryRunRelay()
    return SesEmailRelay(
        from_address=settings.ses_from_address,
        region=settings.ses_region or settings.s3_region,
        circuit=_get_ses_circuit(settings),
    )


__all__ = [
    "Relay",
    "SesEmailRelay",
    "DryRunRelay",
    "get_relay",
]
