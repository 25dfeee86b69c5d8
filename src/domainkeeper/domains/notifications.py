"""Tenant notifications for domain health events.

Delivery channels (email, in-app) live outside this package; they plug
in by implementing Notifier. The default just logs.
"""

from __future__ import annotations

from typing import Protocol

import structlog

from domainkeeper.domains.models import CustomDomain

logger = structlog.get_logger()


class Notifier(Protocol):
    async def notify(self, domain: CustomDomain, kind: str, message: str) -> None: ...


class LogNotifier:
    """Writes notifications to the structured log."""

    async def notify(self, domain: CustomDomain, kind: str, message: str) -> None:
        logger.warning(
            "Domain notification",
            hostname=domain.hostname,
            tenant_id=domain.tenant_id,
            kind=kind,
            message=message,
        )
