"""
Performance - Alert Handlers.

============================================================
PURPOSE
============================================================
Handlers notified by the performance monitor when it raises or
acknowledges an alert.

- PersistingAlertHandler: writes alerts to performance_alerts
- WebhookAlertNotifier: POSTs alerts to a webhook (aiohttp)

Handlers report failure by returning False; they never raise
into the monitor.

============================================================
"""

import logging
from abc import ABC, abstractmethod
from typing import Optional

import aiohttp
from sqlalchemy.ext.asyncio import async_sessionmaker

from performance.models import PerformanceAlertRecord
from performance.repository import PerformanceAlertRepository
from performance.types import PerformanceAlert, ThresholdLevel
from storage.repositories.exceptions import RepositoryException


logger = logging.getLogger(__name__)


class AlertHandler(ABC):
    """Receives alerts from the performance monitor."""

    @abstractmethod
    async def notify(self, alert: PerformanceAlert) -> bool:
        """Handle a new alert. Returns True on success."""
        pass

    async def acknowledged(self, alert: PerformanceAlert) -> bool:
        """Handle an acknowledgement."""
        return True

    async def close(self) -> None:
        return None


# ============================================================
# PERSISTENCE
# ============================================================

class PersistingAlertHandler(AlertHandler):
    """Stores alerts and acknowledgements."""

    def __init__(self, session_factory: async_sessionmaker):
        self._session_factory = session_factory

    async def notify(self, alert: PerformanceAlert) -> bool:
        record = PerformanceAlertRecord(
            id=alert.alert_id,
            created_at=alert.timestamp,
            scope_id=alert.scope_id,
            alert_type=alert.alert_type.value,
            severity=alert.severity.value,
            message=alert.message,
            metrics=[m.to_dict() for m in alert.metrics],
            metadata_json=dict(alert.metadata),
            acknowledged=alert.acknowledged,
            acknowledged_at=alert.acknowledged_at,
        )
        try:
            async with self._session_factory() as session:
                repo = PerformanceAlertRepository(session)
                await repo.add(record)
                await repo.commit()
            return True
        except RepositoryException as e:
            logger.error(f"Failed to persist performance alert {alert.alert_id}: {e}")
            return False

    async def acknowledged(self, alert: PerformanceAlert) -> bool:
        try:
            async with self._session_factory() as session:
                repo = PerformanceAlertRepository(session)
                updated = await repo.acknowledge(alert.alert_id, alert.acknowledged_at)
                await repo.commit()
            return updated
        except RepositoryException as e:
            logger.error(f"Failed to persist acknowledgement of {alert.alert_id}: {e}")
            return False


# ============================================================
# WEBHOOK
# ============================================================

class WebhookAlertNotifier(AlertHandler):
    """
    Posts alerts as JSON to a webhook URL.

    Alerts below min_severity are skipped.
    """

    def __init__(
        self,
        webhook_url: str,
        min_severity: ThresholdLevel = ThresholdLevel.WARNING,
        timeout_seconds: float = 10.0,
    ):
        self._webhook_url = webhook_url
        self._min_severity = min_severity
        self._timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create HTTP session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
        return self._session

    async def close(self) -> None:
        """Close HTTP session."""
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None

    def _should_send(self, alert: PerformanceAlert) -> bool:
        if self._min_severity == ThresholdLevel.CRITICAL:
            return alert.severity == ThresholdLevel.CRITICAL
        return True

    async def notify(self, alert: PerformanceAlert) -> bool:
        if not self._should_send(alert):
            return True

        payload = {
            "event": "performance_alert",
            "alert": alert.to_dict(),
        }
        try:
            session = await self._get_session()
            async with session.post(self._webhook_url, json=payload) as response:
                if response.status < 300:
                    return True
                body = await response.text()
                logger.error(f"Alert webhook error: {response.status} - {body[:200]}")
                return False
        except aiohttp.ClientError as e:
            logger.error(f"Error sending alert webhook: {e}")
            return False
