# /chatflow/utils/alerting.py

import httpx
import logging
import tenacity
from typing import Optional, Dict, Any
from datetime import datetime, timezone

from chatflow.config.settings import settings

# Sends critical alerts to an external webhook so that failed timer
# resumptions and misconfigured flows reach an operator.

logger = logging.getLogger(__name__)

class AlertingService:
    def __init__(self, webhook_url: Optional[str]):
        self.webhook_url = webhook_url
        self.client = httpx.AsyncClient(timeout=5.0) if webhook_url else None

    @tenacity.retry(
        retry=tenacity.retry_if_exception_type((httpx.RequestError, httpx.TimeoutException)),
        stop=tenacity.stop_after_attempt(3),
        wait=tenacity.wait_exponential(multiplier=1, min=0.5, max=4),
        before_sleep=tenacity.before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    async def _post(self, alert_data: Dict[str, Any]):
        response = await self.client.post(self.webhook_url, json=alert_data)
        response.raise_for_status()

    async def send_critical_alert(self, error: str, context: Dict[str, Any]):
        if not self.client:
            return
        alert_data = {
            "severity": "critical", "service": settings.alerting_service_name,
            "error": error, "context": context,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "environment": settings.environment
        }
        try:
            await self._post(alert_data)
        except Exception as e:
            logger.error(f"Failed to send critical alert: {e}")

    async def cleanup(self):
        if self.client:
            await self.client.aclose()

# Globally accessible instance
alerting_service = AlertingService(settings.alerting_webhook_url)
