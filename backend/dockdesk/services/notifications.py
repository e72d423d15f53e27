"""Best-effort driver notifications sent after a dock assignment commits."""
from __future__ import annotations

from typing import Any, Dict, Optional

import httpx

from dockdesk.core.config import Settings, get_settings
from dockdesk.core.logging import logger
from dockdesk.models.yard import NotificationSummary
from dockdesk.services.yard_state import YardStateStore, yard_state_store


class DockNotifier:
    """
    Sends the "proceed to your dock" text through an SMS relay webhook.

    Every attempt is recorded in the outbound message log. Delivery problems
    are logged and recorded as ``failed``; they never propagate, because the
    assignment they describe has already been committed.
    """

    CHANNEL = "driver_sms"

    def __init__(
        self,
        store: Optional[YardStateStore] = None,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.store = store or yard_state_store
        self.settings = settings or get_settings()
        self._transport = transport

    @staticmethod
    def build_message(summary: NotificationSummary) -> str:
        return (
            f"Hello {summary.driver_name or 'Driver'}!\n\n"
            f"You've been assigned to {summary.dock_display}.\n\n"
            f"Reference #: {summary.reference_number or 'N/A'}\n"
            f"Appointment: {summary.appointment_display or 'N/A'}\n\n"
            "Please proceed to your assigned dock."
        )

    def _send(self, to: str, body: str) -> Dict[str, Any]:
        headers = {}
        if self.settings.sms_webhook_token:
            headers["Authorization"] = f"Bearer {self.settings.sms_webhook_token}"
        with httpx.Client(timeout=self.settings.sms_timeout_seconds, transport=self._transport) as client:
            response = client.post(self.settings.sms_webhook_url, json={"to": to, "body": body}, headers=headers)
            response.raise_for_status()
            try:
                data = response.json()
            except ValueError:
                return {}
            return data if isinstance(data, dict) else {}

    def notify_assignment(self, yard_id: str, summary: NotificationSummary) -> Dict[str, Any]:
        body = self.build_message(summary)
        payload: Dict[str, Any] = {**summary.model_dump(mode="json"), "body": body}

        if not summary.driver_phone:
            status = "skipped"
            payload["error"] = "no driver phone on record"
        elif not self.settings.sms_webhook_url:
            status = "queued"
        else:
            try:
                receipt = self._send(summary.driver_phone, body)
                status = "sent"
                payload["provider_message_id"] = receipt.get("message_id") or receipt.get("sid")
            except httpx.HTTPError as exc:
                status = "failed"
                payload["error"] = str(exc)
                logger.error("Driver SMS failed", load_id=summary.load_id, error=str(exc))

        message = self.store.add_outbound_message(
            yard_id,
            channel=self.CHANNEL,
            recipient=summary.driver_phone or summary.driver_name,
            payload=payload,
            status=status,
        )
        logger.info("Driver notification recorded", load_id=summary.load_id, status=status)
        return message
