"""
Outbound Webhook Delivery
Posts captured leads to an automation webhook and keeps the attempt
bookkeeping on the lead row. Delivery problems never fail a submission.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import requests

from leadcapture.engine.leads import LeadRepository, DEFAULT_MAX_DELIVERY_ATTEMPTS
from leadcapture.errors import LeadCaptureError

logger = logging.getLogger(__name__)

_PAYLOAD_FIELDS = ('nome', 'email', 'telefone', 'idade', 'curso', 'origem', 'tipo_lead', 'evento', 'dia_evento')


class DeliveryError(LeadCaptureError):
    """Webhook did not accept the lead."""


class WebhookNotifier:

    def __init__(self, url: str, leads: LeadRepository, timeout: float = 10.0,
                 max_attempts: int = DEFAULT_MAX_DELIVERY_ATTEMPTS):
        self.url = url
        self.leads = leads
        self.timeout = timeout
        self.max_attempts = max_attempts

    @property
    def enabled(self) -> bool:
        return bool(self.url)

    def _payload(self, lead_id: int, lead: Any) -> Dict[str, Any]:
        payload = {'lead_id': lead_id}
        for name in _PAYLOAD_FIELDS:
            payload[name] = getattr(lead, name, None)
        payload['origem'] = payload['origem'] or 'website'
        payload['timestamp'] = datetime.now(timezone.utc).isoformat()
        return payload

    def send(self, lead_id: int, lead: Any) -> None:
        """
        POST one lead. Records the attempt either way.
        Raises DeliveryError if the webhook is unreachable or answers non-2xx.
        """
        if not self.enabled:
            logger.warning("Webhook URL not configured, skipping delivery")
            return

        try:
            response = requests.post(self.url, json=self._payload(lead_id, lead), timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as exc:
            logger.error(f"Webhook delivery failed for lead {lead_id}: {exc}")
            self.leads.mark_delivery_outcome(lead_id, False, str(exc))
            raise DeliveryError(str(exc)) from exc

        logger.info(f"Lead {lead_id} delivered to webhook")
        self.leads.mark_delivery_outcome(lead_id, True)

    def handle_submission(self, event_data: Dict[str, Any]) -> None:
        """Bus handler for lead_submitted."""
        try:
            self.send(event_data['lead_id'], event_data.get('lead'))
        except DeliveryError:
            pass  # already logged and recorded; the resend sweep picks it up

    def resend_undelivered(self) -> Dict[str, int]:
        """Retry every lead still under the attempt cap."""
        if not self.enabled:
            logger.warning("Webhook URL not configured, nothing resent")
            return {'total': 0, 'success': 0, 'errors': 0}
        pending = self.leads.list_undelivered(self.max_attempts)
        success = errors = 0
        for lead in pending:
            try:
                self.send(lead.id, lead)
                success += 1
            except DeliveryError:
                errors += 1
        logger.info(f"Resend complete: {success} delivered, {errors} failed of {len(pending)}")
        return {'total': len(pending), 'success': success, 'errors': errors}
