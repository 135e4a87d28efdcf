"""
Application wiring
Builds the database from configuration once, gates on the schema, and injects
it into every repository.
"""

import logging
from dataclasses import dataclass

from leadcapture.bus.events import EventBus, EVENT_LEAD_SUBMITTED
from leadcapture.config import config
from leadcapture.db.connection import Database, create_database
from leadcapture.db.schema import ensure_schema
from leadcapture.engine.audit import AuditLog
from leadcapture.engine.delivery import WebhookNotifier
from leadcapture.engine.leads import LeadRepository
from leadcapture.engine.participations import ParticipationRepository
from leadcapture.engine.queries import LeadQueryBuilder

logger = logging.getLogger(__name__)


@dataclass
class App:
    db: Database
    bus: EventBus
    audit: AuditLog
    leads: LeadRepository
    participations: ParticipationRepository
    notifier: WebhookNotifier

    def close(self) -> None:
        self.bus.off(EVENT_LEAD_SUBMITTED, self.notifier.handle_submission)
        self.audit.flush()
        self.audit.close()
        self.db.close()


def build_app(cfg=config, ensure: bool = True) -> App:
    db = create_database(cfg)
    if ensure:
        ensure_schema(db)

    bus = EventBus()
    audit = AuditLog(db)
    participations = ParticipationRepository(db, bus=bus)
    leads = LeadRepository(
        db,
        participations,
        audit,
        queries=LeadQueryBuilder(db, max_page_size=cfg.MAX_PAGE_SIZE),
        valid_days=cfg.VALID_EVENT_DAYS,
        bus=bus,
    )
    notifier = WebhookNotifier(
        cfg.WEBHOOK_URL, leads,
        timeout=cfg.WEBHOOK_TIMEOUT_SECONDS,
        max_attempts=cfg.DELIVERY_MAX_ATTEMPTS,
    )
    if notifier.enabled:
        bus.on(EVENT_LEAD_SUBMITTED, notifier.handle_submission)

    logger.debug(f"App ready on {db.engine}")
    return App(db=db, bus=bus, audit=audit, leads=leads, participations=participations, notifier=notifier)
