"""
Shared fixtures for tests that run against a real, throwaway SQLite file.

- db: schema-ready SqliteDatabase under tmp_path
- repos: LeadRepository / ParticipationRepository / AuditLog wired like build_app does
- late_evening_clock: datetime subclass whose now() is 2026-03-10 01:30 UTC,
  i.e. 22:30 on 03-09 in Sao Paulo, for civil-calendar boundary tests
"""

from datetime import datetime, timezone
from types import SimpleNamespace

import pytest

from leadcapture.bus.events import EventBus
from leadcapture.db.connection import SqliteDatabase, SqliteDialect
from leadcapture.db.schema import ensure_schema
from leadcapture.engine.audit import AuditLog
from leadcapture.engine.leads import LeadRepository
from leadcapture.engine.participations import ParticipationRepository
from leadcapture.engine.queries import LeadQueryBuilder

TZ = 'America/Sao_Paulo'


@pytest.fixture
def db(tmp_path):
    database = SqliteDatabase(str(tmp_path / 'leads.db'), SqliteDialect(TZ))
    ensure_schema(database)
    yield database
    database.close()


@pytest.fixture
def repos(db):
    bus = EventBus()
    audit = AuditLog(db)
    participations = ParticipationRepository(db, bus=bus)
    leads = LeadRepository(
        db, participations, audit,
        queries=LeadQueryBuilder(db, max_page_size=200),
        valid_days=('17', '18'),
        bus=bus,
    )
    yield SimpleNamespace(db=db, bus=bus, audit=audit, leads=leads, participations=participations)
    audit.flush()
    audit.close()


class _LateEveningClock(datetime):
    """UTC has already rolled over to the 10th; Sao Paulo is still on the 9th."""
    FROZEN = datetime(2026, 3, 10, 1, 30, tzinfo=timezone.utc)

    @classmethod
    def now(cls, tz=None):
        return cls.FROZEN.astimezone(tz) if tz else cls.FROZEN.replace(tzinfo=None)


@pytest.fixture
def late_evening_clock():
    return _LateEveningClock
