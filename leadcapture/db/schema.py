"""
Schema Manager
Creates tables and indexes, and additively migrates older `leads` tables.
Safe to run on every process start, including several starts racing each other.
"""

import logging
from typing import List

from leadcapture.db.connection import Database
from leadcapture.logging_config import log_call

logger = logging.getLogger(__name__)

# {pk}, {timestamp} etc. are filled from the active dialect's column_types
_CREATE_LEADS = """
    CREATE TABLE IF NOT EXISTS leads (
        id {pk},
        nome {text} NOT NULL,
        email {text} UNIQUE NOT NULL,
        telefone {text} NOT NULL,
        idade {int} NOT NULL CHECK (idade >= 12 AND idade <= 99),
        curso {text} DEFAULT 'Python - Interesse Geral',
        ip_address {text},
        user_agent {text},
        origem {text} DEFAULT 'website',
        status {text} DEFAULT 'novo',
        data_criacao {timestamp} DEFAULT CURRENT_TIMESTAMP,
        data_atualizacao {timestamp} DEFAULT CURRENT_TIMESTAMP,
        enviado_n8n {bool} DEFAULT FALSE,
        tentativas_n8n {int} DEFAULT 0,
        ultimo_erro_n8n {text},
        observacoes {text},
        tipo_lead {text} DEFAULT 'geral',
        evento {text},
        dia_evento {text},
        ultimo_envio_data {timestamp},
        ultimo_envio_hora {text},
        ultimo_envio_dia {text},
        total_envios {int} DEFAULT 1
    )
"""

_CREATE_ANALYTICS = """
    CREATE TABLE IF NOT EXISTS analytics (
        id {pk},
        evento {text} NOT NULL,
        dados {text},
        ip_address {text},
        user_agent {text},
        data_evento {timestamp} DEFAULT CURRENT_TIMESTAMP
    )
"""

_CREATE_PARTICIPACOES = """
    CREATE TABLE IF NOT EXISTS participacoes (
        id {pk},
        lead_id {int} NOT NULL REFERENCES leads (id) ON DELETE CASCADE,
        evento_nome {text} NOT NULL,
        evento_data {text},
        tipo_evento {text} DEFAULT 'sorteio',
        data_participacao {timestamp} DEFAULT CURRENT_TIMESTAMP,
        ip_address {text},
        user_agent {text},
        metadata {text}
    )
"""

# Columns introduced after the first deployment: (name, definition, backfill statement)
_LEAD_MIGRATIONS = [
    ('enviado_n8n', '{bool} DEFAULT FALSE', "UPDATE leads SET enviado_n8n = FALSE WHERE enviado_n8n IS NULL"),
    ('tentativas_n8n', '{int} DEFAULT 0', "UPDATE leads SET tentativas_n8n = 0 WHERE tentativas_n8n IS NULL"),
    ('ultimo_erro_n8n', '{text}', None),
    ('observacoes', '{text}', None),
    ('tipo_lead', "{text} DEFAULT 'geral'", "UPDATE leads SET tipo_lead = 'geral' WHERE tipo_lead IS NULL"),
    ('evento', '{text}', None),
    ('dia_evento', '{text}', None),
    ('ultimo_envio_data', '{timestamp}',
     "UPDATE leads SET ultimo_envio_data = data_criacao WHERE ultimo_envio_data IS NULL"),
    ('ultimo_envio_hora', '{text}', None),
    ('ultimo_envio_dia', '{text}', None),
    ('total_envios', '{int} DEFAULT 1', "UPDATE leads SET total_envios = 1 WHERE total_envios IS NULL"),
]

_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_leads_email ON leads(email)",
    "CREATE INDEX IF NOT EXISTS idx_leads_data_criacao ON leads(data_criacao)",
    "CREATE INDEX IF NOT EXISTS idx_leads_status ON leads(status)",
    "CREATE INDEX IF NOT EXISTS idx_leads_curso ON leads(curso)",
    "CREATE INDEX IF NOT EXISTS idx_leads_tipo_lead ON leads(tipo_lead)",
    "CREATE INDEX IF NOT EXISTS idx_leads_evento ON leads(evento)",
    "CREATE INDEX IF NOT EXISTS idx_leads_dia_evento ON leads(dia_evento)",
    "CREATE INDEX IF NOT EXISTS idx_analytics_evento ON analytics(evento)",
    "CREATE INDEX IF NOT EXISTS idx_analytics_data ON analytics(data_evento)",
    "CREATE INDEX IF NOT EXISTS idx_participacoes_lead_id ON participacoes(lead_id)",
    "CREATE INDEX IF NOT EXISTS idx_participacoes_evento ON participacoes(evento_nome)",
    "CREATE INDEX IF NOT EXISTS idx_participacoes_data ON participacoes(data_participacao)",
    "CREATE INDEX IF NOT EXISTS idx_participacoes_tipo ON participacoes(tipo_evento)",
]

_UNIQUE_PARTICIPATION_INDEX = (
    "CREATE UNIQUE INDEX IF NOT EXISTS uq_participacoes_lead_evento "
    "ON participacoes(lead_id, evento_nome)"
)


def _ddl(db: Database, template: str) -> str:
    return template.format(**db.dialect.column_types)


def _run_ddl(db: Database, sql: str) -> bool:
    """Run one DDL statement. Returns False if a concurrent starter already did it."""
    try:
        db.execute(sql)
        return True
    except Exception as exc:
        if db.dialect.is_already_exists(exc):
            logger.debug(f"Schema object already exists, skipping: {exc}")
            return False
        raise


def _migrate_leads(db: Database) -> List[str]:
    existing = db.column_names('leads')
    added = []
    for name, definition, backfill in _LEAD_MIGRATIONS:
        if name in existing:
            continue
        if _run_ddl(db, f"ALTER TABLE leads ADD COLUMN {name} {_ddl(db, definition)}"):
            logger.info(f"Added column leads.{name}")
            added.append(name)
        if backfill:
            db.execute(backfill)
    return added


def _ensure_unique_participation(db: Database) -> None:
    try:
        db.execute(_UNIQUE_PARTICIPATION_INDEX)
    except Exception as exc:
        if db.dialect.is_unique_violation(exc):
            # Legacy duplicate rows block the index; the pre-insert lookup still guards new rows
            logger.error(f"Cannot create unique (lead_id, evento_nome) index over existing duplicates: {exc}")
        elif db.dialect.is_already_exists(exc):
            logger.debug(f"Unique participation index already exists: {exc}")
        else:
            raise


@log_call
def ensure_schema(db: Database) -> List[str]:
    """
    Create missing tables/indexes and add missing `leads` columns.
    Never drops or renames anything. Returns the names of columns added.
    """
    _run_ddl(db, _ddl(db, _CREATE_LEADS))
    _run_ddl(db, _ddl(db, _CREATE_ANALYTICS))
    _run_ddl(db, _ddl(db, _CREATE_PARTICIPACOES))

    added = _migrate_leads(db)

    for statement in _INDEXES:
        _run_ddl(db, statement)
    _ensure_unique_participation(db)

    logger.info(f"Schema ready on {db.engine} ({len(added)} column(s) added)")
    return added
