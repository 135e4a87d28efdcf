"""
Participation Repository
Per-(lead, event) registrations and per-event rollups.
The unique (lead_id, evento_nome) index is the backstop against duplicate rows.
"""

import json
import logging
from dataclasses import fields
from datetime import datetime, timedelta
from typing import Any, Dict, List, Mapping, Optional

from leadcapture.bus.events import EventBus, EVENT_PARTICIPATION_CREATED, EVENT_PARTICIPATION_REMOVED
from leadcapture.db.connection import Database
from leadcapture.errors import NotFound
from leadcapture.models import Participation

logger = logging.getLogger(__name__)

_PARTICIPATION_FIELDS = {f.name for f in fields(Participation)}


class ParticipationRepository:

    def __init__(self, db: Database, bus: Optional[EventBus] = None):
        self.db = db
        self.bus = bus or EventBus()

    def _row_to_participation(self, row: Mapping[str, Any]) -> Participation:
        data = {k: v for k, v in row.items() if k in _PARTICIPATION_FIELDS}
        data['data_participacao'] = self.db.dialect.from_db_timestamp(data.get('data_participacao'))
        metadata = data.get('metadata')
        if isinstance(metadata, str):
            try:
                data['metadata'] = json.loads(metadata) if metadata else {}
            except ValueError:
                logger.warning(f"Participation {data.get('id')}: unreadable metadata kept as raw text")
                data['metadata'] = {'raw': metadata}
        elif metadata is None:
            data['metadata'] = {}
        return Participation(**data)

    def has_participated(self, lead_id: int, evento_nome: str) -> bool:
        row = self.db.fetch_one(
            "SELECT id FROM participacoes WHERE lead_id = ? AND evento_nome = ? LIMIT 1",
            (lead_id, evento_nome),
        )
        return row is not None

    def save(self, participation: Participation) -> Optional[int]:
        """
        Insert a participation.
        Returns: new id, or None when this lead is already registered for the event.
        """
        when = participation.data_participacao or datetime.now(self.db.dialect.tz)
        try:
            result = self.db.execute(
                self.db.dialect.returning_id(
                    "INSERT INTO participacoes (lead_id, evento_nome, evento_data, tipo_evento, "
                    "data_participacao, ip_address, user_agent, metadata) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?)"
                ),
                (
                    participation.lead_id,
                    participation.evento_nome,
                    participation.evento_data,
                    participation.tipo_evento or 'sorteio',
                    self.db.dialect.to_db_timestamp(when),
                    participation.ip_address,
                    participation.user_agent,
                    json.dumps(participation.metadata or {}, default=str),
                ),
            )
        except Exception as exc:
            if self.db.dialect.is_unique_violation(exc):
                logger.info(f"Lead {participation.lead_id} already registered for '{participation.evento_nome}'")
                return None
            raise

        participation_id = result.inserted_id
        logger.info(f"Created participation ID {participation_id}: lead {participation.lead_id} → "
                    f"'{participation.evento_nome}'")
        self.bus.emit(EVENT_PARTICIPATION_CREATED, {
            'participation_id': participation_id,
            'lead_id': participation.lead_id,
            'evento_nome': participation.evento_nome,
        })
        return participation_id

    def by_lead(self, lead_id: int) -> List[Participation]:
        rows = self.db.fetch_all(
            "SELECT * FROM participacoes WHERE lead_id = ? ORDER BY data_participacao DESC, id DESC",
            (lead_id,),
        )
        logger.debug(f"by_lead: lead_id={lead_id} → {len(rows)} participations")
        return [self._row_to_participation(row) for row in rows]

    def by_event(self, evento_nome: str) -> List[Participation]:
        """Event roster, joined with the minimal lead fields."""
        rows = self.db.fetch_all("""
            SELECT p.*, l.nome, l.email, l.telefone, l.idade
            FROM participacoes p
            JOIN leads l ON p.lead_id = l.id
            WHERE p.evento_nome = ?
            ORDER BY p.data_participacao DESC, p.id DESC
        """, (evento_nome,))
        logger.debug(f"by_event: '{evento_nome}' → {len(rows)} participants")
        return [self._row_to_participation(row) for row in rows]

    def list_events(self) -> List[Dict[str, Any]]:
        """One row per (event, date, kind) with counts, most recently active first."""
        rows = self.db.fetch_all("""
            SELECT
                evento_nome,
                evento_data,
                tipo_evento,
                COUNT(*) AS total_participacoes,
                MIN(data_participacao) AS primeira_participacao,
                MAX(data_participacao) AS ultima_participacao
            FROM participacoes
            GROUP BY evento_nome, evento_data, tipo_evento
            ORDER BY MAX(data_participacao) DESC
        """)
        for row in rows:
            row['total_participacoes'] = int(row['total_participacoes'])
            row['primeira_participacao'] = self.db.dialect.from_db_timestamp(row['primeira_participacao'])
            row['ultima_participacao'] = self.db.dialect.from_db_timestamp(row['ultima_participacao'])
        return rows

    def _count(self, sql: str, args=()) -> int:
        row = self.db.fetch_one(sql, args)
        return int(row['count']) if row else 0

    def aggregate_stats(self) -> Dict[str, Any]:
        dialect = self.db.dialect
        now = datetime.now(dialect.tz)
        today = now.replace(hour=0, minute=0, second=0, microsecond=0)
        week_ago = now - timedelta(days=7)

        stats = {
            'total_participacoes': self._count("SELECT COUNT(*) AS count FROM participacoes"),
            'participacoes_hoje': self._count(
                "SELECT COUNT(*) AS count FROM participacoes WHERE data_participacao >= ?",
                (dialect.to_db_timestamp(today),),
            ),
            'participacoes_semana': self._count(
                "SELECT COUNT(*) AS count FROM participacoes WHERE data_participacao >= ?",
                (dialect.to_db_timestamp(week_ago),),
            ),
            'eventos_ativos': self._count("SELECT COUNT(DISTINCT evento_nome) AS count FROM participacoes"),
            'leads_participantes': self._count("SELECT COUNT(DISTINCT lead_id) AS count FROM participacoes"),
        }

        top = self.db.fetch_all("""
            SELECT evento_nome, COUNT(*) AS participacoes
            FROM participacoes
            GROUP BY evento_nome
            ORDER BY COUNT(*) DESC, evento_nome ASC
            LIMIT 5
        """)
        stats['top_eventos'] = [
            {'evento_nome': row['evento_nome'], 'participacoes': int(row['participacoes'])} for row in top
        ]
        return stats

    def remove(self, participation_id: int) -> None:
        result = self.db.execute("DELETE FROM participacoes WHERE id = ?", (participation_id,))
        if result.rows_affected == 0:
            raise NotFound('participation', participation_id)
        logger.info(f"Removed participation ID {participation_id}")
        self.bus.emit(EVENT_PARTICIPATION_REMOVED, {'participation_id': participation_id})
