"""
Lead Repository - identity resolution and upsert
Decides for every submission whether it is a new contact, a returning contact,
or a returning contact registering for a new event.

There is no in-process lock around lookup-then-write: the unique index on
leads.email (and on participacoes(lead_id, evento_nome)) decides races, and the
losing writer continues down the "already exists" path.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

from leadcapture.bus.events import (
    EventBus,
    EVENT_LEAD_CREATED, EVENT_LEAD_UPDATED, EVENT_LEAD_SUBMITTED,
    EVENT_LEAD_STATUS_CHANGED, EVENT_LEAD_DELETED,
)
from leadcapture.db.connection import Database
from leadcapture.db.rows import row_to_lead
from leadcapture.engine.audit import AuditLog
from leadcapture.engine.participations import ParticipationRepository
from leadcapture.engine.queries import LeadFilters, LeadQueryBuilder
from leadcapture.errors import DuplicateEmail, NotFound, ValidationFailed
from leadcapture.models import (
    EventInfo, Lead, LeadInput, Participation, SubmissionResult, LEAD_STATUSES,
)

logger = logging.getLogger(__name__)

_WEEKDAYS = ('segunda-feira', 'terça-feira', 'quarta-feira', 'quinta-feira',
             'sexta-feira', 'sábado', 'domingo')

MSG_NEW_LEAD = 'Lead cadastrado com sucesso!'
MSG_UPDATED = 'Dados atualizados com sucesso!'
MSG_NEW_LEAD_AND_PARTICIPATION = 'Cadastro realizado e participação registrada com sucesso!'
MSG_NEW_PARTICIPATION = 'Nova participação registrada com sucesso!'
MSG_ALREADY_REGISTERED = 'Você já está participando deste evento! Obrigado pelo interesse.'

DEFAULT_MAX_DELIVERY_ATTEMPTS = 3


class LeadRepository:

    def __init__(self, db: Database, participations: ParticipationRepository, audit: AuditLog,
                 queries: Optional[LeadQueryBuilder] = None, valid_days: Sequence[str] = ('17', '18'),
                 bus: Optional[EventBus] = None):
        self.db = db
        self.participations = participations
        self.audit = audit
        self.queries = queries or LeadQueryBuilder(db)
        self.valid_days = tuple(valid_days)
        self.bus = bus or EventBus()

    # =========================================================================
    # SUBMISSION
    # =========================================================================

    def submit(self, lead_input: LeadInput, event_info: Optional[EventInfo] = None) -> SubmissionResult:
        """
        Normalize, validate, resolve identity by email, then register the
        participation when event_info is given.
        Raises ValidationFailed with every violated rule; nothing is written in that case.
        """
        lead_input.sanitize()
        errors = lead_input.validate(self.valid_days)
        if event_info is not None:
            errors.extend(event_info.validate())
        if errors:
            logger.warning(f"submit: rejected {lead_input.email!r}: {errors}")
            raise ValidationFailed(errors)

        lead_id, is_new_lead = self._resolve_identity(lead_input)

        if event_info is None:
            result = SubmissionResult(
                id=lead_id,
                is_new_lead=is_new_lead,
                is_new_participation=False,
                message=MSG_NEW_LEAD if is_new_lead else MSG_UPDATED,
            )
        else:
            result = self._register_participation(lead_id, is_new_lead, lead_input, event_info)

        self.bus.emit(EVENT_LEAD_SUBMITTED, {'lead_id': lead_id, 'lead': lead_input, 'result': result})
        return result

    def _resolve_identity(self, lead_input: LeadInput) -> Tuple[int, bool]:
        """Returns (lead_id, is_new_lead)."""
        now = datetime.now(self.db.dialect.tz)
        existing = self.find_by_email(lead_input.email)

        if existing is None:
            try:
                return self._insert(lead_input, now), True
            except Exception as exc:
                if not self.db.dialect.is_unique_violation(exc):
                    raise
                # Another submission inserted this email between our lookup and insert
                logger.info(f"Concurrent insert for {lead_input.email} detected, continuing as returning lead")
                existing = self.find_by_email(lead_input.email)
                if existing is None:
                    raise DuplicateEmail(lead_input.email) from exc

        logger.info(f"Existing lead found: {lead_input.email} (ID {existing.id})")
        self._update_existing(existing.id, lead_input, now)
        return existing.id, False

    def _insert(self, lead_input: LeadInput, now: datetime) -> int:
        ts = self.db.dialect.to_db_timestamp(now)
        result = self.db.execute(self.db.dialect.returning_id("""
            INSERT INTO leads (
                nome, email, telefone, idade, curso,
                ip_address, user_agent, origem, status,
                tipo_lead, evento, dia_evento,
                data_criacao, data_atualizacao,
                ultimo_envio_data, ultimo_envio_hora, ultimo_envio_dia, total_envios,
                enviado_n8n, tentativas_n8n
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 1, ?, 0)
        """), (
            lead_input.nome, lead_input.email, lead_input.telefone, lead_input.idade, lead_input.curso,
            lead_input.ip_address, lead_input.user_agent, lead_input.origem, 'novo',
            lead_input.tipo_lead, lead_input.evento, lead_input.dia_evento,
            ts, ts,
            ts, now.strftime('%H:%M:%S'), _WEEKDAYS[now.weekday()],
            False,
        ))

        lead_id = result.inserted_id
        logger.info(f"Created lead ID {lead_id}: {lead_input.email}")

        self.audit.record('lead_created', {
            'lead_id': lead_id,
            'curso': lead_input.curso,
            'idade': lead_input.idade,
        }, lead_input.ip_address, lead_input.user_agent)
        self.bus.emit(EVENT_LEAD_CREATED, {'lead_id': lead_id, 'lead': lead_input})
        return lead_id

    def _update_existing(self, lead_id: int, lead_input: LeadInput, now: datetime) -> None:
        """Contact fields and submission counters only; email and data_criacao never change."""
        ts = self.db.dialect.to_db_timestamp(now)
        result = self.db.execute("""
            UPDATE leads
            SET nome = ?, telefone = ?, idade = ?,
                ultimo_envio_data = ?,
                ultimo_envio_hora = ?,
                ultimo_envio_dia = ?,
                total_envios = COALESCE(total_envios, 0) + 1,
                data_atualizacao = ?
            WHERE id = ?
        """, (
            lead_input.nome, lead_input.telefone, lead_input.idade,
            ts, now.strftime('%H:%M:%S'), _WEEKDAYS[now.weekday()],
            ts, lead_id,
        ))
        if result.rows_affected == 0:
            # Deleted between lookup and update
            raise NotFound('lead', lead_id)

        fields_updated = ['nome', 'telefone', 'idade', 'timestamp_envio']
        self.audit.record('lead_updated', {
            'lead_id': lead_id,
            'campos_atualizados': fields_updated,
        }, lead_input.ip_address, lead_input.user_agent)
        self.bus.emit(EVENT_LEAD_UPDATED, {'lead_id': lead_id, 'updates': fields_updated})

    def _register_participation(self, lead_id: int, is_new_lead: bool, lead_input: LeadInput,
                                event_info: EventInfo) -> SubmissionResult:
        already = SubmissionResult(
            id=lead_id,
            is_new_lead=is_new_lead,
            is_new_participation=False,
            message=MSG_ALREADY_REGISTERED,
        )
        if self.participations.has_participated(lead_id, event_info.evento_nome):
            logger.info(f"Lead {lead_id} already registered for '{event_info.evento_nome}'")
            return already

        participation_id = self.participations.save(Participation(
            lead_id=lead_id,
            evento_nome=event_info.evento_nome,
            evento_data=event_info.evento_data,
            tipo_evento=event_info.tipo_evento or 'sorteio',
            ip_address=lead_input.ip_address,
            user_agent=lead_input.user_agent,
            metadata=event_info.metadata or {},
        ))
        if participation_id is None:
            return already

        return SubmissionResult(
            id=lead_id,
            is_new_lead=is_new_lead,
            is_new_participation=True,
            message=MSG_NEW_LEAD_AND_PARTICIPATION if is_new_lead else MSG_NEW_PARTICIPATION,
        )

    # =========================================================================
    # LOOKUPS
    # =========================================================================

    def find_by_email(self, email: str) -> Optional[Lead]:
        row = self.db.fetch_one("SELECT * FROM leads WHERE email = ?", ((email or '').strip().lower(),))
        return row_to_lead(row, self.db.dialect) if row else None

    def find_by_id(self, lead_id: int) -> Optional[Lead]:
        row = self.db.fetch_one("SELECT * FROM leads WHERE id = ?", (lead_id,))
        if row:
            return row_to_lead(row, self.db.dialect)
        logger.debug(f"find_by_id: lead_id={lead_id} not found")
        return None

    def list_leads(self, page: Any = 1, limit: Any = 50, filters: Optional[LeadFilters] = None) -> Dict[str, Any]:
        return self.queries.list_leads(page, limit, filters)

    def stats(self) -> Dict[str, Any]:
        return self.queries.aggregate_stats()

    # =========================================================================
    # ADMINISTRATION
    # =========================================================================

    def update_status(self, lead_id: int, status: str) -> None:
        if status not in LEAD_STATUSES:
            raise ValidationFailed([f"Status inválido: {status!r} (use {', '.join(LEAD_STATUSES)})"])

        result = self.db.execute(
            "UPDATE leads SET status = ?, data_atualizacao = ? WHERE id = ?",
            (status, self.db.dialect.to_db_timestamp(datetime.now(self.db.dialect.tz)), lead_id),
        )
        if result.rows_affected == 0:
            raise NotFound('lead', lead_id)

        logger.info(f"Lead ID {lead_id} status → {status}")
        self.bus.emit(EVENT_LEAD_STATUS_CHANGED, {'lead_id': lead_id, 'status': status})

    def delete(self, lead_id: int) -> None:
        """Hard delete; participations go with it (ON DELETE CASCADE)."""
        result = self.db.execute("DELETE FROM leads WHERE id = ?", (lead_id,))
        if result.rows_affected == 0:
            raise NotFound('lead', lead_id)

        logger.info(f"Deleted lead ID {lead_id}")
        self.bus.emit(EVENT_LEAD_DELETED, {'lead_id': lead_id})

    # =========================================================================
    # OUTBOUND DELIVERY BOOKKEEPING
    # =========================================================================

    def mark_delivery_outcome(self, lead_id: int, success: bool, error: Optional[str] = None) -> bool:
        """
        Count one delivery attempt. Best effort: returns False instead of raising.
        """
        ts = self.db.dialect.to_db_timestamp(datetime.now(self.db.dialect.tz))
        try:
            if success:
                result = self.db.execute("""
                    UPDATE leads
                    SET enviado_n8n = ?,
                        tentativas_n8n = COALESCE(tentativas_n8n, 0) + 1,
                        ultimo_erro_n8n = NULL,
                        data_atualizacao = ?
                    WHERE id = ?
                """, (True, ts, lead_id))
            else:
                result = self.db.execute("""
                    UPDATE leads
                    SET tentativas_n8n = COALESCE(tentativas_n8n, 0) + 1,
                        ultimo_erro_n8n = ?,
                        data_atualizacao = ?
                    WHERE id = ?
                """, (error, ts, lead_id))
        except Exception as exc:
            logger.error(f"mark_delivery_outcome: lead {lead_id} bookkeeping failed: {exc}")
            return False

        if result.rows_affected == 0:
            logger.warning(f"mark_delivery_outcome: lead {lead_id} not found")
            return False
        return True

    def list_undelivered(self, max_attempts: int = DEFAULT_MAX_DELIVERY_ATTEMPTS) -> List[Lead]:
        """Input for the retry sweep: not delivered and still under the attempt cap, newest first."""
        rows = self.db.fetch_all("""
            SELECT * FROM leads
            WHERE enviado_n8n = ?
              AND tentativas_n8n < ?
            ORDER BY data_criacao DESC, id DESC
        """, (False, max_attempts))
        logger.debug(f"list_undelivered: {len(rows)} leads pending delivery")
        return [row_to_lead(row, self.db.dialect) for row in rows]
