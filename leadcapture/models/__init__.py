"""
Data Models
Dataclasses for all entities. These are pure Python objects, no database logic.
Field names match the persisted column names so rows unpack directly.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

# Lifecycle: new, contacted, interested, enrolled, dropped
LEAD_STATUSES = ('novo', 'contatado', 'interessado', 'matriculado', 'desistente')

# Classification: general funnel vs event (workshop) funnel
TIPO_GERAL = 'geral'
TIPO_EVENTO = 'workshop'
LEAD_TYPES = (TIPO_GERAL, TIPO_EVENTO)

MIN_AGE = 12
MAX_AGE = 99

DEFAULT_COURSE = 'Python - Interesse Geral'
DEFAULT_EVENT_COURSE = 'Workshop Python'

_EMAIL_RE = re.compile(r'^[^\s@]+@[^\s@]+\.[^\s@]+$')
_PHONE_RE = re.compile(r'^[\d()\-+]{10,20}$')
_NAME_STRIP_RE = re.compile(r'[<>"\']')


def _clean(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


@dataclass
class Lead:
    """Contact record, unique by (lower-cased) email."""
    id: Optional[int] = None
    nome: str = ''
    email: str = ''
    telefone: str = ''
    idade: Optional[int] = None
    curso: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    origem: str = 'website'
    status: str = 'novo'
    tipo_lead: str = TIPO_GERAL
    evento: Optional[str] = None
    dia_evento: Optional[str] = None
    data_criacao: Optional[datetime] = None
    data_atualizacao: Optional[datetime] = None
    enviado_n8n: bool = False
    tentativas_n8n: int = 0
    ultimo_erro_n8n: Optional[str] = None
    ultimo_envio_data: Optional[datetime] = None
    ultimo_envio_hora: Optional[str] = None
    ultimo_envio_dia: Optional[str] = None
    total_envios: int = 1
    observacoes: Optional[str] = None


@dataclass
class LeadInput:
    """
    Submission payload as received from a public form.
    sanitize() then validate() before anything touches the database.
    """
    nome: Optional[str] = None
    email: Optional[str] = None
    telefone: Optional[str] = None
    idade: Any = None
    curso: Optional[str] = None
    origem: str = 'website'
    tipo_lead: str = TIPO_GERAL
    evento: Optional[str] = None
    dia_evento: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'LeadInput':
        """Build from request data; accepts the legacy `curso_pretendido` key."""
        return cls(
            nome=data.get('nome'),
            email=data.get('email'),
            telefone=data.get('telefone'),
            idade=data.get('idade'),
            curso=data.get('curso') or data.get('curso_pretendido'),
            origem=data.get('origem') or 'website',
            tipo_lead=data.get('tipo_lead') or TIPO_GERAL,
            evento=data.get('evento'),
            dia_evento=data.get('dia_evento'),
            ip_address=data.get('ip_address'),
            user_agent=data.get('user_agent'),
        )

    def sanitize(self) -> 'LeadInput':
        """Trim strings, lower-case email, strip HTML-significant characters from the name."""
        self.nome = _NAME_STRIP_RE.sub('', (self.nome or '').strip())
        self.email = (self.email or '').strip().lower()
        self.telefone = (self.telefone or '').strip()
        self.curso = _clean(self.curso)
        self.origem = _clean(self.origem) or 'website'
        self.tipo_lead = _clean(self.tipo_lead) or TIPO_GERAL
        self.evento = _clean(self.evento)
        self.dia_evento = _clean(self.dia_evento)
        if isinstance(self.idade, str):
            self.idade = self.idade.strip()
        return self

    def validate(self, valid_days: Sequence[str] = ()) -> List[str]:
        """Return every violated rule (empty list when valid). Fills in the default course."""
        errors = []

        if len(self.nome or '') < 2:
            errors.append('Nome deve ter pelo menos 2 caracteres')
        if len(self.nome or '') > 100:
            errors.append('Nome deve ter no máximo 100 caracteres')

        if not self.email or not _EMAIL_RE.match(self.email):
            errors.append('Email deve ser válido')

        if not self.telefone or not _PHONE_RE.match(re.sub(r'\s', '', self.telefone)):
            errors.append('Telefone deve ser válido')

        try:
            age = int(self.idade)
        except (TypeError, ValueError, OverflowError):
            age = None
        # Numbers must be whole: 25.0 is accepted, 25.9 is not truncated
        if age is not None and not isinstance(self.idade, str) and age != self.idade:
            age = None
        if age is None or isinstance(self.idade, bool) or not MIN_AGE <= age <= MAX_AGE:
            errors.append(f'Idade deve estar entre {MIN_AGE} e {MAX_AGE} anos')
        else:
            self.idade = age

        if self.tipo_lead not in LEAD_TYPES:
            errors.append(f"Tipo de lead deve ser um de: {', '.join(LEAD_TYPES)}")

        if self.tipo_lead == TIPO_EVENTO and self.dia_evento and self.dia_evento not in valid_days:
            errors.append(f"Dia do evento deve ser {' ou '.join(valid_days)}")

        if not self.curso:
            if self.tipo_lead == TIPO_EVENTO:
                self.curso = self.evento or DEFAULT_EVENT_COURSE
            else:
                self.curso = DEFAULT_COURSE

        return errors


@dataclass
class EventInfo:
    """Named event a submission registers for."""
    evento_nome: str = ''
    evento_data: Optional[str] = None
    tipo_evento: str = 'sorteio'
    metadata: Dict[str, Any] = field(default_factory=dict)

    def validate(self) -> List[str]:
        self.evento_nome = (self.evento_nome or '').strip()
        if not self.evento_nome:
            return ['Nome do evento é obrigatório']
        return []


@dataclass
class Participation:
    """A lead's registration in one named event. Unique per (lead_id, evento_nome)."""
    id: Optional[int] = None
    lead_id: int = 0
    evento_nome: str = ''
    evento_data: Optional[str] = None
    tipo_evento: str = 'sorteio'
    data_participacao: Optional[datetime] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    # Roster fields, only set when joined with leads
    nome: Optional[str] = None
    email: Optional[str] = None
    telefone: Optional[str] = None
    idade: Optional[int] = None


@dataclass
class AuditEvent:
    """Append-only fact about a state change."""
    evento: str = ''
    dados: Dict[str, Any] = field(default_factory=dict)
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    data_evento: Optional[datetime] = None


@dataclass
class SubmissionResult:
    """Outcome of LeadRepository.submit()."""
    id: int = 0
    success: bool = True
    is_new_lead: bool = False
    is_new_participation: bool = False
    message: str = ''

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'success': self.success,
            'isNewLead': self.is_new_lead,
            'isNewParticipation': self.is_new_participation,
            'message': self.message,
        }
