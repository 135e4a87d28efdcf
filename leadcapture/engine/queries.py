"""
Lead Query Builder
Filtered/paginated listing and aggregate statistics, written once for both
engines. Filter values only ever travel as bound arguments; column names come
from the fixed allowlist below.
"""

import logging
import math
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from leadcapture.db.connection import Database, Dialect
from leadcapture.db.rows import row_to_lead
from leadcapture.errors import ValidationFailed

logger = logging.getLogger(__name__)

# Exact-match filters; column names never come from user input directly
_EXACT_FILTERS = ('curso', 'status', 'tipo_lead', 'dia_evento')
_SEARCH_COLUMNS = ('nome', 'email', 'telefone')

DEFAULT_PAGE_SIZE = 50


def _parse_date(value: Any, label: str, errors: List[str]) -> Optional[date]:
    if value in (None, ''):
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).strip())
    except ValueError:
        errors.append(f"{label} deve estar no formato AAAA-MM-DD")
        return None


def _escape_like(text: str) -> str:
    return text.replace('\\', '\\\\').replace('%', '\\%').replace('_', '\\_')


@dataclass
class LeadFilters:
    """Optional listing predicates. Dates are inclusive, in the local calendar."""
    curso: Optional[str] = None
    status: Optional[str] = None
    tipo_lead: Optional[str] = None
    dia_evento: Optional[str] = None
    data_inicio: Optional[date] = None
    data_fim: Optional[date] = None
    search: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'LeadFilters':
        errors = []
        filters = cls(
            curso=data.get('curso') or None,
            status=data.get('status') or None,
            tipo_lead=data.get('tipo_lead') or None,
            dia_evento=data.get('dia_evento') or None,
            data_inicio=_parse_date(data.get('data_inicio'), 'data_inicio', errors),
            data_fim=_parse_date(data.get('data_fim'), 'data_fim', errors),
            search=(data.get('search') or '').strip() or None,
        )
        if errors:
            raise ValidationFailed(errors)
        return filters


def _start_of_day(day: date, dialect: Dialect) -> datetime:
    return datetime(day.year, day.month, day.day, tzinfo=dialect.tz)


def build_where(filters: Optional[LeadFilters], dialect: Dialect) -> Tuple[str, List[Any]]:
    """
    Compose the WHERE clause and its arguments.
    Used verbatim by both the page query and the count query.
    """
    if filters is None:
        return '', []

    conditions = []
    args: List[Any] = []

    for column in _EXACT_FILTERS:
        value = getattr(filters, column)
        if value:
            conditions.append(f"{column} = ?")
            args.append(value)

    if filters.data_inicio:
        conditions.append("data_criacao >= ?")
        args.append(dialect.to_db_timestamp(_start_of_day(filters.data_inicio, dialect)))

    # date.max has no following day; the end bound is then open
    if filters.data_fim and filters.data_fim < date.max:
        conditions.append("data_criacao < ?")
        args.append(dialect.to_db_timestamp(_start_of_day(filters.data_fim + timedelta(days=1), dialect)))

    if filters.search:
        pattern = f"%{_escape_like(filters.search.lower())}%"
        conditions.append(
            "(" + " OR ".join(f"LOWER({column}) LIKE ? ESCAPE '\\'" for column in _SEARCH_COLUMNS) + ")"
        )
        args.extend([pattern] * len(_SEARCH_COLUMNS))

    if not conditions:
        return '', []
    return ' WHERE ' + ' AND '.join(conditions), args


class LeadQueryBuilder:

    def __init__(self, db: Database, max_page_size: int = 200):
        self.db = db
        self.max_page_size = max_page_size

    def _clamp(self, page: Any, limit: Any) -> Tuple[int, int]:
        try:
            page = int(page)
        except (TypeError, ValueError):
            page = 1
        try:
            limit = int(limit)
        except (TypeError, ValueError):
            limit = DEFAULT_PAGE_SIZE
        return max(page, 1), min(max(limit, 1), self.max_page_size)

    def list_leads(self, page: Any = 1, limit: Any = DEFAULT_PAGE_SIZE,
                   filters: Optional[LeadFilters] = None) -> Dict[str, Any]:
        """
        One page of leads plus pagination metadata.
        Ordered newest first, id as tie-break, so pages stay stable under inserts.
        """
        page, limit = self._clamp(page, limit)
        offset = (page - 1) * limit
        where, args = build_where(filters, self.db.dialect)

        rows = self.db.fetch_all(
            f"SELECT * FROM leads{where} ORDER BY data_criacao DESC, id DESC LIMIT ? OFFSET ?",
            args + [limit, offset],
        )
        count_row = self.db.fetch_one(f"SELECT COUNT(*) AS total FROM leads{where}", args)

        total_records = int(count_row['total']) if count_row else 0
        total_pages = math.ceil(total_records / limit)
        logger.debug(f"list_leads: page={page} limit={limit} filters={filters} → {len(rows)}/{total_records}")

        return {
            'leads': [row_to_lead(row, self.db.dialect) for row in rows],
            'pagination': {
                'currentPage': page,
                'totalPages': total_pages,
                'totalRecords': total_records,
                'limit': limit,
                'hasNextPage': page < total_pages,
                'hasPrevPage': page > 1,
            },
        }

    def _count(self, sql: str, args=()) -> int:
        row = self.db.fetch_one(sql, args)
        return int(row['count']) if row else 0

    def aggregate_stats(self) -> Dict[str, Any]:
        """Fixed counts; 'today' and 'this month' follow the configured civil calendar."""
        dialect = self.db.dialect
        now = datetime.now(dialect.tz)
        today = now.replace(hour=0, minute=0, second=0, microsecond=0)
        month_start = today.replace(day=1)
        week_ago = now - timedelta(days=7)
        since = "SELECT COUNT(*) AS count FROM leads WHERE data_criacao >= ?"

        stats = {
            'total': self._count("SELECT COUNT(*) AS count FROM leads"),
            'hoje': self._count(since, (dialect.to_db_timestamp(today),)),
            'semana': self._count(since, (dialect.to_db_timestamp(week_ago),)),
            'mes': self._count(since, (dialect.to_db_timestamp(month_start),)),
        }
        stats['por_curso'] = [
            {'curso': row['curso'], 'count': int(row['count'])}
            for row in self.db.fetch_all(
                "SELECT curso, COUNT(*) AS count FROM leads GROUP BY curso ORDER BY COUNT(*) DESC, curso ASC"
            )
        ]
        stats['por_status'] = [
            {'status': row['status'], 'count': int(row['count'])}
            for row in self.db.fetch_all(
                "SELECT status, COUNT(*) AS count FROM leads GROUP BY status ORDER BY COUNT(*) DESC, status ASC"
            )
        ]
        stats['enviados_n8n'] = self._count("SELECT COUNT(*) AS count FROM leads WHERE enviado_n8n = ?", (True,))
        return stats
