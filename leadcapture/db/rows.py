"""Row → model conversion shared by the repositories."""

from dataclasses import fields
from typing import Any, Mapping

from leadcapture.db.connection import Dialect
from leadcapture.models import Lead

_LEAD_FIELDS = {f.name for f in fields(Lead)}
_LEAD_TIMESTAMPS = ('data_criacao', 'data_atualizacao', 'ultimo_envio_data')


def row_to_lead(row: Mapping[str, Any], dialect: Dialect) -> Lead:
    """Build a Lead from a raw row; unknown columns are ignored."""
    data = {k: v for k, v in row.items() if k in _LEAD_FIELDS}
    for key in _LEAD_TIMESTAMPS:
        data[key] = dialect.from_db_timestamp(data.get(key))
    data['enviado_n8n'] = dialect.from_db_bool(data.get('enviado_n8n'))
    data['tentativas_n8n'] = int(data.get('tentativas_n8n') or 0)
    data['total_envios'] = int(data.get('total_envios') or 0)
    return Lead(**data)
