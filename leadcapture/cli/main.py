#!/usr/bin/env python3
"""
Lead Capture Terminal CLI
Administrative command-line interface over the lead and participation repositories.
"""

import logging
import click

from leadcapture.config import config
from leadcapture.db.schema import ensure_schema
from leadcapture.engine.app import App, build_app
from leadcapture.engine.queries import LeadFilters
from leadcapture.errors import LeadCaptureError, NotFound, StorageUnavailable, ValidationFailed
from leadcapture.logging_config import configure_logging, log_call
from leadcapture.models import EventInfo, LeadInput, LEAD_STATUSES, LEAD_TYPES


def _app() -> App:
    """Build the app once per invocation; closed when the root context closes."""
    root = click.get_current_context().find_root()
    if root.obj is None:
        try:
            root.obj = build_app(config)
        except StorageUnavailable as exc:
            _fail(f"Database unavailable: {exc}")
        root.call_on_close(root.obj.close)
    return root.obj


def _fail(message: str) -> None:
    click.echo(message, err=True)
    click.get_current_context().exit(1)


def _fmt(value) -> str:
    if value is None or value == '':
        return '(not set)'
    if hasattr(value, 'strftime'):
        return value.strftime('%Y-%m-%d %H:%M:%S')
    return str(value)


class LeadCaptureGroup(click.Group):
    """Reports domain errors from any subcommand on stderr with exit code 1."""

    def invoke(self, ctx):
        try:
            return super().invoke(ctx)
        except StorageUnavailable as exc:
            click.echo(f"Database unavailable: {exc}", err=True)
        except LeadCaptureError as exc:
            click.echo(f"Error: {exc}", err=True)
        ctx.exit(1)


@click.group(cls=LeadCaptureGroup)
def cli():
    """Lead Capture - leads, event participations and statistics"""
    configure_logging()


@cli.command('init-db')
@log_call
def init_db():
    """Create or migrate the database schema"""
    try:
        app = build_app(config, ensure=False)
    except StorageUnavailable as exc:
        _fail(f"Database unavailable: {exc}")
        return
    try:
        added = ensure_schema(app.db)
    finally:
        app.close()

    click.echo(f"✓ Schema ready on {app.db.engine}")
    if added:
        click.echo(f"  Columns added: {', '.join(added)}")


# =============================================================================
# LEADS COMMANDS
# =============================================================================

@cli.group()
def leads():
    """Manage captured leads"""
    pass


@leads.command('submit')
@click.option('--nome', required=True, help='Full name')
@click.option('--email', required=True, help='Email (unique key)')
@click.option('--telefone', required=True, help='Phone number')
@click.option('--idade', required=True, type=int, help='Age (12-99)')
@click.option('--curso', help='Course / interest')
@click.option('--origem', default='cli', show_default=True, help='Source channel')
@click.option('--tipo-lead', type=click.Choice(LEAD_TYPES), default=LEAD_TYPES[0], show_default=True)
@click.option('--evento', help='Event name stored on the lead')
@click.option('--dia-evento', help='Preferred event day')
@click.option('--evento-nome', help='Register a participation in this event')
@click.option('--evento-data', help='Event date label')
@click.option('--tipo-evento', default='sorteio', show_default=True, help='Event kind')
@log_call
def leads_submit(nome, email, telefone, idade, curso, origem, tipo_lead, evento, dia_evento,
                 evento_nome, evento_data, tipo_evento):
    """Submit a lead as a public form would"""
    lead_input = LeadInput(
        nome=nome, email=email, telefone=telefone, idade=idade, curso=curso,
        origem=origem, tipo_lead=tipo_lead, evento=evento, dia_evento=dia_evento,
        ip_address='127.0.0.1', user_agent='leadcapture-cli',
    )
    event_info = None
    if evento_nome:
        event_info = EventInfo(evento_nome=evento_nome, evento_data=evento_data, tipo_evento=tipo_evento)

    try:
        result = _app().leads.submit(lead_input, event_info)
    except ValidationFailed as exc:
        click.echo("Invalid lead:", err=True)
        for error in exc.errors:
            click.echo(f"  - {error}", err=True)
        click.get_current_context().exit(1)
        return

    click.echo(f"\n✓ {result.message}")
    click.echo(f"  Lead #{result.id} | new lead: {'yes' if result.is_new_lead else 'no'}"
               f" | new participation: {'yes' if result.is_new_participation else 'no'}")


@leads.command('list')
@click.option('--page', default=1, help='Page number')
@click.option('--limit', default=50, help='Page size')
@click.option('--curso', help='Filter by course')
@click.option('--status', type=click.Choice(LEAD_STATUSES), help='Filter by status')
@click.option('--tipo-lead', type=click.Choice(LEAD_TYPES), help='Filter by classification')
@click.option('--dia-evento', help='Filter by event day')
@click.option('--data-inicio', type=click.DateTime(formats=['%Y-%m-%d']), help='Created on/after (YYYY-MM-DD)')
@click.option('--data-fim', type=click.DateTime(formats=['%Y-%m-%d']), help='Created on/before (YYYY-MM-DD)')
@click.option('--search', help='Search name, email or phone')
@log_call
def leads_list(page, limit, curso, status, tipo_lead, dia_evento, data_inicio, data_fim, search):
    """List leads, newest first"""
    filters = LeadFilters(
        curso=curso, status=status, tipo_lead=tipo_lead, dia_evento=dia_evento,
        data_inicio=data_inicio.date() if data_inicio else None,
        data_fim=data_fim.date() if data_fim else None,
        search=search,
    )
    result = _app().leads.list_leads(page, limit, filters)
    rows = result['leads']
    pagination = result['pagination']

    if not rows:
        click.echo("No leads found.")
        return

    click.echo(f"\n{pagination['totalRecords']} leads (page {pagination['currentPage']}"
               f"/{pagination['totalPages']}):\n")
    click.echo(f"{'ID':<6} {'Name':<25} {'Email':<30} {'Course':<22} {'Status':<12} {'Sent':<5}")
    click.echo("-" * 104)

    for lead in rows:
        click.echo(
            f"{lead.id:<6} {lead.nome[:23]:<25} {lead.email[:28]:<30} "
            f"{(lead.curso or '')[:20]:<22} {lead.status:<12} {'yes' if lead.enviado_n8n else 'no':<5}"
        )

    if pagination['hasNextPage']:
        click.echo(f"\n(more: --page {pagination['currentPage'] + 1})")


@leads.command('show')
@click.argument('lead_id', type=int)
@log_call
def leads_show(lead_id):
    """Show full lead details and participations"""
    logger = logging.getLogger("leadcapture")
    app = _app()
    lead = app.leads.find_by_id(lead_id)

    if not lead:
        logger.warning(f"leads_show | lead_id={lead_id} not found")
        click.echo(f"Lead ID {lead_id} not found.", err=True)
        return

    click.echo(f"\n{'='*80}")
    click.echo(f"LEAD #{lead.id}: {lead.nome}")
    click.echo(f"{'='*80}")
    click.echo(f"Email:        {lead.email}")
    click.echo(f"Phone:        {lead.telefone}")
    click.echo(f"Age:          {lead.idade}")
    click.echo(f"Course:       {_fmt(lead.curso)}")
    click.echo(f"Source:       {lead.origem}")
    click.echo(f"Status:       {lead.status}")
    click.echo(f"Type:         {lead.tipo_lead}")
    if lead.evento or lead.dia_evento:
        click.echo(f"Event:        {_fmt(lead.evento)} (day {_fmt(lead.dia_evento)})")
    click.echo(f"Submissions:  {lead.total_envios} (last {_fmt(lead.ultimo_envio_data)}, {_fmt(lead.ultimo_envio_dia)})")
    click.echo(f"Delivered:    {'yes' if lead.enviado_n8n else 'no'} ({lead.tentativas_n8n} attempts)")
    if lead.ultimo_erro_n8n:
        click.echo(f"Last error:   {lead.ultimo_erro_n8n}")
    click.echo(f"Created:      {_fmt(lead.data_criacao)}")
    click.echo(f"Updated:      {_fmt(lead.data_atualizacao)}")

    click.echo(f"\n{'='*80}")
    click.echo("PARTICIPATIONS")
    click.echo(f"{'='*80}")

    participations = app.participations.by_lead(lead_id)
    if participations:
        for p in participations:
            click.echo(f"[{_fmt(p.data_participacao)}] #{p.id} {p.evento_nome} ({p.tipo_evento})")
    else:
        click.echo("No participations yet.")

    click.echo()


@leads.command('status')
@click.argument('lead_id', type=int)
@click.argument('status', type=click.Choice(LEAD_STATUSES))
@log_call
def leads_status(lead_id, status):
    """Change a lead's lifecycle status"""
    try:
        _app().leads.update_status(lead_id, status)
    except NotFound:
        _fail(f"Lead ID {lead_id} not found.")
        return
    click.echo(f"✓ Lead #{lead_id} status updated to: {status}")


@leads.command('delete')
@click.argument('lead_id', type=int)
@click.confirmation_option(prompt='Delete this lead and all of its participations?')
@log_call
def leads_delete(lead_id):
    """Delete a lead (participations are removed with it)"""
    try:
        _app().leads.delete(lead_id)
    except NotFound:
        _fail(f"Lead ID {lead_id} not found.")
        return
    click.echo(f"✓ Lead #{lead_id} deleted")


@leads.command('stats')
@log_call
def leads_stats():
    """Show lead statistics"""
    stats = _app().leads.stats()

    click.echo(f"\n{'='*50}")
    click.echo("LEAD STATISTICS")
    click.echo(f"{'='*50}")
    click.echo(f"Total:        {stats['total']}")
    click.echo(f"Today:        {stats['hoje']}")
    click.echo(f"Last 7 days:  {stats['semana']}")
    click.echo(f"This month:   {stats['mes']}")
    click.echo(f"Delivered:    {stats['enviados_n8n']}")

    click.echo("\nBy course:")
    for row in stats['por_curso']:
        click.echo(f"  {(row['curso'] or '(none)')[:35]:<37} {row['count']}")
    click.echo("\nBy status:")
    for row in stats['por_status']:
        click.echo(f"  {(row['status'] or '(none)'):<37} {row['count']}")
    click.echo()


@leads.command('resend')
@log_call
def leads_resend():
    """Retry webhook delivery of undelivered leads"""
    app = _app()
    if not app.notifier.enabled:
        click.echo("Webhook URL not configured (WEBHOOK_URL).", err=True)
        return
    summary = app.notifier.resend_undelivered()
    click.echo(f"Resend complete: {summary['success']} delivered, "
               f"{summary['errors']} failed ({summary['total']} pending)")


# =============================================================================
# EVENTS COMMANDS
# =============================================================================

@cli.group()
def events():
    """Event participations"""
    pass


@events.command('list')
@log_call
def events_list():
    """List events with participation counts"""
    rows = _app().participations.list_events()

    if not rows:
        click.echo("No events yet.")
        return

    click.echo(f"\n{'Event':<35} {'Date':<14} {'Kind':<10} {'Count':>6}  {'Last':<19}")
    click.echo("-" * 90)
    for row in rows:
        click.echo(
            f"{row['evento_nome'][:33]:<35} {(row['evento_data'] or '')[:12]:<14} "
            f"{(row['tipo_evento'] or '')[:8]:<10} {row['total_participacoes']:>6}  "
            f"{_fmt(row['ultima_participacao']):<19}"
        )


@events.command('roster')
@click.argument('evento_nome')
@log_call
def events_roster(evento_nome):
    """List participants of one event"""
    rows = _app().participations.by_event(evento_nome)

    if not rows:
        click.echo(f"No participants for '{evento_nome}'.")
        return

    click.echo(f"\n{len(rows)} participants in '{evento_nome}':\n")
    click.echo(f"{'ID':<6} {'Lead':<6} {'Name':<25} {'Email':<30} {'Phone':<18}")
    click.echo("-" * 90)
    for p in rows:
        click.echo(
            f"{p.id:<6} {p.lead_id:<6} {(p.nome or '')[:23]:<25} "
            f"{(p.email or '')[:28]:<30} {(p.telefone or '')[:16]:<18}"
        )


@events.command('stats')
@log_call
def events_stats():
    """Show participation statistics"""
    stats = _app().participations.aggregate_stats()

    click.echo(f"\nParticipations: {stats['total_participacoes']}")
    click.echo(f"Today:          {stats['participacoes_hoje']}")
    click.echo(f"Last 7 days:    {stats['participacoes_semana']}")
    click.echo(f"Events:         {stats['eventos_ativos']}")
    click.echo(f"Participants:   {stats['leads_participantes']}")
    if stats['top_eventos']:
        click.echo("\nTop events:")
        for row in stats['top_eventos']:
            click.echo(f"  {row['evento_nome'][:40]:<42} {row['participacoes']}")


@events.command('remove')
@click.argument('participation_id', type=int)
@log_call
def events_remove(participation_id):
    """Remove one participation"""
    try:
        _app().participations.remove(participation_id)
    except NotFound:
        _fail(f"Participation ID {participation_id} not found.")
        return
    click.echo(f"✓ Participation #{participation_id} removed")


if __name__ == '__main__':
    cli()
