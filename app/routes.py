from flask import Blueprint, abort, current_app, request

from .datastore import get_event as ds_get_event
from .datastore import list_event_entries as ds_list_event_entries
from .errors import FeeEngineError
from .fees import quote_entry, validate_submitted_fee
from .reconcile import reconcile
from .schedule import resolve_schedule, schedule_warnings


bp = Blueprint('main', __name__)


def _truthy(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ('1', 'true', 'yes', 'on')
    return bool(value)


def _json_payload() -> dict:
    """Return the JSON body as a dict; anything other than an object is a 400."""
    payload = request.get_json(silent=True)
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        abort(400, description='Request body must be a JSON object.')
    return payload


@bp.route('/health/db')
def health_db():
    """Database connectivity health check.

    Connects with ``DATABASE_URL`` and reports server/user info. Always
    returns HTTP 200 with a JSON body describing the connection status.
    """
    import os
    url = os.environ.get('DATABASE_URL')
    if not url:
        return {
            'connected': False,
            'status': 'no_database_url',
            'message': 'DATABASE_URL is not set.',
        }
    try:
        import psycopg2  # type: ignore
        with psycopg2.connect(url, connect_timeout=5) as conn:
            with conn.cursor() as cur:
                cur.execute('SELECT current_user, current_database(), version()')
                user, db, ver = cur.fetchone()
        return {
            'connected': True,
            'status': 'ok',
            'user': user,
            'database': db,
            'server_version': (ver or '').split('\n')[0],
        }
    except Exception as e:  # pragma: no cover - best-effort health output
        return {'connected': False, 'status': 'error', 'error': str(e)}


@bp.route('/api/events/<event_id>/fee-schedule')
def fee_schedule(event_id):
    """Return the event's resolved fee schedule and any configuration problems."""
    event = ds_get_event(event_id)
    if not event:
        abort(404, description=f"Event not found: {event_id}")
    schedule = resolve_schedule(event)
    return {
        'event_id': event_id,
        'event_name': event.get('name'),
        'schedule': schedule.as_dict(),
        'warnings': schedule_warnings(schedule),
    }


@bp.route('/api/events/<event_id>/fee-quote', methods=['POST'])
def fee_quote(event_id):
    """Price a candidate entry against the event's current entries.

    Used by the entry submission flow before it persists ``calculated_fee``.
    When ``submitted_fee`` is present the response also says whether the
    client-side fee was correct.
    """
    payload = _json_payload()
    event = ds_get_event(event_id)
    if not event:
        abort(404, description=f"Event not found: {event_id}")
    candidate = {
        'id': payload.get('id'),
        'event_id': event_id,
        'eodsa_id': payload.get('eodsa_id'),
        'contestant_id': payload.get('contestant_id'),
        'participant_ids': payload.get('participant_ids'),
        'mastery': payload.get('mastery'),
        'performance_type': payload.get('performance_type'),
        'submitted_at': payload.get('submitted_at'),
    }
    existing = ds_list_event_entries(event_id) or []
    try:
        breakdown = quote_entry(candidate, existing, resolve_schedule(event))
    except FeeEngineError as e:
        abort(400, description=str(e))
    body = {'event_id': event_id, **breakdown}
    if 'submitted_fee' in payload:
        body['validation'] = validate_submitted_fee(payload.get('submitted_fee'), breakdown)
        if not body['validation']['was_correct']:
            current_app.logger.info(
                "fee_quote corrected event=%s submitted=%s validated=%s",
                event_id,
                payload.get('submitted_fee'),
                breakdown['total_fee'],
            )
    return body


@bp.route('/api/admin/events/<event_id>/recalculate-fees', methods=['POST'])
def recalculate_fees(event_id):
    """Recalculate every entry fee of an event against its current schedule."""
    payload = _json_payload()
    dry_run = _truthy(payload.get('dry_run', request.args.get('dry_run', False)))
    current_app.logger.info("Starting fee recalculation event=%s dry_run=%s", event_id, dry_run)
    try:
        summary = reconcile(event_id, dry_run=dry_run)
    except Exception as e:  # pylint: disable=broad-except
        current_app.logger.exception("Error recalculating fees for event %s", event_id)
        return {'success': False, 'error': str(e) or 'Failed to recalculate fees'}, 500
    return {'success': True, **summary}
