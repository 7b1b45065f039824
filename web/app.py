#!/usr/bin/env python3

from dataclasses import fields, is_dataclass
from datetime import date, datetime
from typing import Optional

from flask import Flask, jsonify, request

from focusstats.config import Config, get_config_manager
from focusstats.errors import IntegrityError, NotFoundError, RetentionError
from focusstats.models import AppUsage, Schedule, Session, format_duration
from focusstats.periods import PERIOD_KINDS, date_key
from focusstats.service import FocusService

app = Flask(__name__)

# Initialize configuration
config_manager = get_config_manager()

_service: Optional[FocusService] = None

NO_DATA_MESSAGE = "no sessions yet"


def get_service() -> FocusService:
    """Return the shared FocusService, creating it from the loaded config."""
    global _service
    if _service is None:
        _service = FocusService(config_manager.config)
    return _service


def set_service(service: Optional[FocusService]) -> None:
    global _service
    _service = service


def to_json(value):
    """Convert dataclasses, datetimes and containers into JSON-ready values."""
    if is_dataclass(value) and not isinstance(value, type):
        data = {f.name: to_json(getattr(value, f.name)) for f in fields(value)}
        # Derived figures are properties, not fields
        for prop in ("completion_rate", "average_session_duration", "actual_locked_time",
                     "time_saved_percentage", "is_open", "is_interrupted"):
            if hasattr(value, prop):
                data[prop] = getattr(value, prop)
        return data
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (list, tuple)):
        return [to_json(v) for v in value]
    if isinstance(value, dict):
        return {k: to_json(v) for k, v in value.items()}
    return value


def _stats_payload(kind: str, key: str, stats):
    payload = {"kind": kind, "key": key, "stats": to_json(stats)}
    if stats is None:
        payload["message"] = NO_DATA_MESSAGE
    else:
        payload["focus_time_display"] = format_duration(stats.total_focus_time)
    return payload


def _check_kind(kind: str):
    if kind not in PERIOD_KINDS:
        raise IntegrityError(f"Unknown period kind {kind!r}, use one of {', '.join(PERIOD_KINDS)}")


def _usage_from_json(items) -> list:
    return [
        AppUsage(
            package_name=item["package_name"],
            usage_time=int(item["usage_time"]),
            is_whitelisted=bool(item.get("is_whitelisted", False)),
            app_name=item.get("app_name"),
        )
        for item in items or []
    ]


def _schedule_from_json(data: dict, schedule_id: Optional[int] = None) -> Schedule:
    return Schedule(
        id=schedule_id if schedule_id is not None else data.get("id"),
        name=data["name"],
        start_time=data["start_time"],
        end_time=data["end_time"],
        repeat_days=[int(d) for d in data.get("repeat_days", [])],
        repeat_type=data.get("repeat_type", "WEEKLY"),
        enabled=bool(data.get("enabled", True)),
        pre_notify_enabled=bool(data.get("pre_notify_enabled", False)),
        pre_notify_minutes=int(data.get("pre_notify_minutes", 0)),
    )


# =============================================================================
# Error mapping
# =============================================================================

@app.errorhandler(NotFoundError)
def handle_not_found(e):
    return jsonify({'error': str(e)}), 404


@app.errorhandler(IntegrityError)
def handle_integrity(e):
    return jsonify({'error': str(e)}), 400


@app.errorhandler(RetentionError)
def handle_retention(e):
    return jsonify({'error': str(e), 'retry': True}), 500


@app.errorhandler(KeyError)
def handle_missing_field(e):
    return jsonify({'error': f'Missing required field: {e.args[0]}'}), 400


@app.errorhandler(ValueError)
@app.errorhandler(TypeError)
def handle_bad_value(e):
    return jsonify({'error': f'Invalid value: {e}'}), 400


# =============================================================================
# Sessions
# =============================================================================

@app.route('/api/sessions', methods=['GET'])
def list_sessions():
    """List sessions, newest first.

    Query params (one of):
        date: YYYY-MM-DD
        start, end: inclusive start-time range
        limit: number of most recent sessions (default 10)
    """
    storage = get_service().storage
    date_param = request.args.get('date')
    start_param = request.args.get('start')
    end_param = request.args.get('end')

    if date_param:
        sessions = storage.get_sessions_for_date(date_param)
    elif start_param or end_param:
        if not (start_param and end_param):
            return jsonify({'error': 'start and end parameters required'}), 400
        sessions = storage.get_sessions_in_range(start_param, end_param)
    else:
        try:
            limit = int(request.args.get('limit', 10))
        except ValueError:
            return jsonify({'error': 'limit must be an integer'}), 400
        sessions = storage.get_recent_sessions(limit)

    return jsonify({'sessions': to_json(sessions), 'count': len(sessions)})


@app.route('/api/sessions/active', methods=['GET'])
def get_active_session():
    session = get_service().storage.get_active_session()
    return jsonify({'session': to_json(session)})


@app.route('/api/sessions/<int:session_id>', methods=['GET'])
def get_session(session_id):
    storage = get_service().storage
    session = storage.get_session(session_id)
    if session is None:
        raise NotFoundError(f"Session {session_id} not found")
    usage = storage.get_app_usage_for_session(session_id)
    app_usage = []
    for row in usage:
        entry = to_json(row)
        entry['usage_percentage'] = round(row.usage_percentage(session.actual_duration), 1)
        app_usage.append(entry)
    return jsonify({'session': to_json(session), 'app_usage': app_usage})


@app.route('/api/sessions', methods=['POST'])
def create_session():
    """Record a session together with its app usage.

    Request body:
        {
            "start_time": "2024-01-01T09:00:00",
            "end_time": "2024-01-01T09:30:00",
            "actual_duration": 1500,
            "completed": true,
            "focus_score": 0.8,
            "usage": [{"package_name": "...", "usage_time": 120, "is_whitelisted": true}]
        }
    """
    data = request.get_json(silent=True) or {}
    session = Session(
        start_time=data["start_time"],
        end_time=data.get("end_time"),
        actual_duration=int(data.get("actual_duration", 0)),
        completed=bool(data.get("completed", False)),
        focus_score=float(data.get("focus_score", 0.0)),
        target_duration=int(data.get("target_duration", 0)),
        source=data.get("source", "manual"),
    )
    session = get_service().record_session(session, _usage_from_json(data.get("usage")))
    return jsonify({'session': to_json(session)}), 201


@app.route('/api/sessions/open', methods=['POST'])
def open_session():
    data = request.get_json(silent=True) or {}
    session = get_service().open_session(
        data.get("start_time") or datetime.now(),
        target_duration=int(data.get("target_duration", 0)),
        source=data.get("source", "manual"),
    )
    return jsonify({'session': to_json(session)}), 201


@app.route('/api/sessions/<int:session_id>/finalize', methods=['POST'])
def finalize_session(session_id):
    data = request.get_json(silent=True) or {}
    session = get_service().finalize_session(
        session_id,
        data["end_time"],
        int(data["actual_duration"]),
        bool(data["completed"]),
        float(data["focus_score"]),
        _usage_from_json(data.get("usage")),
    )
    return jsonify({'session': to_json(session)})


# =============================================================================
# Rollups and comparisons
# =============================================================================

@app.route('/api/stats/<kind>/<key>', methods=['GET'])
def get_stats(kind, key):
    """Rollup for one period.

    Returns the cached row; pass ?refresh=1 to recompute first. A period
    without sessions returns "stats": null with a message.
    """
    _check_kind(kind)
    service = get_service()
    if request.args.get('refresh') in ('1', 'true'):
        stats = service.aggregator.refresh(kind, key)
    else:
        stats = service.storage.get_stats(kind, key)
    return jsonify(_stats_payload(kind, key, stats))


@app.route('/api/stats/<kind>/<key>/refresh', methods=['POST'])
def refresh_stats(kind, key):
    _check_kind(kind)
    stats = get_service().aggregator.refresh(kind, key)
    return jsonify(_stats_payload(kind, key, stats))


@app.route('/api/stats/daily', methods=['GET'])
def get_daily_stats_range():
    start_param = request.args.get('start')
    end_param = request.args.get('end')
    if not (start_param and end_param):
        return jsonify({'error': 'start and end parameters required'}), 400
    stats = get_service().storage.get_daily_stats_range(start_param, end_param)
    return jsonify({'stats': to_json(stats)})


@app.route('/api/stats/weekly', methods=['GET'])
def get_recent_weekly_stats():
    limit = request.args.get('limit', 4, type=int)
    stats = get_service().storage.get_recent_weekly_stats(limit)
    return jsonify({'stats': to_json(stats)})


@app.route('/api/stats/monthly', methods=['GET'])
def get_recent_monthly_stats():
    limit = request.args.get('limit', 6, type=int)
    stats = get_service().storage.get_recent_monthly_stats(limit)
    return jsonify({'stats': to_json(stats)})


@app.route('/api/totals', methods=['GET'])
def get_totals():
    """All-time totals over the session log.

    Query params:
        start, end: Optional bounds; when both are given the response adds
            the focus time of sessions lying wholly inside them.
    """
    storage = get_service().storage
    totals = {
        'total_sessions': storage.count_sessions(),
        'total_focus_time': storage.get_total_focus_time(),
        'total_active_days': storage.get_total_active_days(),
        'last_session_time': to_json(storage.get_last_session_time()),
    }
    start = request.args.get('start')
    end = request.args.get('end')
    if start and end:
        totals['period_focus_time'] = storage.get_total_focus_time_for_period(start, end)
    if totals['total_focus_time'] is None:
        totals['message'] = NO_DATA_MESSAGE
    return jsonify(totals)


@app.route('/api/compare/<kind>', methods=['GET'])
def compare(kind):
    """Cached rollup of the current period against the previous one.

    Query params:
        today: YYYY-MM-DD reference day (default: today)
    """
    _check_kind(kind)
    comparison = get_service().comparison.compare(kind, request.args.get('today'))
    payload = to_json(comparison)
    if comparison.previous is None:
        payload['message'] = NO_DATA_MESSAGE
    return jsonify(payload)


# =============================================================================
# Mobile usage
# =============================================================================

@app.route('/api/mobile-usage', methods=['GET'])
def list_mobile_usage():
    """Recent samples, or those within ?start=&end= dates, plus window bounds."""
    storage = get_service().storage
    start = request.args.get('start')
    end = request.args.get('end')
    if start or end:
        if not (start and end):
            return jsonify({'error': 'start and end must be given together'}), 400
        usage = storage.get_daily_mobile_usage_range(start, end)
    else:
        try:
            limit = int(request.args.get('limit', 30))
        except ValueError:
            return jsonify({'error': 'limit must be an integer'}), 400
        usage = storage.get_recent_daily_mobile_usage(limit)
    return jsonify({
        'usage': to_json(usage),
        'count': storage.get_daily_mobile_usage_count(),
        'oldest': storage.get_oldest_daily_mobile_usage_date(),
        'newest': storage.get_newest_daily_mobile_usage_date(),
    })


@app.route('/api/mobile-usage/<sample_date>', methods=['DELETE'])
def delete_mobile_usage(sample_date):
    if not get_service().storage.delete_daily_mobile_usage(sample_date):
        raise NotFoundError(f"No mobile usage sample for {sample_date}")
    return jsonify({'success': True})


@app.route('/api/mobile-usage', methods=['POST'])
def record_mobile_usage():
    data = request.get_json(silent=True) or {}
    sample = get_service().record_mobile_usage(
        data.get("date") or date_key(date.today()),
        int(data["total_mobile_usage"]),
    )
    return jsonify({'usage': to_json(sample)}), 201


# =============================================================================
# Schedules
# =============================================================================

@app.route('/api/schedules', methods=['GET'])
def list_schedules():
    registry = get_service().schedules
    if request.args.get('enabled') in ('1', 'true'):
        schedules = registry.list_enabled()
    else:
        schedules = registry.list_all()
    return jsonify({'schedules': to_json(schedules)})


@app.route('/api/schedules', methods=['POST'])
def create_schedule():
    data = request.get_json(silent=True) or {}
    schedule = get_service().schedules.save(_schedule_from_json(data))
    return jsonify({'schedule': to_json(schedule)}), 201


@app.route('/api/schedules/<int:schedule_id>', methods=['GET'])
def get_schedule(schedule_id):
    schedule = get_service().schedules.get(schedule_id)
    if schedule is None:
        raise NotFoundError(f"Schedule {schedule_id} not found")
    return jsonify({'schedule': to_json(schedule)})


@app.route('/api/schedules/<int:schedule_id>', methods=['PUT'])
def update_schedule(schedule_id):
    data = request.get_json(silent=True) or {}
    schedule = get_service().schedules.update(_schedule_from_json(data, schedule_id))
    return jsonify({'schedule': to_json(schedule)})


@app.route('/api/schedules/<int:schedule_id>/enabled', methods=['POST'])
def set_schedule_enabled(schedule_id):
    data = request.get_json(silent=True) or {}
    schedule = get_service().schedules.set_enabled(schedule_id, bool(data["enabled"]))
    return jsonify({'schedule': to_json(schedule)})


@app.route('/api/schedules/<int:schedule_id>', methods=['DELETE'])
def delete_schedule(schedule_id):
    if not get_service().schedules.delete_by_id(schedule_id):
        raise NotFoundError(f"Schedule {schedule_id} not found")
    return jsonify({'success': True})


# =============================================================================
# Retention, config and status
# =============================================================================

@app.route('/api/retention/run', methods=['POST'])
def run_retention():
    """Run retention.

    Request body (optional):
        {"before": "2024-01-01"}   purge everything older than this cutoff
    Without "before" the configured horizons and FIFO window are applied.
    """
    data = request.get_json(silent=True) or {}
    service = get_service()
    if data.get("before"):
        report = service.retention.purge_before(data["before"])
    else:
        report = service.run_retention()
    return jsonify({'success': True, 'report': report.to_dict()})


@app.route('/api/config', methods=['GET'])
def get_config():
    """Return current configuration."""
    return jsonify(config_manager.to_dict())


@app.route('/api/config', methods=['PATCH'])
def update_config():
    """Update configuration values.

    Request body:
        {
            "section": "retention",
            "key": "session_days",
            "value": 60
        }
    """
    data = request.json or {}

    if not all(k in data for k in ['section', 'key', 'value']):
        return jsonify({"error": "Missing required fields: section, key, value"}), 400

    try:
        changed = config_manager.update(data['section'], data['key'], data['value'])
    except OSError as e:
        return jsonify({"error": f"Failed to update config: {str(e)}"}), 500

    restart_keys = {
        'storage': ['data_dir', 'db_filename'],
        'web': ['host', 'port'],
        'aggregation': ['refresh_mode'],
    }
    requires_restart = data['key'] in restart_keys.get(data['section'], [])

    return jsonify({
        "success": changed,
        "requires_restart": requires_restart,
        "config": config_manager.to_dict()
    })


@app.route('/api/config/reset', methods=['POST'])
def reset_config():
    try:
        config_manager.config = Config()
        config_manager.save()
    except OSError as e:
        return jsonify({"error": f"Failed to reset config: {str(e)}"}), 500

    return jsonify({"success": True, "config": config_manager.to_dict()})


@app.route('/api/status', methods=['GET'])
def get_status():
    return jsonify(get_service().get_status())


if __name__ == '__main__':
    web_config = config_manager.config.web
    app.run(debug=True, host=web_config.host, port=web_config.port)
