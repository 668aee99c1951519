"""
Autopilot status routes

Read-only JSON surface for dashboards: campaign capacity, schedules,
replay analytics and the timing knowledge base.
"""

from flask import Blueprint, jsonify, request, current_app
import logging

logger = logging.getLogger(__name__)

autopilot_bp = Blueprint('autopilot', __name__, url_prefix='/autopilot')

MAX_ANALYTICS_DAYS = 365


@autopilot_bp.route('/status')
def campaign_status():
    """Running executions, pending schedules and capacity utilization"""
    try:
        coordinator = current_app.services.get('campaign_coordinator')
        return jsonify(coordinator.get_campaign_status())
    except Exception as e:
        logger.error(f"Error loading campaign status: {e}")
        return jsonify({'success': False, 'error': 'Failed to load campaign status'}), 500


@autopilot_bp.route('/schedules/<int:schedule_id>')
def schedule_info(schedule_id):
    coordinator = current_app.services.get('campaign_coordinator')
    result = coordinator.get_schedule_info(schedule_id)
    if result.is_failure:
        status_code = 404 if result.error_code == 'NOT_FOUND' else 400
        return jsonify({'success': False, 'error': result.error}), status_code
    return jsonify(result.data)


@autopilot_bp.route('/replays/analytics')
def replay_analytics():
    """Replay analytics over a trailing window (?days=N, default 30)"""
    days = request.args.get('days', 30, type=int)
    if days is None or days < 1 or days > MAX_ANALYTICS_DAYS:
        return jsonify({'success': False,
                        'error': f'days must be between 1 and {MAX_ANALYTICS_DAYS}'}), 400
    try:
        engine = current_app.services.get('pattern_replay_engine')
        return jsonify(engine.get_analytics(days=days))
    except Exception as e:
        logger.error(f"Error loading replay analytics: {e}")
        return jsonify({'success': False, 'error': 'Failed to load replay analytics'}), 500


@autopilot_bp.route('/replays/<int:replay_id>')
def replay_status(replay_id):
    engine = current_app.services.get('pattern_replay_engine')
    result = engine.get_replay_status(replay_id)
    if result.is_failure:
        return jsonify({'success': False, 'error': result.error}), 404
    return jsonify(result.data)


@autopilot_bp.route('/insights')
def timing_insights():
    """Knowledge base summary: insight counts per segment and seasonal multiplier"""
    knowledge_base = current_app.services.get('timing_knowledge_base')
    return jsonify(knowledge_base.summarize())
