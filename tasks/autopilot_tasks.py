"""
Campaign Autopilot Celery Tasks
Periodic drivers for the execution coordinator, timing knowledge base and
pattern replay engine

Tasks share the worker's Flask app, so singleton services such as the
coordinator keep their in-flight steps from one run to the next.
"""

import logging
from typing import Any, Dict, Optional

from celery_worker import celery, flask_app
from logging_config import task_log_context
from utils.datetime_utils import utc_now

logger = logging.getLogger(__name__)


@celery.task(name='tasks.autopilot_tasks.coordinator_tick')
def coordinator_tick() -> Dict[str, Any]:
    """
    Resume parked executions and check the health of running ones (every 30 seconds).

    Returns:
        Dict with success status and the tick summary
    """
    try:
        app = flask_app
        with app.app_context(), task_log_context('coordinator_tick'):
            coordinator = app.services.get('campaign_coordinator')
            summary = coordinator.tick()
            return {
                'success': True,
                'summary': summary,
                'timestamp': utc_now().isoformat()
            }
    except Exception as e:
        logger.error(f"Error in coordinator tick: {e}")
        return {'success': False, 'error': str(e)}


@celery.task(name='tasks.autopilot_tasks.process_due_schedules')
def process_due_schedules() -> Dict[str, Any]:
    """
    Launch due campaign schedules in priority order while capacity allows.

    Returns:
        Dict with success status and launched/deferred counts
    """
    try:
        app = flask_app
        with app.app_context(), task_log_context('process_due_schedules'):
            coordinator = app.services.get('campaign_coordinator')
            summary = coordinator.process_due()
            if summary['deferred']:
                logger.info(f"{summary['deferred']} due schedules deferred for capacity")
            return {
                'success': True,
                'summary': summary,
                'timestamp': utc_now().isoformat()
            }
    except Exception as e:
        logger.error(f"Error processing due schedules: {e}")
        return {'success': False, 'error': str(e)}


@celery.task(name='tasks.autopilot_tasks.run_learning_cycle')
def run_learning_cycle() -> Dict[str, Any]:
    """
    Decay and prune timing insights. Safe to run more than once per cycle.

    Returns:
        Dict with success status and decayed/pruned counts
    """
    try:
        app = flask_app
        with app.app_context(), task_log_context('run_learning_cycle'):
            knowledge_base = app.services.get('timing_knowledge_base')
            result = knowledge_base.decay_and_prune()
            return {
                'success': True,
                'decayed': result['decayed'],
                'pruned': result['pruned'],
                'cycle': result['cycle']
            }
    except Exception as e:
        logger.error(f"Error in learning cycle: {e}")
        return {'success': False, 'error': str(e)}


@celery.task(name='tasks.autopilot_tasks.run_replay_cycle')
def run_replay_cycle() -> Dict[str, Any]:
    """
    Monitor active replays and replay new opportunities (hourly).

    Returns:
        Dict with success status and the cycle summary
    """
    try:
        app = flask_app
        with app.app_context(), task_log_context('run_replay_cycle'):
            engine = app.services.get('pattern_replay_engine')
            summary = engine.run_cycle()
            return {
                'success': True,
                'summary': summary,
                'timestamp': utc_now().isoformat()
            }
    except Exception as e:
        logger.error(f"Error in replay cycle: {e}")
        return {'success': False, 'error': str(e)}


@celery.task(name='tasks.autopilot_tasks.trigger_replay', bind=True, max_retries=3)
def trigger_replay(self, pattern_id: str, overrides: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """
    Replay one pattern on demand.

    Args:
        pattern_id: Pattern to replay
        overrides: Replay config overrides for this replay only
    """
    from services.exceptions import NotFoundError, CollaboratorError

    try:
        app = flask_app
        with app.app_context(), task_log_context('trigger_replay', pattern_id=pattern_id):
            engine = app.services.get('pattern_replay_engine')
            replay = engine.trigger_manual_replay(pattern_id, overrides)
            return {
                'success': True,
                'replay_id': replay.id,
                'status': replay.status
            }
    except NotFoundError as e:
        logger.warning(f"Manual replay rejected: {e}")
        return {'success': False, 'error': str(e)}
    except CollaboratorError as e:
        logger.error(f"Manual replay of {pattern_id} failed, retrying: {e}")
        # Retry with exponential backoff
        retry_in = 60 * (2 ** self.request.retries)
        raise self.retry(exc=e, countdown=retry_in)
    except Exception as e:
        logger.error(f"Error triggering replay for {pattern_id}: {e}")
        return {'success': False, 'error': str(e)}


@celery.task(name='tasks.autopilot_tasks.record_replay_analytics')
def record_replay_analytics(days: int = 30) -> Dict[str, Any]:
    """
    Snapshot replay analytics into the memory log for dashboards (daily).
    """
    try:
        app = flask_app
        with app.app_context(), task_log_context('record_replay_analytics', days=days):
            engine = app.services.get('pattern_replay_engine')
            memory = app.services.get('memory_repository')
            analytics = engine.get_analytics(days=days)
            memory.store(f"replay:analytics:{utc_now().date().isoformat()}", analytics,
                         ['replay', 'analytics'])
            memory.commit()
            return {
                'success': True,
                'total_replays': analytics['total_replays'],
                'success_rate': analytics['success_rate']
            }
    except Exception as e:
        logger.error(f"Error recording replay analytics: {e}")
        return {'success': False, 'error': str(e)}
