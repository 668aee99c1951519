# celery_worker.py
import logging
from celery.schedules import crontab
from app import create_app
from celery_config import create_celery_app

logger = logging.getLogger(__name__)

# Create Celery instance with shared configuration
celery = create_celery_app(__name__)

# The Flask app provides context for tasks when they run
flask_app = create_app()


class ContextTask(celery.Task):
    def __call__(self, *args, **kwargs):
        with flask_app.app_context():
            return self.run(*args, **kwargs)


celery.Task = ContextTask

# --- Celery Beat Schedule ---
celery.conf.beat_schedule = {
    'autopilot-coordinator-tick': {
        'task': 'tasks.autopilot_tasks.coordinator_tick',
        # Resume parked executions and run health checks
        'schedule': 30.0,
    },
    'autopilot-process-due-schedules': {
        'task': 'tasks.autopilot_tasks.process_due_schedules',
        'schedule': 30.0,
    },
    'autopilot-learning-cycle': {
        'task': 'tasks.autopilot_tasks.run_learning_cycle',
        # Decay and prune timing insights once per learning cycle
        'schedule': 60.0 * flask_app.config.get('LEARNING_CYCLE_MINUTES', 30),
    },
    'autopilot-replay-cycle': {
        'task': 'tasks.autopilot_tasks.run_replay_cycle',
        'schedule': 3600.0,  # 1 hour
    },
    'autopilot-replay-analytics-snapshot': {
        'task': 'tasks.autopilot_tasks.record_replay_analytics',
        # Daily at 6 AM UTC
        'schedule': crontab(hour=6, minute=0),
        'kwargs': {'days': 30}
    },
}
celery.conf.timezone = 'UTC'

# Import tasks to ensure they're registered with Celery
# This must be done after the Flask app is created
with flask_app.app_context():
    import tasks.autopilot_tasks  # noqa: E402,F401
    logger.info(f"Registered tasks: {sorted(name for name in celery.tasks.keys() if name.startswith('tasks.'))}")
