"""
Celery application for the settlement import workers
"""
import time
from typing import Any, Dict

import psutil
import structlog
from celery import Celery
from celery.signals import setup_logging, task_postrun, task_prerun, worker_ready

from ..config import configure_logging, settings

logger = structlog.get_logger(__name__)


@setup_logging.connect
def config_loggers(*args, **kwargs):
    """Configure structured logging for Celery"""
    configure_logging()


celery_app = Celery(
    "settlement_import",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
)

celery_app.config_from_object(settings.celery_config)

celery_app.autodiscover_tasks([
    "settlement_import.tasks",
])


def worker_resources() -> Dict[str, Any]:
    """Memory use of this worker process and of the host"""
    process = psutil.Process()
    memory = psutil.virtual_memory()
    return {
        'rss_mb': round(process.memory_info().rss / 1024 / 1024, 2),
        'memory_percent': memory.percent,
        'timestamp': time.time(),
    }


@celery_app.task(bind=True, name='settlement_import.health_check')
def health_check(self):
    """Report worker liveness and memory headroom"""
    resources = worker_resources()
    return {
        "status": "healthy" if resources['memory_percent'] < 90 else "unhealthy",
        "worker_id": self.request.id,
        "timestamp": resources['timestamp'],
        "resources": resources,
    }


@worker_ready.connect
def worker_ready_handler(sender=None, **kwargs):
    """Handle worker ready signal"""
    logger.info("Worker ready", worker_name=str(sender), environment=settings.environment)


@task_prerun.connect
def task_prerun_handler(sender=None, task_id=None, task=None, **kwds):
    logger.info("Task starting", task_id=task_id, task_name=task.name if task else "unknown",
                rss_mb=worker_resources()['rss_mb'])


@task_postrun.connect
def task_postrun_handler(sender=None, task_id=None, task=None, state=None, **kwds):
    logger.info("Task completed", task_id=task_id, task_name=task.name if task else "unknown",
                state=state, rss_mb=worker_resources()['rss_mb'])


if __name__ == "__main__":
    celery_app.start()
