"""Celery application configuration."""

import ssl
from pathlib import Path

from celery import Celery
from dotenv import load_dotenv

# Load .env before settings so worker processes see the same configuration
# as the API when started from the project root
env_file = Path(__file__).parent.parent.parent / ".env"
if env_file.exists():
    load_dotenv(env_file)

import structlog  # noqa: E402

from reqconflict.core.config import get_settings  # noqa: E402

settings = get_settings()

celery_app = Celery(
    "reqconflict_worker",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
)

# SSL configuration for rediss:// brokers
_uses_tls = settings.celery_broker_url.startswith("rediss://")
_ssl_config = {"ssl_cert_reqs": ssl.CERT_REQUIRED} if _uses_tls else {}

_beat_schedule = {}
if settings.model_warming_interval_minutes > 0:
    _beat_schedule["warm-inference-models"] = {
        "task": "reqconflict.workers.tasks.analysis_tasks.warm_inference_models",
        "schedule": settings.model_warming_interval_minutes * 60,
        "options": {"queue": "low"},
    }

celery_app.conf.update(
    # Task settings
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    # Task execution settings
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_acks_on_failure_or_timeout=True,
    # Result backend settings
    result_expires=3600,  # 1 hour
    # Worker settings: analysis runs are long and I/O bound
    worker_prefetch_multiplier=1,
    worker_send_task_events=True,
    worker_max_tasks_per_child=1000,
    task_time_limit=3600,  # Hard timeout: 1 hour per task
    task_soft_time_limit=3300,  # Soft timeout: 55 minutes
    task_queues={
        "default": {"exchange": "default", "binding_key": "default"},
        "low": {"exchange": "low", "binding_key": "low"},
    },
    task_default_queue="default",
    task_routes={
        "reqconflict.workers.tasks.analysis_tasks.*": {"queue": "default"},
    },
    # visibility_timeout must exceed task_time_limit to prevent duplicate execution
    broker_transport_options={
        "visibility_timeout": 7200,
        **_ssl_config,
    },
    broker_use_ssl=_ssl_config if _uses_tls else None,
    redis_backend_use_ssl=_ssl_config if _uses_tls else None,
    beat_schedule=_beat_schedule,
)

celery_app.autodiscover_tasks(["reqconflict.workers.tasks"])

# Explicit import so tasks are registered even where autodiscovery is unreliable

_logger = structlog.get_logger(__name__)

from reqconflict.workers.tasks import analysis_tasks  # noqa: E402, F401

_logger.info(
    "celery_task_modules_imported",
    registered_tasks=len(celery_app.tasks),
)
