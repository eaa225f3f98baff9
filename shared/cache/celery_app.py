"""
Configuración de Celery para tareas asíncronas
Las notificaciones de OTP se envían fuera del request (fire-and-forget)
"""
from celery import Celery
from kombu import Queue, Exchange
import os
import logging

logger = logging.getLogger(__name__)

# Configuración de Redis
REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
REDIS_MAX_CONNECTIONS = int(os.getenv("CELERY_REDIS_MAX_CONNECTIONS", "50"))

# Crear aplicación Celery
celery_app = Celery(
    "gatekeeper",
    broker=REDIS_URL,
    backend=REDIS_URL,
    include=[
        "services.notifications.tasks.otp_tasks",
    ]
)

default_exchange = Exchange("default", type="direct")
priority_exchange = Exchange("priority", type="direct")

celery_app.conf.task_queues = (
    # Los OTP desbloquean terminales en la puerta: alta prioridad
    Queue("high_priority", priority_exchange, routing_key="high"),
    Queue("default", default_exchange, routing_key="default"),
)

celery_app.conf.task_routes = {
    "send_gate_otp": {"queue": "high_priority"},
}

celery_app.conf.update(
    # Serialización
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",

    # Timezone
    timezone="UTC",
    enable_utc=True,

    task_track_started=True,

    # Un OTP que llega tarde ya no sirve
    task_time_limit=2 * 60,
    task_soft_time_limit=90,

    worker_prefetch_multiplier=1,

    broker_pool_limit=REDIS_MAX_CONNECTIONS,
    redis_max_connections=REDIS_MAX_CONNECTIONS,

    broker_connection_retry_on_startup=True,
    broker_connection_max_retries=10,

    # ACK late: confirmar tarea solo cuando termina (previene pérdida de tareas)
    task_acks_late=True,
    task_reject_on_worker_lost=True,

    result_expires=3600,

    worker_concurrency=4,
    worker_max_tasks_per_child=1000,

    task_default_queue="default",
    task_default_exchange="default",
    task_default_routing_key="default",

    # Protección contra flooding de OTPs
    task_annotations={
        "send_gate_otp": {"rate_limit": "30/m"},
    },
)

logger.info(
    "Celery configurado - Broker: %s, Pool limit: %d, Concurrency: %d",
    REDIS_URL.split("@")[-1] if "@" in REDIS_URL else REDIS_URL,
    REDIS_MAX_CONNECTIONS,
    celery_app.conf.worker_concurrency
)
