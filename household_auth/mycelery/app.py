from celery import Celery
from celery.schedules import crontab

from household_auth.core.config import settings

celery_app = Celery(
    "household_auth",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=["household_auth.mycelery.worker"],
)

celery_app.conf.update(
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    task_acks_late=True,
    result_expires=3600,
    broker_connection_retry_on_startup=True,
)

# Limpeza periódica: tokens revogados e dispositivos confiáveis expirados
celery_app.conf.beat_schedule = {
    "purge-revoked-tokens": {
        "task": "purge_revoked_tokens",
        "schedule": crontab(minute=0),
    },
    "purge-expired-trusted-devices": {
        "task": "purge_expired_trusted_devices",
        "schedule": crontab(minute=5),
    },
}
