from django.apps import AppConfig
from django.conf import settings


class NotificationsConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'notifications'

    def ready(self):
        if settings.NOTIFICATIONS_REDIS_RELAY_ENABLED:
            from .hub import hub
            from .relay import RedisRelay

            hub.add_relay(RedisRelay(
                settings.REDIS_URL,
                settings.NOTIFICATIONS_REDIS_CHANNEL_PREFIX,
                maxsize=settings.NOTIFICATIONS_QUEUE_SIZE,
            ))
