from django.apps import AppConfig


class NursingConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'nursing'

    def ready(self) -> None:
        # connects the realtime change publishers
        from . import signals  # noqa: F401
