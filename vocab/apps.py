from django.apps import AppConfig


class VocabConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'vocab'
    verbose_name = 'Vocabulary learning'

    def ready(self):
        from . import signals
        from .achievements import handle_review_completed

        signals.review_completed.connect(
            handle_review_completed,
            dispatch_uid='vocab.achievements.handle_review_completed',
        )
