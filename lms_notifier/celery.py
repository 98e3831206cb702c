from celery import Celery

# Create Celery app
celery = Celery("lms_notifier")

# Load configuration from lms_notifier.config.celeryconfig module
celery.config_from_object("lms_notifier.config.celeryconfig")
