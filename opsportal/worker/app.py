"""
Main Celery Application Configuration

This file sets up the Celery application instance with Redis as broker and
result backend, and discovers the export tasks.
"""

# Third party imports
from celery import Celery
from celery.signals import worker_process_init

# Import the export models so they are registered with SQLAlchemy
# before any task touches the database
import opsportal.exports.models  # noqa: F401
from opsportal.core.config import settings
from opsportal.utils.logger import configure_logging, get_logger

logger = get_logger(__name__)

# Create Celery Instance
app = Celery("opsportal_exports")

# Configure celery from separate config file
app.config_from_object("opsportal.worker.config")

# Auto discover tasks.py in the export package
app.autodiscover_tasks(["opsportal.exports"])


@worker_process_init.connect
def _init_worker_process(**kwargs):
    configure_logging(settings.log_level, settings.log_json)
    logger.info("Export worker process started", concurrency=settings.export_worker_pool_size)


if __name__ == "__main__":
    app.start()
