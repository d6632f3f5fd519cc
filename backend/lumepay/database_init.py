# lumepay/database_init.py
import logging
from sqlalchemy_utils import database_exists, create_database
from lumepay.database import DATABASE_URL

logger = logging.getLogger(__name__)


def ensure_database(url: str = DATABASE_URL):
    if not database_exists(url):
        create_database(url)
        logger.info("Database created", extra={"database": url.rsplit("/", 1)[-1]})
    else:
        logger.info("Database already exists", extra={"database": url.rsplit("/", 1)[-1]})
