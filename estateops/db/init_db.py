from __future__ import annotations

import logging

from estateops.db.models import Base
from estateops.db.session import get_engine

logger = logging.getLogger(__name__)


def initialize_database() -> None:
    engine = get_engine()
    Base.metadata.create_all(bind=engine)
    logger.info("Job, activity and property sale tables ready at %s", engine.url.render_as_string(hide_password=True))
