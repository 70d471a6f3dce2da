from __future__ import annotations

from intake.db.models import Base
from intake.db.session import get_engine


def init_db() -> None:
    Base.metadata.create_all(bind=get_engine())
