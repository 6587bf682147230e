from __future__ import annotations

import os
from pathlib import Path

from sqlalchemy.engine import make_url

from services.api.app.db.database import get_engine
from services.api.app.db.models import Base


def init_db() -> None:
    if os.getenv("FLORIST_DB_AUTO_CREATE", "true").strip().lower() not in {"1", "true", "yes", "y"}:
        return

    engine = get_engine()
    _ensure_sqlite_dir(engine.url)
    Base.metadata.create_all(bind=engine)


def _ensure_sqlite_dir(url) -> None:
    url = make_url(url)
    if url.get_backend_name() != "sqlite" or not url.database or url.database == ":memory:":
        return
    Path(url.database).parent.mkdir(parents=True, exist_ok=True)
