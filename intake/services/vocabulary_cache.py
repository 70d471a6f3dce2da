"""Process-wide cache of canonical tag/theme embeddings.

Loaded lazily under a lock and dropped with `invalidate()` after any
vocabulary write; readers always get an immutable snapshot list.
"""

from __future__ import annotations

import json
import threading
from dataclasses import dataclass
from typing import Callable, ContextManager, List, Optional, Type

from sqlalchemy import select
from sqlalchemy.orm import Session

from intake.db.models import CanonicalTag, CanonicalTheme
from intake.utils.logging import get_logger

logger = get_logger(__name__)

SessionFactory = Callable[[], ContextManager[Session]]


@dataclass(frozen=True)
class CachedEntry:
    id: int
    name: str
    description: Optional[str]
    embedding: tuple[float, ...]


class VocabularyCache:
    def __init__(self, model: Type[CanonicalTag] | Type[CanonicalTheme], session_factory: SessionFactory) -> None:
        self._model = model
        self._session_factory = session_factory
        self._entries: Optional[List[CachedEntry]] = None
        self._lock = threading.Lock()

    @property
    def kind(self) -> str:
        return self._model.__tablename__

    def entries(self) -> List[CachedEntry]:
        current = self._entries
        if current is not None:
            return current
        with self._lock:
            if self._entries is not None:
                return self._entries
            loaded = self._load()
            self._entries = loaded
            logger.info("vocab.loaded", extra={"kind": self.kind, "count": len(loaded)})
            return loaded

    def invalidate(self) -> None:
        self._entries = None
        logger.info("vocab.invalidated", extra={"kind": self.kind})

    def _load(self) -> List[CachedEntry]:
        model = self._model
        stmt = select(model.id, model.name, model.description, model.embedding).where(
            model.embedding.is_not(None), model.embedding != ""
        )
        out: List[CachedEntry] = []
        with self._session_factory() as session:
            rows = session.execute(stmt).all()
        for row in rows:
            try:
                vector = json.loads(row.embedding)
            except (TypeError, ValueError):
                logger.warning("vocab.bad_embedding", extra={"kind": self.kind, "id": row.id, "label": row.name})
                continue
            if not isinstance(vector, list) or not vector:
                continue
            out.append(
                CachedEntry(
                    id=row.id,
                    name=row.name,
                    description=row.description,
                    embedding=tuple(float(x) for x in vector),
                )
            )
        return out
