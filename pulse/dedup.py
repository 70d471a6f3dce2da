"""In-memory collapse of pulse points and the deterministic SourceKey."""

from __future__ import annotations

from datetime import datetime
from typing import Dict, Iterable, List, Optional

from intake.utils.clock import as_utc
from intake.utils.text import normalize_url, sha256_hex
from pulse.models.domain import PulseBlurb, PulsePoint


def dedup_key(point: PulsePoint) -> str:
    day = as_utc(point.seen_at)
    return "|".join(
        [
            str(point.company_id),
            point.bucket.value,
            point.chip,
            point.title.strip().lower(),
            f"{day:%Y%m%d}" if day else "",
        ]
    )


def collapse(points: Iterable[PulsePoint]) -> List[PulsePoint]:
    """Keep the first point per (company, bucket, chip, title, day)."""
    seen: Dict[str, PulsePoint] = {}
    for point in points:
        seen.setdefault(dedup_key(point), point)
    return list(seen.values())


def build_source_key(
    company_id: int,
    bucket: str,
    chip: str,
    *,
    summary_id: Optional[int] = None,
    raw_item_id: Optional[int] = None,
    url: Optional[str] = None,
    seen_at: Optional[datetime] = None,
    title: str = "",
) -> str:
    """Stable identity: entity id, else URL hash, else content hash."""
    if summary_id is not None:
        return f"si:{summary_id}"
    if raw_item_id is not None:
        return f"rc:{raw_item_id}"
    prefix = f"{company_id}|{bucket}|{chip}"
    norm = normalize_url(url)
    if norm:
        return f"url:{company_id}:{bucket}:{chip}:{sha256_hex(f'{prefix}|{norm}')}"
    seen = as_utc(seen_at)
    seen_iso = seen.isoformat() if seen else ""
    return f"fb:{sha256_hex(f'{prefix}|{seen_iso}|{title.strip()}')}"


def source_key(point: PulsePoint) -> str:
    return build_source_key(
        point.company_id,
        point.bucket.value,
        point.chip,
        summary_id=point.summary_id,
        raw_item_id=point.raw_item_id,
        url=point.url,
        seen_at=point.seen_at,
        title=point.title,
    )


def blurb_source_key(blurb: PulseBlurb, now: datetime) -> str:
    return build_source_key(
        blurb.company_id,
        blurb.bucket.value if blurb.bucket else "",
        blurb.chip or "",
        summary_id=blurb.summary_id,
        raw_item_id=blurb.raw_item_id,
        url=blurb.url,
        seen_at=now,
        title=blurb.blurb,
    )


def with_source_keys(points: Iterable[PulsePoint]) -> List[PulsePoint]:
    return [p if p.source_key else p.model_copy(update={"source_key": source_key(p)}) for p in points]
