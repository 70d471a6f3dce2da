"""Narration capability: turns a group's candidate pulse points into curated blurbs."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Tuple

from intake.utils.logging import get_logger
from llm.client.openai_client import LLMError, OpenAIClient
from llm.prompts.templates import build_narrator_messages
from pulse.models.domain import NarrationContext, PulseBlurb, PulseBucket, PulsePoint, PulseTier

logger = get_logger(__name__)

FALLBACK_REASON = "Fallback from rules; narrator returned no curated pulses."
DEFAULT_TIER_REASON = "Curated from this period's candidate signals."


def _title_key(value: Optional[str]) -> str:
    return (value or "").strip().lower()


def _as_int(value: Any) -> Optional[int]:
    try:
        return int(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def fallback_blurbs(points: Iterable[PulsePoint], reason: str = FALLBACK_REASON) -> List[PulseBlurb]:
    return [
        PulseBlurb(
            company_id=p.company_id,
            company_name=p.company_name,
            blurb=p.title,
            tier=p.tier,
            tier_reason=reason,
            raw_item_id=p.raw_item_id,
            summary_id=p.summary_id,
            url=p.url or None,
            chip=p.chip,
            bucket=p.bucket,
            source_key=p.source_key,
        )
        for p in points
    ]


def _pulse_rows(data: Any) -> List[Dict[str, Any]]:
    if isinstance(data, dict):
        data = data.get("pulses") or data.get("items") or []
    if not isinstance(data, list):
        return []
    return [row for row in data if isinstance(row, dict)]


def map_to_points(rows: List[Dict[str, Any]], points: List[PulsePoint]) -> List[PulseBlurb]:
    """Attach each narrated row to the candidate it came from (summary id, raw id, then title)."""
    by_summary: Dict[Tuple[int, int], PulsePoint] = {}
    by_raw: Dict[Tuple[int, int], PulsePoint] = {}
    by_title: Dict[Tuple[int, str], PulsePoint] = {}
    for p in points:
        if p.summary_id is not None:
            by_summary.setdefault((p.company_id, p.summary_id), p)
        if p.raw_item_id is not None:
            by_raw.setdefault((p.company_id, p.raw_item_id), p)
        by_title.setdefault((p.company_id, _title_key(p.title)), p)

    out: List[PulseBlurb] = []
    for row in rows:
        company_id = _as_int(row.get("companyId"))
        summary_id = _as_int(row.get("summaryId"))
        raw_id = _as_int(row.get("rawItemId"))
        title = row.get("title")
        match: Optional[PulsePoint] = None
        if company_id:
            if summary_id is not None:
                match = by_summary.get((company_id, summary_id))
            if match is None and raw_id is not None:
                match = by_raw.get((company_id, raw_id))
            if match is None and title:
                match = by_title.get((company_id, _title_key(title)))
        if match is None and title:
            match = next((p for p in points if _title_key(p.title) == _title_key(title)), None)
        if match is None:
            continue
        blurb_text = str(row.get("blurb") or "").strip() or match.title
        tier_reason = str(row.get("tierReason") or "").strip() or DEFAULT_TIER_REASON
        out.append(
            PulseBlurb(
                company_id=match.company_id,
                company_name=match.company_name,
                blurb=blurb_text,
                tier=PulseTier.parse(row.get("tier"), match.tier),
                tier_reason=tier_reason,
                raw_item_id=match.raw_item_id,
                summary_id=match.summary_id,
                url=match.url or None,
                chip=match.chip,
                bucket=match.bucket,
                source_key=match.source_key,
            )
        )
    return out


@dataclass(frozen=True)
class Narrator:
    client: OpenAIClient

    def generate_pulses(self, ctx: NarrationContext) -> List[PulseBlurb]:
        if not ctx.points:
            return []
        by_bucket: Dict[PulseBucket, List[PulsePoint]] = {}
        for point in ctx.points:
            by_bucket.setdefault(point.bucket, []).append(point)

        results: List[PulseBlurb] = []
        for bucket, items in by_bucket.items():
            extra = {"group_id": ctx.group_id, "bucket": bucket.value, "candidates": len(items)}
            try:
                completion = self.client.complete_json(
                    build_narrator_messages(ctx, bucket, items),
                    model=self.client.settings.narrator_model,
                )
            except LLMError as exc:
                logger.warning("narrate.bucket_failed", extra={**extra, "error": str(exc)})
                results.extend(fallback_blurbs(items))
                continue
            mapped = map_to_points(_pulse_rows(completion.data), items)
            if not mapped:
                logger.info("narrate.bucket_empty", extra=extra)
                results.extend(fallback_blurbs(items))
                continue
            logger.info("narrate.bucket_done", extra={**extra, "blurbs": len(mapped)})
            results.extend(mapped)
        return results
