"""Batch summarizer: one LLM call per (company batch, origin), split-retry on bad output."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from pydantic import ValidationError

from intake.db.models import OriginType
from intake.models.domain import ItemSummary, LabeledReason, SignalHint, SignalSlug, SummaryRequest
from intake.utils.logging import get_logger
from llm.client.openai_client import LLMError, OpenAIClient, PermanentLLMError
from llm.prompts.templates import build_summary_messages

logger = get_logger(__name__)

_KNOWN_SLUGS = {slug.value for slug in SignalSlug}


class SummaryParseError(LLMError):
    """The response was JSON but did not cover every requested item."""


def _labels(value: Any) -> List[LabeledReason]:
    pairs: List[tuple[str, str]] = []
    if isinstance(value, dict):
        pairs = [(str(k), str(v or "")) for k, v in value.items()]
    elif isinstance(value, list):
        for entry in value:
            if isinstance(entry, dict):
                pairs.append((str(entry.get("label") or entry.get("name") or ""), str(entry.get("reason") or "")))
            elif isinstance(entry, str):
                pairs.append((entry, ""))
    out: List[LabeledReason] = []
    for label, reason in pairs:
        if not label.strip():
            continue
        out.append(LabeledReason(label=label[:200], reason=reason[:1024]))
    return out


def _hints(value: Any) -> List[SignalHint]:
    out: List[SignalHint] = []
    if not isinstance(value, list):
        return out
    for entry in value:
        if isinstance(entry, str):
            slug, reason = entry, ""
        elif isinstance(entry, dict):
            slug, reason = str(entry.get("slug") or entry.get("id") or ""), str(entry.get("reason") or "")
        else:
            continue
        slug = slug.strip().lower()
        if slug in _KNOWN_SLUGS:
            out.append(SignalHint(slug=SignalSlug(slug), reason=reason))
    return out


def _record(value: Any) -> ItemSummary:
    if not isinstance(value, dict):
        raise ValueError("record must be an object")
    sentiment = value.get("sentiment")
    label: Optional[str] = None
    reason: Optional[str] = None
    if isinstance(sentiment, dict):
        label, reason = sentiment.get("label"), sentiment.get("reason")
    elif isinstance(sentiment, str):
        label = sentiment
    points = value.get("points") or []
    return ItemSummary(
        gist=str(value.get("gist") or "").strip(),
        points=[str(p) for p in points] if isinstance(points, list) else [],
        sentiment=label,
        sentiment_reason=(reason or None) and str(reason)[:512],
        tags=_labels(value.get("tags")),
        themes=_labels(value.get("themes")),
        signal_hints=_hints(value.get("signal_types")),
    )


def parse_summary_response(data: Any) -> Dict[int, ItemSummary]:
    """Parse `{"<id>": {...record...}}`; unparseable records are left out."""
    if not isinstance(data, dict):
        raise SummaryParseError("summary response must be a JSON object keyed by id")
    parsed: Dict[int, ItemSummary] = {}
    for key, value in data.items():
        try:
            item_id = int(str(key).strip())
        except ValueError:
            continue
        try:
            parsed[item_id] = _record(value)
        except (ValueError, ValidationError) as exc:
            logger.info("summarize.record_invalid", extra={"item_id": item_id, "error": str(exc)[:200]})
    return parsed


@dataclass(frozen=True)
class Summarizer:
    client: OpenAIClient

    def summarize(
        self,
        items: Sequence[SummaryRequest],
        *,
        company_name: Optional[str] = None,
    ) -> Dict[int, ItemSummary]:
        """Return summaries keyed by item id; an id missing from the result failed."""
        by_origin: Dict[OriginType, List[SummaryRequest]] = {}
        for item in items:
            by_origin.setdefault(item.origin, []).append(item)
        results: Dict[int, ItemSummary] = {}
        for origin, group in by_origin.items():
            results.update(self._summarize_with_split(group, origin, company_name))
        return results

    def _summarize_with_split(
        self,
        items: List[SummaryRequest],
        origin: OriginType,
        company_name: Optional[str],
    ) -> Dict[int, ItemSummary]:
        if not items:
            return {}
        try:
            completion = self.client.complete_json(
                build_summary_messages(items, origin, company_name=company_name)
            )
            parsed = parse_summary_response(completion.data)
            expected = {item.item_id for item in items}
            missing = expected - parsed.keys()
            if missing:
                raise SummaryParseError(f"missing ids in response: {sorted(missing)[:10]}")
            return {item_id: summary for item_id, summary in parsed.items() if item_id in expected}
        except (SummaryParseError, PermanentLLMError) as exc:
            if len(items) < 2:
                logger.warning(
                    "summarize.item_dropped",
                    extra={"item_id": items[0].item_id, "error": str(exc)},
                )
                return {}
            logger.warning(
                "summarize.split_retry",
                extra={"size": len(items), "origin": origin.value, "error": str(exc)},
            )
            mid = len(items) // 2
            merged = self._summarize_with_split(items[:mid], origin, company_name)
            merged.update(self._summarize_with_split(items[mid:], origin, company_name))
            return merged
