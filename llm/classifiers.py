"""Per-item observation classifiers used by the review and company-content rules."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, List, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from intake.utils.logging import get_logger
from llm.client.openai_client import OpenAIClient
from llm.prompts.templates import build_company_observation_messages, build_review_observation_messages

logger = get_logger(__name__)


class ReviewObservation(BaseModel):
    type: str
    tier: str = "Tier3"
    topic: str = ""
    blurb: str = ""
    evidence: str = ""
    confidence: float = Field(0.0, ge=0.0, le=1.0)


class CompanyObservation(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    signal_type: str = Field(..., alias="signalType")
    headline: str
    description: str = ""
    tier: str = "Tier3"
    confidence: float = Field(0.0, ge=0.0, le=1.0)


def _observations(data: Any, model: type[BaseModel]) -> List[Any]:
    rows = data.get("observations") if isinstance(data, dict) else None
    if not isinstance(rows, list):
        return []
    out: List[Any] = []
    for row in rows:
        try:
            out.append(model.model_validate(row))
        except ValidationError as exc:
            logger.info("classify.row_invalid", extra={"model": model.__name__, "error": str(exc)[:200]})
    return out


@dataclass(frozen=True)
class ObservationClassifier:
    client: OpenAIClient

    def classify_review(
        self,
        *,
        company_name: str,
        source: str,
        gist: str,
        points: Sequence[str],
        raw: Optional[str],
        stars: Optional[float],
    ) -> List[ReviewObservation]:
        completion = self.client.complete_json(
            build_review_observation_messages(company_name, source, gist, points, raw, stars),
            max_tokens=700,
        )
        return _observations(completion.data, ReviewObservation)

    def classify_company_content(
        self,
        *,
        company_name: str,
        source: str,
        gist: str,
        points: Sequence[str],
        raw: Optional[str],
    ) -> List[CompanyObservation]:
        completion = self.client.complete_json(
            build_company_observation_messages(company_name, source, gist, points, raw),
            max_tokens=700,
        )
        return _observations(completion.data, CompanyObservation)
