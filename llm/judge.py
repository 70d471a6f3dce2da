"""Arbitration capability for ambiguous canonical matches."""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from llm.client.openai_client import OpenAIClient, PermanentLLMError
from llm.prompts.templates import build_judge_messages


class JudgeCandidate(BaseModel):
    id: int
    name: str
    definition: str


class JudgeVerdict(BaseModel):
    decision: str = "new"
    best_id: Optional[int] = Field(default=None, alias="bestId")
    confidence: float = 0.0
    rationale: str = ""

    model_config = ConfigDict(populate_by_name=True)

    @property
    def is_match(self) -> bool:
        return self.decision.strip().lower() == "match" and self.best_id is not None


@dataclass(frozen=True)
class Arbitrator:
    client: OpenAIClient

    def judge(
        self,
        kind: str,
        raw_label: str,
        reason: Optional[str],
        candidates: Sequence[JudgeCandidate],
    ) -> JudgeVerdict:
        messages = build_judge_messages(
            kind,
            raw_label,
            reason,
            [c.model_dump() for c in candidates],
        )
        completion = self.client.complete_json(
            messages,
            model=self.client.settings.judge_model,
            max_tokens=250,
            temperature=0.0,
        )
        try:
            verdict = JudgeVerdict.model_validate(completion.data)
        except ValidationError as exc:
            raise PermanentLLMError(f"judge output does not match schema: {exc}") from exc
        allowed: List[int] = [c.id for c in candidates]
        if verdict.best_id is not None and verdict.best_id not in allowed:
            return JudgeVerdict(decision="new", confidence=0.0, rationale="judge picked an unknown candidate")
        return verdict
