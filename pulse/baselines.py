"""Rolling baselines a track computes once from its summaries and shares with its rules."""

from __future__ import annotations

import math
from collections import Counter, defaultdict
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Tuple

from intake.utils.clock import as_utc
from pulse.models.domain import SummaryView

WEEKS_IN_BASELINE = 13


class Baselines:
    def __init__(self, summaries: Iterable[SummaryView], now: datetime) -> None:
        self.now = now
        self._theme_posts: Counter[Tuple[int, str, int]] = Counter()
        self._theme_weeks: Dict[Tuple[int, str], List[int]] = defaultdict(lambda: [0] * WEEKS_IN_BASELINE)

        for s in summaries:
            seen = as_utc(s.seen_at)
            if seen is None:
                continue
            age = now - seen
            themes = {t for t in s.themes if t and t.strip()}
            for window in (14, 90):
                if age <= timedelta(days=window):
                    for theme in themes:
                        self._theme_posts[(s.company_id, theme, window)] += 1
            if age <= timedelta(days=7 * WEEKS_IN_BASELINE):
                week = min(int(age.days // 7), WEEKS_IN_BASELINE - 1)
                for theme in themes:
                    self._theme_weeks[(s.company_id, theme)][week] += 1

    def theme_posts(self, company_id: int, theme: str, days: int) -> int:
        return self._theme_posts.get((company_id, theme, days), 0)

    def theme_z_score(self, company_id: int, theme: str) -> float:
        """Z-score of the last two weeks' weekly rate against the 13-week weekly counts."""
        weeks = self._theme_weeks.get((company_id, theme))
        if not weeks:
            return 0.0
        mean = sum(weeks) / len(weeks)
        variance = sum((w - mean) ** 2 for w in weeks) / len(weeks)
        stdev = math.sqrt(variance)
        if stdev <= 1e-5:
            return 0.0
        recent = self.theme_posts(company_id, theme, 14) / 2.0
        return (recent - mean) / stdev
