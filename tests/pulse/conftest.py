from __future__ import annotations

import pytest

from pulse_fixtures import Seeder


@pytest.fixture()
def seed(db) -> Seeder:
    return Seeder(db)
