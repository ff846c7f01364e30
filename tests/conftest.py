from __future__ import annotations

import pytest

from chatbook.logging_utils import configure_logging


@pytest.fixture(autouse=True, scope="session")
def _quiet_logging() -> None:
    configure_logging(profile="quiet")
