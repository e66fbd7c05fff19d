# pylint: disable=missing-module-docstring,missing-function-docstring
import json
from typing import Any, Iterator

import pytest

from observability import logger


@pytest.fixture(autouse=True)
def _reset_logging() -> Iterator[None]:
    yield
    logger.configure_logging()


@pytest.fixture
def log_records(monkeypatch: pytest.MonkeyPatch) -> list[dict[str, Any]]:
    """Every JSONL event emitted during the test, decoded."""
    records: list[dict[str, Any]] = []

    def fake_print(line: str) -> None:
        records.append(json.loads(line))

    monkeypatch.setattr(logger, "_print", fake_print)
    logger.configure_logging(level="DEBUG", enable_json=True)
    return records
