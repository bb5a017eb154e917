"""Unit tests for sample code generation."""

from datetime import date
from unittest.mock import AsyncMock

import pytest

from radlims.core.workflow.codes import code_prefix, format_code, next_sample_code


def test_code_prefix() -> None:
    assert code_prefix("fish", date(2026, 1, 12)) == "FISH-260112-"


def test_format_code_pads_sequence() -> None:
    assert format_code("FISH-260112-", 7) == "FISH-260112-0007"
    assert format_code("FISH-260112-", 12345) == "FISH-260112-12345"


@pytest.mark.asyncio
async def test_first_code_of_the_day() -> None:
    repo = AsyncMock()
    repo.max_code_sequence.return_value = 0

    code = await next_sample_code(repo, "SW", date(2026, 10, 19))

    assert code == "SW-261019-0001"
    repo.max_code_sequence.assert_awaited_once_with("SW-261019-")


@pytest.mark.asyncio
async def test_next_code_follows_highest_sequence() -> None:
    repo = AsyncMock()
    repo.max_code_sequence.return_value = 41

    assert await next_sample_code(repo, "FISH", date(2026, 10, 19)) == "FISH-261019-0042"
