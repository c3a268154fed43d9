import asyncio
import itertools
from unittest.mock import AsyncMock, Mock

import pytest

from peervault_e2e import assertions
from peervault_e2e.errors import HarnessAssertionError


def _vault(name, files):
    vault = Mock(vault_name=name)
    vault.list_files = AsyncMock(return_value=files)
    return vault


def test_sync_helpers_raise_harness_assertion_error():
    assertions.assert_equal(1, 1)
    assertions.assert_includes("hello world", "world")
    assertions.assert_matches("node-abc123", r"node-\w+")

    with pytest.raises(HarnessAssertionError):
        assertions.assert_equal("a", "b")
    with pytest.raises(AssertionError):
        assertions.assert_greater_than(1, 2)
    with pytest.raises(HarnessAssertionError, match="custom"):
        assertions.assert_that(False, "custom")


def test_assert_raises_returns_exception():
    async def boom():
        raise ValueError("bad ticket")

    async def fine():
        return None

    exc = asyncio.run(assertions.assert_raises(boom, "bad"))
    assert isinstance(exc, ValueError)

    with pytest.raises(HarnessAssertionError):
        asyncio.run(assertions.assert_raises(fine))


def test_vaults_in_sync_reports_differences():
    first = _vault("TEST", ["a.md", "shared.md"])
    second = _vault("TEST2", ["shared.md", "b.md"])

    with pytest.raises(HarnessAssertionError) as caught:
        asyncio.run(assertions.assert_vaults_in_sync(first, second))

    assert "Only in TEST: [a.md]" in str(caught.value)
    assert "Only in TEST2: [b.md]" in str(caught.value)


def test_assert_eventually_tolerates_errors():
    calls = itertools.count(1)

    async def condition():
        n = next(calls)
        if n == 1:
            raise RuntimeError("not ready")
        return n >= 3

    asyncio.run(assertions.assert_eventually(condition, timeout_s=1.0, poll_interval_s=0.01))


def test_assert_eventually_reports_last_error():
    async def condition():
        raise RuntimeError("file missing")

    with pytest.raises(HarnessAssertionError, match="file missing"):
        asyncio.run(
            assertions.assert_eventually(
                condition, timeout_s=0.05, poll_interval_s=0.01, message="Binary never arrived"
            )
        )


def test_assert_stable_fails_when_condition_flips():
    values = iter([True, True, False])

    async def condition():
        return next(values)

    with pytest.raises(HarnessAssertionError):
        asyncio.run(assertions.assert_stable(condition, duration_s=1.0, poll_interval_s=0.01))
