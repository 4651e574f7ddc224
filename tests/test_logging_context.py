"""
Tests for structured logging context.
"""
import asyncio
import json
import logging

import pytest

from adapt_heal.logging_context import (
    JSONFormatter,
    LoggingContext,
    clear_context,
    get_context,
    get_logger,
    set_context,
)


@pytest.fixture(autouse=True)
def fresh_context():
    clear_context()
    yield
    clear_context()


def _record(message="hello"):
    return logging.LogRecord("adapt_heal.test", logging.INFO, __file__, 10, message, None, None)


def test_logging_context_sets_and_restores():
    """Test values are visible inside the block and removed after."""
    set_context(correlation_id="c-1")

    with LoggingContext(plan_id="plan-1"):
        assert get_context() == {"correlation_id": "c-1", "plan_id": "plan-1"}

    assert get_context() == {"correlation_id": "c-1"}


def test_json_formatter_includes_context_fields():
    """Test JSON output carries context values from the ContextVar."""
    formatter = JSONFormatter()

    with LoggingContext(plan_id="plan-7", correlation_id="corr-7", unrelated="x"):
        data = json.loads(formatter.format(_record()))

    assert data["message"] == "hello"
    assert data["level"] == "INFO"
    assert data["plan_id"] == "plan-7"
    assert data["correlation_id"] == "corr-7"
    assert "unrelated" not in data


def test_json_formatter_record_fields_win():
    """Test explicit record attributes override context values."""
    record = _record()
    record.plan_id = "explicit"

    with LoggingContext(plan_id="from-context"):
        data = json.loads(JSONFormatter().format(record))

    assert data["plan_id"] == "explicit"


def test_contextual_logger_injects_extra():
    """Test the adapter adds context values to the extra mapping."""
    adapter = get_logger("adapt_heal.test")

    with LoggingContext(action_id="step-1"):
        _, kwargs = adapter.process("msg", {"extra": {"plan_id": "p"}})

    assert kwargs["extra"] == {"plan_id": "p", "action_id": "step-1"}


@pytest.mark.asyncio
async def test_context_is_isolated_between_tasks():
    """Test concurrent tasks keep their own plan_id."""
    seen = {}

    async def run(plan_id):
        with LoggingContext(plan_id=plan_id):
            await asyncio.sleep(0)
            seen[plan_id] = get_context()["plan_id"]

    await asyncio.gather(run("a"), run("b"))

    assert seen == {"a": "a", "b": "b"}
