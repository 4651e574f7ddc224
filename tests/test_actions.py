"""
Tests for remediation actions.
"""
import pytest
import requests

from adapt_heal.remediation.actions import (
    ActionResult,
    ActionStatus,
    FunctionAction,
    LogAction,
    UndoAction,
    WebhookAction,
)


class FakeResponse:
    def __init__(self, status_code, text=""):
        self.status_code = status_code
        self.text = text


@pytest.mark.asyncio
async def test_function_action_sync_callable(context):
    """Test a plain function runs off the event loop and is coerced."""
    action = FunctionAction("restart", lambda ctx: f"restarted {ctx.source_component}")

    result = await action.run(context)

    assert result.status == ActionStatus.SUCCESS
    assert result.message == "restarted db"
    assert result.duration_seconds >= 0


@pytest.mark.asyncio
async def test_function_action_async_callable(context):
    """Test coroutine functions are awaited directly."""
    async def scale(ctx):
        return ActionResult.success("scaled", output="3 replicas")

    result = await FunctionAction("scale", scale).run(context)

    assert result.succeeded
    assert result.output == "3 replicas"


@pytest.mark.asyncio
async def test_function_action_false_is_failure(context):
    """Test returning False reports a failure."""
    result = await FunctionAction("check", lambda ctx: False).run(context)

    assert result.status == ActionStatus.FAILED
    assert result.error == "check reported failure"


@pytest.mark.asyncio
async def test_function_action_exception_propagates(context):
    """Test exceptions are left for the executor to record."""
    def boom(ctx):
        raise RuntimeError("disk full")

    with pytest.raises(RuntimeError, match="disk full"):
        await FunctionAction("boom", boom).run(context)


@pytest.mark.asyncio
async def test_function_action_dry_run(context):
    """Test dry run never calls the function."""
    calls = []
    action = FunctionAction("restart", lambda ctx: calls.append(1), dry_run=True)

    result = await action.run(context)

    assert result.message == "[DRY RUN] Would run restart"
    assert calls == []


@pytest.mark.asyncio
async def test_function_action_rollback(context):
    """Test rollback support follows the rollback function."""
    plain = FunctionAction("a", lambda ctx: None)
    undoable = FunctionAction("b", lambda ctx: None, rollback_func=lambda ctx: "undone")

    assert not plain.supports_rollback
    assert undoable.supports_rollback
    assert (await plain.run_rollback(context)).status == ActionStatus.SKIPPED
    assert (await undoable.run_rollback(context)).message == "undone"
    assert undoable.rollback(context).message == "undone"


def test_function_action_validate():
    """Test non-callables are reported."""
    assert FunctionAction("ok", lambda ctx: None).validate() is None
    assert FunctionAction("bad", "not callable").validate() == "Action bad has no callable"
    assert FunctionAction("", lambda ctx: None).validate() == "Action name is required"


def test_log_action_formats_message(context, caplog):
    """Test log actions render context fields into the message."""
    action = LogAction("note", "{error_type} on {source_component}", level="warning")

    with caplog.at_level("WARNING"):
        result = action.execute(context)

    assert result.message == "DatabaseError on db"
    assert "[note] DatabaseError on db" in caplog.text
    assert not action.supports_rollback


def test_log_action_validate():
    """Test message and level are checked."""
    assert LogAction("note", "").validate() == "Message is required"
    assert LogAction("note", "x", level="LOUD").validate() == "Invalid log level: LOUD"
    assert LogAction("note", "x").validate() is None


def test_webhook_action_success(context, monkeypatch):
    """Test a 2xx response is a success and the context is sent."""
    sent = {}

    def fake_request(**kwargs):
        sent.update(kwargs)
        return FakeResponse(202, "queued")

    monkeypatch.setattr(requests, "request", fake_request)
    action = WebhookAction("page", url="https://hooks.example.com/x", payload={"team": "db"})

    result = action.execute(context)

    assert result.status == ActionStatus.SUCCESS
    assert result.output == "queued"
    assert sent["method"] == "POST"
    assert sent["json"]["team"] == "db"
    assert sent["json"]["context"]["error_type"] == "DatabaseError"


def test_webhook_action_error_status(context, monkeypatch):
    """Test non-2xx responses fail."""
    monkeypatch.setattr(requests, "request", lambda **kwargs: FakeResponse(503, ""))

    result = WebhookAction("page", url="https://hooks.example.com/x").execute(context)

    assert result.status == ActionStatus.FAILED
    assert result.error == "HTTP 503"


def test_webhook_action_timeout(context, monkeypatch):
    """Test request timeouts map to TIMEOUT."""
    def slow(**kwargs):
        raise requests.Timeout("slow")

    monkeypatch.setattr(requests, "request", slow)

    result = WebhookAction("page", url="https://hooks.example.com/x", timeout=5).execute(context)

    assert result.status == ActionStatus.TIMEOUT
    assert "5s" in result.message


def test_webhook_action_rollback_url(context, monkeypatch):
    """Test rollback calls the rollback URL."""
    urls = []

    def record(**kwargs):
        urls.append(kwargs["url"])
        return FakeResponse(200)

    monkeypatch.setattr(requests, "request", record)
    action = WebhookAction("scale", url="https://x/up", rollback_url="https://x/down")

    assert action.supports_rollback
    action.rollback(context)
    assert urls == ["https://x/down"]


def test_webhook_action_validate():
    """Test webhook configuration checks."""
    assert WebhookAction("w", url="").validate() == "URL is required"
    assert WebhookAction("w", url="https://x", method="brew").validate() == "Invalid HTTP method: BREW"
    assert WebhookAction("w", url="https://x", timeout=0).validate() == "Timeout must be positive"


@pytest.mark.asyncio
async def test_undo_action_runs_target_rollback(context):
    """Test UndoAction runs its target's rollback as a forward action."""
    target = FunctionAction("scale-out", lambda ctx: None, rollback_func=lambda ctx: "scaled in")
    undo = UndoAction(target)

    assert undo.name == "undo-scale-out"
    assert (await undo.run(context)).message == "scaled in"
    assert undo.validate() is None
