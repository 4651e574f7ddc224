"""
Remediation actions for ADAPT-Heal.

An action is the side-effecting unit behind a plan step. The engine only
depends on this contract; what an action actually does (restart a
service, page someone, snapshot a database) is supplied by the host.

Classes:
    RemediationAction: Base class for all actions
    FunctionAction: Wrap a plain or async callable
    LogAction: Record an observation in the log (monitoring steps)
    WebhookAction: Call an external webhook

Example:
    >>> from adapt_heal.remediation.actions import FunctionAction
    >>> action = FunctionAction("restart-api", lambda ctx: restart("api"))
    >>> result = await action.run(context)
"""

import asyncio
import inspect
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, FrozenSet, Optional, Union

import requests

from ..models import ErrorContext

logger = logging.getLogger(__name__)


class ActionStatus(Enum):
    """Status of action execution."""
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"
    TIMEOUT = "timeout"


@dataclass
class ActionResult:
    """Result of action execution."""

    status: ActionStatus
    message: str
    output: Optional[str] = None
    error: Optional[str] = None
    duration_seconds: float = 0.0
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def succeeded(self) -> bool:
        return self.status in (ActionStatus.SUCCESS, ActionStatus.SKIPPED)

    @classmethod
    def success(cls, message: str, output: Optional[str] = None) -> "ActionResult":
        return cls(status=ActionStatus.SUCCESS, message=message, output=output)

    @classmethod
    def failure(cls, message: str, error: Optional[str] = None) -> "ActionResult":
        return cls(status=ActionStatus.FAILED, message=message, error=error or message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "message": self.message,
            "output": self.output,
            "error": self.error,
            "duration_seconds": self.duration_seconds,
            "timestamp": self.timestamp.isoformat(),
        }


class RemediationAction(ABC):
    """
    Base class for remediation actions.

    Subclasses implement the blocking ``execute``; the executor calls
    ``run``, which moves the call onto a worker thread. Actions that are
    natively async override ``run`` instead.
    """

    #: Parameter names this action understands; checked in strict validation.
    accepted_parameters: FrozenSet[str] = frozenset()

    def __init__(self, name: str, dry_run: bool = False,
                 parameters: Optional[Dict[str, Any]] = None):
        """
        Args:
            name: Action name, used in logs and validation messages
            dry_run: If True, simulate the action without side effects
            parameters: Action parameters, validated against accepted_parameters
        """
        self.name = name
        self.dry_run = dry_run
        self.parameters = dict(parameters or {})

    @abstractmethod
    def execute(self, context: ErrorContext) -> ActionResult:
        """Perform the action."""

    def rollback(self, context: ErrorContext) -> ActionResult:
        """Undo the action. Actions without an undo report SKIPPED."""
        return ActionResult(
            status=ActionStatus.SKIPPED,
            message=f"Rollback not supported for {self.name}"
        )

    def validate(self) -> Optional[str]:
        """
        Validate action configuration.

        Returns:
            Error message if invalid, None if valid
        """
        if not self.name:
            return "Action name is required"
        return None

    @property
    def supports_rollback(self) -> bool:
        return type(self).rollback is not RemediationAction.rollback

    async def run(self, context: ErrorContext) -> ActionResult:
        return await asyncio.to_thread(self.execute, context)

    async def run_rollback(self, context: ErrorContext) -> ActionResult:
        return await asyncio.to_thread(self.rollback, context)

    def __str__(self) -> str:
        return f"{self.__class__.__name__}(name={self.name!r}, dry_run={self.dry_run})"


ActionOutcome = Union[ActionResult, bool, str, None]
ActionCallable = Callable[[ErrorContext], Union[ActionOutcome, Awaitable[ActionOutcome]]]


def _coerce_outcome(name: str, outcome: ActionOutcome) -> ActionResult:
    """
    Interpret what a wrapped callable returned.

    ActionResult passes through, False is a failure, a string is a success
    message, anything else is a plain success.
    """
    if isinstance(outcome, ActionResult):
        return outcome
    if outcome is False:
        return ActionResult.failure(f"{name} reported failure")
    if isinstance(outcome, str):
        return ActionResult.success(outcome)
    return ActionResult.success(f"{name} completed")


class FunctionAction(RemediationAction):
    """
    Action backed by a callable, sync or async.

    Exceptions raised by the callable propagate to the executor, which
    records them as a failed attempt.

    Example:
        >>> FunctionAction(
        ...     "scale-out",
        ...     scale_out,
        ...     rollback_func=scale_in,
        ... )
    """

    def __init__(self, name: str, func: ActionCallable,
                 rollback_func: Optional[ActionCallable] = None,
                 dry_run: bool = False, parameters: Optional[Dict[str, Any]] = None):
        super().__init__(name, dry_run=dry_run, parameters=parameters)
        self.func = func
        self.rollback_func = rollback_func

    @property
    def supports_rollback(self) -> bool:
        return self.rollback_func is not None

    def execute(self, context: ErrorContext) -> ActionResult:
        return self._call_sync(self.func, context)

    def rollback(self, context: ErrorContext) -> ActionResult:
        if self.rollback_func is None:
            return super().rollback(context)
        return self._call_sync(self.rollback_func, context)

    async def run(self, context: ErrorContext) -> ActionResult:
        return await self._call(self.func, context)

    async def run_rollback(self, context: ErrorContext) -> ActionResult:
        if self.rollback_func is None:
            return super().rollback(context)
        return await self._call(self.rollback_func, context)

    def _call_sync(self, func: ActionCallable, context: ErrorContext) -> ActionResult:
        if inspect.iscoroutinefunction(func):
            return asyncio.run(self._call(func, context))
        if self.dry_run:
            return ActionResult.success(f"[DRY RUN] Would run {self.name}")
        start = time.monotonic()
        result = _coerce_outcome(self.name, func(context))
        result.duration_seconds = time.monotonic() - start
        return result

    async def _call(self, func: ActionCallable, context: ErrorContext) -> ActionResult:
        if self.dry_run:
            return ActionResult.success(f"[DRY RUN] Would run {self.name}")
        start = time.monotonic()
        if inspect.iscoroutinefunction(func):
            outcome = await func(context)
        else:
            outcome = await asyncio.to_thread(func, context)
        result = _coerce_outcome(self.name, outcome)
        result.duration_seconds = time.monotonic() - start
        return result

    def validate(self) -> Optional[str]:
        if not callable(self.func):
            return f"Action {self.name} has no callable"
        if self.rollback_func is not None and not callable(self.rollback_func):
            return f"Rollback for {self.name} is not callable"
        return super().validate()


class LogAction(RemediationAction):
    """
    Record an observation about the incident in the remediation log.

    Backs monitoring steps that only need an audit trail entry.
    """

    accepted_parameters = frozenset({"message", "level"})

    def __init__(self, name: str, message: str, level: str = "INFO", dry_run: bool = False):
        super().__init__(name, dry_run=dry_run, parameters={"message": message, "level": level})
        self.message = message
        self.level = level.upper()

    def execute(self, context: ErrorContext) -> ActionResult:
        text = self.message.format(
            error_type=context.error_type,
            source_component=context.source_component or "unknown",
            correlation_id=context.correlation_id,
        )
        logger.log(getattr(logging, self.level, logging.INFO), f"[{self.name}] {text}")
        return ActionResult.success(text)

    def validate(self) -> Optional[str]:
        if not self.message:
            return "Message is required"
        if self.level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            return f"Invalid log level: {self.level}"
        return super().validate()


class WebhookAction(RemediationAction):
    """
    Call an external webhook with the error context as payload.

    Useful for notification steps and for triggering external remediation
    systems.

    Example:
        >>> action = WebhookAction(
        ...     "page-oncall",
        ...     url="https://hooks.example.com/remediate",
        ...     headers={"Authorization": "Bearer token"}
        ... )
    """

    accepted_parameters = frozenset({"url", "method", "headers", "payload", "timeout"})

    def __init__(
        self,
        name: str,
        url: str,
        method: str = "POST",
        headers: Optional[Dict[str, str]] = None,
        payload: Optional[Dict[str, Any]] = None,
        timeout: int = 30,
        rollback_url: Optional[str] = None,
        dry_run: bool = False
    ):
        super().__init__(name, dry_run=dry_run, parameters={
            "url": url, "method": method, "timeout": timeout,
        })
        self.url = url
        self.method = method.upper()
        self.headers = headers or {}
        self.payload = payload or {}
        self.timeout = timeout
        self.rollback_url = rollback_url

    @property
    def supports_rollback(self) -> bool:
        return self.rollback_url is not None

    def execute(self, context: ErrorContext) -> ActionResult:
        return self._call(self.url, context)

    def rollback(self, context: ErrorContext) -> ActionResult:
        if not self.rollback_url:
            return super().rollback(context)
        return self._call(self.rollback_url, context)

    def _call(self, url: str, context: ErrorContext) -> ActionResult:
        start = time.monotonic()

        if self.dry_run:
            message = f"[DRY RUN] Would call webhook: {self.method} {url}"
            logger.info(message)
            return ActionResult.success(message)

        request_payload = {**self.payload, "context": context.model_dump(mode="json")}

        logger.info(f"Calling webhook: {self.method} {url}")
        try:
            response = requests.request(
                method=self.method,
                url=url,
                json=request_payload,
                headers=self.headers,
                timeout=self.timeout
            )
        except requests.Timeout:
            return ActionResult(
                status=ActionStatus.TIMEOUT,
                message=f"Webhook call timed out after {self.timeout}s",
                error=f"Webhook call timed out after {self.timeout}s",
                duration_seconds=time.monotonic() - start
            )
        except requests.RequestException as e:
            return ActionResult(
                status=ActionStatus.FAILED,
                message=f"Error calling webhook: {e}",
                error=str(e),
                duration_seconds=time.monotonic() - start
            )

        duration = time.monotonic() - start
        if 200 <= response.status_code < 300:
            return ActionResult(
                status=ActionStatus.SUCCESS,
                message=f"Webhook call successful: {response.status_code}",
                output=response.text,
                duration_seconds=duration
            )
        return ActionResult(
            status=ActionStatus.FAILED,
            message=f"Webhook returned error: {response.status_code}",
            error=response.text or f"HTTP {response.status_code}",
            duration_seconds=duration
        )

    def validate(self) -> Optional[str]:
        if not self.url:
            return "URL is required"
        if self.method not in ["GET", "POST", "PUT", "PATCH", "DELETE"]:
            return f"Invalid HTTP method: {self.method}"
        if self.timeout <= 0:
            return "Timeout must be positive"
        return super().validate()


class UndoAction(RemediationAction):
    """Runs another action's rollback as a forward action of a rollback step."""

    def __init__(self, target: RemediationAction):
        super().__init__(f"undo-{target.name}", dry_run=target.dry_run)
        self.target = target

    def execute(self, context: ErrorContext) -> ActionResult:
        return self.target.rollback(context)

    async def run(self, context: ErrorContext) -> ActionResult:
        return await self.target.run_rollback(context)

    def validate(self) -> Optional[str]:
        return self.target.validate()
