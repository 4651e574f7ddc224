"""
Strategy registry.

Strategies are keyed by ``name:version`` and indexed by name (all known
versions) and by supported error type. Lookups by error type resolve each
strategy name to its newest version that supports the type. Registration
is thread-safe; a duplicate name and version is rejected, never
overwritten.
"""
import logging
import re
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from ..exceptions import DuplicateStrategyError, StrategyNotFoundError
from ..models import ErrorContext
from .strategies import WILDCARD_ERROR_TYPE, RemediationStrategy

logger = logging.getLogger(__name__)

SEMVER_PATTERN = re.compile(
    r"^(\d+)\.(\d+)\.(\d+)(?:-([0-9A-Za-z.-]+))?(?:\+[0-9A-Za-z.-]+)?$"
)


def is_semantic_version(version: str) -> bool:
    return bool(SEMVER_PATTERN.match(version or ""))


def version_key(version: str) -> Tuple:
    """
    Sort key for semantic versions: 1.10.0 > 1.9.0, and a release sorts
    after its pre-releases. Non-semver strings sort before all semver ones.
    """
    match = SEMVER_PATTERN.match(version)
    if not match:
        return (0, (), 0, version)
    major, minor, patch, prerelease = match.groups()
    return (1, (int(major), int(minor), int(patch)), 0 if prerelease else 1, prerelease or "")


@dataclass
class StrategyMetadata:
    """Registry bookkeeping for one strategy version."""
    name: str
    version: str
    priority: int
    supported_error_types: List[str] = field(default_factory=list)
    description: str = ""
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    modified_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def from_strategy(cls, strategy: RemediationStrategy) -> "StrategyMetadata":
        return cls(
            name=strategy.name,
            version=strategy.version,
            priority=strategy.priority,
            supported_error_types=list(strategy.supported_error_types),
            description=strategy.description,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "version": self.version,
            "priority": self.priority,
            "supported_error_types": list(self.supported_error_types),
            "description": self.description,
            "created_at": self.created_at.isoformat(),
            "modified_at": self.modified_at.isoformat(),
        }


def _key(name: str, version: str) -> str:
    return f"{name}:{version}"


class StrategyRegistry:
    """
    Holds registered strategies.

    Example:
        >>> registry = StrategyRegistry()
        >>> registry.register(monitor_strategy)
        >>> registry.get_strategies_for_error_type("DatabaseTimeout")
        [RunbookStrategy(name='Monitor', version='1.0.0', priority=1)]
    """

    def __init__(self):
        self._strategies: Dict[str, RemediationStrategy] = {}
        self._metadata: Dict[str, StrategyMetadata] = {}
        self._versions: Dict[str, List[str]] = {}
        self._error_types: Dict[str, List[str]] = {}
        self._lock = threading.RLock()

    def register(self, strategy: RemediationStrategy,
                 metadata: Optional[StrategyMetadata] = None) -> StrategyMetadata:
        """
        Register a strategy version.

        Raises:
            ValueError: If the strategy has no name or version
            DuplicateStrategyError: If this name and version is already registered
        """
        if strategy is None:
            raise ValueError("strategy is required")
        if not strategy.name:
            raise ValueError("Strategy name is required")
        if not strategy.version:
            raise ValueError(f"Strategy {strategy.name} has no version")

        metadata = metadata or StrategyMetadata.from_strategy(strategy)
        key = _key(strategy.name, strategy.version)

        with self._lock:
            if key in self._strategies:
                logger.warning(f"Strategy {key} is already registered")
                raise DuplicateStrategyError(f"Strategy {key} is already registered")

            self._strategies[key] = strategy
            self._metadata[key] = metadata

            versions = self._versions.setdefault(strategy.name, [])
            if strategy.version not in versions:
                versions.append(strategy.version)

            for error_type in strategy.supported_error_types:
                keys = self._error_types.setdefault(error_type, [])
                if key not in keys:
                    keys.append(key)

        logger.info(
            f"Registered strategy {key} (priority {strategy.priority}, "
            f"error types: {', '.join(strategy.supported_error_types) or 'none'})"
        )
        return metadata

    def unregister(self, name: str, version: Optional[str] = None) -> bool:
        """
        Remove one version, or every version when ``version`` is None.

        Returns:
            True if anything was removed
        """
        with self._lock:
            versions = list(self._versions.get(name, []))
            targets = versions if version is None else [v for v in versions if v == version]
            if not targets:
                return False

            for target in targets:
                key = _key(name, target)
                self._strategies.pop(key, None)
                self._metadata.pop(key, None)
                self._versions[name].remove(target)
                for error_type in list(self._error_types):
                    keys = self._error_types[error_type]
                    if key in keys:
                        keys.remove(key)
                    if not keys:
                        del self._error_types[error_type]

            if not self._versions[name]:
                del self._versions[name]

        logger.info(f"Unregistered strategy {name} ({', '.join(targets)})")
        return True

    def is_registered(self, name: str, version: Optional[str] = None) -> bool:
        if version is None:
            return bool(self._versions.get(name))
        return _key(name, version) in self._strategies

    def get_versions(self, name: str) -> List[str]:
        """Registered versions of ``name``, oldest first."""
        return sorted(self._versions.get(name, []), key=version_key)

    def get_latest_version(self, name: str) -> str:
        """
        Raises:
            StrategyNotFoundError: If no version of ``name`` is registered
        """
        versions = self.get_versions(name)
        if not versions:
            raise StrategyNotFoundError(f"No strategy registered with name '{name}'")
        return versions[-1]

    def get_strategy(self, name: str, version: Optional[str] = None) -> RemediationStrategy:
        """
        A specific version, or the latest when ``version`` is None.

        Raises:
            StrategyNotFoundError: If not registered
        """
        version = version or self.get_latest_version(name)
        strategy = self._strategies.get(_key(name, version))
        if strategy is None:
            raise StrategyNotFoundError(f"Strategy {_key(name, version)} is not registered")
        return strategy

    def get_metadata(self, name: str, version: Optional[str] = None) -> StrategyMetadata:
        version = version or self.get_latest_version(name)
        metadata = self._metadata.get(_key(name, version))
        if metadata is None:
            raise StrategyNotFoundError(f"Strategy {_key(name, version)} is not registered")
        return metadata

    def get_strategies_for_error_type(self, error_type: str) -> List[RemediationStrategy]:
        """
        Newest version of every strategy supporting ``error_type``, most
        urgent priority first (ties by name). Wildcard strategies are
        included. Returns an empty list when nothing matches.

        Raises:
            ValueError: If error_type is empty
        """
        if not error_type:
            raise ValueError("error_type is required")

        with self._lock:
            keys = self._error_types.get(error_type, []) + self._error_types.get(WILDCARD_ERROR_TYPE, [])
            newest: Dict[str, RemediationStrategy] = {}
            for key in keys:
                strategy = self._strategies[key]
                current = newest.get(strategy.name)
                if current is None or version_key(strategy.version) > version_key(current.version):
                    newest[strategy.name] = strategy
            strategies = list(newest.values())

        strategies.sort(key=lambda s: (s.priority, s.name))
        return strategies

    def get_applicable_strategies(self, context: ErrorContext) -> List[RemediationStrategy]:
        """Strategies for the context's error type whose trigger conditions hold."""
        return [
            s for s in self.get_strategies_for_error_type(context.error_type)
            if s.can_handle(context)
        ]

    def get_all_strategies(self) -> List[RemediationStrategy]:
        """Latest version of every registered strategy."""
        with self._lock:
            names = list(self._versions)
        return [self.get_strategy(name) for name in sorted(names)]

    def list_strategies(self) -> List[StrategyMetadata]:
        return [self.get_metadata(s.name, s.version) for s in self.get_all_strategies()]

    def __len__(self) -> int:
        return len(self._versions)

    def __contains__(self, name: str) -> bool:
        return self.is_registered(name)
