"""Failure classification and retry policy for upstream calls."""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum

import httpx

from inventory_mirror.config import Settings, get_settings

logger = logging.getLogger(__name__)


class ErrorKind(str, Enum):
    """Failure kinds tagged at the HTTP client layer."""

    DEPLOYMENT = "deployment"
    NETWORK = "network"
    AUTH = "auth"
    CONFIG = "config"
    SERVER = "server"
    TIMEOUT = "timeout"
    RATE_LIMITED = "rate_limited"
    UNKNOWN = "unknown"


class ErrorCategory(str, Enum):
    DEPLOYMENT = "deployment"
    NETWORK = "network"
    AUTH = "auth"
    CONFIG = "config"
    SERVER = "server"
    TIMEOUT = "timeout"
    RATE_LIMIT = "rate_limit"


class RetryAction(str, Enum):
    RETRY = "retry"
    ABORT = "abort"


@dataclass(frozen=True)
class RetryDecision:
    """What to do about one failed upstream call."""

    category: ErrorCategory
    recoverable: bool
    delay_ms: int
    action: RetryAction
    hint: str

    def describe(self, error: BaseException) -> str:
        """Operator-facing message: category, cause and what to check."""
        return f"[{self.category.value}] {error} (hint: {self.hint})"


_HINTS: dict[ErrorCategory, str] = {
    ErrorCategory.DEPLOYMENT: "check deployment: the upstream endpoint is unreachable or not deployed",
    ErrorCategory.NETWORK: "check network connectivity to the upstream API",
    ErrorCategory.AUTH: "check upstream API credentials",
    ErrorCategory.CONFIG: "check required settings (base URL, paths, page size)",
    ErrorCategory.SERVER: "upstream is overloaded or failing; retry later",
    ErrorCategory.TIMEOUT: "upstream is slow; consider a longer timeout",
    ErrorCategory.RATE_LIMIT: "lower upstream_requests_per_second",
}


class ErrorClassifier:
    """
    Maps a failure onto a category and retry policy.

    Environment problems (deployment, auth, config) abort immediately since
    retrying cannot fix them. Transient problems are retried with a delay
    that grows with how busy the upstream appears to be.
    """

    def __init__(self, settings: Settings | None = None):
        settings = settings or get_settings()
        self.network_delay_ms = settings.network_retry_delay_ms
        self.timeout_delay_ms = settings.timeout_retry_delay_ms
        self.server_delay_ms = settings.server_retry_delay_ms
        self.rate_limit_delay_ms = settings.rate_limit_retry_delay_ms
        self.max_delay_ms = settings.max_retry_delay_ms

    def kind_of(self, error: BaseException) -> ErrorKind:
        """Resolve the failure kind, tagging untagged exceptions by type."""
        kind = getattr(error, "kind", None)
        if isinstance(kind, ErrorKind):
            return kind
        if isinstance(error, (asyncio.TimeoutError, httpx.TimeoutException)):
            return ErrorKind.TIMEOUT
        if isinstance(error, httpx.HTTPStatusError):
            status = error.response.status_code
            if status in (401, 403):
                return ErrorKind.AUTH
            if status == 429:
                return ErrorKind.RATE_LIMITED
            if status >= 500:
                return ErrorKind.SERVER
        if isinstance(error, httpx.ConnectError):
            return ErrorKind.NETWORK
        return ErrorKind.UNKNOWN

    def _scaled(self, base_ms: int, attempt: int) -> int:
        return min(self.max_delay_ms, base_ms * 2 ** max(attempt - 1, 0))

    def classify(self, error: BaseException, attempt: int = 1) -> RetryDecision:
        """
        Decide how to react to `error` on the given 1-based attempt.

        Kinds are matched in priority order: deployment, network, auth/config,
        rate limit, server, timeout; anything else is treated as network.
        """
        kind = self.kind_of(error)

        if kind is ErrorKind.DEPLOYMENT:
            category, delay = ErrorCategory.DEPLOYMENT, 0
        elif kind is ErrorKind.NETWORK:
            category, delay = ErrorCategory.NETWORK, self.network_delay_ms
        elif kind is ErrorKind.AUTH:
            category, delay = ErrorCategory.AUTH, 0
        elif kind is ErrorKind.CONFIG:
            category, delay = ErrorCategory.CONFIG, 0
        elif kind is ErrorKind.RATE_LIMITED:
            category, delay = ErrorCategory.RATE_LIMIT, self._scaled(self.rate_limit_delay_ms, attempt)
        elif kind is ErrorKind.SERVER:
            category, delay = ErrorCategory.SERVER, self._scaled(self.server_delay_ms, attempt)
        elif kind is ErrorKind.TIMEOUT:
            category, delay = ErrorCategory.TIMEOUT, self.timeout_delay_ms
        else:
            category, delay = ErrorCategory.NETWORK, self.network_delay_ms

        fatal = category in (ErrorCategory.DEPLOYMENT, ErrorCategory.AUTH, ErrorCategory.CONFIG)
        decision = RetryDecision(
            category=category,
            recoverable=not fatal,
            delay_ms=delay,
            action=RetryAction.ABORT if fatal else RetryAction.RETRY,
            hint=_HINTS[category],
        )
        logger.debug(f"Classified {type(error).__name__} ({kind.value}) as {decision}")
        return decision
