"""Rate limiter interfaces.

The HTTP layer depends on these abstractions (not the concrete
implementations) so counting strategies and counter stores can be swapped
independently of the interception wrapper and key derivation.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Iterable

from ratewall.core.errors import ConfigurationAppError
from ratewall.core.interception import Interceptor, wrap


def _require_positive_int(name: str, value: object) -> None:
    # bool is an int subclass; True must not pass as a window of one second.
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ConfigurationAppError(
            code="invalid_window_policy",
            message=f"{name} must be a positive integer",
            details={"field": name, "min_value": 1, "actual_value": value},
        )


@dataclass(frozen=True)
class WindowPolicy:
    """Immutable limiter configuration.

    Attributes:
        window_seconds: Lifetime of a counting window (store TTL).
        max_requests: Inclusive number of requests allowed per window.
        use_origin_address: Whether bucket keys include the caller address.
    """

    window_seconds: int
    max_requests: int
    use_origin_address: bool = False

    def __post_init__(self) -> None:
        _require_positive_int("window_seconds", self.window_seconds)
        _require_positive_int("max_requests", self.max_requests)


class CounterStore(ABC):
    """Shared storage exposing the atomic increment-with-expiry primitive."""

    @abstractmethod
    def increment(self, key: str, window_seconds: int) -> int:
        """Increment the counter at key, setting its expiry on creation.

        The increment and the conditional expiry must be a single atomic
        operation: only the increment that returns 1 sets the TTL, and later
        increments inside the window never refresh it.

        Args:
            key: Fully prefixed storage key.
            window_seconds: TTL to attach when the counter is created.

        Returns:
            The post-increment count.

        Raises:
            StorageAppError: If the store is unreachable, times out, or
                replies with something other than an integer.
        """
        raise NotImplementedError


class AbstractRateLimiter(ABC):
    """Base class for window strategies.

    Subclasses supply the counting protocol through has_limit_exceeded; the
    interception wrapper and key derivation are shared via apply().
    """

    def __init__(self, policy: WindowPolicy) -> None:
        self._policy = policy

    @property
    def policy(self) -> WindowPolicy:
        return self._policy

    @abstractmethod
    def has_limit_exceeded(self, key: str) -> bool:
        """Count one request against key and report whether it must be denied.

        Args:
            key: Bucket key produced by the key deriver.

        Returns:
            True when the request exceeds the threshold, False otherwise.
        """
        raise NotImplementedError

    def apply(
        self,
        *,
        trust_forwarded_headers: bool = False,
        include_resource_id: bool = False,
        resource_id_param: str = "api_id",
        exempt_paths: Iterable[str] = (),
    ) -> Interceptor:
        """Return an HTTP middleware enforcing this limiter."""
        return wrap(
            self.has_limit_exceeded,
            use_origin_address=self._policy.use_origin_address,
            trust_forwarded_headers=trust_forwarded_headers,
            include_resource_id=include_resource_id,
            resource_id_param=resource_id_param,
            exempt_paths=exempt_paths,
        )
