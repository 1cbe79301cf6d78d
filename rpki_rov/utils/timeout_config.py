"""
Timeouts and retry pacing for RPKI ROV

Only relying-party requests carry a timeout; decoding and validation are
bounded by their input. Each timeout type has a default that can be
overridden from the environment, always clamped to a sane range, and a
caller-supplied value wins over both.
"""

import logging
import os
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional


logger = logging.getLogger(__name__)


class TimeoutType(Enum):
    """Blocking operations that take a timeout"""

    RELYING_PARTY_STATUS = "relying_party_status"
    RELYING_PARTY_SNAPSHOT = "relying_party_snapshot"
    FILE_OPERATION = "file_operation"


@dataclass(frozen=True)
class TimeoutConfig:
    """Default, bounds and environment variable of one timeout type"""

    default: float
    min_value: float
    max_value: float
    env_var: str
    description: str

    def clamp(self, value: float) -> float:
        if value < self.min_value:
            logger.warning(f"{self.env_var}={value} below minimum {self.min_value}, using minimum")
            return self.min_value
        if value > self.max_value:
            logger.warning(f"{self.env_var}={value} above maximum {self.max_value}, using maximum")
            return self.max_value
        return value

    def from_environment(self) -> float:
        raw = os.environ.get(self.env_var)
        if raw is None:
            return self.default
        try:
            return self.clamp(float(raw))
        except ValueError:
            logger.warning(f"Invalid {self.env_var}={raw!r}, using default {self.default}")
            return self.default


class TimeoutManager:
    """Resolves timeouts from caller overrides, environment and defaults"""

    _TIMEOUT_CONFIGS = {
        TimeoutType.RELYING_PARTY_STATUS: TimeoutConfig(
            default=10.0,
            min_value=1.0,
            max_value=60.0,
            env_var="RPKI_ROV_STATUS_TIMEOUT",
            description="Relying-party status request",
        ),
        TimeoutType.RELYING_PARTY_SNAPSHOT: TimeoutConfig(
            default=60.0,
            min_value=5.0,
            max_value=600.0,
            env_var="RPKI_ROV_SNAPSHOT_TIMEOUT",
            description="Full VRP snapshot download",
        ),
        TimeoutType.FILE_OPERATION: TimeoutConfig(
            default=30.0,
            min_value=5.0,
            max_value=300.0,
            env_var="RPKI_ROV_FILE_TIMEOUT",
            description="Local file reads",
        ),
    }

    def get_timeout(self, timeout_type: TimeoutType, override: Optional[float] = None) -> float:
        """Timeout in seconds; a positive `override` is used as given"""
        if override is not None and override > 0:
            return float(override)
        return self._TIMEOUT_CONFIGS[timeout_type].from_environment()

    def validate_environment(self) -> Dict[str, Any]:
        """Report timeout environment variables that are unparseable or out of range"""
        results = {"valid": True, "warnings": [], "errors": [], "timeouts": {}}

        for timeout_type, config in self._TIMEOUT_CONFIGS.items():
            raw = os.environ.get(config.env_var)
            results["timeouts"][timeout_type.value] = {
                "env_var": config.env_var,
                "env_value": raw,
                "default": config.default,
                "description": config.description,
            }
            if raw is None:
                continue
            try:
                value = float(raw)
            except ValueError:
                results["errors"].append(f"Invalid value for {config.env_var}: {raw}")
                results["valid"] = False
                continue
            if not config.min_value <= value <= config.max_value:
                results["warnings"].append(
                    f"{config.env_var}={raw} outside [{config.min_value}, {config.max_value}]"
                )

        return results


class TimeoutContext:
    """Tracks the time budget of one operation, retries included"""

    def __init__(self, timeout_type: TimeoutType, operation_name: str = None,
                 custom_timeout: float = None):
        self.timeout_type = timeout_type
        self.operation_name = operation_name or timeout_type.value
        self.timeout = timeout_manager.get_timeout(timeout_type, custom_timeout)
        self._started = None

    def __enter__(self):
        self._started = time.monotonic()
        logger.debug(f"Starting {self.operation_name} with {self.timeout}s budget")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        elapsed = self.elapsed()
        if elapsed > self.timeout * 0.8:
            logger.warning(f"{self.operation_name} took {elapsed:.2f}s of {self.timeout}s budget")
        return False

    def elapsed(self) -> float:
        if self._started is None:
            return 0.0
        return time.monotonic() - self._started

    def remaining_time(self) -> float:
        return max(0.0, self.timeout - self.elapsed())


class ExponentialBackoff:
    """Retry pacing that gives up after `max_retries` or when the budget runs out"""

    def __init__(self, initial_delay: float = 1.0, max_delay: float = 60.0,
                 backoff_factor: float = 2.0, max_retries: int = 5,
                 sleep=time.sleep):
        self.initial_delay = initial_delay
        self.max_delay = max_delay
        self.backoff_factor = backoff_factor
        self.max_retries = max_retries
        self.attempt = 0
        self._sleep = sleep

    def next_delay(self) -> float:
        return min(self.initial_delay * (self.backoff_factor ** self.attempt), self.max_delay)

    def delay(self, timeout_context: Optional[TimeoutContext] = None) -> bool:
        """Sleep before the next attempt; False means stop retrying"""
        if self.attempt >= self.max_retries:
            return False

        delay_time = self.next_delay()
        if timeout_context is not None and timeout_context.remaining_time() < delay_time:
            logger.debug(f"Retry delay {delay_time}s exceeds remaining budget, giving up")
            return False

        self.attempt += 1
        logger.debug(f"Retry {self.attempt}/{self.max_retries} in {delay_time}s")
        self._sleep(delay_time)
        return True


timeout_manager = TimeoutManager()


def get_timeout(timeout_type: TimeoutType, override: Optional[float] = None) -> float:
    return timeout_manager.get_timeout(timeout_type, override)


def timeout_context(timeout_type: TimeoutType, operation_name: str = None,
                    custom_timeout: float = None) -> TimeoutContext:
    return TimeoutContext(timeout_type, operation_name, custom_timeout)


def validate_timeouts() -> Dict[str, Any]:
    return timeout_manager.validate_environment()
