"""
Runs every provider once and folds the results into one Snapshot.

A failing provider never takes the cycle down with it: its fields stay at
their zero value and the failure becomes one line in Snapshot.errors, in
the form "<provider name>: <error>".
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from edgebeat.collector.base import MetricProvider, PartialReading
from edgebeat.metrics import SECTION_NAMES, Snapshot, build_section, coerce_fields, section_fields

log = logging.getLogger(__name__)

# (section, aggregate field) -> per-unit field it can be estimated from.
# An averaged total is a plausible number, not a measured one.
_FALLBACKS: Dict[Tuple[str, str], str] = {
    ("cpu", "total_percent"): "per_cpu_percent",
}

# Upper bound on threads left behind by providers that never return.
_TIMEOUT_WORKERS = 4


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _mean(values) -> float:
    if not values:
        return 0.0
    return sum(values) / len(values)


class Aggregator:
    """Collects one Snapshot per call from a fixed list of providers.

    With `provider_timeout` set, each provider runs on a small worker pool
    and a call that overruns is recorded as a failure. Python can't cancel
    a running thread, so a truly stuck provider keeps its worker busy; once
    all workers are stuck, every provider times out.
    """

    def __init__(
        self,
        providers: Iterable[MetricProvider],
        provider_timeout: Optional[float] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._providers = list(providers)
        for p in self._providers:
            if p.section not in SECTION_NAMES:
                raise ValueError(f"provider {p.name!r} targets unknown section {p.section!r}")

        if provider_timeout is not None and provider_timeout <= 0:
            raise ValueError(f"provider_timeout must be positive, got {provider_timeout}")
        self._timeout = provider_timeout
        self._clock = clock
        self._pool: Optional[ThreadPoolExecutor] = None
        if provider_timeout is not None:
            self._pool = ThreadPoolExecutor(
                max_workers=_TIMEOUT_WORKERS, thread_name_prefix="edgebeat-provider"
            )

    def collect(self) -> Tuple[Snapshot, List[str]]:
        """Run one pass. Always returns a Snapshot, never raises."""
        captured_at = self._clock()
        values: Dict[str, Dict[str, Any]] = {name: {} for name in SECTION_NAMES}
        # (provider, message, whole provider failed)
        failures: List[Tuple[MetricProvider, str, bool]] = []

        for provider in self._providers:
            try:
                result = self._invoke(provider)
                partial: Tuple[str, ...] = ()
                if isinstance(result, PartialReading):
                    partial = tuple(result.errors)
                    result = result.values
                update = self._check_fields(provider, result)
            except Exception as e:  # a provider bug is still just a failed reading
                failures.append((provider, _describe(e), True))
                continue
            values[provider.section].update(update)
            failures.extend((provider, str(message), False) for message in partial)

        derived = self._apply_fallbacks(values)

        errors: List[str] = []
        for provider, message, whole in failures:
            if whole and provider.provides and all((provider.section, f) in derived for f in provider.provides):
                log.debug("%s failed, using estimate instead: %s", provider.name, message)
                continue
            errors.append(f"{provider.name}: {message}")

        snapshot = Snapshot(
            captured_at=captured_at,
            errors=tuple(errors),
            **{name: build_section(name, fields) for name, fields in values.items()},
        )
        return snapshot, errors

    def _invoke(self, provider: MetricProvider) -> Any:
        if self._pool is None:
            return provider.collect()

        future = self._pool.submit(provider.collect)
        try:
            return future.result(timeout=self._timeout)
        except FutureTimeout:
            future.cancel()
            raise TimeoutError(f"timed out after {self._timeout:g}s") from None

    @staticmethod
    def _check_fields(provider: MetricProvider, update: Any) -> Dict[str, Any]:
        """Reject unknown fields and wrongly typed values; return the typed update."""
        if not isinstance(update, Mapping):
            raise TypeError(f"expected a mapping, got {type(update).__name__}")
        unknown = set(update) - section_fields(provider.section)
        if unknown:
            raise ValueError(f"unknown {provider.section} fields: {', '.join(sorted(unknown))}")
        return coerce_fields(provider.section, update)

    @staticmethod
    def _apply_fallbacks(values: Dict[str, Dict[str, Any]]) -> set:
        """Fill missing aggregates from their per-unit readings.

        Returns the (section, field) pairs that were estimated.
        """
        derived = set()
        for (section, target), source in _FALLBACKS.items():
            fields = values[section]
            if target in fields or source not in fields:
                continue
            units = fields[source]
            fields[target] = _mean(units)
            if units:
                derived.add((section, target))
        return derived

    def close(self):
        if self._pool is not None:
            self._pool.shutdown(wait=False)
            self._pool = None


def _describe(exc: BaseException) -> str:
    text = str(exc)
    return text if text else type(exc).__name__
