"""
Base provider interface.

A provider is anything that can read one slice of host state. The
aggregator only knows this interface, so the psutil readers, test fakes,
and anything else that fills a Snapshot section all look the same to it.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Mapping, Tuple, Union

from edgebeat.metrics import SECTION_NAMES


class ProviderError(RuntimeError):
    """A provider could not produce a reading this cycle."""


@dataclass(frozen=True)
class PartialReading:
    """A reading where some items failed but the rest are still good.

    Each entry in `errors` lands in Snapshot.errors under the provider's
    name, the same way a whole-provider failure does.
    """

    values: Mapping[str, Any]
    errors: Tuple[str, ...] = ()


class MetricProvider(ABC):
    """Interface for all metric sources."""

    #: Prefix used for this provider's entries in Snapshot.errors.
    name: str = ""
    #: Snapshot section the returned fields belong to.
    section: str = ""
    #: Section fields this provider fills in.
    provides: Tuple[str, ...] = ()

    @abstractmethod
    def collect(self) -> Union[Mapping[str, Any], PartialReading]:
        """Read once and return field values for `section`. Raise on failure."""
        ...


class FunctionProvider(MetricProvider):
    """Wraps a plain callable as a provider."""

    def __init__(
        self,
        name: str,
        section: str,
        func: Callable[[], Union[Mapping[str, Any], PartialReading]],
        provides: Iterable[str] = (),
    ):
        if section not in SECTION_NAMES:
            raise ValueError(f"unknown section: {section}")
        self.name = name
        self.section = section
        self.provides = tuple(provides)
        self._func = func

    def collect(self) -> Union[Mapping[str, Any], PartialReading]:
        return self._func()

    def __repr__(self) -> str:
        return f"FunctionProvider({self.name!r}, section={self.section!r})"
