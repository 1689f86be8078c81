from typing import Protocol, runtime_checkable

from envmon_core.domain.models import CompositeRecord


@runtime_checkable
class Sink(Protocol):
    """Durable destination for composite records.

    ``write`` reports failure by returning False; the sink is responsible for
    logging the cause. Callers log and move on, nothing is retried.
    """

    def write(self, record: CompositeRecord) -> bool: ...

    def close(self) -> None: ...
