"""
Safe Probe - Executes candidate methods without persisting anything.

Probing an entity happens inside a session that

1. substitutes a write backend refusing all writes on the entity class,
2. opens a transaction on the entity's database that is always rolled back,
3. invokes candidate methods one at a time, turning any error into a
   recorded failure instead of aborting the scan,
4. rolls back and restores the original write backend on every exit path.

An optional per-method timeout interrupts methods that never return.
"""

from __future__ import annotations

import logging
import signal
import threading
from contextlib import ExitStack, contextmanager
from dataclasses import dataclass
from typing import Any, Iterator, List, Optional, Union

from sqlalchemy.exc import SQLAlchemyError

from relation_sniffer.discovery.classifier import RelationClassifier
from relation_sniffer.errors import DiscoveryError, ExtractionError, ProbeError, ProbeTimeoutError
from relation_sniffer.models import EntityDescriptor, MethodCandidate, ProbeFailure, RelationKind

logger = logging.getLogger(__name__)


class _DeadlineExceeded(BaseException):
    """Raised from the alarm handler; not catchable by `except Exception`."""


@dataclass
class ProbeResult:
    """Outcome of probing one candidate method."""
    method: MethodCandidate
    kind: Optional[RelationKind] = None
    invoked: bool = False
    error: Optional[ProbeError] = None

    @property
    def is_relation(self) -> bool:
        return self.kind is not None


class SafeProbe:
    """Runs candidate methods of an entity under a write guard and rollback."""

    def __init__(
        self,
        classifier: Optional[RelationClassifier] = None,
        timeout: Optional[float] = None,
    ):
        """
        Initialize the probe.

        Args:
            classifier: Relation classifier used on declared types and values
            timeout: Optional per-method timeout in seconds
        """
        self.classifier = classifier or RelationClassifier()
        self.timeout = timeout
        self._timeout_warned = False

    @contextmanager
    def session(self, entity: EntityDescriptor, instance: Optional[Any] = None) -> Iterator[ProbeSession]:
        """
        Open a guarded probing session for one entity.

        The entity is instantiated inside the guard unless an instance is
        given.

        Raises:
            DiscoveryError: If the entity's database cannot be reached or
                the entity cannot be instantiated
        """
        entity_class = entity.entity_class
        with ExitStack() as stack:
            guard = stack.enter_context(entity_class.sandboxed())
            database = getattr(entity_class, "__database__", None)
            if database is not None:
                try:
                    stack.enter_context(database.rollback_only())
                except SQLAlchemyError as e:
                    logger.warning(f"Could not open a transaction for {entity.name}: {e}")
                    raise DiscoveryError(f"Could not open a transaction for {entity.name}: {e}") from e

            if instance is None:
                try:
                    instance = entity.instantiate()
                except Exception as e:
                    raise DiscoveryError(f"Could not instantiate {entity.name}: {e}") from e

            logger.debug(f"Probing {entity.name} with writes refused")
            session = ProbeSession(self, entity, instance)
            try:
                yield session
            finally:
                refused = getattr(guard, "refused", [])
                if refused:
                    logger.info(f"Refused {len(refused)} write(s) while probing {entity.short_name}")

    @contextmanager
    def deadline(self) -> Iterator[None]:
        """Interrupt the enclosed block after the configured timeout."""
        if not self.timeout:
            yield
            return

        if not hasattr(signal, "SIGALRM") or threading.current_thread() is not threading.main_thread():
            if not self._timeout_warned:
                logger.warning("Probe timeout needs SIGALRM on the main thread; probing without a timeout")
                self._timeout_warned = True
            yield
            return

        def _on_alarm(signum, frame):
            raise _DeadlineExceeded()

        previous = signal.signal(signal.SIGALRM, _on_alarm)
        signal.setitimer(signal.ITIMER_REAL, self.timeout)
        try:
            yield
        finally:
            signal.setitimer(signal.ITIMER_REAL, 0)
            signal.signal(signal.SIGALRM, previous)


class ProbeSession:
    """Probing state for a single entity; created by SafeProbe.session()."""

    def __init__(self, probe: SafeProbe, entity: EntityDescriptor, instance: Any):
        self.probe = probe
        self.entity = entity
        self.instance = instance
        self.failures: List[ProbeFailure] = []

    def probe_method(self, method: MethodCandidate) -> ProbeResult:
        """
        Probe one candidate method.

        A declared relation return type classifies the method without
        invoking it. Otherwise the method is called with no arguments and
        its return value is classified.
        """
        classifier = self.probe.classifier

        kind = classifier.classify_type(method.declared_return_type)
        if kind is not None:
            logger.debug(f"{self.entity.short_name}.{method.name} classified by declared type")
            return ProbeResult(method=method, kind=kind)

        try:
            value = self.invoke(method.name)
        except ProbeError as e:
            self.record(e)
            return ProbeResult(method=method, invoked=True, error=e)

        return ProbeResult(method=method, kind=classifier.classify_value(value), invoked=True)

    def invoke(self, method_name: str) -> Any:
        """
        Call a method on the entity instance with no arguments.

        Raises:
            ProbeError: If the call raised or timed out
        """
        try:
            with self.probe.deadline():
                return getattr(self.instance, method_name)()
        except _DeadlineExceeded:
            raise ProbeTimeoutError(
                self.entity.name,
                method_name,
                f"Timed out after {self.probe.timeout}s",
            ) from None
        except Exception as e:
            raise ProbeError.from_exception(self.entity.name, method_name, e) from e

    def record(self, error: Union[ProbeError, ExtractionError]) -> ProbeFailure:
        """Report a failure and keep it for the scan summary."""
        logger.error(f"{error.method} - failed")
        logger.error(error.message)

        hint = getattr(error, "hint", None)
        if hint:
            logger.info(f"- {hint}")

        failure = ProbeFailure(
            entity=error.entity,
            method=error.method,
            kind=error.kind,
            message=error.message,
            hint=hint,
        )
        self.failures.append(failure)
        return failure
