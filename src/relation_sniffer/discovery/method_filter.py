"""
Method Filter - Reduces an entity's methods to relation candidates.

A method is a candidate when it is an instance method, public, not a
magic/lifecycle method, callable with no arguments, and not excluded by
name for this entity or globally.
"""

from __future__ import annotations

import inspect
import logging
import typing
from typing import Any, Iterator, List, Optional

from relation_sniffer.models import EntityDescriptor, MethodCandidate, SnifferConfig

logger = logging.getLogger(__name__)

MAGIC_PREFIX = "__"


class MethodFilter:
    """Selects the methods of an entity that may be probed for relations."""

    def __init__(self, config: Optional[SnifferConfig] = None):
        self.config = config or SnifferConfig()
        self._global = self.config.global_exclusions()

    def candidates(self, entity: EntityDescriptor) -> List[MethodCandidate]:
        """Return the eligible methods of an entity in declaration order."""
        excluded = self.config.exclusions_for(entity)
        eligible = []
        for method in describe_methods(entity.entity_class):
            if not self.is_eligible(method):
                continue
            if method.name in excluded or method.name in self._global:
                logger.debug(f"{entity.short_name}.{method.name} excluded by configuration")
                continue
            eligible.append(method)
        return eligible

    @staticmethod
    def is_eligible(method: MethodCandidate) -> bool:
        """Structural eligibility, before any name exclusions."""
        if method.is_static:
            return False
        if not method.is_public:
            return False
        if method.name.startswith(MAGIC_PREFIX):
            return False
        if method.required_parameters > 0:
            return False
        return True


def describe_methods(cls: type) -> Iterator[MethodCandidate]:
    """
    Describe every method reachable on a class.

    Walks the MRO from the class itself towards its bases, yielding each
    name once in the order it is declared. Properties and other
    non-callable attributes are not methods and are skipped.
    """
    seen = set()
    for klass in cls.__mro__:
        if klass is object:
            continue
        for name, raw in vars(klass).items():
            if name in seen:
                continue
            seen.add(name)

            if isinstance(raw, (staticmethod, classmethod)):
                func = raw.__func__
                is_static = True
            elif inspect.isfunction(raw):
                func = raw
                is_static = False
            else:
                continue

            yield MethodCandidate(
                name=name,
                is_static=is_static,
                is_public=not name.startswith("_"),
                required_parameters=_required_parameters(func, skip_first=not isinstance(raw, staticmethod)),
                declared_return_type=_declared_return_type(func),
            )


def _required_parameters(func: Any, skip_first: bool) -> int:
    try:
        params = list(inspect.signature(func).parameters.values())
    except (TypeError, ValueError):
        return 0
    if skip_first and params:
        params = params[1:]
    return sum(
        1 for p in params
        if p.default is inspect.Parameter.empty
        and p.kind not in (inspect.Parameter.VAR_POSITIONAL, inspect.Parameter.VAR_KEYWORD)
    )


def _declared_return_type(func: Any) -> Optional[Any]:
    try:
        hints = typing.get_type_hints(func)
    except Exception as e:
        # Forward references that cannot be resolved leave the type unknown
        logger.debug(f"Could not resolve annotations of {func.__qualname__}: {e}")
        return None
    return hints.get("return")
