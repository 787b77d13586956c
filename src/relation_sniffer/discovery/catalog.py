"""
Entity Catalog - Enumerates the concrete entity classes to scan.

Entities can be given directly as classes, or found by importing modules or
walking a package. Anything that fails to import, is abstract, or is not a
Model subclass is left out without failing the scan.
"""

from __future__ import annotations

import importlib
import inspect
import logging
import pkgutil
from types import ModuleType
from typing import Iterable, Iterator, List, Optional, Type

from relation_sniffer.errors import DiscoveryError
from relation_sniffer.models import EntityDescriptor
from relation_sniffer.orm import Model, qualified_name

logger = logging.getLogger(__name__)


class EntityCatalog:
    """
    Deterministic, finite sequence of entity descriptors.

    Descriptors are sorted by entity identity so that repeated scans over
    the same classes produce diffable output.
    """

    def __init__(self, classes: Iterable[type], base: Type[Model] = Model):
        """
        Initialize the catalog.

        Args:
            classes: Candidate classes; unsuitable ones are skipped
            base: Base entity type every entity must subclass
        """
        self.base = base
        seen = {}
        for cls in classes:
            if self._is_entity(cls):
                seen.setdefault(qualified_name(cls), cls)
        self._descriptors = [
            EntityDescriptor(name=name, table_name=cls.get_table(), entity_class=cls)
            for name, cls in sorted(seen.items())
        ]

    def __iter__(self) -> Iterator[EntityDescriptor]:
        return iter(self._descriptors)

    def __len__(self) -> int:
        return len(self._descriptors)

    @property
    def names(self) -> List[str]:
        return [d.name for d in self._descriptors]

    def _is_entity(self, cls: object) -> bool:
        if not inspect.isclass(cls):
            return False
        if cls is self.base or not issubclass(cls, self.base):
            return False
        if inspect.isabstract(cls) or cls.is_abstract():
            return False
        return True

    @classmethod
    def from_modules(cls, module_names: Iterable[str], base: Type[Model] = Model) -> EntityCatalog:
        """Build a catalog from the classes defined in the named modules."""
        classes: List[type] = []
        for module_name in module_names:
            try:
                module = _import(module_name)
            except DiscoveryError as e:
                logger.debug(f"Skipping module {module_name}: {e}")
                continue
            classes.extend(_classes_defined_in(module))
        return cls(classes, base=base)

    @classmethod
    def from_package(cls, package_name: str, base: Type[Model] = Model) -> EntityCatalog:
        """Build a catalog from a package and all of its sub-modules."""
        try:
            package = _import(package_name)
        except DiscoveryError as e:
            logger.debug(f"Skipping package {package_name}: {e}")
            return cls([], base=base)

        module_names = [package_name]
        search_path: Optional[List[str]] = getattr(package, "__path__", None)
        if search_path is not None:
            walker = pkgutil.walk_packages(
                search_path,
                prefix=f"{package_name}.",
                onerror=lambda name: logger.debug(f"Skipping package {name}: import failed"),
            )
            for info in walker:
                module_names.append(info.name)

        return cls.from_modules(module_names, base=base)


def _import(module_name: str) -> ModuleType:
    try:
        return importlib.import_module(module_name)
    except Exception as e:
        raise DiscoveryError(f"Could not import {module_name}: {e}") from e


def _classes_defined_in(module: ModuleType) -> List[type]:
    return [
        obj for _, obj in inspect.getmembers(module, inspect.isclass)
        if obj.__module__ == module.__name__
    ]
