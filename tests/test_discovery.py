"""
Tests for the relation discovery module.

Tests the entity catalog, method filter, classifier, safe probe, metadata
extractor, graph builder and the sniffer end to end.
"""

import logging
import signal
import time
from typing import Optional

import pytest

from relation_sniffer.discovery import (
    EntityCatalog,
    MetadataExtractor,
    MethodFilter,
    RelationClassifier,
    RelationSniffer,
    SafeProbe,
    SchemaGraphBuilder,
    sniff,
)
from relation_sniffer.discovery.classifier import is_object_value
from relation_sniffer.discovery.method_filter import describe_methods
from relation_sniffer.errors import ExtractionError, ProbeError, UnresolvedRelatedTypeError
from relation_sniffer.models import EntityDescriptor, MethodCandidate, RelationEdge, RelationKind, SnifferConfig
from relation_sniffer.orm import BelongsTo, BelongsToMany, Database, HasMany, HasOne, Model, Relation, qualified_name

from conftest import count_rows
from sample_entities import (
    ALL_ENTITIES,
    Author,
    Book,
    Course,
    Invoice,
    InvoiceItem,
    LibraryModel,
    Profile,
    Student,
    Tag,
)


def _descriptor(cls):
    return EntityDescriptor(name=qualified_name(cls), table_name=cls.get_table(), entity_class=cls)


class TestEntityCatalog:
    """Tests for the entity catalog."""

    def test_excludes_abstract_and_non_entities(self):
        class NotAnEntity:
            pass

        catalog = EntityCatalog([LibraryModel, Model, NotAnEntity, Author, "Book", 42])
        assert catalog.names == [qualified_name(Author)]

    def test_order_is_deterministic(self):
        forward = EntityCatalog(ALL_ENTITIES)
        backward = EntityCatalog(list(reversed(ALL_ENTITIES)))
        assert forward.names == backward.names
        assert forward.names == sorted(forward.names)

    def test_duplicates_collapse(self):
        catalog = EntityCatalog([Author, Author, Book])
        assert len(catalog) == 2

    def test_descriptor_metadata(self):
        descriptor = next(iter(EntityCatalog([Student])))
        assert descriptor.name == "sample_entities.Student"
        assert descriptor.table_name == "students"
        assert descriptor.entity_class is Student

    def test_from_modules_skips_unloadable(self):
        catalog = EntityCatalog.from_modules(["sample_entities", "no_such_module_anywhere"])
        assert set(catalog.names) == {qualified_name(cls) for cls in ALL_ENTITIES}

    def test_from_package_on_plain_module(self):
        catalog = EntityCatalog.from_package("sample_entities")
        assert qualified_name(Invoice) in catalog.names

    def test_from_missing_package(self):
        assert len(EntityCatalog.from_package("no_such_package_anywhere")) == 0


class TestMethodFilter:
    """Tests for method eligibility."""

    def _names(self, cls, config=None):
        return [m.name for m in MethodFilter(config).candidates(_descriptor(cls))]

    def test_author_candidates(self):
        names = self._names(Author)
        assert names[:5] == ["books", "profile", "display_name", "rename", "draft_book"]
        # Required parameters, private, static, magic and properties
        for rejected in ("books_by", "_shelf", "shelf_label", "__init__", "__getattr__", "initials"):
            assert rejected not in names

    def test_write_methods_always_excluded(self):
        names = self._names(Author, SnifferConfig(exclusions={"*": []}))
        for name in ("save", "update", "delete", "force_delete"):
            assert name not in names

    def test_class_level_methods_are_static(self):
        names = self._names(Author)
        for name in ("get_table", "find", "all", "sandboxed", "get_foreign_key"):
            assert name not in names

    def test_global_and_entity_exclusions(self):
        config = SnifferConfig(exclusions={
            "*": ["display_name"],
            qualified_name(Author): ["books"],
            "Book": ["author"],
        })
        names = self._names(Author, config)
        assert "display_name" not in names
        assert "books" not in names
        assert "profile" in names
        assert "author" not in self._names(Book, config)

    def test_name_in_both_lists_is_excluded(self):
        config = SnifferConfig(exclusions={"*": ["books"], "Author": ["books"]})
        assert "books" not in self._names(Author, config)

    def test_declared_return_types(self):
        methods = {m.name: m for m in describe_methods(Author)}
        assert methods["books"].declared_return_type is HasMany
        assert methods["profile"].declared_return_type is None
        assert methods["books_by"].required_parameters == 1
        assert methods["shelf_label"].is_static
        assert not methods["_shelf"].is_public

    def test_unresolvable_annotation(self):
        class Dangling(Model):
            def ghost(self) -> "NoSuchRelation":  # noqa: F821
                return None

        methods = {m.name: m for m in describe_methods(Dangling)}
        assert methods["ghost"].declared_return_type is None

    def test_defaults_and_varargs_are_not_required(self):
        class Flexible(Model):
            def relation(self, limit=10, *args, **kwargs):
                return None

        methods = {m.name: m for m in describe_methods(Flexible)}
        assert methods["relation"].required_parameters == 0

    def test_overridden_method_seen_once(self):
        class Base(Model):
            __abstract__ = True

            def shared(self):
                return None

        class Child(Base):
            def shared(self):
                return 1

        names = [m.name for m in describe_methods(Child)]
        assert names.count("shared") == 1


class TestRelationClassifier:
    """Tests for relation classification."""

    @pytest.fixture
    def classifier(self):
        return RelationClassifier()

    def test_classify_declared_types(self, classifier):
        assert classifier.classify_type(HasMany) is RelationKind.TO_MANY
        assert classifier.classify_type(HasOne) is RelationKind.TO_ONE
        assert classifier.classify_type(BelongsTo) is RelationKind.TO_ONE
        assert classifier.classify_type(BelongsToMany) is RelationKind.MANY_TO_MANY_THROUGH_PIVOT
        assert classifier.classify_type(Relation) is RelationKind.TO_ONE

    def test_rejects_unusable_declared_types(self, classifier):
        assert classifier.classify_type(None) is None
        assert classifier.classify_type(int) is None
        assert classifier.classify_type(Optional[HasMany]) is None

    def test_pivot_detected_by_capability(self, classifier):
        class ThroughTable(Relation):
            def get_foreign_pivot_key_name(self):
                return "a_id"

            def get_related_pivot_key_name(self):
                return "b_id"

        assert classifier.classify_type(ThroughTable) is RelationKind.MANY_TO_MANY_THROUGH_PIVOT

    def test_classify_runtime_values(self, classifier):
        assert classifier.classify_value(Author().books()) is RelationKind.TO_MANY
        assert classifier.classify_value(Student().courses()) is RelationKind.MANY_TO_MANY_THROUGH_PIVOT
        assert classifier.classify_value(Book()) is None
        assert classifier.classify_value(3.5) is None
        assert classifier.classify_value(None) is None
        assert classifier.classify_value(HasMany) is None

    def test_is_object_value(self):
        assert is_object_value(Author())
        for value in (None, True, 1, "x", b"x", [1], {"a": 1}, (1,), Author):
            assert not is_object_value(value)


class TestSafeProbe:
    """Tests for guarded probing."""

    def test_declared_relation_is_not_invoked(self, database):
        calls = []

        class Tracked(LibraryModel):
            def typed(self) -> HasMany:
                calls.append("typed")
                return self.has_many(Book)

            def untyped(self):
                calls.append("untyped")
                return self.has_many(Book)

        probe = SafeProbe()
        with probe.session(_descriptor(Tracked)) as session:
            typed = session.probe_method(MethodCandidate(name="typed", declared_return_type=HasMany))
            untyped = session.probe_method(MethodCandidate(name="untyped"))

        assert typed.kind is RelationKind.TO_MANY and not typed.invoked
        assert untyped.kind is RelationKind.TO_MANY and untyped.invoked
        assert calls == ["untyped"]

    def test_scalar_results_are_discarded(self, database):
        with SafeProbe().session(_descriptor(Invoice)) as session:
            result = session.probe_method(MethodCandidate(name="total"))
        assert result.invoked
        assert not result.is_relation
        assert result.error is None
        assert session.failures == []

    def test_errors_are_recorded_not_raised(self, database, caplog):
        with caplog.at_level(logging.INFO):
            with SafeProbe().session(_descriptor(Invoice)) as session:
                boom = session.probe_method(MethodCandidate(name="explode"))
                missing = session.probe_method(MethodCandidate(name="customer"))
                items = session.probe_method(MethodCandidate(name="items"))

        assert isinstance(boom.error, ProbeError)
        assert not isinstance(boom.error, UnresolvedRelatedTypeError)
        assert isinstance(missing.error, UnresolvedRelatedTypeError)
        assert items.kind is RelationKind.TO_MANY

        assert [f.method for f in session.failures] == ["explode", "customer"]
        assert session.failures[1].kind == "unresolved_related_type"
        assert session.failures[1].hint == "This could be due to an incorrect relation setup"
        assert "customer - failed" in caplog.text
        assert "incorrect relation setup" in caplog.text

    def test_guard_and_rollback(self, seeded):
        authors, books, invoices = (count_rows(seeded, t) for t in ("authors", "books", "invoices"))

        with SafeProbe().session(_descriptor(Author)) as session:
            assert session.probe_method(MethodCandidate(name="rename")).kind is None
            assert session.probe_method(MethodCandidate(name="draft_book")).kind is None
            # Book is not guarded, but its insert is inside the rolled back transaction
            assert count_rows(seeded, "books") == books + 1
        with SafeProbe().session(_descriptor(Invoice)) as session:
            session.probe_method(MethodCandidate(name="purge"))

        assert count_rows(seeded, "authors") == authors
        assert count_rows(seeded, "books") == books
        assert count_rows(seeded, "invoices") == invoices
        assert Author.find(1).name == "Ann"
        assert "__write_backend__" not in Author.__dict__

    def test_guard_restored_when_session_body_fails(self, database):
        with pytest.raises(RuntimeError):
            with SafeProbe().session(_descriptor(Author)):
                raise RuntimeError("unexpected")
        assert "__write_backend__" not in Author.__dict__
        assert not database.connection.in_transaction()

    def test_instantiation_failure(self, database):
        from relation_sniffer.errors import DiscoveryError

        class Fussy(LibraryModel):
            def __init__(self):
                raise ValueError("needs arguments")

        with pytest.raises(DiscoveryError):
            with SafeProbe().session(_descriptor(Fussy)):
                pass
        assert "__write_backend__" not in Fussy.__dict__

    @pytest.mark.skipif(not hasattr(signal, "SIGALRM"), reason="needs SIGALRM")
    def test_timeout(self):
        class Sleepy(Model):
            def stall(self):
                time.sleep(5)

        probe = SafeProbe(timeout=0.2)
        started = time.monotonic()
        with probe.session(_descriptor(Sleepy)) as session:
            result = session.probe_method(MethodCandidate(name="stall"))
        assert time.monotonic() - started < 4
        assert result.error is not None
        assert session.failures[0].kind == "timeout"


class TestMetadataExtractor:
    """Tests for metadata extraction."""

    def _extract(self, cls, name, kind):
        with SafeProbe().session(_descriptor(cls)) as session:
            return MetadataExtractor().extract(session, name, kind)

    def test_direct_relation_uses_local_key(self, database):
        edge = self._extract(Author, "books", RelationKind.TO_MANY)
        assert edge.related_entity == qualified_name(Book)
        assert edge.foreign_key == "author_id"
        assert edge.local_key == "id"
        assert not edge.is_inverse

    def test_inverse_relation_uses_owner_key(self, database):
        class Review(LibraryModel):
            def book(self) -> BelongsTo:
                return self.belongs_to(Book, "reviewed_book", "isbn")

        edge = self._extract(Review, "book", RelationKind.TO_ONE)
        assert edge.foreign_key == "reviewed_book"
        assert edge.local_key == "isbn"
        assert edge.is_inverse

    def test_pivot_relation(self, database):
        edge = self._extract(Student, "courses", RelationKind.MANY_TO_MANY_THROUGH_PIVOT)
        assert edge.to_dict() == {
            "isPivot": True,
            "relatedModel": qualified_name(Course),
            "foreignKey": "student_id",
            "parentKey": "id",
            "relatedPivotKey": "course_id",
            "relatedKey": "id",
            "table": "course_student",
        }

    def test_missing_accessor_is_extraction_error(self, database):
        with pytest.raises(ExtractionError):
            self._extract(Author, "books", RelationKind.MANY_TO_MANY_THROUGH_PIVOT)

    def test_builder_failure_keeps_its_kind(self, database):
        with pytest.raises(UnresolvedRelatedTypeError) as excinfo:
            self._extract(Invoice, "customer", RelationKind.TO_ONE)
        assert excinfo.value.hint == "This could be due to an incorrect relation setup"

        with pytest.raises(ProbeError) as excinfo:
            self._extract(Invoice, "explode", RelationKind.TO_ONE)
        assert excinfo.value.kind == "probe"

    def test_non_relation_is_extraction_error(self, database):
        with pytest.raises(ExtractionError):
            self._extract(Invoice, "total", RelationKind.TO_ONE)


class TestSchemaGraphBuilder:
    """Tests for graph aggregation."""

    def test_metadata_recorded_once(self):
        builder = SchemaGraphBuilder()
        descriptor = _descriptor(Author)
        builder.add_entity(descriptor)
        builder.add_edge(RelationEdge(
            source_entity=descriptor.name,
            relation_name="books",
            kind=RelationKind.TO_MANY,
            related_entity="x.Book",
            foreign_key="author_id",
            local_key="id",
        ))
        builder.add_entity(descriptor)

        graph = builder.build()
        assert graph.get_entity(descriptor.name).table == "authors"
        assert list(graph.get_entity(descriptor.name).relations) == ["books"]

    def test_duplicate_relation_overwrites(self, caplog):
        builder = SchemaGraphBuilder()
        descriptor = _descriptor(Author)
        builder.add_entity(descriptor)
        for key in ("author_id", "writer_id"):
            builder.add_edge(RelationEdge(
                source_entity=descriptor.name,
                relation_name="books",
                kind=RelationKind.TO_MANY,
                related_entity="x.Book",
                foreign_key=key,
                local_key="id",
            ))
        assert builder.build().get_edge(descriptor.name, "books").foreign_key == "writer_id"
        assert "Duplicate relation" in caplog.text

    def test_edge_before_entity(self):
        with pytest.raises(KeyError):
            SchemaGraphBuilder().add_edge(RelationEdge(
                source_entity="x.Nobody",
                relation_name="r",
                kind=RelationKind.TO_ONE,
                related_entity="x.Other",
            ))

    def test_emit_to_sink(self):
        builder = SchemaGraphBuilder()
        builder.add_entity(_descriptor(Tag))
        received = []
        builder.emit(received.append)
        assert received == [[{"metadata": {"table": "tags", "class": qualified_name(Tag)}, "relations": {}}]]


class TestRelationSniffer:
    """End-to-end scans over the sample entities."""

    @pytest.fixture
    def sniffer(self, seeded):
        return RelationSniffer(EntityCatalog(ALL_ENTITIES))

    def test_author_books(self, sniffer):
        graph = sniffer.sniff()
        edge = graph.get_edge(qualified_name(Author), "books")
        assert edge.to_dict() == {
            "isPivot": False,
            "relatedModel": qualified_name(Book),
            "foreignKey": "author_id",
            "localKey": "id",
        }

    def test_student_courses(self, sniffer):
        graph = sniffer.sniff()
        edge = graph.get_edge(qualified_name(Student), "courses").to_dict()
        assert edge["isPivot"] is True
        assert edge["table"] == "course_student"
        assert (edge["foreignKey"], edge["parentKey"], edge["relatedPivotKey"], edge["relatedKey"]) == (
            "student_id", "id", "course_id", "id",
        )

    def test_runtime_classified_relations(self, sniffer):
        graph = sniffer.sniff()
        assert graph.get_edge(qualified_name(Author), "profile").kind is RelationKind.TO_ONE
        assert graph.get_edge(qualified_name(Course), "students").is_pivot
        assert graph.get_edge(qualified_name(Profile), "author").is_inverse

    def test_full_relation_sets(self, sniffer):
        graph = sniffer.sniff()
        relations = {
            name.rsplit(".", 1)[-1]: sorted(node.relations)
            for name, node in graph.entities.items()
        }
        assert relations == {
            "Author": ["books", "profile"],
            "Book": ["author"],
            "Course": ["students"],
            "Invoice": ["items"],
            "InvoiceItem": ["invoice"],
            "Profile": ["author"],
            "Student": ["courses"],
            "Tag": [],
        }

    def test_scalars_are_not_edges(self, sniffer):
        graph = sniffer.sniff()
        assert graph.get_edge(qualified_name(Invoice), "total") is None
        assert graph.get_edge(qualified_name(Book), "page_count") is None

    def test_failures_reported_scan_continues(self, sniffer):
        graph = sniffer.sniff()
        invoice = graph.get_entity(qualified_name(Invoice))
        assert "customer" not in invoice.relations
        assert "items" in invoice.relations

        failed = {(f.method, f.kind) for f in sniffer.failures}
        assert ("customer", "unresolved_related_type") in failed
        assert ("explode", "probe") in failed

    def test_metadata_records(self, sniffer):
        data = sniffer.sniff().to_list()
        assert {"table": "invoice_items", "class": qualified_name(InvoiceItem)} in [e["metadata"] for e in data]

    def test_scan_is_idempotent(self, sniffer):
        assert sniffer.sniff().to_list() == sniffer.sniff().to_list()

    def test_scan_does_not_touch_storage(self, seeded, sniffer):
        tables = ("authors", "books", "profiles", "students", "courses", "course_student", "invoices", "invoice_items")
        before = {t: count_rows(seeded, t) for t in tables}
        sniffer.sniff()
        assert {t: count_rows(seeded, t) for t in tables} == before
        assert [a.name for a in Author.all()] == ["Ann"]
        for cls in ALL_ENTITIES:
            assert "__write_backend__" not in cls.__dict__

    def test_excluded_methods_never_become_edges(self, seeded):
        config = SnifferConfig(exclusions={"*": ["books", "author"]})
        graph = RelationSniffer(EntityCatalog(ALL_ENTITIES), config).sniff()
        names = {e.relation_name for e in graph.edges()}
        assert "books" not in names
        assert "author" not in names
        assert "courses" in names

    def test_zero_eligible_methods(self, database):
        config = SnifferConfig(exclusions={"Tag": ["get_key", "to_dict"]})
        assert MethodFilter(config).candidates(_descriptor(Tag)) == []
        graph = RelationSniffer(EntityCatalog([Tag]), config).sniff()
        assert graph.get_entity(qualified_name(Tag)).relations == {}

    def test_uninstantiable_entity_is_skipped(self, database):
        class Needy(LibraryModel):
            def __init__(self, required):
                super().__init__()

        graph = RelationSniffer(EntityCatalog([Needy, Book])).sniff()
        assert qualified_name(Needy) not in graph
        assert qualified_name(Book) in graph

    def test_unreachable_database_skips_only_that_entity(self, database, tmp_path):
        class Warehouse(Model):
            __database__ = Database(f"sqlite:///{tmp_path / 'missing' / 'dir' / 'stock.db'}")

            def books(self) -> HasMany:
                return self.has_many(Book)

        try:
            graph = RelationSniffer(EntityCatalog([Warehouse, Book])).sniff()
        finally:
            Warehouse.__database__.close()

        assert qualified_name(Warehouse) not in graph
        assert graph.get_edge(qualified_name(Book), "author") is not None
        assert "__write_backend__" not in Warehouse.__dict__

    def test_typed_relation_to_missing_class(self, database):
        class Shipment(LibraryModel):
            def carrier(self) -> BelongsTo:
                return self.belongs_to("Carrier")

            def book(self) -> BelongsTo:
                return self.belongs_to(Book)

        sniffer = RelationSniffer(EntityCatalog([Shipment]))
        relations = sniffer.sniff().get_entity(qualified_name(Shipment)).relations

        assert list(relations) == ["book"]
        assert [f.to_dict() for f in sniffer.failures] == [{
            "entity": qualified_name(Shipment),
            "method": "carrier",
            "kind": "unresolved_related_type",
            "message": 'Class "Carrier" not found',
            "hint": "This could be due to an incorrect relation setup",
        }]

    def test_sniff_to_sink(self, sniffer):
        received = []
        sniffer.sniff_to(received.append)
        assert len(received[0]) == len(ALL_ENTITIES)

    def test_sniff_convenience(self, seeded):
        graph = sniff(["sample_entities"], exclusions={"*": ["items"]})
        assert graph.get_edge(qualified_name(Author), "books") is not None
        assert graph.get_edge(qualified_name(Invoice), "items") is None

    def test_sniff_convenience_with_classes(self, seeded):
        graph = sniff([Author, Book])
        assert len(graph) == 2
