"""Shared fixtures: an in-memory database bound to the sample entities."""

import pytest
from sqlalchemy import func, select, table

from relation_sniffer.orm import Database

from sample_entities import Author, Book, Course, Invoice, InvoiceItem, LibraryModel, Student, metadata


def count_rows(database, table_name):
    return database.scalar(select(func.count()).select_from(table(table_name)))


@pytest.fixture
def database():
    """In-memory SQLite database with the sample tables, bound to the sample entities."""
    db = Database("sqlite://")
    with db.connection.begin():
        metadata.create_all(db.connection)

    LibraryModel.__database__ = db
    yield db
    LibraryModel.__database__ = None
    db.close()


@pytest.fixture
def seeded(database):
    """Database with a few rows in every sample table."""
    ann = Author(name="Ann")
    ann.save()
    Book(title="First", author_id=ann.get_key()).save()
    Book(title="Second", author_id=ann.get_key()).save()

    Student(name="Sam").save()
    Course(title="Math").save()
    database.execute(
        metadata.tables["course_student"].insert().values(student_id=1, course_id=1)
    )

    invoice = Invoice(amount=10)
    invoice.save()
    InvoiceItem(invoice_id=invoice.get_key(), sku="A-1").save()
    return database
