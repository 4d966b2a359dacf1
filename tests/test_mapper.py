"""
Tests for mapper functions between domain and persistence models.

Run with: pytest tests/test_mapper.py -v
"""

import sqlite3

from pub_registry.base import PublicationLevel, PublicationStatus, VenueType
from pub_registry.entity import PublicationFields
from pub_registry.mapper import (
    column_value,
    group_by_pub,
    publication_columns,
    publication_to_domain,
    row_to_dict,
    venue_to_domain,
)
from pub_registry.storage.models.publication import Venue as VenueTable


def sqlite_rows(sql):
    conn = sqlite3.connect(":memory:")
    conn.row_factory = sqlite3.Row
    try:
        return conn.execute(sql).fetchall()
    finally:
        conn.close()


class TestColumns:
    def test_enums_are_stored_by_value(self):
        assert column_value(PublicationLevel.NATIONAL) == "NATIONAL"
        assert column_value(3) == 3

    def test_publication_columns(self):
        columns = publication_columns(PublicationFields(title="T", level="national", status="published"), 7)

        assert columns["level"] == "NATIONAL"
        assert columns["status"] == "published"
        assert columns["owner_user_id"] == 7


class TestToDomain:
    def test_from_sqlmodel_instance(self):
        venue = venue_to_domain(VenueTable(venue_id=3, type="JOURNAL", name="J"))
        assert (venue.venue_id, venue.type) == (3, VenueType.JOURNAL)

    def test_from_sqlite_row(self):
        [row] = sqlite_rows(
            "SELECT 1 AS pub_id, 'T' AS title, 'under_review' AS status, 1 AS has_attachment, "
            "'2024-01-02T03:04:05' AS created_at"
        )

        record = publication_to_domain(row)

        assert record.status == PublicationStatus.UNDER_REVIEW
        assert record.has_attachment is True
        assert record.created_at.year == 2024

    def test_row_to_dict_accepts_plain_mappings(self):
        assert row_to_dict({"a": 1}) == {"a": 1}

    def test_group_by_pub(self):
        rows = [{"pub_id": 1, "name": "a"}, {"pub_id": 2, "name": "b"}, {"pub_id": 1, "name": "c"}]

        assert group_by_pub(rows, "name") == {1: ["a", "c"], 2: ["b"]}
        assert group_by_pub(rows[:1]) == {1: [{"name": "a"}]}
