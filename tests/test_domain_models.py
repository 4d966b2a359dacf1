"""
Tests for the Pydantic domain models and enums.

Run with: pytest tests/test_domain_models.py -v
"""

import pytest
from pydantic import ValidationError

from pub_registry.base import PublicationStatus, ReviewAction, SearchScope, UserRole
from pub_registry.entity import AbstractEdit, Actor, AuthorInput, PublicationFields, PublicationUpdate, SearchFilters, parse_flag


class TestActor:
    @pytest.mark.parametrize("role, staff", [(UserRole.ADMIN, True), (UserRole.STAFF, True), (UserRole.PROFESSOR, False)])
    def test_is_staff(self, role, staff):
        assert Actor(user_id=1, role=role).is_staff is staff


class TestPublicationFields:
    def test_blank_strings_become_null(self):
        fields = PublicationFields(title="  ", venue_name="", link_url=" https://x.org ")

        assert fields.title is None
        assert fields.venue_name is None
        assert fields.link_url == "https://x.org"

    def test_level_is_case_insensitive(self):
        assert PublicationFields(level="international").level.value == "INTERNATIONAL"
        assert PublicationFields(level=" ").level is None

    def test_unknown_level_is_rejected(self):
        with pytest.raises(ValidationError):
            PublicationFields(level="REGIONAL")

    def test_defaults(self):
        fields = PublicationFields()
        assert fields.status == PublicationStatus.DRAFT
        assert fields.has_attachment is False


class TestPublicationUpdate:
    def test_explicit_fields_only(self):
        update = PublicationUpdate(title="New", link_url=None, status="published")

        assert update.explicit_fields() == {"title": "New", "link_url": None}

    def test_empty_update(self):
        assert PublicationUpdate().explicit_fields() == {}

    def test_null_has_attachment_is_ignored(self):
        update = PublicationUpdate(has_attachment=None, year=None)

        assert update.explicit_fields() == {"year": None}

    def test_abstract_edit_is_empty(self):
        assert AbstractEdit().is_empty()
        assert not AbstractEdit(append="x").is_empty()


class TestAuthorInput:
    def test_normalization(self):
        author = AuthorInput(full_name="  Ana Smith ", email=" ", affiliation="", role="LEAD")

        assert author.full_name == "Ana Smith"
        assert author.email is None and author.affiliation is None
        assert author.role.value == "LEAD"


class TestSearchFilters:
    def test_defaults(self):
        filters = SearchFilters()
        assert filters.scope == SearchScope.ALL
        assert filters.authors == [] and filters.statuses == []
        assert filters.has_attachment is None and filters.with_students is False

    def test_term_lists(self):
        filters = SearchFilters(authors="Smith, Lee,,Smith", categories=["Graphs", "Databases, Graphs"])

        assert filters.authors == ["Smith", "Lee"]
        assert filters.categories == ["Graphs", "Databases"]

    def test_case_normalization(self):
        filters = SearchFilters(statuses=["PUBLISHED", PublicationStatus.DRAFT], levels="national", venue_types=["journal"])

        assert filters.statuses == ["published", "draft"]
        assert filters.levels == ["NATIONAL"]
        assert filters.venue_types == ["JOURNAL"]

    def test_lenient_values(self):
        filters = SearchFilters(q="  ", scope="nowhere", year_from="20x0", year_to=" 2021 ", has_attachment="maybe", with_students="nope")

        assert filters.q is None
        assert filters.scope == SearchScope.ALL
        assert (filters.year_from, filters.year_to) == (None, 2021)
        assert filters.has_attachment is None
        assert filters.with_students is False

    def test_inverted_years_are_swapped(self):
        filters = SearchFilters(year_from=2024, year_to=2019)
        assert (filters.year_from, filters.year_to) == (2019, 2024)

    @pytest.mark.parametrize("raw, expected", [("1", True), ("Yes", True), ("off", False), (False, False), ("", None), (None, None)])
    def test_parse_flag(self, raw, expected):
        assert parse_flag(raw) is expected


class TestReviewAction:
    def test_target_status(self):
        assert ReviewAction.APPROVE.target_status == PublicationStatus.PUBLISHED
        assert ReviewAction.REQUEST.target_status == PublicationStatus.NEEDS_REVISION
        assert ReviewAction.DRAFT.target_status == PublicationStatus.DRAFT
