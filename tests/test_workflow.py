"""
Tests for the publication status workflow.

Run with: pytest tests/test_workflow.py -v
"""

import pytest

from pub_registry.base import PublicationStatus, UserRole
from pub_registry.config import Settings
from pub_registry.entity import Actor
from pub_registry.errors import ForbiddenError, InvalidTransitionError, ValidationError
from pub_registry.registry import PublicationRegistry
from pub_registry.workflow import ALLOWED_TRANSITIONS, parse_status, validate_transition

S = PublicationStatus


class TestParseStatus:
    @pytest.mark.parametrize("raw", ["under_review", " Under_Review ", S.UNDER_REVIEW])
    def test_accepts_any_case(self, raw):
        assert parse_status(raw) == S.UNDER_REVIEW

    @pytest.mark.parametrize("raw", [None, "", "   ", "accepted"])
    def test_rejects_blank_and_unknown(self, raw):
        with pytest.raises(ValidationError):
            parse_status(raw)


class TestValidateTransition:
    def test_table_moves_pass(self):
        for current, targets in ALLOWED_TRANSITIONS.items():
            for target in targets:
                assert validate_transition(current, target) is None

    def test_off_table_move_warns(self):
        warning = validate_transition(S.DRAFT, S.PUBLISHED)
        assert "draft -> published" in warning

    def test_strict_mode_raises(self):
        with pytest.raises(InvalidTransitionError) as excinfo:
            validate_transition(S.ARCHIVED, S.DRAFT, strict=True)
        assert excinfo.value.current == "archived"
        assert excinfo.value.target == "draft"


class TestTransitions:
    def test_professor_submits_for_review(self, registry, prof, submit):
        pub_id = submit(prof, "On Graphs", 2021)

        result = registry.transition_status(pub_id, prof, "under_review", note="ready")

        assert result.changed and result.previous == S.DRAFT and result.current == S.UNDER_REVIEW
        assert result.warning is None
        assert registry.get_publication(pub_id).status == S.UNDER_REVIEW
        history = registry.get_status_history(pub_id)
        assert [(h.status, h.changed_by, h.note) for h in history] == [(S.UNDER_REVIEW, 7, "ready")]

    def test_status_change_is_audited(self, registry, prof, submit):
        pub_id = submit(prof, "On Graphs", 2021)
        registry.transition_status(pub_id, prof, "under_review")

        [entry] = registry.get_edit_history(pub_id)
        assert (entry.field_name, entry.old_value, entry.new_value, entry.user_id) == ("status", "draft", "under_review", 7)

    def test_same_status_is_a_no_op(self, registry, prof, submit):
        pub_id = submit(prof, "On Graphs", 2021)

        result = registry.transition_status(pub_id, prof, "draft")

        assert not result.changed
        assert registry.get_status_history(pub_id) == []
        assert registry.get_edit_history(pub_id) == []

    def test_each_transition_appends_one_row(self, registry, prof, staff, submit):
        pub_id = submit(prof, "On Graphs", 2021)
        registry.transition_status(pub_id, prof, "under_review")
        registry.transition_status(pub_id, staff, "needs_revision", note="cite more")
        registry.transition_status(pub_id, prof, "under_review")
        registry.transition_status(pub_id, staff, "published")

        history = registry.get_status_history(pub_id)
        assert [h.status for h in history] == [S.UNDER_REVIEW, S.NEEDS_REVISION, S.UNDER_REVIEW, S.PUBLISHED]
        assert registry.get_publication(pub_id).status == S.PUBLISHED

    def test_submitting_with_status_goes_through_workflow(self, registry, prof, submit):
        pub_id = submit(prof, "On Graphs", 2021, status="under_review")

        assert registry.get_publication(pub_id).status == S.UNDER_REVIEW
        assert [h.status for h in registry.get_status_history(pub_id)] == [S.UNDER_REVIEW]

    def test_unknown_status(self, registry, prof, submit):
        pub_id = submit(prof, "On Graphs", 2021)

        with pytest.raises(ValidationError):
            registry.transition_status(pub_id, prof, "accepted")


class TestPermissions:
    def test_professor_cannot_publish(self, registry, prof, submit):
        pub_id = submit(prof, "On Graphs", 2021)
        registry.transition_status(pub_id, prof, "under_review")

        with pytest.raises(ForbiddenError):
            registry.transition_status(pub_id, prof, "published")
        assert registry.get_publication(pub_id).status == S.UNDER_REVIEW

    def test_professor_cannot_move_others_records(self, registry, prof, other_prof, submit):
        pub_id = submit(prof, "On Graphs", 2021)

        with pytest.raises(ForbiddenError):
            registry.transition_status(pub_id, other_prof, "under_review")

    def test_linked_coauthor_is_not_an_owner(self, registry, other_prof, staff, submit):
        """Only the submitting account may move a record through the workflow."""
        pub_id = submit(staff, "On Graphs", 2021, authors=[{"full_name": "B. Other", "user_id": other_prof.user_id}])

        with pytest.raises(ForbiddenError):
            registry.transition_status(pub_id, other_prof, "under_review")
        assert registry.get_publication(pub_id).status == S.DRAFT

    def test_staff_off_table_move_warns(self, registry, prof, staff, submit):
        pub_id = submit(prof, "On Graphs", 2021)

        result = registry.transition_status(pub_id, staff, "published")

        assert result.changed
        assert result.warning is not None
        assert registry.get_publication(pub_id).status == S.PUBLISHED

    def test_strict_mode_blocks_off_table_move(self, storage, prof, staff):
        registry = PublicationRegistry(storage, Settings(_env_file=None, STRICT_TRANSITIONS=True))
        pub_id = registry.submit_publication(prof, {"title": "On Graphs", "year": 2021})

        with pytest.raises(InvalidTransitionError):
            registry.transition_status(pub_id, staff, "published")

        assert registry.get_publication(pub_id).status == S.DRAFT
        assert registry.get_status_history(pub_id) == []


class TestReviewAction:
    @pytest.fixture
    def in_review(self, registry, prof, submit):
        pub_id = submit(prof, "On Graphs", 2021)
        registry.transition_status(pub_id, prof, "under_review")
        return pub_id

    @pytest.mark.parametrize(
        "action, expected",
        [("approve", S.PUBLISHED), ("request", S.NEEDS_REVISION), ("DRAFT", S.DRAFT)],
    )
    def test_actions(self, registry, staff, in_review, action, expected):
        result = registry.review_action(in_review, staff, action, note="reviewed")

        assert result.current == expected
        assert registry.get_status_history(in_review)[-1].note == "reviewed"

    def test_unknown_action(self, registry, staff, in_review):
        with pytest.raises(ValidationError):
            registry.review_action(in_review, staff, "reject")

    def test_professor_cannot_review(self, registry, prof, in_review):
        with pytest.raises(ForbiddenError):
            registry.review_action(in_review, prof, "approve")

    def test_admin_is_staff(self, registry, in_review):
        admin = Actor(user_id=2, role=UserRole.ADMIN)
        assert registry.review_action(in_review, admin, "approve").current == S.PUBLISHED
