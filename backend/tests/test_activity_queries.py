"""
Tests for reading the activity log back.

Test Coverage:
1. An actor's own trail, and admin access to anyone's
2. Admin search with filters
3. Per-form history, including after deletion
4. Submitted-form history per type
"""
import pytest

from compliance.models.db_models import ActivityAction, SubmissionStatus
from compliance.models.results import ErrorKind
from compliance.services.forms import (
    ApprovalRequestBroker, FormLifecycleManager, FormType, ReviewDecision,
)
from compliance.services.notifications import ActivityLogQueries


VISITS = FormType.AGENCY_VISITS.value
VISIT_PAYLOAD = {"visits": [{"date": "2026-03-03", "branch": "Pune"}]}


@pytest.fixture
def draft_id(db, agency):
    result = FormLifecycleManager(db).save(agency, VISITS, VISIT_PAYLOAD, SubmissionStatus.DRAFT)
    assert result.success, result.message
    return result.data["form_id"]


# =============================================================================
# TEST: PER-ACTOR TRAIL
# =============================================================================

class TestLogsForUser:

    def test_own_logs(self, db, agency, other_agency, draft_id):
        FormLifecycleManager(db).save(other_agency, VISITS, VISIT_PAYLOAD, SubmissionStatus.DRAFT)

        result = ActivityLogQueries(db).logs_for_user(agency)

        assert result.success
        assert [entry["entity_id"] for entry in result.data["logs"]] == [draft_id]
        assert result.data["logs"][0]["action"] == "FORM_CREATED"

    def test_agency_cannot_read_another_agency(self, db, agency, other_agency, draft_id):
        result = ActivityLogQueries(db).logs_for_user(other_agency, user_id=agency.user_id)

        assert result.error == ErrorKind.FORBIDDEN

    def test_admin_reads_any_agency(self, db, agency, admin, draft_id):
        result = ActivityLogQueries(db).logs_for_user(admin, user_id=agency.user_id)

        assert result.data["user_id"] == agency.user_id
        assert len(result.data["logs"]) == 1

    def test_limit(self, db, agency):
        manager = FormLifecycleManager(db)
        for month in (1, 2, 3):
            manager.save(agency, VISITS, VISIT_PAYLOAD, SubmissionStatus.DRAFT, period_month=month, period_year=2026)

        assert len(ActivityLogQueries(db).logs_for_user(agency, limit=2).data["logs"]) == 2

    def test_requires_login(self, db):
        assert ActivityLogQueries(db).logs_for_user(None).error == ErrorKind.UNAUTHORIZED


# =============================================================================
# TEST: ADMIN SEARCH
# =============================================================================

class TestSearch:

    def test_filter_by_action(self, db, agency, admin, draft_id):
        FormLifecycleManager(db).save(agency, VISITS, VISIT_PAYLOAD, SubmissionStatus.SUBMITTED, form_id=draft_id)

        result = ActivityLogQueries(db).search(admin, action=ActivityAction.FORM_SUBMITTED)

        assert result.data["total"] == 1
        assert result.data["logs"][0]["entity_id"] == draft_id

    def test_filter_by_actor_and_entity(self, db, agency, other_agency, admin, draft_id):
        FormLifecycleManager(db).save(other_agency, VISITS, VISIT_PAYLOAD, SubmissionStatus.DRAFT)
        queries = ActivityLogQueries(db)

        assert queries.search(admin, entity_type=VISITS).data["total"] == 2
        assert queries.search(admin, actor_id=agency.user_id).data["total"] == 1
        assert queries.search(admin, entity_id=draft_id).data["logs"][0]["actor_id"] == agency.user_id

    def test_agency_cannot_search(self, db, agency):
        assert ActivityLogQueries(db).search(agency).error == ErrorKind.FORBIDDEN


# =============================================================================
# TEST: ENTITY HISTORY
# =============================================================================

class TestEntityHistory:

    def test_form_history_in_order(self, db, agency, admin, draft_id):
        manager = FormLifecycleManager(db)
        broker = ApprovalRequestBroker(db)
        manager.save(agency, VISITS, VISIT_PAYLOAD, SubmissionStatus.SUBMITTED, form_id=draft_id)
        filed = broker.request_edit(agency, VISITS, draft_id, "Wrong branch")
        broker.review(admin, filed.data["request_id"], ReviewDecision.APPROVE)

        result = ActivityLogQueries(db).entity_history(agency, VISITS, draft_id)

        actions = [entry["action"] for entry in result.data["history"]]
        assert actions == ["FORM_CREATED", "FORM_SUBMITTED", "FORM_UNLOCKED"]
        assert "Changes: status" in result.data["history"][1]["description"]

    def test_other_agency_not_found(self, db, other_agency, draft_id):
        result = ActivityLogQueries(db).entity_history(other_agency, VISITS, draft_id)

        assert result.error == ErrorKind.NOT_FOUND

    def test_admin_reads_deleted_form_history(self, db, agency, admin, draft_id):
        FormLifecycleManager(db).delete(agency, VISITS, draft_id)

        history = ActivityLogQueries(db).entity_history(admin, VISITS, draft_id).data["history"]

        assert [entry["action"] for entry in history] == ["FORM_CREATED", "FORM_DELETED"]


# =============================================================================
# TEST: SUBMISSION HISTORY
# =============================================================================

class TestSubmissionHistory:

    def test_only_submitted_forms(self, db, agency, draft_id):
        manager = FormLifecycleManager(db)
        submitted = manager.save(
            agency, VISITS, VISIT_PAYLOAD, SubmissionStatus.SUBMITTED, period_month=2, period_year=2026,
        )

        result = manager.submission_history(agency, VISITS)

        assert [form["id"] for form in result.data["submissions"]] == [submitted.data["form_id"]]

    def test_admin_passes_owner(self, db, agency, admin):
        manager = FormLifecycleManager(db)
        manager.save(agency, VISITS, VISIT_PAYLOAD, SubmissionStatus.SUBMITTED)

        result = manager.submission_history(admin, VISITS, owner_id=agency.user_id)

        assert len(result.data["submissions"]) == 1

    def test_agency_cannot_pass_other_owner(self, db, agency, other_agency):
        result = FormLifecycleManager(db).submission_history(other_agency, VISITS, owner_id=agency.user_id)

        assert result.error == ErrorKind.FORBIDDEN

    def test_unknown_form_type(self, db, agency):
        assert FormLifecycleManager(db).submission_history(agency, "payroll").error == ErrorKind.VALIDATION
