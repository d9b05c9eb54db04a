"""
Tests for the Form Lifecycle Manager.

Test Coverage:
1. Create as DRAFT or SUBMITTED
2. DRAFT -> DRAFT and DRAFT -> SUBMITTED
3. SUBMITTED forms are locked (no edit, no revert to DRAFT, no delete)
4. Ownership scoping (NotFound for other owners)
5. Validation (unknown form type, empty payload, required fields)
6. Activity log snapshots and first-submission notification
7. Period status and submission listing
"""
from datetime import datetime

import pytest

from compliance.models.db_models import (
    ActivityAction, ActivityLogDB, NotificationDB, NotificationType, SubmissionStatus,
)
from compliance.models.results import ErrorKind
from compliance.services.forms import FormLifecycleManager, FormType


VISITS = FormType.AGENCY_VISITS.value
VISIT_PAYLOAD = {"visits": [{"date": "2026-03-03", "branch": "Pune"}]}


# =============================================================================
# TEST: CREATE AND SAVE
# =============================================================================

class TestSaveForm:
    """Tests for FormLifecycleManager.save()."""

    def test_create_draft(self, db, agency):
        """New form saved as DRAFT is editable."""
        result = FormLifecycleManager(db).save(agency, VISITS, VISIT_PAYLOAD, SubmissionStatus.DRAFT)

        assert result.success
        assert result.data["status"] == "DRAFT"
        assert result.data["resubmission"] is False

    def test_create_submitted_notifies_owner(self, db, agency):
        """First submission sends a FORM_SUBMITTED notification to the owner."""
        result = FormLifecycleManager(db).save(agency, VISITS, VISIT_PAYLOAD, SubmissionStatus.SUBMITTED)

        assert result.success
        notifications = db.query(NotificationDB).filter(NotificationDB.user_id == agency.user_id).all()
        assert [n.type for n in notifications] == [NotificationType.FORM_SUBMITTED]

    def test_draft_then_submit(self, db, agency):
        """DRAFT -> DRAFT -> SUBMITTED is accepted."""
        manager = FormLifecycleManager(db)
        form_id = manager.save(agency, VISITS, VISIT_PAYLOAD, SubmissionStatus.DRAFT).data["form_id"]

        updated = manager.save(agency, VISITS, {"visits": [{"date": "2026-03-04"}]}, SubmissionStatus.DRAFT, form_id=form_id)
        submitted = manager.save(agency, VISITS, VISIT_PAYLOAD, SubmissionStatus.SUBMITTED, form_id=form_id)

        assert updated.success
        assert submitted.success
        assert submitted.data["status"] == "SUBMITTED"
        assert submitted.data["resubmission"] is False

    def test_save_logs_before_and_after_snapshot(self, db, agency):
        """Activity log carries old and new status for an update."""
        manager = FormLifecycleManager(db)
        form_id = manager.save(agency, VISITS, VISIT_PAYLOAD, SubmissionStatus.DRAFT).data["form_id"]
        manager.save(agency, VISITS, VISIT_PAYLOAD, SubmissionStatus.SUBMITTED, form_id=form_id)

        entry = db.query(ActivityLogDB).filter(
            ActivityLogDB.entity_id == form_id,
            ActivityLogDB.action == ActivityAction.FORM_SUBMITTED,
        ).one()
        assert entry.event_metadata["old_values"]["status"] == "DRAFT"
        assert entry.event_metadata["new_values"]["status"] == "SUBMITTED"
        assert "Changes:" in entry.description

    def test_unknown_form_type(self, db, agency):
        result = FormLifecycleManager(db).save(agency, "noSuchForm", VISIT_PAYLOAD, SubmissionStatus.DRAFT)

        assert result.error == ErrorKind.VALIDATION

    def test_empty_payload(self, db, agency):
        result = FormLifecycleManager(db).save(agency, VISITS, {}, SubmissionStatus.DRAFT)

        assert result.error == ErrorKind.VALIDATION

    def test_submit_requires_required_fields(self, db, agency):
        """A draft may be partial; a submission may not."""
        manager = FormLifecycleManager(db)
        partial = {"notes": "to be completed"}

        assert manager.save(agency, VISITS, partial, SubmissionStatus.DRAFT).success
        result = manager.save(agency, VISITS, partial, SubmissionStatus.SUBMITTED)
        assert result.error == ErrorKind.VALIDATION
        assert "visits" in result.message

    def test_duplicate_period_is_conflict(self, db, agency):
        """One form per type, per agency, per period."""
        manager = FormLifecycleManager(db)
        first = manager.save(agency, VISITS, VISIT_PAYLOAD, SubmissionStatus.DRAFT, period_month=3, period_year=2026)
        second = manager.save(agency, VISITS, VISIT_PAYLOAD, SubmissionStatus.DRAFT, period_month=3, period_year=2026)

        assert first.success
        assert second.error == ErrorKind.CONFLICT

    def test_unauthenticated(self, db):
        result = FormLifecycleManager(db).save(None, VISITS, VISIT_PAYLOAD, SubmissionStatus.DRAFT)

        assert result.error == ErrorKind.UNAUTHORIZED

    def test_admin_cannot_own_forms(self, db, admin):
        result = FormLifecycleManager(db).save(admin, VISITS, VISIT_PAYLOAD, SubmissionStatus.DRAFT)

        assert result.error == ErrorKind.FORBIDDEN


# =============================================================================
# TEST: LOCKING
# =============================================================================

class TestSubmittedFormIsLocked:
    """A SUBMITTED form cannot be edited without an approved request."""

    @pytest.fixture
    def submitted_id(self, db, agency):
        result = FormLifecycleManager(db).save(agency, VISITS, VISIT_PAYLOAD, SubmissionStatus.SUBMITTED)
        return result.data["form_id"]

    def test_resubmit_without_approval_is_conflict(self, db, agency, submitted_id):
        result = FormLifecycleManager(db).save(
            agency, VISITS, {"visits": [{"date": "2026-03-09"}]}, SubmissionStatus.SUBMITTED, form_id=submitted_id,
        )

        assert result.error == ErrorKind.CONFLICT

    def test_revert_to_draft_is_conflict(self, db, agency, submitted_id):
        result = FormLifecycleManager(db).save(
            agency, VISITS, VISIT_PAYLOAD, SubmissionStatus.DRAFT, form_id=submitted_id,
        )

        assert result.error == ErrorKind.CONFLICT

    def test_delete_submitted_is_conflict(self, db, agency, submitted_id):
        result = FormLifecycleManager(db).delete(agency, VISITS, submitted_id)

        assert result.error == ErrorKind.CONFLICT

    def test_other_owner_gets_not_found(self, db, other_agency, submitted_id):
        """Ownership is checked before state: another agency never learns the form exists."""
        result = FormLifecycleManager(db).save(
            other_agency, VISITS, VISIT_PAYLOAD, SubmissionStatus.SUBMITTED, form_id=submitted_id,
        )

        assert result.error == ErrorKind.NOT_FOUND

    def test_wrong_form_type_gets_not_found(self, db, agency, submitted_id):
        result = FormLifecycleManager(db).get_form(agency, FormType.PAYMENT_REGISTER.value, submitted_id)

        assert result.error == ErrorKind.NOT_FOUND

    def test_get_form_reports_not_editable(self, db, agency, submitted_id):
        result = FormLifecycleManager(db).get_form(agency, VISITS, submitted_id)

        assert result.success
        assert result.data["form"]["editable"] is False


# =============================================================================
# TEST: DELETE
# =============================================================================

class TestDeleteForm:

    def test_delete_draft(self, db, agency):
        manager = FormLifecycleManager(db)
        form_id = manager.save(agency, VISITS, VISIT_PAYLOAD, SubmissionStatus.DRAFT).data["form_id"]

        result = manager.delete(agency, VISITS, form_id)

        assert result.success
        assert manager.get_form(agency, VISITS, form_id).error == ErrorKind.NOT_FOUND

    def test_delete_other_owners_draft(self, db, agency, other_agency):
        manager = FormLifecycleManager(db)
        form_id = manager.save(agency, VISITS, VISIT_PAYLOAD, SubmissionStatus.DRAFT).data["form_id"]

        result = manager.delete(other_agency, VISITS, form_id)

        assert result.error == ErrorKind.NOT_FOUND


# =============================================================================
# TEST: QUERIES
# =============================================================================

class TestFormQueries:

    def test_list_submissions_only_own(self, db, agency, other_agency):
        manager = FormLifecycleManager(db)
        manager.save(agency, VISITS, VISIT_PAYLOAD, SubmissionStatus.DRAFT)
        manager.save(agency, FormType.PAYMENT_REGISTER.value, {"payments": [1]}, SubmissionStatus.SUBMITTED)
        manager.save(other_agency, VISITS, VISIT_PAYLOAD, SubmissionStatus.DRAFT)

        result = manager.list_submissions(agency)

        assert result.data["total"] == 2
        editable = {s["form_type"]: s["editable"] for s in result.data["submissions"]}
        assert editable == {VISITS: True, FormType.PAYMENT_REGISTER.value: False}

    def test_period_status(self, db, agency, admin):
        """Submitted, draft, not started and overdue forms for one period."""
        manager = FormLifecycleManager(db)
        manager.save(agency, VISITS, VISIT_PAYLOAD, SubmissionStatus.SUBMITTED, period_month=3, period_year=2026)
        manager.save(agency, FormType.PAYMENT_REGISTER.value, {"payments": []}, SubmissionStatus.DRAFT,
                     period_month=3, period_year=2026)

        before_deadline = manager.period_status(admin, agency.user_id, 3, 2026, now=datetime(2026, 3, 4, 12, 0))
        after_deadline = manager.period_status(admin, agency.user_id, 3, 2026, now=datetime(2026, 3, 6, 0, 0))

        before = {f["form_type"]: f["status"] for f in before_deadline.data["forms"]}
        after = {f["form_type"]: f["status"] for f in after_deadline.data["forms"]}
        assert before[VISITS] == "SUBMITTED"
        assert before[FormType.PAYMENT_REGISTER.value] == "DRAFT"
        assert before[FormType.MONTHLY_COMPLIANCE.value] == "NOT_STARTED"
        assert after[VISITS] == "SUBMITTED"
        assert after[FormType.PAYMENT_REGISTER.value] == "OVERDUE"
        assert after[FormType.MONTHLY_COMPLIANCE.value] == "OVERDUE"

    def test_period_status_admin_only(self, db, agency):
        result = FormLifecycleManager(db).period_status(agency, agency.user_id, 3, 2026)

        assert result.error == ErrorKind.FORBIDDEN
