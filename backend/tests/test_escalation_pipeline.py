"""
Tests for the Audit -> Observation -> ShowCauseNotice -> Response pipeline.

Test Coverage:
1. Firm assignments gate audit creation
2. Observation numbering and completed-audit guard
3. Single and bulk issuance (savepoint per agency)
4. Agency responses: accept, dispute, duplicate, after deadline
5. Notice status derivation and explicit closure
6. Comment threads between admin and agency
"""
from datetime import date, timedelta

from compliance.models.db_models import (
    ActivityAction, ActivityLogDB, AgencyAssignmentDB, NotificationDB, NotificationType,
    ObservationDB, ObservationSeverity, ObservationStatus, ShowCauseNoticeDB,
    ShowCauseStatus, UserRole,
)
from compliance.models.results import ErrorKind
from compliance.services.escalation import AuditService, NoticeService

from conftest import assign, make_user


def _observation(db, observation_id):
    return db.query(ObservationDB).filter(ObservationDB.id == observation_id).one()


def _notice(db, notice_id):
    return db.query(ShowCauseNoticeDB).filter(ShowCauseNoticeDB.id == notice_id).one()


# =============================================================================
# TEST: ASSIGNMENTS AND AUDITS
# =============================================================================

class TestAuditCreation:

    def test_unassigned_firm_is_forbidden(self, db, auditor, agency):
        result = AuditService(db).create_audit(auditor, agency.user_id, date(2026, 3, 2))

        assert result.error == ErrorKind.FORBIDDEN

    def test_inactive_assignment_is_forbidden(self, db, auditor, agency, firm_id):
        assign(db, agency.user_id, firm_id, active=False)

        result = AuditService(db).create_audit(auditor, agency.user_id, date(2026, 3, 2))

        assert result.error == ErrorKind.FORBIDDEN

    def test_admin_cannot_create_audit(self, db, admin, agency, assigned):
        result = AuditService(db).create_audit(admin, agency.user_id, date(2026, 3, 2))

        assert result.error == ErrorKind.FORBIDDEN

    def test_duplicate_observation_number(self, db, auditor, agency, assigned):
        service = AuditService(db)
        audit_id = service.create_audit(auditor, agency.user_id, date(2026, 3, 2)).data["audit_id"]

        first = service.add_observation(auditor, audit_id, "OBS-1", ObservationSeverity.LOW, "Missing ID cards")
        second = service.add_observation(auditor, audit_id, "OBS-1", ObservationSeverity.HIGH, "Abusive call")

        assert first.success
        assert second.error == ErrorKind.CONFLICT
        assert second.message == "Observation number already exists for this audit."

    def test_completed_audit_rejects_observations(self, db, auditor, agency, assigned):
        service = AuditService(db)
        audit_id = service.create_audit(auditor, agency.user_id, date(2026, 3, 2)).data["audit_id"]

        assert service.complete_audit(auditor, audit_id).success
        assert service.complete_audit(auditor, audit_id).error == ErrorKind.CONFLICT

        result = service.add_observation(auditor, audit_id, "OBS-9", ObservationSeverity.LOW, "Late finding")
        assert result.error == ErrorKind.CONFLICT

    def test_new_observation_hidden_until_issued(self, db, agency, assigned, make_observation):
        observation = _observation(db, make_observation(agency))

        assert observation.status == ObservationStatus.PENDING_ADMIN_REVIEW
        assert observation.visible_to_agency is False

    def test_scorecard_upsert(self, db, admin, auditor, agency, assigned):
        service = AuditService(db)
        audit_id = service.create_audit(auditor, agency.user_id, date(2026, 3, 2)).data["audit_id"]

        first = service.save_scorecard(admin, audit_id, "Q1 2026", 72.5, "B")
        second = service.save_scorecard(admin, audit_id, "Q1 2026", 81.0, "A")

        assert first.data["scorecard_id"] == second.data["scorecard_id"]
        details = service.audit_details(admin, audit_id).data["audit"]
        assert details["scorecard"]["audit_grade"] == "A"

    def test_scorecard_score_range(self, db, admin, auditor, agency, assigned):
        service = AuditService(db)
        audit_id = service.create_audit(auditor, agency.user_id, date(2026, 3, 2)).data["audit_id"]

        assert service.save_scorecard(admin, audit_id, "Q1 2026", 120, "A").error == ErrorKind.VALIDATION


class TestFirmAssignments:

    def test_assign_and_unassign_in_one_call(self, db, super_admin, agency, other_agency, firm_id):
        assign(db, other_agency.user_id, firm_id)

        result = AuditService(db).update_firm_assignments(
            super_admin, firm_id, [agency.user_id], [other_agency.user_id],
        )

        assert result.data == {"firm_id": firm_id, "assigned": 1, "unassigned": 1}
        active = {
            a.agency_id for a in db.query(AgencyAssignmentDB).filter(
                AgencyAssignmentDB.firm_id == firm_id,
                AgencyAssignmentDB.is_active.is_(True),
            )
        }
        assert active == {agency.user_id}

    def test_reassign_reactivates(self, db, super_admin, agency, firm_id):
        assign(db, agency.user_id, firm_id, active=False)

        AuditService(db).update_firm_assignments(super_admin, firm_id, [agency.user_id], [])

        rows = db.query(AgencyAssignmentDB).filter(AgencyAssignmentDB.agency_id == agency.user_id).all()
        assert len(rows) == 1
        assert rows[0].is_active is True

    def test_overlap_is_validation(self, db, super_admin, agency, firm_id):
        result = AuditService(db).update_firm_assignments(
            super_admin, firm_id, [agency.user_id], [agency.user_id],
        )

        assert result.error == ErrorKind.VALIDATION

    def test_unknown_agency(self, db, super_admin, firm_id):
        result = AuditService(db).update_firm_assignments(super_admin, firm_id, ["no-such-agency"], [])

        assert result.error == ErrorKind.NOT_FOUND

    def test_admin_is_not_enough(self, db, admin, agency, firm_id):
        result = AuditService(db).assign_agency_to_firm(admin, agency.user_id, firm_id)

        assert result.error == ErrorKind.FORBIDDEN


# =============================================================================
# TEST: ISSUANCE
# =============================================================================

class TestIssuance:

    def test_issue_to_agency(self, db, agency, issued_observation, now):
        observation_id, notice_id = issued_observation

        observation = _observation(db, observation_id)
        assert observation.status == ObservationStatus.SENT_TO_AGENCY
        assert observation.show_cause_notice_id == notice_id
        assert observation.visible_to_agency is True
        assert observation.response_deadline == now + timedelta(days=3)

        notice = _notice(db, notice_id)
        assert notice.status == ShowCauseStatus.ISSUED
        assert notice.received_by_agency_id == agency.user_id
        assert notice.subject == "Show Cause Notice: Observation OBS-1"

    def test_agency_notified_of_notice(self, db, agency, issued_observation):
        count = db.query(NotificationDB).filter(
            NotificationDB.user_id == agency.user_id,
            NotificationDB.type == NotificationType.SHOW_CAUSE_ISSUED,
        ).count()

        assert count == 1

    def test_issue_twice_is_conflict(self, db, admin, issued_observation, now):
        observation_id, _ = issued_observation

        result = NoticeService(db).issue_to_agency(admin, observation_id, now=now)

        assert result.error == ErrorKind.CONFLICT

    def test_default_deadline_is_end_of_day(self, db, admin, agency, assigned, make_observation, now):
        observation_id = make_observation(agency)

        result = NoticeService(db).issue_to_agency(admin, observation_id, now=now)

        assert result.data["response_deadline"] == "2026-03-17T23:59:59"

    def test_notice_rejects_other_agencys_observation(self, db, admin, agency, other_agency, firm_id,
                                                      assigned, make_observation, now):
        assign(db, other_agency.user_id, firm_id)
        foreign = make_observation(other_agency)
        own = make_observation(agency, number="OBS-2")

        result = NoticeService(db).issue_notice(
            admin, agency.user_id, [own, foreign], "Conduct breaches", "Explain.", now + timedelta(days=7), now=now,
        )

        assert result.error == ErrorKind.CONFLICT
        assert result.message.startswith("Only 1 of 2 observations are valid")
        assert _observation(db, own).status == ObservationStatus.PENDING_ADMIN_REVIEW
        assert db.query(ShowCauseNoticeDB).count() == 0

    def test_due_date_must_be_in_future(self, db, admin, agency, assigned, make_observation, now):
        observation_id = make_observation(agency)

        result = NoticeService(db).issue_notice(
            admin, agency.user_id, [observation_id], "Subject", "Details", now - timedelta(hours=1), now=now,
        )

        assert result.error == ErrorKind.VALIDATION

    def test_bulk_issue_isolates_failures(self, db, admin, agency, other_agency, firm_id,
                                          assigned, make_observation, now):
        """Three agencies selected, one with nothing to send: two notices, one error."""
        assign(db, other_agency.user_id, firm_id)
        third = make_user(db, UserRole.USER, "Eastline Services")
        first_obs = make_observation(agency)
        second_obs = make_observation(other_agency, number="OBS-7")

        result = NoticeService(db).issue_bulk_notices(
            admin,
            [
                (agency.user_id, [first_obs]),
                (third.user_id, []),
                (other_agency.user_id, [second_obs]),
            ],
            "Quarterly audit findings",
            "Respond to each observation.",
            now + timedelta(days=7),
            now=now,
        )

        assert result.success
        assert result.data["summary"] == {"total": 3, "successful": 2, "failed": 1}
        assert [e["agency_id"] for e in result.data["errors"]] == [third.user_id]
        assert db.query(ShowCauseNoticeDB).count() == 2
        assert _observation(db, first_obs).status == ObservationStatus.SENT_TO_AGENCY
        assert _observation(db, second_obs).status == ObservationStatus.SENT_TO_AGENCY

    def test_bulk_rolls_back_only_failed_agency(self, db, admin, agency, other_agency, firm_id,
                                                assigned, make_observation, now):
        """An invalid observation undoes its own agency's notice and nothing else."""
        assign(db, other_agency.user_id, firm_id)
        good = make_observation(agency)
        foreign = make_observation(other_agency, number="OBS-3")

        result = NoticeService(db).issue_bulk_notices(
            admin,
            [(agency.user_id, [good]), (other_agency.user_id, [foreign, good])],
            "Findings", "Respond.", now + timedelta(days=7), now=now,
        )

        assert result.data["summary"]["successful"] == 1
        assert result.data["errors"][0]["error"] == ErrorKind.CONFLICT.value
        assert _observation(db, foreign).status == ObservationStatus.PENDING_ADMIN_REVIEW
        assert db.query(ShowCauseNoticeDB).count() == 1

    def test_pending_observations_grouped_by_agency(self, db, admin, agency, assigned, make_observation):
        make_observation(agency, number="OBS-1", severity=ObservationSeverity.CRITICAL)
        make_observation(agency, number="OBS-2", severity=ObservationSeverity.LOW)

        result = AuditService(db).agencies_with_pending_observations(admin)

        assert result.data["total"] == 1
        entry = result.data["agencies"][0]
        assert entry["agency_name"] == "Northwind Collections"
        assert entry["observation_count"] == 2
        assert entry["high_severity_count"] == 1


# =============================================================================
# TEST: AGENCY RESPONSE
# =============================================================================

class TestRespond:

    def test_accept_flips_notice_to_responded(self, db, agency, admin, issued_observation, now):
        observation_id, notice_id = issued_observation

        result = NoticeService(db).respond(agency, observation_id, accepted=True, now=now)

        assert result.success
        assert result.data["status"] == "AGENCY_ACCEPTED"
        assert result.data["notice_status"] == "RESPONDED"
        observation = _observation(db, observation_id)
        assert observation.agency_accepted is True
        assert observation.agency_response is None
        assert _notice(db, notice_id).status == ShowCauseStatus.RESPONDED

        logged = db.query(ActivityLogDB).filter(ActivityLogDB.action == ActivityAction.SHOW_CAUSE_RESPONDED).count()
        assert logged == 1

    def test_admins_notified_of_response(self, db, agency, admin, issued_observation, now):
        observation_id, _ = issued_observation

        NoticeService(db).respond(agency, observation_id, accepted=True, now=now)

        count = db.query(NotificationDB).filter(
            NotificationDB.user_id == admin.user_id,
            NotificationDB.type == NotificationType.SHOW_CAUSE_RESPONDED,
        ).count()
        assert count == 1

    def test_second_response_is_conflict(self, db, agency, issued_observation, now):
        observation_id, _ = issued_observation
        service = NoticeService(db)

        service.respond(agency, observation_id, accepted=True, now=now)
        result = service.respond(agency, observation_id, accepted=False, justification="Changed our mind", now=now)

        assert result.error == ErrorKind.CONFLICT
        assert _observation(db, observation_id).status == ObservationStatus.AGENCY_ACCEPTED

    def test_response_after_deadline_is_conflict(self, db, agency, issued_observation, now):
        observation_id, _ = issued_observation

        result = NoticeService(db).respond(agency, observation_id, accepted=True, now=now + timedelta(days=4))

        assert result.error == ErrorKind.CONFLICT
        assert result.message == "The response deadline has passed."
        assert _observation(db, observation_id).status == ObservationStatus.SENT_TO_AGENCY

    def test_dispute_needs_justification(self, db, agency, issued_observation, now):
        observation_id, _ = issued_observation

        result = NoticeService(db).respond(agency, observation_id, accepted=False, now=now)

        assert result.error == ErrorKind.VALIDATION

    def test_dispute_needs_evidence_when_required(self, db, admin, agency, assigned, make_observation, now):
        observation_id = make_observation(agency, evidence_required=True)
        service = NoticeService(db)
        service.issue_to_agency(admin, observation_id, response_deadline=now + timedelta(days=3), now=now)

        missing = service.respond(agency, observation_id, accepted=False, justification="Calls were logged", now=now)
        with_evidence = service.respond(
            agency, observation_id, accepted=False, justification="Calls were logged",
            evidence_path="uploads/call-log.csv", now=now,
        )

        assert missing.error == ErrorKind.VALIDATION
        assert with_evidence.success
        observation = _observation(db, observation_id)
        assert observation.status == ObservationStatus.AGENCY_DISPUTED
        assert observation.agency_response == "Calls were logged"
        assert observation.evidence_path == "uploads/call-log.csv"

    def test_other_agency_gets_not_found(self, db, other_agency, issued_observation, now):
        observation_id, _ = issued_observation

        result = NoticeService(db).respond(other_agency, observation_id, accepted=True, now=now)

        assert result.error == ErrorKind.NOT_FOUND

    def test_notice_waits_for_every_observation(self, db, admin, agency, assigned, make_observation, now):
        first = make_observation(agency, number="OBS-1")
        audit_id = _observation(db, first).audit_id
        second = make_observation(agency, number="OBS-2", audit_id=audit_id)
        service = NoticeService(db)
        notice_id = service.issue_notice(
            admin, agency.user_id, [first, second], "Findings", "Respond.", now + timedelta(days=5), now=now,
        ).data["notice_id"]

        partial = service.respond(agency, first, accepted=True, now=now)
        assert partial.data["notice_status"] == "ISSUED"

        complete = service.respond(agency, second, accepted=False, justification="Not our branch", now=now)
        assert complete.data["notice_status"] == "RESPONDED"
        assert _notice(db, notice_id).status == ShowCauseStatus.RESPONDED


# =============================================================================
# TEST: CLOSURE
# =============================================================================

class TestCloseNotice:

    def test_cannot_close_while_awaiting_agency(self, db, admin, issued_observation):
        _, notice_id = issued_observation

        result = NoticeService(db).close_notice(admin, notice_id, "Closing early")

        assert result.error == ErrorKind.CONFLICT

    def test_close_after_response(self, db, admin, agency, issued_observation, now):
        observation_id, notice_id = issued_observation
        service = NoticeService(db)
        service.respond(agency, observation_id, accepted=True, now=now)

        result = service.close_notice(admin, notice_id, "Accepted and remediated")

        assert result.success
        notice = _notice(db, notice_id)
        assert notice.status == ShowCauseStatus.CLOSED
        assert notice.admin_remarks == "Accepted and remediated"
        assert service.close_notice(admin, notice_id, "Again").error == ErrorKind.CONFLICT

    def test_remarks_required(self, db, admin, issued_observation):
        _, notice_id = issued_observation

        assert NoticeService(db).close_notice(admin, notice_id, "  ").error == ErrorKind.VALIDATION

    def test_notice_details_scoped_to_recipient(self, db, agency, other_agency, admin, issued_observation):
        _, notice_id = issued_observation
        service = NoticeService(db)

        assert service.notice_details(agency, notice_id).success
        assert service.notice_details(admin, notice_id).success
        assert service.notice_details(other_agency, notice_id).error == ErrorKind.NOT_FOUND


# =============================================================================
# TEST: OBSERVATION COMMENTS
# =============================================================================

class TestObservationComments:

    def test_thread_between_admin_and_agency(self, db, admin, agency, issued_observation):
        observation_id, _ = issued_observation
        service = NoticeService(db)

        asked = service.add_comment(admin, observation_id, "Please share the call recordings")
        answered = service.add_comment(
            agency, observation_id, "Recordings attached",
            attachment_path="uploads/calls.zip", attachment_name="calls.zip",
        )

        assert asked.success
        assert answered.data["comment"]["attachment_name"] == "calls.zip"
        thread = service.list_comments(agency, observation_id).data["comments"]
        assert [c["author_role"] for c in thread] == ["ADMIN", "USER"]
        assert thread[0]["message"] == "Please share the call recordings"

    def test_attachment_only_is_accepted(self, db, agency, issued_observation):
        observation_id, _ = issued_observation

        result = NoticeService(db).add_comment(agency, observation_id, "  ", attachment_path="uploads/log.pdf")

        assert result.success
        assert result.data["comment"]["message"] == ""

    def test_empty_comment_is_validation(self, db, agency, issued_observation):
        observation_id, _ = issued_observation

        result = NoticeService(db).add_comment(agency, observation_id, "   ")

        assert result.error == ErrorKind.VALIDATION

    def test_other_agency_not_found(self, db, other_agency, issued_observation):
        observation_id, _ = issued_observation
        service = NoticeService(db)

        assert service.add_comment(other_agency, observation_id, "Hello").error == ErrorKind.NOT_FOUND
        assert service.list_comments(other_agency, observation_id).error == ErrorKind.NOT_FOUND

    def test_agency_cannot_see_unsent_observation(self, db, admin, agency, assigned, make_observation):
        observation_id = make_observation(agency)
        service = NoticeService(db)

        assert service.list_comments(agency, observation_id).error == ErrorKind.NOT_FOUND
        assert service.add_comment(admin, observation_id, "Internal note").success
        assert db.query(NotificationDB).filter(NotificationDB.type == NotificationType.OBSERVATION_COMMENT).count() == 0

    def test_auditor_forbidden(self, db, auditor, issued_observation):
        observation_id, _ = issued_observation

        assert NoticeService(db).add_comment(auditor, observation_id, "Hi").error == ErrorKind.FORBIDDEN

    def test_counterpart_notified_and_logged(self, db, admin, agency, issued_observation):
        observation_id, _ = issued_observation

        NoticeService(db).add_comment(agency, observation_id, "We have fixed the dialer window")

        recipients = [
            n.user_id for n in db.query(NotificationDB).filter(
                NotificationDB.type == NotificationType.OBSERVATION_COMMENT,
            )
        ]
        assert recipients == [admin.user_id]
        entry = db.query(ActivityLogDB).filter(ActivityLogDB.action == ActivityAction.OBSERVATION_COMMENTED).one()
        assert entry.entity_id == observation_id
