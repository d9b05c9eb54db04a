"""
Form Registry

Closed catalogue of agency form types and the single persistence
delegate they all share. Every form type has its own field list but an
identical lifecycle, so the lifecycle manager only ever talks to the
FormRepository interface.
"""
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol
from uuid import uuid4

from sqlalchemy.orm import Session

from ...models.db_models import FormSubmissionDB, SubmissionStatus


class FormType(str, Enum):
    """Form type tags as they appear on the wire."""
    CODE_OF_CONDUCT = "codeOfConduct"
    DECLARATION_CUM_UNDERTAKING = "declarationCumUndertaking"
    AGENCY_VISITS = "agencyVisits"
    MONTHLY_COMPLIANCE = "monthlyCompliance"
    ASSET_MANAGEMENT = "assetManagement"
    TELEPHONE_DECLARATION = "telephoneDeclaration"
    MANPOWER_REGISTER = "manpowerRegister"
    PRODUCT_DECLARATION = "productDeclaration"
    PENALTY_MATRIX = "penaltyMatrix"
    TRAINING_TRACKER = "trainingTracker"
    PROACTIVE_ESCALATION = "proactiveEscalation"
    ESCALATION_DETAILS = "escalationDetails"
    PAYMENT_REGISTER = "paymentRegister"
    REPO_KIT_TRACKER = "repoKitTracker"
    NO_DUES_DECLARATION = "noDuesDeclaration"


# =============================================================================
# FORM CATALOGUE
# =============================================================================

FORM_CONFIG: Dict[FormType, Dict[str, Any]] = {
    FormType.CODE_OF_CONDUCT: {
        "title": "Code of Conduct",
        "category": "annual",
        "is_required": True,
        "deadline_day": 5,
        "required_fields": ["declarations"],
    },
    FormType.DECLARATION_CUM_UNDERTAKING: {
        "title": "Declaration Cum Undertaking",
        "category": "monthly",
        "is_required": True,
        "deadline_day": 5,
        "required_fields": ["collection_managers"],
    },
    FormType.AGENCY_VISITS: {
        "title": "Agency Visit Details",
        "category": "monthly",
        "is_required": True,
        "deadline_day": 5,
        "required_fields": ["visits"],
    },
    FormType.MONTHLY_COMPLIANCE: {
        "title": "Monthly Compliance Declaration",
        "category": "monthly",
        "is_required": True,
        "deadline_day": 5,
        "required_fields": ["responses"],
    },
    FormType.ASSET_MANAGEMENT: {
        "title": "Asset Management Declaration",
        "category": "monthly",
        "is_required": True,
        "deadline_day": 5,
        "required_fields": [],
    },
    FormType.TELEPHONE_DECLARATION: {
        "title": "Telephone Lines Declaration",
        "category": "monthly",
        "is_required": True,
        "deadline_day": 5,
        "required_fields": ["lines"],
    },
    FormType.MANPOWER_REGISTER: {
        "title": "Agency Manpower Register",
        "category": "monthly",
        "is_required": True,
        "deadline_day": 5,
        "required_fields": ["employees"],
    },
    FormType.PRODUCT_DECLARATION: {
        "title": "Declaration of Product",
        "category": "monthly",
        "is_required": True,
        "deadline_day": 5,
        "required_fields": ["products"],
    },
    FormType.PENALTY_MATRIX: {
        "title": "Agency Penalty Matrix",
        "category": "monthly",
        "is_required": False,
        "deadline_day": 5,
        "required_fields": ["rows"],
    },
    FormType.TRAINING_TRACKER: {
        "title": "Agency Training Tracker",
        "category": "monthly",
        "is_required": False,
        "deadline_day": 5,
        "required_fields": ["sessions"],
    },
    FormType.PROACTIVE_ESCALATION: {
        "title": "Proactive Escalation Management Tracker",
        "category": "monthly",
        "is_required": True,
        "deadline_day": 5,
        "required_fields": ["rows"],
    },
    FormType.ESCALATION_DETAILS: {
        "title": "Escalation Details",
        "category": "monthly",
        "is_required": False,
        "deadline_day": 5,
        "required_fields": ["rows"],
    },
    FormType.PAYMENT_REGISTER: {
        "title": "Payment Register",
        "category": "monthly",
        "is_required": True,
        "deadline_day": 5,
        "required_fields": ["payments"],
    },
    FormType.REPO_KIT_TRACKER: {
        "title": "Repo Kit Tracker",
        "category": "monthly",
        "is_required": False,
        "deadline_day": 5,
        "required_fields": ["kits"],
    },
    FormType.NO_DUES_DECLARATION: {
        "title": "No Dues Declaration",
        "category": "monthly",
        "is_required": False,
        "deadline_day": 5,
        "required_fields": ["details"],
    },
}


def resolve_form_type(tag: str) -> Optional[FormType]:
    """Map a wire tag to a FormType, or None if unknown."""
    try:
        return FormType(tag)
    except ValueError:
        return None


def form_title(form_type: FormType) -> str:
    return FORM_CONFIG[form_type]["title"]


def missing_fields(form_type: FormType, payload: Dict[str, Any]) -> List[str]:
    """Required fields that are absent or empty in the payload."""
    return [
        name for name in FORM_CONFIG[form_type]["required_fields"]
        if payload.get(name) in (None, "", [], {})
    ]


def period_deadline(form_type: FormType, month: int, year: int) -> datetime:
    """Last moment a form for the given period may still be submitted on time."""
    return datetime(year, month, FORM_CONFIG[form_type]["deadline_day"], 23, 59, 59)


# =============================================================================
# PERSISTENCE DELEGATE
# =============================================================================

class FormRepository(Protocol):
    """What the lifecycle manager needs from a form type's storage."""

    def load(self, form_id: str, owner_id: Optional[str] = None) -> Optional[FormSubmissionDB]:
        ...

    def create(
        self,
        owner_id: str,
        payload: Dict[str, Any],
        status: SubmissionStatus,
        period_month: Optional[int] = None,
        period_year: Optional[int] = None,
    ) -> FormSubmissionDB:
        ...

    def save(
        self,
        form: FormSubmissionDB,
        payload: Optional[Dict[str, Any]],
        status: SubmissionStatus,
        expected_status: SubmissionStatus,
    ) -> bool:
        ...

    def delete(self, form: FormSubmissionDB) -> bool:
        ...


class SubmissionTableRepository:
    """
    FormRepository backed by the shared form_submissions table.

    Status changes are conditional on the status the caller last saw, so
    two writers racing on the same form cannot both succeed.
    """

    def __init__(self, db_session: Session, form_type: FormType):
        self.db = db_session
        self.form_type = form_type

    def _query(self):
        return self.db.query(FormSubmissionDB).filter(FormSubmissionDB.form_type == self.form_type.value)

    def load(self, form_id: str, owner_id: Optional[str] = None) -> Optional[FormSubmissionDB]:
        query = self._query().filter(FormSubmissionDB.id == form_id)
        if owner_id is not None:
            query = query.filter(FormSubmissionDB.owner_id == owner_id)
        return query.first()

    def create(
        self,
        owner_id: str,
        payload: Dict[str, Any],
        status: SubmissionStatus,
        period_month: Optional[int] = None,
        period_year: Optional[int] = None,
    ) -> FormSubmissionDB:
        form = FormSubmissionDB(
            id=str(uuid4()),
            owner_id=owner_id,
            form_type=self.form_type.value,
            status=status,
            period_month=period_month,
            period_year=period_year,
            payload=payload,
        )
        self.db.add(form)
        self.db.flush()
        return form

    def save(
        self,
        form: FormSubmissionDB,
        payload: Optional[Dict[str, Any]],
        status: SubmissionStatus,
        expected_status: SubmissionStatus,
    ) -> bool:
        values = {"status": status, "updated_at": datetime.utcnow()}
        if payload is not None:
            values["payload"] = payload

        updated = self._query().filter(
            FormSubmissionDB.id == form.id,
            FormSubmissionDB.status == expected_status,
        ).update(values, synchronize_session=False)

        if updated:
            self.db.refresh(form)
        return updated == 1

    def delete(self, form: FormSubmissionDB) -> bool:
        deleted = self._query().filter(
            FormSubmissionDB.id == form.id,
            FormSubmissionDB.status == SubmissionStatus.DRAFT,
        ).delete(synchronize_session=False)
        return deleted == 1

    def list_for_owner(self, owner_id: str) -> List[FormSubmissionDB]:
        return self._query().filter(FormSubmissionDB.owner_id == owner_id).all()


def repository_for(db_session: Session, form_type: FormType) -> SubmissionTableRepository:
    """Persistence delegate for a form type."""
    return SubmissionTableRepository(db_session, form_type)
