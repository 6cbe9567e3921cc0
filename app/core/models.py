from __future__ import annotations

from datetime import date, datetime, timezone
from enum import Enum

from flask_login import UserMixin
from sqlalchemy import CheckConstraint, Enum as SAEnum, ForeignKey, Index, UniqueConstraint, text
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates
from werkzeug.security import generate_password_hash

from app.core.demo_people import generate_demo_names
from app.core.extensions import db


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes for values stored as UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class UserRole(str, Enum):
    STUDENT = "STUDENT"
    PROFESSOR = "PROFESSOR"
    COORDINATOR = "COORDINATOR"
    ADMINISTRATOR = "ADMINISTRATOR"


class PersonKind(str, Enum):
    STUDENT = "STUDENT"
    PROFESSOR = "PROFESSOR"


class AssignmentState(str, Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"


class LegalLevel(str, Enum):
    MATERIA = "MATERIA"
    CATEGORIA = "CATEGORIA"
    SUBCATEGORIA = "SUBCATEGORIA"
    AMBITO = "AMBITO"


LEGAL_LEVEL_PARENT: dict[LegalLevel, LegalLevel | None] = {
    LegalLevel.MATERIA: None,
    LegalLevel.CATEGORIA: LegalLevel.MATERIA,
    LegalLevel.SUBCATEGORIA: LegalLevel.CATEGORIA,
    LegalLevel.AMBITO: LegalLevel.SUBCATEGORIA,
}


class AuditEntity(str, Enum):
    USER = "USER"
    APPLICANT = "APPLICANT"
    CASE = "CASE"
    ACTION = "ACTION"
    APPOINTMENT = "APPOINTMENT"
    SUPPORT = "SUPPORT"
    BENEFICIARY = "BENEFICIARY"
    ASSIGNMENT = "ASSIGNMENT"


class User(UserMixin, db.Model):
    __tablename__ = "user_account"

    id: Mapped[int] = mapped_column(primary_key=True)
    national_id: Mapped[str] = mapped_column(db.String(20), unique=True, nullable=False)
    email: Mapped[str] = mapped_column(db.String(255), unique=True, nullable=False)
    full_name: Mapped[str] = mapped_column(db.String(120), nullable=False)
    password_hash: Mapped[str] = mapped_column(db.String(255), nullable=False)
    role: Mapped[UserRole] = mapped_column(SAEnum(UserRole, name="user_role"), nullable=False)
    phone: Mapped[str] = mapped_column(db.String(30), nullable=False, default="")
    is_active: Mapped[bool] = mapped_column(default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)


class Term(db.Model):
    # Semestre academico; acota las asignaciones
    __tablename__ = "term"
    __table_args__ = (CheckConstraint("ends_on >= starts_on", name="ck_term_dates"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    code: Mapped[str] = mapped_column(db.String(10), unique=True, nullable=False)
    starts_on: Mapped[date] = mapped_column(nullable=False)
    ends_on: Mapped[date] = mapped_column(nullable=False)


class CaseStatus(db.Model):
    __tablename__ = "case_status"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(db.String(40), unique=True, nullable=False)
    # Archivado is the only catalog entry outside the stalled-case scan.
    is_active: Mapped[bool] = mapped_column(nullable=False, default=True)


class LegalCategory(db.Model):
    # materia -> categoria -> subcategoria -> ambito legal
    __tablename__ = "legal_category"
    __table_args__ = (UniqueConstraint("parent_id", "name", name="uq_legal_category_parent_name"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    parent_id: Mapped[int | None] = mapped_column(ForeignKey("legal_category.id"), nullable=True)
    level: Mapped[LegalLevel] = mapped_column(SAEnum(LegalLevel, name="legal_level"), nullable=False)
    name: Mapped[str] = mapped_column(db.String(120), nullable=False)

    parent = relationship("LegalCategory", remote_side=[id], uselist=False)

    @property
    def path_label(self) -> str:
        names = []
        node: LegalCategory | None = self
        while node is not None:
            names.append(node.name)
            node = node.parent
        return " / ".join(reversed(names))


class Office(db.Model):
    # Nucleo de la clinica
    __tablename__ = "office"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(db.String(120), unique=True, nullable=False)


class ProcedureType(db.Model):
    # Tramite
    __tablename__ = "procedure_type"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(db.String(120), unique=True, nullable=False)


class Applicant(db.Model):
    # Solicitante
    __tablename__ = "applicant"

    id: Mapped[int] = mapped_column(primary_key=True)
    national_id: Mapped[str] = mapped_column(db.String(20), unique=True, nullable=False)
    first_name: Mapped[str] = mapped_column(db.String(120), nullable=False)
    last_name: Mapped[str] = mapped_column(db.String(120), nullable=False)
    phone: Mapped[str | None] = mapped_column(db.String(30), nullable=True)
    email: Mapped[str | None] = mapped_column(db.String(255), nullable=True)
    address: Mapped[str | None] = mapped_column(db.String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class Case(db.Model):
    # id is the case number; cases are archived through their status, never deleted
    __tablename__ = "legal_case"

    id: Mapped[int] = mapped_column(primary_key=True)
    applicant_id: Mapped[int] = mapped_column(ForeignKey("applicant.id"), nullable=False, index=True)
    legal_scope_id: Mapped[int | None] = mapped_column(ForeignKey("legal_category.id"), nullable=True)
    office_id: Mapped[int | None] = mapped_column(ForeignKey("office.id"), nullable=True)
    procedure_type_id: Mapped[int | None] = mapped_column(ForeignKey("procedure_type.id"), nullable=True)
    summary: Mapped[str] = mapped_column(db.String(1000), nullable=False, default="")
    opened_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    applicant = relationship("Applicant")
    legal_scope = relationship("LegalCategory")
    office = relationship("Office")
    procedure_type = relationship("ProcedureType")
    status_entries = relationship("StatusEntry", back_populates="case", cascade="all, delete-orphan")
    assignments = relationship("Assignment", back_populates="case", cascade="all, delete-orphan")


class StatusEntry(db.Model):
    # Append-only: rows are never updated or deleted
    __tablename__ = "status_entry"
    __table_args__ = (Index("ix_status_entry_case_recorded", "case_id", "recorded_at", "id"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    case_id: Mapped[int] = mapped_column(ForeignKey("legal_case.id"), nullable=False)
    status_id: Mapped[int] = mapped_column(ForeignKey("case_status.id"), nullable=False)
    actor_id: Mapped[int | None] = mapped_column(ForeignKey("user_account.id"), nullable=True)
    actor_name: Mapped[str] = mapped_column(db.String(120), nullable=False)
    reason: Mapped[str] = mapped_column(db.String(500), nullable=False)
    recorded_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    case = relationship("Case", back_populates="status_entries")
    status = relationship("CaseStatus")


class Assignment(db.Model):
    __tablename__ = "assignment"
    __table_args__ = (
        Index(
            "ix_assignment_one_active",
            "case_id",
            "term_id",
            "person_kind",
            unique=True,
            sqlite_where=text("state = 'ACTIVE'"),
            postgresql_where=text("state = 'ACTIVE'"),
        ),
        Index("ix_assignment_case_person_state", "case_id", "person_id", "state"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    case_id: Mapped[int] = mapped_column(ForeignKey("legal_case.id"), nullable=False)
    term_id: Mapped[int] = mapped_column(ForeignKey("term.id"), nullable=False)
    person_id: Mapped[int] = mapped_column(ForeignKey("user_account.id"), nullable=False)
    person_kind: Mapped[PersonKind] = mapped_column(SAEnum(PersonKind, name="person_kind"), nullable=False)
    state: Mapped[AssignmentState] = mapped_column(
        SAEnum(AssignmentState, name="assignment_state"),
        nullable=False,
        default=AssignmentState.ACTIVE,
    )
    assigned_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    deactivated_at: Mapped[datetime | None] = mapped_column(nullable=True)

    case = relationship("Case", back_populates="assignments")
    term = relationship("Term")
    person = relationship("User")

    @property
    def is_active(self) -> bool:
        return self.state == AssignmentState.ACTIVE


class CaseAction(db.Model):
    __tablename__ = "case_action"

    id: Mapped[int] = mapped_column(primary_key=True)
    case_id: Mapped[int] = mapped_column(ForeignKey("legal_case.id"), nullable=False, index=True)
    title: Mapped[str] = mapped_column(db.String(120), nullable=False)
    notes: Mapped[str] = mapped_column(db.String(1000), nullable=False, default="")
    performed_on: Mapped[date | None] = mapped_column(nullable=True)
    created_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("user_account.id"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)


class Appointment(db.Model):
    # Cita
    __tablename__ = "appointment"

    id: Mapped[int] = mapped_column(primary_key=True)
    case_id: Mapped[int] = mapped_column(ForeignKey("legal_case.id"), nullable=False, index=True)
    scheduled_for: Mapped[datetime] = mapped_column(nullable=False)
    notes: Mapped[str] = mapped_column(db.String(500), nullable=False, default="")


class SupportDocument(db.Model):
    # Soporte: only metadata is kept here, files live in external storage
    __tablename__ = "support_document"

    id: Mapped[int] = mapped_column(primary_key=True)
    case_id: Mapped[int] = mapped_column(ForeignKey("legal_case.id"), nullable=False, index=True)
    description: Mapped[str] = mapped_column(db.String(255), nullable=False)
    external_url: Mapped[str | None] = mapped_column(db.String(500), nullable=True)
    uploaded_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)


class Beneficiary(db.Model):
    __tablename__ = "beneficiary"
    __table_args__ = (UniqueConstraint("case_id", "national_id", name="uq_beneficiary_case_person"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    case_id: Mapped[int] = mapped_column(ForeignKey("legal_case.id"), nullable=False, index=True)
    national_id: Mapped[str] = mapped_column(db.String(20), nullable=False)
    full_name: Mapped[str] = mapped_column(db.String(120), nullable=False)
    relationship_to_applicant: Mapped[str | None] = mapped_column(db.String(60), nullable=True)


class AuditRecord(db.Model):
    # Weak reference to the described entity: no FK, rows outlive the entity
    __tablename__ = "audit_record"
    __table_args__ = (
        Index("ix_audit_record_entity", "entity_type", "entity_id"),
        Index("ix_audit_record_case", "case_id", "recorded_at"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    entity_type: Mapped[AuditEntity] = mapped_column(SAEnum(AuditEntity, name="audit_entity"), nullable=False)
    entity_id: Mapped[str] = mapped_column(db.String(40), nullable=False)
    case_id: Mapped[int | None] = mapped_column(nullable=True)
    field: Mapped[str] = mapped_column(db.String(60), nullable=False)
    old_value: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    new_value: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    responsible_id: Mapped[str] = mapped_column(db.String(20), nullable=False)
    responsible_name: Mapped[str] = mapped_column(db.String(120), nullable=False)
    recorded_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)


class Notification(db.Model):
    __tablename__ = "notification"

    id: Mapped[int] = mapped_column(primary_key=True)
    message: Mapped[str] = mapped_column(db.String(500), nullable=False)
    related_case_id: Mapped[int | None] = mapped_column(ForeignKey("legal_case.id"), nullable=True, index=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    recipients = relationship("NotificationRecipient", back_populates="notification", cascade="all, delete-orphan")


class NotificationRecipient(db.Model):
    __tablename__ = "notification_recipient"
    __table_args__ = (UniqueConstraint("notification_id", "user_id", name="uq_notification_recipient"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    notification_id: Mapped[int] = mapped_column(ForeignKey("notification.id"), nullable=False)
    user_id: Mapped[int] = mapped_column(ForeignKey("user_account.id"), nullable=False, index=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(nullable=True)

    notification = relationship("Notification", back_populates="recipients")
    user = relationship("User")


class StalledCaseFlag(db.Model):
    __tablename__ = "stalled_case_flag"
    __table_args__ = (
        UniqueConstraint(
            "case_id", "status_id", "threshold_days", "threshold_bucket", name="uq_stalled_case_flag_key"
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    case_id: Mapped[int] = mapped_column(ForeignKey("legal_case.id"), nullable=False)
    status_id: Mapped[int] = mapped_column(ForeignKey("case_status.id"), nullable=False)
    threshold_days: Mapped[int] = mapped_column(nullable=False)
    threshold_bucket: Mapped[int] = mapped_column(nullable=False)
    status_entry_id: Mapped[int] = mapped_column(ForeignKey("status_entry.id"), nullable=False)
    flagged_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    acknowledged_at: Mapped[datetime | None] = mapped_column(nullable=True)

    @validates("threshold_bucket")
    def _validate_bucket(self, _key, value: int) -> int:
        if value < 1:
            raise ValueError("El intervalo de alerta debe ser al menos 1")
        return value


DEFAULT_STATUS_CATALOG: tuple[tuple[str, bool], ...] = (
    ("En Proceso", True),
    ("Asesoría", True),
    ("Entregado", True),
    ("Archivado", False),
    ("Pausado", True),
)

DEMO_LEGAL_TREE: dict[str, dict[str, dict[str, list[str]]]] = {
    "Civil": {
        "Familia": {
            "Divorcio": ["Divorcio contencioso", "Divorcio 185-A"],
            "Obligación de manutención": ["Fijación", "Revisión"],
        },
        "Sucesiones": {"Declaración de únicos herederos": ["Herencia intestada"]},
    },
    "Laboral": {
        "Prestaciones sociales": {"Cálculo de prestaciones": ["Despido injustificado"]},
    },
}


def seed_demo_data(session) -> None:
    for name, is_active in DEFAULT_STATUS_CATALOG:
        session.add(CaseStatus(name=name, is_active=is_active))

    term_prev = Term(code="2024-2", starts_on=date(2024, 9, 16), ends_on=date(2025, 1, 31))
    term_now = Term(code="2025-1", starts_on=date(2025, 3, 3), ends_on=date(2025, 7, 18))
    session.add_all([term_prev, term_now])

    leaves: list[LegalCategory] = []
    for materia_name, categories in DEMO_LEGAL_TREE.items():
        materia = LegalCategory(level=LegalLevel.MATERIA, name=materia_name)
        session.add(materia)
        for category_name, subcategories in categories.items():
            category = LegalCategory(level=LegalLevel.CATEGORIA, name=category_name, parent=materia)
            session.add(category)
            for subcategory_name, scopes in subcategories.items():
                subcategory = LegalCategory(level=LegalLevel.SUBCATEGORIA, name=subcategory_name, parent=category)
                session.add(subcategory)
                for scope_name in scopes:
                    leaf = LegalCategory(level=LegalLevel.AMBITO, name=scope_name, parent=subcategory)
                    session.add(leaf)
                    leaves.append(leaf)

    office = Office(name="Núcleo Guayana")
    procedure = ProcedureType(name="Asesoría jurídica")
    session.add_all([office, procedure])

    admin = User(
        national_id="V-10000001",
        email="admin@clinica.local",
        full_name="Administrador Clínica",
        password_hash=generate_password_hash("admin123"),
        role=UserRole.ADMINISTRATOR,
    )
    coordinator = User(
        national_id="V-10000002",
        email="coordinador@clinica.local",
        full_name="Coordinación Clínica",
        password_hash=generate_password_hash("coord123"),
        role=UserRole.COORDINATOR,
    )
    professor = User(
        national_id="V-10000003",
        email="profesor@clinica.local",
        full_name="Profesor Supervisor",
        password_hash=generate_password_hash("profe123"),
        role=UserRole.PROFESSOR,
    )
    session.add_all([admin, coordinator, professor])

    students = []
    for idx, (first_name, last_name) in enumerate(generate_demo_names(3), start=1):
        students.append(
            User(
                national_id=f"V-2000000{idx}",
                email=f"alumno{idx}@clinica.local",
                full_name=f"{first_name} {last_name}",
                password_hash=generate_password_hash("alumno123"),
                role=UserRole.STUDENT,
            )
        )
    session.add_all(students)

    applicant_1 = Applicant(national_id="V-30000001", first_name="Carmen", last_name="Rondón", phone="0414-0000001")
    applicant_2 = Applicant(national_id="V-30000002", first_name="Luis", last_name="Guevara")
    session.add_all([applicant_1, applicant_2])
    session.flush()

    status_by_name = {s.name: s for s in session.query(CaseStatus).all()}

    case_1 = Case(
        applicant_id=applicant_1.id,
        legal_scope_id=leaves[0].id,
        office_id=office.id,
        procedure_type_id=procedure.id,
        summary="Caso demo de divorcio",
    )
    case_2 = Case(
        applicant_id=applicant_2.id,
        legal_scope_id=leaves[-1].id,
        office_id=office.id,
        procedure_type_id=procedure.id,
        summary="Caso demo laboral",
    )
    session.add_all([case_1, case_2])
    session.flush()

    session.add_all(
        [
            StatusEntry(
                case_id=case_1.id,
                status_id=status_by_name["En Proceso"].id,
                actor_id=coordinator.id,
                actor_name=coordinator.full_name,
                reason="Apertura del caso",
            ),
            StatusEntry(
                case_id=case_2.id,
                status_id=status_by_name["En Proceso"].id,
                actor_id=coordinator.id,
                actor_name=coordinator.full_name,
                reason="Apertura del caso",
            ),
            Assignment(
                case_id=case_1.id,
                term_id=term_now.id,
                person_id=students[0].id,
                person_kind=PersonKind.STUDENT,
            ),
            Assignment(
                case_id=case_1.id,
                term_id=term_now.id,
                person_id=professor.id,
                person_kind=PersonKind.PROFESSOR,
            ),
            CaseAction(
                case_id=case_1.id,
                title="Entrevista inicial",
                notes="Se recibe a la solicitante",
                created_by_user_id=students[0].id,
            ),
        ]
    )
    session.commit()
