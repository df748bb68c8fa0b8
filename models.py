from __future__ import annotations

from sqlalchemy import Boolean, CheckConstraint, Column, ForeignKey, Integer, String, Text, UniqueConstraint

from db import Base


class Office(Base):
    __tablename__ = "offices"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False)
    address = Column(Text, nullable=False, default="")
    status = Column(Boolean, nullable=False, default=True)
    created_at = Column(Text, nullable=False, default="")
    updated_at = Column(Text, nullable=False, default="")


class Team(Base):
    __tablename__ = "teams"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False, index=True)
    office_id = Column(Integer, ForeignKey("offices.id"), nullable=True)
    description = Column(Text, nullable=False, default="")
    status = Column(Boolean, nullable=False, default=True, index=True)
    created_at = Column(Text, nullable=False, default="")
    updated_at = Column(Text, nullable=False, default="")


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False, default="")
    email = Column(String, nullable=False, unique=True, index=True)
    password_hash = Column(Text, nullable=False, default="")
    role = Column(String, nullable=False, default="recruiter", index=True)
    status = Column(Boolean, nullable=False, default=True, index=True)
    phone = Column(String, nullable=False, default="")
    office_id = Column(Integer, ForeignKey("offices.id"), nullable=True)
    team_id = Column(Integer, ForeignKey("teams.id"), nullable=True)
    last_login_at = Column(Text, nullable=False, default="")
    created_at = Column(Text, nullable=False, default="")
    updated_at = Column(Text, nullable=False, default="")


class TeamMember(Base):
    __tablename__ = "team_members"
    __table_args__ = (UniqueConstraint("team_id", "user_id", name="uq_team_members_team_user"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    team_id = Column(Integer, ForeignKey("teams.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    role = Column(String, nullable=False, default="member")
    created_at = Column(Text, nullable=False, default="")


class Session(Base):
    __tablename__ = "sessions"

    sessionId = Column(String, primary_key=True)
    tokenHash = Column(String, nullable=False, unique=True, index=True)
    tokenPrefix = Column(String, nullable=False, default="")
    userId = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    email = Column(Text, nullable=False, default="")
    role = Column(String, nullable=False, default="")
    issuedAt = Column(Text, nullable=False, default="")
    expiresAt = Column(Text, nullable=False, default="")
    lastSeenAt = Column(Text, nullable=False, default="")
    revokedAt = Column(Text, nullable=False, default="")
    revokedBy = Column(String, nullable=False, default="")


class Organization(Base):
    __tablename__ = "organizations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False, index=True)
    nicknames = Column(String, nullable=True)
    parent_organization = Column(String, nullable=True)
    website = Column(String, nullable=True)
    status = Column(String, nullable=False, default="Active", index=True)
    contract_on_file = Column(String, nullable=False, default="No")
    contract_signed_by = Column(String, nullable=True)
    date_contract_signed = Column(String, nullable=True)
    year_founded = Column(String, nullable=True)
    overview = Column(Text, nullable=True)
    perm_fee = Column(String, nullable=True)
    num_employees = Column(Integer, nullable=True)
    num_offices = Column(Integer, nullable=True)
    contact_phone = Column(String, nullable=True)
    address = Column(Text, nullable=True)
    address2 = Column(String, nullable=True)
    city = Column(String, nullable=True)
    state = Column(String, nullable=True)
    zip_code = Column(String, nullable=True)
    custom_fields = Column(Text, nullable=False, default="{}")
    created_by = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    created_at = Column(Text, nullable=False, default="")
    updated_at = Column(Text, nullable=False, default="")
    archived_at = Column(Text, nullable=True)
    archive_reason = Column(String, nullable=True)


class OrganizationNote(Base):
    __tablename__ = "organization_notes"

    id = Column(Integer, primary_key=True, autoincrement=True)
    organization_id = Column(Integer, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True)
    text = Column(Text, nullable=False)
    created_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(Text, nullable=False, default="")


class OrganizationHistory(Base):
    __tablename__ = "organization_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    organization_id = Column(Integer, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True)
    action = Column(String, nullable=False)
    details = Column(Text, nullable=False, default="{}")
    performed_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    performed_at = Column(Text, nullable=False, default="")


class HiringManager(Base):
    __tablename__ = "hiring_managers"

    id = Column(Integer, primary_key=True, autoincrement=True)
    first_name = Column(String, nullable=False)
    last_name = Column(String, nullable=False)
    status = Column(String, nullable=False, default="Active", index=True)
    title = Column(String, nullable=True)
    email = Column(String, nullable=True)
    phone = Column(String, nullable=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=True, index=True)
    custom_fields = Column(Text, nullable=False, default="{}")
    created_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(Text, nullable=False, default="")
    updated_at = Column(Text, nullable=False, default="")
    archived_at = Column(Text, nullable=True)
    archive_reason = Column(String, nullable=True)


class HiringManagerNote(Base):
    __tablename__ = "hiring_manager_notes"

    id = Column(Integer, primary_key=True, autoincrement=True)
    hiring_manager_id = Column(Integer, ForeignKey("hiring_managers.id", ondelete="CASCADE"), nullable=False, index=True)
    text = Column(Text, nullable=False)
    action = Column(String, nullable=True)
    about_references = Column(Text, nullable=True)
    created_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(Text, nullable=False, default="")


class HiringManagerHistory(Base):
    __tablename__ = "hiring_manager_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    hiring_manager_id = Column(Integer, ForeignKey("hiring_managers.id", ondelete="CASCADE"), nullable=False, index=True)
    action = Column(String, nullable=False)
    details = Column(Text, nullable=False, default="{}")
    performed_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    performed_at = Column(Text, nullable=False, default="")


class Job(Base):
    __tablename__ = "jobs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    job_title = Column(String, nullable=False, default="")
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=True, index=True)
    # Free-text "Last, First" of the hiring manager, not a foreign key.
    hiring_manager = Column(String, nullable=True)
    status = Column(String, nullable=False, default="Open")
    created_at = Column(Text, nullable=False, default="")
    updated_at = Column(Text, nullable=False, default="")


class Document(Base):
    __tablename__ = "documents"

    id = Column(Integer, primary_key=True, autoincrement=True)
    entity_type = Column(String, nullable=False, index=True)
    entity_id = Column(Integer, nullable=False, index=True)
    document_name = Column(String, nullable=False)
    document_type = Column(String, nullable=False, default="General")
    content_type = Column(String, nullable=True)
    file_path = Column(Text, nullable=True)
    file_size = Column(Integer, nullable=True)
    created_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(Text, nullable=False, default="")
    updated_at = Column(Text, nullable=False, default="")


class Task(Base):
    __tablename__ = "tasks"

    id = Column(Integer, primary_key=True, autoincrement=True)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    is_completed = Column(Boolean, nullable=False, default=False, index=True)
    due_date = Column(String, nullable=True, index=True)
    due_time = Column(String, nullable=True)
    organization_id = Column(Integer, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=True, index=True)
    hiring_manager_id = Column(Integer, ForeignKey("hiring_managers.id"), nullable=True, index=True)
    job_id = Column(Integer, ForeignKey("jobs.id"), nullable=True)
    owner = Column(String, nullable=True)
    priority = Column(String, nullable=False, default="Medium")
    status = Column(String, nullable=False, default="Pending")
    created_by = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    assigned_to = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    completed_at = Column(Text, nullable=True)
    completed_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    reminder_minutes_before_due = Column(Integer, nullable=True)
    reminder_sent_at = Column(Text, nullable=True, index=True)
    custom_fields = Column(Text, nullable=False, default="{}")
    created_at = Column(Text, nullable=False, default="")
    updated_at = Column(Text, nullable=False, default="")


class TaskNote(Base):
    __tablename__ = "task_notes"

    id = Column(Integer, primary_key=True, autoincrement=True)
    task_id = Column(Integer, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    text = Column(Text, nullable=False)
    action = Column(String, nullable=True)
    about_references = Column(Text, nullable=True)
    created_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(Text, nullable=False, default="")


class TaskHistory(Base):
    __tablename__ = "task_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    task_id = Column(Integer, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    action = Column(String, nullable=False)
    details = Column(Text, nullable=False, default="{}")
    performed_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    performed_at = Column(Text, nullable=False, default="")


class HiringManagerTransfer(Base):
    __tablename__ = "hiring_manager_transfers"
    __table_args__ = (
        CheckConstraint(
            "source_hiring_manager_id <> target_hiring_manager_id",
            name="ck_hm_transfers_distinct",
        ),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    source_hiring_manager_id = Column(Integer, ForeignKey("hiring_managers.id", ondelete="CASCADE"), nullable=False, index=True)
    target_hiring_manager_id = Column(Integer, ForeignKey("hiring_managers.id", ondelete="CASCADE"), nullable=False, index=True)
    requested_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    requested_by_name = Column(String, nullable=False, default="")
    requested_by_email = Column(String, nullable=False, default="")
    source_record_number = Column(String, nullable=False, default="")
    target_record_number = Column(String, nullable=False, default="")
    status = Column(String, nullable=False, default="pending", index=True)
    denial_reason = Column(Text, nullable=True)
    approved_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    approved_at = Column(Text, nullable=True)
    created_at = Column(Text, nullable=False, default="")
    updated_at = Column(Text, nullable=False, default="")


class ScheduledTask(Base):
    __tablename__ = "scheduled_tasks"

    id = Column(Integer, primary_key=True, autoincrement=True)
    task_type = Column(String, nullable=False, index=True)
    task_data = Column(Text, nullable=False, default="{}")
    scheduled_for = Column(Text, nullable=False, index=True)
    status = Column(String, nullable=False, default="pending", index=True)
    completed_at = Column(Text, nullable=True)
    created_at = Column(Text, nullable=False, default="")


class EmailTemplate(Base):
    __tablename__ = "email_templates"

    id = Column(Integer, primary_key=True, autoincrement=True)
    template_name = Column(String, nullable=False)
    subject = Column(String, nullable=False)
    body = Column(Text, nullable=False)
    type = Column(String, nullable=False, unique=True, index=True)
    created_at = Column(Text, nullable=False, default="")
    updated_at = Column(Text, nullable=False, default="")


class AuditLog(Base):
    __tablename__ = "audit_log"

    logId = Column(String, primary_key=True)
    entityType = Column(String, nullable=False, default="", index=True)
    entityId = Column(String, nullable=False, default="", index=True)
    action = Column(String, nullable=False, default="", index=True)
    stageTag = Column(String, nullable=False, default="", index=True)
    remark = Column(Text, nullable=False, default="")
    actorUserId = Column(String, nullable=False, default="", index=True)
    actorRole = Column(String, nullable=False, default="", index=True)
    actorEmail = Column(Text, nullable=False, default="")
    at = Column(Text, nullable=False, default="", index=True)
    correlationId = Column(String, nullable=False, default="", index=True)
    metaJson = Column(Text, nullable=False, default="")
