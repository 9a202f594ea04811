"""Initial schema: booking_pages, contacts, appointments, appointment_reminders.

Revision ID: 001_initial
Revises:
Create Date: 2026-10-18

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

_ACTIVE = sa.text("status IN ('scheduled', 'confirmed')")

_OVERLAP_EXCLUSION = (
    "ALTER TABLE appointments ADD CONSTRAINT ex_appointments_owner_active_overlap "
    "EXCLUDE USING gist (owner_id WITH =, tstzrange(start_time, end_time) WITH &&) "
    "WHERE (status IN ('scheduled', 'confirmed'))"
)
_OVERLAP_TRIGGER = (
    "CREATE TRIGGER trg_appointments_owner_active_overlap BEFORE INSERT ON appointments "
    "WHEN NEW.status IN ('scheduled', 'confirmed') AND EXISTS ("
    "SELECT 1 FROM appointments WHERE owner_id = NEW.owner_id "
    "AND status IN ('scheduled', 'confirmed') "
    "AND start_time < NEW.end_time AND end_time > NEW.start_time) "
    "BEGIN SELECT RAISE(ABORT, 'overlapping appointment'); END"
)


def upgrade() -> None:
    op.create_table(
        "booking_pages",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("owner_id", sa.Integer(), nullable=False),
        sa.Column("slug", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("host_name", sa.String(), nullable=True),
        sa.Column("host_email", sa.String(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("availability", sa.JSON(), nullable=False),
        sa.Column("settings", sa.JSON(), nullable=False),
        sa.Column("appointment_types", sa.JSON(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_booking_pages_owner_id"), "booking_pages", ["owner_id"], unique=False)
    op.create_index(op.f("ix_booking_pages_slug"), "booking_pages", ["slug"], unique=True)

    op.create_table(
        "contacts",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("owner_id", sa.Integer(), nullable=False),
        sa.Column("first_name", sa.String(), nullable=False),
        sa.Column("last_name", sa.String(), nullable=False),
        sa.Column("email", sa.String(), nullable=True),
        sa.Column("phone", sa.String(), nullable=True),
        sa.Column("source", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_contacts_owner_id"), "contacts", ["owner_id"], unique=False)
    op.create_index(op.f("ix_contacts_email"), "contacts", ["email"], unique=False)

    op.create_table(
        "appointments",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("owner_id", sa.Integer(), nullable=False),
        sa.Column("booking_page_id", sa.Integer(), nullable=True),
        sa.Column("appointment_type_id", sa.String(), nullable=True),
        sa.Column("contact_id", sa.Integer(), nullable=True),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("notes", sa.String(), nullable=True),
        sa.Column("start_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", sa.String(), nullable=False, server_default="scheduled"),
        sa.Column("location", sa.String(), nullable=True),
        sa.Column("video_link", sa.String(), nullable=True),
        sa.Column("phone_number", sa.String(), nullable=True),
        sa.Column("confirmation_code", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["booking_page_id"], ["booking_pages.id"]),
        sa.ForeignKeyConstraint(["contact_id"], ["contacts.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_appointments_owner_id"), "appointments", ["owner_id"], unique=False)
    op.create_index(op.f("ix_appointments_booking_page_id"), "appointments", ["booking_page_id"], unique=False)
    op.create_index(op.f("ix_appointments_contact_id"), "appointments", ["contact_id"], unique=False)
    op.create_index(op.f("ix_appointments_start_time"), "appointments", ["start_time"], unique=False)
    op.create_index(op.f("ix_appointments_status"), "appointments", ["status"], unique=False)
    op.create_index(
        op.f("ix_appointments_confirmation_code"), "appointments", ["confirmation_code"], unique=False
    )
    op.create_index(
        "uq_appointments_owner_active_start",
        "appointments",
        ["owner_id", "start_time"],
        unique=True,
        postgresql_where=_ACTIVE,
        sqlite_where=_ACTIVE,
    )
    dialect = op.get_bind().dialect.name
    if dialect == "postgresql":
        op.execute("CREATE EXTENSION IF NOT EXISTS btree_gist")
        op.execute(_OVERLAP_EXCLUSION)
    elif dialect == "sqlite":
        op.execute(_OVERLAP_TRIGGER)

    op.create_table(
        "appointment_reminders",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("appointment_id", sa.Integer(), nullable=False),
        sa.Column("type", sa.String(), nullable=False),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["appointment_id"], ["appointments.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("appointment_id", "type", name="uq_appointment_reminders_type"),
    )
    op.create_index(
        op.f("ix_appointment_reminders_appointment_id"), "appointment_reminders", ["appointment_id"], unique=False
    )


def downgrade() -> None:
    op.drop_index(op.f("ix_appointment_reminders_appointment_id"), table_name="appointment_reminders")
    op.drop_table("appointment_reminders")
    dialect = op.get_bind().dialect.name
    if dialect == "postgresql":
        op.execute("ALTER TABLE appointments DROP CONSTRAINT IF EXISTS ex_appointments_owner_active_overlap")
    elif dialect == "sqlite":
        op.execute("DROP TRIGGER IF EXISTS trg_appointments_owner_active_overlap")
    op.drop_index("uq_appointments_owner_active_start", table_name="appointments")
    op.drop_index(op.f("ix_appointments_confirmation_code"), table_name="appointments")
    op.drop_index(op.f("ix_appointments_status"), table_name="appointments")
    op.drop_index(op.f("ix_appointments_start_time"), table_name="appointments")
    op.drop_index(op.f("ix_appointments_contact_id"), table_name="appointments")
    op.drop_index(op.f("ix_appointments_booking_page_id"), table_name="appointments")
    op.drop_index(op.f("ix_appointments_owner_id"), table_name="appointments")
    op.drop_table("appointments")
    op.drop_index(op.f("ix_contacts_email"), table_name="contacts")
    op.drop_index(op.f("ix_contacts_owner_id"), table_name="contacts")
    op.drop_table("contacts")
    op.drop_index(op.f("ix_booking_pages_slug"), table_name="booking_pages")
    op.drop_index(op.f("ix_booking_pages_owner_id"), table_name="booking_pages")
    op.drop_table("booking_pages")
