import sqlalchemy as sa
from alembic import op

revision = "0001_initial"
down_revision = None


def _audit_meta_columns() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("created_by", sa.String(length=128), nullable=True),
        sa.Column("updated_by", sa.String(length=128), nullable=True),
    ]


def upgrade():
    op.create_table(
        "companies",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_audit_meta_columns(),
    )
    op.create_index("ix_companies_name", "companies", ["name"], unique=True)

    op.create_table(
        "users",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("external_id", sa.String(length=200), nullable=True),
        sa.Column("email", sa.String(length=320), nullable=True),
        sa.Column("display_name", sa.String(length=200), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_audit_meta_columns(),
    )
    op.create_index("ix_users_external_id", "users", ["external_id"], unique=True)
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "user_company_roles",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("company_id", sa.Uuid(), nullable=False),
        sa.Column("vessel_id", sa.Uuid(), nullable=True),
        sa.Column("role", sa.String(length=32), nullable=False),
        *_audit_meta_columns(),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["company_id"], ["companies.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("user_id", "company_id", "vessel_id", "role", name="uq_user_company_role"),
    )
    op.create_index("ix_user_company_roles_user_id", "user_company_roles", ["user_id"])
    op.create_index("ix_user_company_roles_company_id", "user_company_roles", ["company_id"])
    op.create_index("ix_user_company_roles_vessel_id", "user_company_roles", ["vessel_id"])
    op.create_index("ix_user_company_roles_role", "user_company_roles", ["role"])

    op.create_table(
        "audit_events",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("company_id", sa.Uuid(), nullable=False),
        sa.Column("actor_id", sa.String(length=200), nullable=False),
        sa.Column("actor_roles", sa.JSON(), nullable=False),
        sa.Column("action", sa.String(length=200), nullable=False),
        sa.Column("entity_type", sa.String(length=100), nullable=False),
        sa.Column("entity_id", sa.String(length=200), nullable=False),
        sa.Column("before", sa.JSON(), nullable=True),
        sa.Column("after", sa.JSON(), nullable=True),
        sa.Column("request_id", sa.String(length=64), nullable=False),
        *_audit_meta_columns(),
    )
    op.create_index("ix_audit_events_company_id", "audit_events", ["company_id"])
    op.create_index("ix_audit_events_actor_id", "audit_events", ["actor_id"])
    op.create_index("ix_audit_events_action", "audit_events", ["action"])
    op.create_index("ix_audit_events_request_id", "audit_events", ["request_id"])
    op.create_index("ix_audit_events_company_entity", "audit_events", ["company_id", "entity_type", "entity_id"])

    op.create_table(
        "alerts",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("company_id", sa.Uuid(), nullable=False),
        sa.Column("vessel_id", sa.Uuid(), nullable=True),
        sa.Column("alert_type", sa.String(length=64), nullable=False),
        sa.Column("severity", sa.Enum("RED", "ORANGE", "YELLOW", "GREEN", name="alert_severity_enum"), nullable=False),
        sa.Column("source_module", sa.String(length=64), nullable=True),
        sa.Column(
            "source_type",
            sa.Enum("system", "urgent", "assigned", name="alert_source_type_enum"),
            nullable=False,
            server_default="system",
        ),
        sa.Column("title", sa.String(length=300), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("related_entity_type", sa.String(length=64), nullable=True),
        sa.Column("related_entity_id", sa.String(length=200), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("owner_user_id", sa.String(length=200), nullable=True),
        sa.Column("owner_role", sa.String(length=32), nullable=True),
        sa.Column("assigned_to_user_id", sa.String(length=200), nullable=True),
        sa.Column("assigned_to_role", sa.String(length=32), nullable=True),
        sa.Column("parent_alert_id", sa.Uuid(), nullable=True),
        sa.Column("assignment_notes", sa.Text(), nullable=True),
        sa.Column(
            "assignment_priority",
            sa.Enum("urgent", "high", "normal", name="alert_assignment_priority_enum"),
            nullable=True,
        ),
        sa.Column(
            "status",
            sa.Enum(
                "OPEN",
                "ACKNOWLEDGED",
                "SNOOZED",
                "ESCALATED",
                "RESOLVED",
                "AUTO_DISMISSED",
                name="alert_status_enum",
            ),
            nullable=False,
            server_default="OPEN",
        ),
        sa.Column("due_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("acknowledged_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("acknowledged_by", sa.String(length=200), nullable=True),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("resolved_by", sa.String(length=200), nullable=True),
        sa.Column("snooze_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("snoozed_until", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_snooze_reason", sa.Text(), nullable=True),
        sa.Column("reopened_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("escalation_level", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("escalated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("escalated_to_user_ids", sa.JSON(), nullable=False),
        sa.Column("notified_level", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        *_audit_meta_columns(),
        sa.ForeignKeyConstraint(["parent_alert_id"], ["alerts.id"], ondelete="SET NULL"),
    )
    op.create_index("ix_alerts_company_id", "alerts", ["company_id"])
    op.create_index("ix_alerts_vessel_id", "alerts", ["vessel_id"])
    op.create_index("ix_alerts_alert_type", "alerts", ["alert_type"])
    op.create_index("ix_alerts_severity", "alerts", ["severity"])
    op.create_index("ix_alerts_status", "alerts", ["status"])
    op.create_index("ix_alerts_snoozed_until", "alerts", ["snoozed_until"])
    op.create_index("ix_alerts_owner_user_id", "alerts", ["owner_user_id"])
    op.create_index("ix_alerts_assigned_to_user_id", "alerts", ["assigned_to_user_id"])
    op.create_index("ix_alerts_parent_alert_id", "alerts", ["parent_alert_id"])
    op.create_index("ix_alerts_company_status", "alerts", ["company_id", "status"])
    op.create_index("ix_alerts_company_vessel", "alerts", ["company_id", "vessel_id"])


def downgrade():
    op.drop_table("alerts")
    op.drop_table("audit_events")
    op.drop_table("user_company_roles")
    op.drop_table("users")
    op.drop_table("companies")
    sa.Enum(name="alert_status_enum").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="alert_assignment_priority_enum").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="alert_source_type_enum").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="alert_severity_enum").drop(op.get_bind(), checkfirst=True)
