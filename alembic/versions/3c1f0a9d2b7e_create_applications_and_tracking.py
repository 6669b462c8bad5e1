from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "3c1f0a9d2b7e"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "applications",
        sa.Column("app_id", sa.String(64), primary_key=True),
        sa.Column("api_key", sa.String(128), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("domain", sa.String(253), nullable=False),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_applications_api_key", "applications", ["api_key"], unique=True)

    op.create_table(
        "tracking",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("app_id", sa.String(64), nullable=False),
        sa.Column("session_id", sa.String(255), nullable=False, server_default=""),
        sa.Column("visitor_id", sa.String(255), nullable=False, server_default=""),
        sa.Column("page_url", sa.Text(), nullable=False, server_default=""),
        sa.Column("page_title", sa.Text(), nullable=False, server_default=""),
        sa.Column("referrer", sa.Text(), nullable=False, server_default=""),
        sa.Column("user_agent", sa.Text(), nullable=False, server_default=""),
        sa.Column("ip_address", sa.String(64), nullable=False, server_default=""),
        sa.Column("country", sa.String(64), nullable=False, server_default=""),
        sa.Column("region", sa.String(128), nullable=False, server_default=""),
        sa.Column("city", sa.String(128), nullable=False, server_default=""),
        sa.Column("device_type", sa.String(32), nullable=False, server_default=""),
        sa.Column("browser", sa.String(64), nullable=False, server_default=""),
        sa.Column("os", sa.String(64), nullable=False, server_default=""),
        sa.Column("language", sa.String(64), nullable=False, server_default=""),
        sa.Column("timezone", sa.String(64), nullable=False, server_default=""),
        sa.Column(
            "custom_parameters",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_tracking_app_id_timestamp", "tracking", ["app_id", "timestamp"])
    op.create_index("ix_tracking_session_id", "tracking", ["session_id"])


def downgrade():
    op.drop_index("ix_tracking_session_id", table_name="tracking")
    op.drop_index("ix_tracking_app_id_timestamp", table_name="tracking")
    op.drop_table("tracking")
    op.drop_index("ix_applications_api_key", table_name="applications")
    op.drop_table("applications")
