"""pixels, users, and pixel change NOTIFY trigger

Learn: PostgreSQL LISTEN/NOTIFY is the change feed. The trigger fires
pg_notify('pixel_changes', ...) for every row touched on `pixels`.
NOTIFY is transactional: listeners only see it after COMMIT, so the
watcher can never broadcast a write that was rolled back.

Payload shape (mirrors a document-store change event):
  insert → {"operationType": "insert", "documentKey": {"_id": ...},
            "fullDocument": {"row": ..., "color": ..., "state": ...}}
  update → {"operationType": "update", "documentKey": {"_id": ...}}
  delete → {"operationType": "delete", "documentKey": {"_id": ...}}

Updates carry no post-image on purpose: the watcher re-reads the row.

Revision ID: 4c1e0d7a9b21
Revises:
Create Date: 2026-10-19 09:12:40.118204
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '4c1e0d7a9b21'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("email", sa.String(255), nullable=False, unique=True),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("password_hash", sa.String(255), nullable=True),
        sa.Column("point", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), server_default=sa.func.now()
        ),
    )

    op.create_table(
        "pixels",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("row", sa.Integer(), nullable=False),
        sa.Column("color", sa.String(7), nullable=False),
        sa.Column("state", sa.String(20), nullable=False),
        sa.Column(
            "owner_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("users.id"),
            nullable=True,
        ),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()
        ),
    )
    op.create_index("ix_pixels_row", "pixels", ["row"], unique=True)

    # ─── Pixel change trigger ────────────────────────────
    op.execute("""
        CREATE OR REPLACE FUNCTION notify_pixel_change()
        RETURNS TRIGGER AS $$
        BEGIN
            IF TG_OP = 'INSERT' THEN
                PERFORM pg_notify('pixel_changes', json_build_object(
                    'operationType', 'insert',
                    'documentKey', json_build_object('_id', NEW.id),
                    'fullDocument', json_build_object(
                        '_id', NEW.id,
                        'row', NEW.row,
                        'color', NEW.color,
                        'state', NEW.state
                    )
                )::text);
                RETURN NEW;
            ELSIF TG_OP = 'UPDATE' THEN
                PERFORM pg_notify('pixel_changes', json_build_object(
                    'operationType', 'update',
                    'documentKey', json_build_object('_id', NEW.id)
                )::text);
                RETURN NEW;
            ELSE
                PERFORM pg_notify('pixel_changes', json_build_object(
                    'operationType', lower(TG_OP),
                    'documentKey', json_build_object('_id', OLD.id)
                )::text);
                RETURN OLD;
            END IF;
        END;
        $$ LANGUAGE plpgsql;
    """)

    op.execute("""
        CREATE TRIGGER pixel_change_notify
            AFTER INSERT OR UPDATE OR DELETE ON pixels
            FOR EACH ROW
            EXECUTE FUNCTION notify_pixel_change();
    """)


def downgrade() -> None:
    op.execute("DROP TRIGGER IF EXISTS pixel_change_notify ON pixels;")
    op.execute("DROP FUNCTION IF EXISTS notify_pixel_change;")
    op.drop_index("ix_pixels_row", table_name="pixels")
    op.drop_table("pixels")
    op.drop_table("users")
