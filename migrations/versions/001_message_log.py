"""Create chats and messages tables for the conversation log.

Revision ID: 001_message_log
Revises:
Create Date: 2026-10-19
"""
from __future__ import annotations
from pathlib import Path
from alembic import op

revision = "001_message_log"
down_revision = None
branch_labels = None
depends_on = None

def upgrade() -> None:
    sql_path = Path(__file__).resolve().parents[1] / "sql" / "001_message_log.sql"
    sql = sql_path.read_text(encoding="utf-8")
    conn = op.get_bind()
    conn.exec_driver_sql(sql)

def downgrade() -> None:
    conn = op.get_bind()
    conn.exec_driver_sql("DROP TABLE IF EXISTS messages; DROP TABLE IF EXISTS chats;")
