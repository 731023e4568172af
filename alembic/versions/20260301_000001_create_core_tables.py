"""Create students, concession, transaction, check-in and merge tables

Revision ID: 20260301_000001
Revises:
Create Date: 2026-03-01

Students, packages and rates, concession blocks (with the remaining
quantity range check), transactions with refund history, check-ins,
portal users and persisted merge operations.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = "20260301_000001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

BLOCK_STATUS = sa.Enum("active", "expired", "depleted", name="block_status", create_constraint=True)
TRANSACTION_TYPE = sa.Enum(
    "concession-purchase", "concession-gift", "casual", "casual-student", "refund", "purchase",
    name="transaction_type",
    create_constraint=True,
)
REFUND_STATUS = sa.Enum("none", "partial", "full", name="refund_status", create_constraint=True)
REFUND_METHOD = sa.Enum("stripe", "manual", name="refund_method", create_constraint=True)
ENTRY_TYPE = sa.Enum("concession", "casual", "casual-student", "free", name="entry_type", create_constraint=True)
MERGE_STEP = sa.Enum(
    "pending", "repointed", "fields_applied", "deprecated_deleted", "accounts_cleaned", "completed",
    name="merge_step",
    create_constraint=True,
)


def upgrade() -> None:
    op.create_table(
        "students",
        sa.Column("id", sa.String(64), nullable=False),
        sa.Column("first_name", sa.String(100), nullable=False),
        sa.Column("last_name", sa.String(100), nullable=False),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("phone_number", sa.String(50), nullable=True),
        sa.Column("pronouns", sa.String(50), nullable=True),
        sa.Column("stripe_customer_id", sa.String(255), nullable=True),
        sa.Column("concession_balance", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("expired_concessions", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("deleted", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("deleted_at", sa.DateTime(), nullable=True),
        sa.Column("merged_into", sa.String(64), nullable=True),
        sa.Column("merged_from", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_students_email", "students", ["email"])
    op.create_index("ix_students_deleted", "students", ["deleted"])

    op.create_table(
        "concession_packages",
        sa.Column("id", sa.String(100), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("number_of_classes", sa.Integer(), nullable=False),
        sa.Column("price", sa.Numeric(10, 2), nullable=False),
        sa.Column("expiry_months", sa.Integer(), nullable=False, server_default="6"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("display_order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "casual_rates",
        sa.Column("id", sa.String(100), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("price", sa.Numeric(10, 2), nullable=False),
        sa.Column("is_student", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("display_order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "users",
        sa.Column("id", sa.String(128), nullable=False),
        sa.Column("student_id", sa.String(64), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("role", sa.String(50), nullable=False, server_default="student"),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["student_id"], ["students.id"], name="fk_users_student_id"),
        sa.UniqueConstraint("student_id", name="uq_users_student_id"),
    )
    op.create_index("ix_users_email", "users", ["email"])

    op.create_table(
        "concession_blocks",
        sa.Column("id", sa.String(191), nullable=False),
        sa.Column("student_id", sa.String(64), nullable=False),
        sa.Column("student_name", sa.String(255), nullable=True),
        sa.Column("package_id", sa.String(100), nullable=True),
        sa.Column("package_name", sa.String(255), nullable=True),
        sa.Column("original_quantity", sa.Integer(), nullable=False),
        sa.Column("remaining_quantity", sa.Integer(), nullable=False),
        sa.Column("purchase_date", sa.DateTime(), nullable=False),
        sa.Column("expiry_date", sa.DateTime(), nullable=True),
        sa.Column("status", BLOCK_STATUS, nullable=False),
        sa.Column("is_locked", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("locked_at", sa.DateTime(), nullable=True),
        sa.Column("locked_by", sa.String(255), nullable=True),
        sa.Column("unlocked_at", sa.DateTime(), nullable=True),
        sa.Column("unlocked_by", sa.String(255), nullable=True),
        sa.Column("lock_notes", sa.Text(), nullable=True),
        sa.Column("price", sa.Numeric(10, 2), nullable=False, server_default="0"),
        sa.Column("payment_method", sa.String(50), nullable=False),
        sa.Column("transaction_id", sa.String(191), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.Column("created_by", sa.String(255), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["student_id"], ["students.id"], name="fk_concession_blocks_student_id"),
        sa.CheckConstraint(
            "remaining_quantity >= 0 AND remaining_quantity <= original_quantity",
            name="ck_concession_blocks_remaining_range",
        ),
    )
    op.create_index("ix_concession_blocks_student_id", "concession_blocks", ["student_id"])
    op.create_index("ix_concession_blocks_purchase_date", "concession_blocks", ["purchase_date"])
    op.create_index("ix_concession_blocks_expiry_date", "concession_blocks", ["expiry_date"])
    op.create_index("ix_concession_blocks_status", "concession_blocks", ["status"])
    op.create_index("ix_concession_blocks_transaction_id", "concession_blocks", ["transaction_id"])

    op.create_table(
        "transactions",
        sa.Column("id", sa.String(191), nullable=False),
        sa.Column("student_id", sa.String(64), nullable=False),
        sa.Column("student_name", sa.String(255), nullable=True),
        sa.Column("type", TRANSACTION_TYPE, nullable=False),
        sa.Column("amount_paid", sa.Numeric(10, 2), nullable=False, server_default="0"),
        sa.Column("payment_method", sa.String(50), nullable=False),
        sa.Column("transaction_date", sa.DateTime(), nullable=False),
        sa.Column("package_id", sa.String(100), nullable=True),
        sa.Column("package_name", sa.String(255), nullable=True),
        sa.Column("number_of_classes", sa.Integer(), nullable=True),
        sa.Column("concession_block_id", sa.String(191), nullable=True),
        sa.Column("class_date", sa.DateTime(), nullable=True),
        sa.Column("original_class_date", sa.DateTime(), nullable=True),
        sa.Column("checkin_id", sa.String(191), nullable=True),
        sa.Column("used_for_checkin", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("payment_intent_id", sa.String(255), nullable=True),
        sa.Column("stripe_customer_id", sa.String(255), nullable=True),
        sa.Column("receipt_url", sa.String(500), nullable=True),
        sa.Column("reversed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("reversed_at", sa.DateTime(), nullable=True),
        sa.Column("deleted_block_data", sa.JSON(), nullable=True),
        sa.Column("refunded", REFUND_STATUS, nullable=False, server_default="none"),
        sa.Column("total_refunded", sa.Numeric(10, 2), nullable=False, server_default="0"),
        sa.Column("refund_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_refund_date", sa.DateTime(), nullable=True),
        sa.Column("parent_transaction_id", sa.String(191), nullable=True),
        sa.Column("amount_refunded", sa.Numeric(10, 2), nullable=True),
        sa.Column("original_amount", sa.Numeric(10, 2), nullable=True),
        sa.Column("refund_method", REFUND_METHOD, nullable=True),
        sa.Column("stripe_refund_id", sa.String(255), nullable=True),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("refunded_by", sa.String(255), nullable=True),
        sa.Column("remaining_refundable", sa.Numeric(10, 2), nullable=True),
        sa.Column("idempotency_key", sa.String(255), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.Column("created_by", sa.String(255), nullable=True),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["student_id"], ["students.id"], name="fk_transactions_student_id"),
        sa.ForeignKeyConstraint(
            ["parent_transaction_id"],
            ["transactions.id"],
            name="fk_transactions_parent_transaction_id",
        ),
        sa.UniqueConstraint("idempotency_key", name="uq_transactions_idempotency_key"),
    )
    op.create_index("ix_transactions_student_id", "transactions", ["student_id"])
    op.create_index("ix_transactions_type", "transactions", ["type"])
    op.create_index("ix_transactions_transaction_date", "transactions", ["transaction_date"])
    op.create_index("ix_transactions_class_date", "transactions", ["class_date"])
    op.create_index("ix_transactions_checkin_id", "transactions", ["checkin_id"])
    op.create_index("ix_transactions_reversed", "transactions", ["reversed"])
    op.create_index("ix_transactions_parent_transaction_id", "transactions", ["parent_transaction_id"])

    op.create_table(
        "refund_history_entries",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("transaction_id", sa.String(191), nullable=False),
        sa.Column("refund_transaction_id", sa.String(191), nullable=False),
        sa.Column("amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("date", sa.DateTime(), nullable=False),
        sa.Column("refunded_by", sa.String(255), nullable=True),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("reversed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("reversed_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(
            ["transaction_id"],
            ["transactions.id"],
            name="fk_refund_history_entries_transaction_id",
            ondelete="CASCADE",
        ),
        sa.UniqueConstraint("refund_transaction_id", name="uq_refund_history_entries_refund_transaction_id"),
    )
    op.create_index("ix_refund_history_entries_transaction_id", "refund_history_entries", ["transaction_id"])

    op.create_table(
        "checkins",
        sa.Column("id", sa.String(191), nullable=False),
        sa.Column("student_id", sa.String(64), nullable=False),
        sa.Column("student_name", sa.String(255), nullable=True),
        sa.Column("checkin_date", sa.DateTime(), nullable=False),
        sa.Column("entry_type", ENTRY_TYPE, nullable=False),
        sa.Column("payment_method", sa.String(50), nullable=True),
        sa.Column("free_entry_reason", sa.String(255), nullable=True),
        sa.Column("amount_paid", sa.Numeric(10, 2), nullable=False, server_default="0"),
        sa.Column("concession_block_id", sa.String(191), nullable=True),
        sa.Column("online_transaction_id", sa.String(191), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("reversed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("reversed_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.Column("created_by", sa.String(255), nullable=True),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["student_id"], ["students.id"], name="fk_checkins_student_id"),
    )
    op.create_index("ix_checkins_student_id", "checkins", ["student_id"])
    op.create_index("ix_checkins_checkin_date", "checkins", ["checkin_date"])

    op.create_table(
        "merge_operations",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("primary_id", sa.String(64), nullable=False),
        sa.Column("deprecated_id", sa.String(64), nullable=False),
        sa.Column("field_selections", sa.JSON(), nullable=False),
        sa.Column("current_step", MERGE_STEP, nullable=False),
        sa.Column("transactions_updated", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("checkins_updated", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("blocks_updated", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("performed_by", sa.String(255), nullable=True),
        sa.Column("started_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_merge_operations_primary_id", "merge_operations", ["primary_id"])
    op.create_index("ix_merge_operations_deprecated_id", "merge_operations", ["deprecated_id"])


def downgrade() -> None:
    op.drop_index("ix_merge_operations_deprecated_id", table_name="merge_operations")
    op.drop_index("ix_merge_operations_primary_id", table_name="merge_operations")
    op.drop_table("merge_operations")

    op.drop_index("ix_checkins_checkin_date", table_name="checkins")
    op.drop_index("ix_checkins_student_id", table_name="checkins")
    op.drop_table("checkins")

    op.drop_index("ix_refund_history_entries_transaction_id", table_name="refund_history_entries")
    op.drop_table("refund_history_entries")

    for index in (
        "ix_transactions_parent_transaction_id",
        "ix_transactions_reversed",
        "ix_transactions_checkin_id",
        "ix_transactions_class_date",
        "ix_transactions_transaction_date",
        "ix_transactions_type",
        "ix_transactions_student_id",
    ):
        op.drop_index(index, table_name="transactions")
    op.drop_table("transactions")

    for index in (
        "ix_concession_blocks_transaction_id",
        "ix_concession_blocks_status",
        "ix_concession_blocks_expiry_date",
        "ix_concession_blocks_purchase_date",
        "ix_concession_blocks_student_id",
    ):
        op.drop_index(index, table_name="concession_blocks")
    op.drop_table("concession_blocks")

    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")
    op.drop_table("casual_rates")
    op.drop_table("concession_packages")

    op.drop_index("ix_students_deleted", table_name="students")
    op.drop_index("ix_students_email", table_name="students")
    op.drop_table("students")
