"""users, subscriber ledger, ai usage meter, posts

Revision ID: 3c9e1f4a7b20
Revises:
Create Date: 2026-02-14 18:05:12.204113+00:00

"""

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "3c9e1f4a7b20"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Timestamps are UTC ISO-8601 text so comparisons behave the same on SQLite and Postgres
    op.create_table(
        "users",
        sa.Column("id", sa.Text(), primary_key=True),  # Supabase user_id
        sa.Column("handle", sa.Text(), nullable=False, unique=True),
        sa.Column("email", sa.Text(), nullable=False, unique=True),
        sa.Column("bio", sa.Text()),
        sa.Column("plan", sa.Text(), nullable=False, server_default="hobby"),  # hobby | pro
        sa.Column("plan_subscription_id", sa.Text()),  # Stripe sub backing the pro plan
        sa.Column("created_at", sa.Text(), nullable=False),
    )
    op.create_index("idx_users_plan_sub", "users", ["plan_subscription_id"])

    op.create_table(
        "subscribers",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("author_id", sa.Text(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("subscriber_user_id", sa.Text()),
        sa.Column("email", sa.Text(), nullable=False),  # trimmed + lowercased
        sa.Column(
            "status", sa.Text(), nullable=False, server_default="active"
        ),  # pending | active | past_due | unsubscribed
        sa.Column("stripe_subscription_id", sa.Text()),
        sa.Column("unsubscribe_token", sa.Text(), nullable=False, unique=True),
        sa.Column("created_at", sa.Text(), nullable=False),
    )
    # Both checkout writers converge on this key
    op.create_index(
        "uq_subscribers_author_email", "subscribers", ["author_id", "email"], unique=True
    )
    op.create_index("idx_subscribers_stripe_sub", "subscribers", ["stripe_subscription_id"])

    op.create_table(
        "ai_daily_usage",
        sa.Column("user_id", sa.Text(), nullable=False),
        sa.Column("usage_date", sa.Text(), nullable=False),  # UTC YYYY-MM-DD
        sa.Column("calls", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("updated_at", sa.Text(), nullable=False),
        sa.PrimaryKeyConstraint("user_id", "usage_date"),
    )

    op.create_table(
        "posts",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("author_id", sa.Text(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("slug", sa.Text(), nullable=False, unique=True),
        sa.Column("content", sa.Text()),
        sa.Column("vibe_theme", sa.Text(), server_default="default"),
        sa.Column("status", sa.Text(), nullable=False, server_default="draft"),
        sa.Column("is_paid", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("published_at", sa.Text()),
        sa.Column("created_at", sa.Text(), nullable=False),
    )
    op.create_index(
        "idx_posts_author_published", "posts", ["author_id", "status", "published_at"]
    )


def downgrade() -> None:
    op.drop_index("idx_posts_author_published", table_name="posts")
    op.drop_table("posts")
    op.drop_table("ai_daily_usage")
    op.drop_index("idx_subscribers_stripe_sub", table_name="subscribers")
    op.drop_index("uq_subscribers_author_email", table_name="subscribers")
    op.drop_table("subscribers")
    op.drop_index("idx_users_plan_sub", table_name="users")
    op.drop_table("users")
