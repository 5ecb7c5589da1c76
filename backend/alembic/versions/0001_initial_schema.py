"""initial schema: users, vessels, testimonials, claims, billing history

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '0001_initial'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'vessels',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('imo', sa.String(20), nullable=True),
        sa.Column('vessel_manager_id', sa.String(36), nullable=True, comment='船舶管理アカウント (role=vessel)'),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_vessels_imo', 'vessels', ['imo'])

    op.create_table(
        'users',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('first_name', sa.String(100), nullable=True),
        sa.Column('last_name', sa.String(100), nullable=True),
        sa.Column('position', sa.String(100), nullable=True, comment='役職 (Master, Chief Officer 等)'),
        sa.Column('role', sa.Enum('crew', 'vessel', 'admin', name='user_role'), nullable=False),
        sa.Column('active_vessel_id', sa.String(36), nullable=True),
        sa.Column('stripe_customer_id', sa.String(255), nullable=True),
        sa.Column('stripe_subscription_id', sa.String(255), nullable=True),
        sa.Column('subscription_tier', sa.String(50), nullable=False, server_default='free'),
        sa.Column('subscription_status', sa.Enum('active', 'inactive', name='subscription_status'),
                  nullable=False, server_default='inactive'),
        sa.Column('pending_subscription_tier', sa.String(50), nullable=True, comment='ダウングレード予定ティア'),
        sa.Column('pending_change_effective_at', sa.DateTime(), nullable=True, comment='ダウングレード適用予定日時'),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(['active_vessel_id'], ['vessels.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('stripe_customer_id'),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)
    op.create_index('ix_users_active_vessel_id', 'users', ['active_vessel_id'])

    op.create_table(
        'testimonials',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('user_id', sa.String(36), nullable=False),
        sa.Column('vessel_id', sa.String(36), nullable=True),
        sa.Column('start_date', sa.Date(), nullable=False),
        sa.Column('end_date', sa.Date(), nullable=False),
        sa.Column('total_days', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('at_sea_days', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('standby_days', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('yard_days', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('leave_days', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('status', sa.Enum('draft', 'pending_captain', 'approved', 'rejected', name='testimonial_status'),
                  nullable=False, server_default='draft'),
        sa.Column('signoff_token', sa.String(128), nullable=True),
        sa.Column('signoff_target_email', sa.String(255), nullable=True),
        sa.Column('signoff_token_expires_at', sa.DateTime(), nullable=True),
        sa.Column('signoff_used_at', sa.DateTime(), nullable=True, comment='最初の確定判断時に1度だけ設定'),
        sa.Column('captain_name', sa.String(255), nullable=True),
        sa.Column('captain_email', sa.String(255), nullable=True),
        sa.Column('captain_position', sa.String(100), nullable=True),
        sa.Column('captain_user_id', sa.String(36), nullable=True),
        sa.Column('testimonial_code', sa.String(20), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['vessel_id'], ['vessels.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['captain_user_id'], ['users.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('signoff_token'),
        sa.UniqueConstraint('testimonial_code'),
    )
    op.create_index('ix_testimonials_user_id', 'testimonials', ['user_id'])
    op.create_index('ix_testimonials_vessel_id', 'testimonials', ['vessel_id'])

    # 承認済みスナップショット (testimonial_id UNIQUE で1件に限定)
    op.create_table(
        'approved_testimonials',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('testimonial_id', sa.String(36), nullable=False),
        sa.Column('crew_name', sa.String(255), nullable=False),
        sa.Column('rank', sa.String(100), nullable=False),
        sa.Column('vessel_name', sa.String(255), nullable=False),
        sa.Column('imo', sa.String(20), nullable=True),
        sa.Column('start_date', sa.Date(), nullable=False),
        sa.Column('end_date', sa.Date(), nullable=False),
        sa.Column('total_days', sa.Integer(), nullable=False),
        sa.Column('sea_days', sa.Integer(), nullable=False),
        sa.Column('standby_days', sa.Integer(), nullable=False),
        sa.Column('captain_name', sa.String(255), nullable=False),
        sa.Column('captain_license', sa.String(100), nullable=True),
        sa.Column('document_id', sa.String(36), nullable=False),
        sa.Column('testimonial_code', sa.String(20), nullable=True),
        sa.Column('approved_at', sa.DateTime(), nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(['testimonial_id'], ['testimonials.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_approved_testimonials_testimonial_id', 'approved_testimonials', ['testimonial_id'], unique=True)
    op.create_index('ix_approved_testimonials_testimonial_code', 'approved_testimonials', ['testimonial_code'])

    op.create_table(
        'vessel_claim_requests',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('vessel_id', sa.String(36), nullable=False),
        sa.Column('requested_by', sa.String(36), nullable=False),
        sa.Column('requested_role', sa.String(50), nullable=False, server_default='captain'),
        sa.Column('status', sa.Enum('pending', 'vessel_approved', 'admin_approved', 'approved', 'rejected',
                                    name='vessel_claim_status'),
                  nullable=False, server_default='pending'),
        sa.Column('vessel_approved_by', sa.String(36), nullable=True),
        sa.Column('vessel_approved_at', sa.DateTime(), nullable=True),
        sa.Column('admin_approved_by', sa.String(36), nullable=True),
        sa.Column('admin_approved_at', sa.DateTime(), nullable=True),
        sa.Column('review_notes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(['vessel_id'], ['vessels.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['requested_by'], ['users.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['vessel_approved_by'], ['users.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['admin_approved_by'], ['users.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_vessel_claim_requests_vessel_id', 'vessel_claim_requests', ['vessel_id'])
    op.create_index('ix_vessel_claim_requests_requested_by', 'vessel_claim_requests', ['requested_by'])
    op.create_index('ix_vessel_claim_requests_status', 'vessel_claim_requests', ['status'])

    op.create_table(
        'vessel_assignments',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('user_id', sa.String(36), nullable=False),
        sa.Column('vessel_id', sa.String(36), nullable=False),
        sa.Column('start_date', sa.Date(), nullable=False),
        sa.Column('end_date', sa.Date(), nullable=True, comment='NULLなら現在乗船中'),
        sa.Column('position', sa.String(100), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['vessel_id'], ['vessels.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_vessel_assignments_user_id', 'vessel_assignments', ['user_id'])
    op.create_index('ix_vessel_assignments_vessel_id', 'vessel_assignments', ['vessel_id'])

    op.create_table(
        'vessel_signing_authorities',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('vessel_id', sa.String(36), nullable=False),
        sa.Column('captain_user_id', sa.String(36), nullable=False),
        sa.Column('start_date', sa.Date(), nullable=False),
        sa.Column('end_date', sa.Date(), nullable=True, comment='NULLなら現在有効'),
        sa.Column('is_primary', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(['vessel_id'], ['vessels.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['captain_user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_vessel_signing_authorities_vessel_id', 'vessel_signing_authorities', ['vessel_id'])
    op.create_index('ix_vessel_signing_authorities_captain_user_id', 'vessel_signing_authorities', ['captain_user_id'])

    # subscription_plan_changes テーブル (プラン変更履歴)
    op.create_table(
        'subscription_plan_changes',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('user_id', sa.String(36), nullable=True),
        sa.Column('stripe_subscription_id', sa.String(255), nullable=False),
        sa.Column('old_price_id', sa.String(255), nullable=True),
        sa.Column('new_price_id', sa.String(255), nullable=False),
        sa.Column('old_tier', sa.String(50), nullable=True),
        sa.Column('new_tier', sa.String(50), nullable=True),
        sa.Column('change_type', sa.String(20), nullable=False, comment='upgrade / downgrade'),
        sa.Column('effective_at', sa.DateTime(), nullable=True, comment='変更適用予定日時 (NULLなら即時適用済み)'),
        sa.Column('applied', sa.Boolean(), nullable=False, server_default=sa.false(), comment='適用済み (取消含む)'),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_subscription_plan_changes_user_id', 'subscription_plan_changes', ['user_id'])
    op.create_index('ix_subscription_plan_changes_stripe_subscription_id', 'subscription_plan_changes', ['stripe_subscription_id'])

    # processed_stripe_events テーブル (webhook冪等性)
    op.create_table(
        'processed_stripe_events',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('event_id', sa.String(255), nullable=False),
        sa.Column('event_type', sa.String(100), nullable=False),
        sa.Column('processed_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_processed_stripe_events_event_id', 'processed_stripe_events', ['event_id'], unique=True)


def downgrade() -> None:
    op.drop_table('processed_stripe_events')
    op.drop_table('subscription_plan_changes')
    op.drop_table('vessel_signing_authorities')
    op.drop_table('vessel_assignments')
    op.drop_table('vessel_claim_requests')
    op.drop_table('approved_testimonials')
    op.drop_table('testimonials')
    op.drop_table('users')
    op.drop_table('vessels')
    sa.Enum(name='vessel_claim_status').drop(op.get_bind(), checkfirst=True)
    sa.Enum(name='testimonial_status').drop(op.get_bind(), checkfirst=True)
    sa.Enum(name='subscription_status').drop(op.get_bind(), checkfirst=True)
    sa.Enum(name='user_role').drop(op.get_bind(), checkfirst=True)
