"""Initial PT payroll schema

Revision ID: 3c7e51a0b9d2
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3c7e51a0b9d2'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        'users',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('email', sa.String(), nullable=False),
        sa.Column('hashed_password', sa.String(), nullable=True),
        sa.Column('full_name', sa.String(), nullable=True),
        sa.Column('role', sa.Enum('MASTER_ADMIN', 'ADMIN', 'COACH', 'MEMBER', name='role', native_enum=False), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_users_email'), 'users', ['email'], unique=True)

    op.create_table(
        'audit_logs',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('user_id', sa.Uuid(), nullable=True),
        sa.Column('action', sa.String(), nullable=False),
        sa.Column('target_id', sa.String(), nullable=True),
        sa.Column('timestamp', sa.DateTime(timezone=True), nullable=False),
        sa.Column('details', sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id')
    )

    op.create_table(
        'classes',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('lead_coach_id', sa.Uuid(), nullable=True),
        sa.Column('scheduled_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('duration_minutes', sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(['lead_coach_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_classes_lead_coach_id'), 'classes', ['lead_coach_id'], unique=False)
    op.create_index(op.f('ix_classes_scheduled_at'), 'classes', ['scheduled_at'], unique=False)

    op.create_table(
        'notifications',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('user_id', sa.Uuid(), nullable=False),
        sa.Column('title', sa.String(), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column(
            'notification_type',
            sa.Enum('BOOKING', 'REMINDER', 'ANNOUNCEMENT', 'LEAVE', 'PAYMENT', 'SYSTEM', 'PT_CANCELLED', name='notificationtype', native_enum=False),
            nullable=False,
        ),
        sa.Column('is_read', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_notifications_user_id'), 'notifications', ['user_id'], unique=False)
    op.create_index(op.f('ix_notifications_notification_type'), 'notifications', ['notification_type'], unique=False)

    op.create_table(
        'coach_profiles',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('user_id', sa.Uuid(), nullable=False),
        sa.Column('employment_type', sa.Enum('FULL_TIME', 'PART_TIME', name='employmenttype', native_enum=False), nullable=False),
        sa.Column('monthly_salary', sa.Float(), nullable=True),
        sa.Column('base_salary', sa.Float(), nullable=True),
        sa.Column('rate_per_class', sa.Float(), nullable=True),
        sa.Column('hourly_rate', sa.Float(), nullable=True),
        sa.Column('citizenship_status', sa.String(), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id')
    )

    op.create_table(
        'payslips',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('user_id', sa.Uuid(), nullable=False),
        sa.Column('month', sa.Integer(), nullable=False),
        sa.Column('year', sa.Integer(), nullable=False),
        sa.Column('employment_type', sa.Enum('FULL_TIME', 'PART_TIME', name='employmenttype', native_enum=False), nullable=False),
        sa.Column('base_salary', sa.Float(), nullable=True),
        sa.Column('class_earnings', sa.Float(), nullable=True),
        sa.Column('class_hours', sa.Float(), nullable=True),
        sa.Column('class_rate_per_hour', sa.Float(), nullable=True),
        sa.Column('pt_commission', sa.Float(), nullable=True),
        sa.Column('pt_session_count', sa.Integer(), nullable=True),
        sa.Column('pt_weekly_breakdown', sa.JSON(), nullable=True),
        sa.Column('bonus', sa.Float(), nullable=True),
        sa.Column('bonus_description', sa.String(), nullable=True),
        sa.Column('gross_pay', sa.Float(), nullable=True),
        sa.Column('cpf_contribution', sa.Float(), nullable=True),
        sa.Column('other_deductions', sa.Float(), nullable=True),
        sa.Column('deduction_details', sa.JSON(), nullable=True),
        sa.Column('total_deductions', sa.Float(), nullable=True),
        sa.Column('net_pay', sa.Float(), nullable=True),
        sa.Column('status', sa.Enum('PENDING', 'PAID', name='payslipstatus', native_enum=False), nullable=False),
        sa.Column('payment_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id', 'month', 'year', name='uq_payslip_user_month_year')
    )
    op.create_index(op.f('ix_payslips_user_id'), 'payslips', ['user_id'], unique=False)

    op.create_table(
        'pt_packages',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('user_id', sa.Uuid(), nullable=False),
        sa.Column('preferred_coach_id', sa.Uuid(), nullable=True),
        sa.Column('total_sessions', sa.Integer(), nullable=False),
        sa.Column('sessions_used', sa.Integer(), nullable=False),
        sa.Column('expiry_date', sa.Date(), nullable=True),
        sa.Column('status', sa.Enum('ACTIVE', 'COMPLETED', 'EXPIRED', name='packagestatus', native_enum=False), nullable=False),
        sa.ForeignKeyConstraint(['preferred_coach_id'], ['users.id']),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_pt_packages_user_id'), 'pt_packages', ['user_id'], unique=False)

    op.create_table(
        'pt_sessions',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('coach_id', sa.Uuid(), nullable=False),
        sa.Column('member_id', sa.Uuid(), nullable=False),
        sa.Column('scheduled_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('duration_minutes', sa.Integer(), nullable=False),
        sa.Column('status', sa.Enum('SCHEDULED', 'ATTENDED', 'COMPLETED', 'CANCELLED', name='ptsessionstatus', native_enum=False), nullable=False),
        sa.Column('session_type', sa.Enum('SOLO_PACKAGE', 'SOLO_SINGLE', 'BUDDY', 'HOUSE_CALL', name='ptsessiontype', native_enum=False), nullable=False),
        sa.Column('session_price', sa.Float(), nullable=True),
        sa.Column('commission_amount', sa.Float(), nullable=True),
        sa.Column('coach_verified', sa.Boolean(), nullable=False),
        sa.Column('verification_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('member_verified', sa.Boolean(), nullable=False),
        sa.Column('payment_approved', sa.Boolean(), nullable=False),
        sa.Column('approved_by', sa.Uuid(), nullable=True),
        sa.Column('approved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('payment_amount', sa.Float(), nullable=True),
        sa.Column('package_id', sa.Uuid(), nullable=True),
        sa.Column('cancelled_by', sa.Uuid(), nullable=True),
        sa.Column('cancellation_reason', sa.Text(), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('edited_by', sa.Uuid(), nullable=True),
        sa.Column('edited_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('edit_count', sa.Integer(), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(['approved_by'], ['users.id']),
        sa.ForeignKeyConstraint(['cancelled_by'], ['users.id']),
        sa.ForeignKeyConstraint(['coach_id'], ['users.id']),
        sa.ForeignKeyConstraint(['edited_by'], ['users.id']),
        sa.ForeignKeyConstraint(['member_id'], ['users.id']),
        sa.ForeignKeyConstraint(['package_id'], ['pt_packages.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_pt_sessions_coach_id'), 'pt_sessions', ['coach_id'], unique=False)
    op.create_index(op.f('ix_pt_sessions_member_id'), 'pt_sessions', ['member_id'], unique=False)
    op.create_index(op.f('ix_pt_sessions_scheduled_at'), 'pt_sessions', ['scheduled_at'], unique=False)
    op.create_index(op.f('ix_pt_sessions_package_id'), 'pt_sessions', ['package_id'], unique=False)


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index(op.f('ix_pt_sessions_package_id'), table_name='pt_sessions')
    op.drop_index(op.f('ix_pt_sessions_scheduled_at'), table_name='pt_sessions')
    op.drop_index(op.f('ix_pt_sessions_member_id'), table_name='pt_sessions')
    op.drop_index(op.f('ix_pt_sessions_coach_id'), table_name='pt_sessions')
    op.drop_table('pt_sessions')
    op.drop_index(op.f('ix_pt_packages_user_id'), table_name='pt_packages')
    op.drop_table('pt_packages')
    op.drop_index(op.f('ix_payslips_user_id'), table_name='payslips')
    op.drop_table('payslips')
    op.drop_table('coach_profiles')
    op.drop_index(op.f('ix_notifications_notification_type'), table_name='notifications')
    op.drop_index(op.f('ix_notifications_user_id'), table_name='notifications')
    op.drop_table('notifications')
    op.drop_index(op.f('ix_classes_scheduled_at'), table_name='classes')
    op.drop_index(op.f('ix_classes_lead_coach_id'), table_name='classes')
    op.drop_table('classes')
    op.drop_table('audit_logs')
    op.drop_index(op.f('ix_users_email'), table_name='users')
    op.drop_table('users')
