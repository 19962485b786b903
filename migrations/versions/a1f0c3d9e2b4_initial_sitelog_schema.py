"""initial sitelog schema: sites, assignments, daily reports, attendance

Revision ID: a1f0c3d9e2b4
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = 'a1f0c3d9e2b4'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _is_pg() -> bool:
    return op.get_bind().dialect.name == 'postgresql'


def upgrade() -> None:
    op.create_table(
        'organizations',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('code', sa.String(length=50), nullable=False, unique=True),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )

    op.create_table(
        'sites',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('organization_id', sa.Integer(), sa.ForeignKey('organizations.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('code', sa.String(length=50), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('address', sa.String(length=500), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='active'),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('organization_id', 'code', name='uq_site_org_code'),
    )
    op.create_index('ix_sites_organization_id', 'sites', ['organization_id'])

    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('full_name', sa.String(length=255), nullable=False),
        sa.Column('global_role', sa.String(length=30), nullable=False, server_default='worker'),
        sa.Column('organization_id', sa.Integer(), sa.ForeignKey('organizations.id', ondelete='SET NULL'), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=True, server_default='active'),
        sa.Column('created_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)
    op.create_index('ix_users_organization_id', 'users', ['organization_id'])

    op.create_table(
        'site_assignments',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('site_id', sa.Integer(), sa.ForeignKey('sites.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('local_role', sa.String(length=30), nullable=False),
        sa.Column('start_date', sa.Date(), nullable=False),
        sa.Column('end_date', sa.Date(), nullable=True),
        sa.Column('assigned_by', sa.Integer(), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.CheckConstraint('end_date IS NULL OR end_date >= start_date', name='ck_site_assign_range'),
    )
    op.create_index('ix_site_assignments_user_id', 'site_assignments', ['user_id'])
    op.create_index('ix_site_assignments_site_id', 'site_assignments', ['site_id'])
    op.create_index('ix_site_assignments_start_date', 'site_assignments', ['start_date'])
    op.create_index('ix_site_assignments_end_date', 'site_assignments', ['end_date'])
    op.create_index('ix_site_assign_range', 'site_assignments', ['user_id', 'site_id', 'start_date', 'end_date'])
    op.create_index(
        'uq_site_assign_open', 'site_assignments', ['user_id', 'site_id'],
        unique=True,
        sqlite_where=sa.text('end_date IS NULL'),
        postgresql_where=sa.text('end_date IS NULL'),
    )

    if _is_pg():
        # No two intervals for the same (user, site) may intersect; '[)' matches the exclusive end.
        op.execute('CREATE EXTENSION IF NOT EXISTS btree_gist')
        op.execute(
            "ALTER TABLE site_assignments ADD CONSTRAINT ex_site_assign_no_overlap "
            "EXCLUDE USING gist (user_id WITH =, site_id WITH =, "
            "daterange(start_date, end_date, '[)') WITH &&)"
        )

    op.create_table(
        'site_assignment_audit',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('actor_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('site_id', sa.Integer(), sa.ForeignKey('sites.id', ondelete='CASCADE'), nullable=False),
        sa.Column('assignment_id', sa.Integer(), sa.ForeignKey('site_assignments.id', ondelete='SET NULL'), nullable=True),
        sa.Column('action', sa.String(length=20), nullable=False),
        sa.Column('local_role', sa.String(length=30), nullable=True),
        sa.Column('effective_date', sa.Date(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_site_assignment_audit_user_id', 'site_assignment_audit', ['user_id'])
    op.create_index('ix_site_assignment_audit_site_id', 'site_assignment_audit', ['site_id'])

    op.create_table(
        'daily_reports',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('site_id', sa.Integer(), sa.ForeignKey('sites.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('work_date', sa.Date(), nullable=False),
        sa.Column('creator_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='draft'),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('work_content', sa.Text(), nullable=True),
        sa.Column('process_type', sa.String(length=100), nullable=True),
        sa.Column('member_name', sa.String(length=100), nullable=True),
        sa.Column('total_workers', sa.Integer(), nullable=True),
        sa.Column('npc1000_incoming', sa.Numeric(10, 2), nullable=True),
        sa.Column('npc1000_used', sa.Numeric(10, 2), nullable=True),
        sa.Column('npc1000_remaining', sa.Numeric(10, 2), nullable=True),
        sa.Column('issues', sa.Text(), nullable=True),
        sa.Column('approver_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('submitted_at', sa.DateTime(), nullable=True),
        sa.Column('approved_at', sa.DateTime(), nullable=True),
        sa.Column('rejected_at', sa.DateTime(), nullable=True),
        sa.Column('rejection_reason', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('site_id', 'work_date', 'creator_id', name='uq_daily_report_site_date_creator'),
    )
    op.create_index('ix_daily_reports_site_id', 'daily_reports', ['site_id'])
    op.create_index('ix_daily_reports_work_date', 'daily_reports', ['work_date'])
    op.create_index('ix_daily_reports_creator_id', 'daily_reports', ['creator_id'])
    op.create_index('ix_daily_reports_status', 'daily_reports', ['status'])

    op.create_table(
        'daily_report_transitions',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('report_id', sa.Integer(), sa.ForeignKey('daily_reports.id', ondelete='CASCADE'), nullable=False),
        sa.Column('from_status', sa.String(length=20), nullable=False),
        sa.Column('to_status', sa.String(length=20), nullable=False),
        sa.Column('actor_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('comment', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_daily_report_transitions_report_id', 'daily_report_transitions', ['report_id'])

    op.create_table(
        'attendance_records',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('site_id', sa.Integer(), sa.ForeignKey('sites.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('work_date', sa.Date(), nullable=False),
        sa.Column('check_in', sa.DateTime(), nullable=True),
        sa.Column('check_out', sa.DateTime(), nullable=True),
        sa.Column('labor_hours', sa.Numeric(4, 2), nullable=False, server_default='0'),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='present'),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('daily_report_id', sa.Integer(), sa.ForeignKey('daily_reports.id', ondelete='SET NULL'), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('user_id', 'site_id', 'work_date', name='uq_attendance_user_site_date'),
        sa.CheckConstraint('labor_hours >= 0 AND labor_hours <= 2.0', name='ck_attendance_labor_range'),
    )
    op.create_index('ix_attendance_records_user_id', 'attendance_records', ['user_id'])
    op.create_index('ix_attendance_records_site_id', 'attendance_records', ['site_id'])
    op.create_index('ix_attendance_records_work_date', 'attendance_records', ['work_date'])
    op.create_index('ix_attendance_records_daily_report_id', 'attendance_records', ['daily_report_id'])
    op.create_index('ix_attendance_user_date', 'attendance_records', ['user_id', 'work_date'])


def downgrade() -> None:
    op.drop_table('attendance_records')
    op.drop_table('daily_report_transitions')
    op.drop_table('daily_reports')
    op.drop_table('site_assignment_audit')
    if _is_pg():
        op.execute('ALTER TABLE site_assignments DROP CONSTRAINT IF EXISTS ex_site_assign_no_overlap')
    op.drop_table('site_assignments')
    op.drop_table('users')
    op.drop_table('sites')
    op.drop_table('organizations')
