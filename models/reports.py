import uuid
from sqlalchemy import Uuid
from .base import db
from sqlalchemy_serializer import SerializerMixin

REPORT_REASONS = ('inappropriate_behavior', 'fake_profile', 'spam', 'harassment', 'other')
REPORT_STATUSES = ('pending', 'reviewed', 'resolved', 'dismissed', 'escalated')
HIGH_PRIORITY_REASONS = ('harassment', 'inappropriate_behavior')

# Statuses that still count as an open report for the reporter/reported pair
OPEN_STATUSES = ('pending', 'escalated')


class Report(db.Model, SerializerMixin):
    __tablename__ = "reports"

    id = db.Column(Uuid, primary_key=True, default=uuid.uuid4)
    reporter_id = db.Column(Uuid, db.ForeignKey('users.id', ondelete='CASCADE'), nullable=False)
    reported_user_id = db.Column(Uuid, db.ForeignKey('users.id', ondelete='CASCADE'), nullable=False)
    reason = db.Column(db.Enum(*REPORT_REASONS, name='report_reason'), nullable=False)
    description = db.Column(db.Text, nullable=True)
    content_ref = db.Column(db.String(255), nullable=True)
    evidence = db.Column(db.JSON, nullable=True)
    priority = db.Column(db.Enum('low', 'normal', 'high', name='report_priority'), nullable=False, default='normal')
    status = db.Column(db.Enum(*REPORT_STATUSES, name='report_status'), nullable=False, default='pending')
    reviewer_id = db.Column(Uuid, db.ForeignKey('users.id', ondelete='SET NULL'), nullable=True)
    reviewed_at = db.Column(db.DateTime, nullable=True)
    resolution_notes = db.Column(db.Text, nullable=True)
    sanction_id = db.Column(Uuid, db.ForeignKey('sanctions.id', ondelete='SET NULL'), nullable=True)
    created_at = db.Column(db.DateTime, nullable=False)
    updated_at = db.Column(db.DateTime, nullable=False)

    __table_args__ = (
        db.CheckConstraint('reporter_id != reported_user_id', name='check_no_self_report'),
        db.Index('idx_reports_status_priority', 'status', 'priority', 'created_at'),
        db.Index('idx_reports_pair', 'reporter_id', 'reported_user_id'),
        db.Index('idx_reports_reported', 'reported_user_id', 'status'),
    )

    serialize_only = (
        'id', 'reporter_id', 'reported_user_id', 'reason', 'description', 'content_ref',
        'evidence', 'priority', 'status', 'reviewer_id', 'reviewed_at', 'resolution_notes',
        'sanction_id', 'created_at',
    )
