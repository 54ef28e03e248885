from .base import db


class JobLease(db.Model):
    """Storage fallback for sweeper leases when the cache is unavailable"""
    __tablename__ = "job_leases"

    name = db.Column(db.String(100), primary_key=True)
    holder = db.Column(db.String(100), nullable=False)
    expires_at = db.Column(db.DateTime, nullable=False)
