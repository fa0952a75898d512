"""Durable lease rows used to serialize background work across instances."""

from datetime import datetime
from handyhire import db


class SchedulerLease(db.Model):
    """A named lease held by one process until ``expires_at``.
    
    Replaces process-local locks: any instance may take over a lease once it
    has expired, so a crashed holder never blocks the sweep for long.
    """
    
    __tablename__ = 'scheduler_leases'
    
    name = db.Column(db.String(100), primary_key=True)
    holder = db.Column(db.String(100), nullable=False)
    expires_at = db.Column(db.DateTime, nullable=False)
    acquired_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    
    def __repr__(self):
        return f'<SchedulerLease {self.name} held by {self.holder} until {self.expires_at}>'
