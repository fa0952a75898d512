"""Job model for repair/maintenance requests posted by buyers."""

from datetime import datetime
from handyhire import db


class JobStatus:
    ACTIVE = 'active'
    IN_PROGRESS = 'in_progress'
    COMPLETED = 'completed'
    CANCELLED = 'cancelled'


class PaymentStatus:
    PENDING = 'pending'
    IN_ESCROW = 'in_escrow'
    RELEASED = 'released'
    FAILED = 'failed'


class Job(db.Model):
    """A buyer's job and its escrow state."""
    
    __tablename__ = 'jobs'
    
    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(255), nullable=False, index=True)
    description = db.Column(db.Text, nullable=False)
    category = db.Column(db.String(50), nullable=False, index=True)  # 'plumbing', 'electrical', 'cleaning', etc.
    location = db.Column(db.String(255), nullable=False)
    price = db.Column(db.Integer, nullable=False)  # Requested budget in cents
    currency = db.Column(db.String(3), default='EUR', nullable=False)
    preferred_date = db.Column(db.DateTime, nullable=True)
    
    posted_by_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    hired_provider_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True, index=True)
    
    status = db.Column(db.String(20), default=JobStatus.ACTIVE, nullable=False, index=True)
    payment_status = db.Column(db.String(20), default=PaymentStatus.PENDING, nullable=False, index=True)
    # Durable "due at" for the completion scheduler; set only while in_progress
    escrow_end_date = db.Column(db.DateTime, nullable=True, index=True)
    transaction_id = db.Column(db.Integer, nullable=True)  # Active Transaction.id
    completed_at = db.Column(db.DateTime, nullable=True)
    
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False, index=True)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
    
    posted_by = db.relationship('User', foreign_keys=[posted_by_id], backref=db.backref('posted_jobs', lazy='dynamic'))
    hired_provider = db.relationship('User', foreign_keys=[hired_provider_id])
    
    def to_dict(self):
        """Convert job to dictionary."""
        return {
            'id': self.id,
            'title': self.title,
            'description': self.description,
            'category': self.category,
            'location': self.location,
            'price': self.price / 100,
            'currency': self.currency,
            'preferred_date': self.preferred_date.isoformat() if self.preferred_date else None,
            'posted_by_id': self.posted_by_id,
            'posted_by': self.posted_by.username if self.posted_by else None,
            'hired_provider_id': self.hired_provider_id,
            'hired_provider': self.hired_provider.username if self.hired_provider else None,
            'status': self.status,
            'payment_status': self.payment_status,
            'escrow_end_date': self.escrow_end_date.isoformat() if self.escrow_end_date else None,
            'transaction_id': self.transaction_id,
            'completed_at': self.completed_at.isoformat() if self.completed_at else None,
            'created_at': self.created_at.isoformat(),
            'updated_at': self.updated_at.isoformat()
        }
    
    def __repr__(self):
        return f'<Job {self.id}: {self.title} ({self.status}/{self.payment_status})>'
