"""Transaction model for job payments held in escrow and withdrawals."""

from datetime import datetime
from handyhire import db


class TransactionStatus:
    PENDING_CAPTURE = 'pending_capture'
    IN_ESCROW = 'in_escrow'
    RELEASED = 'released'
    FAILED = 'failed'
    COMPLETED = 'completed'  # Withdrawals only


class TransactionType:
    JOB_PAYMENT = 'job_payment'
    WITHDRAWAL = 'withdrawal'


class Transaction(db.Model):
    """Ledger entry. The ledger is the source of truth for user balances."""
    
    __tablename__ = 'transactions'
    
    id = db.Column(db.Integer, primary_key=True)
    type = db.Column(db.String(20), default=TransactionType.JOB_PAYMENT, nullable=False, index=True)
    job_id = db.Column(db.Integer, db.ForeignKey('jobs.id'), nullable=True, index=True)  # Null for withdrawals
    customer_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)  # Buyer
    provider_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True, index=True)  # Set on release
    
    # Amounts in cents to avoid float issues
    amount = db.Column(db.Integer, nullable=False)  # Gross amount charged
    service_fee = db.Column(db.Integer, default=0, nullable=False)  # Platform cut, fixed at charge time
    currency = db.Column(db.String(3), default='EUR', nullable=False)
    
    # Gateway reference (payment intent id, or WD-... for withdrawals)
    payment_id = db.Column(db.String(255), unique=True, nullable=False, index=True)
    payment_method = db.Column(db.String(30), default='stripe', nullable=False)
    payout_email = db.Column(db.String(120), nullable=True)
    
    status = db.Column(db.String(20), default=TransactionStatus.PENDING_CAPTURE, nullable=False, index=True)
    
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False, index=True)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
    approved_at = db.Column(db.DateTime, nullable=True)  # Buyer approved the charge
    held_at = db.Column(db.DateTime, nullable=True)  # Funds captured into escrow
    released_at = db.Column(db.DateTime, nullable=True)  # Credited to provider
    
    failure_reason = db.Column(db.Text, nullable=True)
    
    job = db.relationship('Job', foreign_keys=[job_id], backref=db.backref('transactions', lazy='dynamic'))
    
    @property
    def provider_amount(self):
        """Net amount credited to the provider on release, in cents."""
        return self.amount - (self.service_fee or 0)
        
    def to_dict(self):
        """Convert transaction to dictionary."""
        return {
            'id': self.id,
            'type': self.type,
            'job_id': self.job_id,
            'customer_id': self.customer_id,
            'provider_id': self.provider_id,
            'amount': self.amount / 100,  # Convert cents to currency
            'service_fee': self.service_fee / 100,
            'provider_amount': self.provider_amount / 100,
            'currency': self.currency,
            'payment_id': self.payment_id,
            'payment_method': self.payment_method,
            'status': self.status,
            'created_at': self.created_at.isoformat(),
            'updated_at': self.updated_at.isoformat(),
            'approved_at': self.approved_at.isoformat() if self.approved_at else None,
            'held_at': self.held_at.isoformat() if self.held_at else None,
            'released_at': self.released_at.isoformat() if self.released_at else None,
            'failure_reason': self.failure_reason
        }
    
    def __repr__(self):
        return f'<Transaction {self.id}: {self.amount/100} {self.currency} - {self.status}>'
