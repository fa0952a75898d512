"""User model (identity plus the financial fields the escrow engine owns)."""

from datetime import datetime
from handyhire import db


class User(db.Model):
    """Marketplace user acting as buyer, provider or both."""
    
    __tablename__ = 'users'
    
    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(80), unique=True, nullable=False, index=True)
    email = db.Column(db.String(120), unique=True, nullable=False, index=True)
    first_name = db.Column(db.String(80), nullable=True)
    last_name = db.Column(db.String(80), nullable=True)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    is_admin = db.Column(db.Boolean, default=False, nullable=False)
    user_type = db.Column(db.String(20), default='both', nullable=False)  # 'buyer', 'seller', 'both'
    
    # Financial fields, all in cents. Running totals; the transaction
    # ledger is the source of truth (see services.ledger.reconcile_user).
    payout_email = db.Column(db.String(120), nullable=True)
    stripe_account_id = db.Column(db.String(255), nullable=True)  # Connect account for payouts
    available_balance = db.Column(db.Integer, default=0, nullable=False)
    total_earnings = db.Column(db.Integer, default=0, nullable=False)
    total_spending = db.Column(db.Integer, default=0, nullable=False)
    
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
    
    __table_args__ = (
        db.CheckConstraint('available_balance >= 0', name='ck_users_available_balance_non_negative'),
    )
    
    def to_dict(self):
        """Convert user to dictionary."""
        return {
            'id': self.id,
            'username': self.username,
            'email': self.email,
            'first_name': self.first_name,
            'last_name': self.last_name,
            'is_active': self.is_active,
            'user_type': self.user_type,
            'payout_email': self.payout_email,
            'available_balance': self.available_balance / 100,
            'total_earnings': self.total_earnings / 100,
            'total_spending': self.total_spending / 100,
            'created_at': self.created_at.isoformat(),
            'updated_at': self.updated_at.isoformat()
        }
    
    def __repr__(self):
        return f'<User {self.username}>'
