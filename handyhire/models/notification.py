"""Notification model for user notifications."""

import json
from handyhire import db
from datetime import datetime


class Notification(db.Model):
    """In-app message about an escrow or payment event."""
    
    __tablename__ = 'notifications'
    
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    type = db.Column(db.String(50), nullable=False)  # NotificationType value
    message = db.Column(db.Text, nullable=False)
    
    # Extra values for the client, e.g. the released amount (JSON text)
    data = db.Column(db.Text, nullable=True)
    
    related_type = db.Column(db.String(50))  # 'job', 'transaction'
    related_id = db.Column(db.Integer)
    
    is_read = db.Column(db.Boolean, default=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    
    def __repr__(self):
        return f'<Notification {self.id} for User {self.user_id}: {self.type}>'
    
    def set_data(self, data_dict: dict):
        """Set the data field from a dictionary."""
        self.data = json.dumps(data_dict) if data_dict else None
    
    def get_data(self) -> dict:
        """Get the data field as a dictionary."""
        if self.data:
            try:
                return json.loads(self.data)
            except (json.JSONDecodeError, TypeError):
                return {}
        return {}
    
    def to_dict(self):
        """Convert notification to dictionary."""
        return {
            'id': self.id,
            'user_id': self.user_id,
            'type': self.type,
            'message': self.message,
            'data': self.get_data(),
            'related_type': self.related_type,
            'related_id': self.related_id,
            'is_read': self.is_read,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }


# Notification type constants
class NotificationType:
    PAYMENT = 'payment'
    PAYMENT_FAILED = 'payment_failed'
    JOB_ASSIGNED = 'job_assigned'
    JOB_COMPLETED = 'job_completed'
    JOB_CANCELLED = 'job_cancelled'
    WITHDRAWAL = 'withdrawal'
