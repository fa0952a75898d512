"""Operator-editable platform settings stored as key/value rows."""

from datetime import datetime
from handyhire import db


class PlatformSetting(db.Model):
    
    __tablename__ = 'platform_settings'
    
    key = db.Column(db.String(100), primary_key=True)
    value = db.Column(db.String(255), nullable=False)
    updated_by_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
    
    ESCROW_PERIOD_MINUTES = 'escrow_period_minutes'
    
    @classmethod
    def get_value(cls, key, default=None):
        setting = db.session.get(cls, key)
        return setting.value if setting else default
    
    @classmethod
    def set_value(cls, key, value, updated_by_id=None):
        setting = db.session.get(cls, key)
        if setting is None:
            setting = cls(key=key)
            db.session.add(setting)
        setting.value = str(value)
        setting.updated_by_id = updated_by_id
        return setting
    
    def to_dict(self):
        return {
            'key': self.key,
            'value': self.value,
            'updated_by_id': self.updated_by_id,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
        }
