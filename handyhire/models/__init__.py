"""Database models for the escrow marketplace."""

from .user import User
from .job import Job, JobStatus, PaymentStatus
from .transaction import Transaction, TransactionStatus, TransactionType
from .notification import Notification, NotificationType
from .platform_setting import PlatformSetting
from .scheduler_lease import SchedulerLease

__all__ = [
    'User',
    'Job', 'JobStatus', 'PaymentStatus',
    'Transaction', 'TransactionStatus', 'TransactionType',
    'Notification', 'NotificationType',
    'PlatformSetting',
    'SchedulerLease',
]
