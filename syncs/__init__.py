"""
Sync Services Package
"""

from .booking_sync import BookingSyncReconciler, SyncOutcome, build_reconciler, run_sync

__all__ = [
    'BookingSyncReconciler',
    'SyncOutcome',
    'build_reconciler',
    'run_sync',
]
