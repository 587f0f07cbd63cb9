"""
===================================================================================
SYNC STATE - Watermark and Processed-Booking Bookkeeping
===================================================================================

Two independent pieces of persisted state back the booking sync:

1. Watermark: the pass-start timestamp of the last successful pass.
   Stored in the sync_state table under key "booking_sync_watermark".
2. Processed set: one row per booking ever handled, keyed by booking_id in
   the processed_bookings table. Existence of a row means "never touch
   this booking again".

Unlike the best-effort cursor helpers used for change detection, read and
write failures here propagate: a pass must not run on a guessed watermark.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from lib.errors import UpstreamError

logger = logging.getLogger(__name__)

SYNC_STATE_TABLE = 'sync_state'
WATERMARK_KEY = 'booking_sync_watermark'
PROCESSED_TABLE = 'processed_bookings'


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 timestamp; naive values are taken as UTC."""
    parsed = datetime.fromisoformat(value.strip().replace('Z', '+00:00'))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


class WatermarkStore:
    """Reads and advances the booking sync watermark."""

    def __init__(self, supabase_client, key: str = WATERMARK_KEY):
        self.supabase = supabase_client
        self.key = key

    def get(self) -> Optional[datetime]:
        try:
            result = self.supabase.table(SYNC_STATE_TABLE).select('value').eq('key', self.key).execute()
        except Exception as e:
            raise UpstreamError("read watermark", body=str(e)) from e

        if result.data and result.data[0].get('value'):
            return parse_timestamp(result.data[0]['value'])
        return None

    def advance(self, timestamp: datetime, previous: Optional[datetime] = None) -> datetime:
        """
        Persist the watermark, never moving it backwards.

        Returns the value actually stored.
        """
        if timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=timezone.utc)
        if previous is not None and previous > timestamp:
            logger.warning(f"Watermark {timestamp.isoformat()} is older than {previous.isoformat()}, keeping previous")
            timestamp = previous

        try:
            self.supabase.table(SYNC_STATE_TABLE).upsert({
                'key': self.key,
                'value': timestamp.isoformat(),
                'updated_at': datetime.now(timezone.utc).isoformat()
            }).execute()
        except Exception as e:
            raise UpstreamError("write watermark", body=str(e)) from e

        logger.debug(f"Advanced {self.key} to {timestamp.isoformat()}")
        return timestamp


class ProcessedBookingStore:
    """Insert-only set of booking ids that already had their side effects."""

    def __init__(self, supabase_client, table: str = PROCESSED_TABLE):
        self.supabase = supabase_client
        self.table = table

    def contains(self, booking_id: str) -> bool:
        try:
            result = self.supabase.table(self.table).select('booking_id').eq('booking_id', booking_id).limit(1).execute()
        except Exception as e:
            raise UpstreamError("read processed booking", body=str(e)) from e
        return bool(result.data)

    def mark(self, booking_id: str, source_created_at: Optional[datetime]) -> None:
        row = {
            'booking_id': booking_id,
            'source_created_at': source_created_at.isoformat() if source_created_at else None,
            'processed_at': datetime.now(timezone.utc).isoformat(),
        }
        try:
            # ignore_duplicates keeps the first record untouched
            self.supabase.table(self.table).upsert(
                row, on_conflict='booking_id', ignore_duplicates=True
            ).execute()
        except Exception as e:
            raise UpstreamError("write processed booking", body=str(e)) from e
