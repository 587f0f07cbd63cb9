"""
===================================================================================
BOOKING SYNC - TidyCal bookings -> LACRM contacts + pipeline items
===================================================================================

One pass:
1. Read the watermark (bootstrap: one hour before pass start).
2. cutoff = watermark - overlap window.
3. Fetch every booking (no server-side filtering available).
4. Candidates: id + created_at present, not cancelled, created_at > cutoff.
5. Per candidate, in source order:
   - already in processed_bookings -> skipped
   - no usable email -> mark processed, skipped
   - find-or-create contact, create pipeline item, mark processed
6. Advance the watermark to the pass-start time.

The processed-set row is the last write per booking, so a pass killed
mid-loop leaves exactly the handled bookings marked and the watermark
where it was. Passes must not run concurrently.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional

from lib.bookings import (
    BookingCandidate,
    build_info_block,
    build_message,
    filter_candidates,
    format_start_time,
)
from lib.config import BridgeConfig
from lib.logging_service import log_sync_event
from lib.sync_state import ProcessedBookingStore, WatermarkStore

logger = logging.getLogger("BookingSync")

PIPELINE_NOTE = "Booked via TidyCal"
MAX_REPORTED_ERRORS = 10


@dataclass
class SyncOutcome:
    """Counters for a single sync pass."""
    fetched: int = 0
    candidates: int = 0
    created_contacts: int = 0
    updated_contacts: int = 0
    pipeline_items: int = 0
    skipped: int = 0
    failed: int = 0
    errors: List[str] = field(default_factory=list)
    watermark: Optional[datetime] = None

    def to_dict(self) -> Dict:
        result = {
            'fetched': self.fetched,
            'candidates': self.candidates,
            'created_contacts': self.created_contacts,
            'updated_contacts': self.updated_contacts,
            'pipeline_items': self.pipeline_items,
            'skipped': self.skipped,
            'failed': self.failed,
            'watermark': self.watermark.isoformat() if self.watermark else None,
        }
        if self.errors:
            result['errors'] = self.errors[:MAX_REPORTED_ERRORS]
        return result


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BookingSyncReconciler:
    """
    Idempotent booking -> CRM reconciliation.

    Collaborators are injected so the pass can run against fakes:
        booking_source.list_bookings() -> list of raw booking dicts
        crm.find_contact_by_email / create_contact / create_pipeline_item
    """

    def __init__(
        self,
        config: BridgeConfig,
        booking_source,
        crm,
        watermark_store: WatermarkStore,
        processed_store: ProcessedBookingStore,
        supabase=None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.config = config
        self.booking_source = booking_source
        self.crm = crm
        self.watermark_store = watermark_store
        self.processed_store = processed_store
        self.supabase = supabase
        self.clock = clock
        self.overlap = timedelta(minutes=config.overlap_minutes)
        self.bootstrap = timedelta(hours=config.bootstrap_hours)

    def run_sync_pass(self) -> SyncOutcome:
        pass_started_at = self.clock()
        outcome = SyncOutcome()

        try:
            watermark = self.watermark_store.get()
            since = watermark or (pass_started_at - self.bootstrap)
            cutoff = since - self.overlap
            logger.info(f"Starting booking sync (created after {cutoff.isoformat()})")
            log_sync_event(self.supabase, "booking_sync", "info", f"Starting booking sync, cutoff {cutoff.isoformat()}")

            bookings = self.booking_source.list_bookings()
            outcome.fetched = len(bookings)

            candidates = filter_candidates(bookings, cutoff)
            outcome.candidates = len(candidates)
            logger.info(f"{outcome.candidates} of {outcome.fetched} bookings are candidates")

            for candidate in candidates:
                if self.config.fail_fast:
                    self._handle_candidate(candidate, outcome)
                    continue
                try:
                    self._handle_candidate(candidate, outcome)
                except Exception as e:
                    outcome.failed += 1
                    error_msg = f"Booking {candidate.id}: {e}"
                    outcome.errors.append(error_msg)
                    logger.error(error_msg)

            if outcome.failed:
                # Failed bookings are unmarked; keep them inside the next cutoff
                logger.warning(f"{outcome.failed} bookings failed, watermark left at {watermark}")
                outcome.watermark = watermark
            else:
                outcome.watermark = self.watermark_store.advance(pass_started_at, previous=watermark)

        except Exception as e:
            log_sync_event(self.supabase, "booking_sync", "error", f"Booking sync failed: {e}", outcome.to_dict())
            raise

        status = "warning" if outcome.failed else "success"
        log_sync_event(
            self.supabase, "booking_sync", status,
            f"Booking sync complete: {outcome.created_contacts} created, {outcome.updated_contacts} matched, "
            f"{outcome.pipeline_items} pipeline items, {outcome.skipped} skipped, {outcome.failed} failed",
            outcome.to_dict(),
        )
        return outcome

    def _handle_candidate(self, candidate: BookingCandidate, outcome: SyncOutcome) -> None:
        if self.processed_store.contains(candidate.id):
            logger.debug(f"Booking {candidate.id} already processed")
            outcome.skipped += 1
            return

        if not candidate.has_usable_email:
            logger.info(f"Booking {candidate.id} has no usable email, marking processed")
            self.processed_store.mark(candidate.id, candidate.created_at)
            outcome.skipped += 1
            return

        contact_id = self.crm.find_contact_by_email(candidate.contact_email)
        if contact_id:
            outcome.updated_contacts += 1
        else:
            contact_id = self.crm.create_contact(
                name=candidate.display_name,
                email=candidate.contact_email,
                assigned_to=self.config.lacrm_user_id,
            )
            outcome.created_contacts += 1

        when = format_start_time(candidate.starts_at, candidate.timezone, self.config.default_timezone)
        item_id = self.crm.create_pipeline_item(
            contact_id,
            self.config.lacrm_pipeline_id,
            self.config.lacrm_status_id,
            note=PIPELINE_NOTE,
            info=build_info_block(candidate, when),
            message=build_message(candidate.answers),
        )
        if item_id:
            outcome.pipeline_items += 1
        else:
            logger.warning(f"No pipeline item id returned for booking {candidate.id}")

        # Contact side effects already happened, so mark regardless of item_id
        self.processed_store.mark(candidate.id, candidate.created_at)
        logger.info(f"Processed booking {candidate.id} -> contact {contact_id}")


def build_reconciler(config: BridgeConfig, supabase=None) -> BookingSyncReconciler:
    from lib.lacrm_client import LacrmClient
    from lib.supabase_client import create_supabase
    from lib.tidycal_client import TidyCalClient

    supabase = supabase or create_supabase(config)
    return BookingSyncReconciler(
        config,
        booking_source=TidyCalClient.from_config(config),
        crm=LacrmClient.from_config(config),
        watermark_store=WatermarkStore(supabase),
        processed_store=ProcessedBookingStore(supabase),
        supabase=supabase,
    )


def run_sync(config: BridgeConfig, supabase=None) -> Dict:
    reconciler = build_reconciler(config, supabase)
    try:
        return reconciler.run_sync_pass().to_dict()
    finally:
        reconciler.booking_source.close()
        reconciler.crm.close()


if __name__ == "__main__":
    from lib.config import load_config

    logging.basicConfig(level=logging.INFO)
    print(json.dumps(run_sync(load_config()), indent=2))
