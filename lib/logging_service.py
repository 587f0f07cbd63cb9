import json
import logging

logger = logging.getLogger(__name__)


def log_sync_event(supabase, event_type: str, status: str, message: str, details: dict = None):
    """
    Logs a sync event to the Supabase 'sync_logs' table and standard logger.

    Args:
        supabase: Supabase client (or None to only use the standard logger)
        event_type: The type of event (e.g., 'booking_sync', 'webhook')
        status: The status/level (e.g., 'info', 'success', 'error', 'warning')
        message: Human readable message
        details: Optional dictionary with additional details
    """
    # 1. Print to console/file logs
    log_msg = f"[{event_type.upper()}] {message}"
    if status.lower() in ["error", "fatal"]:
        logger.error(log_msg)
    elif status.lower() == "warning":
        logger.warning(log_msg)
    else:
        logger.info(log_msg)

    if supabase is None:
        return

    # 2. Write to Supabase
    try:
        payload = {
            "event_type": event_type,
            "status": status,
            "message": message,
        }

        if details:
            payload["message"] += f" | Details: {json.dumps(details, default=str)}"

        supabase.table("sync_logs").insert(payload).execute()

    except Exception as e:
        logger.error(f"Failed to write to sync_logs: {e}")
