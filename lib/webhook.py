"""
LACRM webhook handling: signature check and the contact-created flow
(provision a Drive folder, write its URL back onto the contact).
"""

import hmac
import json
import hashlib
import logging
from typing import Any, Dict, Optional

from lib.errors import AuthorizationError, ConfigurationError, MalformedInputError
from lib.google_drive import sanitize_folder_name
from lib.logging_service import log_sync_event

logger = logging.getLogger(__name__)

CONTACT_CREATED_EVENT = "Contact.Create"


def compute_signature(secret: str, raw_body: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()


def verify_signature(secret: Optional[str], raw_body: bytes, signature: Optional[str]) -> None:
    """
    HMAC-SHA256 over the exact raw bytes, compared in constant time.
    Raises ConfigurationError when no secret is configured and
    AuthorizationError on mismatch.
    """
    if not secret:
        raise ConfigurationError("Missing LACRM_HOOK_SECRET")
    expected = compute_signature(secret, raw_body)
    if not hmac.compare_digest(expected.encode("utf-8"), (signature or "").strip().encode("utf-8")):
        raise AuthorizationError("Bad webhook signature")


def parse_event(raw_body: bytes) -> Dict[str, Any]:
    try:
        payload = json.loads(raw_body.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as e:
        raise MalformedInputError(f"Invalid JSON payload: {e}") from e
    if not isinstance(payload, dict):
        raise MalformedInputError(f"Webhook payload is {type(payload).__name__}, expected object")
    return payload


def _contact_name(data: Dict[str, Any]) -> str:
    name = data.get("Name")
    if isinstance(name, dict):
        parts = [name.get("FirstName"), name.get("LastName")]
        name = " ".join(p.strip() for p in parts if isinstance(p, str) and p.strip())
    if not name:
        name = data.get("CompanyName") or ""
    return name if isinstance(name, str) else str(name)


class WebhookHandler:
    def __init__(self, crm, drive, folder_field: str, supabase=None):
        self.crm = crm
        self.drive = drive
        self.folder_field = folder_field
        self.supabase = supabase

    def handle(self, payload: Dict[str, Any]) -> str:
        """Returns 'provisioned' or 'ignored'. Upstream errors propagate."""
        event_type = payload.get("EventType") or payload.get("Event")
        if event_type != CONTACT_CREATED_EVENT:
            logger.info(f"Ignoring webhook event {event_type!r}")
            return "ignored"

        data = payload.get("Data") if isinstance(payload.get("Data"), dict) else payload
        contact_id = data.get("ContactId")
        if not contact_id:
            raise MalformedInputError("Contact.Create event without ContactId")
        contact_id = str(contact_id)

        folder_name = sanitize_folder_name(_contact_name(data)) or f"Contact {contact_id}"
        folder = self.drive.create_folder(folder_name)
        self.crm.edit_contact(contact_id, {self.folder_field: folder["url"]})

        log_sync_event(
            self.supabase, "webhook", "success",
            f"Provisioned folder '{folder['name']}' for contact {contact_id}",
            {"folder_id": folder["id"]},
        )
        return "provisioned"
