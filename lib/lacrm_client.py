"""
Less Annoying CRM (API v2) client.

Every call is a POST of {"Function": ..., "Parameters": {...}} to a single
endpoint. A call fails on a non-success HTTP status or when the body carries
an ErrorCode.
"""

import logging
from typing import Any, Dict, List, Optional

import httpx

from lib.config import BridgeConfig
from lib.errors import UpstreamError

logger = logging.getLogger(__name__)

LACRM_API_URL = "https://api.lessannoyingcrm.com/v2/"


class LacrmClient:
    """
    Thin wrapper over the LACRM v2 API.

    Usage:
        crm = LacrmClient(api_key)
        contact_id = crm.find_contact_by_email("a@x.com")
        contact_id = crm.create_contact(name="A", email="a@x.com", assigned_to=user_id)
        crm.edit_contact(contact_id, {"Drive Folder": url})
        crm.create_pipeline_item(contact_id, pipeline_id, status_id, note, info, message)
    """

    def __init__(self, api_key: str, timeout: float = 30.0, client: Optional[httpx.Client] = None):
        self.headers = {
            'Authorization': api_key,
            'Content-Type': 'application/json',
        }
        self.client = client or httpx.Client(timeout=timeout)

    @classmethod
    def from_config(cls, config: BridgeConfig) -> "LacrmClient":
        return cls(config.lacrm_api_key, timeout=config.http_timeout)

    def close(self):
        self.client.close()

    def call(self, function: str, parameters: Dict[str, Any]) -> Dict[str, Any]:
        """Invoke an API function and return the decoded body."""
        try:
            response = self.client.post(
                LACRM_API_URL,
                headers=self.headers,
                json={"Function": function, "Parameters": parameters},
            )
        except httpx.HTTPError as e:
            raise UpstreamError(f"LACRM {function}", body=str(e)) from e

        if not response.is_success:
            raise UpstreamError(f"LACRM {function}", response.status_code, response.text)

        try:
            data = response.json() if response.content else {}
        except ValueError as e:
            raise UpstreamError(f"LACRM {function}", response.status_code, response.text) from e

        if not isinstance(data, dict):
            raise UpstreamError(f"LACRM {function}", response.status_code, "expected JSON object")
        if data.get("ErrorCode"):
            raise UpstreamError(
                f"LACRM {function}",
                response.status_code,
                f"{data.get('ErrorCode')}: {data.get('ErrorDescription', '')}",
            )
        return data

    def search_contacts(self, term: str) -> List[Dict[str, Any]]:
        data = self.call("SearchContacts", {"SearchTerms": term})
        results = data.get("Results") or []
        if not isinstance(results, list):
            raise UpstreamError("LACRM SearchContacts", body=f"expected Results list, got {type(results).__name__}")
        return [contact for contact in results if isinstance(contact, dict)]

    def find_contact_by_email(self, email: str) -> Optional[str]:
        """
        Return the id of a contact with an email entry equal to `email`
        (case-insensitive), or None.
        """
        target = email.strip().lower()
        for contact in self.search_contacts(email):
            contact_id = contact.get("ContactId")
            emails = contact.get("Email")
            if not contact_id or not isinstance(emails, list):
                continue
            for entry in emails:
                text = entry.get("Text") if isinstance(entry, dict) else entry
                if isinstance(text, str) and text.strip().lower() == target:
                    return str(contact_id)
        return None

    def create_contact(self, name: str, email: str, assigned_to: str, **fields) -> str:
        parameters = {
            "IsCompany": False,
            "AssignedTo": assigned_to,
            "Name": name,
            "Email": [{"Text": email, "Type": "Work"}],
        }
        parameters.update(fields)
        data = self.call("CreateContact", parameters)
        contact_id = data.get("ContactId")
        if not contact_id:
            raise UpstreamError("LACRM CreateContact", body=f"no ContactId in response: {data}")
        logger.info(f"Created LACRM contact {contact_id} for {email}")
        return str(contact_id)

    def edit_contact(self, contact_id: str, fields: Dict[str, Any]) -> None:
        parameters = {"ContactId": contact_id}
        parameters.update(fields)
        self.call("EditContact", parameters)

    def create_pipeline_item(
        self,
        contact_id: str,
        pipeline_id: str,
        status_id: str,
        note: str,
        info: str,
        message: str,
    ) -> Optional[str]:
        data = self.call("CreatePipelineItem", {
            "ContactId": contact_id,
            "PipelineId": pipeline_id,
            "StatusId": status_id,
            "Note": note,
            "Info": info,
            "Message": message,
        })
        item_id = data.get("PipelineItemId")
        return str(item_id) if item_id else None
