import logging
from typing import Any, Dict, List, Optional

import httpx

from lib.bookings import extract_booking_list
from lib.config import BridgeConfig
from lib.errors import UpstreamError

logger = logging.getLogger(__name__)

TIDYCAL_API_BASE = "https://tidycal.com/api"


class TidyCalClient:
    """
    Booking source. The API offers no server-side time filter, so every
    call returns the full booking list.
    """

    def __init__(self, api_token: str, timeout: float = 30.0, client: Optional[httpx.Client] = None):
        self.headers = {
            'Authorization': f'Bearer {api_token}',
            'Accept': 'application/json',
        }
        self.client = client or httpx.Client(timeout=timeout)

    @classmethod
    def from_config(cls, config: BridgeConfig) -> "TidyCalClient":
        return cls(config.tidycal_api_token, timeout=config.http_timeout)

    def close(self):
        self.client.close()

    def list_bookings(self) -> List[Dict[str, Any]]:
        try:
            response = self.client.get(f"{TIDYCAL_API_BASE}/bookings", headers=self.headers)
        except httpx.HTTPError as e:
            raise UpstreamError("TidyCal list bookings", body=str(e)) from e

        if not response.is_success:
            raise UpstreamError("TidyCal list bookings", response.status_code, response.text)

        try:
            payload = response.json()
        except ValueError as e:
            raise UpstreamError("TidyCal list bookings", response.status_code, response.text) from e

        bookings = extract_booking_list(payload)
        logger.info(f"Fetched {len(bookings)} bookings from TidyCal")
        return bookings
