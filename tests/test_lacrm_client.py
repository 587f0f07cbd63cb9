import json
from typing import Dict, List
from unittest import TestCase

import httpx

from lib.errors import UpstreamError
from lib.lacrm_client import LACRM_API_URL, LacrmClient


class LacrmClientTests(TestCase):
    def setUp(self) -> None:
        self.calls: List[Dict[str, object]] = []
        self.responses: Dict[str, httpx.Response] = {}

        def handler(request: httpx.Request) -> httpx.Response:
            body = json.loads(request.content)
            self.calls.append({"body": body, "headers": request.headers, "url": str(request.url)})
            return self.responses[body["Function"]]

        self.crm = LacrmClient("api-key", client=httpx.Client(transport=httpx.MockTransport(handler)))

    def test_call_sends_function_and_key(self) -> None:
        self.responses["SearchContacts"] = httpx.Response(200, json={"Results": []})
        self.crm.search_contacts("a@x.com")

        call = self.calls[0]
        self.assertEqual(call["url"], LACRM_API_URL)
        self.assertEqual(call["headers"]["Authorization"], "api-key")
        self.assertEqual(call["body"], {"Function": "SearchContacts", "Parameters": {"SearchTerms": "a@x.com"}})

    def test_find_contact_matches_email_case_insensitively(self) -> None:
        self.responses["SearchContacts"] = httpx.Response(200, json={"Results": [
            {"ContactId": "c-other", "Email": [{"Text": "someone@x.com"}]},
            {"ContactId": "c-ann", "Email": [{"Text": "work@x.com"}, {"Text": "Ann@X.COM"}]},
        ]})
        self.assertEqual(self.crm.find_contact_by_email("ann@x.com"), "c-ann")

    def test_find_contact_ignores_fuzzy_results(self) -> None:
        self.responses["SearchContacts"] = httpx.Response(200, json={"Results": [
            {"ContactId": "c-1", "Email": [{"Text": "ann@x.com.au"}]},
            {"ContactId": "c-2", "Email": []},
            {"ContactId": "c-3"},
        ]})
        self.assertIsNone(self.crm.find_contact_by_email("ann@x.com"))

    def test_create_contact(self) -> None:
        self.responses["CreateContact"] = httpx.Response(200, json={"ContactId": 123})
        contact_id = self.crm.create_contact(name="Ann", email="ann@x.com", assigned_to="u-1")

        self.assertEqual(contact_id, "123")
        params = self.calls[0]["body"]["Parameters"]
        self.assertEqual(params["Name"], "Ann")
        self.assertEqual(params["AssignedTo"], "u-1")
        self.assertFalse(params["IsCompany"])
        self.assertEqual(params["Email"], [{"Text": "ann@x.com", "Type": "Work"}])

    def test_create_pipeline_item_without_id(self) -> None:
        self.responses["CreatePipelineItem"] = httpx.Response(200, json={})
        item_id = self.crm.create_pipeline_item("c-1", "p-1", "s-1", note="n", info="i", message="m")

        self.assertIsNone(item_id)
        params = self.calls[0]["body"]["Parameters"]
        self.assertEqual(params, {
            "ContactId": "c-1", "PipelineId": "p-1", "StatusId": "s-1",
            "Note": "n", "Info": "i", "Message": "m",
        })

    def test_edit_contact(self) -> None:
        self.responses["EditContact"] = httpx.Response(200, json={})
        self.crm.edit_contact("c-1", {"Drive Folder": "https://drive/x"})
        self.assertEqual(self.calls[0]["body"]["Parameters"], {"ContactId": "c-1", "Drive Folder": "https://drive/x"})

    def test_embedded_error_code_raises(self) -> None:
        self.responses["CreateContact"] = httpx.Response(200, json={"ErrorCode": "BadParam", "ErrorDescription": "Name required"})
        with self.assertRaises(UpstreamError) as ctx:
            self.crm.create_contact(name="", email="a@x.com", assigned_to="u")
        self.assertEqual(ctx.exception.operation, "LACRM CreateContact")
        self.assertIn("Name required", str(ctx.exception))

    def test_http_error_status_raises(self) -> None:
        self.responses["SearchContacts"] = httpx.Response(500, text="boom")
        with self.assertRaises(UpstreamError) as ctx:
            self.crm.search_contacts("a@x.com")
        self.assertEqual(ctx.exception.status_code, 500)
        self.assertEqual(ctx.exception.body, "boom")

    def test_network_error_raises(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        crm = LacrmClient("k", client=httpx.Client(transport=httpx.MockTransport(handler)))
        with self.assertRaises(UpstreamError):
            crm.search_contacts("a@x.com")

    def test_non_object_body_raises(self) -> None:
        self.responses["SearchContacts"] = httpx.Response(200, json=[])
        with self.assertRaises(UpstreamError) as ctx:
            self.crm.find_contact_by_email("a@x.com")
        self.assertEqual(ctx.exception.operation, "LACRM SearchContacts")
        self.assertIn("expected JSON object", str(ctx.exception))

    def test_results_not_a_list_raises(self) -> None:
        self.responses["SearchContacts"] = httpx.Response(200, json={"Results": {"ContactId": "c-1"}})
        with self.assertRaises(UpstreamError):
            self.crm.search_contacts("a@x.com")

    def test_find_contact_skips_odd_entries(self) -> None:
        self.responses["SearchContacts"] = httpx.Response(200, json={"Results": [
            "garbage",
            {"Email": [{"Text": "ann@x.com"}]},
            {"ContactId": "c-bad", "Email": "ann@x.com"},
            {"ContactId": "c-ann", "Email": [{"Text": "ann@x.com"}]},
        ]})
        self.assertEqual(self.crm.find_contact_by_email("ann@x.com"), "c-ann")

    def test_match_without_contact_id_is_not_returned(self) -> None:
        self.responses["SearchContacts"] = httpx.Response(200, json={"Results": [
            {"Email": [{"Text": "ann@x.com"}]},
        ]})
        self.assertIsNone(self.crm.find_contact_by_email("ann@x.com"))
