from unittest import TestCase

from lib.config import load_config
from lib.errors import ConfigurationError

BASE_ENV = {
    "SUPABASE_URL": "https://example.supabase.co",
    "SUPABASE_KEY": "key",
    "LACRM_API_KEY": "crm",
    "LACRM_USER_ID": "u-1",
    "LACRM_PIPELINE_ID": "p-1",
    "LACRM_STATUS_ID": "s-1",
    "TIDYCAL_API_TOKEN": "tidy",
}


class LoadConfigTests(TestCase):
    def test_defaults(self) -> None:
        config = load_config(BASE_ENV)
        self.assertEqual(config.overlap_minutes, 2)
        self.assertEqual(config.bootstrap_hours, 1)
        self.assertEqual(config.default_timezone, "America/New_York")
        self.assertEqual(config.lacrm_folder_field, "Drive Folder")
        self.assertTrue(config.fail_fast)
        self.assertIsNone(config.sync_trigger_secret)
        self.assertFalse(config.has_google_credentials)

    def test_missing_required_are_all_listed(self) -> None:
        env = dict(BASE_ENV, SUPABASE_KEY="", LACRM_API_KEY="  ")
        del env["TIDYCAL_API_TOKEN"]
        with self.assertRaises(ConfigurationError) as ctx:
            load_config(env)
        message = str(ctx.exception)
        for name in ("SUPABASE_KEY", "LACRM_API_KEY", "TIDYCAL_API_TOKEN"):
            self.assertIn(name, message)

    def test_optional_values(self) -> None:
        config = load_config(dict(
            BASE_ENV,
            SYNC_OVERLAP_MINUTES="5",
            SYNC_FAIL_FAST="false",
            SYNC_TRIGGER_SECRET="s3cret",
            GOOGLE_CLIENT_ID="id",
            GOOGLE_CLIENT_SECRET="secret",
            GOOGLE_REFRESH_TOKEN="refresh",
            HTTP_TIMEOUT_SECONDS="12.5",
        ))
        self.assertEqual(config.overlap_minutes, 5)
        self.assertFalse(config.fail_fast)
        self.assertEqual(config.sync_trigger_secret, "s3cret")
        self.assertTrue(config.has_google_credentials)
        self.assertEqual(config.http_timeout, 12.5)

    def test_invalid_numbers_and_booleans(self) -> None:
        for key, value in (("SYNC_OVERLAP_MINUTES", "two"), ("SYNC_OVERLAP_MINUTES", "-1"), ("SYNC_FAIL_FAST", "maybe")):
            with self.subTest(key=key, value=value):
                with self.assertRaises(ConfigurationError):
                    load_config(dict(BASE_ENV, **{key: value}))
