from supabase import create_client, Client

from lib.config import BridgeConfig


def create_supabase(config: BridgeConfig) -> Client:
    """
    Create the Supabase client used for sync state and sync logs.
    """
    return create_client(config.supabase_url, config.supabase_key)
