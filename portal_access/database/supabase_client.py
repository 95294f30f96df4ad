from supabase import create_client, Client
from portal_access.config import settings
from portal_access.core.exceptions import AccessDataError


class SupabaseClient:
    """Process-wide Supabase clients: anon for identity and access reads, service role for the audit sink."""
    _client: Client = None
    _service_client: Client = None

    @staticmethod
    def is_configured() -> bool:
        return bool(settings.supabase_url and settings.supabase_key)

    @classmethod
    def get_client(cls) -> Client:
        if cls._client is None:
            if not cls.is_configured():
                raise AccessDataError("Supabase is not configured", source="supabase")
            cls._client = create_client(settings.supabase_url, settings.supabase_key)
        return cls._client

    @classmethod
    def get_service_client(cls) -> Client:
        """Client with service_role key; bypasses RLS. Falls back to the anon client when no key is set."""
        if cls._service_client is None and settings.supabase_service_role_key and settings.supabase_url:
            cls._service_client = create_client(
                settings.supabase_url, settings.supabase_service_role_key
            )
        return cls._service_client or cls.get_client()

    @classmethod
    def reset_client(cls):
        cls._client = None
        cls._service_client = None


def get_supabase() -> Client:
    return SupabaseClient.get_client()


def get_service_supabase() -> Client:
    return SupabaseClient.get_service_client()
