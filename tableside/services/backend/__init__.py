from tableside.services.backend.supabase_service import SupabaseDataService, SupabaseSubscription

__all__ = ["SupabaseDataService", "SupabaseSubscription"]
