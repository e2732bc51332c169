import logging

import billing.infra.supabase_client as supabase_client

logger = logging.getLogger(__name__)

# module billing.admin.repository
def count_table_rows(table_name: str) -> int:
    """
    Compte les lignes d'une table via Supabase.
    Utilise count='exact' si disponible, sinon fallback sur len(data).
    """
    try:
        client = supabase_client.get_service_supabase()
        res = client.table(table_name).select("id", count="exact").execute()
        if getattr(res, "count", None) is not None:
            return int(res.count)
        return len(res.data or [])
    except Exception:
        logger.exception("admin.repository.count_table_rows failed table=%s", table_name)
        return 0
