import logging
import secrets
from datetime import datetime, timezone
from supabase import Client
from portal_access.config.settings import settings
from portal_access.modules.audit.schemas import AuditAction, AuditEvent
from typing import Optional, Dict, Any

logger = logging.getLogger(__name__)


def local_correlation_id(now: Optional[datetime] = None) -> str:
    """Same shape as the generate_correlation_id RPC: CORR-YYYYMMDD-HHMMSS-XXXXXXXX"""
    now = now or datetime.now(timezone.utc)
    return f"CORR-{now.strftime('%Y%m%d-%H%M%S')}-{secrets.token_hex(4).upper()}"


class AuditService:
    """Best-effort audit/access log sink. Failures are logged, never raised."""

    def __init__(self, supabase: Optional[Client]):
        self.supabase = supabase

    def _report_failure(self, what: str, error: Exception) -> None:
        if settings.audit_sink_critical:
            logger.error(f"Audit sink failure ({what}): {error}")
        else:
            logger.warning(f"Audit sink failure ({what}): {error}")

    def log_audit_event(self, event: AuditEvent) -> Optional[str]:
        """Write an audit row via log_audit_event RPC; returns the log id or None"""
        if self.supabase is None:
            return None
        try:
            result = self.supabase.rpc("log_audit_event", {
                "_action": event.action.value,
                "_action_label": event.action_label,
                "_record_id": event.record_id,
                "_record_type": event.record_type,
                "_tenant_id": event.tenant_id,
                "_details": {
                    **event.details,
                    "timestamp": datetime.now(timezone.utc).isoformat(),
                },
            }).execute()
            return result.data
        except Exception as e:
            self._report_failure(event.action_label, e)
            return None

    def log_access_event(
        self,
        record_id: Optional[str],
        record_type: str,
        access_type: str,
        tenant_id: Optional[str] = None,
    ) -> Optional[str]:
        """Write an access row via log_access_event RPC"""
        if self.supabase is None:
            return None
        try:
            result = self.supabase.rpc("log_access_event", {
                "_record_id": record_id,
                "_record_type": record_type,
                "_access_type": access_type,
                "_tenant_id": tenant_id,
            }).execute()
            return result.data
        except Exception as e:
            self._report_failure(f"access:{record_type}", e)
            return None

    def generate_correlation_id(self) -> str:
        """Correlation id for linking related audit events; local fallback if the RPC is unavailable"""
        if self.supabase is not None:
            try:
                result = self.supabase.rpc("generate_correlation_id", {}).execute()
                if isinstance(result.data, str) and result.data:
                    return result.data
            except Exception as e:
                self._report_failure("generate_correlation_id", e)
        return local_correlation_id()

    def record(
        self,
        action: AuditAction,
        label: str,
        record_type: Optional[str] = None,
        record_id: Optional[str] = None,
        tenant_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> Optional[str]:
        return self.log_audit_event(AuditEvent(
            action=action,
            action_label=label,
            record_type=record_type,
            record_id=record_id,
            tenant_id=tenant_id,
            details=details or {},
        ))
