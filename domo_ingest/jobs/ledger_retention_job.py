"""Idempotency ledger retention job.

Runs daily. Deletes processed_webhook_events rows older than
IDEMPOTENCY_RETENTION_DAYS. With no retention configured the ledger is
kept forever and the job is a no-op.
"""

import logging
from datetime import datetime
from typing import Any

from domo_ingest.core.config import settings
from domo_ingest.db.supabase import SupabaseClient
from domo_ingest.services.idempotency import IdempotencyGuard, LedgerRetentionPolicy

logger = logging.getLogger(__name__)


async def run_ledger_retention_job(now: datetime | None = None) -> dict[str, Any]:
    """Prune the idempotency ledger.

    Args:
        now: Clock override.

    Returns:
        Summary dict with the retention window and rows deleted.
    """
    policy = LedgerRetentionPolicy(settings.IDEMPOTENCY_RETENTION_DAYS)
    stats: dict[str, Any] = {
        "retention_days": policy.retention_days,
        "deleted": 0,
        "errors": 0,
    }

    if policy.retention_days is None:
        logger.info("Ledger retention: unlimited, nothing to prune")
        return stats

    try:
        db = SupabaseClient.get_client()
        stats["deleted"] = await IdempotencyGuard(db).prune(policy, now)
    except Exception:
        logger.exception("Ledger retention job failed")
        stats["errors"] += 1

    logger.info(
        "Ledger retention job complete: %d rows deleted (retention %d days)",
        stats["deleted"],
        policy.retention_days,
    )
    return stats
