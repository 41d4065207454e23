from __future__ import annotations

import json
import logging
from typing import Any, Dict

from loop_ledger.core.settings import S
from loop_ledger.core.time import now_ts

logger = logging.getLogger(__name__)


def audit_event(event: str, subject: str, **fields: Any) -> None:
    """Structured audit line on stdout (CloudWatch picks it up).

    Never pass secrets, tokens or raw webhook bodies in ``fields``.
    """
    if not S.audit_log_enabled:
        return
    payload: Dict[str, Any] = {"event": event, "subject": subject, "ts": now_ts(), **fields}
    try:
        print(json.dumps(payload, separators=(",", ":"), sort_keys=True, default=str))
    except (TypeError, ValueError) as exc:
        logger.warning("audit event %s not serialisable: %s", event, exc)
