from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from .settings import Settings


@dataclass(frozen=True)
class Tables:
    device_usage: Any
    user_credits: Any
    donations: Any
    saved_setups: Any


def build_tables(ddb: Any, settings: Settings) -> Tables:
    return Tables(
        device_usage=ddb.Table(settings.device_usage_table),
        user_credits=ddb.Table(settings.user_credits_table),
        donations=ddb.Table(settings.donations_table),
        saved_setups=ddb.Table(settings.saved_setups_table),
    )
