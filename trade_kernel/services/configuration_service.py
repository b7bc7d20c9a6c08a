"""
ConfigurationService -- per-transaction policy snapshot.

Responsibility:
    Combines the loaded configuration (a TradePolicySnapshot built by
    trade_config) with the runtime overrides stored in ``system_settings``
    and returns one frozen snapshot for the current unit of work.

Architecture position:
    Kernel > Services.  Receives the base snapshot from the caller; never
    imports trade_config.

Runtime overrides:
    PREVENT_NEGATIVE_BALANCE  "true"/"false" (also 1/0, yes/no, on/off)

Failure modes:
    - An unparseable override value is ignored with a warning; the
      configured value stays in force.
"""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from trade_kernel.domain.policy import TradePolicySnapshot
from trade_kernel.logging_config import get_logger
from trade_kernel.models.settings import SystemSettingModel

logger = get_logger("services.configuration")

PREVENT_NEGATIVE_BALANCE = "PREVENT_NEGATIVE_BALANCE"

_TRUE = frozenset({"true", "1", "yes", "on"})
_FALSE = frozenset({"false", "0", "no", "off"})


def parse_flag(value: str) -> bool | None:
    text = (value or "").strip().lower()
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    return None


class ConfigurationService:
    def __init__(self, session: Session, base: TradePolicySnapshot | None = None):
        self._session = session
        self._base = base or TradePolicySnapshot()

    def get_setting(self, key: str) -> str | None:
        return self._session.execute(
            select(SystemSettingModel.value).where(SystemSettingModel.key == key)
        ).scalar_one_or_none()

    def snapshot(self) -> TradePolicySnapshot:
        snapshot = self._base
        raw = self.get_setting(PREVENT_NEGATIVE_BALANCE)
        if raw is not None:
            flag = parse_flag(raw)
            if flag is None:
                logger.warning(
                    "setting_override_ignored",
                    extra={"key": PREVENT_NEGATIVE_BALANCE, "value": raw},
                )
            elif flag != snapshot.ledger.prevent_negative_balance:
                snapshot = snapshot.with_ledger(prevent_negative_balance=flag)
        return snapshot
