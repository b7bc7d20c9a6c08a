"""
Config -> Kernel Bridges.

Functions that convert a TradeConfiguration into kernel inputs.  They live
in trade_config (the producer) because the kernel must never import
trade_config.

Usage:
    from trade_config.bridges import build_policy_snapshot

    config = get_active_config()
    policy = build_policy_snapshot(config)
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from datetime import timedelta
from decimal import Decimal

from trade_config.schema import TradeConfiguration
from trade_kernel.domain.approval import (
    ApprovalChain,
    ApprovalChainStep,
    ApprovalPriority,
)
from trade_kernel.domain.clock import Clock
from trade_kernel.domain.policy import (
    DEFAULT_SEQUENCE_FORMATS,
    GuardPolicy,
    LedgerPolicy,
    MutexPolicy,
    RetryPolicy,
    TradePolicySnapshot,
)
from trade_kernel.domain.sequence import SequenceFormat
from trade_kernel.services.service_credentials import (
    ServiceCredentialIssuer,
    ServiceCredentialVerifier,
)


def build_policy_snapshot(config: TradeConfiguration) -> TradePolicySnapshot:
    """Translate a validated configuration into the kernel's frozen policies."""
    guard = GuardPolicy(
        critical_operations=frozenset(config.guard.critical_operations),
        internal_bypass_operations=frozenset(config.guard.internal_bypass_operations),
        amount_tolerance=Decimal(config.guard.amount_tolerance),
        approval_validity=timedelta(hours=config.guard.approval_validity_hours),
    )
    ledger = LedgerPolicy(
        base_currency=config.ledger.base_currency,
        prevent_negative_balance=config.ledger.prevent_negative_balance,
        supported_currencies=frozenset(config.ledger.supported_currencies),
    )
    chains = tuple(
        ApprovalChain(
            operation_type=chain.operation_type,
            auto_approve_below=(
                Decimal(chain.auto_approve_below)
                if chain.auto_approve_below is not None else None
            ),
            currency=chain.currency,
            steps=tuple(
                ApprovalChainStep(step=s.step, role=s.role)
                for s in sorted(chain.steps, key=lambda s: s.step)
            ),
            default_priority=ApprovalPriority(chain.priority),
        )
        for chain in config.approval_chains
    )
    sequences = tuple(
        SequenceFormat(s.entity_class, s.prefix, s.width, s.separator)
        for s in config.sequences
    ) or DEFAULT_SEQUENCE_FORMATS
    return TradePolicySnapshot(
        guard=guard,
        ledger=ledger,
        mutex=MutexPolicy(lock_timeout_ms=config.mutex.lock_timeout_ms),
        retry=RetryPolicy(
            max_attempts=config.retry.max_attempts,
            base_delay_ms=config.retry.base_delay_ms,
            max_jitter_ms=config.retry.max_jitter_ms,
        ),
        sequences=sequences,
        approval_chains=chains,
    )


def _service_secret(
    config: TradeConfiguration, environ: Mapping[str, str] | None,
) -> str | None:
    env = os.environ if environ is None else environ
    return env.get(config.guard.service_token_secret_env) or None


def build_credential_verifier(
    config: TradeConfiguration,
    clock: Clock | None = None,
    environ: Mapping[str, str] | None = None,
) -> ServiceCredentialVerifier | None:
    """
    Verifier for internal-bypass tokens, or None when no secret is set.

    Without a verifier the guard refuses every internal bypass.
    """
    secret = _service_secret(config, environ)
    if secret is None:
        return None
    return ServiceCredentialVerifier(
        secret,
        clock=clock,
        allowed_services=frozenset(config.guard.allowed_services) or None,
    )


def build_credential_issuer(
    config: TradeConfiguration,
    clock: Clock | None = None,
    environ: Mapping[str, str] | None = None,
) -> ServiceCredentialIssuer | None:
    secret = _service_secret(config, environ)
    if secret is None:
        return None
    return ServiceCredentialIssuer(
        secret,
        clock=clock,
        ttl=timedelta(minutes=config.guard.service_token_ttl_minutes),
    )
