"""Cheap pre-screen of discovery output before any network checks."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from sniper.config.settings import ScreenerConfig
from sniper.models import CandidateToken, utc_now

PLACEHOLDER_NAME = re.compile(r"^(unknown|unknown token|token|\?\?\?|n/a)$", re.IGNORECASE)
SUSPICIOUS_NAME = re.compile(r"test|airdrop|free.*money|rug|scam|fake|honeypot", re.IGNORECASE)
MIN_MINT_LENGTH = 32
MAX_MINT_LENGTH = 66


class Severity(str, Enum):
    PASS = "pass"
    WARN = "warn"
    REJECT = "reject"


@dataclass(frozen=True)
class ScreenReason:
    rule: str
    severity: Severity
    message: str


@dataclass(frozen=True)
class ScreenResult:
    passed: bool
    reasons: list[ScreenReason] = field(default_factory=list)

    @property
    def rejections(self) -> list[str]:
        return [reason.message for reason in self.reasons if reason.severity == Severity.REJECT]


def is_placeholder(value: str) -> bool:
    return not value.strip() or bool(PLACEHOLDER_NAME.match(value.strip()))


def is_plausible_mint(address: str) -> bool:
    return MIN_MINT_LENGTH <= len(address) <= MAX_MINT_LENGTH and address.isalnum()


def screen_candidate(
    candidate: CandidateToken,
    config: ScreenerConfig | None = None,
    now: datetime | None = None,
) -> ScreenResult:
    config = config or ScreenerConfig()
    now = now or utc_now()
    reasons: list[ScreenReason] = []

    def add(rule: str, severity: Severity, message: str) -> None:
        reasons.append(ScreenReason(rule, severity, message))

    if not is_plausible_mint(candidate.address):
        add("mint", Severity.REJECT, f"Implausible mint address: {candidate.address!r}")

    if is_placeholder(candidate.symbol) and is_placeholder(candidate.name):
        add("metadata", Severity.WARN, "Placeholder token metadata")

    label = f"{candidate.name} {candidate.symbol}"
    if SUSPICIOUS_NAME.search(label):
        add("name", Severity.REJECT, f"Suspicious name pattern: {label.strip()}")

    if candidate.created_at is not None:
        age_hours = (now - candidate.created_at).total_seconds() / 3600
        if age_hours > config.max_token_age_hours:
            add("age", Severity.REJECT, f"Token too old: {age_hours:.1f}h > {config.max_token_age_hours}h")

    if candidate.liquidity < config.min_liquidity:
        add("liquidity", Severity.REJECT, f"Liquidity {candidate.liquidity:.2f} < {config.min_liquidity}")

    if candidate.risk_score > config.max_risk_score:
        add("risk", Severity.REJECT, f"Risk score {candidate.risk_score:.0f} > {config.max_risk_score}")

    if candidate.buy_tax > config.max_buy_tax:
        add("buy_tax", Severity.REJECT, f"Buy tax {candidate.buy_tax:.1f}% > {config.max_buy_tax}%")
    if candidate.sell_tax > config.max_sell_tax:
        add("sell_tax", Severity.REJECT, f"Sell tax {candidate.sell_tax:.1f}% > {config.max_sell_tax}%")

    if candidate.freeze_authority:
        if config.block_freeze_authority:
            add("freeze_authority", Severity.REJECT, "Freeze authority enabled")
        else:
            add("freeze_authority", Severity.WARN, "Freeze authority enabled")

    if not reasons:
        add("all", Severity.PASS, "All screening rules passed")
    passed = all(reason.severity != Severity.REJECT for reason in reasons)
    return ScreenResult(passed=passed, reasons=reasons)
