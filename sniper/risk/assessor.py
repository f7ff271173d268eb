"""Safety-report based risk assessment."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import structlog

from sniper.config.settings import RiskConfig
from sniper.connectors.http import ServiceError
from sniper.connectors.safety import SafetyReportClient

UNVERIFIED_SCORE = 50
UNVERIFIED_REASON = "Could not verify token safety (safety report unavailable)"


@dataclass(frozen=True)
class RiskAssessment:
    overall_score: float
    is_rug_pull: bool
    is_honeypot: bool
    has_mint_authority: bool
    has_freeze_authority: bool
    holder_count: int
    top_holder_percent: float
    passed: bool
    reasons: list[str] = field(default_factory=list)
    verified: bool = True


@dataclass(frozen=True)
class _ReportFlags:
    score: float
    is_rug_pull: bool = False
    is_honeypot: bool = False
    has_mint_authority: bool = False
    has_freeze_authority: bool = False
    holder_count: int | None = None
    top_holder_percent: float | None = None
    descriptions: dict[str, str] = field(default_factory=dict)


def parse_report(data: dict[str, Any]) -> _ReportFlags:
    """Collapse a raw safety report into boolean flags."""
    score = max(0.0, min(100.0, float(data.get("score") or 0)))
    flags: dict[str, bool] = {
        "rug": bool(data.get("rugged")),
        "honeypot": False,
        "mint": False,
        "freeze": False,
    }
    descriptions: dict[str, str] = {}
    for risk in data.get("risks") or []:
        if not isinstance(risk, dict):
            continue
        name = str(risk.get("name") or "").lower()
        level = str(risk.get("level") or "").lower()
        description = str(risk.get("description") or name)
        if "rug" in name or "scam" in name:
            flags["rug"] = True
            descriptions.setdefault("rug", description)
        if "honeypot" in name or "sell" in name:
            flags["honeypot"] = True
            descriptions.setdefault("honeypot", description)
        if "mint" in name and level != "none":
            flags["mint"] = True
        if "freeze" in name and level != "none":
            flags["freeze"] = True
    if data.get("mintAuthority"):
        flags["mint"] = True
    if data.get("freezeAuthority"):
        flags["freeze"] = True

    holder_count = None
    top_percent = None
    top_holders = data.get("topHolders")
    if isinstance(top_holders, list):
        holder_count = int(data.get("totalHolders") or len(top_holders))
        first = top_holders[0] if top_holders and isinstance(top_holders[0], dict) else {}
        top_percent = float(first.get("pct") or 0.0)
    return _ReportFlags(
        score=score,
        is_rug_pull=flags["rug"],
        is_honeypot=flags["honeypot"],
        has_mint_authority=flags["mint"],
        has_freeze_authority=flags["freeze"],
        holder_count=holder_count,
        top_holder_percent=top_percent,
        descriptions=descriptions,
    )


class RiskAssessor:
    """Gate buys on the safety report and the configured filters."""

    def __init__(self, client: SafetyReportClient, config: RiskConfig | None = None) -> None:
        self.client = client
        self.config = config or RiskConfig()
        self.log = structlog.get_logger(__name__)

    async def assess(self, mint: str) -> RiskAssessment:
        try:
            data = await self.client.report(mint)
        except ServiceError as exc:
            self.log.warning("safety_report_unavailable", mint=mint, error=str(exc))
            return self._unverified()
        return self.evaluate(parse_report(data))

    def _unverified(self) -> RiskAssessment:
        # Holder distribution is unknown, so only the score gate applies.
        return RiskAssessment(
            overall_score=UNVERIFIED_SCORE,
            is_rug_pull=False,
            is_honeypot=False,
            has_mint_authority=False,
            has_freeze_authority=False,
            holder_count=0,
            top_holder_percent=0.0,
            passed=UNVERIFIED_SCORE <= self.config.max_risk_score,
            reasons=[UNVERIFIED_REASON],
            verified=False,
        )

    def evaluate(self, flags: _ReportFlags) -> RiskAssessment:
        config = self.config
        reasons: list[str] = []
        if flags.score > config.max_risk_score:
            reasons.append(f"Risk score {flags.score:.0f} exceeds {config.max_risk_score}")
        if config.check_rug_pull and flags.is_rug_pull:
            reasons.append(f"Rug pull risk: {flags.descriptions.get('rug', 'flagged')}")
        if config.check_honeypot and flags.is_honeypot:
            reasons.append(f"Honeypot risk: {flags.descriptions.get('honeypot', 'flagged')}")
        if config.check_mint_authority and flags.has_mint_authority:
            reasons.append("Mint authority not revoked")
        if config.check_freeze_authority and flags.has_freeze_authority:
            reasons.append("Freeze authority not revoked")

        holder_count = flags.holder_count or 0
        top_percent = flags.top_holder_percent or 0.0
        if holder_count < config.min_holders:
            reasons.append(f"Only {holder_count} holders (min: {config.min_holders})")
        if top_percent > config.max_ownership_percent:
            reasons.append(
                f"Top holder owns {top_percent:.1f}% (max: {config.max_ownership_percent}%)"
            )

        return RiskAssessment(
            overall_score=flags.score,
            is_rug_pull=flags.is_rug_pull,
            is_honeypot=flags.is_honeypot,
            has_mint_authority=flags.has_mint_authority,
            has_freeze_authority=flags.has_freeze_authority,
            holder_count=holder_count,
            top_holder_percent=top_percent,
            passed=not reasons,
            reasons=reasons,
        )
