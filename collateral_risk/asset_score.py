"""
Collateral Risk Scoring.

Scores a lending-pool asset in four categories (crash, liquidity, volatility,
historical). Each category adds integer points per risk signal and carries a
justification per check. The overall score is the maximum category score.

Assets whose data could not be fetched are UNSCORED in every field. The
network's base asset gets a fixed all-zero record.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Union

from .core.overrides import Category, OverrideConfig
from .thresholds import (
    GRADE_SCALE,
    FALLBACK_GRADE,
    UNSCORED_GRADE,
    CRASH_THRESHOLDS,
    LIQUIDITY_THRESHOLDS,
    VOLATILITY_THRESHOLDS,
    HISTORICAL_THRESHOLDS,
)


class Unscored(str, Enum):
    UNSCORED = "unscored"


UNSCORED = Unscored.UNSCORED

SubScore = Union[int, Unscored]


# =============================================================================
# DATA TYPES
# =============================================================================

@dataclass(frozen=True)
class AssetMetrics:
    """Fetched financial signals for one asset in one pool."""
    address: str
    symbol: str
    collateral_factor: float
    liquidation_incentive: float
    total_liquidity: Optional[float] = None
    market_cap: Optional[float] = None
    fully_diluted_value: Optional[float] = None
    twitter_followers: Optional[int] = None
    audits: bool = False
    price_change: Optional[float] = None
    lp_addresses: Optional[int] = None


@dataclass(frozen=True)
class Score:
    address: str
    symbol: str
    crash: SubScore
    liquidity: SubScore
    volatility: SubScore
    historical: SubScore
    overall: SubScore

    @property
    def is_scored(self) -> bool:
        return self.overall != UNSCORED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "address": self.address,
            "symbol": self.symbol,
            "crash": _plain(self.crash),
            "liquidity": _plain(self.liquidity),
            "volatility": _plain(self.volatility),
            "historical": _plain(self.historical),
            "overall": _plain(self.overall),
        }


@dataclass(frozen=True)
class AssetInfo:
    collateral_factor: Optional[float] = None
    token_down: Optional[float] = None
    market_cap: Optional[float] = None


@dataclass(frozen=True)
class ScoreBlock:
    score: Score
    asset_info: AssetInfo = field(default_factory=AssetInfo)
    breakdown: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "score": self.score.to_dict(),
            "assetInfo": {
                "collateralFactor": self.asset_info.collateral_factor,
                "tokenDown": self.asset_info.token_down,
                "marketCap": self.asset_info.market_cap,
            },
        }


@dataclass(frozen=True)
class PoolScore:
    pool_id: str
    overall: SubScore
    multisig: bool
    scores: List[ScoreBlock]
    last_updated: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "poolID": self.pool_id,
            "overall": _plain(self.overall),
            "multisig": self.multisig,
            "scores": [block.to_dict() for block in self.scores],
            "lastUpdated": self.last_updated,
        }


def _plain(value: SubScore) -> Union[int, str]:
    return value.value if isinstance(value, Unscored) else value


# =============================================================================
# GRADES
# =============================================================================

def grade_info(score: SubScore) -> dict:
    """Grade details for a numeric score or UNSCORED."""
    if score == UNSCORED:
        return UNSCORED_GRADE
    if isinstance(score, bool) or not isinstance(score, (int, float)):
        return FALLBACK_GRADE
    return GRADE_SCALE.get(score, FALLBACK_GRADE)


def letter_grade(score: SubScore) -> str:
    """0 -> A, 1 -> B, 2 -> C, 3 -> D, UNSCORED -> "unscored", anything else -> F."""
    return grade_info(score)["grade"]


# =============================================================================
# CATEGORY SCORING FUNCTIONS
# =============================================================================

def check_audits(tickers: Optional[Iterable[dict]]) -> bool:
    """
    An asset counts as audited when at least one exchange other than uniswap
    reports a green trust score for it.

    Args:
        tickers: CoinGecko ticker entries ({"market": {"identifier"}, "trust_score"})
    """
    rule = CRASH_THRESHOLDS["audit"]
    reputable = set()
    for ticker in tickers or []:
        if not isinstance(ticker, dict):
            continue
        name = (ticker.get("market") or {}).get("identifier")
        if name and name not in rule["excluded_markets"] and ticker.get("trust_score") == rule["trust_score"]:
            reputable.add(name)
    return len(reputable) > 0


def _check(name: str, triggered: bool, points: int, applied: bool, justification: str) -> dict:
    return {
        "name": name,
        "triggered": triggered,
        "applied": applied,
        "points": points if triggered and applied else 0,
        "justification": justification if triggered else "Not triggered",
    }


def _tiered_points(value: Optional[float], thresholds: List[dict]) -> int:
    if value is None:
        return 0
    for tier in thresholds:
        if value < tier["value"]:
            return tier["points"]
    return 0


def _finish(category: Category, checks: List[dict], overrides: OverrideConfig) -> Dict[str, Any]:
    computed = sum(c["points"] for c in checks)
    override_value = overrides.value(category)
    return {
        "category": category.value,
        "score": computed if override_value is None else override_value,
        "computed": computed,
        "overridden": override_value is not None,
        "checks": checks,
    }


def calculate_crash_score(metrics: AssetMetrics, overrides: OverrideConfig) -> Dict[str, Any]:
    """Community size, exchange audit and dilution risk (0-3)."""
    t = CRASH_THRESHOLDS
    checks = []

    followers = metrics.twitter_followers
    checks.append(_check(
        "twitter",
        followers is not None and followers < t["twitter"]["value"],
        t["twitter"]["points"],
        overrides.gate(Category.CRASH, "twitter"),
        f"{followers} followers. {t['twitter']['justification']}",
    ))

    checks.append(_check(
        "audit",
        not metrics.audits,
        t["audit"]["points"],
        overrides.gate(Category.CRASH, "audit"),
        t["audit"]["justification"],
    ))

    mcap, fdv = metrics.market_cap, metrics.fully_diluted_value
    diluted = mcap is not None and fdv is not None and mcap < t["market_cap"]["value"] * fdv
    checks.append(_check(
        "market_cap",
        diluted,
        t["market_cap"]["points"],
        overrides.gate(Category.CRASH, "market_cap"),
        f"Market cap {mcap} vs FDV {fdv}. {t['market_cap']['justification']}",
    ))

    return _finish(Category.CRASH, checks, overrides)


def calculate_liquidity_score(metrics: AssetMetrics, overrides: OverrideConfig) -> Dict[str, Any]:
    """DEX liquidity depth and holder breadth (0-3)."""
    t = LIQUIDITY_THRESHOLDS
    checks = []

    liquidity_points = _tiered_points(metrics.total_liquidity, t["total_liquidity"]["thresholds"])
    checks.append(_check(
        "total_liquidity",
        liquidity_points > 0,
        liquidity_points,
        overrides.gate(Category.LIQUIDITY, "total_liquidity"),
        f"Total liquidity ${metrics.total_liquidity}. {t['total_liquidity']['justification']}",
    ))

    lps = metrics.lp_addresses
    checks.append(_check(
        "lp_addresses",
        lps is not None and lps < t["lp_addresses"]["value"],
        t["lp_addresses"]["points"],
        overrides.gate(Category.LIQUIDITY, "lp_addresses"),
        f"{lps} addresses. {t['lp_addresses']['justification']}",
    ))

    return _finish(Category.LIQUIDITY, checks, overrides)


def calculate_volatility_score(metrics: AssetMetrics, overrides: OverrideConfig) -> Dict[str, Any]:
    """Market cap tier plus recent price change against pool parameters (0-4)."""
    t = VOLATILITY_THRESHOLDS
    checks = []

    tier_points = _tiered_points(metrics.market_cap, t["market_cap"]["thresholds"])
    checks.append(_check(
        "market_cap",
        tier_points > 0,
        tier_points,
        overrides.gate(Category.VOLATILITY, "market_cap"),
        f"Market cap ${metrics.market_cap}. {t['market_cap']['justification']}",
    ))

    cf = metrics.collateral_factor
    li = metrics.liquidation_incentive
    change = metrics.price_change
    triggered = False
    if change is not None:
        double_change = 2 * change
        slippage = cf / t["volatility"]["slippage_divisor"]
        triggered = (
            change > t["volatility"]["value"]
            and double_change < (1 - cf - li)
            and double_change < li - slippage
        )
    checks.append(_check(
        "volatility",
        triggered,
        t["volatility"]["points"],
        overrides.gate(Category.VOLATILITY, "volatility"),
        f"Price change {change}. {t['volatility']['justification']}",
    ))

    return _finish(Category.VOLATILITY, checks, overrides)


def calculate_historical_score(
    metrics: AssetMetrics,
    token_down: Optional[float],
    overrides: OverrideConfig,
) -> Dict[str, Any]:
    """
    Backtest result against pool parameters (0-1).

    token_down of None means the backtest did not run (flat market); that
    contributes 0, as does a zero token-down.
    """
    t = HISTORICAL_THRESHOLDS["backtest"]
    triggered = bool(token_down) and (
        metrics.collateral_factor > 1 - metrics.liquidation_incentive - token_down
    )
    justification = f"Token-down {token_down:.4f}. {t['justification']}" if triggered else ""

    checks = [_check(
        "backtest",
        triggered,
        t["points"],
        overrides.gate(Category.HISTORICAL, "backtest"),
        justification,
    )]
    return _finish(Category.HISTORICAL, checks, overrides)


# =============================================================================
# ASSET SCORE
# =============================================================================

def calculate_score_breakdown(
    metrics: AssetMetrics,
    token_down: Optional[float],
    overrides: OverrideConfig,
) -> Dict[str, Dict[str, Any]]:
    """All four category results keyed by category name."""
    return {
        Category.CRASH.value: calculate_crash_score(metrics, overrides),
        Category.LIQUIDITY.value: calculate_liquidity_score(metrics, overrides),
        Category.VOLATILITY.value: calculate_volatility_score(metrics, overrides),
        Category.HISTORICAL.value: calculate_historical_score(metrics, token_down, overrides),
    }


def score_asset(
    metrics: AssetMetrics,
    token_down: Optional[float],
    overrides: Optional[OverrideConfig] = None,
) -> ScoreBlock:
    """
    Score one asset.

    Args:
        metrics: Fetched signals plus pool parameters
        token_down: Backtest result, None when the backtest was skipped
        overrides: Per-asset test overrides (defaults to none in numeric mode)

    Returns:
        ScoreBlock with sub-scores, overall = max of the four, and breakdown
    """
    overrides = overrides or OverrideConfig.default()
    breakdown = calculate_score_breakdown(metrics, token_down, overrides)

    crash = breakdown["crash"]["score"]
    liquidity = breakdown["liquidity"]["score"]
    volatility = breakdown["volatility"]["score"]
    historical = breakdown["historical"]["score"]

    score = Score(
        address=metrics.address,
        symbol=metrics.symbol,
        crash=crash,
        liquidity=liquidity,
        volatility=volatility,
        historical=historical,
        overall=max(crash, liquidity, volatility, historical),
    )
    asset_info = AssetInfo(
        collateral_factor=metrics.collateral_factor,
        token_down=token_down,
        market_cap=metrics.market_cap,
    )
    return ScoreBlock(score=score, asset_info=asset_info, breakdown=breakdown)


def safe_score_block(address: str, symbol: str) -> ScoreBlock:
    """All-zero record, used only for the network's base asset."""
    return ScoreBlock(
        score=Score(address, symbol, crash=0, liquidity=0, volatility=0, historical=0, overall=0),
        asset_info=AssetInfo(collateral_factor=0, token_down=0, market_cap=0),
    )


def missing_score_block(address: str, symbol: str) -> ScoreBlock:
    """All-UNSCORED record for an asset whose data could not be fetched."""
    return ScoreBlock(
        score=Score(
            address, symbol,
            crash=UNSCORED, liquidity=UNSCORED, volatility=UNSCORED,
            historical=UNSCORED, overall=UNSCORED,
        ),
        asset_info=AssetInfo(),
    )


# =============================================================================
# POOL AGGREGATION
# =============================================================================

def calc_overall(blocks: Iterable[ScoreBlock]) -> SubScore:
    """Worst overall score among scored assets, UNSCORED if none was scored."""
    scored = [block.score.overall for block in blocks if block.score.is_scored]
    return max(scored) if scored else UNSCORED


def to_letter_grades(pool: PoolScore) -> Dict[str, Any]:
    """Pool result with every score mapped to its letter grade, keyed by address."""
    scores = {}
    for block in pool.scores:
        s = block.score
        scores[s.address] = {
            "address": s.address,
            "symbol": s.symbol,
            "historical": letter_grade(s.historical),
            "volatility": letter_grade(s.volatility),
            "crash": letter_grade(s.crash),
            "liquidity": letter_grade(s.liquidity),
            "overall": letter_grade(s.overall),
        }
    return {
        "poolID": pool.pool_id,
        "overall": letter_grade(pool.overall),
        "multisig": pool.multisig,
        "scores": scores,
        "scoreFails": [b.score.address for b in pool.scores if not b.score.is_scored],
        "lastUpdated": pool.last_updated,
    }


def get_score_justifications(block: ScoreBlock) -> List[dict]:
    """
    Flatten a ScoreBlock's breakdown for display.

    Returns:
        One entry per category followed by its triggered checks
    """
    justifications = []
    score = block.score
    justifications.append({
        "category": "Overall Score",
        "score": _plain(score.overall),
        "grade": letter_grade(score.overall),
        "justification": grade_info(score.overall)["description"],
    })

    for cat_key, cat_data in (block.breakdown or {}).items():
        entry = {
            "category": cat_key,
            "score": cat_data["score"],
            "grade": letter_grade(cat_data["score"]),
            "justification": "Manual override" if cat_data["overridden"] else "",
        }
        justifications.append(entry)
        for check in cat_data["checks"]:
            if check["triggered"]:
                justifications.append({
                    "category": f"  └─ {check['name']}",
                    "score": check["points"],
                    "justification": check["justification"] if check["applied"] else "Disabled by override",
                })

    return justifications
