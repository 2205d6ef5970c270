"""
Collateral Risk Thresholds and Justifications.

Each category adds points for every risk signal it finds. More points means
more risk. The asset's overall score is the worst (highest) category.

Thresholds are policy, not statistically derived. Each entry includes:
- value: The numeric threshold
- points: Points added when the metric crosses it
- justification: What the signal indicates
"""

# =============================================================================
# GRADE SCALE
# =============================================================================

GRADE_SCALE = {
    0: {
        "grade": "A",
        "label": "Safe",
        "risk_level": "Minimal Risk",
        "description": "No risk signal fired in any category.",
    },
    1: {
        "grade": "B",
        "label": "Low",
        "risk_level": "Low Risk",
        "description": "A single risk signal in the worst category.",
    },
    2: {
        "grade": "C",
        "label": "Moderate",
        "risk_level": "Moderate Risk",
        "description": "Two risk signals in the worst category. Monitor collateral factor.",
    },
    3: {
        "grade": "D",
        "label": "High",
        "risk_level": "High Risk",
        "description": "Three risk signals in the worst category. Collateral factor should be reduced.",
    },
}

# Any numeric score outside GRADE_SCALE
FALLBACK_GRADE = {
    "grade": "F",
    "label": "Severe",
    "risk_level": "Severe Risk",
    "description": "Risk signals exceed the graded range.",
}

UNSCORED_GRADE = {
    "grade": "unscored",
    "label": "Unscored",
    "risk_level": "Unknown",
    "description": "Asset data could not be fetched, no score was computed.",
}

# =============================================================================
# CRASH RISK
# =============================================================================

CRASH_THRESHOLDS = {
    "twitter": {
        "value": 500,
        "points": 1,
        "justification": "Fewer than 500 twitter followers: small community, little scrutiny",
    },
    "audit": {
        "points": 1,
        "trust_score": "green",
        "excluded_markets": ["uniswap"],
        "justification": "No reputable exchange lists the asset with a green trust score",
    },
    "market_cap": {
        "value": 0.03,
        "points": 1,
        "justification": "Market cap under 3% of fully diluted valuation: large future dilution",
    },
}

# =============================================================================
# LIQUIDITY RISK
# =============================================================================

LIQUIDITY_THRESHOLDS = {
    "total_liquidity": {
        # checked in order, first match wins
        "thresholds": [
            {"value": 200_000, "points": 2},
            {"value": 1_000_000, "points": 1},
        ],
        "justification": "Thin DEX liquidity: a liquidator cannot sell seized collateral without heavy slippage",
    },
    "lp_addresses": {
        "value": 100,
        "points": 1,
        "justification": "Fewer than 100 holder addresses: liquidity can disappear with a few withdrawals",
    },
}

# =============================================================================
# VOLATILITY RISK
# =============================================================================

VOLATILITY_THRESHOLDS = {
    "market_cap": {
        # checked in order, first match wins
        "thresholds": [
            {"value": 30_000_000, "points": 3},
            {"value": 100_000_000, "points": 2},
            {"value": 600_000_000, "points": 1},
        ],
        "justification": "Small market cap assets move further on the same flow",
    },
    "volatility": {
        "value": 0.1,
        "points": 1,
        "slippage_divisor": 2,
        "justification": "Recent price change large enough to outrun the liquidation incentive",
    },
}

# =============================================================================
# HISTORICAL RISK
# =============================================================================

HISTORICAL_THRESHOLDS = {
    "backtest": {
        "points": 1,
        "justification": "Historical token-down would have left positions undercollateralized "
                         "before liquidation (collateral factor > 1 - incentive - token-down)",
    },
}
