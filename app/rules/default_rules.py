"""
FraudGuard — Default Fraud Rules (seed data)
These are inserted at first-run if the fraud_rules table is empty.
Amounts are in BDT; channels are the local mobile-money / card / bank rails.
"""

from decimal import Decimal

# Each dict maps directly onto FraudRule columns.

DEFAULT_RULES = [
    # ---------------------------------------------------------------
    # 1. High-value single transaction
    # ---------------------------------------------------------------
    {
        "code": "HIGH_AMOUNT",
        "description": "Single transaction of BDT 10 000 or more.",
        "kind": "AMOUNT_THRESHOLD",
        "amount_threshold": Decimal("10000"),
        "risk_points": 30,
    },
    # ---------------------------------------------------------------
    # 2. Rapid-fire transactions from one account
    # ---------------------------------------------------------------
    {
        "code": "FREQ_TXN",
        "description": "Three or more transactions from the same account within 5 minutes.",
        "kind": "FREQUENCY_WINDOW",
        "freq_count_limit": 3,
        "freq_window_min": 5,
        "risk_points": 25,
    },
    # ---------------------------------------------------------------
    # 3. Very high-value (critical threshold)
    # ---------------------------------------------------------------
    {
        "code": "CRITICAL_AMOUNT",
        "description": "Single transaction of BDT 100 000 or more.",
        "kind": "AMOUNT_THRESHOLD",
        "amount_threshold": Decimal("100000"),
        "risk_points": 20,
    },
    # ---------------------------------------------------------------
    # 4. Sustained burst over an hour
    # ---------------------------------------------------------------
    {
        "code": "HOURLY_BURST",
        "description": "Ten or more transactions from the same account within 60 minutes.",
        "kind": "FREQUENCY_WINDOW",
        "freq_count_limit": 10,
        "freq_window_min": 60,
        "risk_points": 20,
    },
]
