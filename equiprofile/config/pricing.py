"""
Pricing table - the single source of truth for plans shown to users.

Amounts are in pence. Stripe price IDs are not part of this table; they
come from Settings so they can differ per environment.
"""

import copy
from typing import Any, Dict

from equiprofile.entitlements.policy import TRIAL_PERIOD_DAYS

PRICING_PLANS: Dict[str, Dict[str, Any]] = {
    "trial": {
        "name": "Free Trial",
        "horses": 1,
        "price": 0,
        "currency": "gbp",
        "interval": "trial",
        "duration": TRIAL_PERIOD_DAYS,
        "features": [
            f"{TRIAL_PERIOD_DAYS}-day free trial",
            "1 horse only",
            "ALL features enabled",
            "Basic health records",
            "Training session logging",
            "Secure storage",
            "Email support",
        ],
    },
    "pro": {
        "name": "Pro",
        "horses": 5,
        "monthly": {"amount": 799, "currency": "gbp", "interval": "month"},
        "yearly": {"amount": 7990, "currency": "gbp", "interval": "year"},
        "features": [
            "Up to 5 horses",
            "Complete health tracking",
            "Advanced training logs",
            "Competition results",
            "Secure storage",
            "AI weather analysis (50/day)",
            "Email reminders",
            "Export to CSV/PDF",
        ],
    },
    "stable": {
        "name": "Stable",
        "horses": 20,
        "monthly": {"amount": 3000, "currency": "gbp", "interval": "month"},
        "yearly": {"amount": 30000, "currency": "gbp", "interval": "year"},
        "features": [
            "Everything in Pro, plus:",
            "Up to 20 horses",
            "Unlimited team members",
            "Role-based permissions",
            "Stable management",
            "Secure storage",
            "Unlimited AI weather",
            "Advanced analytics",
            "Priority email support",
            "WhatsApp support",
        ],
    },
}


def get_public_plans() -> Dict[str, Dict[str, Any]]:
    """Copy of the pricing table safe to hand to a response serializer."""
    return copy.deepcopy(PRICING_PLANS)
