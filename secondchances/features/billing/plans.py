"""
Static subscription plan catalog.

Plans are defined at deploy time and never persisted; a user's only
durable link to billing is users.subscription_id.
"""
from dataclasses import dataclass, asdict
from typing import Dict, List, Optional


@dataclass(frozen=True)
class Plan:
    plan_id: str
    name: str
    price: int  # minor currency units
    interval: str  # "month" | "year"
    interval_count: int = 1

    def to_dict(self) -> Dict[str, object]:
        return asdict(self)


PLANS: Dict[str, Plan] = {
    plan.plan_id: plan
    for plan in (
        Plan("monthly", "Monthly", 999, "month"),
        Plan("quarterly", "3 Months", 2499, "month", 3),
        Plan("semi-annual", "6 Months", 4499, "month", 6),
        Plan("annual", "12 Months", 7999, "year"),
    )
}


def get_plan(plan_id: Optional[str]) -> Optional[Plan]:
    if not plan_id:
        return None
    return PLANS.get(plan_id)


def list_plans() -> List[Plan]:
    return list(PLANS.values())
