# ventbox/matches/plans.py
from dataclasses import dataclass


@dataclass(frozen=True)
class Plan:
    name: str
    duration_minutes: int
    price: str

    @property
    def duration_seconds(self) -> int:
        return self.duration_minutes * 60


PLANS = (
    Plan(name="10-Min Vent", duration_minutes=10, price="$0.99"),
    Plan(name="20-Min Vent", duration_minutes=20, price="$1.99"),
    Plan(name="30-Min Vent", duration_minutes=30, price="$2.99"),
)

DEFAULT_PLAN = PLANS[1]


def find_plan(name: str):
    for plan in PLANS:
        if plan.name == name:
            return plan
    return None


def plan_duration_seconds(name: str) -> int:
    # 모르는 plan 이면 20분
    plan = find_plan(name)
    return plan.duration_seconds if plan else DEFAULT_PLAN.duration_seconds
