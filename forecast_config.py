# forecast_config.py

import math
from dataclasses import dataclass, replace

import pandas as pd

# ------------------------------------------------------------------
# 1. HORIZON / CAPACITY CONSTANTS
# ------------------------------------------------------------------

NEAR_HORIZON_MONTHS = 12          # months shown individually in the table view
MAX_REMAINING_MONTHS = 36         # projection never runs past 3 years
MIN_REMAINING_MONTHS = 1
FALLBACK_DURATION_MONTHS = 24     # used when no duration rule matches
YEAR_COLUMNS_AHEAD = 3            # year columns run current year .. current + 3
QUARTER_COUNT = MAX_REMAINING_MONTHS // 3
NO_BACKLOG_LABOR_MONTHS = 3       # hours remain but revenue backlog is gone

HOURS_PER_PERSON_MONTH = 173      # 2080 / 12, rounded
MIN_HOURS_PER_PERSON_MONTH = 100
MAX_HOURS_PER_PERSON_MONTH = 220

# Labor disciplines tracked on every contract: key -> label
TRADES = {
    "pf": "Pipefitter",
    "sm": "Sheet Metal",
    "pl": "Plumber",
}

REVENUE = "revenue"
LABOR = "labor"

# Annual revenue budget per department code; the revenue chart compares
# each month against budget / 12 when one of these departments is selected
DEPARTMENT_ANNUAL_BUDGETS = {
    "10-30": 115_000_000,
}


def monthly_budget(department, budgets=None):
    """Monthly revenue budget for a department, or None when it has none."""
    annual = (DEPARTMENT_ANNUAL_BUDGETS if budgets is None else budgets).get(department)
    if not annual:
        return None
    return annual / 12


def parse_num(value) -> float:
    """Lenient numeric coercion: None, blanks, NaN and junk all become 0."""
    if value is None or (isinstance(value, str) and not value.strip()):
        return 0.0
    try:
        num = float(pd.to_numeric(value, errors="coerce"))
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(num):
        return 0.0
    return num


def clamp_months(months) -> int:
    """Clamp a month count into [1, 36]."""
    return max(MIN_REMAINING_MONTHS, min(MAX_REMAINING_MONTHS, int(parse_num(months))))


def clamp_hours_per_person(hours) -> float:
    hours = parse_num(hours) or HOURS_PER_PERSON_MONTH
    return max(MIN_HOURS_PER_PERSON_MONTH, min(MAX_HOURS_PER_PERSON_MONTH, hours))


# ------------------------------------------------------------------
# 2. DURATION RULES (contract value -> expected total months)
# ------------------------------------------------------------------

@dataclass(frozen=True)
class DurationRule:
    min_value: float      # inclusive
    max_value: float      # exclusive
    months: int
    label: str

    def matches(self, value: float) -> bool:
        return self.min_value <= value < self.max_value


DEFAULT_DURATION_RULES = (
    DurationRule(0, 500_000, 3, "$0 - $500K"),
    DurationRule(500_000, 2_000_000, 6, "$500K - $2M"),
    DurationRule(2_000_000, 5_000_000, 8, "$2M - $5M"),
    DurationRule(5_000_000, 10_000_000, 12, "$5M - $10M"),
    DurationRule(10_000_000, math.inf, 24, "$10M+"),
)


def estimate_duration(value: float, rules) -> int:
    """First rule whose half-open range holds `value` wins; otherwise 24 months."""
    for rule in rules:
        if rule.matches(value):
            return rule.months
    return FALLBACK_DURATION_MONTHS


@dataclass(frozen=True)
class DurationRuleSet:
    """Ordered, immutable rule list. Edits return a new set so it can key a cache."""

    rules: tuple = DEFAULT_DURATION_RULES

    @classmethod
    def default(cls) -> "DurationRuleSet":
        return cls(DEFAULT_DURATION_RULES)

    def estimate(self, value: float) -> int:
        return estimate_duration(value, self.rules)

    def with_months(self, index: int, months) -> "DurationRuleSet":
        """Edit one rule's duration; months are clamped to [1, 36]."""
        rules = list(self.rules)
        rules[index] = replace(rules[index], months=clamp_months(months))
        return DurationRuleSet(tuple(rules))

    def reset(self) -> "DurationRuleSet":
        return DurationRuleSet.default()

    def __iter__(self):
        return iter(self.rules)

    def __len__(self):
        return len(self.rules)
