# forecast_rollups.py

import logging
from dataclasses import dataclass, field
from functools import lru_cache

import numpy as np
import pandas as pd

from backlog_forecast import (
    ForecastFilters,
    build_period_columns,
    filter_contracts,
    month_key,
    month_of,
    project_contracts,
)
from forecast_config import (
    HOURS_PER_PERSON_MONTH,
    LABOR,
    MAX_REMAINING_MONTHS,
    QUARTER_COUNT,
    REVENUE,
    TRADES,
    YEAR_COLUMNS_AHEAD,
    DurationRuleSet,
    clamp_hours_per_person,
    monthly_budget,
)

logger = logging.getLogger(__name__)

UNKNOWN_DEPARTMENT = "Unknown"
UNASSIGNED_MANAGER = "Unassigned"

# ------------------------------------------------------------------
# 1. FRAMES
# ------------------------------------------------------------------


def table_frame(projections, columns, series_name=None) -> pd.DataFrame:
    """
    Table view: one row per contract, one column per period key.

    With `series_name` only that quantity (e.g. one trade) is included.
    """
    keys = [c.key for c in columns]
    index, records = [], []
    for p in projections:
        if series_name is None:
            values = p.table_values()
        else:
            series = p.series.get(series_name)
            values = series.table_values() if series is not None else {}
        index.append(p.contract.id)
        records.append([values.get(k, 0.0) for k in keys])

    return pd.DataFrame(
        records,
        index=pd.Index(index, name="contract_id"),
        columns=keys,
        dtype=float,
    )


def monthly_frame(projections) -> pd.DataFrame:
    """Long format: one row per contract x quantity x distributed month."""
    rows = []
    for p in projections:
        for name, series in p.series.items():
            for key, value in series.monthly.items():
                rows.append({
                    "contract_id": p.contract.id,
                    "series": name,
                    "month": key,
                    "year": key[:4],
                    "value": value,
                })
    frame = pd.DataFrame(rows, columns=["contract_id", "series", "month", "year", "value"])
    frame["value"] = frame["value"].astype(float)
    return frame


def _contract_totals(projections) -> pd.DataFrame:
    return pd.DataFrame(
        [
            {
                "department": p.contract.department_code or UNKNOWN_DEPARTMENT,
                "manager": p.contract.project_manager_name or UNASSIGNED_MANAGER,
                "total": p.total_remaining,
            }
            for p in projections
        ],
        columns=["department", "manager", "total"],
    ).astype({"total": float})


def _grouped(totals: pd.DataFrame, by: str) -> pd.Series:
    return totals.groupby(by)["total"].sum().sort_values(ascending=False)


def _sums(frame: pd.DataFrame, by: str, keys) -> pd.Series:
    return frame.groupby(by)["value"].sum().reindex(keys, fill_value=0.0).astype(float)


def _budget_status(monthly_totals: pd.Series, budget):
    if not budget:
        return None
    status = np.select(
        [monthly_totals > budget, monthly_totals < budget],
        ["over", "under"],
        default="on",
    )
    return pd.Series(status, index=monthly_totals.index)


# ------------------------------------------------------------------
# 2. ROLLUP
# ------------------------------------------------------------------

@dataclass(frozen=True)
class ForecastRollup:
    kind: str
    column_totals: dict            # period key -> total
    trade_column_totals: dict      # trade -> period key -> hours (labor only)
    monthly_totals: pd.Series      # 36 months from as-of, "YYYY-MM" index
    yearly_totals: pd.Series       # calendar year -> total of its future months
    quarter_totals: pd.DataFrame   # quarter, start, total (+ headcount for labor)
    by_department: pd.Series
    by_manager: pd.Series
    trade_totals: dict             # trade -> remaining hours (labor only)
    grand_total: float
    trade_monthly_totals: pd.DataFrame = None   # 36 months x trade (labor only)
    hours_per_person: float = HOURS_PER_PERSON_MONTH
    monthly_budget: float | None = None         # revenue budget per month, when the department has one
    budget_status: pd.Series | None = None      # "YYYY-MM" -> "over" / "under" / "on"

    def headcount(self, hours: float) -> float:
        return hours / self.hours_per_person

    @property
    def peak_headcount(self) -> float:
        if self.monthly_totals.empty:
            return 0.0
        return self.headcount(float(self.monthly_totals.max()))

    def top_managers(self, n: int = 10) -> pd.Series:
        return self.by_manager.head(n)


def aggregate_projections(
    projections, columns, as_of, kind=REVENUE, hours_per_person=HOURS_PER_PERSON_MONTH, monthly_budget=None
) -> ForecastRollup:
    hours_per_person = clamp_hours_per_person(hours_per_person)
    start = month_of(as_of)
    months = [month_key(start + i) for i in range(MAX_REMAINING_MONTHS)]
    years = [str(start.year + y) for y in range(YEAR_COLUMNS_AHEAD + 1)]

    column_totals = table_frame(projections, columns).sum().to_dict()

    trade_column_totals = {}
    trade_totals = {}
    if kind == LABOR:
        for trade in TRADES:
            trade_column_totals[trade] = table_frame(projections, columns, trade).sum().to_dict()
            trade_totals[trade] = sum(
                p.series[trade].total for p in projections if trade in p.series
            )

    long = monthly_frame(projections)
    monthly_totals = _sums(long, "month", months)
    trade_monthly_totals = None
    if kind == LABOR:
        trade_monthly_totals = pd.DataFrame(
            {
                trade: _sums(long[long["series"] == trade], "month", months)
                for trade in TRADES
            },
            index=months,
        )
    yearly_totals = _sums(long, "year", years)

    # rolling quarters from as-of; each one is three consecutive months
    # whether or not those months sit inside the near horizon
    quarters = []
    for q in range(QUARTER_COUNT):
        first = start + 3 * q
        quarters.append({
            "quarter": f"Q{first.quarter} {first.year}",
            "start": month_key(first),
            "total": float(monthly_totals.iloc[3 * q:3 * q + 3].sum()),
        })
    quarter_totals = pd.DataFrame(quarters, columns=["quarter", "start", "total"])
    if kind == LABOR:
        # average people on site per month across the quarter
        quarter_totals["headcount"] = quarter_totals["total"] / 3 / hours_per_person

    totals = _contract_totals(projections)

    rollup = ForecastRollup(
        kind=kind,
        column_totals=column_totals,
        trade_column_totals=trade_column_totals,
        monthly_totals=monthly_totals,
        yearly_totals=yearly_totals,
        quarter_totals=quarter_totals,
        by_department=_grouped(totals, "department"),
        by_manager=_grouped(totals, "manager"),
        trade_totals=trade_totals,
        grand_total=float(totals["total"].sum()),
        trade_monthly_totals=trade_monthly_totals,
        hours_per_person=hours_per_person,
        monthly_budget=monthly_budget,
        budget_status=_budget_status(monthly_totals, monthly_budget),
    )
    logger.debug("%s rollup: %d projections, grand total %.2f", kind, len(projections), rollup.grand_total)
    return rollup


# ------------------------------------------------------------------
# 3. FORECAST PASS (pure, memoized on its inputs)
# ------------------------------------------------------------------

@dataclass(frozen=True)
class ForecastInputs:
    as_of: object                                   # month the forecast starts in
    kind: str = REVENUE
    rules: DurationRuleSet = DurationRuleSet()
    overrides: tuple = ()                           # ((contract id, OverrideEntry), ...)
    filters: ForecastFilters = ForecastFilters()
    hours_per_person: float = HOURS_PER_PERSON_MONTH


@dataclass(frozen=True)
class ForecastResult:
    inputs: ForecastInputs
    columns: list
    projections: list = field(default_factory=list)
    rollup: ForecastRollup | None = None


def build_forecast(contracts, inputs: ForecastInputs) -> ForecastResult:
    filtered = filter_contracts(contracts, inputs.filters)
    projections = project_contracts(
        filtered, inputs.kind, inputs.rules, dict(inputs.overrides), inputs.as_of
    )
    columns = build_period_columns(inputs.as_of)
    budget = monthly_budget(inputs.filters.department) if inputs.kind == REVENUE else None
    rollup = aggregate_projections(
        projections, columns, inputs.as_of, inputs.kind, inputs.hours_per_person, budget
    )
    return ForecastResult(inputs, columns, projections, rollup)


@lru_cache(maxsize=32)
def cached_forecast(contracts: tuple, inputs: ForecastInputs) -> ForecastResult:
    """
    Same as build_forecast; `contracts` must be a tuple so the pair can key the cache.

    Equal inputs get the very same ForecastResult back, frames included, so
    callers must treat its Series and DataFrames as read-only (`.copy()` first
    to modify).
    """
    return build_forecast(contracts, inputs)
