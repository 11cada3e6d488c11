# backlog_forecast.py

import logging
import math
from dataclasses import dataclass, field

import pandas as pd

from contours import ContourType, contour_weights, select_contour
from forecast_config import (
    DEFAULT_DURATION_RULES,
    LABOR,
    MAX_REMAINING_MONTHS,
    NEAR_HORIZON_MONTHS,
    NO_BACKLOG_LABOR_MONTHS,
    REVENUE,
    TRADES,
    YEAR_COLUMNS_AHEAD,
    clamp_months,
    estimate_duration,
    parse_num,
)
from overrides import OverrideEntry

logger = logging.getLogger(__name__)

# ------------------------------------------------------------------
# 1. CONTRACT RECORDS
# ------------------------------------------------------------------


@dataclass(frozen=True)
class TradeHours:
    key: str
    estimate: float = 0.0
    jtd: float = 0.0
    projected: float = 0.0

    @property
    def remaining(self) -> float:
        # projected hours when known, otherwise the original estimate
        return max(0.0, (self.projected or self.estimate) - self.jtd)


@dataclass(frozen=True)
class Contract:
    id: object
    contract_number: str = ""
    description: str = ""
    customer_name: str = ""
    contract_amount: float = 0.0
    backlog: float = 0.0
    earned_revenue: float = 0.0
    projected_revenue: float = 0.0
    trades: tuple = ()
    department_code: str = ""
    primary_market: str = ""
    project_manager_name: str = ""
    status: str = ""
    project_id: object = None
    override_end_months: int | None = None
    override_contour: ContourType | None = None

    @property
    def value(self) -> float:
        """Dollar value used to estimate duration."""
        return self.contract_amount or self.projected_revenue

    @property
    def percent_complete(self) -> float:
        if self.projected_revenue > 0:
            return self.earned_revenue / self.projected_revenue * 100
        return 0.0

    @property
    def remaining_hours(self) -> float:
        return sum(t.remaining for t in self.trades)


def _text(value) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and math.isnan(value):
        return ""
    return str(value).strip()


def _identifier(value):
    # pandas widens int id columns to float when any row is blank
    if isinstance(value, float):
        if math.isnan(value):
            return None
        if value.is_integer():
            return int(value)
    return value


def contract_from_row(row) -> Contract:
    """Build a Contract from a loosely typed row (dict or pandas Series)."""
    get = row.get

    trades = tuple(
        TradeHours(
            key=key,
            estimate=parse_num(get(f"{key}_hours_estimate")),
            jtd=parse_num(get(f"{key}_hours_jtd")),
            projected=parse_num(get(f"{key}_hours_projected")),
        )
        for key in TRADES
    )

    end_months = get("user_adjusted_end_months")
    contour = _text(get("user_selected_contour"))

    return Contract(
        id=_identifier(get("id")),
        contract_number=_text(get("contract_number")),
        description=_text(get("description")),
        customer_name=_text(get("customer_name")),
        contract_amount=parse_num(get("contract_amount")),
        backlog=parse_num(get("backlog")),
        earned_revenue=parse_num(get("earned_revenue")),
        projected_revenue=parse_num(get("projected_revenue")),
        trades=trades,
        department_code=_text(get("department_code")),
        primary_market=_text(get("primary_market")),
        project_manager_name=_text(get("project_manager_name")),
        status=_text(get("status")),
        project_id=_identifier(get("project_id")),
        override_end_months=clamp_months(end_months) if parse_num(end_months) else None,
        override_contour=ContourType.parse(contour) if contour else None,
    )


def load_contracts(source) -> tuple:
    """Accepts a DataFrame or any iterable of mappings."""
    if isinstance(source, pd.DataFrame):
        source = source.to_dict("records")
    contracts = tuple(contract_from_row(row) for row in source)
    logger.debug("loaded %d contracts", len(contracts))
    return contracts


# ------------------------------------------------------------------
# 2. FILTERS
# ------------------------------------------------------------------

@dataclass(frozen=True)
class ForecastFilters:
    status: str = "all"          # "all" (open + soft-closed), "Open", "Soft-Closed"
    department: str = ""
    market: str = ""
    project_manager: str = ""
    search: str = ""

    def matches(self, contract: Contract) -> bool:
        status = contract.status.lower()
        if self.status == "Open":
            if "open" not in status:
                return False
        elif self.status == "Soft-Closed":
            if "soft" not in status:
                return False
        elif "open" not in status and "soft" not in status:
            return False

        if self.department and contract.department_code != self.department:
            return False
        if self.market and contract.primary_market != self.market:
            return False
        if self.project_manager and contract.project_manager_name != self.project_manager:
            return False

        if self.search:
            needle = self.search.lower()
            haystack = (contract.contract_number, contract.description, contract.customer_name)
            if not any(needle in text.lower() for text in haystack):
                return False
        return True


def filter_contracts(contracts, filters: ForecastFilters) -> list:
    return [c for c in contracts if filters.matches(c)]


def filter_options(contracts) -> dict:
    return {
        "departments": sorted({c.department_code for c in contracts if c.department_code}),
        "markets": sorted({c.primary_market for c in contracts if c.primary_market}),
        "project_managers": sorted({c.project_manager_name for c in contracts if c.project_manager_name}),
    }


# ------------------------------------------------------------------
# 3. CALENDAR PERIODS
# ------------------------------------------------------------------

def month_of(as_of) -> pd.Period:
    if isinstance(as_of, pd.Period):
        return as_of.asfreq("M")
    return pd.Timestamp(as_of).to_period("M")


def current_month() -> pd.Period:
    return pd.Timestamp.today().normalize().to_period("M")


def month_key(month: pd.Period) -> str:
    return month.strftime("%Y-%m")


@dataclass(frozen=True)
class PeriodColumn:
    key: str
    label: str
    is_year: bool


def build_period_columns(as_of, near_horizon: int = NEAR_HORIZON_MONTHS) -> list:
    """
    Table columns: one per month of the near horizon, then one per calendar
    year (current .. current + 3) that has any month past the near horizon.
    """
    start = month_of(as_of)
    last_near = start + (near_horizon - 1)

    cols = [
        PeriodColumn(month_key(start + i), (start + i).strftime("%b %y"), False)
        for i in range(near_horizon)
    ]
    for year in range(start.year, start.year + YEAR_COLUMNS_AHEAD + 1):
        if pd.Period(year=year, month=12, freq="M") > last_near:
            cols.append(PeriodColumn(str(year), str(year), True))
    return cols


# ------------------------------------------------------------------
# 4. REMAINING PERIODS
# ------------------------------------------------------------------

def remaining_periods(value, percent_complete, rules=DEFAULT_DURATION_RULES, override_months=None) -> int:
    """
    Months left on a contract, always in [1, 36].

    A user override is clamped and used as-is; otherwise the rule-based total
    duration is scaled by the share of work not yet done.
    """
    if override_months is not None:
        return clamp_months(override_months)

    total_duration = estimate_duration(parse_num(value), rules)
    months_remaining = math.ceil(total_duration * (1 - parse_num(percent_complete) / 100))
    return clamp_months(months_remaining)


# ------------------------------------------------------------------
# 5. DISTRIBUTION
# ------------------------------------------------------------------

@dataclass(frozen=True)
class PeriodSeries:
    monthly: dict          # "YYYY-MM" -> value, every distributed month
    yearly: dict           # "YYYY" -> value, months past the near horizon only
    last_near_month: str   # "YYYY-MM" of the final near-horizon month
    total: float

    def table_values(self) -> dict:
        """Keys for the table view; a month is counted either monthly or in its year, never both."""
        values = {k: v for k, v in self.monthly.items() if k <= self.last_near_month}
        values.update(self.yearly)
        return values


def distribute(quantity, periods, weights, as_of, near_horizon: int = NEAR_HORIZON_MONTHS):
    """
    Spread `quantity` over `periods` months starting at `as_of`.

    Returns None when there is nothing left to spread, so the caller can
    leave the contract out of the forecast rather than carry a zero row.
    """
    quantity = parse_num(quantity)
    if quantity <= 0:
        return None

    periods = max(1, int(periods))
    start = month_of(as_of)
    last_near = start + (near_horizon - 1)
    base = quantity / periods

    monthly: dict = {}
    yearly: dict = {}
    for i in range(periods):
        month = start + i
        value = float(base * weights[i])

        key = month_key(month)
        monthly[key] = monthly.get(key, 0.0) + value

        if month > last_near:
            year_key = str(month.year)
            yearly[year_key] = yearly.get(year_key, 0.0) + value

    return PeriodSeries(monthly, yearly, month_key(last_near), quantity)


# ------------------------------------------------------------------
# 6. PER-CONTRACT PROJECTIONS
# ------------------------------------------------------------------

@dataclass(frozen=True)
class Projection:
    contract: Contract
    kind: str
    remaining_periods: int
    contour: ContourType
    is_auto_contour: bool
    percent_complete: float
    projected_end: str
    series: dict = field(default_factory=dict)   # quantity name -> PeriodSeries
    total_remaining: float = 0.0

    def monthly(self) -> dict:
        return _combine(s.monthly for s in self.series.values())

    def table_values(self) -> dict:
        return _combine(s.table_values() for s in self.series.values())

    @property
    def monthly_burn_rate(self) -> float:
        return self.total_remaining / self.remaining_periods


def _combine(maps) -> dict:
    combined: dict = {}
    for values in maps:
        for key, value in values.items():
            combined[key] = combined.get(key, 0.0) + value
    return combined


def _override(overrides, contract: Contract) -> OverrideEntry:
    overrides = overrides or {}
    return overrides.get(contract.id) or overrides.get(str(contract.id)) or OverrideEntry()


def _projection(contract, kind, periods, choice, as_of, series, total) -> Projection:
    return Projection(
        contract=contract,
        kind=kind,
        remaining_periods=periods,
        contour=choice.contour,
        is_auto_contour=choice.is_auto,
        percent_complete=contract.percent_complete,
        projected_end=month_key(month_of(as_of) + periods),
        series=series,
        total_remaining=total,
    )


def project_revenue(contract: Contract, rules, overrides, as_of):
    """Spread the contract's revenue backlog; None when there is no backlog."""
    if contract.backlog <= 0:
        return None

    entry = _override(overrides, contract)
    pct = contract.percent_complete
    periods = remaining_periods(contract.value, pct, rules, entry.end_months)
    choice = select_contour(pct, entry.contour)

    weights = contour_weights(periods, choice.contour)
    series = distribute(contract.backlog, periods, weights, as_of)
    return _projection(contract, REVENUE, periods, choice, as_of, {REVENUE: series}, contract.backlog)


def project_labor(contract: Contract, rules, overrides, as_of):
    """Spread each trade's remaining hours; None when no trade has hours left."""
    total_hours = contract.remaining_hours
    if total_hours <= 0:
        return None

    entry = _override(overrides, contract)
    pct = contract.percent_complete
    if contract.backlog > 0 or entry.end_months is not None:
        periods = remaining_periods(contract.value, pct, rules, entry.end_months)
    else:
        periods = NO_BACKLOG_LABOR_MONTHS
    choice = select_contour(pct, entry.contour)

    weights = contour_weights(periods, choice.contour)
    series = {}
    for trade in contract.trades:
        trade_series = distribute(trade.remaining, periods, weights, as_of)
        if trade_series is not None:
            series[trade.key] = trade_series
    return _projection(contract, LABOR, periods, choice, as_of, series, total_hours)


PROJECTORS = {
    REVENUE: project_revenue,
    LABOR: project_labor,
}


def project_contracts(contracts, kind, rules, overrides, as_of) -> list:
    """Project every contract, dropping those with nothing left, largest first."""
    project = PROJECTORS[kind]
    results = []
    for contract in contracts:
        projection = project(contract, rules, overrides, as_of)
        if projection is not None:
            results.append(projection)

    if kind == REVENUE:
        results.sort(key=lambda p: p.contract.projected_revenue, reverse=True)
    else:
        results.sort(key=lambda p: p.total_remaining, reverse=True)

    logger.debug(
        "%s projections: %d of %d contracts (horizon %d months)",
        kind, len(results), len(contracts), MAX_REMAINING_MONTHS,
    )
    return results
