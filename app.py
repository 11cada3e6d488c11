# app.py

import logging
import os

import matplotlib.pyplot as plt
import matplotlib.ticker as ticker
import pandas as pd
import streamlit as st

from backlog_forecast import (
    ForecastFilters,
    current_month,
    filter_options,
    load_contracts,
    month_key,
)
from contours import ContourType
from forecast_config import (
    HOURS_PER_PERSON_MONTH,
    LABOR,
    MAX_REMAINING_MONTHS,
    REVENUE,
    TRADES,
    DurationRuleSet,
)
from forecast_rollups import ForecastInputs, cached_forecast, table_frame
from overrides import JsonOverrideStore, OverrideBook

logging.basicConfig(level=os.environ.get("FORECAST_LOG_LEVEL", "INFO"))

CONTRACTS_PATH = os.environ.get("FORECAST_CONTRACTS_PATH", "contracts.csv")
OVERRIDES_PATH = os.environ.get("FORECAST_OVERRIDES_PATH", "projection_overrides.json")

st.set_page_config(page_title="Backlog Forecast (Revenue + Labor)", layout="wide")

st.title("Backlog Forecast (Projected Revenue + Labor Hours)")

# -------------------------------------------------
# 1. Load contracts (cached) + overrides (once per session)
# -------------------------------------------------


@st.cache_data(show_spinner=True)
def load_contract_rows(path: str) -> pd.DataFrame:
    if path.lower().endswith((".xlsx", ".xls")):
        return pd.read_excel(path)
    return pd.read_csv(path)


if st.button("Load / Refresh contracts"):
    st.cache_data.clear()
    st.session_state.pop("override_book", None)

rows = load_contract_rows(CONTRACTS_PATH)
contracts = load_contracts(rows)

if "override_book" not in st.session_state:
    st.session_state["override_book"] = OverrideBook.load(JsonOverrideStore(OVERRIDES_PATH), contracts)
if "duration_rules" not in st.session_state:
    st.session_state["duration_rules"] = DurationRuleSet.default()

book: OverrideBook = st.session_state["override_book"]

st.caption(f"{len(contracts):,} contracts loaded from {CONTRACTS_PATH}; {len(book):,} overrides.")
if book.load_error:
    st.warning(f"Saved overrides could not be read; using contract values only. ({book.load_error})")

# -------------------------------------------------
# 2. Sidebar – filters and settings
# -------------------------------------------------

options = filter_options(contracts)

st.sidebar.header("Filters")
kind = st.sidebar.radio("Forecast", [REVENUE, LABOR], format_func=str.title)
status = st.sidebar.selectbox(
    "Status", ["all", "Open", "Soft-Closed"],
    format_func=lambda s: "Open + Soft-Closed" if s == "all" else s,
)
department = st.sidebar.selectbox("Department", [""] + options["departments"], format_func=lambda d: d or "All Departments")
market = st.sidebar.selectbox("Market", [""] + options["markets"], format_func=lambda m: m or "All Markets")
pm = st.sidebar.selectbox("Project Manager", [""] + options["project_managers"], format_func=lambda p: p or "All PMs")
search = st.sidebar.text_input("Search", placeholder="Contract, customer...")

hours_per_person = HOURS_PER_PERSON_MONTH
if kind == LABOR:
    hours_per_person = st.sidebar.number_input(
        "Hours per person per month", min_value=100, max_value=220, value=HOURS_PER_PERSON_MONTH, step=1
    )

st.sidebar.markdown("### Duration Rules")
st.sidebar.caption("Expected total duration by contract value; remaining months scale with % complete.")
rules: DurationRuleSet = st.session_state["duration_rules"]
for index, rule in enumerate(rules):
    months = st.sidebar.number_input(rule.label, min_value=1, max_value=MAX_REMAINING_MONTHS, value=rule.months, step=1, key=f"rule_{index}")
    if months != rule.months:
        rules = rules.with_months(index, months)
if st.sidebar.button("Reset duration rules"):
    rules = rules.reset()
    for index in range(len(rules)):
        st.session_state.pop(f"rule_{index}", None)
    st.session_state["duration_rules"] = rules
    st.rerun()
st.session_state["duration_rules"] = rules

# -------------------------------------------------
# 3. Run forecast (memoized on filters, rules, overrides, month)
# -------------------------------------------------

as_of = current_month()
inputs = ForecastInputs(
    as_of=as_of,
    kind=kind,
    rules=rules,
    overrides=book.snapshot(),
    filters=ForecastFilters(status, department, market, pm, search),
    hours_per_person=hours_per_person,
)
result = cached_forecast(contracts, inputs)
rollup = result.rollup

unit = "hrs" if kind == LABOR else "$"
st.markdown(
    f"**{len(result.projections):,} projects** | Total remaining: "
    f"**{rollup.grand_total:,.0f} {unit}**"
    + (f" | Peak headcount: **{rollup.peak_headcount:,.1f}**" if kind == LABOR else "")
)

# -------------------------------------------------
# 3a. Table view (12 months + yearly buckets)
# -------------------------------------------------

table = table_frame(result.projections, result.columns)
labels = {c.key: c.label for c in result.columns}
info = pd.DataFrame(
    [
        {
            "contract_id": p.contract.id,
            "Contract": p.contract.contract_number,
            "Description": p.contract.description,
            "PM": p.contract.project_manager_name,
            "% Complete": round(p.percent_complete, 1),
            "Remaining": p.total_remaining,
            "Months": p.remaining_periods,
            "Contour": p.contour.label + ("" if p.is_auto_contour else " *"),
        }
        for p in result.projections
    ],
    columns=["contract_id", "Contract", "Description", "PM", "% Complete", "Remaining", "Months", "Contour"],
).set_index("contract_id")

st.subheader("Projection Table")
st.caption("Contours marked * are user overrides; others are picked from % complete.")
st.dataframe(info.join(table.rename(columns=labels)), use_container_width=True)

totals_row = pd.DataFrame([rollup.column_totals]).rename(columns=labels)
if kind == LABOR:
    trade_rows = pd.DataFrame(rollup.trade_column_totals).T.rename(index=TRADES, columns=labels)
    totals_row.index = ["TOTAL"]
    st.dataframe(pd.concat([trade_rows, totals_row]), use_container_width=True)
else:
    st.dataframe(totals_row, use_container_width=True, hide_index=True)

st.download_button(
    "Download table (CSV)",
    info.join(table).to_csv().encode("utf-8"),
    file_name=f"forecast_{kind}_{month_key(as_of)}.csv",
    mime="text/csv",
)

# -------------------------------------------------
# 3b. Overrides (end months + contour)
# -------------------------------------------------

st.subheader("Projection Overrides")
for save in st.session_state.pop("override_saves", []):
    if save.ok:
        st.success(f"Saved override for contract {save.contract_id}.")
    else:
        st.error(f"Override kept locally but not saved: {save.error}")

if result.projections:
    ids = [p.contract.id for p in result.projections]
    by_id = {p.contract.id: p for p in result.projections}
    chosen = st.selectbox(
        "Contract", ids,
        format_func=lambda cid: f"{by_id[cid].contract.contract_number} – {by_id[cid].contract.description}",
    )
    current = by_id[chosen]
    col1, col2, col3 = st.columns(3)
    new_months = col1.number_input("End (months from now)", min_value=1, max_value=MAX_REMAINING_MONTHS, value=current.remaining_periods)
    contour_options = list(ContourType)
    new_contour = col2.selectbox("Contour", contour_options, index=contour_options.index(current.contour), format_func=lambda c: c.label)
    col3.markdown(f"Mode: **{book.mode(chosen).value}**")

    saves = []
    if col1.button("Save end months"):
        saves.append(book.set_end_months(chosen, new_months))
    if col2.button("Save contour"):
        saves.append(book.set_contour(chosen, new_contour))
    if col3.button("Clear overrides"):
        saves.append(book.clear(chosen))
    if st.button(f"Reset all overrides ({len(book)})"):
        saves.extend(book.clear_all())

    if saves:
        # recompute with the new overrides; report the saves on the next pass
        st.session_state["override_saves"] = saves
        st.rerun()
else:
    st.info("No projects with remaining work match the current filters.")

# -------------------------------------------------
# 3c. Charts
# -------------------------------------------------

plt.style.use("classic")

st.subheader(f"Next {MAX_REMAINING_MONTHS} Months")
fig1, ax1 = plt.subplots(figsize=(12, 4))
monthly = rollup.monthly_totals
if kind == LABOR:
    stacked = (rollup.trade_monthly_totals / rollup.hours_per_person).rename(columns=TRADES)
    stacked.plot(kind="bar", stacked=True, ax=ax1, width=0.8)
    ax1.set_ylabel("Headcount")
else:
    colors = "#3b82f6"
    if rollup.budget_status is not None:
        colors = rollup.budget_status.map({"over": "#ef4444", "under": "#10b981", "on": "#3b82f6"}).tolist()
    ax1.bar(range(len(monthly)), monthly.values, color=colors)
    if rollup.monthly_budget:
        ax1.axhline(rollup.monthly_budget, color="#f59e0b", linestyle="--", label=f"Budget ({rollup.monthly_budget:,.0f}/mo)")
        ax1.legend(loc="upper right")
        st.caption("Red: over budget, green: under budget.")
    ax1.set_xticks(range(len(monthly)))
    ax1.set_xticklabels(monthly.index, rotation=90)
    ax1.set_ylabel("Projected Revenue")
    ax1.yaxis.set_major_formatter(ticker.StrMethodFormatter("{x:,.0f}"))
ax1.grid(True, axis="y")
st.pyplot(fig1)

col_a, col_b = st.columns(2)
with col_a:
    st.subheader("By Year")
    fig2, ax2 = plt.subplots(figsize=(6, 4))
    ax2.bar(rollup.yearly_totals.index, rollup.yearly_totals.values, color="#1e40af")
    ax2.yaxis.set_major_formatter(ticker.StrMethodFormatter("{x:,.0f}"))
    st.pyplot(fig2)
with col_b:
    st.subheader("By Quarter")
    st.dataframe(rollup.quarter_totals, use_container_width=True, hide_index=True)

col_c, col_d = st.columns(2)
with col_c:
    st.subheader("By Department")
    st.bar_chart(rollup.by_department)
with col_d:
    st.subheader("Top Project Managers")
    st.bar_chart(rollup.top_managers())

if kind == LABOR:
    st.subheader("Remaining Hours by Trade")
    st.dataframe(
        pd.DataFrame(
            [
                {"Trade": label, "Hours": rollup.trade_totals.get(key, 0.0),
                 "Person-months": rollup.headcount(rollup.trade_totals.get(key, 0.0))}
                for key, label in TRADES.items()
            ]
        ),
        use_container_width=True,
        hide_index=True,
    )
