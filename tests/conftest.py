import pandas as pd
import pytest

from backlog_forecast import Contract, TradeHours


@pytest.fixture
def as_of():
    return pd.Period("2026-10", freq="M")


@pytest.fixture
def make_contract():
    def _make(**kwargs):
        defaults = dict(
            id=1,
            contract_number="C-1001",
            description="Hospital HVAC retrofit",
            customer_name="County Health",
            contract_amount=1_000_000.0,
            backlog=600_000.0,
            earned_revenue=400_000.0,
            projected_revenue=1_000_000.0,
            department_code="10-30",
            primary_market="Healthcare",
            project_manager_name="Pat Lee",
            status="Open",
        )
        defaults.update(kwargs)
        return Contract(**defaults)

    return _make


@pytest.fixture
def trades():
    return (
        TradeHours("pf", estimate=1000, jtd=400, projected=1200),
        TradeHours("sm", estimate=500, jtd=500),
        TradeHours("pl", estimate=300, jtd=0),
    )
