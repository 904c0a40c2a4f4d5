"""Tests for the revenue impact model."""

from decimal import Decimal

import pytest

from linkguard.config import Settings
from linkguard.links.types import LinkStatus
from linkguard.revenue.impact import (
    CONSERVATIVE_SETTINGS,
    DEFAULT_SETTINGS,
    ImpactModel,
    RevenueSettings,
    risk_level,
    settings_for_niche,
    to_cents,
    validate_settings,
)


@pytest.fixture
def model():
    return ImpactModel()


class TestImpact:
    """Tests for per-link loss estimates."""

    def test_dead_link_scenario(self, model):
        loss = model.impact(120000, LinkStatus.NOT_FOUND, DEFAULT_SETTINGS, age_months=24)
        assert loss == Decimal("135.00")

    def test_ok_link_costs_nothing(self, model):
        assert model.impact(1_000_000, LinkStatus.OK, DEFAULT_SETTINGS, age_months=24) == Decimal("0.00")

    def test_zero_views(self, model):
        assert model.impact(0, LinkStatus.NOT_FOUND, DEFAULT_SETTINGS) == Decimal("0.00")

    def test_negative_views_clamp_to_zero(self, model):
        assert model.impact(-500, LinkStatus.NOT_FOUND, DEFAULT_SETTINGS) == Decimal("0.00")

    def test_monotonic_in_views(self, model):
        losses = [model.impact(v, LinkStatus.OOS, DEFAULT_SETTINGS, age_months=24) for v in (1000, 10000, 100000)]
        assert losses == sorted(losses)

    def test_severity_orders_statuses(self, model):
        def loss(status):
            return model.impact(120000, status, DEFAULT_SETTINGS, age_months=24)

        assert loss(LinkStatus.NOT_FOUND) > loss(LinkStatus.SEARCH_REDIRECT) > loss(LinkStatus.OOS)
        assert loss(LinkStatus.OOS) > loss(LinkStatus.UNKNOWN) > loss(LinkStatus.OK)

    def test_commission_is_applied(self, model):
        rs = RevenueSettings(ctr_percent=2, conversion_percent=3, avg_order_value=45, commission_percent=4)
        assert model.impact(120000, LinkStatus.NOT_FOUND, rs, age_months=24) == Decimal("5.40")

    def test_conservative_profile_is_lower(self, model):
        default = model.impact(120000, LinkStatus.OOS, DEFAULT_SETTINGS, age_months=24)
        conservative = model.impact(
            120000, LinkStatus.OOS, CONSERVATIVE_SETTINGS, age_months=24, conservative=True
        )
        assert conservative < default

    def test_rounds_half_up_to_cents(self):
        assert to_cents(Decimal("0.125")) == Decimal("0.13")
        assert to_cents(Decimal("-3")) == Decimal("0.00")


class TestMonthlyViews:
    """Tests for monthly view estimation."""

    def test_young_content_uses_floor(self, model):
        assert model.estimate_monthly_views(12000, age_months=2) == Decimal("1000")

    def test_old_content_is_damped(self, model):
        assert model.estimate_monthly_views(48000, age_months=48) == Decimal("500")

    def test_evergreen_content_is_not_damped(self, model):
        assert model.estimate_monthly_views(48000, age_months=48, evergreen=True) == Decimal("1000")

    def test_actual_views_win(self, model):
        assert model.estimate_monthly_views(48000, age_months=48, actual_monthly_views=321) == Decimal("321")


class TestAggregation:
    """Tests for exposure and reporting helpers."""

    def test_exposure_tiers(self, model):
        assert model.exposure_multiplier(1) == Decimal("1.0")
        assert model.exposure_multiplier(5) == Decimal("1.2")
        assert model.exposure_multiplier(19) == Decimal("1.4")
        assert model.exposure_multiplier(50) == Decimal("1.6")

    def test_aggregate_applies_multiplier(self, model):
        total = model.aggregate([Decimal("10.00"), Decimal("15.00")], affected_items=5)
        assert total == Decimal("30.00")

    def test_annualize(self):
        assert ImpactModel.annualize(Decimal("135.00")) == Decimal("1620.00")

    def test_leakage_breakdown(self, model):
        breakdown = model.leakage_breakdown([
            (LinkStatus.NOT_FOUND, Decimal("10.00")),
            (LinkStatus.NOT_FOUND, Decimal("5.00")),
            (LinkStatus.MISSING_TAG, Decimal("2.50")),
            (LinkStatus.UNKNOWN, Decimal("99.00")),
        ])
        assert breakdown["dead_links"]["count"] == 2
        assert breakdown["dead_links"]["monthly_loss"] == Decimal("15.00")
        assert breakdown["dead_links"]["annual_loss"] == Decimal("180.00")
        assert breakdown["missing_tags"]["count"] == 1
        assert breakdown["out_of_stock"]["count"] == 0

    @pytest.mark.parametrize(
        "loss,level",
        [(Decimal("0"), "low"), (Decimal("10"), "medium"), (Decimal("50"), "high"), (Decimal("250"), "critical")],
    )
    def test_risk_level(self, loss, level):
        assert risk_level(loss) == level


class TestSettings:
    """Tests for revenue settings helpers."""

    def test_validate_settings(self):
        assert validate_settings(DEFAULT_SETTINGS) == []
        bad = RevenueSettings(ctr_percent=150, conversion_percent=-1, avg_order_value=-5, commission_percent=80)
        assert len(validate_settings(bad)) == 4

    def test_niche_presets(self):
        tech = settings_for_niche("tech")
        assert tech.avg_order_value == 350.0
        assert tech.niche == "tech"
        assert settings_for_niche("underwater-basketry").niche == "default"

    def test_severity_overrides_from_settings(self):
        config = Settings(severity_overrides={"oos": 0.9, "bogus": 1.0})
        model = ImpactModel.from_settings(config)
        assert model.severity_for(LinkStatus.OOS) == Decimal("0.9")
        assert model.severity_for(LinkStatus.NOT_FOUND) == Decimal("1.0")
