"""Revenue impact model.

Estimated monthly loss for one link:

    monthly_views * ctr * conversion * avg_order_value * severity [* commission]

Every rate is converted to a per-view fraction once (percent / 100) and all
arithmetic is done in Decimal, rounded half-up to cents. Results are never
negative.
"""

import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from types import MappingProxyType
from typing import Iterable, Mapping, Optional, Sequence

from linkguard.config import Settings, settings
from linkguard.links.types import LinkStatus

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")
ZERO = Decimal("0")
HUNDRED = Decimal("100")


def _decimal(value) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def to_cents(value) -> Decimal:
    """Round to currency precision, clamping at zero."""
    return max(_decimal(value), ZERO).quantize(CENTS, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class RevenueSettings:
    """Per-account revenue assumptions, all in percent except AOV."""

    ctr_percent: float
    conversion_percent: float
    avg_order_value: float
    commission_percent: Optional[float] = None  # None: report gross merchandise value lost
    niche: str = "default"


DEFAULT_SETTINGS = RevenueSettings(ctr_percent=2.0, conversion_percent=3.0, avg_order_value=45.0)

# Lower estimates for anonymous audits so public numbers are never overstated
CONSERVATIVE_SETTINGS = RevenueSettings(
    ctr_percent=1.0,
    conversion_percent=1.5,
    avg_order_value=45.0,
    commission_percent=3.0,
)


def _severity_table(values: Mapping[LinkStatus, float]) -> MappingProxyType:
    missing = set(LinkStatus) - set(values)
    if missing:
        raise RuntimeError(f"Severity table missing: {sorted(s.value for s in missing)}")
    return MappingProxyType({status: float(values[status]) for status in LinkStatus})


# Assumed fraction of a link's revenue lost, by status
SEVERITY_FACTORS = _severity_table({
    LinkStatus.NOT_FOUND: 1.0,
    LinkStatus.MISSING_TAG: 1.0,  # Link works, no commission earned
    LinkStatus.SEARCH_REDIRECT: 0.6,
    LinkStatus.OOS: 0.5,  # Storefront still shows similar items
    LinkStatus.OOS_THIRD_PARTY: 0.3,
    LinkStatus.REDIRECT: 0.3,
    LinkStatus.UNKNOWN: 0.2,
    LinkStatus.OK: 0.0,
})

CONSERVATIVE_SEVERITY_FACTORS = _severity_table({
    LinkStatus.NOT_FOUND: 1.0,
    LinkStatus.MISSING_TAG: 1.0,
    LinkStatus.SEARCH_REDIRECT: 0.5,
    LinkStatus.OOS: 0.4,
    LinkStatus.OOS_THIRD_PARTY: 0.2,
    LinkStatus.REDIRECT: 0.2,
    LinkStatus.UNKNOWN: 0.1,
    LinkStatus.OK: 0.0,
})

# (minimum affected items, multiplier), ascending
DEFAULT_EXPOSURE_TIERS: tuple[tuple[int, float], ...] = ((1, 1.0), (5, 1.2), (10, 1.4), (20, 1.6))


@dataclass(frozen=True)
class NichePreset:
    ctr_percent: float
    conversion_percent: float
    avg_order_value: float
    commission_percent: float
    evergreen: bool


NICHE_PRESETS = MappingProxyType({
    "tech": NichePreset(5.0, 1.0, 350.0, 4.0, False),
    "gaming": NichePreset(4.0, 1.5, 150.0, 4.0, False),
    "finance": NichePreset(4.0, 2.0, 100.0, 5.0, True),
    "beauty": NichePreset(3.0, 6.0, 35.0, 4.0, False),
    "fitness": NichePreset(3.0, 4.0, 60.0, 4.0, True),
    "food": NichePreset(2.5, 5.0, 40.0, 4.0, True),
    "education": NichePreset(2.0, 3.0, 50.0, 4.0, True),
    "lifestyle": NichePreset(1.5, 3.0, 45.0, 4.0, False),
    "default": NichePreset(2.0, 3.0, 45.0, 4.0, False),
})


def settings_for_niche(niche: str) -> RevenueSettings:
    """Revenue settings from a niche preset (unknown niches use the default preset)."""
    preset = NICHE_PRESETS.get(niche) or NICHE_PRESETS["default"]
    return RevenueSettings(
        ctr_percent=preset.ctr_percent,
        conversion_percent=preset.conversion_percent,
        avg_order_value=preset.avg_order_value,
        commission_percent=preset.commission_percent,
        niche=niche if niche in NICHE_PRESETS else "default",
    )


def is_niche_evergreen(niche: str) -> bool:
    preset = NICHE_PRESETS.get(niche)
    return preset.evergreen if preset else False


def validate_settings(revenue_settings: RevenueSettings) -> list[str]:
    """Return validation errors; an empty list means the settings are usable."""
    errors = []
    if not 0 <= revenue_settings.ctr_percent <= 100:
        errors.append("CTR must be between 0 and 100%")
    if not 0 <= revenue_settings.conversion_percent <= 100:
        errors.append("Conversion rate must be between 0 and 100%")
    if revenue_settings.avg_order_value < 0:
        errors.append("Average order value must be positive")
    elif revenue_settings.avg_order_value > 10000:
        errors.append("Average order value seems too high")
    if revenue_settings.commission_percent is not None and not 0 <= revenue_settings.commission_percent <= 50:
        errors.append("Commission rate must be between 0 and 50%")
    return errors


def risk_level(monthly_loss) -> str:
    """Bucket a monthly loss into low / medium / high / critical."""
    loss = _decimal(monthly_loss)
    if loss >= 100:
        return "critical"
    if loss >= 50:
        return "high"
    if loss >= 10:
        return "medium"
    return "low"


# Status -> leakage report category (UNKNOWN is never reported as leakage)
LEAKAGE_CATEGORIES = MappingProxyType({
    LinkStatus.NOT_FOUND: "dead_links",
    LinkStatus.SEARCH_REDIRECT: "search_redirects",
    LinkStatus.MISSING_TAG: "missing_tags",
    LinkStatus.OOS: "out_of_stock",
    LinkStatus.OOS_THIRD_PARTY: "third_party_only",
    LinkStatus.REDIRECT: "redirects",
})


class ImpactModel:
    """Estimates revenue lost to broken links."""

    def __init__(
        self,
        severity: Optional[Mapping[LinkStatus, float]] = None,
        conservative_severity: Optional[Mapping[LinkStatus, float]] = None,
        exposure_tiers: Optional[Sequence[tuple[int, float]]] = None,
        floor_months: int = 12,
        long_tail_after_months: int = 36,
        long_tail_factor: float = 0.5,
    ):
        self.severity = _severity_table(severity or SEVERITY_FACTORS)
        self.conservative_severity = _severity_table(conservative_severity or CONSERVATIVE_SEVERITY_FACTORS)
        tiers = sorted(exposure_tiers or DEFAULT_EXPOSURE_TIERS)
        self.exposure_tiers = tuple((int(n), _decimal(m)) for n, m in tiers)
        self.floor_months = max(1, floor_months)
        self.long_tail_after_months = long_tail_after_months
        self.long_tail_factor = _decimal(long_tail_factor)

    @classmethod
    def from_settings(cls, config: Settings = settings) -> "ImpactModel":
        """Build a model from application settings, applying severity overrides."""
        severity = dict(SEVERITY_FACTORS)
        for name, value in config.severity_overrides.items():
            try:
                severity[LinkStatus(name.upper())] = float(value)
            except ValueError:
                logger.warning(f"Ignoring severity override for unknown status {name!r}")
        return cls(
            severity=severity,
            exposure_tiers=config.exposure_tiers,
            floor_months=config.monthly_views_floor_months,
            long_tail_after_months=config.long_tail_after_months,
            long_tail_factor=config.long_tail_factor,
        )

    def severity_for(self, status: LinkStatus, conservative: bool = False) -> Decimal:
        table = self.conservative_severity if conservative else self.severity
        return _decimal(table[status])

    def estimate_monthly_views(
        self,
        lifetime_views: int,
        age_months: float,
        evergreen: bool = False,
        actual_monthly_views: Optional[int] = None,
    ) -> Decimal:
        """
        Estimate current monthly views from lifetime views.

        The age floor keeps brand-new content from looking like it gets all of
        its views every month; content past the long-tail age is damped unless
        it is evergreen.

        Args:
            lifetime_views: Total views the content has received
            age_months: Content age in months
            evergreen: Content that keeps its audience (exempt from damping)
            actual_monthly_views: Measured monthly views, used as-is when given

        Returns:
            Estimated monthly views
        """
        if actual_monthly_views is not None and actual_monthly_views >= 0:
            return _decimal(actual_monthly_views)

        lifetime = max(_decimal(lifetime_views), ZERO)
        months = max(_decimal(age_months), _decimal(self.floor_months))
        monthly = lifetime / months

        if not evergreen and _decimal(age_months) > self.long_tail_after_months:
            monthly *= self.long_tail_factor
        return monthly

    def impact(
        self,
        view_count: int,
        status: LinkStatus,
        revenue_settings: RevenueSettings = DEFAULT_SETTINGS,
        age_months: float = 12,
        evergreen: bool = False,
        actual_monthly_views: Optional[int] = None,
        conservative: bool = False,
    ) -> Decimal:
        """Estimated monthly revenue lost to one link, in currency units."""
        severity = self.severity_for(status, conservative)
        if severity <= 0:
            return to_cents(ZERO)

        monthly_views = self.estimate_monthly_views(view_count, age_months, evergreen, actual_monthly_views)
        value = (
            monthly_views
            * _decimal(revenue_settings.ctr_percent) / HUNDRED
            * _decimal(revenue_settings.conversion_percent) / HUNDRED
            * _decimal(revenue_settings.avg_order_value)
            * severity
        )
        if revenue_settings.commission_percent is not None:
            value = value * _decimal(revenue_settings.commission_percent) / HUNDRED
        return to_cents(value)

    def exposure_multiplier(self, affected_items: int) -> Decimal:
        """Step-function multiplier for many simultaneously affected items."""
        multiplier = Decimal("1")
        for threshold, tier_multiplier in self.exposure_tiers:
            if affected_items >= threshold:
                multiplier = tier_multiplier
        return multiplier

    def aggregate(self, impacts: Iterable, affected_items: int) -> Decimal:
        """Sum per-link impacts and apply the exposure multiplier."""
        total = sum((_decimal(i) for i in impacts), ZERO)
        return to_cents(total * self.exposure_multiplier(affected_items))

    @staticmethod
    def annualize(monthly) -> Decimal:
        return to_cents(_decimal(monthly) * 12)

    def leakage_breakdown(self, items: Iterable[tuple[LinkStatus, Decimal]]) -> dict[str, dict]:
        """
        Group monthly losses into report categories.

        Args:
            items: (status, monthly impact) pairs

        Returns:
            Category -> {"count", "monthly_loss", "annual_loss"}
        """
        breakdown = {
            category: {"count": 0, "monthly_loss": ZERO, "annual_loss": ZERO}
            for category in LEAKAGE_CATEGORIES.values()
        }
        for status, monthly in items:
            category = LEAKAGE_CATEGORIES.get(status)
            if category is None:
                continue
            bucket = breakdown[category]
            bucket["count"] += 1
            bucket["monthly_loss"] += _decimal(monthly)

        for bucket in breakdown.values():
            bucket["monthly_loss"] = to_cents(bucket["monthly_loss"])
            bucket["annual_loss"] = self.annualize(bucket["monthly_loss"])
        return breakdown


impact_model = ImpactModel.from_settings()
