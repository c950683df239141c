"""
Campaign Metrics Reconciliation Engine
Derives a complete, internally consistent set of campaign numbers from a
partially filled record (budget, cost per click/mille, rates, volumes)
"""

import logging
import math
from typing import Dict, Any, Optional, Mapping, Union

from plan_models import CampaignMetrics, PurchaseUnit, normalize_metric_keys
from units import to_fraction, to_percent

logger = logging.getLogger(__name__)

# Calendar-average month length used for daily budget (not the real month length)
DAYS_PER_MONTH = 30.4


def _number(value: Any) -> float:
    """Coerce a raw field to a usable number; unknown, invalid and negative values become 0"""
    if value is None or isinstance(value, bool):
        return 0.0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(number) or math.isinf(number) or number < 0:
        return 0.0
    return number


def _finite(value: float) -> float:
    return value if math.isfinite(value) and value > 0 else 0.0


def _divide(numerator: float, denominator: float) -> float:
    if denominator <= 0:
        return 0.0
    return _finite(numerator / denominator)


def _count(value: float) -> int:
    return int(round(_finite(value)))


def reconcile(
    partial: Union[Mapping[str, Any], CampaignMetrics, None],
    purchase_unit: Union[PurchaseUnit, str, None] = None
) -> CampaignMetrics:
    """
    Fill every unknown metric of a campaign from the ones that are known

    Derivation order:
      0. ctr from clicks/impressions when both volumes are given
      1. cpm from cpc and ctr, or 2. cpc from cpm and ctr
      3. budget bottom-up from volumes when budget is unknown
      4. volumes top-down from budget through the purchase unit's cost
         (falls back to cpm, then cpc, when the unit's cost is unknown),
         then ctr and the missing cost again once both volumes are known
      5. conversions, visits and leads from the whole number of clicks
      6. cpa, cpl and daily budget

    Volumes are rounded as soon as they are derived, so every later step
    sees the same numbers a second pass would see.

    Supplied values are never overwritten. Any zero denominator yields 0.

    Args:
        partial: Campaign fields (camelCase, snake_case or legacy Portuguese keys)
        purchase_unit: Billing basis; overrides any purchaseUnit in the record

    Returns:
        CampaignMetrics with rates as percentages
    """
    fields = normalize_metric_keys(partial) if partial else {}
    unit = PurchaseUnit.parse(purchase_unit) or PurchaseUnit.parse(fields.get('purchase_unit'))

    budget = _number(fields.get('budget'))
    cpc = _number(fields.get('cpc'))
    cpm = _number(fields.get('cpm'))
    ctr_pct = min(_number(fields.get('ctr')), 100.0)
    conversion_pct = min(_number(fields.get('conversion_rate')), 100.0)
    connect_pct = min(_number(fields.get('connect_rate')), 100.0)
    impressions = _count(_number(fields.get('impressions')))
    clicks = _count(_number(fields.get('clicks')))
    conversions = _count(_number(fields.get('conversions')))
    visits = _count(_number(fields.get('visits')))
    leads = _count(_number(fields.get('leads')))

    ctr = to_fraction(ctr_pct)
    conversion_rate = to_fraction(conversion_pct)
    connect_rate = to_fraction(connect_pct)

    # Step 0: observed click-through rate
    ctr = _observed_ctr(ctr, impressions, clicks)

    # Steps 1-2: express click value as impression value and back
    cpc, cpm = _link_costs(cpc, cpm, ctr)

    if budget == 0:
        # Step 3: bottom-up from volumes
        if clicks == 0 and impressions > 0:
            clicks = _count(impressions * ctr)
        elif impressions == 0 and clicks > 0 and ctr > 0:
            impressions = _count(clicks / ctr)
        budget = _budget_from_volumes(unit, impressions, clicks, cpc, cpm)

    if budget > 0:
        # Step 4: top-down from budget, only into volumes still unknown
        if unit == PurchaseUnit.PER_MILLE and cpm > 0:
            impressions, clicks = _volumes_from_cpm(budget, cpm, ctr, impressions, clicks)
        elif unit == PurchaseUnit.PER_CLICK and cpc > 0:
            impressions, clicks = _volumes_from_cpc(budget, cpc, ctr, impressions, clicks)
        elif cpm > 0:
            impressions, clicks = _volumes_from_cpm(budget, cpm, ctr, impressions, clicks)
        elif cpc > 0:
            impressions, clicks = _volumes_from_cpc(budget, cpc, ctr, impressions, clicks)

    # One volume supplied and the other derived from budget: the rate is observable now
    if ctr == 0:
        ctr = _observed_ctr(ctr, impressions, clicks)
        cpc, cpm = _link_costs(cpc, cpm, ctr)

    # Step 5: downstream counts come from whole clicks
    if conversions > 0:
        if conversion_rate == 0 and clicks > 0:
            conversion_rate = min(conversions / clicks, 1.0)
    else:
        conversions = clicks * conversion_rate
    conversions = _count(conversions)

    if visits == 0:
        visits = clicks * connect_rate
    visits = _count(visits)

    # Leads are the share of conversions that connect (canonical derivation)
    if leads == 0:
        leads = conversions * connect_rate
    leads = _count(leads)

    # Step 6: unit costs
    budget = _finite(budget)
    cpa = _divide(budget, conversions)
    cpl = _divide(budget, leads)
    daily_budget = _divide(budget, DAYS_PER_MONTH)

    metrics = CampaignMetrics(
        budget=budget,
        purchase_unit=unit,
        cpc=cpc,
        cpm=cpm,
        ctr=ctr_pct if ctr_pct > 0 else to_percent(ctr),
        conversion_rate=conversion_pct if conversion_pct > 0 else to_percent(conversion_rate),
        connect_rate=connect_pct,
        impressions=impressions,
        clicks=clicks,
        conversions=conversions,
        visits=visits,
        leads=leads,
        cpa=cpa,
        cpl=cpl,
        daily_budget=daily_budget,
    )

    logger.debug(f"[RECONCILE] unit={unit.value if unit else 'unknown'} budget={budget:.2f} "
                 f"impressions={impressions} clicks={clicks} conversions={conversions}")

    return metrics


def _observed_ctr(ctr: float, impressions: int, clicks: int) -> float:
    if ctr == 0 and impressions > 0 and clicks > 0:
        return min(clicks / impressions, 1.0)
    return ctr


def _link_costs(cpc: float, cpm: float, ctr: float):
    """Fill the missing one of cpc/cpm through the click-through rate"""
    if cpc > 0 and ctr > 0 and cpm == 0:
        cpm = _finite(cpc * ctr * 1000)
    elif cpm > 0 and ctr > 0 and cpc == 0:
        cpc = _divide(cpm, ctr * 1000)
    return cpc, cpm


def _volumes_from_cpm(budget: float, cpm: float, ctr: float, impressions: int, clicks: int):
    if impressions == 0:
        impressions = _count(_divide(budget, cpm) * 1000)
    if clicks == 0:
        clicks = _count(impressions * ctr)
    return impressions, clicks


def _volumes_from_cpc(budget: float, cpc: float, ctr: float, impressions: int, clicks: int):
    if clicks == 0:
        clicks = _count(_divide(budget, cpc))
    if impressions == 0 and ctr > 0:
        impressions = _count(clicks / ctr)
    return impressions, clicks


def _budget_from_volumes(unit: Optional[PurchaseUnit], impressions: float, clicks: float,
                         cpc: float, cpm: float) -> float:
    by_mille = impressions / 1000 * cpm if impressions > 0 and cpm > 0 else 0.0
    by_click = clicks * cpc if clicks > 0 and cpc > 0 else 0.0

    if unit == PurchaseUnit.PER_CLICK:
        return by_click or by_mille
    return by_mille or by_click


def reconcile_campaign(campaign: Mapping[str, Any],
                       purchase_unit: Union[PurchaseUnit, str, None] = None) -> Dict[str, Any]:
    """Reconcile a stored campaign dict, keeping its non-metric fields (id, name, channel...)"""
    metrics = reconcile(campaign, purchase_unit)
    return {**campaign, **metrics.to_dict()}
