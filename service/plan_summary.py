"""
Plan summaries: totals, averages and per-channel budgets, overall and per month
"""

import logging
from typing import Dict, List, Any, Iterable, Mapping

from plan_models import MONTHS_LIST

logger = logging.getLogger(__name__)

OTHER_CHANNEL = 'Outros'


def _value(campaign: Mapping[str, Any], *keys: str) -> float:
    """First present numeric value among keys; invalid or missing counts as 0"""
    for key in keys:
        if campaign.get(key) is not None:
            try:
                return float(campaign[key])
            except (TypeError, ValueError):
                return 0.0
    return 0.0


def calculate_summary(campaigns: Iterable[Mapping[str, Any]]) -> Dict[str, Any]:
    """
    Summarize a list of stored campaigns

    Averages are ratios of totals, so a campaign with a large budget weighs
    more than a small one. Zero denominators yield 0.
    """
    campaigns = list(campaigns)

    total_budget = sum(_value(c, 'budget') for c in campaigns)
    total_impressions = sum(_value(c, 'impressions', 'impressoes') for c in campaigns)
    total_clicks = sum(_value(c, 'clicks', 'cliques') for c in campaigns)
    total_conversions = sum(_value(c, 'conversions', 'conversoes') for c in campaigns)
    total_reach = sum(_value(c, 'reach', 'alcance') for c in campaigns)

    channel_budgets: Dict[str, float] = {}
    for campaign in campaigns:
        channel = campaign.get('channel') or campaign.get('canal') or OTHER_CHANNEL
        channel_budgets[channel] = channel_budgets.get(channel, 0.0) + _value(campaign, 'budget')

    return {
        'budget': total_budget,
        'impressions': int(total_impressions),
        'reach': int(total_reach),
        'clicks': int(total_clicks),
        'conversions': int(total_conversions),
        'channelBudgets': channel_budgets,
        'ctr': total_clicks / total_impressions * 100 if total_impressions > 0 else 0.0,
        'cpc': total_budget / total_clicks if total_clicks > 0 else 0.0,
        'cpm': total_budget / total_impressions * 1000 if total_impressions > 0 else 0.0,
        'cpa': total_budget / total_conversions if total_conversions > 0 else 0.0,
        'conversionRate': total_conversions / total_clicks * 100 if total_clicks > 0 else 0.0,
    }


def _month_sort_key(key: str):
    year, _, month_name = key.partition('-')
    try:
        year_value = int(year)
    except ValueError:
        year_value = 0
    month_index = MONTHS_LIST.index(month_name) if month_name in MONTHS_LIST else len(MONTHS_LIST)
    return year_value, month_index


def sort_month_keys(keys: Iterable[str]) -> List[str]:
    """Order 'YYYY-Mês' keys chronologically; unknown month names go last within their year"""
    return sorted(keys, key=_month_sort_key)


def calculate_plan_summary(plan: Mapping[str, Any]) -> Dict[str, Any]:
    """Overall summary plus one summary per month, months in chronological order"""
    months = plan.get('months') or {}

    monthly_summary = {}
    all_campaigns: List[Mapping[str, Any]] = []
    for month_key in sort_month_keys(months):
        campaigns = months[month_key]
        if not isinstance(campaigns, list):
            logger.warning(f"⚠️ Month {month_key} of plan {plan.get('id')} is not a list - skipped")
            continue
        monthly_summary[month_key] = calculate_summary(campaigns)
        all_campaigns.extend(campaigns)

    return {
        'summary': calculate_summary(all_campaigns),
        'monthlySummary': monthly_summary,
    }
