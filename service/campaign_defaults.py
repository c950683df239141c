"""
Default metric seeds per campaign objective
Benchmarks applied to AI-generated campaigns before reconciliation, for any
metric the model did not propose. Rates are percentages.
"""

from typing import Dict, Any

DEFAULT_METRICS_BY_OBJECTIVE: Dict[str, Dict[str, Any]] = {
    'Awareness': {
        'purchaseUnit': 'PerMille',
        'cpm': 12.0,
        'ctr': 0.8,
        'conversionRate': 0.5,
        'connectRate': 70.0,
    },
    'Consideration': {
        'purchaseUnit': 'PerClick',
        'cpc': 1.8,
        'ctr': 1.5,
        'conversionRate': 2.0,
        'connectRate': 75.0,
    },
    'Conversion': {
        'purchaseUnit': 'PerClick',
        'cpc': 3.2,
        'ctr': 2.5,
        'conversionRate': 5.0,
        'connectRate': 80.0,
    },
    'Retargeting': {
        'purchaseUnit': 'PerClick',
        'cpc': 2.4,
        'ctr': 3.0,
        'conversionRate': 7.0,
        'connectRate': 85.0,
    },
}

OBJECTIVE_ALIASES = {
    'awareness': 'Awareness',
    'reconhecimento': 'Awareness',
    'alcance': 'Awareness',
    'reach': 'Awareness',
    'consideration': 'Consideration',
    'consideração': 'Consideration',
    'consideracao': 'Consideration',
    'traffic': 'Consideration',
    'tráfego': 'Consideration',
    'trafego': 'Consideration',
    'conversion': 'Conversion',
    'conversão': 'Conversion',
    'conversao': 'Conversion',
    'leads': 'Conversion',
    'retargeting': 'Retargeting',
    'remarketing': 'Retargeting',
}

# Funnel stages in plan order; early months lean to the first, late months to the last
FUNNEL_STAGES = ('Awareness', 'Consideration', 'Conversion')


def canonical_objective(name: str) -> str:
    """Map a campaign type as written by the LLM to its canonical objective, '' if unknown"""
    if not name:
        return ''
    return OBJECTIVE_ALIASES.get(name.strip().lower(), '')


def defaults_for_objective(name: str) -> Dict[str, Any]:
    objective = canonical_objective(name)
    return dict(DEFAULT_METRICS_BY_OBJECTIVE.get(objective, {}))
