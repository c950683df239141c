"""
Media plan data model
Campaign metrics, plan constraints, generation drafts and the tagged
result returned by the generation service
"""

from dataclasses import dataclass, field, asdict
from enum import Enum
from types import MappingProxyType
from typing import Dict, List, Any, Optional, Mapping, Tuple

# Canonical month names used in stored plan keys ("2026-Fevereiro")
MONTHS_LIST = [
    'Janeiro', 'Fevereiro', 'Março', 'Abril', 'Maio', 'Junho',
    'Julho', 'Agosto', 'Setembro', 'Outubro', 'Novembro', 'Dezembro'
]


class PurchaseUnit(str, Enum):
    PER_CLICK = 'PerClick'
    PER_MILLE = 'PerMille'

    @classmethod
    def parse(cls, value: Any) -> Optional['PurchaseUnit']:
        """Lenient parsing: accepts enum members, 'PerClick', 'cpc', 'CPM', ..."""
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            return None
        normalized = value.strip().lower().replace('_', '').replace('-', '').replace(' ', '')
        if normalized in ('perclick', 'cpc', 'click'):
            return cls.PER_CLICK
        if normalized in ('permille', 'cpm', 'mille', 'impressions'):
            return cls.PER_MILLE
        return None


# camelCase (stored plan) -> snake_case (CampaignMetrics attribute)
METRIC_FIELD_ALIASES = {
    'budget': 'budget',
    'purchaseUnit': 'purchase_unit',
    'cpc': 'cpc',
    'cpm': 'cpm',
    'ctr': 'ctr',
    'conversionRate': 'conversion_rate',
    'connectRate': 'connect_rate',
    'impressions': 'impressions',
    'clicks': 'clicks',
    'conversions': 'conversions',
    'visits': 'visits',
    'leads': 'leads',
    'cpa': 'cpa',
    'cpl': 'cpl',
    'dailyBudget': 'daily_budget',
    # Portuguese keys used by older stored plans
    'taxaConversao': 'conversion_rate',
    'impressoes': 'impressions',
    'cliques': 'clicks',
    'conversoes': 'conversions',
    'visitas': 'visits',
    'orcamentoDiario': 'daily_budget',
}


@dataclass
class CampaignMetrics:
    """Fully reconciled campaign numbers. Rates are percentages (0-100)."""
    budget: float = 0.0
    purchase_unit: Optional[PurchaseUnit] = None
    cpc: float = 0.0
    cpm: float = 0.0
    ctr: float = 0.0
    conversion_rate: float = 0.0
    connect_rate: float = 0.0
    impressions: int = 0
    clicks: int = 0
    conversions: int = 0
    visits: int = 0
    leads: int = 0
    cpa: float = 0.0
    cpl: float = 0.0
    daily_budget: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        """Serialize with the camelCase keys used by stored plans"""
        return {
            'budget': self.budget,
            'purchaseUnit': self.purchase_unit.value if self.purchase_unit else None,
            'cpc': self.cpc,
            'cpm': self.cpm,
            'ctr': self.ctr,
            'conversionRate': self.conversion_rate,
            'connectRate': self.connect_rate,
            'impressions': self.impressions,
            'clicks': self.clicks,
            'conversions': self.conversions,
            'visits': self.visits,
            'leads': self.leads,
            'cpa': self.cpa,
            'cpl': self.cpl,
            'dailyBudget': self.daily_budget,
        }


def normalize_metric_keys(data: Mapping[str, Any]) -> Dict[str, Any]:
    """Map camelCase/Portuguese metric keys to CampaignMetrics attribute names"""
    if isinstance(data, CampaignMetrics):
        return asdict(data)

    snake_fields = set(CampaignMetrics.__dataclass_fields__)
    normalized = {}
    for key, value in data.items():
        if key in snake_fields:
            normalized[key] = value
        elif key in METRIC_FIELD_ALIASES:
            normalized.setdefault(METRIC_FIELD_ALIASES[key], value)
    return normalized


@dataclass(frozen=True)
class PlanConstraints:
    """Period and budget extracted from a planning request. Months are 0-based."""
    start_month: int
    start_year: int
    end_month: int
    end_year: int
    month_count: int
    total_budget: float

    def __post_init__(self):
        if self.month_count < 1:
            raise ValueError(f"month_count must be >= 1, got {self.month_count}")
        if self.total_budget <= 0:
            raise ValueError(f"total_budget must be > 0, got {self.total_budget}")

    def month_keys(self) -> List[str]:
        """Bucket keys in chronological order, e.g. ['2026-Fevereiro', '2026-Março']"""
        keys = []
        month, year = self.start_month, self.start_year
        for _ in range(self.month_count):
            keys.append(f"{year}-{MONTHS_LIST[month]}")
            month += 1
            if month == 12:
                month = 0
                year += 1
        return keys

    def bucket_budgets(self) -> List[float]:
        return bucket_budgets(self.total_budget, self.month_count)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'startMonth': self.start_month,
            'startYear': self.start_year,
            'endMonth': self.end_month,
            'endYear': self.end_year,
            'monthCount': self.month_count,
            'totalBudget': self.total_budget,
            'monthKeys': self.month_keys(),
        }


def bucket_budgets(total_budget: float, month_count: int) -> List[float]:
    """
    Split a total budget across month buckets

    Every bucket but the last gets round(total / count); the last bucket
    absorbs the remainder so the sum is exactly the total.
    """
    if month_count < 1:
        raise ValueError(f"month_count must be >= 1, got {month_count}")

    share = round(total_budget / month_count)
    buckets = [share] * (month_count - 1)
    buckets.append(total_budget - sum(buckets))
    return buckets


@dataclass(frozen=True)
class CampaignDraft:
    """One campaign as proposed by the generation service"""
    name: str
    campaign_type: str
    channel: str
    format: str
    budget: float
    metric_seeds: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))

    def with_format(self, new_format: str) -> 'CampaignDraft':
        return CampaignDraft(self.name, self.campaign_type, self.channel, new_format,
                             self.budget, self.metric_seeds)

    def with_budget(self, new_budget: float, metric_seeds: Optional[Mapping[str, Any]] = None) -> 'CampaignDraft':
        seeds = self.metric_seeds if metric_seeds is None else MappingProxyType(dict(metric_seeds))
        return CampaignDraft(self.name, self.campaign_type, self.channel, self.format,
                             new_budget, seeds)


@dataclass(frozen=True)
class GeneratedPlanDraft:
    """Immutable result of one generation request"""
    campaign_name: str
    objective: str
    target_audience: str
    location: str
    total_investment: float
    ai_image_prompt: str
    months: Tuple[Tuple[str, Tuple[CampaignDraft, ...]], ...]

    def month_map(self) -> Dict[str, Tuple[CampaignDraft, ...]]:
        return dict(self.months)

    def total_budget(self) -> float:
        return sum(c.budget for _, campaigns in self.months for c in campaigns)


class PlanDraftBuilder:
    """Mutable draft owned by a single generation request until build()"""

    def __init__(self, campaign_name: str = '', objective: str = '', target_audience: str = '',
                 location: str = '', total_investment: float = 0.0, ai_image_prompt: str = ''):
        self.campaign_name = campaign_name
        self.objective = objective
        self.target_audience = target_audience
        self.location = location
        self.total_investment = total_investment
        self.ai_image_prompt = ai_image_prompt
        self.months: Dict[str, List[CampaignDraft]] = {}

    def add_campaign(self, month_key: str, campaign: CampaignDraft):
        self.months.setdefault(month_key, []).append(campaign)

    def campaigns(self):
        """Iterate (month_key, index, campaign) over every draft campaign"""
        for month_key, campaigns in self.months.items():
            for index, campaign in enumerate(campaigns):
                yield month_key, index, campaign

    def replace_campaign(self, month_key: str, index: int, campaign: CampaignDraft):
        self.months[month_key][index] = campaign

    def build(self) -> GeneratedPlanDraft:
        return GeneratedPlanDraft(
            campaign_name=self.campaign_name,
            objective=self.objective,
            target_audience=self.target_audience,
            location=self.location,
            total_investment=self.total_investment,
            ai_image_prompt=self.ai_image_prompt,
            months=tuple((key, tuple(campaigns)) for key, campaigns in self.months.items()),
        )


class GenerationStatus(str, Enum):
    SUCCESS = 'success'
    TRANSIENT = 'transient'
    PERMANENT = 'permanent'


class FailureCause(str, Enum):
    OVERLOADED = 'overloaded'
    QUOTA_EXCEEDED = 'quota_exceeded'
    GENERIC = 'generic'


@dataclass(frozen=True)
class GenerationResult:
    """Tagged outcome of one call to the generation service"""
    status: GenerationStatus
    text: Optional[str] = None
    error: Optional[str] = None
    cause: Optional[FailureCause] = None

    @classmethod
    def success(cls, text: str) -> 'GenerationResult':
        return cls(GenerationStatus.SUCCESS, text=text)

    @classmethod
    def transient(cls, error: str, cause: FailureCause = FailureCause.OVERLOADED) -> 'GenerationResult':
        return cls(GenerationStatus.TRANSIENT, error=error, cause=cause)

    @classmethod
    def permanent(cls, error: str, cause: FailureCause = FailureCause.GENERIC) -> 'GenerationResult':
        return cls(GenerationStatus.PERMANENT, error=error, cause=cause)

    @property
    def ok(self) -> bool:
        return self.status == GenerationStatus.SUCCESS


class ErrorKind(str, Enum):
    EXTRACTION_AMBIGUOUS = 'extraction_ambiguous'
    UPSTREAM_TRANSIENT = 'upstream_transient'
    UPSTREAM_PERMANENT = 'upstream_permanent'
    PARSE_FAILURE = 'parse_failure'


USER_MESSAGES = {
    FailureCause.OVERLOADED: "The AI service is overloaded right now. Please try again in a few minutes.",
    FailureCause.QUOTA_EXCEEDED: "The AI usage quota has been exceeded. Please try again later.",
    FailureCause.GENERIC: "Failed to generate the plan with AI. Please try again.",
}


class PlanGenerationError(Exception):
    """Single user-facing failure of a generation request"""

    def __init__(self, kind: ErrorKind, cause: FailureCause, detail: str = '', attempts: int = 0):
        self.kind = kind
        self.cause = cause
        self.detail = detail
        self.attempts = attempts
        super().__init__(f"{kind.value}: {detail}" if detail else kind.value)

    @property
    def user_message(self) -> str:
        return USER_MESSAGES[self.cause]
