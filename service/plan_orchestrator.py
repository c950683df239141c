"""
Gemini-based orchestrator for media plan generation
Builds the structured plan prompt, calls the generation service with retry on
transient failures, then repairs channel formats and conserves the budget
across month buckets
"""

import asyncio
import json
import logging
import math
import os
import re
import time
import uuid
from types import MappingProxyType
from typing import Dict, List, Any, Optional, Mapping, Tuple, Sequence, Callable, Awaitable

from campaign_defaults import FUNNEL_STAGES
from channel_formats import CHANNEL_FORMATS, validate_format
from logging_metrics import LLMMetrics
from plan_models import (
    MONTHS_LIST, METRIC_FIELD_ALIASES, CampaignDraft, GeneratedPlanDraft, PlanDraftBuilder,
    PlanConstraints, GenerationResult, GenerationStatus, FailureCause, ErrorKind,
    PlanGenerationError
)
from prompt_extractor import MONTH_LOOKUP, normalize_text, parse_amount

logger = logging.getLogger(__name__)

# Task-specific temperature configuration
TASK_TEMPERATURES = {
    'PLAN': 0.4,      # Structured plan, some creativity in naming/mix
    'IMAGES': 0.8,    # Creative concepts
    'KEYWORDS': 0.5
}

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_RETRY_DELAYS = (1.0, 3.0, 5.0)
DEFAULT_KEYWORD_COUNT = 10

# Share (%) of each bucket per funnel stage, by position in the plan
FUNNEL_SPLITS = {
    'early': (60, 30, 10),
    'middle': (30, 40, 30),
    'late': (10, 30, 60),
}

# Volume seeds no longer hold once a campaign budget is rescaled
VOLUME_SEED_KEYS = {'impressions', 'clicks', 'conversions', 'visits', 'leads',
                    'impressoes', 'cliques', 'conversoes', 'visitas'}

CAMPAIGN_FIELD_ALIASES = {
    'name': ('name', 'nome'),
    'campaign_type': ('campaignType', 'tipoCampanha', 'objective'),
    'channel': ('channel', 'canal'),
    'format': ('format', 'formato'),
}


def _env_max_attempts() -> int:
    try:
        return max(1, int(os.getenv('GENERATION_MAX_ATTEMPTS', DEFAULT_MAX_ATTEMPTS)))
    except ValueError:
        return DEFAULT_MAX_ATTEMPTS


def _env_retry_delays() -> Tuple[float, ...]:
    raw = os.getenv('GENERATION_RETRY_DELAYS')
    if not raw:
        return DEFAULT_RETRY_DELAYS
    try:
        delays = tuple(float(part) for part in raw.split(',') if part.strip())
    except ValueError:
        logger.warning(f"⚠️ Invalid GENERATION_RETRY_DELAYS '{raw}' - using defaults")
        return DEFAULT_RETRY_DELAYS
    return delays or DEFAULT_RETRY_DELAYS


def _to_budget(value: Any) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    return number if number > 0 and number != float('inf') else 0.0


# Month key shapes the model returns besides the requested "2026-Março"
MONTH_KEY_PATTERNS = [
    re.compile(r'^(?P<year>\d{4})\s*[-/ ]\s*(?P<month>\d{1,2})$'),
    re.compile(r'^(?P<month>\d{1,2})\s*[-/ ]\s*(?P<year>\d{4})$'),
    re.compile(r'^(?P<year>\d{4})\s*[-/ ]?\s*(?P<month>[a-z]+)$'),
    re.compile(r'^(?P<month>[a-z]+)\s*(?:de\s+|of\s+)?[-/ ,]*\s*(?P<year>\d{4})$'),
]


def canonical_month_key(key: str) -> str:
    """'2026-marco', '2026-March', 'Março 2026' and '2026-03' all become '2026-Março'"""
    text = normalize_text(str(key)).strip()
    for pattern in MONTH_KEY_PATTERNS:
        match = pattern.match(text)
        if not match:
            continue
        month = match.group('month')
        if month.isdigit():
            index = int(month) - 1 if 1 <= int(month) <= 12 else None
        else:
            index = MONTH_LOOKUP.get(month)
        if index is not None:
            return f"{match.group('year')}-{MONTHS_LIST[index]}"
    return key


def funnel_allocation(month_keys: Sequence[str]) -> List[Tuple[str, Dict[str, int]]]:
    """Stage split per bucket: early buckets lean to Awareness, late ones to Conversion"""
    count = len(month_keys)
    phases = ('early', 'middle', 'late')
    allocation = []
    for index, key in enumerate(month_keys):
        if count == 1:
            phase = 'middle'
        else:
            phase = phases[int(round(2 * index / (count - 1)))]
        allocation.append((key, dict(zip(FUNNEL_STAGES, FUNNEL_SPLITS[phase]))))
    return allocation


def scale_campaign_budgets(campaigns: List[CampaignDraft], target: float) -> List[CampaignDraft]:
    """
    Rescale a bucket's campaigns so their budgets sum exactly to target

    Budgets keep their proportions (equal split when all are zero). Shares
    are whole units taken between rounded cumulative boundaries, so none is
    negative; the last campaign also takes any fractional part of the target.
    """
    if not campaigns:
        return campaigns

    current = sum(c.budget for c in campaigns)
    if current == target:
        return campaigns

    weights = [c.budget for c in campaigns] if current > 0 else [1.0] * len(campaigns)
    total_weight = sum(weights)
    whole = math.floor(target)

    shares = []
    running = 0.0
    allocated = 0
    for weight in weights[:-1]:
        running += weight
        boundary = round(whole * min(running / total_weight, 1.0))
        shares.append(boundary - allocated)
        allocated = boundary
    shares.append(target - allocated)

    rescaled = []
    for campaign, share in zip(campaigns, shares):
        seeds = {k: v for k, v in campaign.metric_seeds.items() if k not in VOLUME_SEED_KEYS}
        rescaled.append(campaign.with_budget(share, seeds))
    return rescaled


KEYWORD_LINE = re.compile(r'^\s*\d+[.)]\s*(?P<body>.+)$')


def _parse_estimate(raw: str) -> Optional[float]:
    """'12.000' → 12000, 'R$ 0,80' → 0.8, '$1.20' → 1.2; None when no number"""
    match = re.search(r'\d[\d.,]*', raw or '')
    if not match:
        return None
    number = match.group(0).strip('.,')
    if ',' not in number and re.fullmatch(r'\d+\.\d{1,2}', number):
        return float(number)
    return parse_amount(number)


def parse_keyword_suggestions(text: str) -> List[Dict[str, Any]]:
    """
    Keyword suggestions from numbered lines

    Each line reads "N. keyword | monthly searches | clicks | min CPC | max CPC";
    only the keyword is required, missing or unreadable estimates are None.
    Unnumbered lines are ignored.
    """
    suggestions = []
    for line in (text or '').split('\n'):
        match = KEYWORD_LINE.match(line)
        if not match:
            continue
        parts = [part.strip() for part in match.group('body').split('|')]
        keyword = parts[0].strip(' *"\'')
        if not keyword:
            continue
        estimates = [_parse_estimate(part) for part in parts[1:5]]
        estimates += [None] * (4 - len(estimates))
        volume, clicks, min_cpc, max_cpc = estimates
        suggestions.append({
            'keyword': keyword,
            'volume': int(volume) if volume is not None else None,
            'clickPotential': int(clicks) if clicks is not None else None,
            'minCpc': min_cpc,
            'maxCpc': max_cpc,
        })
    return suggestions


class PlanOrchestrator:
    """Generates media plan drafts through an unreliable generation service"""

    def _extract_json_from_response(self, response_text: str) -> str:
        """Extract JSON from response text, handling markdown code blocks"""
        if not response_text:
            return ""

        # Markdown code blocks (greedy for multi-line JSON)
        json_pattern = r'```(?:json)?\s*(\{.*\})\s*```'
        matches = re.findall(json_pattern, response_text, re.DOTALL | re.IGNORECASE)

        if matches:
            json_text = matches[0].strip()
            logger.debug(f"🔧 Extracted JSON from markdown: {len(json_text)} characters")
            return json_text

        stripped = response_text.strip()
        if stripped.startswith('{') and stripped.endswith('}'):
            logger.debug(f"🔧 Response appears to be clean JSON: {len(stripped)} characters")
            return stripped

        json_pattern_loose = r'\{.*\}'
        match = re.search(json_pattern_loose, response_text, re.DOTALL)
        if match:
            json_text = match.group(0).strip()
            logger.debug(f"🔧 Found JSON-like content: {len(json_text)} characters")
            return json_text

        logger.warning(f"⚠️ No JSON content found in response")
        return ""

    def __init__(
        self,
        generation_service=None,
        max_attempts: Optional[int] = None,
        retry_delays: Optional[Sequence[float]] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
        channel_formats: Optional[Mapping[str, Tuple[str, ...]]] = None,
        conserve_budget: bool = True
    ):
        """
        Args:
            generation_service: Object with async generate(prompt, language, temperature, task) -> GenerationResult
            max_attempts: Upstream calls per request (GENERATION_MAX_ATTEMPTS, default 3)
            retry_delays: Seconds to wait before each retry (GENERATION_RETRY_DELAYS, default 1,3,5)
            sleep: Awaitable sleep used between attempts
            channel_formats: Channel/format table used for repair
            conserve_budget: Rescale campaign budgets to the per-month targets
        """
        if generation_service is None:
            from gemini_service import GeminiService
            generation_service = GeminiService()

        self.service = generation_service
        self.max_attempts = max_attempts or _env_max_attempts()
        self.retry_delays = tuple(retry_delays) if retry_delays else _env_retry_delays()
        self._sleep = sleep or asyncio.sleep
        self.channel_formats = channel_formats if channel_formats is not None else CHANNEL_FORMATS
        self.conserve_budget = conserve_budget

        logger.info(f"🤖 Plan orchestrator: max_attempts={self.max_attempts}, "
                    f"retry_delays={list(self.retry_delays)}")

    def build_plan_prompt(self, user_prompt: str, constraints: PlanConstraints) -> str:
        """Structured prompt embedding the exact budget, month keys and funnel hint"""
        month_keys = constraints.month_keys()
        buckets = constraints.bucket_budgets()

        budget_lines = "\n".join(
            f"            - {key}: {budget:.2f}" for key, budget in zip(month_keys, buckets)
        )
        funnel_lines = "\n".join(
            f"            - {key}: " + ", ".join(f"{stage} {share}%" for stage, share in split.items())
            for key, split in funnel_allocation(month_keys)
        )
        formats_json = json.dumps({k: list(v) for k, v in self.channel_formats.items()},
                                  ensure_ascii=False, indent=2)

        example = {
            "campaignName": "Campaign name",
            "objective": "Main objective",
            "targetAudience": "Target audience",
            "location": "Geographic location",
            "totalInvestment": constraints.total_budget,
            "aiImagePrompt": "Prompt for creative image generation",
            "months": {
                month_keys[0]: [
                    {
                        "name": "Campaign name",
                        "campaignType": "Awareness",
                        "channel": "Google Ads",
                        "format": "Search",
                        "budget": buckets[0],
                        "purchaseUnit": "PerClick",
                        "cpc": 2.5,
                        "cpm": 0,
                        "ctr": 2.0,
                        "conversionRate": 3.0,
                        "connectRate": 80.0
                    }
                ]
            }
        }

        return f"""
            Create a detailed media plan based on the following request: "{user_prompt}"

            **BUDGET (exact):** The total investment is {constraints.total_budget:.2f}.
            Use EXACTLY these month keys, and make the campaign budgets of each month sum to:
{budget_lines}

            **FUNNEL STRATEGY:** Split each month's budget across objectives approximately as:
{funnel_lines}

            **CHANNELS AND FORMATS:** Use only these channels, with one of their listed formats:
            {formats_json}

            **RULES:**
            1. campaignType must be one of: {", ".join(FUNNEL_STAGES)}, Retargeting
            2. purchaseUnit must be "PerClick" or "PerMille"
            3. ctr, conversionRate and connectRate are percentages (0-100)
            4. Do not add months outside the list above

            Return ONLY valid JSON with the following structure:
            {json.dumps(example, ensure_ascii=False, indent=2)}

            IMPORTANT: Return ONLY the JSON, with no text before or after it.
        """

    async def _generate_with_retry(self, prompt: str, language: str, task: str,
                                   job_id: str) -> Tuple[GenerationResult, int]:
        """
        Call the generation service, retrying transient failures

        Returns:
            (successful result, attempts used)

        Raises:
            PlanGenerationError when a permanent failure occurs or retries run out
        """
        temperature = TASK_TEMPERATURES.get(task, 0.4)
        attempt = 0

        while True:
            attempt += 1
            logger.info(f"🤖 [{task}] job={job_id[:8]} attempt {attempt}/{self.max_attempts}")
            result = await self.service.generate(prompt, language, temperature=temperature, task=task)

            if result.ok:
                return result, attempt

            if result.status == GenerationStatus.TRANSIENT and attempt < self.max_attempts:
                delay = self.retry_delays[min(attempt - 1, len(self.retry_delays) - 1)]
                LLMMetrics.log_generation_retry(job_id, attempt, self.max_attempts, delay, result.error or '')
                await self._sleep(delay)
                continue

            kind = (ErrorKind.UPSTREAM_TRANSIENT if result.status == GenerationStatus.TRANSIENT
                    else ErrorKind.UPSTREAM_PERMANENT)
            logger.error(f"❌ [{task}] job={job_id[:8]} giving up after {attempt} attempt(s): {result.error}")
            raise PlanGenerationError(kind, result.cause or FailureCause.GENERIC,
                                      result.error or '', attempts=attempt)

    def _campaign_from_raw(self, raw: Mapping[str, Any]) -> CampaignDraft:
        values = {}
        for field_name, aliases in CAMPAIGN_FIELD_ALIASES.items():
            values[field_name] = next((str(raw[a]) for a in aliases if raw.get(a) not in (None, '')), '')

        seeds = {k: v for k, v in raw.items() if k in METRIC_FIELD_ALIASES and k != 'budget'}

        return CampaignDraft(
            name=values['name'],
            campaign_type=values['campaign_type'],
            channel=values['channel'],
            format=values['format'],
            budget=_to_budget(raw.get('budget')),
            metric_seeds=MappingProxyType(seeds),
        )

    def _parse_plan_response(self, response_text: str, constraints: PlanConstraints) -> PlanDraftBuilder:
        """Parse the model output into a draft builder; any malformed response is a ParseFailure"""
        clean_json = self._extract_json_from_response(response_text)
        if not clean_json:
            raise PlanGenerationError(ErrorKind.PARSE_FAILURE, FailureCause.GENERIC,
                                      "No JSON content found in AI response")

        try:
            data = json.loads(clean_json)
        except json.JSONDecodeError as e:
            logger.error(f"Failed to parse JSON from AI response: {e}")
            logger.error(f"Response text: {response_text[:500]}...")
            raise PlanGenerationError(ErrorKind.PARSE_FAILURE, FailureCause.GENERIC,
                                      f"Failed to parse JSON response: {e}") from e

        if not isinstance(data, dict) or not isinstance(data.get('months'), dict):
            raise PlanGenerationError(ErrorKind.PARSE_FAILURE, FailureCause.GENERIC,
                                      "AI response has no 'months' object")

        builder = PlanDraftBuilder(
            campaign_name=str(data.get('campaignName') or ''),
            objective=str(data.get('objective') or ''),
            target_audience=str(data.get('targetAudience') or ''),
            location=str(data.get('location') or ''),
            total_investment=constraints.total_budget,
            ai_image_prompt=str(data.get('aiImagePrompt') or ''),
        )

        for month_key, campaigns in data['months'].items():
            if not isinstance(campaigns, list):
                logger.warning(f"⚠️ Month {month_key} is not a list of campaigns - skipped")
                continue
            key = canonical_month_key(month_key)
            for raw in campaigns:
                if isinstance(raw, dict):
                    builder.add_campaign(key, self._campaign_from_raw(raw))

        return builder

    def _repair_formats(self, builder: PlanDraftBuilder) -> int:
        repaired = 0
        for month_key, index, campaign in list(builder.campaigns()):
            valid_format = validate_format(campaign.channel, campaign.format, self.channel_formats)
            if valid_format != campaign.format:
                logger.debug(f"[REPAIR] {month_key} {campaign.channel}: '{campaign.format}' → '{valid_format}'")
                builder.replace_campaign(month_key, index, campaign.with_format(valid_format))
                repaired += 1
        return repaired

    def _rebalance_budgets(self, builder: PlanDraftBuilder, constraints: PlanConstraints):
        targets = dict(zip(constraints.month_keys(), constraints.bucket_budgets()))

        for key in builder.months:
            if key not in targets:
                logger.warning(f"⚠️ Dropping month {key}: outside the requested period")

        rebalanced = {}
        for key, target in targets.items():
            campaigns = builder.months.get(key)
            if not campaigns:
                logger.warning(f"⚠️ No campaigns generated for {key} (target {target:.2f})")
                continue
            rebalanced[key] = scale_campaign_budgets(campaigns, target)
        builder.months = rebalanced

    async def generate_plan(self, prompt: str, constraints: PlanConstraints,
                            language: str = 'pt-BR') -> GeneratedPlanDraft:
        """
        Generate a media plan draft for a request

        Args:
            prompt: The user's free-text request
            constraints: Period and budget the plan must respect
            language: Response language tag

        Returns:
            Immutable GeneratedPlanDraft

        Raises:
            PlanGenerationError classified by kind and cause
        """
        job_id = str(uuid.uuid4())
        start_time = time.time()
        attempts = 0

        logger.info(f"📝 Generating plan job={job_id[:8]}: {constraints.month_count} months, "
                    f"budget={constraints.total_budget:.2f}, language={language}")

        try:
            plan_prompt = self.build_plan_prompt(prompt, constraints)
            result, attempts = await self._generate_with_retry(plan_prompt, language, 'PLAN', job_id)

            builder = self._parse_plan_response(result.text, constraints)
            repaired = self._repair_formats(builder)
            if self.conserve_budget:
                self._rebalance_budgets(builder, constraints)
            if not any(builder.months.values()):
                raise PlanGenerationError(ErrorKind.PARSE_FAILURE, FailureCause.GENERIC,
                                          "AI response has no campaigns for the requested months",
                                          attempts=attempts)
            draft = builder.build()
        except PlanGenerationError as e:
            LLMMetrics.log_plan_generation_job(
                job_id=job_id, latency_ms=int((time.time() - start_time) * 1000),
                attempts=e.attempts or attempts, month_count=constraints.month_count,
                campaign_count=0, formats_repaired=0, total_budget=constraints.total_budget,
                success=False, failure_cause=e.cause.value
            )
            raise

        LLMMetrics.log_plan_generation_job(
            job_id=job_id, latency_ms=int((time.time() - start_time) * 1000),
            attempts=attempts, month_count=constraints.month_count,
            campaign_count=sum(len(c) for _, c in draft.months), formats_repaired=repaired,
            total_budget=draft.total_budget(), success=True
        )
        return draft

    async def _image_concepts_for_ratio(self, prompt: str, aspect_ratio: str, language: str) -> Dict[str, Any]:
        job_id = str(uuid.uuid4())
        image_prompt = (f"Generate creative image descriptions for: {prompt}. "
                        f"Aspect ratio: {aspect_ratio}. Provide 3 different creative concepts, one per line.")
        result, _ = await self._generate_with_retry(image_prompt, language, 'IMAGES', job_id)

        concepts = []
        for line in result.text.split('\n'):
            cleaned = re.sub(r'^\s*(?:\d+[.)]|[-*•])\s*', '', line).strip()
            if cleaned:
                concepts.append(cleaned)
        return {'aspectRatio': aspect_ratio, 'concepts': concepts[:3]}

    async def generate_image_concepts(self, prompt: str, aspect_ratios: Sequence[str] = ('1:1',),
                                      language: str = 'pt-BR') -> List[Dict[str, Any]]:
        """
        Generate creative concepts for several aspect ratios in parallel

        Each ratio is an independent request with its own retries. If one
        fails, the others are cancelled and the error propagates.
        """
        tasks = [asyncio.ensure_future(self._image_concepts_for_ratio(prompt, ratio, language))
                 for ratio in aspect_ratios]
        try:
            return list(await asyncio.gather(*tasks))
        except BaseException:
            for task in tasks:
                task.cancel()
            raise

    async def generate_keywords(self, prompt: str, language: str = 'pt-BR',
                                count: int = DEFAULT_KEYWORD_COUNT) -> List[Dict[str, Any]]:
        """
        Search keyword suggestions for a campaign description

        Same retry policy as plan generation. A response with no numbered
        line is a ParseFailure.
        """
        job_id = str(uuid.uuid4())
        keyword_prompt = (
            f"List {count} search keywords for the following campaign: {prompt}\n"
            f"One keyword per line, numbered, in the format:\n"
            f"1. keyword | estimated monthly searches | estimated monthly clicks | min CPC | max CPC"
        )
        result, attempts = await self._generate_with_retry(keyword_prompt, language, 'KEYWORDS', job_id)

        suggestions = parse_keyword_suggestions(result.text)
        if not suggestions:
            raise PlanGenerationError(ErrorKind.PARSE_FAILURE, FailureCause.GENERIC,
                                      "No numbered keywords in AI response", attempts=attempts)

        logger.info(f"🔑 job={job_id[:8]} {len(suggestions)} keyword suggestions in {attempts} attempt(s)")
        return suggestions[:count]
