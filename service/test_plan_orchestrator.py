"""
Unit tests for the plan generation orchestrator
Upstream calls are scripted with a fake generation service and a recording sleep
"""

import json

import pytest

from plan_models import (
    CampaignDraft,
    ErrorKind,
    FailureCause,
    GenerationResult,
    PlanConstraints,
    PlanGenerationError,
)
from plan_orchestrator import (
    PlanOrchestrator,
    canonical_month_key,
    funnel_allocation,
    parse_keyword_suggestions,
    scale_campaign_budgets,
)

# February to April 2026, 30000 -> 10000 per month
CONSTRAINTS = PlanConstraints(1, 2026, 3, 2026, 3, 30000)


class FakeGenerationService:
    """Returns scripted GenerationResults in order and records every prompt"""

    def __init__(self, results=None, responder=None):
        self.results = list(results or [])
        self.responder = responder
        self.prompts = []
        self.tasks = []

    async def generate(self, prompt, language='pt-BR', temperature=0.4, task='PLAN'):
        self.prompts.append(prompt)
        self.tasks.append(task)
        if self.responder:
            return self.responder(prompt)
        return self.results.pop(0)


class RecordingSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, seconds):
        self.delays.append(seconds)


def plan_response(months=None, fenced=True):
    data = {
        'campaignName': 'Lançamento Verão',
        'objective': 'Vendas online',
        'targetAudience': 'Mulheres 25-40',
        'location': 'São Paulo',
        'totalInvestment': 99999,
        'aiImagePrompt': 'Praia ensolarada com produtos',
        'months': months if months is not None else {
            '2026-Fevereiro': [
                {'name': 'Busca', 'campaignType': 'Conversion', 'channel': 'Google Ads',
                 'format': 'Search', 'budget': 6000, 'purchaseUnit': 'PerClick', 'cpc': 2.5,
                 'ctr': 2, 'impressions': 5000},
                {'name': 'Alcance', 'campaignType': 'Awareness', 'channel': 'Meta Ads',
                 'format': 'Search', 'budget': 3000},
            ],
            '2026-marco': [
                {'nome': 'Vídeo', 'tipoCampanha': 'Awareness', 'canal': 'YouTube Ads',
                 'formato': 'bumper', 'budget': 10000},
            ],
            '2026-Abril': [
                {'name': 'Leads', 'campaignType': 'Conversion', 'channel': 'LinkedIn Ads',
                 'format': 'Sponsored Content', 'budget': 0},
                {'name': 'Retarget', 'campaignType': 'Retargeting', 'channel': 'Unknown Network',
                 'format': 'Banner', 'budget': 0},
            ],
            '2026-Dezembro': [
                {'name': 'Extra', 'campaignType': 'Awareness', 'channel': 'Google Ads',
                 'format': 'Display', 'budget': 5000},
            ],
        }
    }
    body = json.dumps(data, ensure_ascii=False)
    return f"Here is the plan:\n```json\n{body}\n```" if fenced else body


def make_orchestrator(service, sleep=None, **kwargs):
    return PlanOrchestrator(generation_service=service, max_attempts=3,
                            retry_delays=(1, 3, 5), sleep=sleep or RecordingSleep(), **kwargs)


class TestRetryPolicy:
    """Transient failures retry with the configured delays; permanent never retry"""

    @pytest.mark.asyncio
    async def test_transient_then_success(self):
        service = FakeGenerationService([
            GenerationResult.transient('503 overloaded'),
            GenerationResult.transient('503 overloaded'),
            GenerationResult.success(plan_response()),
        ])
        sleep = RecordingSleep()

        draft = await make_orchestrator(service, sleep).generate_plan('plano', CONSTRAINTS)

        assert len(service.prompts) == 3
        assert sleep.delays == [1, 3]
        assert draft.campaign_name == 'Lançamento Verão'
        assert service.tasks == ['PLAN'] * 3

    @pytest.mark.asyncio
    async def test_transient_exhausted(self):
        service = FakeGenerationService([GenerationResult.transient('503 overloaded')] * 3)
        sleep = RecordingSleep()

        with pytest.raises(PlanGenerationError) as exc_info:
            await make_orchestrator(service, sleep).generate_plan('plano', CONSTRAINTS)

        assert exc_info.value.kind == ErrorKind.UPSTREAM_TRANSIENT
        assert exc_info.value.cause == FailureCause.OVERLOADED
        assert exc_info.value.attempts == 3
        assert len(service.prompts) == 3
        assert sleep.delays == [1, 3]

    @pytest.mark.asyncio
    async def test_permanent_not_retried(self):
        service = FakeGenerationService([
            GenerationResult.permanent('429 quota', FailureCause.QUOTA_EXCEEDED),
            GenerationResult.success(plan_response()),
        ])
        sleep = RecordingSleep()

        with pytest.raises(PlanGenerationError) as exc_info:
            await make_orchestrator(service, sleep).generate_plan('plano', CONSTRAINTS)

        assert exc_info.value.kind == ErrorKind.UPSTREAM_PERMANENT
        assert exc_info.value.cause == FailureCause.QUOTA_EXCEEDED
        assert 'quota' in exc_info.value.user_message.lower()
        assert len(service.prompts) == 1
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_retry_delays_shorter_than_attempts(self):
        service = FakeGenerationService([GenerationResult.transient('timeout')] * 4)
        sleep = RecordingSleep()
        orchestrator = PlanOrchestrator(generation_service=service, max_attempts=4,
                                        retry_delays=(2,), sleep=sleep)

        with pytest.raises(PlanGenerationError):
            await orchestrator.generate_plan('plano', CONSTRAINTS)

        assert sleep.delays == [2, 2, 2]

    def test_settings_from_environment(self, monkeypatch):
        monkeypatch.setenv('GENERATION_MAX_ATTEMPTS', '5')
        monkeypatch.setenv('GENERATION_RETRY_DELAYS', '0.5, 2')

        orchestrator = PlanOrchestrator(generation_service=FakeGenerationService())

        assert orchestrator.max_attempts == 5
        assert orchestrator.retry_delays == (0.5, 2.0)


class TestParsing:
    """Malformed responses are parse failures"""

    @pytest.mark.asyncio
    @pytest.mark.parametrize('text', [
        'Sorry, I cannot help with that.',
        '```json\n{"campaignName": "x", "months": [1, 2]}\n```',
        '{"campaignName": "no months"}',
        '{"months": {"2026-Fevereiro": [}',
        '{"months": {}}',
        '{"months": {"2026-Dezembro": [{"name": "Extra", "budget": 5000}]}}',
    ])
    async def test_parse_failure(self, text):
        service = FakeGenerationService([GenerationResult.success(text)])

        with pytest.raises(PlanGenerationError) as exc_info:
            await make_orchestrator(service).generate_plan('plano', CONSTRAINTS)

        assert exc_info.value.kind == ErrorKind.PARSE_FAILURE
        assert exc_info.value.cause == FailureCause.GENERIC
        assert len(service.prompts) == 1

    def test_extract_json_variants(self):
        orchestrator = make_orchestrator(FakeGenerationService())

        assert orchestrator._extract_json_from_response('```json\n{"a": 1}\n```') == '{"a": 1}'
        assert orchestrator._extract_json_from_response('  {"a": 1}  ') == '{"a": 1}'
        assert orchestrator._extract_json_from_response('text {"a": 1} more') == '{"a": 1}'
        assert orchestrator._extract_json_from_response('no json here') == ''

    def test_canonical_month_key(self):
        assert canonical_month_key('2026-marco') == '2026-Março'
        assert canonical_month_key('2026-March') == '2026-Março'
        assert canonical_month_key('2026-Março') == '2026-Março'
        assert canonical_month_key('someday') == 'someday'

    @pytest.mark.parametrize('key', ['Fevereiro 2026', 'fevereiro de 2026', 'February, 2026',
                                     '2026-02', '2026/2', '02/2026', '2026 fev'])
    def test_canonical_month_key_shapes(self, key):
        assert canonical_month_key(key) == '2026-Fevereiro'

    def test_canonical_month_key_invalid_month_number(self):
        assert canonical_month_key('2026-13') == '2026-13'

    @pytest.mark.asyncio
    async def test_month_names_before_year(self):
        response = json.dumps({'months': {
            'Fevereiro 2026': [{'name': 'a', 'channel': 'Google Ads', 'format': 'Search', 'budget': 10000}],
            'Marco 2026': [{'name': 'b', 'channel': 'Google Ads', 'format': 'Search', 'budget': 10000}],
            '2026-04': [{'name': 'c', 'channel': 'Google Ads', 'format': 'Search', 'budget': 10000}],
        }})
        service = FakeGenerationService([GenerationResult.success(response)])

        draft = await make_orchestrator(service).generate_plan('plano', CONSTRAINTS)

        assert list(draft.month_map()) == CONSTRAINTS.month_keys()
        assert draft.total_budget() == 30000


class TestDraftRepair:
    """Format repair and budget conservation on a generated draft"""

    @pytest.mark.asyncio
    async def test_budget_conserved_per_month(self):
        service = FakeGenerationService([GenerationResult.success(plan_response(fenced=False))])

        draft = await make_orchestrator(service).generate_plan('plano', CONSTRAINTS)
        months = draft.month_map()

        assert list(months) == ['2026-Fevereiro', '2026-Março', '2026-Abril']
        for key, target in zip(CONSTRAINTS.month_keys(), CONSTRAINTS.bucket_budgets()):
            assert sum(c.budget for c in months[key]) == target
        assert draft.total_budget() == CONSTRAINTS.total_budget
        assert draft.total_investment == CONSTRAINTS.total_budget

    @pytest.mark.asyncio
    async def test_formats_repaired(self):
        service = FakeGenerationService([GenerationResult.success(plan_response())])

        draft = await make_orchestrator(service).generate_plan('plano', CONSTRAINTS)
        months = draft.month_map()

        assert months['2026-Fevereiro'][0].format == 'Search'
        assert months['2026-Fevereiro'][1].format == 'Feed'
        assert months['2026-Março'][0].format == 'Bumper'
        assert months['2026-Abril'][1].format == 'Display'

    @pytest.mark.asyncio
    async def test_portuguese_campaign_fields(self):
        service = FakeGenerationService([GenerationResult.success(plan_response())])

        draft = await make_orchestrator(service).generate_plan('plano', CONSTRAINTS)
        video = draft.month_map()['2026-Março'][0]

        assert video.name == 'Vídeo'
        assert video.campaign_type == 'Awareness'
        assert video.channel == 'YouTube Ads'

    @pytest.mark.asyncio
    async def test_without_conservation(self):
        service = FakeGenerationService([GenerationResult.success(plan_response())])

        draft = await make_orchestrator(service, conserve_budget=False).generate_plan('plano', CONSTRAINTS)

        assert '2026-Dezembro' in draft.month_map()
        assert draft.month_map()['2026-Fevereiro'][0].budget == 6000

    def test_scale_proportional(self):
        campaigns = [CampaignDraft('a', 'Conversion', 'Google Ads', 'Search', 6000,
                                   {'cpc': 2.5, 'impressions': 5000}),
                     CampaignDraft('b', 'Awareness', 'Meta Ads', 'Feed', 3000)]

        scaled = scale_campaign_budgets(campaigns, 10000)

        assert [c.budget for c in scaled] == [6667, 3333]
        assert dict(scaled[0].metric_seeds) == {'cpc': 2.5}

    def test_scale_zero_budgets_split_equally(self):
        campaigns = [CampaignDraft('a', 'Conversion', 'Google Ads', 'Search', 0)] * 3

        scaled = scale_campaign_budgets(campaigns, 10000)

        assert [c.budget for c in scaled] == [3333, 3334, 3333]

    def test_scale_never_negative(self):
        campaigns = [CampaignDraft('a', 'Conversion', 'Google Ads', 'Search', 5000),
                     CampaignDraft('b', 'Awareness', 'Meta Ads', 'Feed', 5000),
                     CampaignDraft('c', 'Awareness', 'Meta Ads', 'Reels', 0)]

        scaled = scale_campaign_budgets(campaigns, 10003)

        assert [c.budget for c in scaled] == [5002, 5001, 0]
        assert sum(c.budget for c in scaled) == 10003

    def test_scale_fractional_target(self):
        campaigns = [CampaignDraft('a', 'Conversion', 'Google Ads', 'Search', 1),
                     CampaignDraft('b', 'Awareness', 'Meta Ads', 'Feed', 0)]

        scaled = scale_campaign_budgets(campaigns, 2.5)

        assert [c.budget for c in scaled] == [2, 0.5]

    def test_scale_matching_budgets_untouched(self):
        campaigns = [CampaignDraft('a', 'Conversion', 'Google Ads', 'Search', 4000.5,
                                   {'impressions': 100}),
                     CampaignDraft('b', 'Awareness', 'Meta Ads', 'Feed', 5999.5)]

        assert scale_campaign_budgets(campaigns, 10000) == campaigns


class TestPrompt:
    """Structured prompt contents"""

    def test_prompt_embeds_constraints(self):
        orchestrator = make_orchestrator(FakeGenerationService())

        prompt = orchestrator.build_plan_prompt('Loja de roupas', CONSTRAINTS)

        assert 'Loja de roupas' in prompt
        assert '30000.00' in prompt
        for key in CONSTRAINTS.month_keys():
            assert f'{key}: 10000.00' in prompt
        assert 'Google Ads' in prompt
        assert 'Awareness 60%' in prompt

    def test_funnel_allocation(self):
        allocation = funnel_allocation(['m1', 'm2', 'm3'])

        assert allocation[0][1]['Awareness'] > allocation[0][1]['Conversion']
        assert allocation[1][1] == {'Awareness': 30, 'Consideration': 40, 'Conversion': 30}
        assert allocation[2][1]['Conversion'] > allocation[2][1]['Awareness']
        assert funnel_allocation(['only'])[0][1]['Consideration'] == 40


class TestImageConcepts:
    """Parallel image concept requests"""

    @pytest.mark.asyncio
    async def test_concepts_per_ratio(self):
        service = FakeGenerationService(
            responder=lambda prompt: GenerationResult.success('1. Beach\n2) Sunset\n- City\nExtra'))

        results = await make_orchestrator(service).generate_image_concepts('summer', ['1:1', '9:16'])

        assert [r['aspectRatio'] for r in results] == ['1:1', '9:16']
        assert results[0]['concepts'] == ['Beach', 'Sunset', 'City']
        assert len(service.prompts) == 2
        assert service.tasks == ['IMAGES', 'IMAGES']

    @pytest.mark.asyncio
    async def test_one_ratio_fails(self):
        def responder(prompt):
            if '9:16' in prompt:
                return GenerationResult.permanent('bad request')
            return GenerationResult.success('A\nB\nC')

        service = FakeGenerationService(responder=responder)

        with pytest.raises(PlanGenerationError) as exc_info:
            await make_orchestrator(service).generate_image_concepts('summer', ['1:1', '9:16'])

        assert exc_info.value.kind == ErrorKind.UPSTREAM_PERMANENT


class TestKeywords:
    """Keyword suggestions parsed from numbered lines"""

    def test_parse_numbered_lines(self):
        text = ('Here are some keywords:\n'
                '1. roupas de verão | 22.000 | 1.500 | $0.45 | $1.20\n'
                '2) **vestido floral** | 9000\n'
                '3. \n'
                '- not numbered')

        suggestions = parse_keyword_suggestions(text)

        assert [s['keyword'] for s in suggestions] == ['roupas de verão', 'vestido floral']
        assert suggestions[0]['volume'] == 22000
        assert suggestions[0]['clickPotential'] == 1500
        assert suggestions[0]['minCpc'] == 0.45
        assert suggestions[0]['maxCpc'] == 1.2
        assert suggestions[1]['volume'] == 9000
        assert suggestions[1]['maxCpc'] is None

    @pytest.mark.asyncio
    async def test_keywords_retry_transient(self):
        service = FakeGenerationService([
            GenerationResult.transient('503 overloaded'),
            GenerationResult.success('1. a\n2. b\n3. c'),
        ])
        sleep = RecordingSleep()

        keywords = await make_orchestrator(service, sleep).generate_keywords('loja', count=2)

        assert [k['keyword'] for k in keywords] == ['a', 'b']
        assert sleep.delays == [1]
        assert service.tasks == ['KEYWORDS', 'KEYWORDS']

    @pytest.mark.asyncio
    async def test_keywords_without_numbered_lines(self):
        service = FakeGenerationService([GenerationResult.success('no keywords today')])

        with pytest.raises(PlanGenerationError) as exc_info:
            await make_orchestrator(service).generate_keywords('loja')

        assert exc_info.value.kind == ErrorKind.PARSE_FAILURE
