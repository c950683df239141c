"""
Unit tests for the plan data model
"""

import dataclasses

import pytest

from plan_models import (
    CampaignDraft,
    ErrorKind,
    FailureCause,
    GenerationResult,
    GenerationStatus,
    PlanConstraints,
    PlanDraftBuilder,
    PlanGenerationError,
    PurchaseUnit,
    bucket_budgets,
    normalize_metric_keys,
)


class TestBucketBudgets:

    @pytest.mark.parametrize('total, count', [(50000, 7), (20000, 3), (1234.56, 5), (100, 1), (99999, 12)])
    def test_sum_is_exact(self, total, count):
        buckets = bucket_budgets(total, count)

        assert len(buckets) == count
        assert sum(buckets) == total

    def test_last_bucket_absorbs_remainder(self):
        assert bucket_budgets(50000, 7) == [7143] * 6 + [7142]

    def test_invalid_count(self):
        with pytest.raises(ValueError):
            bucket_budgets(1000, 0)


class TestPlanConstraints:

    def test_month_keys_cross_year(self):
        constraints = PlanConstraints(10, 2026, 1, 2027, 4, 8000)

        assert constraints.month_keys() == ['2026-Novembro', '2026-Dezembro', '2027-Janeiro', '2027-Fevereiro']

    def test_validation(self):
        with pytest.raises(ValueError):
            PlanConstraints(0, 2026, 0, 2026, 0, 1000)
        with pytest.raises(ValueError):
            PlanConstraints(0, 2026, 0, 2026, 1, 0)

    def test_frozen(self):
        constraints = PlanConstraints(0, 2026, 2, 2026, 3, 9000)

        with pytest.raises(dataclasses.FrozenInstanceError):
            constraints.total_budget = 1


class TestDrafts:

    def test_builder_produces_immutable_draft(self):
        builder = PlanDraftBuilder(campaign_name='Plano')
        builder.add_campaign('2026-Março', CampaignDraft('a', 'Awareness', 'Meta Ads', 'Feed', 100))
        builder.replace_campaign('2026-Março', 0,
                                 CampaignDraft('a', 'Awareness', 'Meta Ads', 'Feed', 100).with_format('Reels'))

        draft = builder.build()

        assert draft.month_map()['2026-Março'][0].format == 'Reels'
        assert isinstance(draft.months, tuple)
        assert draft.total_budget() == 100

    def test_with_budget_replaces_seeds(self):
        campaign = CampaignDraft('a', 'Awareness', 'Meta Ads', 'Feed', 100, {'cpm': 10, 'impressions': 5})

        rescaled = campaign.with_budget(200, {'cpm': 10})

        assert rescaled.budget == 200
        assert dict(rescaled.metric_seeds) == {'cpm': 10}
        assert campaign.budget == 100


class TestModelHelpers:

    @pytest.mark.parametrize('raw, expected', [
        ('PerClick', PurchaseUnit.PER_CLICK),
        ('CPC', PurchaseUnit.PER_CLICK),
        ('per-mille', PurchaseUnit.PER_MILLE),
        ('cpm', PurchaseUnit.PER_MILLE),
        ('weekly', None),
        (None, None),
    ])
    def test_purchase_unit_parse(self, raw, expected):
        assert PurchaseUnit.parse(raw) == expected

    def test_normalize_metric_keys(self):
        normalized = normalize_metric_keys({'conversionRate': 2, 'cliques': 10, 'clicks': 12, 'name': 'x'})

        assert normalized == {'conversion_rate': 2, 'clicks': 12}

    def test_generation_result_tags(self):
        assert GenerationResult.success('ok').ok
        assert GenerationResult.transient('503').cause == FailureCause.OVERLOADED
        assert GenerationResult.permanent('401').status == GenerationStatus.PERMANENT

    def test_error_user_message(self):
        error = PlanGenerationError(ErrorKind.UPSTREAM_TRANSIENT, FailureCause.OVERLOADED, '503', attempts=3)

        assert 'overloaded' in error.user_message
        assert 'upstream_transient' in str(error)
