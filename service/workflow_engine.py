#!/usr/bin/env python3
"""
Workflow Engine - Media plan generation workflow

Runs the steps between a free-text request and a stored plan:
- Constraint extraction (period + budget, or defaults)
- AI generation through the plan orchestrator
- Campaign finalization (objective defaults + metric reconciliation)
- Persistence

Usage in production (main.py):
    engine = WorkflowEngine(db, orchestrator)
    plan = await engine.generate_plan(prompt, owner_id=user_id)

Usage in tests:
    engine = WorkflowEngine(mock_db, PlanOrchestrator(fake_service, sleep=fake_sleep))
    plan = await engine.generate_plan(prompt, save_to_db=False, logger_callback=custom_log)
"""

import logging
import os
import time
import uuid
from typing import Dict, Any, Callable, Optional
from datetime import datetime

from campaign_defaults import canonical_objective, defaults_for_objective
from metrics_engine import reconcile
from plan_models import CampaignDraft, GeneratedPlanDraft, PlanConstraints
from prompt_extractor import extract_constraints, default_constraints

logger = logging.getLogger(__name__)

DEFAULT_TOTAL_BUDGET = 20000.0

# Fields of an existing plan that survive regeneration
PRESERVED_ON_REGENERATE = ('id', 'user_id', 'created_at', 'logoUrl', 'creatives', 'adGroups',
                           'utmLinks', 'customFormats', 'is_public')


def _env_default_budget() -> float:
    try:
        budget = float(os.getenv('DEFAULT_TOTAL_BUDGET', DEFAULT_TOTAL_BUDGET))
    except ValueError:
        return DEFAULT_TOTAL_BUDGET
    return budget if budget > 0 else DEFAULT_TOTAL_BUDGET


def create_empty_plan(owner_id: Optional[str]) -> Dict[str, Any]:
    """Blank plan with every collection present"""
    return {
        'id': str(uuid.uuid4()),
        'user_id': owner_id,
        'campaignName': '',
        'objective': '',
        'targetAudience': '',
        'location': '',
        'totalInvestment': 0,
        'logoUrl': '',
        'months': {},
        'creatives': {},
        'adGroups': [],
        'utmLinks': [],
        'customFormats': [],
        'is_public': False,
        'created_at': datetime.utcnow().isoformat()
    }


def finalize_campaign(campaign: CampaignDraft, campaign_id: str) -> Dict[str, Any]:
    """
    Turn a generated campaign into a stored campaign record

    Objective defaults fill the metrics the model left out, then the record
    is reconciled so every derived field is consistent with the budget.
    """
    seeds = defaults_for_objective(campaign.campaign_type)
    seeds.update(campaign.metric_seeds)
    seeds['budget'] = campaign.budget

    metrics = reconcile(seeds)
    return {
        'id': campaign_id,
        'name': campaign.name,
        'campaignType': canonical_objective(campaign.campaign_type) or campaign.campaign_type,
        'channel': campaign.channel,
        'format': campaign.format,
        **metrics.to_dict()
    }


class WorkflowEngine:
    """Executes the plan workflow: CONSTRAINTS → GENERATION → FINALIZATION → PERSISTENCE"""

    def __init__(self, database=None, orchestrator=None, default_budget: Optional[float] = None):
        """
        Initialize workflow engine with dependencies

        Args:
            database: Database instance (can be None for tests)
            orchestrator: PlanOrchestrator instance (required)
            default_budget: Budget used when the request names none (DEFAULT_TOTAL_BUDGET)
        """
        self.db = database
        self.orchestrator = orchestrator
        self.default_budget = default_budget or _env_default_budget()

    def resolve_constraints(self, prompt: str, now: Optional[datetime] = None) -> PlanConstraints:
        """Constraints stated in the prompt, or three months from now with the default budget"""
        constraints = extract_constraints(prompt, now=now, default_budget=self.default_budget)
        if constraints is None:
            constraints = default_constraints(now, self.default_budget)
        return constraints

    def assemble_plan(self, draft: GeneratedPlanDraft, prompt: str,
                      owner_id: Optional[str] = None) -> Dict[str, Any]:
        """Build the stored plan object from a generated draft"""
        plan = create_empty_plan(owner_id)
        timestamp = int(time.time() * 1000)

        months = {}
        index = 0
        for month_key, campaigns in draft.months:
            finalized = []
            for campaign in campaigns:
                finalized.append(finalize_campaign(campaign, f"c_ai_{timestamp}_{index}"))
                index += 1
            months[month_key] = finalized

        plan.update({
            'campaignName': draft.campaign_name,
            'objective': draft.objective,
            'targetAudience': draft.target_audience,
            'location': draft.location,
            'totalInvestment': draft.total_investment,
            'aiPrompt': prompt,
            'aiImagePrompt': draft.ai_image_prompt,
            'months': months,
        })
        return plan

    async def generate_plan(
        self,
        prompt: str,
        owner_id: Optional[str] = None,
        language: str = 'pt-BR',
        now: Optional[datetime] = None,
        save_to_db: bool = True,
        logger_callback: Optional[Callable] = None
    ) -> Dict[str, Any]:
        """
        Run the complete plan workflow for a request

        Args:
            prompt: Free-text planning request
            owner_id: Owner of the new plan
            language: Response language tag
            now: Clock value for period extraction (defaults to the current time)
            save_to_db: Whether to persist the plan
            logger_callback: Custom logging function (msg: str, level: str = 'info')

        Returns:
            The plan dict (as stored when save_to_db is set)

        Raises:
            PlanGenerationError when generation fails; nothing is persisted
        """
        def log(message: str, level: str = 'info'):
            if logger_callback:
                logger_callback(message, level)
            else:
                getattr(logger, level)(message)

        log("🔍 STEP 1: CONSTRAINTS", 'info')
        constraints = self.resolve_constraints(prompt, now)
        log(f"   📅 {constraints.month_count} months: {', '.join(constraints.month_keys())}", 'info')
        log(f"   💰 Budget: {constraints.total_budget:.2f}", 'info')

        log("🤖 STEP 2: GENERATION", 'info')
        try:
            draft = await self.orchestrator.generate_plan(prompt, constraints, language)
        except Exception as e:
            log(f"❌ Generation failed: {e}", 'error')
            raise

        log("🔧 STEP 3: FINALIZATION", 'info')
        plan = self.assemble_plan(draft, prompt, owner_id)
        campaign_count = sum(len(c) for c in plan['months'].values())
        log(f"   ✅ {campaign_count} campaigns across {len(plan['months'])} months", 'info')

        if save_to_db and self.db:
            plan = await self.db.upsert_plan(plan)
            log(f"💾 Plan saved to database: {plan['id']}", 'info')

        log("✅ Workflow completed successfully", 'info')
        return plan

    async def regenerate_plan(
        self,
        plan: Dict[str, Any],
        prompt: Optional[str] = None,
        language: str = 'pt-BR',
        now: Optional[datetime] = None,
        save_to_db: bool = True
    ) -> Dict[str, Any]:
        """
        Regenerate an existing plan's campaigns, keeping its identity and assets

        Uses the stored aiPrompt when no new prompt is given.
        """
        prompt = prompt or plan.get('aiPrompt')
        if not prompt:
            raise ValueError("Plan has no stored prompt to regenerate from")

        fresh = await self.generate_plan(prompt, owner_id=plan.get('user_id'), language=language,
                                         now=now, save_to_db=False)
        for key in PRESERVED_ON_REGENERATE:
            if key in plan:
                fresh[key] = plan[key]

        logger.info(f"🔄 Plan {fresh['id']} regenerated")
        if save_to_db and self.db:
            fresh = await self.db.upsert_plan(fresh)
        return fresh
