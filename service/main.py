from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware
from pydantic import BaseModel
import uvicorn
import os
from dotenv import load_dotenv
from typing import Dict, List, Any, Optional
from datetime import datetime
import logging
import time

load_dotenv()

# Configure comprehensive logging with debug level for LLM interactions
logging.basicConfig(
    level=logging.DEBUG if os.getenv("DEBUG_LLM", "false").lower() == "true" else logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.StreamHandler(),  # Console output
        logging.FileHandler('/tmp/media_plan_service.log', mode='a') if os.path.exists('/tmp') else logging.NullHandler()
    ]
)

# Set specific loggers for detailed LLM debugging
logger = logging.getLogger(__name__)
orchestrator_logger = logging.getLogger('plan_orchestrator')
db_logger = logging.getLogger('database')

# Enable DEBUG level for LLM interactions when DEBUG_LLM is set
if os.getenv("DEBUG_LLM", "false").lower() == "true":
    orchestrator_logger.setLevel(logging.DEBUG)
    db_logger.setLevel(logging.DEBUG)
    logger.info("🔍 DEBUG_LLM enabled - Full LLM request/response logging activated")
else:
    logger.info("ℹ️ Standard logging level - Set DEBUG_LLM=true for detailed LLM logging")

from channel_formats import CHANNEL_FORMATS, validate_format
from database import Database, DatabaseError
from metrics_engine import reconcile_campaign
from plan_models import ErrorKind, FailureCause, PlanGenerationError, PurchaseUnit
from plan_orchestrator import DEFAULT_KEYWORD_COUNT, PlanOrchestrator
from plan_summary import calculate_plan_summary
from prompt_extractor import extract_constraints, default_constraints
from workflow_engine import WorkflowEngine, create_empty_plan

app = FastAPI(title="Media Plan Service", version="1.0.0")

STATUS_BY_CAUSE = {
    FailureCause.OVERLOADED: 503,
    FailureCause.QUOTA_EXCEEDED: 429,
    FailureCause.GENERIC: 502,
}

ASPECT_RATIOS = ('1:1', '16:9', '9:16', '4:3', '3:4')


# HTTP request/response logging middleware
class HTTPLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        start_time = time.time()

        logger.info(f"🌐 [HTTP IN] {request.method} {request.url.path}")

        try:
            response = await call_next(request)

            duration = (time.time() - start_time) * 1000
            logger.info(f"🌐 [HTTP OUT] {request.method} {request.url.path} → {response.status_code} ({duration:.0f}ms)")

            return response
        except Exception as e:
            duration = (time.time() - start_time) * 1000
            logger.error(f"❌ [HTTP MIDDLEWARE] Exception in middleware: {e}")
            logger.error(f"🔍 [HTTP MIDDLEWARE] Request: {request.method} {request.url.path} ({duration:.0f}ms)")
            raise

app.add_middleware(HTTPLoggingMiddleware)

# CORS middleware for the planner frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000",  # Local development (default)
        "http://localhost:5173",  # Vite dev server
        "https://*.vercel.app",   # Vercel deployments
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Global instances
db = Database()
orchestrator = PlanOrchestrator()
engine = WorkflowEngine(db, orchestrator)


class ReconcileRequest(BaseModel):
    campaign: Dict[str, Any]
    purchaseUnit: Optional[str] = None


class ExtractRequest(BaseModel):
    prompt: str
    now: Optional[datetime] = None
    defaultBudget: Optional[float] = None


class GeneratePlanRequest(BaseModel):
    prompt: str
    owner_id: Optional[str] = None
    language: str = 'pt-BR'
    save: bool = True


class RegeneratePlanRequest(BaseModel):
    prompt: Optional[str] = None
    language: str = 'pt-BR'


class ImageConceptsRequest(BaseModel):
    prompt: Optional[str] = None
    aspectRatios: List[str] = ['1:1']
    language: str = 'pt-BR'


class KeywordsRequest(BaseModel):
    prompt: str
    language: str = 'pt-BR'
    count: int = DEFAULT_KEYWORD_COUNT


class ProfileRequest(BaseModel):
    displayName: Optional[str] = None
    photoUrl: Optional[str] = None


def _generation_http_error(e: PlanGenerationError) -> HTTPException:
    status_code = STATUS_BY_CAUSE.get(e.cause, 502)
    logger.error(f"❌ Plan generation failed ({e.kind.value}/{e.cause.value}) after {e.attempts} attempt(s): {e.detail}")
    return HTTPException(status_code=status_code, detail={
        "error": e.kind.value,
        "cause": e.cause.value,
        "message": e.user_message,
    })


async def _get_plan_or_404(plan_id: str) -> Dict[str, Any]:
    plan = await db.get_plan_by_id(plan_id)
    if not plan:
        raise HTTPException(status_code=404, detail="Plan not found")
    return plan


def _reconcile_plan_campaigns(plan: Dict[str, Any]) -> Dict[str, Any]:
    months = plan.get('months') or {}
    plan['months'] = {
        month_key: [reconcile_campaign(c) for c in campaigns if isinstance(c, dict)]
        for month_key, campaigns in months.items() if isinstance(campaigns, list)
    }
    return plan


@app.on_event("startup")
async def startup_event():
    """Initialize services on startup"""
    await db.connect()

@app.on_event("shutdown")
async def shutdown_event():
    """Cleanup on shutdown"""
    await db.disconnect()

@app.get("/")
async def root():
    return {"message": "Media Plan Service", "status": "running"}

@app.get("/health")
async def health():
    return {
        "status": "healthy",
        "database": "mock" if db.is_mock else "supabase",
        "channels": len(orchestrator.channel_formats),
        "max_attempts": orchestrator.max_attempts,
    }

@app.post("/metrics/reconcile")
async def reconcile_metrics(body: ReconcileRequest):
    """Complete a partial campaign record; never fails on bad numbers"""
    if body.purchaseUnit and PurchaseUnit.parse(body.purchaseUnit) is None:
        raise HTTPException(status_code=400, detail=f"Unknown purchase unit: {body.purchaseUnit}")
    return {"campaign": reconcile_campaign(body.campaign, body.purchaseUnit)}

@app.post("/constraints/extract")
async def extract_plan_constraints(body: ExtractRequest):
    """Period and budget found in a prompt, or the defaults that would apply"""
    default_budget = body.defaultBudget or engine.default_budget
    constraints = extract_constraints(body.prompt, now=body.now, default_budget=default_budget)
    defaults_applied = constraints is None
    if defaults_applied:
        constraints = default_constraints(body.now, default_budget)

    return {
        "constraints": constraints.to_dict(),
        "bucketBudgets": constraints.bucket_budgets(),
        "defaultsApplied": defaults_applied,
        "ambiguity": ErrorKind.EXTRACTION_AMBIGUOUS.value if defaults_applied else None,
    }

@app.get("/formats/validate")
async def validate_channel_format(channel: str, format: str = ''):
    valid_format = validate_format(channel, format)
    return {
        "channel": channel,
        "format": format,
        "validFormat": valid_format,
        "valid": valid_format == format,
    }

@app.get("/formats")
async def list_channel_formats():
    return {"channels": {k: list(v) for k, v in CHANNEL_FORMATS.items()}}

@app.post("/plans/generate")
async def generate_plan(body: GeneratePlanRequest):
    """Generate a media plan from a free-text request"""
    logger.info(f"📝 Plan generation requested (owner={body.owner_id}, language={body.language})")
    try:
        plan = await engine.generate_plan(body.prompt, owner_id=body.owner_id,
                                          language=body.language, save_to_db=body.save)
    except PlanGenerationError as e:
        raise _generation_http_error(e)
    except DatabaseError as e:
        raise HTTPException(status_code=500, detail=str(e))

    return {"plan": plan, "summary": calculate_plan_summary(plan)}

@app.post("/plans/{plan_id}/regenerate")
async def regenerate_plan(plan_id: str, body: RegeneratePlanRequest):
    plan = await _get_plan_or_404(plan_id)
    try:
        regenerated = await engine.regenerate_plan(plan, prompt=body.prompt, language=body.language)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except PlanGenerationError as e:
        raise _generation_http_error(e)
    except DatabaseError as e:
        raise HTTPException(status_code=500, detail=str(e))

    return {"plan": regenerated, "summary": calculate_plan_summary(regenerated)}

@app.post("/plans/{plan_id}/images")
async def generate_image_concepts(plan_id: str, body: ImageConceptsRequest):
    """Creative image concepts for a plan, one request per aspect ratio"""
    plan = await _get_plan_or_404(plan_id)

    unknown = [r for r in body.aspectRatios if r not in ASPECT_RATIOS]
    if unknown or not body.aspectRatios:
        raise HTTPException(status_code=400, detail=f"Aspect ratios must be among {list(ASPECT_RATIOS)}")

    prompt = body.prompt or plan.get('aiImagePrompt')
    if not prompt:
        raise HTTPException(status_code=400, detail="No image prompt given and the plan has none stored")

    try:
        concepts = await orchestrator.generate_image_concepts(prompt, body.aspectRatios, body.language)
    except PlanGenerationError as e:
        raise _generation_http_error(e)

    return {"plan_id": plan_id, "prompt": prompt, "images": concepts}

@app.post("/keywords")
async def generate_keywords(body: KeywordsRequest):
    """Search keyword suggestions for a campaign description"""
    if not 1 <= body.count <= 50:
        raise HTTPException(status_code=400, detail="count must be between 1 and 50")
    try:
        keywords = await orchestrator.generate_keywords(body.prompt, body.language, body.count)
    except PlanGenerationError as e:
        raise _generation_http_error(e)

    return {"keywords": keywords, "count": len(keywords)}

@app.post("/plans")
async def create_plan(owner_id: str):
    """Create and store a blank plan"""
    try:
        plan = await db.upsert_plan(create_empty_plan(owner_id))
    except DatabaseError as e:
        raise HTTPException(status_code=500, detail=str(e))
    return {"plan": plan}

@app.get("/plans")
async def list_plans(owner_id: str):
    plans = await db.get_plans_by_owner(owner_id)
    return {"plans": plans, "count": len(plans)}

@app.get("/plans/{plan_id}")
async def get_plan(plan_id: str):
    return {"plan": await _get_plan_or_404(plan_id)}

@app.get("/plans/{plan_id}/summary")
async def get_plan_summary(plan_id: str):
    plan = await _get_plan_or_404(plan_id)
    return calculate_plan_summary(plan)

@app.put("/plans/{plan_id}")
async def update_plan(plan_id: str, plan: Dict[str, Any], recalculate: bool = True):
    """Save an edited plan; campaign metrics are reconciled unless recalculate=false"""
    plan['id'] = plan_id
    if recalculate:
        plan = _reconcile_plan_campaigns(plan)

    try:
        saved = await db.upsert_plan(plan)
    except DatabaseError as e:
        raise HTTPException(status_code=500, detail=str(e))
    return {"plan": saved}

@app.delete("/plans/{plan_id}")
async def delete_plan(plan_id: str):
    try:
        deleted = await db.delete_plan(plan_id)
    except DatabaseError as e:
        raise HTTPException(status_code=500, detail=str(e))
    if not deleted:
        raise HTTPException(status_code=404, detail="Plan not found")
    return {"success": True, "plan_id": plan_id}

@app.get("/public/plans/{plan_id}")
async def get_public_plan(plan_id: str):
    """A shared plan with its owner's public profile; private plans are not found"""
    plan = await db.get_public_plan_by_id(plan_id)
    if not plan:
        raise HTTPException(status_code=404, detail="Plan not found")

    owner = await db.get_public_profile(plan['user_id']) if plan.get('user_id') else None
    return {"plan": plan, "owner": owner, "summary": calculate_plan_summary(plan)}

@app.get("/public/profiles/{user_id}")
async def get_public_profile(user_id: str):
    profile = await db.get_public_profile(user_id)
    if not profile:
        raise HTTPException(status_code=404, detail="Profile not found")
    return {"profile": profile}

@app.put("/profiles/{user_id}")
async def update_profile(user_id: str, body: ProfileRequest):
    try:
        profile = await db.upsert_profile(user_id, display_name=body.displayName, photo_url=body.photoUrl)
    except DatabaseError as e:
        raise HTTPException(status_code=500, detail=str(e))
    return {"profile": profile}

if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", 8000)))
