from supabase import create_client, Client
import copy
import json
import logging
import os
from dataclasses import asdict, is_dataclass
from enum import Enum
from typing import Dict, List, Any, Optional, Mapping
from datetime import datetime

logger = logging.getLogger(__name__)

# Collections a stored plan always exposes, with their empty value
PLAN_COLLECTIONS = {
    'months': dict,
    'creatives': dict,
    'adGroups': list,
    'utmLinks': list,
    'customFormats': list,
}

# Postgres error codes worth a specific message
MISSING_TABLE_CODE = '42P01'
MISSING_COLUMN_CODE = '42703'

# Profile columns anyone may read
PUBLIC_PROFILE_FIELDS = ('display_name', 'photo_url')


class DatabaseError(Exception):
    """Raised when a plan or profile write fails"""


def plan_from_db(row: Mapping[str, Any]) -> Dict[str, Any]:
    """Normalize a stored row: missing collections become empty"""
    plan = dict(row)
    for key, factory in PLAN_COLLECTIONS.items():
        if plan.get(key) is None:
            plan[key] = factory()
    return plan


class Database:
    """Database handler for Supabase operations on the plans and profiles tables"""

    def __init__(self):
        self.url = os.getenv("SUPABASE_URL")
        self.key = os.getenv("SUPABASE_KEY")
        self.client: Optional[Client] = None
        # Mock mode storage, used when Supabase is not configured
        self._mock_plans: Dict[str, Dict[str, Any]] = {}
        self._mock_profiles: Dict[str, Dict[str, Any]] = {}

    @property
    def is_mock(self) -> bool:
        return self.client is None

    def _serialize_json_data(self, data: Any) -> Any:
        """Convert non-serializable data types to JSON-serializable format"""
        if data is None:
            return None

        try:
            json.dumps(data)
            return data
        except (TypeError, ValueError):
            pass

        if isinstance(data, Enum):
            return data.value
        elif is_dataclass(data) and not isinstance(data, type):
            return self._serialize_json_data(asdict(data))
        elif isinstance(data, Mapping):
            return {k: self._serialize_json_data(v) for k, v in data.items()}
        elif isinstance(data, (list, tuple, set)):
            return [self._serialize_json_data(item) for item in data]
        elif isinstance(data, datetime):
            return data.isoformat()
        else:
            return str(data)

    async def connect(self):
        """Initialize Supabase client"""
        if self.url and self.key and self.url != "dummy" and self.key != "dummy":
            try:
                self.client = create_client(self.url, self.key)
                logger.info(f"✅ Connected to Supabase: {self.url[:20]}...")
            except Exception as e:
                logger.error(f"❌ Failed to connect to Supabase: {e}")
        else:
            logger.warning("⚠️ Warning: Supabase credentials not configured - using mock mode")
            logger.debug(f"SUPABASE_URL: {self.url}")
            logger.debug(f"SUPABASE_KEY: {self.key[:10] if self.key else 'None'}...")

    async def disconnect(self):
        """Cleanup database connections"""
        self.client = None

    # Plan operations
    async def upsert_plan(self, plan: Dict[str, Any]) -> Dict[str, Any]:
        """Insert or update a plan by id, returning the stored plan"""
        if not plan.get('id'):
            raise ValueError("Plan must have an id")

        row = self._serialize_json_data(plan)
        row.setdefault('created_at', datetime.utcnow().isoformat())

        logger.debug(f"🔄 Saving plan {row['id']} (user={row.get('user_id')}, name='{row.get('campaignName')}')")

        if not self.client:
            self._mock_plans[row['id']] = copy.deepcopy(row)
            return plan_from_db(copy.deepcopy(row))

        try:
            result = self.client.table("plans").upsert(row).execute()
        except Exception as e:
            code = getattr(e, 'code', None)
            logger.error(f"❌ Database error in upsert_plan: {e} (code={code})")
            if code == MISSING_TABLE_CODE:
                raise DatabaseError('Table "plans" not found in Supabase') from e
            if code == MISSING_COLUMN_CODE:
                raise DatabaseError('Table "plans" has an unexpected structure') from e
            raise DatabaseError(f"Failed to save plan: {e}") from e

        logger.info(f"💾 Plan saved: {row['id']}")
        return plan_from_db(result.data[0]) if result.data else plan_from_db(row)

    async def get_plan_by_id(self, plan_id: str) -> Optional[Dict[str, Any]]:
        """Get a single plan, None when it does not exist"""
        if not self.client:
            row = self._mock_plans.get(plan_id)
            return plan_from_db(copy.deepcopy(row)) if row else None

        try:
            result = self.client.table("plans")\
                .select("*")\
                .eq("id", plan_id)\
                .limit(1)\
                .execute()

            return plan_from_db(result.data[0]) if result.data else None

        except Exception as e:
            logger.error(f"Database error in get_plan_by_id: {e}")
            return None

    async def get_plans_by_owner(self, owner_id: str) -> List[Dict[str, Any]]:
        """All plans of an owner, newest first"""
        if not self.client:
            rows = [r for r in self._mock_plans.values() if r.get('user_id') == owner_id]
            rows.sort(key=lambda r: r.get('created_at') or '', reverse=True)
            return [plan_from_db(copy.deepcopy(r)) for r in rows]

        try:
            result = self.client.table("plans")\
                .select("*")\
                .eq("user_id", owner_id)\
                .order("created_at", desc=True)\
                .execute()

            return [plan_from_db(row) for row in result.data or []]

        except Exception as e:
            logger.error(f"Database error in get_plans_by_owner: {e}")
            return []

    async def delete_plan(self, plan_id: str) -> bool:
        """Delete a plan; returns whether a row was removed"""
        if not self.client:
            return self._mock_plans.pop(plan_id, None) is not None

        try:
            result = self.client.table("plans").delete().eq("id", plan_id).execute()
        except Exception as e:
            logger.error(f"❌ Database error in delete_plan: {e}")
            raise DatabaseError(f"Failed to delete plan: {e}") from e

        deleted = bool(result.data)
        logger.info(f"🗑️ Plan {plan_id} deleted: {deleted}")
        return deleted

    async def get_public_plan_by_id(self, plan_id: str) -> Optional[Dict[str, Any]]:
        """A plan its owner shared, None when it does not exist or is private"""
        if not self.client:
            row = self._mock_plans.get(plan_id)
            return plan_from_db(copy.deepcopy(row)) if row and row.get('is_public') else None

        try:
            result = self.client.table("plans")\
                .select("*")\
                .eq("id", plan_id)\
                .eq("is_public", True)\
                .limit(1)\
                .execute()

            return plan_from_db(result.data[0]) if result.data else None

        except Exception as e:
            logger.error(f"Database error in get_public_plan_by_id: {e}")
            return None

    # Profile operations
    async def get_public_profile(self, user_id: str) -> Optional[Dict[str, Any]]:
        """Display name and photo of a user, None when there is no profile"""
        if not self.client:
            row = self._mock_profiles.get(user_id)
            return {k: row.get(k) for k in PUBLIC_PROFILE_FIELDS} if row else None

        try:
            result = self.client.table("profiles")\
                .select(", ".join(PUBLIC_PROFILE_FIELDS))\
                .eq("id", user_id)\
                .limit(1)\
                .execute()

            return dict(result.data[0]) if result.data else None

        except Exception as e:
            logger.error(f"Database error in get_public_profile: {e}")
            return None

    async def upsert_profile(self, user_id: str, display_name: Optional[str] = None,
                             photo_url: Optional[str] = None) -> Dict[str, Any]:
        """Create or update a profile; fields left as None keep their stored value"""
        row = {'id': user_id}
        if display_name is not None:
            row['display_name'] = display_name
        if photo_url is not None:
            row['photo_url'] = photo_url

        if not self.client:
            stored = {**self._mock_profiles.get(user_id, {}), **row}
            self._mock_profiles[user_id] = stored
            return dict(stored)

        try:
            result = self.client.table("profiles").upsert(row).execute()
        except Exception as e:
            logger.error(f"❌ Database error in upsert_profile: {e}")
            raise DatabaseError(f"Failed to save profile: {e}") from e

        logger.info(f"👤 Profile saved: {user_id}")
        return dict(result.data[0]) if result.data else row
