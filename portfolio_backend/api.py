from __future__ import annotations

import logging
from typing import Any, Dict

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .feature_flags import FeatureFlags

logger = logging.getLogger(__name__)

# Import Schedule API router
try:
    from .project_planning.api import router as schedule_router
    HAS_SCHEDULE_API = True
except ImportError as e:
    logger.warning(f"Schedule API not available: {e}")
    HAS_SCHEDULE_API = False
    schedule_router = None


app = FastAPI(title="Portfolio Planner – Schedule Engine")

# Include Schedule router
if HAS_SCHEDULE_API and schedule_router and FeatureFlags.get_config().enable_schedule_api:
    app.include_router(schedule_router)
    logger.info("Schedule API loaded successfully")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# -------------------------------
# Endpoints
# -------------------------------

@app.get("/health")
def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.get("/feature-flags")
def get_feature_flags() -> Dict[str, Any]:
    """Configuração ativa do schedule engine."""
    return FeatureFlags.to_dict()
