"""API router aggregating all endpoint routers.

Knowledge bases:
  /api/rag-knowledge (list), /load, /current, /unload, /build
  /api/knowledge-folders

Prediction:
  /api/predict, /api/reset
"""

from fastapi import APIRouter

from echonext.api.v1.endpoints import knowledge, predict

api_router = APIRouter()

# -------------------------------------------------------------------------
# Knowledge bases
# -------------------------------------------------------------------------
api_router.include_router(knowledge.router, tags=["knowledge"])

# -------------------------------------------------------------------------
# Prediction
# -------------------------------------------------------------------------
api_router.include_router(predict.router, tags=["predict"])
