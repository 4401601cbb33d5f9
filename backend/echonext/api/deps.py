"""FastAPI dependencies for the prediction service components.

The knowledge store and prediction selector are created once in the app
lifespan and stored on ``app.state``. Tests override these functions via
``app.dependency_overrides``.
"""

from typing import Annotated

from fastapi import Depends, Request

from echonext.core.config import Settings, get_settings
from echonext.knowledge.store import KnowledgeStore
from echonext.services.prediction import PredictionSourceSelector


def get_knowledge_store(request: Request) -> KnowledgeStore:
    return request.app.state.knowledge_store


def get_prediction_selector(request: Request) -> PredictionSourceSelector:
    return request.app.state.prediction_selector


SettingsDep = Annotated[Settings, Depends(get_settings)]
KnowledgeStoreDep = Annotated[KnowledgeStore, Depends(get_knowledge_store)]
PredictionSelectorDep = Annotated[PredictionSourceSelector, Depends(get_prediction_selector)]
