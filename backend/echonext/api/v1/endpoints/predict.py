"""Next-word prediction endpoints."""

from typing import Literal

from fastapi import APIRouter
from pydantic import BaseModel

from echonext.api.deps import PredictionSelectorDep
from echonext.knowledge.models import PredictionOutcome

router = APIRouter()


class PredictRequest(BaseModel):
    """A transcribed utterance to predict the next word for."""

    text: str
    language: Literal["ja", "en"] = "ja"


@router.post("/predict", response_model=PredictionOutcome)
async def predict(request: PredictRequest, selector: PredictionSelectorDep) -> PredictionOutcome:
    """Predict the next word for one utterance.

    A ``source="none"`` outcome is a normal response, not an error.
    """
    return await selector.predict(request.text, request.language)


@router.post("/reset")
async def reset(selector: PredictionSelectorDep) -> dict[str, bool]:
    """Clear the rolling conversation history."""
    selector.reset()
    return {"success": True}
