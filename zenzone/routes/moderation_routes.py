from fastapi import APIRouter, Depends
from pydantic import BaseModel, field_validator

from zenzone.auth.dependencies import get_current_user
from zenzone.models.user import User
from zenzone.services import moderation

router = APIRouter(tags=['moderation'])


class PerspectiveRequest(BaseModel):
    text: str
    attributes: list[str] | None = None
    languages: list[str] | None = None

    @field_validator('text')
    @classmethod
    def validate_text(cls, value: str) -> str:
        if not value:
            raise ValueError('Missing text')
        return value


class PerspectiveResponse(BaseModel):
    scores: dict[str, float]
    action: str
    thresholds: dict[str, float]


@router.post('/perspective', response_model=PerspectiveResponse)
def screen_text(data: PerspectiveRequest, current_user: User = Depends(get_current_user)):
    del current_user
    scores = moderation.analyze_text(
        data.text,
        attributes=data.attributes or moderation.DEFAULT_ATTRIBUTES,
        languages=data.languages or moderation.DEFAULT_LANGUAGES,
    )
    return PerspectiveResponse(scores=scores, action=moderation.action_for(scores), thresholds=moderation.thresholds())
