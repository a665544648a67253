from fastapi import APIRouter, Depends
from pydantic import BaseModel, field_validator

from zenzone.auth.dependencies import get_current_user
from zenzone.models.user import User
from zenzone.services.sentiment import classify

router = APIRouter(tags=['sentiment'])

MAX_TEXT_LENGTH = 5000


class SentimentRequest(BaseModel):
    text: str

    @field_validator('text')
    @classmethod
    def validate_text(cls, value: str) -> str:
        if not value.strip():
            raise ValueError('Missing text')
        if len(value) > MAX_TEXT_LENGTH:
            raise ValueError(f'Text must be {MAX_TEXT_LENGTH} characters or fewer.')
        return value


class SentimentResponse(BaseModel):
    sentiment: str
    score: float
    intents: list[str]
    crisisFlag: bool
    crisisLevel: str
    supportiveResponseNeeded: bool
    emotions: dict[str, float]
    topEmotions: list[str]


@router.post('', response_model=SentimentResponse)
def analyze_sentiment(data: SentimentRequest, current_user: User = Depends(get_current_user)):
    del current_user
    return classify(data.text)
