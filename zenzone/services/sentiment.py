"""Keyword based sentiment, intent and crisis classification.

``classify`` is a pure function of its input. It is a screening aid for the
chat UI, not a diagnosis: anything matching a crisis phrase is flagged so the
client can surface emergency resources.
"""

import re

CRISIS_KEYWORDS = (
    'suicide', 'kill myself', 'end it', 'self harm', 'hurt myself', 'overdose',
    'end my life', 'die', 'want to die', 'no reason to live', 'cut myself',
)

EMOTION_LEXICON = {
    'joy': (
        'happy', 'glad', 'grateful', 'thankful', 'relieved', 'content', 'joy', 'excited',
        'proud', 'hopeful', 'optimistic', 'peaceful',
    ),
    'sadness': (
        'sad', 'down', 'depressed', 'numb', 'crying', 'tears', 'lonely', 'empty',
        'hopeless', 'worthless', 'miserable', 'grief',
    ),
    'anger': (
        'angry', 'mad', 'furious', 'rage', 'irritated', 'annoyed', 'frustrated',
        'pissed', 'resentful', 'hate',
    ),
    'fear': (
        'afraid', 'fear', 'scared', 'terrified', 'panic', 'panicking', 'phobia',
        'anxious', 'anxiety', 'worried', 'worry', 'nervous',
    ),
    'anxiety': (
        'anxiety', 'anxious', 'nervous', 'on edge', 'racing thoughts', 'overthinking',
        'uneasy', 'restless', 'tense',
    ),
    'stress': (
        'stress', 'stressed', 'overwhelmed', 'pressure', 'burned out', 'exhausted',
        'cant cope', 'too much', 'breakdown',
    ),
    'loneliness': (
        'lonely', 'isolated', 'alone', 'no one', 'left out', 'abandoned', 'disconnected',
    ),
    'hope': (
        'hope', 'hopeful', 'optimistic', 'improving', 'better', 'progress', 'recover',
        'healing', 'confident',
    ),
}

POSITIVE_EMOTIONS = ('joy', 'hope')
NEGATIVE_EMOTIONS = ('sadness', 'anger', 'fear', 'anxiety', 'stress', 'loneliness')

INTENT_KEYWORDS = {
    'seek_help': ('help', 'support', 'talk to someone', 'counsel', 'therapist', 'appointment'),
    'gratitude': ('thank', 'thanks', 'grateful', 'appreciate'),
    'greeting': ('hello', 'hi', 'hey', 'good morning', 'good evening'),
    'sleep': ('sleep', 'insomnia', 'tired', 'nightmare', 'awake'),
    'academic': ('exam', 'exams', 'grades', 'assignment', 'deadline', 'study', 'class'),
}

NEUTRAL_BAND = 0.05
MEDIUM_CRISIS_SCORE = -0.4


def _count(term: str, text: str) -> int:
    # Multi-word phrases match as substrings, single words on word boundaries.
    if ' ' in term:
        return len(re.findall(re.escape(term), text))
    return len(re.findall(rf'\b{re.escape(term)}\b', text))


def _normalize(text: str) -> str:
    return text.lower().replace("'", '').replace('’', '')


def detect_crisis(text: str) -> bool:
    lowered = _normalize(text or '')
    return any(_count(keyword, lowered) for keyword in CRISIS_KEYWORDS)


def score_emotions(text: str) -> tuple[dict[str, float], list[str]]:
    lowered = _normalize(text or '')
    raw = {
        emotion: sum(_count(word, lowered) for word in words)
        for emotion, words in EMOTION_LEXICON.items()
    }
    peak = max(raw.values(), default=0)
    scores = {emotion: round(value / peak, 3) if peak else 0.0 for emotion, value in raw.items()}
    top = sorted((emotion for emotion, value in scores.items() if value > 0), key=lambda e: -scores[e])[:3]
    return scores, top


def polarity(text: str) -> float:
    lowered = _normalize(text or '')
    positive = sum(_count(word, lowered) for emotion in POSITIVE_EMOTIONS for word in EMOTION_LEXICON[emotion])
    negative = sum(_count(word, lowered) for emotion in NEGATIVE_EMOTIONS for word in EMOTION_LEXICON[emotion])
    total = positive + negative
    if not total:
        return 0.0
    return round((positive - negative) / total, 3)


def detect_intents(text: str) -> list[str]:
    lowered = _normalize(text or '')
    return [
        intent
        for intent, keywords in INTENT_KEYWORDS.items()
        if any(_count(keyword, lowered) for keyword in keywords)
    ]


def label_from_score(score: float) -> str:
    if score >= NEUTRAL_BAND:
        return 'positive'
    if score <= -NEUTRAL_BAND:
        return 'negative'
    return 'neutral'


def classify(text: str) -> dict:
    score = polarity(text)
    crisis = detect_crisis(text)
    emotions, top_emotions = score_emotions(text)

    if crisis:
        crisis_level = 'emergency'
    elif score <= MEDIUM_CRISIS_SCORE:
        crisis_level = 'medium'
    else:
        crisis_level = 'low'

    return {
        'sentiment': 'concerning' if crisis else label_from_score(score),
        'score': score,
        'intents': detect_intents(text),
        'crisisFlag': crisis,
        'crisisLevel': crisis_level,
        'supportiveResponseNeeded': crisis or score < 0,
        'emotions': emotions,
        'topEmotions': top_emotions,
    }
