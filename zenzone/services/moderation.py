"""Toxicity screening through Google's Perspective API.

Moderation is advisory: the route reports scores and a suggested action, and
stored messages are still only masked by ``message_store.mask_profanity``.
"""

import logging

import httpx

from zenzone.core import config
from zenzone.core.errors import ServiceUnavailable, UpstreamError

logger = logging.getLogger(__name__)

PERSPECTIVE_URL = 'https://commentanalyzer.googleapis.com/v1alpha1/comments:analyze'

DEFAULT_ATTRIBUTES = (
    'TOXICITY',
    'SEVERE_TOXICITY',
    'INSULT',
    'HARASSMENT',
    'PROFANITY',
    'IDENTITY_ATTACK',
    'THREAT',
    'SEXUALLY_EXPLICIT',
)
DEFAULT_LANGUAGES = ('en',)

BLOCK = 'block'
WARN = 'warn'
ALLOW = 'allow'


def is_enabled() -> bool:
    return bool(config.PERSPECTIVE_API_KEY)


def thresholds() -> dict[str, float]:
    return {'BLOCK': config.PERSPECTIVE_BLOCK_THRESHOLD, 'WARN': config.PERSPECTIVE_WARN_THRESHOLD}


def action_for(scores: dict[str, float]) -> str:
    limits = thresholds()
    peak = max([0.0, *scores.values()])
    if peak >= limits['BLOCK']:
        return BLOCK
    if peak >= limits['WARN']:
        return WARN
    return ALLOW


def _scores(body: dict) -> dict[str, float]:
    scores = {}
    for attribute, result in (body.get('attributeScores') or {}).items():
        value = ((result or {}).get('summaryScore') or {}).get('value')
        scores[attribute] = float(value) if isinstance(value, (int, float)) else 0.0
    return scores


def analyze_text(
    text: str,
    attributes: tuple[str, ...] | list[str] = DEFAULT_ATTRIBUTES,
    languages: tuple[str, ...] | list[str] = DEFAULT_LANGUAGES,
    client: httpx.Client | None = None,
) -> dict[str, float]:
    """Return the summary score of every requested attribute, each in ``[0, 1]``."""
    if not is_enabled():
        raise ServiceUnavailable('Perspective not configured on server')

    payload = {
        'comment': {'text': str(text or '')},
        'requestedAttributes': {attribute: {} for attribute in attributes},
        'languages': list(languages),
        'doNotStore': True,
    }

    owns_client = client is None
    http = client or httpx.Client(timeout=config.PERSPECTIVE_TIMEOUT_SECONDS)
    try:
        response = http.post(PERSPECTIVE_URL, params={'key': config.PERSPECTIVE_API_KEY}, json=payload)
        body = response.json()
    except (httpx.HTTPError, ValueError) as exc:
        logger.warning('Perspective request failed: %s', exc)
        raise UpstreamError('Moderation failed') from exc
    finally:
        if owns_client:
            http.close()

    if not isinstance(body, dict) or body.get('error'):
        error = body.get('error') if isinstance(body, dict) else None
        message = (error or {}).get('message') or 'Perspective API error'
        logger.warning('Perspective returned an error: %s', message)
        raise UpstreamError(message)

    return _scores(body)
