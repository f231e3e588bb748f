"""Product photo analysis through a vision-language model.

The model is asked for one JSON object describing the product:

    {"name": ..., "description": ..., "expirationDate": "YYYY-MM-DD" | null,
     "category": <one of CATEGORIES>, "confidence": 0..1}

Replies are often wrapped in Markdown fences or padded with prose, so the
parser strips fences and falls back to the first ``{...}`` span. A reply that
still does not parse is an error for the caller; nothing is retried.
"""
from datetime import date
import json
import logging
import re

import requests
from flask import current_app

from .models import CATEGORIES

logger = logging.getLogger(__name__)

ANTHROPIC_VERSION = '2023-06-01'
SUPPORTED_MIME_TYPES = {'image/jpeg', 'image/png', 'image/gif', 'image/webp'}

FENCE_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)```")
OBJECT_RE = re.compile(r"\{[\s\S]*\}")

FIELDS_TEXT = """1. "name": The product name (be specific, include brand if visible)
2. "description": A brief description of the item
3. "expirationDate": {expiration_hint} (format: YYYY-MM-DD), or null if not visible
4. "category": One of: {categories}
5. "confidence": A number from 0 to 1 indicating how confident you are in the analysis"""

EXAMPLE_TEXT = """Return ONLY valid JSON, no other text. Example:
{"name": "Campbell's Chicken Noodle Soup", "description": "Canned soup, ready to heat and serve", "expirationDate": "2025-06-15", "category": "CANNED_FOOD", "confidence": 0.95}"""


class AnalysisError(Exception):
    pass


def build_prompt(two_images: bool, language: str = 'en', today: date | None = None) -> str:
    today = today or date.today()
    if two_images:
        intro = (
            "You are analyzing two images of a food or emergency supply item:\n"
            "- Image 1: The front/label of the product\n"
            "- Image 2: The area showing the expiration/best-by date\n\n"
            "Extract the following information and return it as JSON:"
        )
        hint = "The expiration date from image 2"
    else:
        intro = (
            "Analyze this image of a food or emergency supply item. "
            "Extract the following information and return it as JSON:"
        )
        hint = "The expiration date if visible"
    fields = FIELDS_TEXT.format(expiration_hint=hint, categories=', '.join(CATEGORIES))
    date_note = (
        f"Note: Today's date is {today.isoformat()}. Expiration dates are almost never in the past "
        "(users are scanning items they're adding to their inventory). If you read a date that "
        "appears to be in the past, it's likely you misread it or it's a manufacturing date, not an "
        "expiration date. Only return an expirationDate in the past if you are absolutely certain."
    )
    if language == 'da':
        language_note = "IMPORTANT: Write the name and description in Danish."
    else:
        language_note = "Write the name and description in English."
    return f"{intro}\n\n{fields}\n\n{date_note}\n\n{language_note}\n\n{EXAMPLE_TEXT}"


def parse_response(text: str) -> dict:
    json_text = (text or '').strip()
    fenced = FENCE_RE.search(json_text)
    if fenced:
        json_text = fenced.group(1).strip()
    if not json_text.startswith('{'):
        found = OBJECT_RE.search(json_text)
        if found:
            json_text = found.group(0)
    try:
        result = json.loads(json_text)
    except ValueError as e:
        raise AnalysisError('Failed to parse AI response as JSON') from e
    if not isinstance(result, dict):
        raise AnalysisError('AI response is not a JSON object')
    return {
        'name': result.get('name'),
        'description': result.get('description'),
        'expirationDate': result.get('expirationDate'),
        'category': result.get('category'),
        'confidence': result.get('confidence'),
    }


def _image_block(image: dict) -> dict:
    return {
        'type': 'image',
        'source': {'type': 'base64', 'media_type': image['mimeType'], 'data': image['base64']},
    }


def analyze_images(front: dict, expiration: dict | None = None, language: str = 'en', today: date | None = None) -> dict:
    cfg = current_app.config['PREPPER_CONFIG'].get('ai') or {}
    if not cfg.get('api_key'):
        raise AnalysisError('AI analysis is not configured')
    images = [front] + ([expiration] if expiration else [])
    for image in images:
        if image.get('mimeType') not in SUPPORTED_MIME_TYPES:
            raise AnalysisError(f"Unsupported image type: {image.get('mimeType')}")
    content = [_image_block(i) for i in images]
    content.append({'type': 'text', 'text': build_prompt(expiration is not None, language, today)})

    logger.info("Analyzing %d image(s) with %s", len(images), cfg.get('model'))
    try:
        response = requests.post(
            cfg.get('api_url'),
            headers={
                'x-api-key': cfg['api_key'],
                'anthropic-version': ANTHROPIC_VERSION,
                'content-type': 'application/json',
            },
            json={
                'model': cfg.get('model'),
                'max_tokens': int(cfg.get('max_tokens') or 1024),
                'messages': [{'role': 'user', 'content': content}],
            },
            timeout=60,
        )
        response.raise_for_status()
        data = response.json()
    except (requests.RequestException, ValueError) as e:
        raise AnalysisError(f"AI request failed: {e}") from e

    text = next((b.get('text') for b in data.get('content') or [] if b.get('type') == 'text'), None)
    if not text:
        raise AnalysisError('No text response from AI')
    logger.debug("AI replied (stop_reason=%s): %s", data.get('stop_reason'), text)
    try:
        return parse_response(text)
    except AnalysisError:
        logger.error("Unparseable AI response: %s", text)
        raise
