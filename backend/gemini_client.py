import base64
import binascii
import json
import logging
import re
import time
import urllib.error
import urllib.request
from typing import Any, Dict, Optional

import cv2
import numpy as np

import config
from receipt_models import SUPPORTED_LANGUAGES

logger = logging.getLogger("tabsplit")

DATA_URI_PATTERN = re.compile(r"^data:[^,]*,", re.IGNORECASE)

RECEIPT_SCHEMA = {
    "type": "OBJECT",
    "properties": {
        "restaurantName": {"type": "STRING", "description": "Name of the restaurant"},
        "date": {"type": "STRING", "description": "Date of the meal in YYYY-MM-DD format"},
        "currency": {"type": "STRING", "description": "Currency symbol or code found on receipt"},
        "items": {
            "type": "ARRAY",
            "items": {
                "type": "OBJECT",
                "properties": {
                    "quantity": {"type": "NUMBER"},
                    "description": {"type": "STRING"},
                    "originalDescription": {"type": "STRING"},
                    "price": {"type": "NUMBER"},
                },
                "required": ["quantity", "description", "price"],
            },
        },
        "subtotal": {"type": "NUMBER", "description": "Sum of item prices before tax and tip"},
        "tax": {"type": "NUMBER", "description": "Sales tax or VAT amount"},
        "tip": {"type": "NUMBER", "description": "Gratuity, tip, or service charge amount if found"},
        "total": {"type": "NUMBER", "description": "The final total amount on the receipt"},
    },
    "required": ["restaurantName", "items", "total"],
}


def build_prompt(target_language: str) -> str:
    language = SUPPORTED_LANGUAGES.get(target_language, target_language)
    return (
        "Analyze this restaurant receipt.\n"
        "1. Extract the restaurant name and date.\n"
        "2. Extract all line items (quantity, description, price). price is the line total.\n"
        "3. Identify subtotal, tax, tip (if present), and the grand total.\n"
        "4. If the tip is not a separate line but part of the total, try to derive it or mark as 0 if unknown.\n"
        f"5. Translate the 'description' of all items into {language} if the original language is different, "
        "and put the untranslated text in 'originalDescription'.\n"
        "6. Return the result in the specified JSON format."
    )


def strip_data_uri(image: str) -> str:
    return DATA_URI_PATTERN.sub("", image.strip(), count=1)


def decode_image_payload(image: str) -> Optional[bytes]:
    """Base64 image bytes from a data URI (or bare base64), None if malformed."""
    if not isinstance(image, str) or not image.strip():
        return None
    try:
        return base64.b64decode(strip_data_uri(image), validate=True)
    except (binascii.Error, ValueError):
        return None


def prepare_image(image_data: bytes) -> Optional[bytes]:
    """Decode, downscale and re-encode as JPEG. None when not a readable raster."""
    nparr = np.frombuffer(image_data, np.uint8)
    if nparr.size == 0:
        return None
    image = cv2.imdecode(nparr, cv2.IMREAD_COLOR)
    if image is None:
        return None
    height, width = image.shape[:2]
    longest = max(height, width)
    if longest > config.MAX_IMAGE_DIM:
        scale = config.MAX_IMAGE_DIM / float(longest)
        image = cv2.resize(
            image,
            (max(1, int(width * scale)), max(1, int(height * scale))),
            interpolation=cv2.INTER_AREA,
        )
    ok, buf = cv2.imencode(".jpg", image, [cv2.IMWRITE_JPEG_QUALITY, config.JPEG_QUALITY])
    if not ok:
        return None
    return buf.tobytes()


def extract_json_block(text: str) -> Optional[Dict[str, Any]]:
    text = text.strip()
    if text.startswith("```"):
        text = re.sub(r"^```(?:json)?", "", text).strip()
        text = re.sub(r"```$", "", text).strip()
    try:
        parsed = json.loads(text)
    except ValueError:
        match = re.search(r"\{[\s\S]*\}", text)
        if not match:
            return None
        try:
            parsed = json.loads(match.group(0))
        except ValueError:
            return None
    return parsed if isinstance(parsed, dict) else None


def _assign_item_ids(data: Dict[str, Any]) -> Dict[str, Any]:
    items = data.get("items")
    if not isinstance(items, list):
        return data
    stamp = int(time.time() * 1000)
    data["items"] = [
        {**item, "id": f"item-{idx}-{stamp}"} if isinstance(item, dict) else item
        for idx, item in enumerate(items)
    ]
    return data


def analyze_receipt(image_data: bytes, target_language: str) -> Optional[Dict[str, Any]]:
    """Raw receipt JSON from Gemini, or None on any upstream failure.

    The result is untrusted and must go through validate_receipt.
    """
    if not config.GEMINI_API_KEY:
        logger.warning("Gemini analysis skipped: GEMINI_API_KEY is not configured")
        return None

    payload = {
        "contents": [
            {
                "parts": [
                    {
                        "inline_data": {
                            "mime_type": "image/jpeg",
                            "data": base64.b64encode(image_data).decode("utf-8"),
                        }
                    },
                    {"text": build_prompt(target_language)},
                ]
            }
        ],
        "generationConfig": {
            "responseMimeType": "application/json",
            "responseSchema": RECEIPT_SCHEMA,
        },
    }
    url = (
        f"https://generativelanguage.googleapis.com/v1beta/models/{config.GEMINI_MODEL}:generateContent"
        f"?key={config.GEMINI_API_KEY}"
    )
    req = urllib.request.Request(
        url=url,
        data=json.dumps(payload).encode("utf-8"),
        headers={"Content-Type": "application/json"},
        method="POST",
    )
    started = time.monotonic()
    try:
        with urllib.request.urlopen(req, timeout=config.GEMINI_TIMEOUT_SEC) as response:
            body = response.read().decode("utf-8")
    except urllib.error.HTTPError as e:
        logger.warning("Gemini request failed: HTTP %s", e.code)
        return None
    except (urllib.error.URLError, OSError) as e:
        logger.warning("Gemini request failed: %s", e)
        return None
    logger.info("Gemini responded in %.2fs", time.monotonic() - started)

    try:
        parsed = json.loads(body)
        parts = parsed["candidates"][0]["content"]["parts"]
        text = "".join(part.get("text", "") for part in parts)
    except (ValueError, KeyError, IndexError, TypeError, AttributeError):
        logger.warning("Gemini response had no candidate text")
        return None

    data = extract_json_block(text)
    if data is None:
        logger.warning("Gemini response was not a JSON object")
        return None

    for key in ("subtotal", "tax", "tip"):
        data[key] = data.get(key) or 0
    return _assign_item_ids(data)
