import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import Body, FastAPI, File, HTTPException, Query, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field, ValidationError, field_validator

import config
import gemini_client
from allocation import allocate, claimed_lines, selections_from_payload
from receipt_integrity import validate_receipt
from receipt_models import SUPPORTED_LANGUAGES, CamelModel, ErrorKind, Receipt
from share_codec import build_share_url, decode_receipt, encode_receipt, extract_token

logging.basicConfig(
    level=getattr(logging, config.LOG_LEVEL, logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("tabsplit")

app = FastAPI(title="Tabsplit API", version=config.APP_VERSION)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


class ScanRequest(CamelModel):
    image: str
    target_language: str = "en"

    @field_validator("target_language")
    @classmethod
    def check_language(cls, value: str) -> str:
        if value not in SUPPORTED_LANGUAGES:
            raise ValueError(f"unsupported language {value!r}")
        return value


class ShareDecodeRequest(BaseModel):
    link: str


class AllocateRequest(BaseModel):
    receipt: Optional[Dict[str, Any]] = None
    token: Optional[str] = None
    selections: Any = Field(default_factory=list)


def api_error(status_code: int, kind: ErrorKind) -> HTTPException:
    return HTTPException(status_code=status_code, detail={"error": kind.value, "message": kind.message})


def share_secret() -> Optional[str]:
    return config.SHARE_LINK_SECRET or None


def receipt_response(receipt: Receipt) -> Dict[str, Any]:
    token = encode_receipt(receipt, secret=share_secret())
    return {
        "receipt": receipt.model_dump(by_alias=True),
        "token": token,
        "shareUrl": build_share_url(config.SHARE_BASE_URL, token),
    }


def analyze_image_bytes(image_data: Optional[bytes], target_language: str) -> Dict[str, Any]:
    prepared = gemini_client.prepare_image(image_data) if image_data else None
    if prepared is None:
        logger.info("Scan rejected: payload is not a readable image")
        raise api_error(400, ErrorKind.UPSTREAM_ANALYSIS_FAILURE)

    raw = gemini_client.analyze_receipt(prepared, target_language)
    if raw is None:
        raise api_error(502, ErrorKind.UPSTREAM_ANALYSIS_FAILURE)

    receipt = validate_receipt(raw)
    if receipt is None:
        raise api_error(422, ErrorKind.STRUCTURALLY_INVALID)
    logger.info("Scan ok: %d items, language=%s", len(receipt.items), target_language)
    return receipt_response(receipt)


@app.get("/health")
async def health():
    return {
        "status": "ok",
        "time_utc": datetime.now(timezone.utc).isoformat(),
        "gemini_configured": bool(config.GEMINI_API_KEY),
        "share_links_signed": bool(config.SHARE_LINK_SECRET),
    }


@app.get("/version")
async def version():
    return {
        "app": config.APP_NAME,
        "version": config.APP_VERSION,
        "gemini_model": config.GEMINI_MODEL,
    }


@app.get("/languages")
async def languages():
    return {"languages": [{"code": code, "name": name} for code, name in SUPPORTED_LANGUAGES.items()]}


@app.post("/scan-receipt")
def scan_receipt(req: ScanRequest):
    image_data = gemini_client.decode_image_payload(req.image)
    return analyze_image_bytes(image_data, req.target_language)


@app.post("/scan-receipt/upload")
async def scan_receipt_upload(
    file: UploadFile = File(...),
    target_language: str = Query("en", alias="targetLanguage"),
):
    if target_language not in SUPPORTED_LANGUAGES:
        raise HTTPException(status_code=422, detail=f"Unsupported language: {target_language}")
    image_data = await file.read()
    logger.info("Upload: name=%s size=%d bytes", file.filename, len(image_data))
    return analyze_image_bytes(image_data, target_language)


@app.post("/receipts/validate")
async def validate(raw: Any = Body(None)):
    receipt = validate_receipt(raw)
    if receipt is None:
        raise api_error(422, ErrorKind.STRUCTURALLY_INVALID)
    return {"receipt": receipt.model_dump(by_alias=True)}


@app.post("/share")
async def share(raw: Any = Body(None)):
    receipt = validate_receipt(raw)
    if receipt is None:
        raise api_error(422, ErrorKind.STRUCTURALLY_INVALID)
    return receipt_response(receipt)


@app.post("/share/decode")
async def share_decode(req: ShareDecodeRequest):
    token = extract_token(req.link)
    receipt = decode_receipt(token, secret=share_secret()) if token else None
    if receipt is None:
        raise api_error(400, ErrorKind.LINK_INVALID)
    return {"receipt": receipt.model_dump(by_alias=True)}


@app.post("/allocate")
async def allocate_share(req: AllocateRequest):
    if req.token is not None:
        token = extract_token(req.token)
        receipt = decode_receipt(token, secret=share_secret()) if token else None
        if receipt is None:
            raise api_error(400, ErrorKind.LINK_INVALID)
    else:
        receipt = validate_receipt(req.receipt)
        if receipt is None:
            raise api_error(422, ErrorKind.STRUCTURALLY_INVALID)

    try:
        selections = selections_from_payload(req.selections)
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=f"Invalid selections: {e.error_count()} error(s)")

    result = allocate(receipt, selections)
    return {
        "currency": receipt.currency,
        "allocation": result.model_dump(by_alias=True),
        "lines": [line.model_dump(by_alias=True) for line in claimed_lines(receipt, selections)],
    }
