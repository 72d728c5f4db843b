# main.py - autofill persistence server
#
# Serves the mapping cache and the Q&A bank to autofill clients
# (RemoteMappingCache in autofill/cache_client.py), plus heuristic
# mapping endpoints for clients that cannot run the engine themselves.
#
# Run: uvicorn main:app --port 8000

from __future__ import annotations

import logging
import os
from typing import Any

from fastapi import APIRouter, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from pydantic import BaseModel

from autofill.ats_detector import detect_platform
from autofill.errors import AutofillError, ConfigError
from autofill.field_mapper import HeuristicMapper
from autofill.models import ACTION_CHECK, ACTION_FILL, ACTION_SELECT, FormFieldDescriptor
from autofill.platforms import get_platforms
from autofill.profile import Profile
from autofill.signature import field_keys, page_signature
from storage.mapping_cache import MappingCache
from storage.qa_bank import QABank

# Environment: PROD or DEV
ENV = os.getenv("AUTOFILL_ENV", "PROD")

logger = logging.getLogger(__name__)

mapping_cache = MappingCache()
qa_bank = QABank()
mapper = HeuristicMapper()


app = FastAPI(
    title="Autofill Server",
    description="Mapping cache and Q&A bank for the job-application autofill engine",
    version="0.1.0",
)

app.add_middleware(GZipMiddleware, minimum_size=1000)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

router = APIRouter(prefix="/v1/mapping")


def _parse_fields(raw_fields: list[dict]) -> list[FormFieldDescriptor]:
    return [FormFieldDescriptor.from_dict(f) for f in raw_fields]


def _heuristic_mappings(descriptors: list[FormFieldDescriptor]) -> list[dict[str, Any]]:
    """Structural mapping for the fields the heuristic classifier recognizes."""
    keys = field_keys(descriptors)
    by_id = {d.field_id: d for d in descriptors}
    mappings = []
    for guess in mapper.guess_mappings(descriptors):
        descriptor = by_id[guess["field_id"]]
        if descriptor.element_type == "checkbox":
            action = ACTION_CHECK
        elif descriptor.is_enumerable:
            action = ACTION_SELECT
        else:
            action = ACTION_FILL
        mappings.append({
            "field_key": keys[descriptor.field_id],
            "canonical": guess["canonical"],
            "action": action,
            "confidence": guess["confidence"],
            "source": "heuristic",
        })
    return mappings


# -----------------------------
# Service
# -----------------------------

@app.get("/health")
def health():
    return {"status": "ok"}


@app.get("/env")
def get_env():
    """Return current environment (PROD/DEV)"""
    return {"env": ENV}


@app.get("/platforms")
def list_platforms():
    """Platform configs the engine knows about."""
    try:
        platforms = get_platforms()
    except ConfigError as e:
        return {"ok": False, "error": str(e)}
    return {
        "count": len(platforms),
        "platforms": [
            {"id": p.id, "urls": list(p.urls), "default_method": p.default_method, "fields": p.field_names}
            for p in platforms.values()
        ],
    }


# -----------------------------
# Detection / heuristics
# -----------------------------

class DetectRequest(BaseModel):
    url: str


@router.post("/detect")
def detect_endpoint(payload: DetectRequest):
    try:
        platform = detect_platform(payload.url)
    except ConfigError as e:
        return {"ok": False, "error": str(e)}
    return {"platform": platform}


class GuessRequest(BaseModel):
    page_signature: str | None = None
    fields: list[dict]
    url: str = ""


@router.post("/guess")
def guess_endpoint(payload: GuessRequest):
    """
    Field -> profile attribute mapping for a form, through the mapping cache.

    Each returned mapping carries the field_id of the request it belongs to.
    """
    try:
        descriptors = _parse_fields(payload.fields)
    except (TypeError, ValueError) as e:
        return {"ok": False, "error": f"Invalid fields: {e}"}

    signature = payload.page_signature or page_signature(descriptors)
    try:
        lookup = mapping_cache.get_or_compute(
            signature, lambda: _heuristic_mappings(descriptors), url=payload.url,
        )
    except AutofillError as e:
        return {"ok": False, "error": str(e)}

    ids_by_key = {key: field_id for field_id, key in field_keys(descriptors).items()}
    mappings = [
        {**m, "field_id": ids_by_key.get(m.get("field_key"))}
        for m in lookup.mappings
    ]
    return {
        "page_signature": signature,
        "mappings": mappings,
        "cached": lookup.cached,
        "confidence": lookup.confidence,
    }


class HeuristicFillRequest(BaseModel):
    fields: list[dict]
    profile: dict = {}


@router.post("/heuristic-fill")
def heuristic_fill_endpoint(payload: HeuristicFillRequest):
    """Heuristic decisions in the same shape the AI service returns."""
    try:
        descriptors = _parse_fields(payload.fields)
    except (TypeError, ValueError) as e:
        return {"ok": False, "error": f"Invalid fields: {e}"}
    decisions = mapper.map_fields(descriptors, Profile(payload.profile))
    return {"results": [d.to_dict() for d in decisions]}


# -----------------------------
# Mapping cache
# -----------------------------

class CacheLookupRequest(BaseModel):
    page_signature: str


@router.post("/cache/lookup")
def cache_lookup_endpoint(payload: CacheLookupRequest):
    """
    Return the stored entry and whether it is trusted.
    A trusted entry counts as reused.
    """
    try:
        entry = mapping_cache.lookup(payload.page_signature) or mapping_cache.get(payload.page_signature)
    except AutofillError as e:
        return {"ok": False, "error": str(e)}
    return {
        "entry": entry.to_dict() if entry else None,
        "trusted": mapping_cache.is_trusted(entry),
    }


class CacheUpsert(BaseModel):
    url: str = ""
    mappings: list[dict]


@router.put("/cache/{signature}")
def cache_upsert_endpoint(signature: str, payload: CacheUpsert):
    try:
        entry = mapping_cache.upsert(signature, payload.mappings, url=payload.url)
    except AutofillError as e:
        return {"ok": False, "error": str(e)}
    return {"ok": True, "entry": entry.to_dict()}


@router.delete("/cache/{signature}")
def cache_delete_endpoint(signature: str):
    if not mapping_cache.delete(signature):
        return {"ok": False, "error": "Page signature not found"}
    return {"ok": True, "removed": signature}


@router.get("/cache/stats")
def cache_stats_endpoint():
    return mapping_cache.stats()


class ConfirmRequest(BaseModel):
    page_signature: str
    success: bool


@router.post("/confirm")
def confirm_endpoint(payload: ConfirmRequest):
    """Feed back whether a mapping worked; moves its confirmation rate."""
    try:
        new_rate = mapping_cache.confirm(payload.page_signature, payload.success)
    except AutofillError as e:
        return {"ok": False, "error": str(e)}
    if new_rate is None:
        return {"ok": False, "error": "Page signature not found"}
    return {"ok": True, "success": payload.success, "new_rate": new_rate}


# -----------------------------
# Q&A bank
# -----------------------------

class AnswerCreate(BaseModel):
    question_text: str
    answer_text: str
    tags: list[str] = []
    embedding: list[float] | None = None


class AnswerUpdate(BaseModel):
    question_text: str | None = None
    answer_text: str | None = None
    tags: list[str] | None = None
    embedding: list[float] | None = None


class AnswerSearch(BaseModel):
    question: str
    top_n: int = 3
    threshold: float = 0.5
    embedding: list[float] | None = None


@router.get("/qa-bank")
def qa_list_endpoint():
    answers = qa_bank.list_answers()
    return {"count": len(answers), "answers": [a.to_dict() for a in answers]}


@router.post("/qa-bank")
def qa_create_endpoint(payload: AnswerCreate):
    try:
        entry = qa_bank.create(payload.question_text, payload.answer_text,
                               tags=payload.tags, embedding=payload.embedding)
    except ValueError as e:
        return {"ok": False, "error": str(e)}
    return {"ok": True, "answer": entry.to_dict()}


@router.put("/qa-bank/{answer_id}")
def qa_update_endpoint(answer_id: str, payload: AnswerUpdate):
    entry = qa_bank.update(
        answer_id,
        question_text=payload.question_text,
        answer_text=payload.answer_text,
        tags=payload.tags,
        embedding=payload.embedding,
    )
    if entry is None:
        return {"ok": False, "error": "Answer not found"}
    return {"ok": True, "answer": entry.to_dict()}


@router.delete("/qa-bank/{answer_id}")
def qa_delete_endpoint(answer_id: str):
    if not qa_bank.delete(answer_id):
        return {"ok": False, "error": "Answer not found"}
    return {"ok": True, "removed": answer_id}


@router.post("/qa-bank/search")
def qa_search_endpoint(payload: AnswerSearch):
    """Saved answers similar to a question, best first."""
    matches = qa_bank.find_similar_answers(
        payload.question, top_n=payload.top_n, threshold=payload.threshold, embedding=payload.embedding,
    )
    return {
        "count": len(matches),
        "results": [{"answer": entry.to_dict(), "score": round(score, 4)} for entry, score in matches],
    }


@router.post("/qa-bank/{answer_id}/use")
def qa_use_endpoint(answer_id: str):
    entry = qa_bank.record_usage(answer_id)
    if entry is None:
        return {"ok": False, "error": "Answer not found"}
    return {"ok": True, "answer": entry.to_dict()}


app.include_router(router)


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(level=logging.INFO)
    print("\n🧩 Autofill Server")
    print("=" * 50)
    print(f"Mapping cache: {mapping_cache.path}")
    print(f"Q&A bank:      {qa_bank.path}")
    print("=" * 50 + "\n")
    uvicorn.run(app, host="0.0.0.0", port=8000)
