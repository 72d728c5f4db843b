# storage/qa_bank.py
"""
Q&A bank: the candidate's saved answers to free-text application questions.

File: data/qa_bank.json  (list of entries)

Lookups compare questions by cosine similarity of embeddings when both
sides have one, otherwise by word overlap (Jaccard over lower-cased words
longer than two characters). Embeddings are produced elsewhere and passed in.
"""

import logging
import math
import re
import threading
import uuid
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

from autofill.config import QA_BANK_FILE, QA_MATCH_THRESHOLD, QA_SUGGEST_THRESHOLD
from .json_store import file_lock, load_json, now_iso, save_json

logger = logging.getLogger(__name__)


@dataclass
class CustomAnswerEntry:
    question_text: str
    answer_text: str
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    question_embedding: Optional[List[float]] = None
    tags: List[str] = field(default_factory=list)
    use_count: int = 0
    last_used_at: Optional[str] = None
    auto_saved: bool = False
    created_at: str = field(default_factory=now_iso)
    updated_at: str = field(default_factory=now_iso)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CustomAnswerEntry":
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        return cls(**known)


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    if not a or not b or len(a) != len(b):
        return 0.0
    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return dot / (norm_a * norm_b)


def _words(text: str) -> set:
    cleaned = re.sub(r"[^a-z0-9\s]", "", (text or "").lower())
    return {w for w in cleaned.split() if len(w) > 2}


def text_similarity(text_a: str, text_b: str) -> float:
    """Jaccard overlap of significant words."""
    words_a, words_b = _words(text_a), _words(text_b)
    if not words_a or not words_b:
        return 0.0
    intersection = len(words_a & words_b)
    union = len(words_a | words_b)
    return intersection / union if union else 0.0


def question_similarity(question: str, entry: CustomAnswerEntry,
                        embedding: Optional[Sequence[float]] = None) -> float:
    if embedding and entry.question_embedding and len(embedding) == len(entry.question_embedding):
        return cosine_similarity(embedding, entry.question_embedding)
    return text_similarity(question, entry.question_text)


class QABank:
    """JSON-file store of saved answers."""

    def __init__(self, path: Optional[Path] = None):
        self.path = Path(path or QA_BANK_FILE)
        self._lock = threading.RLock()

    def _load(self) -> List[CustomAnswerEntry]:
        data = load_json(self.path, [])
        if not isinstance(data, list):
            return []
        return [CustomAnswerEntry.from_dict(d) for d in data if isinstance(d, dict)]

    def _save(self, entries: List[CustomAnswerEntry]):
        save_json(self.path, [e.to_dict() for e in entries])

    # ============ CRUD ============

    def list_answers(self) -> List[CustomAnswerEntry]:
        """Most used first, then most recently updated."""
        entries = self._load()
        entries.sort(key=lambda e: e.updated_at, reverse=True)
        entries.sort(key=lambda e: e.use_count, reverse=True)
        return entries

    def get(self, answer_id: str) -> Optional[CustomAnswerEntry]:
        for entry in self._load():
            if entry.id == answer_id:
                return entry
        return None

    def create(self, question_text: str, answer_text: str, tags: Optional[List[str]] = None,
               embedding: Optional[List[float]] = None, auto_saved: bool = False) -> CustomAnswerEntry:
        if not question_text.strip() or not answer_text.strip():
            raise ValueError("Question and answer must not be empty")
        entry = CustomAnswerEntry(
            question_text=question_text.strip(),
            answer_text=answer_text,
            question_embedding=embedding,
            tags=list(tags or []),
            auto_saved=auto_saved,
        )
        with self._lock, file_lock(self.path):
            entries = self._load()
            entries.append(entry)
            self._save(entries)
        logger.info(f"[QA Bank] Saved answer {entry.id} ({'auto' if auto_saved else 'manual'})")
        return entry

    def update(self, answer_id: str, question_text: Optional[str] = None, answer_text: Optional[str] = None,
               tags: Optional[List[str]] = None, embedding: Optional[List[float]] = None) -> Optional[CustomAnswerEntry]:
        with self._lock, file_lock(self.path):
            entries = self._load()
            for entry in entries:
                if entry.id != answer_id:
                    continue
                if question_text is not None and question_text != entry.question_text:
                    entry.question_text = question_text.strip()
                    entry.question_embedding = embedding
                elif embedding is not None:
                    entry.question_embedding = embedding
                if answer_text is not None:
                    entry.answer_text = answer_text
                if tags is not None:
                    entry.tags = list(tags)
                entry.updated_at = now_iso()
                self._save(entries)
                return entry
        return None

    def delete(self, answer_id: str) -> bool:
        with self._lock, file_lock(self.path):
            entries = self._load()
            remaining = [e for e in entries if e.id != answer_id]
            if len(remaining) == len(entries):
                return False
            self._save(remaining)
            return True

    def record_usage(self, answer_id: str) -> Optional[CustomAnswerEntry]:
        with self._lock, file_lock(self.path):
            entries = self._load()
            for entry in entries:
                if entry.id == answer_id:
                    entry.use_count += 1
                    entry.last_used_at = now_iso()
                    self._save(entries)
                    return entry
        return None

    # ============ Search ============

    def find_similar(self, question: str, threshold: float = QA_MATCH_THRESHOLD,
                     embedding: Optional[List[float]] = None) -> Optional[Tuple[CustomAnswerEntry, float]]:
        """Best saved answer at or above threshold, counting it as used."""
        best, best_score = None, 0.0
        for entry in self._load():
            score = question_similarity(question, entry, embedding)
            if score > best_score:
                best, best_score = entry, score
        if best is None or best_score < threshold:
            return None
        used = self.record_usage(best.id) or best
        return used, best_score

    def find_similar_answers(self, question: str, top_n: int = 3, threshold: float = QA_SUGGEST_THRESHOLD,
                             embedding: Optional[List[float]] = None) -> List[Tuple[CustomAnswerEntry, float]]:
        """Up to top_n answers at or above threshold, best first."""
        scored = []
        for entry in self._load():
            score = question_similarity(question, entry, embedding)
            if score >= threshold:
                scored.append((entry, score))
        scored.sort(key=lambda pair: pair[1], reverse=True)
        return scored[:top_n]
