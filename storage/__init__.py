# storage/__init__.py
from .mapping_cache import (
    CacheEntry,
    CacheLookup,
    MappingCache,
    ema,
)
from .qa_bank import (
    CustomAnswerEntry,
    QABank,
    question_similarity,
    text_similarity,
)
