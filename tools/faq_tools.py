from __future__ import annotations

import csv
import json
import logging
import os
import re
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence

from models.schemas import FAQEntry, ScoredFAQ
from settings import SETTINGS

logger = logging.getLogger(__name__)

DEFAULT_CORPUS_PATH = Path(__file__).resolve().parent / "data" / "faq_knowledge_base.json"

STOP_WORDS = frozenset(
    {"的", "是", "在", "有", "嗎", "呢", "啊", "要", "我", "你", "可以", "請問", "想", "怎麼", "什麼", "多少"}
)

CATEGORY_TRIGGERS: Dict[str, Sequence[str]] = {
    "機票服務": ("機票", "訂票", "改票", "退票", "開票", "航班"),
    "簽證護照": ("簽證", "護照", "台胞證", "免簽", "入境"),
    "付款收據": ("付款", "刷卡", "收據", "發票", "統編"),
    "旅遊安全": ("旅遊警示", "紅色", "危險", "安全", "緊急"),
    "服務資訊": ("服務時間", "營業", "聯絡", "電話"),
}

_PUNCTUATION = re.compile(r"[，。？！、：；\"'“”‘’（）【】]")

EMPTY_CONTEXT = "（沒有找到相關的 FAQ）"


def extract_query_keywords(query: str) -> List[str]:
    cleaned = _PUNCTUATION.sub(" ", query or "")
    return [w.lower() for w in cleaned.split() if len(w) > 1 and w not in STOP_WORDS]


def _read_json(path: str) -> List[FAQEntry]:
    with open(path, "r", encoding="utf-8") as fh:
        payload = json.load(fh)
    rows = payload.get("entries", []) if isinstance(payload, dict) else payload
    return [FAQEntry.model_validate(row) for row in rows]


def _read_csv(path: str) -> List[FAQEntry]:
    entries: List[FAQEntry] = []
    with open(path, "r", encoding="utf-8", newline="") as fh:
        reader = csv.reader(fh)
        next(reader, None)
        for row in reader:
            if len(row) < 5 or not row[0].strip():
                continue
            entries.append(
                FAQEntry(
                    id=row[0].strip(),
                    category=row[1].strip(),
                    question=row[2].strip(),
                    answer=row[3].strip(),
                    keywords=[k for k in row[4].split(" ") if k],
                )
            )
    return entries


def load_corpus(path: str | None = None) -> List[FAQEntry]:
    target = path or SETTINGS.faq_corpus_path or str(DEFAULT_CORPUS_PATH)
    if not os.path.exists(target):
        logger.warning("faq_corpus_missing", extra={"path": target})
        return []
    if target.lower().endswith(".csv"):
        entries = _read_csv(target)
    else:
        entries = _read_json(target)
    logger.info("faq_corpus_loaded", extra={"path": target, "count": len(entries)})
    return entries


class FAQRanker:
    """Keyword-weighted ranking over a static FAQ corpus.

    The corpus is read once at construction and never mutated, so a single
    instance can be shared between concurrent turns.
    """

    ANSWER_MIN_SCORE = 3

    def __init__(self, path: str | None = None, entries: Iterable[FAQEntry] | None = None) -> None:
        self._entries: tuple[FAQEntry, ...] = tuple(entries) if entries is not None else tuple(load_corpus(path))

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def entries(self) -> tuple[FAQEntry, ...]:
        return self._entries

    def score(self, entry: FAQEntry, query: str, query_keywords: Sequence[str] | None = None) -> int:
        query_lower = query.lower()
        keywords = extract_query_keywords(query) if query_keywords is None else query_keywords
        question = entry.question.lower()
        answer = entry.answer.lower()

        total = 0
        if query_lower in question:
            total += 10
        for keyword in entry.keywords:
            if keyword.lower() in query_lower:
                total += 3
        for keyword in keywords:
            if keyword in question:
                total += 2
            elif keyword in answer:
                total += 1
        for trigger in CATEGORY_TRIGGERS.get(entry.category, ()):
            if trigger in query_lower:
                total += 2
        return total

    def search(self, query: str, max_results: int | None = None) -> List[ScoredFAQ]:
        limit = SETTINGS.faq_max_results if max_results is None else max_results
        if not query or not query.strip() or limit <= 0:
            return []
        keywords = extract_query_keywords(query)
        scored: List[ScoredFAQ] = []
        for entry in self._entries:
            points = self.score(entry, query, keywords)
            if points > 0:
                scored.append(ScoredFAQ(**entry.model_dump(), score=points))
        # sorted() is stable, ties keep corpus order
        scored = sorted(scored, key=lambda item: item.score, reverse=True)
        return scored[:limit]

    def best_answer(self, query: str, min_score: int | None = None) -> Optional[ScoredFAQ]:
        threshold = self.ANSWER_MIN_SCORE if min_score is None else min_score
        results = self.search(query, max_results=1)
        if results and results[0].score >= threshold:
            return results[0]
        return None

    def format_context(self, results: Sequence[FAQEntry], max_chars: int | None = None) -> str:
        if not results:
            return EMPTY_CONTEXT
        limit = SETTINGS.faq_context_max_chars if max_chars is None else max_chars
        blocks: List[str] = []
        used = 0
        for index, faq in enumerate(results, start=1):
            block = f"【FAQ {index}】\n分類：{faq.category}\n問題：{faq.question}\n答案：{faq.answer}\n---"
            if blocks and used + len(block) + 2 > limit:
                break
            blocks.append(block)
            used += len(block) + 2
        return "\n\n".join(blocks)[:limit]

    def categories(self) -> List[str]:
        seen: List[str] = []
        for entry in self._entries:
            if entry.category not in seen:
                seen.append(entry.category)
        return seen

    def by_category(self, category: str) -> List[FAQEntry]:
        return [entry for entry in self._entries if entry.category == category]
