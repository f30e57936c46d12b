from __future__ import annotations

import json
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Sequence, Tuple

import httpx

from models.schemas import INTENT_INFO, ClassificationResult, HistoryTurn, IntentType
from settings import SETTINGS
from tools.faq_tools import FAQRanker

logger = logging.getLogger(__name__)

_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")

SYSTEM_PROMPT = """你是旅行社客服的意圖分類器。請分析用戶訊息，識別主要意圖並提取相關實體。

可識別的意圖：
- TICKET_BOOK: 訂票、開票請求
- TICKET_CHANGE: 改票請求（改日期、升等）
- TICKET_CANCEL: 退票、取消訂位
- QUOTE_REQUEST: 票價、報價查詢
- FLIGHT_QUERY: 航班、機位查詢
- BOOKING_STATUS: 訂位狀態、電子機票寄送查詢
- VISA_INQUIRY: 簽證、台胞證、免簽諮詢
- VISA_PROGRESS: 簽證或證件辦理進度
- PAYMENT_REQUEST: 付款、刷卡連結
- RECEIPT_REQUEST: 收據、發票、統編
- PASSENGER_INFO: 提供旅客資料
- BAGGAGE_INQUIRY: 行李額度
- SEAT_REQUEST: 選位、座位偏好
- GREETING: 問候、道謝、閒聊
- TRANSFER_AGENT: 要求真人客服
- FAQ_GENERAL: 一般常見問題
- UNKNOWN: 無法識別

實體鍵值：date, destination, passengers, flight_no, booking_ref, class, direction, seat_preference, tax_id, phone

只回覆 JSON：{"intent": "意圖代碼", "confidence": 0.0-1.0, "entities": {}, "requires_human": false}"""


class ClassifierError(RuntimeError):
    pass


def _requires_human(intent: IntentType, flagged: Any = False) -> bool:
    return bool(flagged) or INTENT_INFO[intent].automation == "none"


class IntentClassifier(ABC):
    provider = "base"

    @abstractmethod
    async def classify(self, message: str, history: Sequence[HistoryTurn] = ()) -> ClassificationResult:
        raise NotImplementedError

    def available(self) -> bool:
        return True


class LLMIntentClassifier(IntentClassifier):
    """OpenAI-compatible chat-completions classifier. Raises ClassifierError on any failure."""

    provider = "openai"

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        model: str | None = None,
        timeout_seconds: float | None = None,
        faq_ranker: FAQRanker | None = None,
        history_turns: int | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_key = api_key if api_key is not None else SETTINGS.openai_api_key
        self.base_url = (base_url or SETTINGS.openai_base_url).rstrip("/")
        self.model = model or SETTINGS.classifier_model
        self.timeout_seconds = timeout_seconds or SETTINGS.classifier_timeout_seconds
        self.faq_ranker = faq_ranker
        self.history_turns = history_turns or SETTINGS.classifier_history_turns
        self._transport = transport

    def available(self) -> bool:
        return bool(self.api_key)

    def build_prompt(self, message: str, history: Sequence[HistoryTurn]) -> str:
        parts: List[str] = []
        recent = list(history)[-self.history_turns :]
        if recent:
            parts.append("## 最近對話上下文\n" + "\n".join(f"{turn.role}: {turn.text}" for turn in recent))
        if self.faq_ranker is not None:
            parts.append("## 相關 FAQ\n" + self.faq_ranker.format_context(self.faq_ranker.search(message)))
        parts.append(f"## 用戶訊息\n{message}\n\n請分析並以 JSON 格式回覆（只回覆 JSON，不要其他文字）：")
        return "\n\n".join(parts)

    async def _complete(self, prompt: str) -> str:
        body: Dict[str, Any] = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            "temperature": 0.1,
            "max_tokens": 500,
            "response_format": {"type": "json_object"},
        }
        async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self._transport) as client:
            resp = await client.post(
                f"{self.base_url}/chat/completions",
                headers={"Authorization": f"Bearer {self.api_key}"},
                json=body,
            )
            resp.raise_for_status()
            data = resp.json()
        choices = data.get("choices") or []
        if not choices:
            raise ClassifierError("empty_completion")
        return str((choices[0].get("message") or {}).get("content") or "")

    @staticmethod
    def parse(text: str) -> ClassificationResult:
        match = _JSON_OBJECT.search(text or "")
        if not match:
            raise ClassifierError("unparsable_classification")
        try:
            payload = json.loads(match.group(0))
        except json.JSONDecodeError as exc:
            raise ClassifierError("unparsable_classification") from exc
        if not isinstance(payload, dict) or "intent" not in payload:
            raise ClassifierError("malformed_classification")
        intent = IntentType.parse(payload.get("intent"))
        entities = payload.get("entities") or {}
        if not isinstance(entities, dict):
            entities = {}
        try:
            confidence = float(payload.get("confidence") or 0.8)
        except (TypeError, ValueError):
            confidence = 0.8
        return ClassificationResult(
            intent=intent,
            confidence=max(0.0, min(1.0, confidence)),
            entities=entities,
            requires_human=_requires_human(intent, payload.get("requires_human")),
            provider="openai",
        )

    async def classify(self, message: str, history: Sequence[HistoryTurn] = ()) -> ClassificationResult:
        if not self.available():
            raise ClassifierError("classifier_not_configured")
        try:
            text = await self._complete(self.build_prompt(message, history))
        except httpx.HTTPError as exc:
            raise ClassifierError(f"classifier_http_error: {exc!r}") from exc
        except ValueError as exc:
            raise ClassifierError(f"classifier_bad_response: {exc!r}") from exc
        return self.parse(text)


@dataclass(frozen=True)
class KeywordRule:
    intent: IntentType
    keywords: Tuple[str, ...]
    requires: Tuple[str, ...] = ()

    def matches(self, text: str) -> bool:
        if not any(k in text for k in self.keywords):
            return False
        return not self.requires or any(r in text for r in self.requires)


# Order matters: the first matching rule wins.
KEYWORD_RULES: Tuple[KeywordRule, ...] = (
    KeywordRule(IntentType.TRANSFER_AGENT, ("找真人", "真人", "轉人工", "人工客服", "專人", "打給我", "太複雜")),
    KeywordRule(IntentType.VISA_PROGRESS, ("進度", "辦好", "好了嗎", "下來了嗎"), requires=("簽證", "護照", "台胞證")),
    KeywordRule(IntentType.PASSENGER_INFO, ("護照資料", "英文名", "旅客資料", "出生日期", "護照號碼")),
    KeywordRule(IntentType.VISA_INQUIRY, ("簽證", "免簽", "台胞證", "護照", "入境")),
    KeywordRule(IntentType.TICKET_CANCEL, ("退票", "取消訂位", "退掉", "不去了")),
    KeywordRule(IntentType.TICKET_CHANGE, ("改票", "改期", "改日期", "改為", "改成", "升等")),
    KeywordRule(IntentType.RECEIPT_REQUEST, ("收據", "發票", "統編", "統一編號")),
    KeywordRule(IntentType.PAYMENT_REQUEST, ("付款", "刷卡", "匯款", "繳費")),
    KeywordRule(IntentType.BOOKING_STATUS, ("訂位狀態", "確認了嗎", "寄了嗎", "查訂位", "訂位確認")),
    KeywordRule(IntentType.QUOTE_REQUEST, ("票價", "報價", "多少錢", "價格", "價錢", "費用")),
    KeywordRule(IntentType.TICKET_BOOK, ("訂票", "訂機票", "訂位", "開票", "買機票", "訂去", "想訂", "要訂", "幫我訂")),
    KeywordRule(IntentType.FLIGHT_QUERY, ("航班", "班機", "機位", "幾班")),
    KeywordRule(IntentType.BAGGAGE_INQUIRY, ("行李", "公斤", "托運", "手提")),
    KeywordRule(IntentType.SEAT_REQUEST, ("靠窗", "走道", "選位", "座位", "前排")),
    KeywordRule(IntentType.FAQ_GENERAL, ("服務時間", "營業", "上班時間", "聯絡", "旅遊警示", "警示", "緊急", "規定", "期限", "行動電源")),
    KeywordRule(IntentType.GREETING, ("你好", "您好", "早安", "午安", "晚安", "哈囉", "hello", "謝謝", "感謝", "收到", "好的", "了解")),
)


class KeywordIntentClassifier(IntentClassifier):
    """Deterministic classifier for local development and as the offline default."""

    provider = "keyword"
    MATCH_CONFIDENCE = 0.85
    MISS_CONFIDENCE = 0.3

    def __init__(self, rules: Sequence[KeywordRule] = KEYWORD_RULES) -> None:
        self.rules = tuple(rules)

    async def classify(self, message: str, history: Sequence[HistoryTurn] = ()) -> ClassificationResult:
        # 訂位代號 is a booking reference label, not a booking request
        text = (message or "").replace("訂位代號", "").lower()
        for rule in self.rules:
            if rule.matches(text):
                return ClassificationResult(
                    intent=rule.intent,
                    confidence=self.MATCH_CONFIDENCE,
                    requires_human=_requires_human(rule.intent),
                    provider=self.provider,
                )
        return ClassificationResult(
            intent=IntentType.UNKNOWN,
            confidence=self.MISS_CONFIDENCE,
            requires_human=_requires_human(IntentType.UNKNOWN),
            provider=self.provider,
        )


def build_intent_classifier(provider: str | None = None, faq_ranker: FAQRanker | None = None) -> IntentClassifier:
    choice = (provider or SETTINGS.classifier_provider or "keyword").lower()
    if choice in {"openai", "llm"}:
        classifier = LLMIntentClassifier(faq_ranker=faq_ranker)
        if classifier.available():
            return classifier
        logger.warning("intent_classifier_unconfigured", extra={"provider": choice})
    return KeywordIntentClassifier()
