from __future__ import annotations

import asyncio
import json
from dataclasses import replace

import httpx
import pytest

from agents import intent_classifier
from agents.intent_classifier import (
    ClassifierError,
    KeywordIntentClassifier,
    LLMIntentClassifier,
    build_intent_classifier,
)
from models.schemas import HistoryTurn, IntentType
from tools.faq_tools import FAQRanker


def _completion(content: str) -> dict:
    return {"choices": [{"message": {"role": "assistant", "content": content}}]}


def _llm(handler) -> LLMIntentClassifier:
    return LLMIntentClassifier(
        api_key="test-key",
        base_url="https://llm.test/v1",
        model="test-model",
        transport=httpx.MockTransport(handler),
    )


@pytest.mark.parametrize(
    "message,intent",
    [
        ("我想訂去東京的機票", IntentType.TICKET_BOOK),
        ("訂位代號 AB12CD 想改日期", IntentType.TICKET_CHANGE),
        ("我要退票", IntentType.TICKET_CANCEL),
        ("去曼谷票價多少錢", IntentType.QUOTE_REQUEST),
        ("台胞證辦好了嗎", IntentType.VISA_PROGRESS),
        ("泰國要簽證嗎", IntentType.VISA_INQUIRY),
        ("請開收據給我", IntentType.RECEIPT_REQUEST),
        ("我想找真人", IntentType.TRANSFER_AGENT),
        ("行李可以帶幾公斤", IntentType.BAGGAGE_INQUIRY),
        ("你好", IntentType.GREETING),
        ("asdfgh", IntentType.UNKNOWN),
    ],
)
def test_keyword_classifier(message, intent):
    result = asyncio.run(KeywordIntentClassifier().classify(message))
    assert result.intent == intent
    assert result.provider == "keyword"


def test_keyword_classifier_flags_handoff_intents():
    result = asyncio.run(KeywordIntentClassifier().classify("轉人工"))
    assert result.requires_human


def test_llm_classifier_parses_completion():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(
            200,
            json=_completion('好的 {"intent": "TICKET_BOOK", "confidence": 0.92, "entities": {"destination": "東京"}}'),
        )

    classifier = _llm(handler)
    history = [HistoryTurn(role="user", text="你好"), HistoryTurn(role="assistant", text="您好")]
    result = asyncio.run(classifier.classify("我想訂機票", history))
    assert result.intent == IntentType.TICKET_BOOK
    assert result.confidence == pytest.approx(0.92)
    assert result.entities == {"destination": "東京"}
    assert seen["url"] == "https://llm.test/v1/chat/completions"
    assert seen["auth"] == "Bearer test-key"
    assert seen["body"]["model"] == "test-model"
    assert "user: 你好" in seen["body"]["messages"][1]["content"]


def test_llm_classifier_unknown_intent_falls_back():
    classifier = _llm(lambda request: httpx.Response(200, json=_completion('{"intent": "MAKE_COFFEE"}')))
    assert asyncio.run(classifier.classify("咖啡")).intent == IntentType.UNKNOWN


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(500, json={"error": "boom"}),
        httpx.Response(200, json=_completion("no json here")),
        httpx.Response(200, json={"choices": []}),
        httpx.Response(200, text="not json"),
    ],
)
def test_llm_classifier_failures_raise_classifier_error(response):
    classifier = _llm(lambda request: response)
    with pytest.raises(ClassifierError):
        asyncio.run(classifier.classify("訂票"))


def test_prompt_includes_faq_context():
    classifier = LLMIntentClassifier(api_key="k", faq_ranker=FAQRanker(), history_turns=1)
    prompt = classifier.build_prompt("泰國簽證", [HistoryTurn(role="user", text="舊訊息"), HistoryTurn(role="user", text="新訊息")])
    assert "新訊息" in prompt and "舊訊息" not in prompt
    assert "【FAQ 1】" in prompt


def test_build_intent_classifier_without_key_uses_keywords(monkeypatch):
    monkeypatch.setattr(intent_classifier, "SETTINGS", replace(intent_classifier.SETTINGS, openai_api_key=""))
    assert isinstance(build_intent_classifier(provider="openai"), KeywordIntentClassifier)
    assert isinstance(build_intent_classifier(provider="keyword"), KeywordIntentClassifier)


def test_build_intent_classifier_with_key_uses_llm(monkeypatch):
    monkeypatch.setattr(intent_classifier, "SETTINGS", replace(intent_classifier.SETTINGS, openai_api_key="sk-test"))
    assert isinstance(build_intent_classifier(provider="llm"), LLMIntentClassifier)
