from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from models.schemas import SlotType

logger = logging.getLogger(__name__)


AIRLINES: Dict[str, str] = {
    "CX": "國泰航空",
    "BR": "長榮航空",
    "CI": "中華航空",
    "SQ": "新加坡航空",
    "TG": "泰國航空",
    "JL": "日本航空",
    "NH": "ANA全日空",
    "KE": "大韓航空",
    "OZ": "韓亞航空",
    "MH": "馬來西亞航空",
    "VN": "越南航空",
    "CA": "中國國際航空",
    "MU": "東方航空",
    "CZ": "南方航空",
    "HX": "香港航空",
    "UO": "香港快運",
    "TR": "酷航",
    "AK": "亞洲航空",
    "IT": "台灣虎航",
    "MM": "樂桃航空",
}

DESTINATIONS: Dict[str, str] = {
    "TPE": "台北",
    "KHH": "高雄",
    "RMQ": "台中",
    "PVG": "上海浦東",
    "SHA": "上海虹橋",
    "PEK": "北京",
    "CAN": "廣州",
    "SZX": "深圳",
    "XMN": "廈門",
    "HGH": "杭州",
    "NRT": "東京成田",
    "HND": "東京羽田",
    "KIX": "大阪",
    "ICN": "首爾仁川",
    "GMP": "首爾金浦",
    "SIN": "新加坡",
    "BKK": "曼谷",
    "KUL": "吉隆坡",
    "SGN": "胡志明市",
    "HAN": "河內",
    "MNL": "馬尼拉",
    "HKG": "香港",
    "MFM": "澳門",
}

# Bare city names that customers use instead of the airport-qualified ones above.
CITY_ALIASES: Dict[str, str] = {
    "東京": "NRT",
    "首爾": "ICN",
    "上海": "PVG",
    "札幌": "CTS",
    "福岡": "FUK",
    "沖繩": "OKA",
}

COUNTRY_KEYWORDS: Tuple[str, ...] = ("泰國", "日本", "韓國", "新加坡", "馬來西亞", "越南", "菲律賓", "印度", "歐洲", "美國")

# Longer keywords first so 豪華經濟艙 is not read as 經濟.
CABIN_CLASSES: Tuple[Tuple[str, str], ...] = (
    ("豪華經濟艙", "PREMIUM_ECONOMY"),
    ("豪經艙", "PREMIUM_ECONOMY"),
    ("premium economy", "PREMIUM_ECONOMY"),
    ("商務艙", "BUSINESS"),
    ("經濟艙", "ECONOMY"),
    ("頭等艙", "FIRST"),
    ("商務", "BUSINESS"),
    ("經濟", "ECONOMY"),
    ("頭等", "FIRST"),
    ("business", "BUSINESS"),
    ("economy", "ECONOMY"),
    ("first", "FIRST"),
)

DIRECTIONS: Tuple[Tuple[Tuple[str, ...], str], ...] = (
    (("去程", "出發"), "OUTBOUND"),
    (("回程", "返程"), "INBOUND"),
)

SEAT_PREFERENCES: Tuple[Tuple[Tuple[str, ...], str], ...] = (
    (("靠窗", "窗邊"), "WINDOW"),
    (("走道",), "AISLE"),
    (("前排", "前面"), "FRONT"),
)

CHINESE_NUMERALS: Dict[str, int] = {
    "一": 1,
    "二": 2,
    "兩": 2,
    "三": 3,
    "四": 4,
    "五": 5,
    "六": 6,
    "七": 7,
    "八": 8,
    "九": 9,
    "十": 10,
}

TAX_ID_TRIGGERS: Tuple[str, ...] = ("統編", "統一編號")

MIN_PASSENGERS = 1
MAX_PASSENGERS = 50

_FULL_DATE = re.compile(r"([0-9]{4})[/\-]([0-9]{1,2})[/\-]([0-9]{1,2})")
_SHORT_DATE = re.compile(r"(?<![0-9])([0-9]{1,2})/([0-9]{1,2})(?![0-9])")
_LOCAL_DATE = re.compile(r"([0-9]{1,2})月([0-9]{1,2})日?")
_FLIGHT = re.compile(r"(?<![A-Za-z0-9])(?!BTE)([A-Za-z]{2})[ \t]?([0-9]{2,4})(?![A-Za-z0-9])", re.IGNORECASE)
_INTERNAL_REF = re.compile(r"BTE[0-9]{7,}", re.IGNORECASE)
_PNR = re.compile(r"(?<![A-Za-z0-9])([A-Z0-9]{6})(?![A-Za-z0-9])")
_AIRPORT_CODE = re.compile(r"(?<![A-Za-z0-9])([A-Z]{3})(?![A-Za-z0-9])")
_PASSENGER_PATTERNS = (
    re.compile(r"([0-9]+)\s*位", re.ASCII),
    re.compile(r"([0-9]+)\s*人", re.ASCII),
    re.compile(r"([0-9]+)\s*個人", re.ASCII),
    re.compile(r"([0-9]+)\s*大人", re.ASCII),
    re.compile(r"([0-9]+)\s*位大人", re.ASCII),
    re.compile(r"^([0-9]+)$"),
)
_CHINESE_PASSENGERS = re.compile(r"([一二兩三四五六七八九十])\s*(?:位|個?人)", re.ASCII)
_ANY_EIGHT_DIGITS = re.compile(r"[0-9]{8}")
_STANDALONE_EIGHT_DIGITS = re.compile(r"(?<![A-Za-z0-9])[0-9]{8}(?![A-Za-z0-9])")
_MOBILE = re.compile(r"09[0-9]{2}[\-\s]?[0-9]{3}[\-\s]?[0-9]{3}", re.ASCII)
_LANDLINE = re.compile(r"\(?[0-9]{2,3}\)?[\-\s]?[0-9]{4}[\-\s]?[0-9]{4}", re.ASCII)
_PHONE_SEPARATORS = re.compile(r"[\-\s()]", re.ASCII)


@dataclass(frozen=True)
class Entity:
    type: SlotType
    original: str
    normalized: str
    metadata: Dict[str, Any] = field(default_factory=dict)


ExtractionResult = Dict[SlotType, Union[Entity, List[Entity], None]]
RuleFunc = Callable[[str, date], List[Entity]]


@dataclass(frozen=True)
class ExtractorRule:
    slot: SlotType
    func: RuleFunc
    multi: bool = False


_RULES: List[ExtractorRule] = []


def extractor(slot: SlotType, multi: bool = False) -> Callable[[RuleFunc], RuleFunc]:
    """Register a rule. Multi-valued rules keep every match, others keep the first."""

    def _register(func: RuleFunc) -> RuleFunc:
        _RULES.append(ExtractorRule(slot=slot, func=func, multi=multi))
        return func

    return _register


def registered_rules() -> List[ExtractorRule]:
    return list(_RULES)


def _valid_month_day(month: int, day: int) -> bool:
    return 1 <= month <= 12 and 1 <= day <= 31


def _date_entity(original: str, year: int, month: int, day: int, form: str) -> Entity:
    return Entity(
        type=SlotType.DATE,
        original=original,
        normalized=f"{year:04d}/{month:02d}/{day:02d}",
        metadata={"form": form},
    )


@extractor(SlotType.DATE, multi=True)
def extract_dates(text: str, today: date) -> List[Entity]:
    dates: List[Entity] = []
    consumed: List[Tuple[int, int]] = []

    for match in _FULL_DATE.finditer(text):
        consumed.append(match.span())
        year, month, day = int(match.group(1)), int(match.group(2)), int(match.group(3))
        if _valid_month_day(month, day):
            dates.append(_date_entity(match.group(0), year, month, day, "full"))

    for match in _SHORT_DATE.finditer(text):
        start, end = match.span()
        if any(start < c_end and end > c_start for c_start, c_end in consumed):
            continue
        month, day = int(match.group(1)), int(match.group(2))
        if _valid_month_day(month, day):
            dates.append(_date_entity(match.group(0), today.year, month, day, "short"))

    for match in _LOCAL_DATE.finditer(text):
        month, day = int(match.group(1)), int(match.group(2))
        if _valid_month_day(month, day):
            dates.append(_date_entity(match.group(0), today.year, month, day, "localized"))

    return dates


@extractor(SlotType.FLIGHT_NO, multi=True)
def extract_flight_numbers(text: str, today: date) -> List[Entity]:
    flights: List[Entity] = []
    for match in _FLIGHT.finditer(text):
        code = match.group(1).upper()
        airline = AIRLINES.get(code)
        if not airline:
            continue
        flights.append(
            Entity(
                type=SlotType.FLIGHT_NO,
                original=match.group(0),
                normalized=f"{code}{match.group(2)}",
                metadata={"airline": airline, "airline_code": code},
            )
        )
    return flights


@extractor(SlotType.BOOKING_REF, multi=True)
def extract_booking_refs(text: str, today: date) -> List[Entity]:
    refs: List[Entity] = []
    for match in _INTERNAL_REF.finditer(text):
        refs.append(
            Entity(type=SlotType.BOOKING_REF, original=match.group(0), normalized=match.group(0).upper(), metadata={"kind": "internal"})
        )
    for match in _PNR.finditer(text):
        token = match.group(1)
        if re.search(r"[A-Z]", token) and re.search(r"[0-9]", token):
            refs.append(Entity(type=SlotType.BOOKING_REF, original=token, normalized=token.upper(), metadata={"kind": "pnr"}))
    return refs


@extractor(SlotType.DESTINATION, multi=True)
def extract_destinations(text: str, today: date) -> List[Entity]:
    found: List[Entity] = []
    for match in _AIRPORT_CODE.finditer(text):
        code = match.group(1)
        if code in DESTINATIONS:
            found.append(Entity(type=SlotType.DESTINATION, original=code, normalized=DESTINATIONS[code], metadata={"code": code}))

    matched_names: List[str] = []
    for code, name in DESTINATIONS.items():
        if name in text:
            matched_names.append(name)
            found.append(Entity(type=SlotType.DESTINATION, original=name, normalized=name, metadata={"code": code}))

    for alias, code in CITY_ALIASES.items():
        if alias in text and not any(alias in name for name in matched_names):
            found.append(Entity(type=SlotType.DESTINATION, original=alias, normalized=alias, metadata={"code": code}))

    for place in COUNTRY_KEYWORDS:
        if place in text:
            found.append(Entity(type=SlotType.DESTINATION, original=place, normalized=place, metadata={"code": None}))
    return found


@extractor(SlotType.PASSENGERS)
def extract_passengers(text: str, today: date) -> List[Entity]:
    stripped = text.strip()
    for pattern in _PASSENGER_PATTERNS:
        match = pattern.search(stripped)
        if not match:
            continue
        count = int(match.group(1))
        if MIN_PASSENGERS <= count <= MAX_PASSENGERS:
            return [Entity(type=SlotType.PASSENGERS, original=match.group(0), normalized=str(count), metadata={"count": count})]

    match = _CHINESE_PASSENGERS.search(stripped)
    if match:
        count = CHINESE_NUMERALS[match.group(1)]
        return [Entity(type=SlotType.PASSENGERS, original=match.group(0), normalized=str(count), metadata={"count": count})]
    return []


def _keyword_lookup(text: str, slot: SlotType, table) -> List[Entity]:
    for keywords, code in table:
        for keyword in keywords:
            if keyword in text:
                return [Entity(type=slot, original=keyword, normalized=code)]
    return []


@extractor(SlotType.CLASS)
def extract_cabin_class(text: str, today: date) -> List[Entity]:
    lowered = text.lower()
    for keyword, code in CABIN_CLASSES:
        if keyword.lower() in lowered:
            return [Entity(type=SlotType.CLASS, original=keyword, normalized=code)]
    return []


@extractor(SlotType.DIRECTION)
def extract_direction(text: str, today: date) -> List[Entity]:
    return _keyword_lookup(text, SlotType.DIRECTION, DIRECTIONS)


@extractor(SlotType.SEAT_PREFERENCE)
def extract_seat_preference(text: str, today: date) -> List[Entity]:
    return _keyword_lookup(text, SlotType.SEAT_PREFERENCE, SEAT_PREFERENCES)


@extractor(SlotType.TAX_ID)
def extract_tax_id(text: str, today: date) -> List[Entity]:
    if any(trigger in text for trigger in TAX_ID_TRIGGERS):
        match = _ANY_EIGHT_DIGITS.search(text)
        if match:
            return [Entity(type=SlotType.TAX_ID, original=match.group(0), normalized=match.group(0), metadata={"triggered": True})]
    match = _STANDALONE_EIGHT_DIGITS.search(text)
    if match:
        return [Entity(type=SlotType.TAX_ID, original=match.group(0), normalized=match.group(0), metadata={"triggered": False})]
    return []


@extractor(SlotType.PHONE, multi=True)
def extract_phones(text: str, today: date) -> List[Entity]:
    phones: List[Entity] = []
    mobile_spans: List[Tuple[int, int]] = []
    for match in _MOBILE.finditer(text):
        mobile_spans.append(match.span())
        phones.append(
            Entity(type=SlotType.PHONE, original=match.group(0), normalized=_PHONE_SEPARATORS.sub("", match.group(0)), metadata={"kind": "mobile"})
        )
    for match in _LANDLINE.finditer(text):
        start, end = match.span()
        if any(start < m_end and end > m_start for m_start, m_end in mobile_spans):
            continue
        phones.append(
            Entity(type=SlotType.PHONE, original=match.group(0), normalized=_PHONE_SEPARATORS.sub("", match.group(0)), metadata={"kind": "landline"})
        )
    return phones


def extract_all(text: Any, today: Optional[date] = None) -> ExtractionResult:
    """Run every registered rule. A failing rule is logged and reported as absent."""
    clean = text if isinstance(text, str) else ""
    today = today or date.today()
    result: ExtractionResult = {}
    for rule in _RULES:
        try:
            found = rule.func(clean, today)
        except Exception:
            logger.warning("entity_rule_failed", extra={"slot": rule.slot.value, "rule": rule.func.__name__}, exc_info=True)
            found = []
        if rule.multi:
            result[rule.slot] = list(found)
        else:
            result[rule.slot] = found[0] if found else None
    return result


def _as_list(value: Union[Entity, List[Entity], None]) -> List[Entity]:
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]


def flatten(extraction: ExtractionResult) -> Dict[str, Any]:
    flat: Dict[str, Any] = {}

    dates = _as_list(extraction.get(SlotType.DATE))
    if dates:
        flat["date"] = dates[0].normalized
        for extra in dates[1:]:
            if extra.normalized != dates[0].normalized:
                flat["date_return"] = extra.normalized
                break

    flights = _as_list(extraction.get(SlotType.FLIGHT_NO))
    if flights:
        flat["flight_no"] = flights[0].normalized
        flat["airline"] = flights[0].metadata.get("airline")

    refs = _as_list(extraction.get(SlotType.BOOKING_REF))
    if refs:
        flat["booking_ref"] = refs[0].normalized

    destinations = _as_list(extraction.get(SlotType.DESTINATION))
    if destinations:
        flat["destination"] = destinations[0].normalized
        if destinations[0].metadata.get("code"):
            flat["destination_code"] = destinations[0].metadata["code"]

    for slot in (SlotType.PASSENGERS, SlotType.CLASS, SlotType.DIRECTION, SlotType.SEAT_PREFERENCE, SlotType.TAX_ID):
        found = _as_list(extraction.get(slot))
        if found:
            flat[slot.entity_key] = found[0].normalized

    phones = _as_list(extraction.get(SlotType.PHONE))
    if phones:
        flat["phone"] = phones[0].normalized
    return flat


def extract_flat(text: Any, today: Optional[date] = None) -> Dict[str, Any]:
    return flatten(extract_all(text, today=today))


def detected_slots(text: Any, today: Optional[date] = None) -> set:
    return {slot for slot, value in extract_all(text, today=today).items() if _as_list(value)}
