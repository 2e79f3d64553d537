"""
Damage-report triage: severity, categories and suggested supplies.

Gemini is asked first when configured; the keyword heuristic answers whenever
the model is unavailable or returns something unusable.
"""
import base64
import json
import re
from typing import Optional

from services.llm_service import image_part
from utils.logger import get_logger, log_exception

MAX_ITEMS = 10
MAX_CATEGORIES = 5

CRITICAL_WORDS = ("injured", "injury", "hurt", "hurted", "died", "death", "fatal", "collapsed", "collapse", "trapped")
STRUCTURAL_WORDS = ("collapsed", "collapse", "building")
FIRE_WORDS = ("fire", "burn", "smoke")
FLOOD_WORDS = ("flood", "water rising", "submerged", "drown")
INJURY_TOKENS = ("injured", "injury", "hurt", "hurted")
FATAL_TOKENS = ("dead", "died", "fatal", "fatality", "death")

NUMBER_WORDS = {
    "one": 1, "two": 2, "three": 3, "four": 4, "five": 5, "six": 6,
    "seven": 7, "eight": 8, "nine": 9, "ten": 10, "eleven": 11, "twelve": 12,
}

TOKEN_SPLIT_RE = re.compile(r"[^a-z0-9]+")
LEADING_DIGITS_RE = re.compile(r"\d+")


def _strip_plural(name: str) -> str:
    return name[:-1] if name.endswith("s") else name


def to_canonical_allowed(name: str, allowed: Optional[list]) -> Optional[str]:
    """Map a free-form item name onto the catalog's spelling, or None."""
    if not allowed:
        return name
    wanted = name.lower().strip()
    for candidate in allowed:
        if candidate.lower() == wanted:
            return candidate

    best, best_score = None, 0
    for candidate in allowed:
        lowered = candidate.lower()
        score = 0
        if lowered in wanted or wanted in lowered:
            score += 2
        if _strip_plural(wanted) == _strip_plural(lowered):
            score += 1
        if score > best_score:
            best, best_score = candidate, score
    return best


def merge_items(items: list[dict], allowed: Optional[list]) -> list[dict]:
    merged = {}
    for item in items:
        canon = to_canonical_allowed(item["name"], allowed)
        if not canon:
            continue
        merged[canon] = merged.get(canon, 0) + item["qty"]
    return [{"name": name, "qty": qty} for name, qty in merged.items()]


def _as_number(token: str) -> Optional[int]:
    match = LEADING_DIGITS_RE.match(token)
    if match:
        return int(match.group())
    return NUMBER_WORDS.get(token)


def _neighbour_number(tokens: list, i: int) -> Optional[int]:
    # the word before wins; the word after is only read when there is none
    neighbour = (tokens[i - 1] if i > 0 else "") or (tokens[i + 1] if i + 1 < len(tokens) else "")
    return _as_number(neighbour)


def casualty_counts(text: str) -> tuple[int, int]:
    tokens = [t for t in TOKEN_SPLIT_RE.split(text) if t]
    injured = fatal = 0
    for i, tok in enumerate(tokens):
        if tok in INJURY_TOKENS:
            n = _neighbour_number(tokens, i)
            if n is not None:
                injured = max(injured, n)
        if tok in FATAL_TOKENS:
            n = _neighbour_number(tokens, i)
            fatal = max(fatal, n if n is not None else 1)
    return injured, fatal


def heuristic_analyze(description: str, allowed: Optional[list] = None) -> dict:
    text = description.lower()
    severity, confidence = 0.3, 0.2
    categories, items = [], []

    def add_category(category):
        if category not in categories:
            categories.append(category)

    critical = any(w in text for w in CRITICAL_WORDS)
    if critical:
        severity += 0.35
        confidence += 0.3
        add_category("medical")
        add_category("structural")
    if any(w in text for w in STRUCTURAL_WORDS):
        severity += 0.25
        confidence += 0.2
        add_category("structural")
    if any(w in text for w in FIRE_WORDS):
        severity += 0.2
        add_category("fire")
    if any(w in text for w in FLOOD_WORDS):
        severity += 0.2
        add_category("flooding")

    injured, fatal = casualty_counts(text)
    if injured > 0:
        items.append({"name": "First Aid", "qty": max(1, injured)})
        items.append({"name": "Blankets", "qty": max(2, injured)})
        items.append({"name": "Medicine Box", "qty": 1})
        severity += min(0.25, injured * 0.05)
        confidence += 0.15
    if fatal > 0:
        severity = max(severity, 0.9)
        confidence += 0.1
        add_category("critical")

    if critical or "collapsed" in text:
        items.append({"name": "Water Bottles", "qty": max(12, injured * 6)})

    return {
        "severity": min(1, max(0, severity)),
        "categories": categories or ["general"],
        "items": merge_items(items, allowed),
        "confidence": min(1, max(0.2, confidence)),
    }


def build_prompt(description: str, allowed: Optional[list]) -> str:
    allowed_section = ""
    if allowed:
        allowed_section = "\n".join(["Allowed item names (must use only these):"] + [f"- {n}" for n in allowed])
    return "\n".join([
        "You are an emergency triage assistant.",
        "Return STRICT JSON only (no prose).",
        "Schema: {",
        '  "severity": number (0..1),',
        '  "categories": string[],',
        '  "items": Array<{ name: string, qty: number }>,',
        '  "confidence": number (0..1)',
        "}",
        "Rules:",
        "- categories from: [structural, medical, flooding, fire, general, critical] (choose any).",
        "- items must use names from the allowed list only; if none apply, return an empty items array.",
        "- qty must be positive integers; max 10 items.",
        "- If uncertain, still return best-guess with reasonable qty.",
        allowed_section,
        "Description:",
        description,
        "JSON only:",
    ])


def _clamp(value, default: float) -> float:
    try:
        number = float(value) if value is not None else default
    except (TypeError, ValueError):
        number = default
    return min(1, max(0, number))


def _positive_qty(value) -> int:
    try:
        qty = int(float(value))
    except (TypeError, ValueError):
        qty = 0
    return max(1, qty)


def parse_model_suggestion(text: str, allowed: Optional[list]) -> dict:
    """Extract and normalise the JSON object a model returned. Raises ValueError."""
    start, end = text.find("{"), text.rfind("}")
    raw = text[start:end + 1] if start >= 0 and end >= 0 else text
    parsed = json.loads(raw)
    if not isinstance(parsed, dict):
        raise ValueError("suggestion is not an object")

    raw_items = parsed.get("items")
    items = []
    if isinstance(raw_items, list):
        for it in raw_items:
            if not isinstance(it, dict):
                continue
            name = str(it.get("name") or "")
            if name:
                items.append({"name": name, "qty": _positive_qty(it.get("qty"))})
        items = items[:MAX_ITEMS]
    if allowed:
        items = merge_items(items, allowed)

    categories = parsed.get("categories")
    return {
        "severity": _clamp(parsed.get("severity"), 0.5),
        "categories": categories[:MAX_CATEGORIES] if isinstance(categories, list) else ["general"],
        "items": items,
        "confidence": _clamp(parsed.get("confidence"), 0.6),
    }


class TriageService:
    def __init__(self, llm=None, model: Optional[str] = None):
        self.llm = llm
        self.model = model
        self.logger = get_logger()

    def _ask_model(self, description, image_base64, image_mime, allowed) -> Optional[dict]:
        contents = [build_prompt(description, allowed)]
        if image_base64 and image_mime:
            contents.append(image_part(base64.b64decode(image_base64), image_mime))
        text = self.llm.generate_text(contents, model=self.model)
        if not text:
            return None
        return parse_model_suggestion(text, allowed)

    def analyze(self, description: str, image_base64: Optional[str] = None,
                image_mime: Optional[str] = None, allowed: Optional[list] = None) -> dict:
        allowed = allowed if isinstance(allowed, list) else None
        if self.llm is not None and self.llm.configured:
            try:
                suggestion = self._ask_model(description, image_base64, image_mime, allowed)
                if suggestion is not None:
                    return suggestion
            except Exception as err:
                log_exception(err, context="triage model call")
        return heuristic_analyze(description, allowed)
