"""
Language detection by Unicode-range character counting.

Pure functions: same input, same output, no I/O. Good enough to route a
preliminary evaluation to the right model; not a general-purpose detector.
"""
import re
from typing import Dict, List

# ---------------------------------------------------------------------------
# Character classes
# ---------------------------------------------------------------------------

CJK_RE = re.compile("[\u4e00-\u9fa5]")
KANA_RE = re.compile("[\u3040-\u309f\u30a0-\u30ff]")
HANGUL_RE = re.compile("[\uac00-\ud7af]")
LATIN_RE = re.compile(r"[a-zA-Z]")
CYRILLIC_RE = re.compile("[\u0400-\u04ff]")
ARABIC_RE = re.compile("[\u0600-\u06ff]")

CJK_THRESHOLD = 0.2
HANGUL_THRESHOLD = 0.1
KANA_THRESHOLD = 0.1
LATIN_THRESHOLD = 0.5

# A handful of Cyrillic letters inside mostly-Latin text is enough to call it Russian
CYRILLIC_MIN_MATCHES = 10

# ---------------------------------------------------------------------------
# Stop-word patterns for Latin-script languages. English first so ties favour it
# ---------------------------------------------------------------------------

STOP_WORDS: Dict[str, List[re.Pattern]] = {
    "en": [
        re.compile(r"\b(the|and|is|in|at|of|to|a|an|be|are|was|were|been|being)\b"),
        re.compile(r"\b(this|that|these|those|with|from|for|about|as|into|like|through)\b"),
    ],
    "es": [
        re.compile(r"\b(el|la|de|que|y|a|en|un|una|es|son|con|por|para|como|estar|hay)\b"),
        re.compile(r"\b(este|esta|esto|pero|más|todo|también|tiempo|año|ver)\b"),
    ],
    "fr": [
        re.compile(r"\b(le|la|de|et|à|un|une|en|est|son|avec|pour|pas|plus|comme)\b"),
        re.compile(r"\b(ce|cet|cette|ces|mais|tout|aussi|temps|an|voir|faire)\b"),
    ],
    "de": [
        re.compile(r"\b(der|die|das|und|in|den|von|zu|sich|mit|für|auf|ist|im)\b"),
        re.compile(r"\b(dieser|diese|dieses|aber|auch|alle|zwischen|durch|wieder|ohne)\b"),
    ],
    "pt": [
        re.compile(r"\b(o|a|de|e|em|um|uma|é|são|com|para|não|se|mas|como|mais)\b"),
        re.compile(r"\b(este|esta|isto|tudo|também|tempo|ano|ver|por|entre)\b"),
    ],
    "it": [
        re.compile(r"\b(il|la|di|e|in|un|una|è|sono|con|per|non|ma|come|più)\b"),
        re.compile(r"\b(questo|questa|tutto|anche|tempo|anno|vedere)\b"),
    ],
}

LATIN_LANGUAGES = tuple(STOP_WORDS.keys())


def detect_language(text: str) -> str:
    """
    Classify text into a language code.

    >20% CJK → zh, >10% Hangul → ko, >10% kana → ja, >50% Latin letters → a
    stop-word vote among Latin languages (or ru on Cyrillic), otherwise "other".
    """
    if not text or not text.strip():
        return "other"

    total = len(text)
    if len(CJK_RE.findall(text)) / total > CJK_THRESHOLD:
        return "zh"
    if len(HANGUL_RE.findall(text)) / total > HANGUL_THRESHOLD:
        return "ko"
    if len(KANA_RE.findall(text)) / total > KANA_THRESHOLD:
        return "ja"
    if len(LATIN_RE.findall(text)) / total > LATIN_THRESHOLD:
        return detect_latin_language(text)
    return "other"


def detect_latin_language(text: str) -> str:
    """Pick the Latin-script language with the most stop-word hits. Ties and zero hits → en."""
    lower = text.lower()

    if len(CYRILLIC_RE.findall(lower)) > CYRILLIC_MIN_MATCHES:
        return "ru"

    best_lang, best_count = "en", 0
    for lang, patterns in STOP_WORDS.items():
        count = sum(len(p.findall(lower)) for p in patterns)
        if count > best_count:
            best_lang, best_count = lang, count
    return best_lang


def detect_script(text: str) -> str:
    """Dominant writing system, for diagnostics: hanzi, kana, hangul, cyrillic, arabic, latin or other."""
    counts = {
        "hanzi": len(CJK_RE.findall(text or "")),
        "kana": len(KANA_RE.findall(text or "")),
        "hangul": len(HANGUL_RE.findall(text or "")),
        "cyrillic": len(CYRILLIC_RE.findall(text or "")),
        "arabic": len(ARABIC_RE.findall(text or "")),
        "latin": len(LATIN_RE.findall(text or "")),
    }
    script, count = max(counts.items(), key=lambda kv: kv[1])
    return script if count > 0 else "other"
