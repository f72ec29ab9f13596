"""
Language-model provider interface.

Concrete backends implement `chat` and `embed`; every analysis capability is
built on top of `chat` here so that all vendors truncate, prompt and parse
responses the same way.
"""
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, List

from feedai.model_router import ProviderConfig, model_info

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Fixed category set; categorize() always returns one of these
# ---------------------------------------------------------------------------

CATEGORIES = [
    "AI/Machine Learning",
    "Frontend Development",
    "Backend Development",
    "Mobile Development",
    "Cloud/DevOps",
    "Databases",
    "Security",
    "Blockchain",
    "Gaming",
    "Product Design",
    "Startups/Business",
    "Industry News",
    "Tech Trends",
    "Tools/Resources",
    "Tutorials/Guides",
]
DEFAULT_CATEGORY = "Industry News"

SENTIMENTS = ("positive", "neutral", "negative")

# Per-capability input budgets (characters), further capped by the backend's context size
SUMMARY_BUDGET = 8000
KEYWORDS_BUDGET = 4000
CATEGORY_BUDGET = 2000
SENTIMENT_BUDGET = 1000
IMPORTANCE_BUDGET = 3000
EMBEDDING_BUDGET = 8191

SUMMARY_PROMPT = (
    "You are a professional article summarizer. Summarize the article in 3-5 "
    "sentences covering its core content. Reply in the article's language."
)
KEYWORDS_PROMPT = "Extract the 5-10 most important keywords from the article, separated by commas."
IMPORTANCE_PROMPT = """You are a content value assessor. Rate the article's importance from 0 to 100:

1. Practicality (30): does it provide useful information, skills or insight
2. Originality (25): is it new rather than a restatement of common knowledge
3. Depth (25): does it analyse rather than describe
4. Timeliness (20): is it timely or of lasting reference value

Reply with a single number between 0 and 100 and nothing else."""

_NUMBER_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*$")
_DIGITS_RE = re.compile(r"\d+")
_CODE_RE = re.compile(r"```|<code>")
_MD_LINK_RE = re.compile(r"\[.*?\]\(.*?\)")


@dataclass
class ChatResponse:
    content: str
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def tokens_used(self) -> int:
        return self.input_tokens + self.output_tokens


@dataclass
class TokenUsage:
    """Running token count for one provider instance."""
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    def add(self, response: ChatResponse):
        self.input_tokens += response.input_tokens
        self.output_tokens += response.output_tokens


def heuristic_importance(text: str) -> float:
    """
    Importance estimate from surface features: length, numerals, code, links.
    Always within [0.3, 0.9].
    """
    score = min(len(text) / 5000, 0.4)
    if _DIGITS_RE.search(text):
        score += 0.15
    if _CODE_RE.search(text):
        score += 0.2
    if _MD_LINK_RE.search(text):
        score += 0.15
    return min(max(score, 0.3), 0.9)


def parse_importance(reply: str) -> float:
    """Parse a numeric-only 0-100 reply into [0, 1]. Raises ValueError otherwise."""
    match = _NUMBER_RE.match(reply or "")
    if not match:
        raise ValueError(f"Non-numeric importance reply: {reply!r}")
    return min(max(float(match.group(1)), 0.0), 100.0) / 100


def normalize_category(reply: str) -> str:
    text = (reply or "").strip().strip(".\"'")
    for category in CATEGORIES:
        if text.lower() == category.lower():
            return category
    # Models often wrap the answer in a sentence
    for category in CATEGORIES:
        if category.lower() in text.lower():
            return category
    return DEFAULT_CATEGORY


def normalize_sentiment(reply: str) -> str:
    text = (reply or "").strip().lower()
    if "positive" in text:
        return "positive"
    if "negative" in text:
        return "negative"
    return "neutral"


def split_keywords(reply: str) -> List[str]:
    return [k.strip() for k in re.split(r"[,，]", reply or "") if k.strip()]


class LLMProvider(ABC):
    """
    One language-model backend, configured for a single model.

    Instances hold immutable configuration plus their own token counter, so a
    fresh provider per job keeps usage accounting per job.
    """

    name = "base"

    def __init__(self, config: ProviderConfig):
        self.config = config
        self.model = config.model
        self.max_input_chars = model_info(config.model).max_input_chars
        self.usage = TokenUsage()

    @abstractmethod
    async def chat(self, messages: List[Dict[str, str]], **options) -> ChatResponse:
        """
        Send a chat completion request.

        Options: max_tokens, temperature, response_format ({"type": "json_object"}).
        Raises ProviderError on any backend failure.
        """

    @abstractmethod
    async def embed(self, text: str) -> List[float]:
        """Embedding vector for `text`. Raises ProviderError if unsupported."""

    def truncate(self, text: str, budget: int) -> str:
        return (text or "")[:min(budget, self.max_input_chars)]

    async def _ask(self, messages: List[Dict[str, str]], **options) -> str:
        response = await self.chat(messages, **options)
        self.usage.add(response)
        return response.content

    # ------------------------------------------------------------------
    # Analysis capabilities
    # ------------------------------------------------------------------

    async def summarize(self, text: str) -> str:
        reply = await self._ask(
            [
                {"role": "system", "content": SUMMARY_PROMPT},
                {"role": "user", "content": f"Summarize this article:\n\n{self.truncate(text, SUMMARY_BUDGET)}"},
            ],
            max_tokens=500,
            temperature=0.5,
        )
        return reply.strip()

    async def extract_keywords(self, text: str) -> List[str]:
        reply = await self._ask(
            [
                {"role": "system", "content": KEYWORDS_PROMPT},
                {"role": "user", "content": f"Extract keywords:\n\n{self.truncate(text, KEYWORDS_BUDGET)}"},
            ],
            max_tokens=200,
            temperature=0.3,
        )
        return split_keywords(reply)

    async def categorize(self, text: str) -> str:
        categories = ", ".join(CATEGORIES)
        reply = await self._ask(
            [
                {
                    "role": "user",
                    "content": (
                        f"Classify the article into exactly one of these categories:\n{categories}\n\n"
                        f"Reply with the category name only. Article:\n\n{self.truncate(text, CATEGORY_BUDGET)}"
                    ),
                },
            ],
            max_tokens=50,
            temperature=0.3,
        )
        return normalize_category(reply)

    async def analyze_sentiment(self, text: str) -> str:
        reply = await self._ask(
            [
                {
                    "role": "user",
                    "content": (
                        "Analyse the sentiment of the article. Reply with exactly one word: "
                        f"positive, neutral or negative.\n\nArticle:\n{self.truncate(text, SENTIMENT_BUDGET)}"
                    ),
                },
            ],
            max_tokens=20,
            temperature=0.1,
        )
        return normalize_sentiment(reply)

    async def rate_importance(self, text: str) -> float:
        """
        Importance in [0, 1]. An unparseable reply uses the heuristic; backend
        errors propagate so callers can count the facet as failed.
        """
        reply = await self._ask(
            [
                {"role": "system", "content": IMPORTANCE_PROMPT},
                {"role": "user", "content": f"Rate this article:\n\n{self.truncate(text, IMPORTANCE_BUDGET)}"},
            ],
            max_tokens=10,
            temperature=0.3,
        )
        try:
            return parse_importance(reply)
        except ValueError:
            logger.warning(f"Unparseable importance reply from {self.model}: {reply[:40]!r}, using heuristic")
            return heuristic_importance(text or "")

    async def score_importance(self, text: str) -> float:
        """Importance in [0, 1]. Never raises: unparseable replies and errors use the heuristic."""
        try:
            return await self.rate_importance(text)
        except Exception as e:
            logger.warning(f"Importance scoring via {self.model} failed, using heuristic: {e}")
            return heuristic_importance(text or "")
