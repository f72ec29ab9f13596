from typing import List, Optional


class ConfigurationError(Exception):
    """Missing credentials or an invalid model mapping. Raised at startup or first use."""


class ProviderError(Exception):
    """A language-model backend call failed."""

    def __init__(self, message: str, provider: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code

    def __str__(self):
        prefix = f"[{self.provider}] " if self.provider else ""
        status = f" (HTTP {self.status_code})" if self.status_code else ""
        return f"{prefix}{self.args[0]}{status}"


class AnalysisFailed(Exception):
    """Every requested facet failed."""

    def __init__(self, errors: List[str]):
        super().__init__(f"AI analysis failed: {'; '.join(errors) or 'no facets requested'}")
        self.errors = errors


class ArticleNotFound(Exception):
    def __init__(self, article_id: str):
        super().__init__(f"Article {article_id} does not exist")
        self.article_id = article_id
