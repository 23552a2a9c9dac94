"""Data model shared by the crawler, analyzers, testers and scoring engine."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Set, Tuple

from bs4 import BeautifulSoup

SEVERITY_CRITICAL = "CRITICAL"
SEVERITY_HIGH = "HIGH"
SEVERITY_MEDIUM = "MEDIUM"
SEVERITY_LOW = "LOW"
SEVERITY_INFO = "INFO"

CONFIDENCE_HIGH = "HIGH"
CONFIDENCE_MEDIUM = "MEDIUM"
CONFIDENCE_LOW = "LOW"

OUTCOME_PASSED = "Passed"
OUTCOME_FAILED = "Failed"
OUTCOME_INFO = "Info"
OUTCOME_NOT_APPLICABLE = "N/A"

RISK_LOW = "LOW"
RISK_MEDIUM = "MEDIUM"
RISK_HIGH = "HIGH"
RISK_CRITICAL = "CRITICAL"

MODE_STATIC = "STATIC"
MODE_DYNAMIC = "DYNAMIC"
MODE_BOTH = "BOTH"
SCAN_MODES = (MODE_STATIC, MODE_DYNAMIC, MODE_BOTH)


@dataclass(frozen=True)
class Finding:
    rule_id: str
    title: str
    category: str
    owasp_id: str
    severity: str
    confidence: str
    description: str
    location: str
    remediation: str
    evidence: str = ""

    @property
    def key(self) -> Tuple[str, str, str]:
        return (self.rule_id, self.location, self.evidence)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class SecurityTest:
    test_name: str
    passed: bool
    score_delta: int
    outcome: str
    reason: str
    recommendation: str = ""
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        if not payload["details"]:
            payload.pop("details")
        return payload


@dataclass(frozen=True)
class FormField:
    name: str
    input_type: str = "text"
    value: str = ""


@dataclass(frozen=True)
class FormInfo:
    page_url: str
    action: str
    method: str
    fields: Tuple[FormField, ...] = ()

    @property
    def field_names(self) -> List[str]:
        return [item.name for item in self.fields if item.name]

    @property
    def key(self) -> Tuple[str, str, Tuple[str, ...]]:
        return (self.action, self.method, tuple(sorted(self.field_names)))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "page_url": self.page_url,
            "action": self.action,
            "method": self.method,
            "fields": self.field_names,
        }


@dataclass
class PageSnapshot:
    url: str
    status_code: int
    html: str
    headers: Dict[str, str]
    depth: int = 0
    _soup: Optional[BeautifulSoup] = field(default=None, repr=False, compare=False)

    @property
    def soup(self) -> BeautifulSoup:
        if self._soup is None:
            self._soup = BeautifulSoup(self.html, "html.parser")
        return self._soup

    def header(self, name: str) -> Optional[str]:
        lowered = name.lower()
        for key, value in self.headers.items():
            if key.lower() == lowered:
                return value
        return None


@dataclass
class SiteMap:
    """Discovered surface of one crawl: visited URLs, endpoints and forms."""

    urls: List[str] = field(default_factory=list)
    endpoints: List[str] = field(default_factory=list)
    forms: List[FormInfo] = field(default_factory=list)
    depths: Dict[str, int] = field(default_factory=dict)
    pages: List[PageSnapshot] = field(default_factory=list)
    _url_set: Set[str] = field(default_factory=set, repr=False)
    _endpoint_set: Set[str] = field(default_factory=set, repr=False)
    _form_keys: Set[Tuple[str, str, Tuple[str, ...]]] = field(default_factory=set, repr=False)

    def add_url(self, url: str, depth: int) -> bool:
        if url in self._url_set:
            return False
        self._url_set.add(url)
        self.urls.append(url)
        self.depths[url] = depth
        return True

    def add_endpoint(self, url: str) -> bool:
        if url in self._endpoint_set:
            return False
        self._endpoint_set.add(url)
        self.endpoints.append(url)
        return True

    def add_form(self, form: FormInfo) -> bool:
        if form.key in self._form_keys:
            return False
        self._form_keys.add(form.key)
        self.forms.append(form)
        return True

    def summary(self) -> Dict[str, Any]:
        return {
            "urls": list(self.urls),
            "endpoints": list(self.endpoints),
            "forms": [form.to_dict() for form in self.forms],
            "url_count": len(self.urls),
            "endpoint_count": len(self.endpoints),
            "form_count": len(self.forms),
            "max_depth": max(self.depths.values(), default=0),
        }


@dataclass(frozen=True)
class CodeContext:
    is_framework: bool = False
    framework_name: Optional[str] = None
    is_minified: bool = False
    has_csp: bool = False


@dataclass(frozen=True)
class ScoreEntry:
    test_name: str
    score_delta: int
    passed: bool


@dataclass
class ScoringResult:
    score: float
    risk_level: str
    breakdown: List[ScoreEntry] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
