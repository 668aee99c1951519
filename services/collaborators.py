"""
External collaborator contracts used by the replay engine

Content generation, brand compliance and plan derivation live outside this
service. Each contract has a requests-based HTTP client and a seeded
simulated implementation for development and tests.
"""

import logging
import random
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field, asdict
from typing import Any, Callable, Dict, List, Optional, TypeVar

import requests

from services.exceptions import CollaboratorError

logger = logging.getLogger(__name__)

T = TypeVar('T')

_timeout_pool = ThreadPoolExecutor(max_workers=4, thread_name_prefix='collaborator')


def call_with_timeout(func: Callable[..., T], timeout_seconds: float, *args, **kwargs) -> T:
    """
    Run a collaborator call under a hard timeout.

    Raises:
        CollaboratorError: On timeout or any exception raised by the call
    """
    future = _timeout_pool.submit(func, *args, **kwargs)
    try:
        return future.result(timeout=timeout_seconds)
    except FutureTimeoutError:
        future.cancel()
        raise CollaboratorError(f"{getattr(func, '__qualname__', func)} timed out after {timeout_seconds}s")
    except CollaboratorError:
        raise
    except Exception as e:
        raise CollaboratorError(f"{getattr(func, '__qualname__', func)} failed: {e}") from e


# Typed request/response contracts

@dataclass
class ContentRequest:
    content_type: str
    topic: str
    audience: str
    tone: str = 'professional'
    subjects: List[str] = field(default_factory=list)
    variants: int = 3


@dataclass
class ContentVariants:
    subjects: List[str]
    bodies: List[str] = field(default_factory=list)
    confidence: float = 0.0


@dataclass
class BrandComplianceRequest:
    content: str
    tone: str = 'professional'
    context: str = ''


@dataclass
class BrandComplianceReport:
    score: float  # 0-100
    suggestions: List[str] = field(default_factory=list)
    confidence: float = 0.0


@dataclass
class ReplayPlan:
    id: str
    pattern_id: str
    name: str
    objective: str
    content_type: str
    channels: List[str]
    segments: List[str]
    subjects: List[str]
    cta_types: List[str]
    timing_windows: List[str]
    agent_sequence: List[str]
    budget: float
    predicted_roi: float
    tone: str = 'professional'

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# Contracts

class ContentGenerator(ABC):
    @abstractmethod
    def generate_content(self, request: ContentRequest) -> ContentVariants:
        raise NotImplementedError


class BrandAnalyzer(ABC):
    @abstractmethod
    def analyze_brand_compliance(self, request: BrandComplianceRequest) -> BrandComplianceReport:
        raise NotImplementedError


class PlanGenerator(ABC):
    @abstractmethod
    def generate_plan(self, pattern: Any, budget: float) -> ReplayPlan:
        raise NotImplementedError


# HTTP implementations

class _JsonServiceClient:
    """Minimal JSON POST client with an enforced timeout"""

    def __init__(self, base_url: str, api_key: Optional[str] = None, timeout: float = 10.0):
        if not base_url:
            raise ValueError("Collaborator base URL not configured")
        self.base_url = base_url.rstrip('/')
        self.api_key = api_key
        self.timeout = (min(5.0, timeout), timeout)  # Connection timeout, read timeout

    def _post(self, endpoint: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        url = f"{self.base_url}/{endpoint}"
        try:
            response = requests.post(url, json=payload, headers=headers, timeout=self.timeout)
            response.raise_for_status()
            return response.json()
        except requests.exceptions.Timeout as e:
            logger.error(f"Collaborator request timeout for {endpoint}: {e}")
            raise CollaboratorError(f"Request to {endpoint} timed out") from e
        except requests.exceptions.RequestException as e:
            logger.error(f"Collaborator request failed for {endpoint}: {e}")
            raise CollaboratorError(f"Request to {endpoint} failed: {e}") from e
        except ValueError as e:
            raise CollaboratorError(f"Invalid JSON from {endpoint}") from e


class HttpContentGenerator(_JsonServiceClient, ContentGenerator):
    def generate_content(self, request: ContentRequest) -> ContentVariants:
        data = self._post('content/generate', asdict(request))
        return ContentVariants(
            subjects=list(data.get('subjects', [])),
            bodies=list(data.get('bodies', [])),
            confidence=float(data.get('confidence', 0.0))
        )


class HttpBrandAnalyzer(_JsonServiceClient, BrandAnalyzer):
    def analyze_brand_compliance(self, request: BrandComplianceRequest) -> BrandComplianceReport:
        data = self._post('brand/compliance', asdict(request))
        return BrandComplianceReport(
            score=float(data.get('score', 0.0)),
            suggestions=list(data.get('suggestions', [])),
            confidence=float(data.get('confidence', 0.0))
        )


# Simulated implementations

class SimulatedContentGenerator(ContentGenerator):
    def __init__(self, seed: Optional[int] = None):
        self.random = random.Random(seed)

    def generate_content(self, request: ContentRequest) -> ContentVariants:
        base_subjects = request.subjects or [f"{request.topic.title()} for {request.audience}"]
        subjects = []
        for index in range(max(1, request.variants)):
            subject = base_subjects[index % len(base_subjects)]
            subjects.append(f"{subject} (refreshed v{index + 1})")
        return ContentVariants(
            subjects=subjects,
            bodies=[f"{request.tone.title()} copy for {request.audience}" for _ in subjects],
            confidence=round(self.random.uniform(0.6, 0.9), 3)
        )


class SimulatedBrandAnalyzer(BrandAnalyzer):
    def __init__(self, seed: Optional[int] = None):
        self.random = random.Random(seed)

    def analyze_brand_compliance(self, request: BrandComplianceRequest) -> BrandComplianceReport:
        score = round(self.random.uniform(65.0, 98.0), 1)
        suggestions = []
        if score < 80:
            suggestions = [
                f"Align messaging with the {request.tone} brand tone",
                "Replace generic calls to action with brand-specific phrasing",
            ]
        return BrandComplianceReport(score=score, suggestions=suggestions,
                                     confidence=round(self.random.uniform(0.7, 0.95), 3))


OBJECTIVE_KEYWORDS = (
    ('brand awareness', 'brand_awareness'),
    ('lead gen', 'lead_generation'),
    ('product launch', 'product_launch'),
    ('retention', 'customer_retention'),
)


class PatternPlanGenerator(PlanGenerator):
    """Deterministic planner that clones a pattern's winning variants into a plan"""

    def generate_plan(self, pattern: Any, budget: float) -> ReplayPlan:
        variants = pattern.winning_variants or {}
        segments = pattern.segments or {}
        summary = pattern.summary or ''

        content_styles = variants.get('content_styles') or ['email']
        channels = ['email'] + (['social_media'] if 'social' in ' '.join(content_styles) else [])
        segment_names = list(segments.get('behavioral') or []) + list(segments.get('demographics') or [])

        # Pattern score doubles as an ROI prior: 85 -> 2.55x, 100 -> 3.0x
        predicted_roi = round((pattern.pattern_score or 0.0) / 100.0 * 3.0, 4)

        return ReplayPlan(
            id=f"replay_plan_{pattern.id}",
            pattern_id=pattern.id,
            name=f"Replay of {pattern.id}",
            objective=self.extract_objective(summary),
            content_type='email' if 'email' in channels else channels[0],
            channels=channels,
            segments=segment_names or ['general'],
            subjects=list(variants.get('subjects') or []),
            cta_types=list(variants.get('cta_types') or []),
            timing_windows=list(variants.get('timing_windows') or []),
            agent_sequence=list(variants.get('agent_sequences') or []),
            budget=budget,
            predicted_roi=predicted_roi
        )

    @staticmethod
    def extract_objective(summary: str) -> str:
        lowered = summary.lower()
        for keyword, objective in OBJECTIVE_KEYWORDS:
            if keyword in lowered:
                return objective
        return 'engagement'
