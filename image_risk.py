"""
Image risk scoring for street view samples along a route.

Three layers:
  - parse_oracle_response(): turns the oracle's free-text reply into an
    ImageScoreResult. Tolerant of missing lines; never raises.
  - GeminiImageScorer: fetches one image and asks Gemini to rate it.
    Never raises; every failure degrades to FALLBACK_SCORE.
  - score_images(): bounded batch over many images. Windows of at most
    ``concurrency`` calls run concurrently; the next window starts only
    when the previous one has fully settled. Results are placed by input
    index, never by completion order.
"""

import asyncio
import inspect
import logging
import math
import re
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional, Sequence

import httpx
from google import genai
from google.genai import types

from models import FALLBACK_SCORE, ImageScoreResult
from route_trace import get_trace

logger = logging.getLogger(__name__)

DEFAULT_CONCURRENCY = 3
DEFAULT_MODEL = "gemini-1.5-flash"

DEFAULT_RISK_SCORE = 50
DEFAULT_EXPLANATION = "No explanation provided."
DEFAULT_PRECAUTION = "Drive with caution."

_RISK_SCORE_RE = re.compile(r"Risk Score:\s*(-?\d+)", re.IGNORECASE)
_EXPLANATION_RE = re.compile(r"Explanation:\s*(.+?)(?:\n|$)", re.IGNORECASE)
_PRECAUTION_RE = re.compile(r"Precaution:\s*(.+?)(?:\n|$)", re.IGNORECASE)
_KEY_PARAM_RE = re.compile(r"([?&]key=)[^&]+")

ScoreFn = Callable[[str], Awaitable[ImageScoreResult]]


# =============================================================================
# ORACLE PROMPT
# =============================================================================

CALIBRATION_INSTRUCTIONS = """\
You are analyzing street view images for driving safety in India. Follow these precise calibration guidelines:

1. SCORING CALIBRATION:
- Good, normal roads with minimal hazards should score in the 15-25 range
- Well-maintained highways with proper infrastructure: 15-20
- Decent urban/rural roads with minor imperfections: 20-30
- Roads with moderate safety concerns: 30-45
- Roads with significant hazards: 45-60
- Reserve scores above 60 for dangerous conditions requiring exceptional caution
- Scores below 15 indicate exceptionally safe, well-maintained roads

2. CRITICAL SAFETY FACTORS (must increase score significantly):
- Blind curves or severely limited visibility: +10-15 points
- Dangerous intersections without proper controls: +10-15 points
- Very narrow roads with two-way traffic: +10-15 points
- Heavy traffic with significant congestion: +8-12 points
- Heavy vehicles in constrained spaces: +8-12 points
- Significant road damage or obstructions: +8-12 points
- Poor lighting in night conditions: +8-12 points
- Mixed, unpredictable traffic flows: +5-10 points
- Construction zones with inadequate marking: +5-10 points

3. REGIONAL CONTEXT ADJUSTMENTS:
- Standard narrow roads common in India should receive modest scores (5-10)
- Absence of median barriers is common (add only 2-5 points unless on high-speed roads)
- Normal traffic density and mixed vehicle types are standard; add points only for extremes
- Judge road surface quality relative to local norms, not international standards

4. AVOIDING UNDER-SCORING OF HAZARDS:
- Do not minimize real safety hazards present in the image
- Multiple safety concerns have a cumulative effect
- Never rate a road with significant hazards below 30

5. FACTOR WEIGHTAGES (out of 100):
- Road Infrastructure: 30%
- Traffic Conditions: 25%
- Accident History: 25% (redistribute to other factors when no data is available)
- Environmental Factors: 10%
- Human Factors: 10%

6. OUTPUT FORMAT:
- Provide only the Risk Score, Explanation, and Precaution in your response
- Do not include scoring criteria or calibration guidelines in your output
"""

USER_PROMPT = """\
Analyze this street view image for driving safety and road conditions, focusing on evidence-based risk factors.
{context}
Evaluate road infrastructure, traffic conditions, environmental factors (weather, lighting,
visibility, surface), human factors (pedestrians, construction, attention demands) and
infrastructure quality. Calculate a TOTAL RISK SCORE where higher points indicate higher risk.

Format your response exactly like this with one line for each:
Risk Score: [number 0-100]
Explanation: [one concise sentence about main safety feature or concern]
Precaution: [one brief, actionable driving tip]
"""


def build_prompt(context_hint: str = "") -> str:
    context = f"Additional context: {context_hint}\n" if context_hint else ""
    return CALIBRATION_INSTRUCTIONS + "\n\n" + USER_PROMPT.format(context=context)


# =============================================================================
# RESPONSE PARSING
# =============================================================================

def parse_oracle_response(text: str) -> ImageScoreResult:
    """Extract score, explanation and precaution from an oracle reply.

    Matching is case-insensitive and line-oriented. Missing fields get
    defaults; the score is clamped to [0, 100].
    """
    text = (text or "").strip()

    score_match = _RISK_SCORE_RE.search(text)
    explanation_match = _EXPLANATION_RE.search(text)
    precaution_match = _PRECAUTION_RE.search(text)

    score = int(score_match.group(1)) if score_match else DEFAULT_RISK_SCORE
    explanation = explanation_match.group(1).strip() if explanation_match else ""
    precaution = precaution_match.group(1).strip() if precaution_match else ""

    return ImageScoreResult(
        risk_score=max(0, min(100, score)),
        explanation=explanation or DEFAULT_EXPLANATION,
        precaution=precaution or DEFAULT_PRECAUTION,
    )


def average_risk_score(scores: Sequence[int]) -> int:
    """Unweighted mean rounded half-up. 0 for an empty sequence."""
    if not scores:
        return 0
    return int(math.floor(sum(scores) / len(scores) + 0.5))


# =============================================================================
# GEMINI SCORER
# =============================================================================

class GeminiImageScorer:
    """Scores one street view image with Gemini.

    Image bytes are fetched with the shared httpx client and sent inline
    alongside the calibration prompt.
    """

    def __init__(
        self,
        client: genai.Client,
        http: httpx.AsyncClient,
        model: str = DEFAULT_MODEL,
    ):
        self.client = client
        self.http = http
        self.model = model
        self.generation_config = types.GenerateContentConfig(
            temperature=0,
            top_p=0.95,
            top_k=64,
            max_output_tokens=1024,
        )

    async def _fetch_image(self, url: str) -> Optional[types.Part]:
        trace = get_trace()
        t0 = time.time()
        resp = await self.http.get(url)
        if trace:
            trace.record_api_call(
                service="street_view",
                endpoint="streetview",
                elapsed_ms=(time.time() - t0) * 1000,
                status_code=resp.status_code,
            )
        if resp.status_code != 200:
            logger.warning("Failed to fetch street view image: HTTP %d", resp.status_code)
            return None
        mime_type = resp.headers.get("content-type", "image/jpeg").split(";")[0]
        return types.Part.from_bytes(data=resp.content, mime_type=mime_type)

    async def __call__(self, url: str, context_hint: str = "") -> ImageScoreResult:
        try:
            image = await self._fetch_image(url)
            if image is None:
                return FALLBACK_SCORE

            trace = get_trace()
            t0 = time.time()
            response = await self.client.aio.models.generate_content(
                model=self.model,
                contents=[build_prompt(context_hint), image],
                config=self.generation_config,
            )
            if trace:
                trace.record_api_call(
                    service="gemini",
                    endpoint="generateContent",
                    elapsed_ms=(time.time() - t0) * 1000,
                    status_code=200,
                )
            return parse_oracle_response(response.text or "")
        except Exception:
            logger.warning("Image analysis failed, using fallback score", exc_info=True)
            return FALLBACK_SCORE


# =============================================================================
# BOUNDED BATCH
# =============================================================================

@dataclass
class BatchScores:
    """Index-aligned results: entry i belongs to input ref i."""
    scores: List[int] = field(default_factory=list)
    explanations: List[str] = field(default_factory=list)
    precautions: List[str] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.scores)


def redact_key(url: str) -> str:
    return _KEY_PARAM_RE.sub(r"\1REDACTED", url)


async def _settle(call: Awaitable[ImageScoreResult], ref: str) -> ImageScoreResult:
    try:
        return await call
    except Exception:
        logger.warning("Scoring failed for %s, using fallback", redact_key(ref), exc_info=True)
        return FALLBACK_SCORE


async def score_images(
    refs: Sequence[str],
    score: ScoreFn,
    concurrency: int = DEFAULT_CONCURRENCY,
    on_progress: Optional[Callable[[List[int]], None]] = None,
) -> BatchScores:
    """Score every ref in windows of at most ``concurrency`` concurrent calls.

    A call that fails while being awaited degrades its slot to
    FALLBACK_SCORE. A ``score`` that raises as soon as it is called
    propagates out of the batch.

    ``on_progress`` receives the scores of every completed window so far.
    """
    if concurrency < 1:
        raise ValueError(f"concurrency must be >= 1, got {concurrency}")

    results: List[Optional[ImageScoreResult]] = [None] * len(refs)

    for start in range(0, len(refs), concurrency):
        window = refs[start:start + concurrency]
        calls = []
        try:
            for ref in window:
                calls.append(score(ref))
        except Exception:
            for call in calls:
                if inspect.iscoroutine(call):
                    call.close()
            raise

        settled = await asyncio.gather(*(_settle(c, ref) for c, ref in zip(calls, window)))
        for offset, result in enumerate(settled):
            results[start + offset] = result

        if on_progress is not None:
            on_progress([r.risk_score for r in results[:start + len(window)]])

    batch = BatchScores()
    for result in results:
        batch.scores.append(result.risk_score)
        batch.explanations.append(result.explanation)
        batch.precautions.append(result.precaution)
    return batch
