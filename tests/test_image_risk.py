"""Unit tests for image_risk.py - oracle parsing, Gemini scorer, batch scoring.

Tests cover: tolerant response parsing, score clamping, half-up averaging,
windowed concurrency, index-aligned results, per-item degradation,
synchronous-raise propagation, and progress callbacks.
"""

import asyncio
import logging
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from conftest import mock_http
from image_risk import (
    GeminiImageScorer,
    average_risk_score,
    build_prompt,
    parse_oracle_response,
    redact_key,
    score_images,
)
from models import FALLBACK_SCORE, ImageScoreResult


# =========================================================================
# parse_oracle_response
# =========================================================================

class TestParseOracleResponse:
    def test_well_formed(self):
        result = parse_oracle_response(
            "Risk Score: 35\n"
            "Explanation: Narrow two-lane road with parked vehicles.\n"
            "Precaution: Keep speed low near parked cars.\n"
        )
        assert result == ImageScoreResult(
            35, "Narrow two-lane road with parked vehicles.", "Keep speed low near parked cars."
        )

    def test_case_insensitive(self):
        result = parse_oracle_response("risk score: 20\nEXPLANATION: Clear road.\nprecaution: None.")
        assert result.risk_score == 20
        assert result.explanation == "Clear road."
        assert result.precaution == "None."

    def test_missing_everything_defaults(self):
        result = parse_oracle_response("I cannot assess this image.")
        assert result == ImageScoreResult(50, "No explanation provided.", "Drive with caution.")

    def test_empty_text(self):
        assert parse_oracle_response("").risk_score == 50

    def test_score_clamped(self):
        assert parse_oracle_response("Risk Score: 250").risk_score == 100

    def test_negative_score_clamped_to_zero(self):
        assert parse_oracle_response("Risk Score: -5\nExplanation: x\nPrecaution: y").risk_score == 0

    def test_surrounding_chatter(self):
        text = "Here is my analysis:\n\nRisk Score: 42\nExplanation: Blind curve ahead.\nPrecaution: Slow down."
        assert parse_oracle_response(text).risk_score == 42


class TestAverageRiskScore:
    @pytest.mark.parametrize("scores,expected", [
        ([], 0),
        ([10, 20], 15),
        ([10, 11], 11),      # 10.5 rounds up
        ([1, 2, 2], 2),      # 1.67
        ([30, 30, 31], 30),  # 30.33
        ([100], 100),
    ])
    def test_values(self, scores, expected):
        assert average_risk_score(scores) == expected


class TestBuildPrompt:
    def test_context_included(self):
        prompt = build_prompt("Current weather conditions: Rainy")
        assert "Additional context: Current weather conditions: Rainy" in prompt
        assert "Risk Score: [number 0-100]" in prompt

    def test_no_context_line_without_hint(self):
        assert "Additional context" not in build_prompt("")


# =========================================================================
# score_images
# =========================================================================

def _result(score):
    return ImageScoreResult(score, f"explanation {score}", f"precaution {score}")


class TestScoreImages:
    def test_results_index_aligned_despite_completion_order(self):
        delays = {"a": 0.03, "b": 0.0, "c": 0.01, "d": 0.0}
        scores = {"a": 10, "b": 20, "c": 30, "d": 40}

        async def score(ref):
            await asyncio.sleep(delays[ref])
            return _result(scores[ref])

        batch = asyncio.run(score_images(["a", "b", "c", "d"], score, concurrency=3))
        assert batch.scores == [10, 20, 30, 40]
        assert batch.explanations[2] == "explanation 30"
        assert batch.precautions[3] == "precaution 40"

    def test_window_bound_respected(self):
        in_flight = 0
        peak = 0
        started = []

        async def score(ref):
            nonlocal in_flight, peak
            started.append(ref)
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.01)
            in_flight -= 1
            return _result(1)

        refs = [str(i) for i in range(7)]
        asyncio.run(score_images(refs, score, concurrency=3))
        assert peak <= 3
        assert started == refs

    def test_next_window_waits_for_slowest(self):
        events = []

        async def score(ref):
            await asyncio.sleep(0.05 if ref == "slow" else 0)
            events.append(ref)
            return _result(1)

        asyncio.run(score_images(["slow", "fast", "next"], score, concurrency=2))
        assert events.index("next") > events.index("slow")

    def test_failure_degrades_one_item(self, caplog):
        async def score(ref):
            if ref == "bad":
                raise RuntimeError("oracle unavailable")
            return _result(10)

        with caplog.at_level(logging.WARNING, logger="image_risk"):
            batch = asyncio.run(score_images(["ok", "bad", "ok2"], score))
        assert batch.scores == [10, 50, 10]
        assert batch.explanations[1] == FALLBACK_SCORE.explanation
        assert batch.precautions[1] == FALLBACK_SCORE.precaution
        assert "oracle unavailable" in caplog.text

    def test_failure_log_hides_api_key(self, caplog):
        async def score(ref):
            raise RuntimeError("oracle unavailable")

        ref = "https://maps.googleapis.com/maps/api/streetview?location=1,2&key=SERVER-SECRET"
        with caplog.at_level(logging.WARNING, logger="image_risk"):
            asyncio.run(score_images([ref], score))
        assert "SERVER-SECRET" not in caplog.text
        assert "key=REDACTED" in caplog.text

    def test_synchronous_raise_propagates(self):
        def score(ref):
            raise ValueError("not callable for " + ref)

        with pytest.raises(ValueError):
            asyncio.run(score_images(["a", "b"], score))

    def test_synchronous_raise_mid_window_propagates(self):
        calls = []

        def score(ref):
            calls.append(ref)
            if ref == "b":
                raise ValueError("bad ref")

            async def run():
                return _result(1)
            return run()

        with pytest.raises(ValueError):
            asyncio.run(score_images(["a", "b", "c"], score, concurrency=3))
        assert calls == ["a", "b"]

    def test_empty_refs(self):
        score = AsyncMock()
        batch = asyncio.run(score_images([], score))
        assert len(batch) == 0
        score.assert_not_called()

    def test_progress_after_each_window(self):
        progress = []

        async def score(ref):
            return _result(int(ref))

        asyncio.run(score_images(
            ["1", "2", "3", "4", "5"], score, concurrency=2, on_progress=progress.append,
        ))
        assert progress == [[1, 2], [1, 2, 3, 4], [1, 2, 3, 4, 5]]

    def test_invalid_concurrency(self):
        with pytest.raises(ValueError):
            asyncio.run(score_images(["a"], AsyncMock(), concurrency=0))


# =========================================================================
# GeminiImageScorer
# =========================================================================

def _genai_client(text="Risk Score: 30\nExplanation: Wide road.\nPrecaution: Stay in lane."):
    client = MagicMock()
    response = MagicMock()
    response.text = text
    client.aio.models.generate_content = AsyncMock(return_value=response)
    return client


def _image_handler(status=200):
    def handler(request):
        return httpx.Response(status, content=b"\xff\xd8jpeg", headers={"content-type": "image/jpeg"})
    return handler


class TestGeminiImageScorer:
    def test_scores_image(self):
        genai_client = _genai_client()

        async def run():
            async with mock_http(_image_handler()) as http:
                scorer = GeminiImageScorer(genai_client, http, model="gemini-test")
                return await scorer("https://img/1", context_hint="Current weather conditions: Clear")

        result = asyncio.run(run())
        assert result == ImageScoreResult(30, "Wide road.", "Stay in lane.")

        kwargs = genai_client.aio.models.generate_content.call_args.kwargs
        assert kwargs["model"] == "gemini-test"
        assert "Current weather conditions: Clear" in kwargs["contents"][0]
        assert kwargs["config"].temperature == 0
        assert kwargs["config"].top_k == 64
        assert kwargs["config"].max_output_tokens == 1024

    def test_image_fetch_failure_falls_back(self):
        genai_client = _genai_client()

        async def run():
            async with mock_http(_image_handler(status=403)) as http:
                return await GeminiImageScorer(genai_client, http)("https://img/1")

        assert asyncio.run(run()) == FALLBACK_SCORE
        genai_client.aio.models.generate_content.assert_not_called()

    def test_oracle_error_falls_back(self):
        genai_client = _genai_client()
        genai_client.aio.models.generate_content.side_effect = RuntimeError("quota")

        async def run():
            async with mock_http(_image_handler()) as http:
                return await GeminiImageScorer(genai_client, http)("https://img/1")

        assert asyncio.run(run()) == FALLBACK_SCORE

    def test_transport_error_falls_back(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        async def run():
            async with mock_http(handler) as http:
                return await GeminiImageScorer(_genai_client(), http)("https://img/1")

        assert asyncio.run(run()) == FALLBACK_SCORE


class TestRedactKey:
    def test_redacts_key_param(self):
        assert redact_key("https://x/sv?key=abc&pitch=0") == "https://x/sv?key=REDACTED&pitch=0"

    def test_url_without_key_unchanged(self):
        assert redact_key("https://x/sv?pitch=0") == "https://x/sv?pitch=0"
