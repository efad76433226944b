"""
Pluggable significance oracles consulted after the statistical admission decision.

An oracle answers True (meaningful), False (spurious) or None (no opinion /
unavailable). Every failure mode maps to None so the statistical decision
stands whenever the oracle cannot answer.
"""

import json
from typing import Dict, Optional, Tuple

import httpx
from loguru import logger

from crossmarket.config import settings
from crossmarket.domain.correlation import CorrelationResult
from crossmarket.utils.errors import OracleError


class SignificanceOracle:
    """Base oracle: never has an opinion."""

    name = "base"

    def judge(self, result: CorrelationResult) -> Optional[bool]:
        raise NotImplementedError


class NullOracle(SignificanceOracle):
    """Oracle used when none is configured."""

    name = "null"

    def judge(self, result: CorrelationResult) -> Optional[bool]:
        return None


class StaticOverrideOracle(SignificanceOracle):
    """Human-curated verdicts keyed by (driver, target)."""

    name = "static"

    def __init__(self, overrides: Dict[Tuple[str, str], bool]):
        self.overrides = {(d.upper(), t.upper()): bool(v) for (d, t), v in overrides.items()}

    def judge(self, result: CorrelationResult) -> Optional[bool]:
        return self.overrides.get((result.driver_symbol.upper(), result.target_symbol.upper()))


SYSTEM_PROMPT = (
    "You are a quantitative analyst reviewing cross-market correlations between "
    "crypto assets and US equities. Judge whether a statistical relationship is "
    "economically meaningful or likely spurious. Respond with JSON only: "
    '{"isSignificant": true|false, "reason": "<one sentence>"}'
)


class LLMSignificanceOracle(SignificanceOracle):
    """
    Chat-completions backed oracle (OpenAI-compatible endpoint).

    Bounded by a single request timeout; timeouts, HTTP errors and malformed
    answers all yield None.
    """

    name = "llm"

    def __init__(
        self,
        url: Optional[str] = None,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
        client: Optional[httpx.Client] = None,
    ):
        self.url = url or settings.oracle_url
        self.api_key = api_key if api_key is not None else settings.oracle_api_key
        self.model = model or settings.oracle_model
        self.timeout = timeout or settings.oracle_timeout_seconds
        self._client = client

    def judge(self, result: CorrelationResult) -> Optional[bool]:
        if not self.api_key:
            logger.debug("Significance oracle has no API key; skipping")
            return None
        try:
            return self._ask(result)
        except (httpx.HTTPError, OracleError) as e:
            logger.warning(
                f"Significance oracle unavailable for {result.driver_symbol}->{result.target_symbol}: {e}"
            )
            return None

    def _ask(self, result: CorrelationResult) -> bool:
        prompt = (
            f"Driver: {result.driver_symbol}\n"
            f"Target: {result.target_symbol}\n"
            f"Pearson coefficient: {result.coefficient:.3f}\n"
            f"Directional accuracy: {result.directional_accuracy:.1f}%\n"
            f"Sample size: {result.sample_size}\n"
            f"Average driver move: {result.avg_driver_move:.2f}%\n"
            f"Average target move: {result.avg_target_move:.2f}%"
        )
        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            "response_format": {"type": "json_object"},
            "temperature": 0,
        }
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

        if self._client is not None:
            response = self._client.post(self.url, headers=headers, json=payload, timeout=self.timeout)
        else:
            with httpx.Client(timeout=self.timeout) as client:
                response = client.post(self.url, headers=headers, json=payload)
        response.raise_for_status()
        return _parse_verdict(response.json())


def _parse_verdict(data) -> bool:
    try:
        content = data["choices"][0]["message"]["content"]
        verdict = json.loads(content).get("isSignificant")
    except (KeyError, IndexError, TypeError, AttributeError, ValueError) as e:
        raise OracleError(f"Malformed oracle response: {e}") from e
    if not isinstance(verdict, bool):
        raise OracleError("Oracle verdict is not a boolean", details={"verdict": repr(verdict)})
    return verdict


def build_oracle() -> SignificanceOracle:
    """Oracle selected by configuration."""
    if settings.oracle_enabled:
        return LLMSignificanceOracle()
    return NullOracle()
