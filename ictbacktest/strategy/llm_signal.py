"""Claude-backed signal adapter.

Asks the Anthropic Messages API for an ICT read of the market in two
steps: a free-form analysis, then a JSON extraction of the trade levels
from that analysis.
"""

import asyncio
import json
import logging
import re
from typing import Optional

import httpx

from ictbacktest.config import Config
from ictbacktest.errors import EvaluationError
from ictbacktest.strategy.models import (
    Confidence,
    FeatureSet,
    MarketContext,
    Quality,
    Side,
    Signal,
)

logger = logging.getLogger("ictbacktest")

ANTHROPIC_MESSAGES_URL = "https://api.anthropic.com/v1/messages"
ANTHROPIC_VERSION = "2023-06-01"

_JSON_BLOCK = re.compile(r"\{[\s\S]*\}")
_SIDE_BY_SIGNAL = {"BUY": Side.LONG, "SELL": Side.SHORT}


# ── Prompts ──────────────────────────────────────────────────────────────


def build_analysis_prompt(context: MarketContext, features: FeatureSet) -> str:
    patterns = json.dumps(features.to_dict(), indent=2)
    return (
        "You are an expert ICT (Inner Circle Trader) trader. Analyze the "
        "following market data and provide a trading recommendation.\n\n"
        "**Market Data:**\n"
        f"- Symbol: {context.symbol}\n"
        f"- Timeframe: {context.timeframe}\n"
        f"- Time: {context.timestamp.isoformat()}\n"
        f"- Current Price: {context.current_price}\n"
        f"- Daily Bias: {context.bias.value}\n"
        f"- Killzone: {context.session.value}\n\n"
        f"**ICT Analysis Results:**\n{patterns}\n\n"
        "**Analysis Required:**\n"
        "1. Is there a valid setup based on ICT concepts?\n"
        "2. What is the overall bias (bullish/bearish)?\n"
        "3. What are the key entry, stop loss and take profit levels?\n"
        "4. What is the confluence of ICT concepts?\n"
        "5. What is your confidence level (HIGH/MEDIUM/LOW)?\n\n"
        "Provide an actionable analysis with specific price levels."
    )


def build_extraction_prompt(analysis: str) -> str:
    return (
        "Based on this market analysis, extract a JSON object with the "
        "following structure. Return ONLY valid JSON:\n\n"
        '{"signal": "BUY" or "SELL", "entryPrice": number, '
        '"stopLoss": number, "takeProfit": number, '
        '"confidence": "HIGH" or "MEDIUM" or "LOW", '
        '"reason": "brief reason for the signal"}\n\n'
        "If no clear signal is present, return:\n"
        '{"signal": null, "reason": "reason why no signal"}\n\n'
        f"Analysis:\n{analysis}"
    )


# ── Parsing ──────────────────────────────────────────────────────────────


def _as_price(value) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def parse_signal_json(text: str) -> Optional[Signal]:
    """Parse the extraction reply into a ``Signal``.

    Reads the outermost ``{...}`` block.  ``"signal": null`` (or any
    value other than BUY/SELL) means no trade.  Missing or non-numeric
    prices become ``0.0`` so the engine falls back to default levels.
    The returned grade is a placeholder; the engine regrades from
    confluence.

    Raises:
        EvaluationError: If no JSON object can be found or decoded.
    """
    match = _JSON_BLOCK.search(text)
    if match is None:
        raise EvaluationError("No JSON object found in model response")
    try:
        payload = json.loads(match.group(0))
    except json.JSONDecodeError as exc:
        raise EvaluationError(f"Model returned invalid JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise EvaluationError("Model JSON is not an object")

    side = _SIDE_BY_SIGNAL.get(str(payload.get("signal") or "").upper())
    if side is None:
        return None

    try:
        confidence = Confidence(str(payload.get("confidence", "MEDIUM")).upper())
    except ValueError:
        confidence = Confidence.MEDIUM

    return Signal(
        side=side,
        entry_price=_as_price(payload.get("entryPrice")),
        stop_loss=_as_price(payload.get("stopLoss")),
        take_profit=_as_price(payload.get("takeProfit")),
        confidence=confidence,
        quality=Quality.C,
        confluence=0,
        reason=str(payload.get("reason") or ""),
    )


# ── Adapter ──────────────────────────────────────────────────────────────


class ClaudeSignalAdapter:
    """Signal adapter that calls Claude over HTTP.

    Args:
        api_key: Anthropic API key.
        model: Model name sent with every request.
        base_url: Messages endpoint.
        timeout_s: Per-request HTTP timeout.
    """

    def __init__(
        self,
        api_key: str,
        model: str,
        base_url: str = ANTHROPIC_MESSAGES_URL,
        timeout_s: float = 30.0,
    ) -> None:
        if not api_key.strip():
            raise ValueError("ANTHROPIC_API_KEY is not configured")
        self._api_key = api_key.strip()
        self._model = model
        self._base_url = base_url
        self._timeout_s = timeout_s

    @classmethod
    def from_config(cls, config: Config) -> "ClaudeSignalAdapter":
        return cls(
            api_key=config.anthropic_api_key,
            model=config.anthropic_model,
            timeout_s=config.signal_timeout_seconds,
        )

    @property
    def model(self) -> str:
        return self._model

    async def _complete(self, prompt: str, max_tokens: int) -> str:
        """Send one user message and return the first text block.

        Retries once on timeout; every other failure raises
        ``EvaluationError``.
        """
        headers = {
            "x-api-key": self._api_key,
            "anthropic-version": ANTHROPIC_VERSION,
            "content-type": "application/json",
        }
        payload = {
            "model": self._model,
            "max_tokens": max_tokens,
            "messages": [{"role": "user", "content": prompt}],
        }

        for attempt in range(2):
            try:
                async with httpx.AsyncClient() as client:
                    resp = await client.post(
                        self._base_url,
                        headers=headers,
                        json=payload,
                        timeout=self._timeout_s,
                    )
                resp.raise_for_status()
                body = resp.json()
            except httpx.TimeoutException as exc:
                if attempt == 0:
                    logger.warning("Claude request timed out, retrying once")
                    await asyncio.sleep(0.1)
                    continue
                raise EvaluationError("Claude request timed out after retry") from exc
            except httpx.HTTPStatusError as exc:
                raise EvaluationError(
                    f"Claude request failed with status {exc.response.status_code}"
                ) from exc
            except (httpx.HTTPError, ValueError) as exc:
                raise EvaluationError(f"Claude request failed: {exc}") from exc

            for block in body.get("content") or []:
                if block.get("type") == "text" and block.get("text", "").strip():
                    return block["text"]
            raise EvaluationError("Claude returned no text content")

        raise EvaluationError("Claude request failed unexpectedly")

    async def evaluate(
        self, context: MarketContext, features: FeatureSet,
    ) -> Optional[Signal]:
        analysis = await self._complete(build_analysis_prompt(context, features), 2000)
        reply = await self._complete(build_extraction_prompt(analysis), 500)
        signal = parse_signal_json(reply)
        logger.debug(
            "Claude %s %s at %s: %s",
            context.symbol, context.timeframe, context.timestamp.isoformat(),
            signal.side.value if signal else "no signal",
        )
        return signal
