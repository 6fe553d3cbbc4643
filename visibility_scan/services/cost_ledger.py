# visibility_scan/services/cost_ledger.py
"""
Cost ledger for external model calls.

Every provider adapter / LLM helper call appends one CostEntry keyed by
(run_id, step, model). Estimated spend comes from a static price table in USD
per 1K tokens. Recording is best-effort: a failed sink write is logged and
swallowed, never surfaced to the caller that produced the usage.

APIs:
- estimate_cost(model, input_tokens, output_tokens) -> float
- CostLedger(sink=None).record(run_id, step, model, input_tokens, output_tokens)
- CostLedger.summary(run_id) -> dict with totals and per-step breakdown
- RedisCostSink: pushes JSON rows to a Redis list per run
"""
from __future__ import annotations
import asyncio
import json
import logging
from typing import Any, Dict, List, Optional, Protocol, Tuple

from redis import RedisError

from visibility_scan.config import cfg
from visibility_scan.models import CostEntry
from visibility_scan.services.rate_limiter import get_redis

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

# (input, output) USD per 1K tokens
MODEL_PRICING: Dict[str, Tuple[float, float]] = {
    # OpenAI
    "gpt-4o": (0.0025, 0.01),
    "gpt-4o-mini": (0.00015, 0.0006),
    "gpt-4-turbo": (0.01, 0.03),
    "o4-mini": (0.0011, 0.0044),
    "o4-mini-search": (0.0011, 0.0044),
    # Anthropic
    "claude-sonnet-4-20250514": (0.003, 0.015),
    "claude-3-5-sonnet-20241022": (0.003, 0.015),
    "claude-3-haiku-20240307": (0.00025, 0.00125),
    # Google
    "gemini-2.0-flash": (0.0001, 0.0004),
    "gemini-2.5-flash": (0.00015, 0.0006),
    "gemini-2.5-flash-grounded": (0.00015, 0.0006),
    "gemini-1.5-pro": (0.00125, 0.005),
    # Perplexity
    "sonar-pro": (0.003, 0.015),
    "sonar": (0.001, 0.001),
}

REDIS_KEY_PREFIX = "costs:run:"
REDIS_TTL_SECONDS = 60 * 60 * 24 * 30


def _pricing_key(model: str) -> str:
    # "openai/gpt-4o" and "gpt-4o" share a price row
    return model.split("/", 1)[1] if "/" in model else model


def estimate_cost(model: str, input_tokens: int, output_tokens: int,
                  pricing: Optional[Dict[str, Tuple[float, float]]] = None) -> float:
    """
    USD estimate for one call. Unknown models log a warning and cost 0.0.
    """
    table = pricing if pricing is not None else MODEL_PRICING
    price = table.get(_pricing_key(model or ""))
    if price is None:
        logger.warning("No pricing found for model %s; recording zero cost", model)
        return 0.0
    price_in, price_out = price
    return (max(input_tokens, 0) / 1000.0) * price_in + (max(output_tokens, 0) / 1000.0) * price_out


class CostSink(Protocol):
    async def write(self, entry: CostEntry) -> None: ...


class RedisCostSink:
    """Append-only Redis list per run (RPUSH is atomic across writers)."""

    def __init__(self, client=None, key_prefix: str = REDIS_KEY_PREFIX):
        self._client = client
        self.key_prefix = key_prefix

    def _write_sync(self, entry: CostEntry) -> None:
        r = self._client or get_redis()
        if r is None:
            raise RuntimeError("Redis unavailable for cost sink")
        key = f"{self.key_prefix}{entry.run_id}"
        r.rpush(key, json.dumps(entry.model_dump()))
        r.expire(key, REDIS_TTL_SECONDS)

    async def write(self, entry: CostEntry) -> None:
        await asyncio.to_thread(self._write_sync, entry)


def default_cost_sink() -> Optional[CostSink]:
    """Sink selected by cfg.COST_SINK; None keeps entries in memory only."""
    if cfg.COST_SINK == "redis":
        return RedisCostSink()
    if cfg.COST_SINK:
        logger.warning("Unknown COST_SINK %r; cost entries will not be persisted", cfg.COST_SINK)
    return None


class CostLedger:
    """
    In-memory append-only ledger with an optional persistence sink.
    Concurrent adapters for one question may record at the same time, so
    appends go through an asyncio.Lock.
    """

    def __init__(self, sink: Optional[CostSink] = None,
                 pricing: Optional[Dict[str, Tuple[float, float]]] = None):
        self.sink = sink
        self.pricing = pricing if pricing is not None else MODEL_PRICING
        self._entries: List[CostEntry] = []
        self._lock = asyncio.Lock()

    async def record(self, run_id: str, step: str, model: str,
                     input_tokens: int = 0, output_tokens: int = 0) -> Optional[CostEntry]:
        """
        Append one entry. Never raises; returns None when the entry could not be built.
        """
        try:
            entry = CostEntry(
                run_id=run_id,
                step=step,
                model=model,
                input_tokens=int(input_tokens or 0),
                output_tokens=int(output_tokens or 0),
                estimated_cost_usd=estimate_cost(model, input_tokens or 0, output_tokens or 0, self.pricing),
            )
            async with self._lock:
                self._entries.append(entry)
        except Exception as e:
            logger.exception("Failed to record cost for step %s: %s", step, e)
            return None

        if self.sink is not None:
            try:
                await self.sink.write(entry)
            except (RedisError, RuntimeError, OSError) as e:
                logger.warning("Cost sink write failed for run %s step %s: %s", run_id, step, e)
            except Exception as e:
                logger.exception("Unexpected cost sink failure: %s", e)
        logger.debug("Cost recorded run=%s step=%s model=%s cost=%.6f", run_id, step, model, entry.estimated_cost_usd)
        return entry

    def entries(self, run_id: Optional[str] = None) -> List[CostEntry]:
        if run_id is None:
            return list(self._entries)
        return [e for e in self._entries if e.run_id == run_id]

    def summary(self, run_id: str) -> Dict[str, Any]:
        rows = self.entries(run_id)
        by_step: Dict[str, Dict[str, Any]] = {}
        for e in rows:
            s = by_step.setdefault(e.step, {"cost_usd": 0.0, "input_tokens": 0, "output_tokens": 0, "count": 0})
            s["cost_usd"] += e.estimated_cost_usd
            s["input_tokens"] += e.input_tokens
            s["output_tokens"] += e.output_tokens
            s["count"] += 1
        return {
            "run_id": run_id,
            "total_cost_usd": sum(e.estimated_cost_usd for e in rows),
            "total_input_tokens": sum(e.input_tokens for e in rows),
            "total_output_tokens": sum(e.output_tokens for e in rows),
            "calls": len(rows),
            "by_step": by_step,
        }
