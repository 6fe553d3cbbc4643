# visibility_scan/agents/dispatcher.py
"""
Probe dispatcher.

For each question every registered adapter is called concurrently and the
dispatcher waits for all of them to settle (asyncio.gather, never
short-circuiting) before moving on. Questions run sequentially with a fixed
pacing delay in between. Progress is reported as (completed, total) with
total = questions x adapters; a cancellation check between questions stops
further dispatch without interrupting a question in flight.
"""
from __future__ import annotations
import asyncio
import logging
import time
from enum import Enum
from typing import Awaitable, Callable, Dict, List, Mapping, Optional, Sequence, Union

from visibility_scan.config import cfg
from visibility_scan.models import DomainContext, ProbeQuestion, ProviderAnswer
from visibility_scan.services.providers import ProviderAdapter

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

ProgressCallback = Callable[[int, int], Union[None, Awaitable[None]]]


class QuestionState(str, Enum):
    PENDING = "pending"
    IN_FLIGHT = "in_flight"
    COLLECTED = "collected"


class ProbeDispatcher:
    def __init__(self,
                 registry: Mapping[str, ProviderAdapter],
                 pacing_seconds: Optional[float] = None,
                 on_progress: Optional[ProgressCallback] = None,
                 should_cancel: Optional[Callable[[], bool]] = None):
        self.registry = dict(registry)
        self.pacing_seconds = cfg.PROBE_PACING_SECONDS if pacing_seconds is None else pacing_seconds
        self.on_progress = on_progress
        self.should_cancel = should_cancel
        self.states: Dict[int, QuestionState] = {}

    @property
    def platforms(self) -> List[str]:
        return list(self.registry.keys())

    async def _report(self, completed: int, total: int) -> None:
        if self.on_progress is None:
            return
        try:
            res = self.on_progress(completed, total)
            if asyncio.iscoroutine(res):
                await res
        except Exception as e:
            logger.exception("Progress callback failed: %s", e)

    async def probe_question(self, question: ProbeQuestion, context: DomainContext) -> List[ProviderAnswer]:
        """Fan one question out to every adapter and collect all outcomes."""
        names = list(self.registry.keys())
        settled = await asyncio.gather(
            *[self.registry[name].answer(question, context) for name in names],
            return_exceptions=True,
        )
        answers: List[ProviderAnswer] = []
        for name, outcome in zip(names, settled):
            if isinstance(outcome, BaseException):
                # adapters should never raise; keep the slot as an errored answer anyway
                logger.error("[%s] adapter raised past its boundary: %r", name, outcome)
                outcome = ProviderAnswer(platform=name, question=question, error=f"{type(outcome).__name__}: {outcome}")
            answers.append(outcome)
            status = "error: " + outcome.error if outcome.error else f"{len(outcome.text)} chars"
            logger.info("  [%s] %s (%dms)", name, status, outcome.latency_ms)
        return answers

    async def dispatch(self, questions: Sequence[ProbeQuestion], context: DomainContext) -> List[ProviderAnswer]:
        total = len(questions) * len(self.registry)
        completed = 0
        answers: List[ProviderAnswer] = []
        self.states = {i: QuestionState.PENDING for i in range(len(questions))}

        if not self.registry:
            logger.warning("No adapters registered; nothing to dispatch")
            return answers

        started = time.monotonic()
        logger.info("Dispatching %d questions to %d platforms (%s)", len(questions), len(self.registry),
                    ", ".join(self.registry))
        for i, question in enumerate(questions):
            if self.should_cancel is not None and self.should_cancel():
                logger.info("Cancellation requested; stopping after %d/%d questions", i, len(questions))
                break

            self.states[i] = QuestionState.IN_FLIGHT
            logger.info("[%d/%d] %s", i + 1, len(questions), question.text[:80])
            answers.extend(await self.probe_question(question, context))
            self.states[i] = QuestionState.COLLECTED

            completed += len(self.registry)
            await self._report(completed, total)

            if i < len(questions) - 1 and self.pacing_seconds > 0:
                await asyncio.sleep(self.pacing_seconds)

        logger.info("Dispatch finished: %d answers in %.1fs", len(answers), time.monotonic() - started)
        return answers
