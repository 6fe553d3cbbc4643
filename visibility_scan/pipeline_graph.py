"""
LangGraph pipeline for a visibility scan run.

Wires together the scan stages:
- generate   (probe questions: visibility / brand_awareness / employer)
- dispatch   (concurrent provider fan-out per question)
- analyze    (mention / competitor analysis per answer)
- aggregate  (VisibilityReport)

Adapters, the cost ledger and the competitor extraction strategy are injected
when the graph is built, so tests and callers can swap any of them.

Run via:
    from visibility_scan.pipeline_graph import run_scan
    result = await run_scan(profile, "example.com.au", run_id="run-123")
"""

from __future__ import annotations
import asyncio
import logging
import re
import time
import uuid
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, TypedDict, Union

from langgraph.graph import StateGraph, END

from visibility_scan.agents.dispatcher import ProbeDispatcher, ProgressCallback
from visibility_scan.agents.employer_research import research_employer_questions
from visibility_scan.agents.mention_analyzer import LLMCompetitorExtractor, RegexCompetitorExtractor, analyze_answer
from visibility_scan.agents.question_generator import (
    brand_awareness_questions,
    fallback_questions,
    generate_probe_questions,
)
from visibility_scan.agents.score import build_visibility_report
from visibility_scan.models import (
    BusinessProfile,
    DomainContext,
    JobFamily,
    MentionResult,
    ProbeQuestion,
    ProviderAnswer,
    ScanResult,
    VisibilityReport,
)
from visibility_scan.services.cost_ledger import CostLedger, default_cost_sink
from visibility_scan.services.llm_client import PLATFORM_PROVIDERS
from visibility_scan.services.providers import ProviderAdapter, build_default_registry

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

SCAN_MODES = ("visibility", "brand_awareness", "employer")
RUN_ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.:\-]{0,127}$")


class ScanState(TypedDict, total=False):
    run_id: str
    domain: str
    profile: BusinessProfile
    top_competitor: Optional[str]
    job_families: List[JobFamily]
    mode: str
    questions: List[ProbeQuestion]
    employer_competitors: List[str]
    answers: List[ProviderAnswer]
    mentions: List[MentionResult]
    report: VisibilityReport
    warnings: List[str]
    start_time: float
    duration: float


def validate_run_id(run_id: Any) -> str:
    if not isinstance(run_id, str) or not RUN_ID_RE.match(run_id):
        raise ValueError(f"Malformed run identifier: {run_id!r}")
    return run_id


def new_run_id() -> str:
    return f"run-{uuid.uuid4().hex[:12]}"


def build_scan_graph(registry: Mapping[str, ProviderAdapter],
                     *,
                     ledger: Optional[CostLedger] = None,
                     extractor=None,
                     llm: Optional[Callable] = None,
                     pacing_seconds: Optional[float] = None,
                     on_progress: Optional[ProgressCallback] = None,
                     should_cancel: Optional[Callable[[], bool]] = None):
    extractor = extractor or RegexCompetitorExtractor()
    use_regex = isinstance(extractor, RegexCompetitorExtractor)
    # employer research only asks platforms that are registered for this run
    research_platforms = [p for p in registry if p in PLATFORM_PROVIDERS]

    async def node_generate(state: ScanState) -> ScanState:
        mode = state.get("mode", "visibility")
        profile = state["profile"]
        logger.info("[generate] mode=%s domain=%s", mode, state["domain"])
        try:
            if mode == "brand_awareness":
                questions = brand_awareness_questions(profile, state["domain"], state.get("top_competitor"))
            elif mode == "employer":
                research = await research_employer_questions(
                    profile, state["domain"], platforms=research_platforms,
                    job_families=state.get("job_families") or [],
                    llm=llm, ledger=ledger, run_id=state["run_id"],
                )
                questions = research.questions
                state["employer_competitors"] = research.competitors
            else:
                questions = await generate_probe_questions(
                    profile, state["domain"], state.get("top_competitor"),
                    llm=llm, ledger=ledger, run_id=state["run_id"],
                )
        except Exception as e:
            logger.exception("Question generation failed: %s", e)
            state.setdefault("warnings", []).append(f"generate_failed:{str(e)}")
            questions = fallback_questions(profile, state.get("top_competitor"))
        state["questions"] = questions
        return state

    async def node_dispatch(state: ScanState) -> ScanState:
        logger.info("[dispatch] questions=%d platforms=%d", len(state.get("questions", [])), len(registry))
        context = DomainContext(
            run_id=state["run_id"],
            domain=state["domain"],
            location=state["profile"].location,
            web_search=state.get("mode") != "brand_awareness",
        )
        dispatcher = ProbeDispatcher(registry, pacing_seconds=pacing_seconds,
                                     on_progress=on_progress, should_cancel=should_cancel)
        try:
            answers = await dispatcher.dispatch(state.get("questions", []), context)
        except Exception as e:
            logger.exception("Dispatch failed: %s", e)
            state.setdefault("warnings", []).append(f"dispatch_failed:{str(e)}")
            answers = []
        state["answers"] = answers
        return state

    async def node_analyze(state: ScanState) -> ScanState:
        answers = state.get("answers", [])
        logger.info("[analyze] answers=%d", len(answers))
        mentions: List[MentionResult] = []
        for answer in answers:
            if not answer.ok:
                continue
            try:
                competitors = None if use_regex else await extractor.extract(answer.text, state["domain"])
                result = analyze_answer(answer, state["domain"], competitors)
            except Exception as e:
                logger.exception("Analysis failed for %s answer: %s", answer.platform, e)
                state.setdefault("warnings", []).append(f"analyze_failed:{answer.platform}:{str(e)}")
                continue
            if result is not None:
                mentions.append(result)
        state["mentions"] = mentions
        return state

    async def node_aggregate(state: ScanState) -> ScanState:
        answers = state.get("answers", [])
        failed = sum(1 for a in answers if not a.ok)
        state["report"] = build_visibility_report(state.get("mentions", []), platforms=list(registry),
                                                  failed_probes=failed, questions=state.get("questions", []),
                                                  failed_answers=[a for a in answers if not a.ok])
        if answers and failed == len(answers):
            state.setdefault("warnings", []).append("all_providers_failed")
        return state

    graph = StateGraph(ScanState)
    graph.add_node("generate", node_generate)
    graph.add_node("dispatch", node_dispatch)
    graph.add_node("analyze", node_analyze)
    graph.add_node("aggregate", node_aggregate)

    graph.set_entry_point("generate")
    graph.add_edge("generate", "dispatch")
    graph.add_edge("dispatch", "analyze")
    graph.add_edge("analyze", "aggregate")
    graph.add_edge("aggregate", END)
    return graph.compile()


async def run_scan(profile: Union[BusinessProfile, Dict[str, Any]],
                   domain: str,
                   *,
                   run_id: Optional[str] = None,
                   top_competitor: Optional[str] = None,
                   job_families: Optional[Sequence[Union[JobFamily, str]]] = None,
                   mode: str = "visibility",
                   registry: Optional[Mapping[str, ProviderAdapter]] = None,
                   ledger: Optional[CostLedger] = None,
                   extractor=None,
                   use_ai_competitors: bool = False,
                   llm: Optional[Callable] = None,
                   pacing_seconds: Optional[float] = None,
                   on_progress: Optional[ProgressCallback] = None,
                   should_cancel: Optional[Callable[[], bool]] = None) -> ScanResult:
    """
    Run one scan end to end. Raises ValueError only for invalid input
    (malformed run id, empty domain, unknown mode, invalid profile); provider
    trouble degrades into errored answers and zeroed scores.
    """
    run_id = validate_run_id(run_id if run_id is not None else new_run_id())
    if not domain or not domain.strip():
        raise ValueError("domain must be a non-empty string")
    if mode not in SCAN_MODES:
        raise ValueError(f"Unknown scan mode {mode!r}; expected one of {SCAN_MODES}")
    if not isinstance(profile, BusinessProfile):
        profile = BusinessProfile(**profile)
    families = [JobFamily(f) for f in (job_families or [])]

    ledger = ledger if ledger is not None else CostLedger(sink=default_cost_sink())
    registry = registry if registry is not None else build_default_registry(ledger)
    if extractor is None and use_ai_competitors:
        extractor = LLMCompetitorExtractor(llm=llm, ledger=ledger, run_id=run_id)

    pipeline = build_scan_graph(registry, ledger=ledger, extractor=extractor, llm=llm,
                                pacing_seconds=pacing_seconds, on_progress=on_progress,
                                should_cancel=should_cancel)
    init_state: ScanState = {
        "run_id": run_id,
        "domain": domain.strip(),
        "profile": profile,
        "top_competitor": top_competitor,
        "job_families": families,
        "mode": mode,
        "warnings": [],
        "start_time": time.time(),
    }
    logger.info("Scan %s started for %s (%s)", run_id, domain, mode)
    final_state = await pipeline.ainvoke(init_state)
    duration = time.time() - init_state["start_time"]
    logger.info("Scan %s finished in %.1fs", run_id, duration)

    return ScanResult(
        run_id=run_id,
        domain=final_state["domain"],
        profile=profile,
        questions=final_state.get("questions", []),
        answers=final_state.get("answers", []),
        mentions=final_state.get("mentions", []),
        report=final_state.get("report") or VisibilityReport(),
        cost_entries=ledger.entries(run_id),
        warnings=final_state.get("warnings", []),
        duration=duration,
    )


def run_scan_sync(profile: Union[BusinessProfile, Dict[str, Any]], domain: str, **kwargs) -> ScanResult:
    return asyncio.run(run_scan(profile, domain, **kwargs))


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Run a visibility scan")
    parser.add_argument("domain")
    parser.add_argument("--name", default=None)
    parser.add_argument("--type", dest="business_type", default="business")
    parser.add_argument("--service", action="append", default=[])
    parser.add_argument("--location", default=None)
    parser.add_argument("--competitor", default=None)
    parser.add_argument("--mode", choices=SCAN_MODES, default="visibility")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO)
    prof = BusinessProfile(business_name=args.name, business_type=args.business_type,
                           services=args.service, location=args.location)
    out = run_scan_sync(prof, args.domain, top_competitor=args.competitor, mode=args.mode)
    print(out.report.model_dump_json(indent=2))
