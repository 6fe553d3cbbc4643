from fastapi import FastAPI
from pydantic import BaseModel, Field
from typing import List, Optional

from visibility_scan.models import BusinessProfile, JobFamily
from visibility_scan.pipeline_graph import new_run_id, run_scan
from visibility_scan.services.cost_ledger import CostLedger, default_cost_sink

api = FastAPI(title="visibility-scan")


class ScanRequest(BaseModel):
    domain: str
    profile: BusinessProfile
    top_competitor: Optional[str] = None
    job_families: List[JobFamily] = Field(default_factory=list)
    mode: str = "visibility"
    run_id: Optional[str] = None
    use_ai_competitors: bool = False


@api.get("/health")
def health():
    return {"status": "ok"}


@api.post("/scan")
async def scan(req: ScanRequest):
    """
    Run a visibility scan through the full pipeline.
    Returns the report, per-answer audit data and cost summary.
    """
    run_id = req.run_id or new_run_id()
    ledger = CostLedger(sink=default_cost_sink())

    try:
        result = await run_scan(
            req.profile,
            req.domain,
            run_id=run_id,
            top_competitor=req.top_competitor,
            job_families=req.job_families,
            mode=req.mode,
            ledger=ledger,
            use_ai_competitors=req.use_ai_competitors,
        )
        return {
            "run_id": run_id,
            "status": "DONE",
            "report": result.report.model_dump(mode="json"),
            "questions": [q.model_dump(mode="json") for q in result.questions],
            "answers": [a.model_dump(mode="json") for a in result.answers],
            "mentions": [m.model_dump(mode="json") for m in result.mentions],
            "costs": ledger.summary(run_id),
            "warnings": result.warnings,
            "duration": result.duration,
        }
    except Exception as e:
        return {
            "run_id": run_id,
            "status": "FAILED",
            "error": str(e)
        }
