"""Run inspection endpoints.

GET /status/{run_id}    – JSON snapshot of current run state
GET /results/{run_id}   – final results for a finished run
GET /runs               – list all runs
"""

from __future__ import annotations

from fastapi import APIRouter, HTTPException

from app.store import all_runs, get_run

router = APIRouter()


@router.get("/status/{run_id}")
async def get_status(run_id: str):
    state = get_run(run_id)
    if state is None:
        raise HTTPException(status_code=404, detail=f"Run {run_id} not found")
    return state.to_dict()


@router.get("/results/{run_id}")
async def get_results(run_id: str):
    """Return the final results of a run.

    409 while the run is still going, 404 when it finished without results.
    """
    state = get_run(run_id)
    if state is None:
        raise HTTPException(status_code=404, detail=f"Run {run_id} not found")

    if state.status not in ("completed", "failed"):
        raise HTTPException(
            status_code=409,
            detail=f"Run {run_id} is still {state.status}. Poll /status/{run_id} until complete.",
        )

    if state.final_results is None:
        raise HTTPException(
            status_code=404,
            detail=f"Run {run_id} finished as '{state.status}' but produced no results.",
        )
    return state.final_results


@router.get("/runs")
async def list_runs():
    """Return all workflow runs stored in memory."""
    return {"runs": all_runs()}
