"""Read-only AQ run endpoints."""

from __future__ import annotations

from fastapi import APIRouter, HTTPException

from aqbot.api.deps import RepoDep
from aqbot.models.aq import SECTION_KEYS, AQRun

router = APIRouter(prefix="/api/aq", tags=["aq"])


def _run_summary(run: AQRun) -> dict:
    participants = run.participants()
    return {
        "channel_id": run.channel_id,
        "alliance_id": run.alliance_id,
        "day": run.day,
        "lifecycle_state": run.lifecycle_state.value,
        "map_status_label": run.map_status_label,
        "started_at": run.started_at.isoformat(),
        "scheduled_end_at": run.scheduled_end_at.isoformat(),
        "participant_count": len(participants),
        "sections_done": {
            key: sum(1 for uid in participants if run.is_done(key, uid)) for key in SECTION_KEYS
        },
    }


@router.get("/runs")
async def list_runs(repo: RepoDep, alliance_id: str | None = None) -> dict:
    """List every tracked run, optionally for one alliance."""
    runs = await repo.list_aq_runs(alliance_id)
    return {"data": [_run_summary(run) for run in runs]}


@router.get("/runs/{channel_id}")
async def get_run(channel_id: str, repo: RepoDep) -> dict:
    """Full state of the run tracked in a channel."""
    run = await repo.get_aq_run(channel_id)
    if run is None:
        raise HTTPException(404, "No AQ run in that channel")
    return {"data": run.model_dump(mode="json")}
