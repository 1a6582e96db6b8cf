from typing import Any, Dict, Optional

from fastapi import APIRouter

from socialhub.services import poller

router = APIRouter(prefix="/scheduler", tags=["scheduler"])


@router.post("/run")
def run_now() -> Dict[str, Any]:
    return poller.run_once()


@router.post("/start")
def start(interval_seconds: Optional[int] = None) -> Dict[str, Any]:
    # default interval comes from SCHEDULER_INTERVAL_SECONDS
    return poller.start(interval_seconds)


@router.post("/stop")
def stop() -> Dict[str, Any]:
    return poller.stop()


@router.get("/status")
def status() -> Dict[str, Any]:
    return poller.status()
