from dataclasses import asdict
from typing import Any, Dict, List
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

router = APIRouter(prefix="/api", tags=["balance"])

def _aggregator(request: Request):
    return request.app.state.aggregator

@router.get("/balance")
def get_balance(request: Request):
    """目前的儀表板快照；快照帶有 error 時回傳 500。"""
    data: Dict[str, Any] = _aggregator(request).build_snapshot()
    if "error" in data:
        return JSONResponse(status_code=500, content=data)
    return data

@router.get("/balance/history")
def get_balance_history(request: Request) -> List[Dict[str, Any]]:
    """近 24 小時、每小時一點的資產曲線。"""
    return [asdict(p) for p in _aggregator(request).hourly_balance_history()]
