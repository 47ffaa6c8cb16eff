from fastapi import APIRouter
from ..db import db_ping

router = APIRouter(prefix="/api/v1", tags=["core"])

@router.get("/health")
def api_health():
    return {"status": "ok", "scope": "api-v1", "db": "up" if db_ping() else "down"}
