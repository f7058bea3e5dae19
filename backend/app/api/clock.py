import time
from fastapi import APIRouter
from fastapi.responses import JSONResponse

router = APIRouter()

@router.get("")
def server_time():
    """Trusted clock for clients computing their offset. Never cached."""
    return JSONResponse({"now": int(time.time() * 1000)}, headers={"Cache-Control": "no-store"})
