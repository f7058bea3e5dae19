from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from app.api.deps import get_dispatcher, require_cron_secret
from app.database import get_db
from app.notifications.push import Dispatcher
from app.services.milestone_trigger import run_scheduled_check

router = APIRouter()

@router.post("/milestones", dependencies=[Depends(require_cron_secret)])
async def check_milestones(db: Session = Depends(get_db), dispatcher: Dispatcher = Depends(get_dispatcher)):
    result = await run_scheduled_check(db, dispatcher)
    return result.to_dict()
