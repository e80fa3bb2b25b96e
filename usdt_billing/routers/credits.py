from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from ..auth import current_uid
from ..config import settings
from ..db import get_db
from ..schemas import ConsumeRequest, Entitlements
from ..services.entitlements import consume_credits, get_entitlements

router = APIRouter()

@router.get('/entitlements', response_model=Entitlements)
def entitlements(uid: str = Depends(current_uid), db: Session = Depends(get_db)):
    return get_entitlements(db, uid, daily_limit=settings.free_daily_limit)

@router.post('/credits/consume', response_model=Entitlements)
def consume(payload: ConsumeRequest, uid: str = Depends(current_uid), db: Session = Depends(get_db)):
    return consume_credits(db, uid, payload.count, payload.reason, daily_limit=settings.free_daily_limit)
