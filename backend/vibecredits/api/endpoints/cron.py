import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from vibecredits.core.auth import require_cron_secret
from vibecredits.core.clock import utcnow
from vibecredits.core.database import get_db
from vibecredits.schemas.credits import RenewalSummaryResponse
from vibecredits.services.renewal import renew_monthly_credits


logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[Depends(require_cron_secret)])


@router.get("/cron/renew-credits", response_model=RenewalSummaryResponse)
async def cron_renew_credits(db: Session = Depends(get_db)) -> RenewalSummaryResponse:
    logger.info("cron.renew_credits.start")
    summary = renew_monthly_credits(db)
    return RenewalSummaryResponse(success=True, timestamp=utcnow().isoformat(), **summary.as_dict())
