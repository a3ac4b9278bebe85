"""Entry points for an external scheduler when the in-process loops are disabled."""
from fastapi import APIRouter, Depends, Query, Request

from agenda.api.deps import get_clock, get_messenger, verify_cron_secret
from agenda.api.schemas.cron import JobReportResponse
from agenda.services.messaging import Messenger
from agenda.services.reminder_job import run_reminder_job
from agenda.services.timewindow import Clock
from agenda.services.waitlist_job import run_waitlist_job

router = APIRouter(prefix="/cron", tags=["cron"], dependencies=[Depends(verify_cron_secret)])


@router.post("/reminders", response_model=JobReportResponse)
async def reminders(
    request: Request,
    hours_ahead: int = Query(24),
    messenger: Messenger = Depends(get_messenger),
    clock: Clock = Depends(get_clock),
) -> JobReportResponse:
    report = await run_reminder_job(request.app.state.session_maker, messenger, clock(), hours_ahead)
    return JobReportResponse.from_report(report)


@router.post("/waitlist", response_model=JobReportResponse)
async def waitlist(
    request: Request,
    messenger: Messenger = Depends(get_messenger),
    clock: Clock = Depends(get_clock),
) -> JobReportResponse:
    report = await run_waitlist_job(request.app.state.session_maker, messenger, clock())
    return JobReportResponse.from_report(report)
