from pydantic import BaseModel

from agenda.services.notification_service import JobReport


class JobReportResponse(BaseModel):
    job: str
    candidates: int
    sent: int
    skipped: int
    failed: int

    @classmethod
    def from_report(cls, report: JobReport) -> "JobReportResponse":
        return cls(**report.to_dict())
