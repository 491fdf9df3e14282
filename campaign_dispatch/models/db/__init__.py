from .enums import JobStatus, ReservationStatus, SuppressionReason
from .campaign_jobs import CampaignJob
from .consents import ConsentRecord
from .suppressions import SuppressionEntry
from .dedup_reservations import DedupReservation
from .send_logs import SendLogEntry

__all__ = [
    "JobStatus",
    "ReservationStatus",
    "SuppressionReason",
    "CampaignJob",
    "ConsentRecord",
    "SuppressionEntry",
    "DedupReservation",
    "SendLogEntry",
]
