from .base import CamelModel, ResponseBase
from .campaigns import CampaignCreate, CampaignQueued, JobProgressRead, JobStatusRead
from .dispatch import JobResult, TickSummary

__all__ = [
    "CamelModel",
    "ResponseBase",
    "CampaignCreate",
    "CampaignQueued",
    "JobProgressRead",
    "JobStatusRead",
    "JobResult",
    "TickSummary",
]
