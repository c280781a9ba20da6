from .job_lease import JobLease
from .subscription import Subscription

__all__ = ["Subscription", "JobLease"]
