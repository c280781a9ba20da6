# subscriptions/models/job_lease.py

from django.db import models


class JobLease(models.Model):
    """
    Named, expiring lease row used to run a scheduled job on exactly one node.

    The holder is whoever owns an unexpired row; an expired row may be taken
    over by anyone.
    """

    name = models.CharField(max_length=100, primary_key=True)
    owner = models.CharField(max_length=200)
    acquired_at = models.DateTimeField()
    expires_at = models.DateTimeField()

    class Meta:
        ordering = ["name"]

    def __str__(self):
        return f"{self.name} held by {self.owner} until {self.expires_at:%Y-%m-%d %H:%M:%S}"
