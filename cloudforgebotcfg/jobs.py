"""
The job registry handed to the notification handler.
"""

from zope.interface import implementer
from .interfaces import IJob, IJobProvider

@implementer(IJob)
class Job(object):

    def __init__(self, name, scm=None, trigger=None, disabled=False):
        self.name = name
        self.scm = scm
        self.trigger = trigger
        self.disabled = disabled

    def __repr__(self):
        return '<Job %s>' % self.name

    def is_disabled(self):
        return self.disabled

    def get_scm(self):
        return self.scm

    def get_trigger(self):
        return self.trigger

@implementer(IJobProvider)
class JobProvider(object):
    """
    A plain list of jobs. get_all_jobs() hands out a snapshot.
    """

    def __init__(self, jobs=()):
        self.jobs = list(jobs)

    def add_job(self, job):
        self.jobs.append(job)

    def get_all_jobs(self):
        return tuple(self.jobs)
