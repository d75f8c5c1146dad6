"""
The things the commit notification handler talks to.

Jobs, their Subversion settings and their polling triggers all live outside
the handler; these interfaces say exactly what it asks of them, so a test (or
some other job registry) can stand in for the real ones.
"""

import collections
from zope.interface import Interface

# A revision hint handed to a trigger: "poll <url>, and it's at <revision>".
SvnInfo = collections.namedtuple('SvnInfo', 'url revision')

class SubversionResolutionError(Exception):
    """
    Looking up a job's module locations or repository root failed.
    """

class IJobProvider(Interface):
    def get_all_jobs():
        """
        Return a snapshot of every known job.
        """

class IJob(Interface):
    def is_disabled():
        """
        True if the job should never be built.
        """

    def get_scm():
        """
        The job's SCM, or None.
        """

    def get_trigger():
        """
        The job's polling trigger, or None if it doesn't poll.
        """

class ISubversionSCM(Interface):
    def get_module_locations(job):
        """
        Return the module locations `job` checks out.

        May raise SubversionResolutionError.
        """

class IModuleLocation(Interface):
    def get_url():
        """
        The full checkout URL.
        """

    def get_repository_root(job):
        """
        The root URL of the repository holding this location.

        This might talk to the repository, so it may raise
        SubversionResolutionError.
        """

class ISCMTrigger(Interface):
    def run(revision_hints):
        """
        Poll now. `revision_hints` is a (possibly empty) list of SvnInfo.
        """

class IIgnoresPostCommitHooks(Interface):
    """
    Optional trigger capability: opting out of push notifications.
    """

    def ignores_post_commit_hooks():
        """
        True if post-commit notifications should not cause a poll.
        """

def ignores_post_commit_hooks(trigger):
    """
    Ask a trigger whether it ignores post-commit hooks. Triggers without the
    capability never do.
    """
    if IIgnoresPostCommitHooks.providedBy(trigger):
        return trigger.ignores_post_commit_hooks()
    return False
