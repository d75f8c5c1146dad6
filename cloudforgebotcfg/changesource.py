"""
How changes get from SVN into the buildbot.

Every module location a job polls gets its own SVNPoller. They still poll on
a timer, but slowly: CloudForge tells us about commits, and the notification
handler forces the right pollers to look right away.
"""

from buildbot.changes.svnpoller import SVNPoller

def get_change_source(location, name, poll_interval=5 * 60, histmax=20):
    return SVNPoller(
        repourl = location.get_url(),
        name = name,
        svnbin = location.svnbin,

        # Poll every 5 minutes by default, in case a notification goes missing.
        pollInterval = poll_interval,

        # Only suck down the last 20 commits. A forced poll happens right
        # after each commit, so more than that between polls is unlikely.
        histmax = histmax,
    )

def get_change_sources(jobs):
    """
    All the pollers behind the jobs' triggers, for
    BuildmasterConfig['change_source'].
    """
    sources = []
    for job in jobs.get_all_jobs():
        trigger = job.get_trigger()
        if trigger is not None:
            sources.extend(getattr(trigger, 'sources', []))
    return sources
