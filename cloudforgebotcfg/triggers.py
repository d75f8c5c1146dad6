"""
Polling triggers: the thing a matched job is told to run.
"""

import logging
from twisted.python import log
from zope.interface import implementer
from .interfaces import ISCMTrigger, IIgnoresPostCommitHooks

@implementer(ISCMTrigger, IIgnoresPostCommitHooks)
class SCMTrigger(object):
    """
    Forces buildbot polling change sources (SVNPollers, usually) to poll.

    Pollers have to be poked from the reactor thread, and notifications are
    handled off it, so the poll is scheduled with callFromThread.
    """

    def __init__(self, sources, ignore_post_commit_hooks=False, reactor=None):
        if reactor is None:
            from twisted.internet import reactor
        self.sources = list(sources)
        self.ignore_post_commit_hooks = ignore_post_commit_hooks
        self.reactor = reactor

    def ignores_post_commit_hooks(self):
        return self.ignore_post_commit_hooks

    def run(self, revision_hints):
        for source in self.sources:
            if revision_hints:
                log.msg('Forcing %s to poll (pinned at %s)' % (source.name,
                        ', '.join('%s@%s' % (i.url, i.revision) for i in revision_hints)),
                        logLevel=logging.DEBUG)
            else:
                log.msg('Forcing %s to poll' % source.name, logLevel=logging.DEBUG)
            self.reactor.callFromThread(source.force)
