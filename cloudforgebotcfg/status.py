"""
The web side: where CloudForge sends its commit notifications.

The URL is ``/subversion4cloudforge/<provider domain>/notifyCommit``, e.g.
``/subversion4cloudforge/cloudforge.com/notifyCommit``. There's no
authentication.
"""

from buildbot import config
from buildbot.util import bytes2unicode, service
from twisted.application import strports
from twisted.internet import defer, threads
from twisted.python import log
from twisted.web import http, pages, resource, server
from .repositorystatus import RepositoryStatus

URL_NAME = b'subversion4cloudforge'

def get_status(job_provider, http_port='tcp:8010'):
    """
    A twisted service serving the notification
    endpoint on `http_port`.
    """
    if isinstance(http_port, int):
        http_port = 'tcp:%d' % http_port
    return strports.service(http_port, server.Site(get_root(job_provider)))

class StatusService(service.BuildbotService):
    """
    Runs the endpoint inside a buildmaster (``c['services']``), restarting the
    web server when the config is reloaded.
    """
    name = 'subversion4cloudforge'
    websrv = None

    def checkConfig(self, job_provider, http_port='tcp:8010'):
        if job_provider is None:
            config.error('StatusService needs a job provider')

    @defer.inlineCallbacks
    def reconfigService(self, job_provider, http_port='tcp:8010'):
        if self.websrv is not None:
            yield self.websrv.disownServiceParent()
        self.websrv = get_status(job_provider, http_port)
        yield self.websrv.setServiceParent(self)

def get_root(job_provider):
    root = resource.Resource()
    root.putChild(URL_NAME, SubversionStatusCloudForge(job_provider))
    return root

def decode_args(args):
    """
    Turn twisted's {b'name': [b'value', ...]} into {'name': 'value'}, keeping
    the first value of each.
    """
    return dict((bytes2unicode(k), bytes2unicode(v[0]))
                for k, v in args.items() if v)

class SubversionStatusCloudForge(resource.Resource):
    """
    Receives the push notification of commits from repositories. Each child
    is a provider domain.
    """

    def __init__(self, job_provider):
        resource.Resource.__init__(self)
        self.job_provider = job_provider

    def getChild(self, name, request):
        if not name:
            return pages.notFound()
        return SubversionRepositoryStatusCloudForge(bytes2unicode(name), self.job_provider)

class SubversionRepositoryStatusCloudForge(resource.Resource):
    """
    Everything under one provider domain.
    """

    def __init__(self, provider_domain, job_provider):
        resource.Resource.__init__(self)
        self.provider_domain = provider_domain
        self.putChild(b'notifyCommit', NotifyCommit(RepositoryStatus(provider_domain, job_provider)))

class NotifyCommit(resource.Resource):
    """
    POST only; twisted.web answers anything else with 405 by itself.

    Finding repository roots may mean running ``svn info``, so the handler
    runs in the reactor's thread pool.
    """
    isLeaf = True
    deferToThread = staticmethod(threads.deferToThread)

    def __init__(self, status):
        resource.Resource.__init__(self)
        self.status = status

    def render_POST(self, request):
        try:
            args = decode_args(request.args)
        except UnicodeDecodeError:
            request.setResponseCode(http.BAD_REQUEST)
            return b''

        lost = []
        request.notifyFinish().addErrback(lost.append)

        def respond(code):
            if not lost:
                request.setResponseCode(code)
                request.finish()

        def failed(failure):
            log.err(failure, 'Failed to handle Subversion commit notification')
            respond(http.INTERNAL_SERVER_ERROR)

        d = self.deferToThread(self.status.notify_commit, args)
        d.addCallbacks(respond, failed)
        return server.NOT_DONE_YET
