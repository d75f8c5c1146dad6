"""
Subversion settings of a job: which module locations it checks out, and what
repository each of them lives in.
"""

import subprocess
import xml.dom.minidom
import xml.parsers.expat
from hyperlink import URL
from twisted.python import log
from zope.interface import implementer
from .interfaces import ISubversionSCM, IModuleLocation, SubversionResolutionError

def normalize_url(url):
    """
    Canonical text form of a URL, for comparing repository roots.

    Scheme and host case, default ports, percent-encoding and a single
    trailing slash don't count::

        >>> normalize_url('https://Testing.svn.cloudforge.com:443/test/')
        'https://testing.svn.cloudforge.com/test'

    Raises ValueError for text that isn't a URL.
    """
    url = URL.from_text(url).normalize()
    if url.path and url.path[-1] == u'':
        url = url.replace(path=url.path[:-1])
    return url.to_text()

def url_path(url):
    """
    The decoded path of a URL, without a trailing slash ('' for none).
    """
    segments = list(URL.from_text(url).to_iri().path)
    if segments and segments[-1] == u'':
        segments.pop()
    return u''.join(u'/' + s for s in segments)

@implementer(ISubversionSCM)
class SubversionSCM(object):
    """
    A job checking out one or more module locations from Subversion.
    """

    def __init__(self, locations):
        self.locations = list(locations)

    def get_module_locations(self, job):
        return tuple(self.locations)

@implementer(IModuleLocation)
class ModuleLocation(object):
    """
    One repository subtree a job checks out.

    If the repository root isn't given it's looked up with ``svn info`` the
    first time somebody asks, and remembered after that.
    """

    def __init__(self, remote, local=None, repository_root=None, svnbin='svn'):
        if remote.endswith('/'):
            remote = remote[:-1]
        self.remote = remote
        self.local = local or remote.rsplit('/', 1)[-1]
        self.repository_root = repository_root
        self.svnbin = svnbin

    def __repr__(self):
        return '<ModuleLocation %s>' % self.remote

    def get_url(self):
        return self.remote

    def get_repository_root(self, job):
        if self.repository_root is None:
            self.repository_root = self.svn_info_root()
        return self.repository_root

    def svn_info_root(self):
        """
        Ask the repository for its root, the same way SVNPoller does.
        """
        command = [self.svnbin, 'info', '--xml', '--non-interactive', self.remote]
        try:
            proc = subprocess.run(command, stdout=subprocess.PIPE, stderr=subprocess.PIPE)
        except OSError as e:
            raise SubversionResolutionError('Could not run %s: %s' % (self.svnbin, e))
        if proc.returncode != 0:
            raise SubversionResolutionError('svn info %s failed: %s' %
                (self.remote, proc.stderr.decode('utf-8', 'replace').strip()))

        try:
            doc = xml.dom.minidom.parseString(proc.stdout)
        except xml.parsers.expat.ExpatError as e:
            raise SubversionResolutionError('Bad svn info output for %s: %s' % (self.remote, e))

        rootnodes = doc.getElementsByTagName('root')
        if not rootnodes:
            # Only happens when the URL already was the root.
            return self.remote
        root = ''.join(c.data for c in rootnodes[0].childNodes)
        log.msg('%s has repository root %s' % (self.remote, root))
        return root
