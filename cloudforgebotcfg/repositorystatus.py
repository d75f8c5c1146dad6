"""
Turns a CloudForge commit notification into immediate polls.

CloudForge POSTs a form to us after each commit, naming the organization,
the service ('svn') and the project. From those we can work out the
repository root, since CloudForge hosts everything at::

    https://<organization>.<service>.<provider domain>/<project>

Then every job is checked in turn:

    * It mustn't be disabled.

    * It must check out from Subversion.

    * It must have a polling trigger that doesn't ignore post-commit hooks.

    * One of its module locations must live in that repository, and one of the
      changed paths must be inside that module location (or the location is
      the whole repository).

Jobs that pass get their trigger run; the trigger does the real work of
figuring out whether anything changed. Nothing here is kept between
notifications.
"""

import collections
import logging
from hyperlink import URL
from twisted.python import log
from twisted.web import http
from .interfaces import (ISubversionSCM, SubversionResolutionError, SvnInfo,
                         ignores_post_commit_hooks)
from .svn import normalize_url, url_path

CommitNotification = collections.namedtuple('CommitNotification',
    'service project organization youngest changed')

class MatchStatus(object):
    """
    How far any job got through matching. Only used to explain, afterwards,
    why nothing was polled.
    """
    scm_found = False
    trigger_found = False
    root_found = False
    path_found = False

def parse_notification(args):
    """
    Build a CommitNotification from the form parameters.

    Raises ValueError if ``changed`` is missing. A bad ``youngest`` just means
    there's no revision hint.
    """
    changed = args.get('changed')
    if changed is None:
        raise ValueError("Missing 'changed' parameter")
    # Browsers post textareas with CRLF line endings.
    paths = frozenset(p.rstrip('\r') for p in changed.split('\n') if p.rstrip('\r'))

    revision = args.get('youngest')
    youngest = None
    if revision is not None:
        if revision.isascii() and revision.isdigit():
            youngest = int(revision)
        else:
            log.msg('Ignoring bad revision %r' % revision, logLevel=logging.INFO)

    return CommitNotification(
        service = args.get('service') or '',
        project = args.get('project') or '',
        organization = args.get('organization') or '',
        youngest = youngest,
        changed = paths,
    )

def build_repository_root(organization, service, provider_domain, project):
    """
    The repository root URL CloudForge uses for a project::

        >>> build_repository_root('testing', 'svn', 'cloudforge.com', 'test')
        'https://testing.svn.cloudforge.com/test'

    Raises ValueError if that doesn't make a valid URL.
    """
    host = '%s.%s.%s' % (organization, service, provider_domain)
    url = URL(scheme=u'https', host=host, path=(project,) if project else ())
    return url.to_text()

def relative_path(location_url, root_url):
    """
    Path of a module location inside its repository, without the leading
    slash ('' for the whole repository). None if the location isn't under
    the root at all.
    """
    m = url_path(location_url)
    n = url_path(root_url)
    if not m.startswith(n):
        return None
    remaining = m[len(n):]
    if remaining.startswith('/'):
        remaining = remaining[1:]
    return remaining

def is_affected(remaining, paths):
    """
    Does any changed path fall inside the module location at `remaining`?

    A path matches if it *is* the location (a file), if it's under it (a
    directory), or if the location is the whole repository.
    """
    if not remaining:
        return True
    remainingslash = remaining + '/'
    for path in paths:
        if path == remaining or path.startswith(remainingslash):
            return True
    return False

class RepositoryStatus(object):
    """
    Commit notifications for one provider domain ("cloudforge.com").

    `job_provider` supplies the jobs to check (see interfaces.IJobProvider).
    """

    def __init__(self, provider_domain, job_provider):
        self.provider_domain = provider_domain
        self.job_provider = job_provider

    def notify_commit(self, args):
        """
        Handle a notification. `args` maps parameter names to values:

            * service: 'svn' for Subversion services.
            * project: short name of the project committed to.
            * organization: short name of the organization owning the project.
            * youngest: newest revision number in the repository.
            * changed: the changed files, one per line, as svn lists them.
            * author, log: ignored.

        Returns the HTTP status code to respond with.
        """
        try:
            notification = parse_notification(args)
        except ValueError:
            return http.BAD_REQUEST

        try:
            root = build_repository_root(notification.organization,
                                         notification.service,
                                         self.provider_domain,
                                         notification.project)
            wanted = normalize_url(root)
        except ValueError as e:
            log.msg('Failed to handle Subversion commit notification: %s' % e,
                    logLevel=logging.WARNING)
            return http.BAD_REQUEST

        stat = MatchStatus()
        for job in self.job_provider.get_all_jobs():
            if job.is_disabled():
                continue
            try:
                self.check_job(job, notification, wanted, stat)
            except SubversionResolutionError as e:
                log.msg('Failed to handle Subversion commit notification for %s: %s' % (job, e),
                        logLevel=logging.WARNING)

        if not stat.scm_found:
            log.msg('No subversion jobs found', logLevel=logging.WARNING)
        elif not stat.trigger_found:
            log.msg('No subversion jobs using SCM polling or all jobs using SCM '
                    'polling are ignoring post-commit hooks', logLevel=logging.WARNING)
        elif not stat.root_found:
            log.msg('No subversion jobs using repository: %s' % root, logLevel=logging.WARNING)
        elif not stat.path_found:
            log.msg('No jobs found matching the modified files', logLevel=logging.DEBUG)

        return http.OK

    def check_job(self, job, notification, wanted, stat):
        """
        Poll `job` if the notification concerns it, noting progress in `stat`.

        Resolution errors are left for the caller; the job doesn't poll then.
        """
        scm = job.get_scm()
        if not ISubversionSCM.providedBy(scm):
            return
        stat.scm_found = True

        trigger = job.get_trigger()
        if trigger is None or ignores_post_commit_hooks(trigger):
            return
        stat.trigger_found = True

        infos = []
        matches = False
        for loc in scm.get_module_locations(job):
            location_root = loc.get_repository_root(job)
            try:
                if normalize_url(location_root) != wanted:
                    continue
                stat.root_found = True
                remaining = relative_path(loc.get_url(), location_root)
            except ValueError as e:
                raise SubversionResolutionError('Bad URL for %r: %s' % (loc, e))
            if remaining is None:
                continue

            if notification.youngest is not None:
                infos.append(SvnInfo(loc.get_url(), notification.youngest))

            if is_affected(remaining, notification.changed):
                matches = True
                stat.path_found = True

        if matches:
            log.msg('Scheduling the immediate polling of %s' % job, logLevel=logging.DEBUG)
            trigger.run(infos)
