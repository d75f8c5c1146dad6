"""
Tests for the CloudForge notification handling, and the bits around it.

Jobs, triggers and module locations are mocks or the real lightweight
classes; nothing here talks to a repository or opens a port.
"""

import contextlib
import json
import logging
import subprocess
import warnings
from unittest import mock

import pytest
from buildbot.config import ConfigErrors
from fabric import Connection
from twisted.application.service import IService
from twisted.internet import defer
from twisted.python import log
from twisted.web import resource
from twisted.web.error import UnsupportedMethod
from twisted.web.test.requesthelper import DummyRequest

import fabfile
from . import changesource, config, jobs, repositorystatus, status, svn, triggers
from .interfaces import SubversionResolutionError, SvnInfo, ignores_post_commit_hooks

ROOT = 'https://testing.svn.cloudforge.com/test'

def make_args(**kwargs):
    args = {
        'service': 'svn',
        'project': 'test',
        'organization': 'testing',
        'changed': '/somepath\n',
    }
    args.update(kwargs)
    return dict((k, v) for k, v in args.items() if v is not None)

def make_job(locations=None, trigger='mock', disabled=False):
    if locations is None:
        locations = [svn.ModuleLocation(ROOT, 'local', repository_root=ROOT)]
    job = mock.Mock(name='job')
    job.is_disabled.return_value = disabled
    job.get_scm.return_value = svn.SubversionSCM(locations)
    job.get_trigger.return_value = mock.Mock(name='trigger') if trigger == 'mock' else trigger
    return job

def notify(*job_list, **kwargs):
    provider = jobs.JobProvider(job_list)
    return repositorystatus.RepositoryStatus('cloudforge.com', provider).notify_commit(make_args(**kwargs))

@contextlib.contextmanager
def captured_log():
    events = []
    observer = events.append
    log.addObserver(observer)
    try:
        yield events
    finally:
        log.removeObserver(observer)

def logged(events, level):
    return [log.textFromEventDict(e) for e in events if e.get('logLevel') == level]

#
# The handler itself.
#

def test_should_poll():
    job = make_job()
    assert notify(job, youngest='0') == 200
    trigger = job.get_trigger.return_value
    trigger.run.assert_called_once_with([SvnInfo(ROOT, 0)])

def test_disabled_jobs_are_ignored():
    job = make_job(disabled=True)
    assert notify(job) == 200
    assert not job.get_scm.called
    assert not job.get_trigger.called

def test_non_subversion_jobs_are_skipped():
    job = make_job()
    job.get_scm.return_value = mock.Mock(name='git')
    assert notify(job) == 200
    assert not job.get_trigger.called

def test_missing_changed_is_bad_request():
    job = make_job()
    assert notify(job, changed=None) == 400
    assert not job.get_scm.called

def test_bad_repository_url_is_bad_request():
    job = make_job()
    with captured_log() as events:
        assert notify(job, organization='bad/org') == 400
    assert not job.get_scm.called
    assert any('Failed to handle' in m for m in logged(events, logging.WARNING))

def test_empty_changed_matches_whole_repository_only():
    whole = make_job()
    trunk = make_job([svn.ModuleLocation(ROOT + '/trunk', repository_root=ROOT)])
    assert notify(whole, trunk, changed='') == 200
    assert whole.get_trigger.return_value.run.call_count == 1
    assert not trunk.get_trigger.return_value.run.called

def test_revision_hints():
    job = make_job()
    notify(job, youngest='123')
    job.get_trigger.return_value.run.assert_called_once_with([SvnInfo(ROOT, 123)])

@pytest.mark.parametrize('youngest', [None, 'abc', '-1', '', '1_000', ' 12 ', '+5'])
def test_no_revision_hints(youngest):
    job = make_job()
    notify(job, youngest=youngest)
    job.get_trigger.return_value.run.assert_called_once_with([])

def test_bad_revision_is_logged():
    with captured_log() as events:
        notify(make_job(), youngest='abc')
    assert any('abc' in m for m in logged(events, logging.INFO))

def test_hints_for_every_matching_location():
    locations = [
        svn.ModuleLocation(ROOT + '/trunk/lib', repository_root=ROOT),
        svn.ModuleLocation(ROOT + '/trunk/docs', repository_root=ROOT),
    ]
    job = make_job(locations)
    notify(job, youngest='7', changed='trunk/lib/foo.c')
    job.get_trigger.return_value.run.assert_called_once_with([
        SvnInfo(ROOT + '/trunk/lib', 7),
        SvnInfo(ROOT + '/trunk/docs', 7),
    ])

def test_module_location_in_subdirectory():
    job = make_job([svn.ModuleLocation(ROOT + '/trunk', repository_root=ROOT)])
    notify(job, changed='branches/1.0/foo.c\ntags/1.0')
    assert not job.get_trigger.return_value.run.called
    notify(job, changed='branches/1.0/foo.c\ntrunk/foo.c')
    assert job.get_trigger.return_value.run.call_count == 1

def test_other_repository_is_not_polled():
    job = make_job([svn.ModuleLocation('https://other.svn.cloudforge.com/test',
                                       repository_root='https://other.svn.cloudforge.com/test')])
    with captured_log() as events:
        notify(job)
    assert not job.get_trigger.return_value.run.called
    assert ('No subversion jobs using repository: %s' % ROOT) in logged(events, logging.WARNING)

def test_repository_roots_compare_normalized():
    job = make_job([svn.ModuleLocation(ROOT, repository_root='https://Testing.svn.cloudforge.com/test/')])
    notify(job)
    assert job.get_trigger.return_value.run.call_count == 1

def test_job_without_trigger():
    job = make_job(trigger=None)
    with captured_log() as events:
        notify(job)
    assert any('No subversion jobs using SCM polling' in m for m in logged(events, logging.WARNING))

def test_trigger_ignoring_post_commit_hooks():
    reactor = mock.Mock()
    trigger = triggers.SCMTrigger([mock.Mock()], ignore_post_commit_hooks=True, reactor=reactor)
    job = make_job(trigger=trigger)
    notify(job)
    assert not reactor.callFromThread.called

def test_resolution_error_does_not_stop_other_jobs():
    broken = mock.Mock(name='location')
    broken.get_repository_root.side_effect = SubversionResolutionError('svn: E170013')
    bad = make_job([broken])
    good = make_job()
    with captured_log() as events:
        assert notify(bad, good) == 200
    assert not bad.get_trigger.return_value.run.called
    assert good.get_trigger.return_value.run.call_count == 1
    assert any('E170013' in m for m in logged(events, logging.WARNING))

def test_no_subversion_jobs_logged():
    with captured_log() as events:
        assert notify() == 200
    assert 'No subversion jobs found' in logged(events, logging.WARNING)

def test_no_matching_files_logged():
    job = make_job([svn.ModuleLocation(ROOT + '/trunk', repository_root=ROOT)])
    with captured_log() as events:
        notify(job, changed='branches/foo.c')
    assert 'No jobs found matching the modified files' in logged(events, logging.DEBUG)
    assert not [m for m in logged(events, logging.WARNING) if m.startswith('No ')]

def test_same_notification_twice():
    job = make_job()
    provider = jobs.JobProvider([job])
    handler = repositorystatus.RepositoryStatus('cloudforge.com', provider)
    handler.notify_commit(make_args(youngest='5'))
    handler.notify_commit(make_args(youngest='5'))
    assert job.get_trigger.return_value.run.call_args_list == [
        mock.call([SvnInfo(ROOT, 5)]),
        mock.call([SvnInfo(ROOT, 5)]),
    ]

#
# Helpers.
#

def test_parse_notification():
    n = repositorystatus.parse_notification({'changed': 'a\nb\na\n', 'youngest': '12'})
    assert n.changed == frozenset(['a', 'b'])
    assert n.youngest == 12
    assert n.service == n.project == n.organization == ''

def test_parse_notification_crlf():
    n = repositorystatus.parse_notification({'changed': 'lib\r\nlib/a.c\r\n'})
    assert n.changed == frozenset(['lib', 'lib/a.c'])

def test_crlf_changed_paths_match():
    job = make_job([svn.ModuleLocation(ROOT + '/lib', repository_root=ROOT)])
    notify(job, changed='lib\r\n')
    assert job.get_trigger.return_value.run.call_count == 1

def test_parse_notification_needs_changed():
    with pytest.raises(ValueError):
        repositorystatus.parse_notification({'youngest': '12'})

def test_build_repository_root():
    assert repositorystatus.build_repository_root('testing', 'svn', 'cloudforge.com', 'test') == ROOT

def test_is_affected():
    assert repositorystatus.is_affected('lib', ['lib'])
    assert repositorystatus.is_affected('lib', ['lib/foo.c'])
    assert not repositorystatus.is_affected('lib', ['liberty'])
    assert repositorystatus.is_affected('', [])

def test_relative_path():
    assert repositorystatus.relative_path(ROOT + '/trunk/lib', ROOT) == 'trunk/lib'
    assert repositorystatus.relative_path(ROOT, ROOT) == ''
    assert repositorystatus.relative_path('https://testing.svn.cloudforge.com/other', ROOT) is None

def test_ignores_post_commit_hooks_default():
    assert not ignores_post_commit_hooks(object())
    assert ignores_post_commit_hooks(triggers.SCMTrigger([], ignore_post_commit_hooks=True, reactor=mock.Mock()))

#
# Subversion bits.
#

SVN_INFO = b"""<?xml version="1.0"?>
<info>
<entry kind="dir" path="trunk" revision="18354">
<url>https://testing.svn.cloudforge.com/test/trunk</url>
<repository>
<root>https://testing.svn.cloudforge.com/test</root>
</repository>
</entry>
</info>
"""

def svn_result(returncode=0, stdout=b'', stderr=b''):
    return subprocess.CompletedProcess([], returncode, stdout, stderr)

def test_repository_root_from_svn_info():
    loc = svn.ModuleLocation(ROOT + '/trunk/')
    with mock.patch('subprocess.run', return_value=svn_result(stdout=SVN_INFO)) as run:
        assert loc.get_repository_root(None) == ROOT
        assert loc.get_repository_root(None) == ROOT
    assert run.call_count == 1
    assert run.call_args[0][0] == ['svn', 'info', '--xml', '--non-interactive', ROOT + '/trunk']

def test_repository_root_svn_failure():
    loc = svn.ModuleLocation(ROOT)
    with mock.patch('subprocess.run', return_value=svn_result(1, stderr=b'svn: E170013')):
        with pytest.raises(SubversionResolutionError):
            loc.get_repository_root(None)

def test_repository_root_no_svn():
    loc = svn.ModuleLocation(ROOT, svnbin='/nonexistent/svn')
    with mock.patch('subprocess.run', side_effect=OSError('No such file')):
        with pytest.raises(SubversionResolutionError):
            loc.get_repository_root(None)

def test_repository_root_bad_xml():
    loc = svn.ModuleLocation(ROOT)
    with mock.patch('subprocess.run', return_value=svn_result(stdout=b'<info')):
        with pytest.raises(SubversionResolutionError):
            loc.get_repository_root(None)

def test_module_location_defaults():
    loc = svn.ModuleLocation(ROOT + '/trunk/')
    assert loc.get_url() == ROOT + '/trunk'
    assert loc.local == 'trunk'

def test_url_path():
    assert svn.url_path(ROOT + '/trunk/') == '/test/trunk'
    assert svn.url_path('https://testing.svn.cloudforge.com') == ''

#
# Triggers, jobs, change sources and config.
#

def test_trigger_forces_every_source():
    reactor = mock.Mock()
    sources = [mock.Mock(), mock.Mock()]
    trigger = triggers.SCMTrigger(sources, reactor=reactor)
    assert not trigger.ignores_post_commit_hooks()
    trigger.run([SvnInfo(ROOT, 3)])
    assert reactor.callFromThread.call_args_list == [mock.call(s.force) for s in sources]

def test_job_provider_snapshot():
    provider = jobs.JobProvider()
    provider.add_job(jobs.Job('a'))
    snapshot = provider.get_all_jobs()
    provider.add_job(jobs.Job('b'))
    assert [j.name for j in snapshot] == ['a']
    assert len(provider.get_all_jobs()) == 2

CONFIG = {
    'http_port': 8020,
    'jobs': [
        {
            'name': 'test-trunk',
            'locations': [{'remote': ROOT + '/trunk', 'local': 'trunk', 'repository_root': ROOT}],
            'trigger': {'poll_interval': 600, 'histmax': 10},
        },
        {
            'name': 'test-docs',
            'disabled': True,
            'locations': [{'remote': ROOT + '/docs'}],
            'trigger': None,
        },
    ],
}

def write_config(tmp_path, cfg):
    path = tmp_path / 'jobs.json'
    path.write_text(json.dumps(cfg))
    return str(path)

def test_load_config(tmp_path):
    cfg = config.load_config(write_config(tmp_path, CONFIG))
    assert config.get_http_port(cfg) == 'tcp:8020'

    provider = config.get_jobs(cfg, reactor=mock.Mock())
    trunk, docs = provider.get_all_jobs()
    assert trunk.name == 'test-trunk'
    assert not trunk.is_disabled()
    assert trunk.get_scm().get_module_locations(trunk)[0].get_repository_root(trunk) == ROOT
    assert [s.name for s in trunk.get_trigger().sources] == ['test-trunk:' + ROOT + '/trunk']
    assert docs.is_disabled()
    assert docs.get_trigger() is None

    assert changesource.get_change_sources(provider) == trunk.get_trigger().sources

def test_poller_names_are_unique(tmp_path):
    cfg = config.load_config(write_config(tmp_path, {'jobs': [{
        'name': 'both',
        'locations': [
            {'remote': ROOT + '/a/trunk', 'repository_root': ROOT},
            {'remote': ROOT + '/b/trunk', 'repository_root': ROOT},
        ],
        'trigger': {},
    }]}))
    job, = config.get_jobs(cfg, reactor=mock.Mock()).get_all_jobs()
    names = [s.name for s in job.get_trigger().sources]
    assert len(set(names)) == 2

def test_load_config_missing(tmp_path):
    with pytest.raises(ValueError):
        config.load_config(str(tmp_path / 'nope.json'))

def test_load_config_bad_job(tmp_path):
    cfg = config.load_config(write_config(tmp_path, {'jobs': [{'locations': []}]}))
    with pytest.raises(ValueError):
        config.get_jobs(cfg)

def test_configured_jobs_are_polled(tmp_path):
    reactor = mock.Mock()
    provider = config.get_jobs(config.load_config(write_config(tmp_path, CONFIG)), reactor=reactor)
    handler = repositorystatus.RepositoryStatus('cloudforge.com', provider)
    assert handler.notify_commit(make_args(changed='trunk/setup.py\ndocs/index.txt')) == 200
    assert reactor.callFromThread.call_count == 1

#
# The web side.
#

def web_request(path, method=b'POST', **args):
    request = DummyRequest([status.URL_NAME] + path)
    request.method = method
    request.args = dict((k.encode('utf-8'), [v.encode('utf-8')]) for k, v in args.items())
    return request

def render(job_provider, request):
    res = resource.getChildForRequest(status.get_root(job_provider), request)
    if isinstance(res, status.NotifyCommit):
        res.deferToThread = lambda f, *a: defer.maybeDeferred(f, *a)
    return res.render(request)

def test_web_notify_commit():
    job = make_job()
    request = web_request([b'cloudforge.com', b'notifyCommit'], **make_args())
    render(jobs.JobProvider([job]), request)
    assert request.finished
    assert request.responseCode == 200
    assert job.get_trigger.return_value.run.call_count == 1

def test_web_missing_changed():
    job = make_job()
    request = web_request([b'cloudforge.com', b'notifyCommit'], service='svn')
    render(jobs.JobProvider([job]), request)
    assert request.responseCode == 400
    assert not job.get_scm.called

def test_web_only_post():
    request = web_request([b'cloudforge.com', b'notifyCommit'], method=b'GET', **make_args())
    with pytest.raises(UnsupportedMethod):
        render(jobs.JobProvider(), request)

def test_web_unknown_child():
    request = web_request([b'cloudforge.com', b'elsewhere'])
    res = resource.getChildForRequest(status.get_root(jobs.JobProvider()), request)
    assert not isinstance(res, status.NotifyCommit)

def test_web_empty_provider():
    request = web_request([b'', b'notifyCommit'])
    with warnings.catch_warnings():
        warnings.simplefilter('error', DeprecationWarning)
        res = resource.getChildForRequest(status.get_root(jobs.JobProvider()), request)
    assert not isinstance(res, status.NotifyCommit)

def test_decode_args():
    assert status.decode_args({b'changed': [b'a\nb', b'c'], b'empty': []}) == {'changed': 'a\nb'}

def test_get_status():
    assert IService.providedBy(status.get_status(jobs.JobProvider(), 0))

def test_status_service():
    svc = status.StatusService(jobs.JobProvider(), http_port='tcp:0')
    assert svc.name == 'subversion4cloudforge'
    svc.reconfigService(jobs.JobProvider(), http_port='tcp:0')
    assert list(svc) == [svc.websrv]

def test_status_service_needs_jobs():
    with pytest.raises(ConfigErrors):
        status.StatusService(None)

#
# Deployment.
#

def test_deploy_code():
    c = mock.MagicMock(spec=Connection)
    fabfile.deploy_code(c, ref='origin/release')
    commands = [call[0][0] for call in c.run.call_args_list]
    assert commands[-1] == 'git fetch && git reset --hard origin/release'

def test_buildbot_task():
    c = mock.MagicMock(spec=Connection)
    fabfile.buildbot(c, 'start')
    c.run.assert_called_once_with('/home/buildbot/bin/buildbot start /home/buildbot/master')
