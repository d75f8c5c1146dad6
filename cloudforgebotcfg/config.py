"""
Defines jobs and the rest of the settings, from config/jobs.json.

The file looks like this::

    {
        "http_port": "tcp:8010",
        "jobs": [
            {
                "name": "test-trunk",
                "disabled": false,
                "locations": [
                    {
                        "remote": "https://testing.svn.cloudforge.com/test/trunk",
                        "local": "trunk",
                        "repository_root": "https://testing.svn.cloudforge.com/test"
                    }
                ],
                "trigger": {
                    "poll_interval": 300,
                    "histmax": 20,
                    "ignore_post_commit_hooks": false
                }
            }
        ]
    }

``repository_root`` may be left out, in which case it's looked up with
``svn info`` when first needed. A job with ``"trigger": null`` never polls.
"""

import json
from unipath import Path
from .changesource import get_change_source
from .jobs import Job, JobProvider
from .svn import ModuleLocation, SubversionSCM
from .triggers import SCMTrigger

DEFAULT_HTTP_PORT = 'tcp:8010'

def get_config_path():
    return Path(__file__).ancestor(2).child('config', 'jobs.json')

def load_config(path=None):
    """
    Read the JSON config. Raises ValueError if it isn't usable.
    """
    path = Path(path) if path is not None else get_config_path()
    if not path.exists():
        raise ValueError('No config file at %s' % path)
    cfg = json.loads(path.read_file('r'))
    if not isinstance(cfg, dict) or not isinstance(cfg.get('jobs', []), list):
        raise ValueError('%s should hold an object with a "jobs" list' % path)
    return cfg

def get_http_port(cfg):
    port = cfg.get('http_port', DEFAULT_HTTP_PORT)
    if isinstance(port, int):
        port = 'tcp:%d' % port
    return port

def get_jobs(cfg, reactor=None):
    """
    Build the JobProvider handed to the notification handler.
    """
    return JobProvider(make_job(spec, reactor) for spec in cfg.get('jobs', []))

def make_job(spec, reactor=None):
    try:
        name = spec['name']
        locations = [ModuleLocation(
            remote = loc['remote'],
            local = loc.get('local'),
            repository_root = loc.get('repository_root'),
            svnbin = loc.get('svnbin', 'svn'),
        ) for loc in spec.get('locations', [])]
    except (KeyError, TypeError, AttributeError) as e:
        raise ValueError('Bad job in config: %r (%s)' % (spec, e))

    trigger = None
    tspec = spec.get('trigger')
    if tspec is not None:
        if not isinstance(tspec, dict):
            raise ValueError('Bad trigger for job %s: %r' % (name, tspec))
        sources = [get_change_source(loc, name='%s:%s' % (name, loc.get_url()),
                                     poll_interval=tspec.get('poll_interval', 5 * 60),
                                     histmax=tspec.get('histmax', 20))
                   for loc in locations]
        trigger = SCMTrigger(sources,
            ignore_post_commit_hooks = tspec.get('ignore_post_commit_hooks', False),
            reactor = reactor,
        )

    return Job(name,
        scm = SubversionSCM(locations),
        trigger = trigger,
        disabled = spec.get('disabled', False),
    )
