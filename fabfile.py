import unipath
from fabric import task

# Deployment environment paths and settings and such.
HOSTS = ['buildbot.cloudforge.example']
DEPLOY_BASE = unipath.Path('/home/buildbot')
VIRTUALENV = DEPLOY_BASE
CODE_DIR = DEPLOY_BASE.child('cloudforge-buildmaster')
MASTER_DIR = DEPLOY_BASE.child('master')
GIT_URL = 'git://example.com/cloudforge-buildmaster.git'

# FIXME: make a deploy branch in this repo to deploy against.
DEFAULT_DEPLOY_REF = 'origin/master'

@task(hosts=HOSTS)
def deploy(c):
    """
    Full deploy: new code, update dependencies, restart the master.
    """
    deploy_code(c)
    update_dependencies(c)
    restart(c)

@task(hosts=HOSTS)
def restart(c):
    buildbot(c, 'restart')

@task(hosts=HOSTS)
def deploy_code(c, ref=None):
    """
    Update code on the servers from Git.
    """
    ref = ref or DEFAULT_DEPLOY_REF
    print("Deploying %s" % ref)
    if c.run('test -d %s' % CODE_DIR, warn=True, hide=True).failed:
        c.run('git clone %s %s' % (GIT_URL, CODE_DIR))
    with c.cd(CODE_DIR):
        c.run('git fetch && git reset --hard %s' % ref)

@task(hosts=HOSTS)
def update_dependencies(c):
    """
    Install this package (and with it its dependencies) into the virtualenv.
    """
    pip = VIRTUALENV.child('bin', 'pip')
    c.run('%s -q install -U %s' % (pip, CODE_DIR))

#
# Buildbot has crazy bizare startup/shutdown that neither Upstart
# nor Chef can quite figure out. So manage it here.
#

@task(hosts=HOSTS)
def buildbot(c, cmd):
    """
    Start/stop the buildbot (via `fab buildbot --cmd start`, etc.).
    """
    buildbot = VIRTUALENV.child('bin', 'buildbot')
    c.run(" ".join([buildbot, cmd, MASTER_DIR]))
