#!/usr/bin/env python3

r"""

goimp pins the dependencies of a Go package to the revisions you already have.

Go's import paths say where a package can be fetched from, but not which
version of it you built against. goimp fills that gap in the most direct way we
could think of: it looks at what your package imports, finds the repositories
those imports live in under $GOPATH/src, asks each repository which revision is
checked out, and writes the answer down in a plain text file named Godeps next
to your code. On another machine, 'goimp get' reads that file back, fetches
whatever is missing and checks every repository out at the recorded revision.

There is no version solving, no vendoring and no cache. A version is whatever
the repository's own version control system calls a revision: a commit hash for
git, a changeset id for mercurial, a revision number for bazaar.

A Godeps file looks like this:

  github.com/gorilla/mux	3f19343c7d9ce75569b952758bd236af94956061
  github.com/mitchellh/goamz/...	caaaea8b30ee15616494ee68abd5d8ebbbef05cf

One import per line, then a tab, then the revision. A path ending in '/...'
stands for a repository root and every package beneath it; goimp writes one of
those whenever you import two or more packages from the same repository.

---

Usage:

  goimp <command> [arguments]

Commands:

  goimp list [-p DIR] [-r] [-hash]:
    Prints the imports of the package in DIR (default '.') with the revision
    each one is checked out at. -r (on by default) follows imports through
    the dependencies already present in $GOPATH/src; -hash (on by default)
    looks up revisions. Use -no-r or -no-hash to turn them off.

  goimp write [-p DIR] [-file NAME] [-r] [-hash]:
    Does what 'goimp list' does and writes the result to DIR/NAME (default
    Godeps).

  goimp get [-p DIR] [-file NAME] [-reset] [IMPORT [REV]]:
    1. Reads DIR/NAME, or takes the single IMPORT and REV given on the
       command line.
    2. Downloads every missing repository with 'go get -d'.
    3. Checks every repository out at its revision, fetching from the remote
       when the revision is not available locally.

    With -reset the recorded revisions are ignored and every repository is
    moved to the tip of its default branch instead.

  goimp bind [-p DIR] [-file NAME]:
    Watches both DIR/NAME and the repositories in $GOPATH/src. When the file
    changes, runs 'goimp get'; when a repository moves, runs 'goimp write'.
    Runs until interrupted.

  goimp help [command]:
    Prints this text, or the flags of a single command.

Configuration:

  An optional YAML file at $GOIMP_CONFIG (default ~/.config/goimp/config.yaml)
  may set 'manifest', 'interval', 'default_branch', 'download', extra 'stdlib'
  names, and 'vcs' entries that override or extend the built-in git, hg and
  bzr commands.
"""

import sys, os, re, time, logging, subprocess, collections, functools, click, yaml
from concurrent import futures

DEPS_FILE = 'Godeps'
ALL_SUFFIX = '/...'
DEFAULT_BRANCH = 'master'
DOWNLOAD_CMD = 'go get -d'
BIND_INTERVAL = 1.0
TABWIDTH = 8

# Top-level packages shipped with the go toolchain, plus the cgo pseudo package.
STDLIB = frozenset([
  'C', 'archive', 'bufio', 'builtin', 'bytes', 'cmp', 'compress', 'container',
  'context', 'crypto', 'database', 'debug', 'embed', 'encoding', 'errors',
  'expvar', 'flag', 'fmt', 'go', 'hash', 'html', 'image', 'index', 'internal',
  'io', 'iter', 'log', 'maps', 'math', 'mime', 'net', 'os', 'path', 'plugin',
  'reflect', 'regexp', 'runtime', 'slices', 'sort', 'strconv', 'strings',
  'structs', 'sync', 'syscall', 'testing', 'text', 'time', 'unicode', 'unique',
  'unsafe', 'weak',
])

CONFIG_KEYS = ('manifest', 'interval', 'default_branch', 'download', 'stdlib', 'vcs')
VCS_FIELDS = ('name', 'commit', 'checkout', 'fetch', 'pull')

cc = subprocess.check_call
co = subprocess.check_output
join = os.path.join

logger = logging.getLogger('goimp')


class GoimpError(Exception): pass
class ConfigError(GoimpError): pass
class WorkspaceError(GoimpError): pass
class ManifestError(GoimpError): pass
class NotBuildablePackage(GoimpError): pass
class ParseError(GoimpError): pass
class UnknownVCS(GoimpError): pass
class VCSError(GoimpError): pass

class PackageNotFound(GoimpError):
  def __init__(self, directory, src_root=None):
    GoimpError.__init__(self, directory)
    self.directory = directory
    self.src_root = src_root

  def __str__(self):
    if self.src_root and self.directory.startswith(self.src_root):
      path = self.directory[len(self.src_root):].strip(os.sep).replace(os.sep, '/')
      return "'%s' not found in %s" % (path, self.src_root)
    return "'%s' not found" % self.directory


def _mkdir_p(*dirs):
  for d in dirs:
    if d and not os.path.isdir(d):
      os.makedirs(d)


class ImportSet(set):
  def extend(self, paths):
    self.update(paths)
    return self

  def export(self):
    return list(self)


def is_stdlib(path, builtins=STDLIB):
  return path.split('/', 1)[0] in builtins


# Source parsing. There's no Go parser in Python, so we tokenize just enough of
# each file to read its package clause and import declarations, the same
# prefix of the file 'go list' looks at.

GoFile = collections.namedtuple('GoFile', 'name package imports')
ImportSpec = collections.namedtuple('ImportSpec', 'name path')

_TOKENS = re.compile(r'''
    (?P<space>[ \t\r\f\v]+)
  | (?P<newline>\n)
  | (?P<comment>//[^\n]*|/\*.*?\*/)
  | (?P<string>"(?:[^"\\\n]|\\[^\n])*"|`[^`]*`)
  | (?P<ident>[^\W\d]\w*)
  | (?P<punct>[().;])
''', re.VERBOSE | re.DOTALL)

_ILLEGAL_IMPORT_CHARS = frozenset('!"#$%&\'()*,:;<=>?[\\]^`{|}\ufffd')


def _tokenize(filename, src):
  pos = 0
  while pos < len(src):
    m = _TOKENS.match(src, pos)
    if m is None:
      raise ParseError('%s:%d: unexpected %r' % (
          filename, src.count('\n', 0, pos) + 1, src[pos]))
    kind, text = m.lastgroup, m.group()
    if kind == 'newline' or (kind == 'comment' and '\n' in text):
      yield ';', text, pos
    elif kind == 'punct':
      yield text, text, pos
    elif kind in ('ident', 'string'):
      yield kind, text, pos
    pos = m.end()


class _Tokens(object):
  def __init__(self, filename, src):
    self.filename = filename
    self.src = src
    self._gen = _tokenize(filename, src)
    self._head = None

  def peek(self):
    if self._head is None:
      self._head = next(self._gen, ('eof', '', len(self.src)))
    return self._head

  def next(self):
    tok = self.peek()
    self._head = None
    return tok

  def fail(self, msg, pos):
    raise ParseError('%s:%d: %s' % (
        self.filename, self.src.count('\n', 0, pos) + 1, msg))

  def expect(self, kind, text=None):
    found, value, pos = self.next()
    if found != kind or (text is not None and value != text):
      self.fail('expected %s, found %s' % (
          repr(text) if text else kind, repr(value) if value else 'EOF'), pos)
    return value

  def skip_semis(self):
    while self.peek()[0] == ';':
      self.next()

  def end_of_decl(self):
    kind, value, pos = self.peek()
    if kind not in (';', 'eof'):
      self.fail("expected ';', found %r" % value, pos)

  def import_spec(self):
    kind, value, pos = self.peek()
    name = None
    if kind in ('ident', '.'):
      name = value
      self.next()
    pos = self.peek()[2]
    lit = self.expect('string')
    path = lit[1:-1]
    if not path or any(c in _ILLEGAL_IMPORT_CHARS or c.isspace() or
                       not c.isprintable() for c in path):
      self.fail('invalid import path: %s' % lit, pos)
    return ImportSpec(name, path)


def parse_go_file(filename, src=None):
  """Parses the package clause and import declarations of a Go source file.

  Everything after the last import declaration is left unread. Raises
  ParseError if the header is not valid Go.
  """
  if src is None:
    with open(filename, 'rb') as f:
      src = f.read()
  if isinstance(src, bytes):
    try:
      src = src.decode('utf-8')
    except UnicodeDecodeError as e:
      raise ParseError('%s: invalid UTF-8 encoding: %s' % (filename, e))
  if src.startswith('\ufeff'):
    src = src[1:]

  tokens = _Tokens(filename, src)
  tokens.skip_semis()
  tokens.expect('ident', 'package')
  # No semicolon is inserted after a keyword.
  tokens.skip_semis()
  package = tokens.expect('ident')
  tokens.end_of_decl()

  imports = []
  while True:
    tokens.skip_semis()
    kind, value, _ = tokens.peek()
    if kind != 'ident' or value != 'import':
      break
    tokens.next()
    tokens.skip_semis()
    if tokens.peek()[0] == '(':
      tokens.next()
      while True:
        tokens.skip_semis()
        if tokens.peek()[0] == ')':
          tokens.next()
          break
        imports.append(tokens.import_spec())
        kind, value, pos = tokens.peek()
        if kind not in (';', ')'):
          tokens.fail("expected ';' or ')', found %r" % (value or 'EOF'), pos)
    else:
      imports.append(tokens.import_spec())
    tokens.end_of_decl()
  return GoFile(filename, package, imports)


def parse_dir(directory, src_root=None):
  try:
    names = sorted(os.listdir(directory))
  except OSError:
    raise PackageNotFound(directory, src_root)

  files = []
  for name in names:
    path = join(directory, name)
    if not name.endswith('.go') or os.path.isdir(path):
      continue
    try:
      files.append(parse_go_file(path))
    except ParseError as e:
      logger.warning('ignoring unparsable file %r: %s', path, e)
    except OSError as e:
      logger.warning('ignoring unreadable file %r: %s', path, e)
  if not files:
    raise NotBuildablePackage('%s: no buildable Go files' % directory)
  return files


class VCS(object):
  """A version control system, driven through its command line tool.

  Each operation is a whitespace-separated argument string run in the
  repository root. An empty string means the operation isn't supported.
  """

  def __init__(self, name, cmd, commit='', checkout='', fetch='', pull='',
               root=None):
    self.name = name
    self.cmd = cmd
    self.root = root
    self.specs = dict(commit=commit, checkout=checkout, fetch=fetch, pull=pull)

  def __repr__(self):
    return '<VCS %s at %s>' % (self.name, self.root)

  def at(self, root):
    return VCS(self.name, self.cmd, root=root, **self.specs)

  def replace(self, **fields):
    specs = dict(self.specs)
    name = fields.pop('name', self.name)
    specs.update(fields)
    return VCS(name, self.cmd, root=self.root, **specs)

  def _args(self, op):
    spec = self.specs[op]
    if not spec:
      raise VCSError('%s is not yet supported' % self.name)
    return spec.split()

  def _run(self, *args):
    try:
      return co((self.cmd,) + args, cwd=self.root, stderr=subprocess.PIPE,
                universal_newlines=True)
    except subprocess.CalledProcessError as e:
      raise VCSError((e.stderr or '').strip() or str(e))
    except OSError as e:
      raise VCSError('%s: %s' % (self.cmd, e))

  def commit_hash(self):
    return self._run(*self._args('commit')).strip('\n')

  def checkout(self, rev):
    args = self._args('checkout')
    if self.commit_hash() == rev:
      return
    self._run(*(args + [rev]))

  def fetch(self):
    self._run(*self._args('fetch'))

  def latest(self, branch=DEFAULT_BRANCH):
    args = self._args('pull')
    if self.cmd == 'git':
      # pull only moves a branch, never a detached HEAD.
      self._run('checkout', branch)
    self._run(*args)


VCS_LIST = (
  VCS('Git', 'git',
      commit='rev-parse HEAD', checkout='checkout', fetch='fetch', pull='pull'),
  VCS('Mercurial', 'hg',
      commit='id -i', checkout='update', fetch='pull', pull='pull -u'),
  VCS('Bazaar', 'bzr',
      commit='revno', checkout='revert -r', fetch='pull --overwrite'),
)


def find_vcs(directory, src_root, vcs_list=VCS_LIST):
  """Finds the version control system that manages directory.

  Walks up from directory towards src_root (exclusive) and returns a VCS rooted
  at the first directory holding a '.git', '.hg' or '.bzr' directory.
  """
  directory = os.path.normpath(directory)
  src_root = os.path.normpath(src_root)
  if (len(directory) <= len(src_root) or
      not directory.startswith(src_root) or
      directory[len(src_root)] != os.sep):
    raise WorkspaceError(
        'directory %r is outside source root %r' % (directory, src_root))

  d = directory
  while len(d) > len(src_root):
    for vcs in vcs_list:
      if os.path.isdir(join(d, '.' + vcs.cmd)):
        return vcs.at(d)
    parent = os.path.dirname(d)
    if len(parent) >= len(d):
      break
    d = parent

  raise UnknownVCS(
      'directory %r is not using a known version control system' % directory)


def default_config_path(environ=None):
  if environ is None:
    environ = os.environ
  return (environ.get('GOIMP_CONFIG') or
          join(os.path.expanduser('~'), '.config', 'goimp', 'config.yaml'))


def load_config(fn):
  if not os.path.exists(fn):
    return {}
  try:
    with open(fn, encoding='utf-8') as f:
      raw = yaml.safe_load(f)
  except yaml.YAMLError as e:
    raise ConfigError('Invalid config file %r: %s' % (fn, e))
  except OSError as e:
    raise ConfigError("Can't read config file %r: %s" % (fn, e))
  if raw is None:
    return {}
  if not isinstance(raw, dict):
    raise ConfigError('Config file %r must hold a mapping' % fn)
  return raw


class Context(object):
  """Everything the engines need to know about the outside world."""

  def __init__(self, src_root=None, stdlib=STDLIB, vcs_list=VCS_LIST,
               download=DOWNLOAD_CMD, default_branch=DEFAULT_BRANCH,
               interval=BIND_INTERVAL, manifest=DEPS_FILE):
    self.src_root = os.path.abspath(src_root) if src_root else None
    self.stdlib = frozenset(stdlib)
    self.vcs_list = tuple(vcs_list)
    if isinstance(download, str):
      download = download.split()
    self.download = list(download)
    self.default_branch = default_branch
    self.interval = interval
    self.manifest = manifest

  @classmethod
  def from_env(cls, environ=None):
    if environ is None:
      environ = os.environ
    # Only the first workspace in GOPATH is used.
    roots = [p for p in environ.get('GOPATH', '').split(os.pathsep) if p]
    if not roots:
      raise WorkspaceError('GOPATH must be set')
    ctx = cls(src_root=join(roots[0], 'src'))
    ctx.configure(load_config(default_config_path(environ)))
    return ctx

  def configure(self, raw):
    unknown = set(raw) - set(CONFIG_KEYS)
    if unknown:
      raise ConfigError('Unknown config keys: %s' % ', '.join(sorted(unknown)))

    def value(key, types):
      val = raw[key]
      if not isinstance(val, types) or isinstance(val, bool):
        raise ConfigError('Invalid value for %r: %r' % (key, val))
      return val

    if 'manifest' in raw:
      self.manifest = value('manifest', str)
    if 'interval' in raw:
      self.interval = float(value('interval', (int, float)))
      if self.interval <= 0:
        raise ConfigError("'interval' must be positive")
    if 'default_branch' in raw:
      self.default_branch = value('default_branch', str)
    if 'download' in raw:
      self.download = value('download', str).split()
      if not self.download:
        raise ConfigError("'download' must not be empty")
    if 'stdlib' in raw:
      extra = value('stdlib', list)
      if not all(isinstance(name, str) for name in extra):
        raise ConfigError("'stdlib' must be a list of names")
      self.stdlib = self.stdlib.union(extra)
    if 'vcs' in raw:
      self.vcs_list = self._configure_vcs(value('vcs', dict))
    return self

  def _configure_vcs(self, entries):
    vcs_list = list(self.vcs_list)
    for cmd, fields in entries.items():
      if not isinstance(fields, dict):
        raise ConfigError('VCS entry for %r must be a mapping' % cmd)
      bad = set(fields) - set(VCS_FIELDS)
      if bad:
        raise ConfigError('Unknown fields for VCS %r: %s' % (
            cmd, ', '.join(sorted(bad))))
      fields = dict((k, v if v is not None else '') for k, v in fields.items())
      if not all(isinstance(v, str) for v in fields.values()):
        raise ConfigError('VCS fields for %r must be strings' % cmd)
      for i, vcs in enumerate(vcs_list):
        if vcs.cmd == cmd:
          vcs_list[i] = vcs.replace(**fields)
          break
      else:
        vcs_list.append(VCS(fields.pop('name', cmd), cmd, **fields))
    return tuple(vcs_list)

  def is_stdlib(self, path):
    return is_stdlib(path, self.stdlib)

  def path_for(self, imp):
    """Returns the directory an import path lives in under the source root."""
    if self.src_root is None:
      raise WorkspaceError('GOPATH must be set')
    if imp.endswith(ALL_SUFFIX):
      imp = imp[:-len(ALL_SUFFIX)]
    return join(self.src_root, *imp.split('/'))

  def import_path(self, directory):
    """Returns the import path of directory, or None outside the source root."""
    if self.src_root is None:
      return None
    path = os.path.abspath(directory)
    if not path.startswith(self.src_root + os.sep):
      return None
    return path[len(self.src_root):].strip(os.sep).replace(os.sep, '/')

  def find_vcs(self, directory):
    if self.src_root is None:
      raise WorkspaceError('GOPATH must be set')
    return find_vcs(directory, self.src_root, self.vcs_list)

  def download_env(self):
    env = dict(os.environ)
    # The download command works on GOPATH, not modules.
    env.setdefault('GO111MODULE', 'off')
    return env


# Import discovery.

def file_imports(ctx, gofile):
  return ImportSet(imp.path for imp in gofile.imports
                   if not ctx.is_stdlib(imp.path))


def get_package_imports(ctx, directory, recursive=False, seen=None,
                        strict=False):
  """Returns the set of non-stdlib imports of the package in directory.

  With recursive, the imports of every import found under the source root are
  followed too. seen holds imports some caller is already expanding. A
  directory with no Go files has no imports, unless strict is set, in which case
  NotBuildablePackage is raised.
  """
  imports = ImportSet()
  try:
    files = parse_dir(directory, ctx.src_root)
  except NotBuildablePackage:
    if strict:
      raise
    return imports
  for gofile in files:
    imports.extend(file_imports(ctx, gofile))
  if not recursive:
    return imports

  if ctx.src_root is None:
    raise WorkspaceError('GOPATH must be set for recursive option')

  if seen is None:
    seen = ImportSet()
  for imp in imports.export():
    if imp in seen:
      continue
    carry = ImportSet(imports).extend(seen)
    try:
      found = get_package_imports(ctx, ctx.path_for(imp), recursive, carry)
    except PackageNotFound as e:
      logger.warning('%s', e)
      continue
    imports.extend(found)
  return imports


# Manifest.

Pin = collections.namedtuple('Pin', 'path hash')


def format_pins(pins, aligned=False):
  """Renders pins one per line.

  The plain form is the manifest format, 'path<TAB>hash'. The aligned form pads
  paths with tabs so the hashes line up in a terminal.
  """
  if not aligned:
    return ''.join('%s\t%s\n' % pin for pin in pins)
  if not pins:
    return ''
  width = (max(len(pin.path) for pin in pins) // TABWIDTH + 1) * TABWIDTH
  lines = []
  for path, hsh in pins:
    if not hsh:
      lines.append(path + '\n')
      continue
    tabs = (width - len(path) + TABWIDTH - 1) // TABWIDTH
    lines.append('%s%s%s\n' % (path, '\t' * tabs, hsh))
  return ''.join(lines)


def parse_pins(text):
  pins = []
  for line in text.strip('\n').split('\n'):
    fields = line.split()
    if not fields:
      continue
    pins.append(Pin(fields[0], fields[1] if len(fields) > 1 else ''))
  return pins


def read_manifest(fn):
  try:
    with open(fn, encoding='utf-8') as f:
      return parse_pins(f.read())
  except (OSError, UnicodeDecodeError) as e:
    raise ManifestError('error reading deps file: %s' % e)


def pins_to_map(pins):
  return dict((pin.path, pin.hash) for pin in pins)


# list

def purge_subpackages(ctx, project, imports):
  own = ctx.import_path(project)
  if not own:
    return ImportSet(imports)
  return ImportSet(imp for imp in imports
                   if imp != own and not imp.startswith(own + '/'))


def list_pins(ctx, project='.', recursive=True, with_hash=True):
  """Returns the pinned imports of the package in project, sorted by path.

  Imports of two or more packages from one repository collapse into a single
  '<repo>/...' pin.
  """
  imports = get_package_imports(ctx, project, recursive, strict=True)
  imports = purge_subpackages(ctx, project, imports)
  if not with_hash:
    return sorted(Pin(imp, '') for imp in imports)

  roots = collections.OrderedDict()
  for imp in sorted(imports):
    try:
      vcs = ctx.find_vcs(ctx.path_for(imp))
    except (UnknownVCS, WorkspaceError) as e:
      logger.debug('skipping %s: %s', imp, e)
      continue
    try:
      hsh = vcs.commit_hash()
    except VCSError as e:
      logger.error("couldn't get commit hash for %s: %s", imp, e)
      continue
    roots.setdefault(vcs.root, []).append(Pin(imp, hsh))

  pins = []
  for root, group in roots.items():
    if len(group) == 1:
      pins.extend(group)
    else:
      pins.append(Pin(ctx.import_path(root) + ALL_SUFFIX, group[0].hash))
  return sorted(pins)


# write

def write(ctx, project='.', manifest=None, recursive=True, with_hash=True):
  pins = list_pins(ctx, project, recursive, with_hash)
  fn = join(project, manifest or ctx.manifest)
  try:
    with open(fn, 'w', encoding='utf-8') as f:
      f.write(format_pins(pins))
  except OSError as e:
    logger.error('error writing %s: %s', fn, e)
  return pins


# get

def materialize(ctx, pin):
  """Downloads the repository of pin unless it's already in the workspace."""
  location = ctx.path_for(pin.path)
  if os.path.exists(location):
    return True
  logger.info('fetching %s...', pin.path)
  try:
    _mkdir_p(ctx.src_root)
    cc(ctx.download + [pin.path], cwd=ctx.src_root, env=ctx.download_env())
  except (subprocess.CalledProcessError, OSError) as e:
    logger.error('%s: %s', pin.path, e)
    return False
  return True


def position(ctx, pin):
  """Moves the repository of pin to its revision, or to the latest one."""
  try:
    vcs = ctx.find_vcs(ctx.path_for(pin.path))
  except GoimpError as e:
    logger.error('%s: %s', pin.path, e)
    return False

  if not pin.hash:
    logger.info('updating %s...', pin.path)
    try:
      vcs.latest(ctx.default_branch)
    except VCSError as e:
      logger.error('%s: %s', pin.path, e)
      return False
    return True

  logger.info('checkout %s to %s...', pin.path, pin.hash)
  try:
    vcs.checkout(pin.hash)
  except VCSError as e:
    logger.info('%s: %s; fetching...', pin.path, e)
    try:
      vcs.fetch()
      vcs.checkout(pin.hash)
    except VCSError as e:
      logger.error('%s: %s', pin.path, e)
      return False
  return True


def _fan_out(task, pins):
  # Leaving the executor waits for every task.
  with futures.ThreadPoolExecutor(max_workers=len(pins)) as pool:
    return list(pool.map(task, pins))


def get(ctx, pins, reset=False):
  """Restores pins in the workspace. Returns the pins that failed.

  All downloads finish before any checkout starts, since downloading one
  repository may bring in another one's dependencies.
  """
  # Last entry wins for a path listed twice.
  pins = [Pin(path, rev) for path, rev in pins_to_map(pins).items()]
  if reset:
    pins = [Pin(pin.path, '') for pin in pins]
  if not pins:
    return []
  _fan_out(functools.partial(materialize, ctx), pins)
  done = _fan_out(functools.partial(position, ctx), pins)
  return [pin for pin, ok in zip(pins, done) if not ok]


# bind

class Binder(object):
  """Keeps a manifest and the workspace in step.

  read is the manifest as last seen, work is the workspace as last seen, both
  as dicts from import path to revision. Each tick acts on at most one side,
  and the manifest wins.
  """

  def __init__(self, ctx, project='.', manifest=None):
    self.ctx = ctx
    self.project = project
    self.manifest = manifest or ctx.manifest
    self.path = join(project, self.manifest)
    self.read = None
    self.work = None

  def read_state(self):
    if not os.path.exists(self.path):
      return {}
    return pins_to_map(read_manifest(self.path))

  def work_state(self):
    return pins_to_map(list_pins(self.ctx, self.project))

  def snapshot(self):
    self.read = self.read_state()
    self.work = self.work_state()
    return self

  def tick(self):
    read = self.read_state()
    if read != self.read:
      logger.info('getting...')
      get(self.ctx, [Pin(path, hsh) for path, hsh in sorted(read.items())])
      self.snapshot()
      return 'get'
    if self.work_state() != self.work:
      logger.info('writing...')
      write(self.ctx, self.project, self.manifest)
      self.snapshot()
      return 'write'
    return None

  def run(self, sleep=time.sleep):
    if not os.path.exists(self.path):
      write(self.ctx, self.project, self.manifest)
    self.snapshot()
    while True:
      sleep(self.ctx.interval)
      try:
        self.tick()
      except GoimpError as e:
        logger.error('%s', e)


# Command line.

def _context():
  try:
    return Context.from_env()
  except GoimpError as e:
    raise click.ClickException(str(e))


@click.command('list', short_help='lists imports of the package')
@click.option('-p', 'directory', default='.', show_default=True,
              help='path of the go package')
@click.option('-r/-no-r', 'recursive', default=True, show_default=True,
              help='list imports recursively; the dependent repositories '
                   'should exist')
@click.option('-hash/-no-hash', 'with_hash', default=True, show_default=True,
              help='print the commit hash of each repository')
def list_cmd(directory, recursive, with_hash):
  """Lists the imports of the package with their revisions."""
  ctx = _context()
  try:
    pins = list_pins(ctx, directory, recursive, with_hash)
  except GoimpError as e:
    raise click.ClickException(str(e))
  click.echo(format_pins(pins, aligned=True), nl=False)


@click.command('write', short_help='writes imports of the package')
@click.option('-p', 'directory', default='.', show_default=True,
              help='path of the go package')
@click.option('-file', 'filename', default=None,
              help='file to write to  [default: Godeps]')
@click.option('-r/-no-r', 'recursive', default=True, show_default=True,
              help='write imports recursively; the dependent repositories '
                   'should exist')
@click.option('-hash/-no-hash', 'with_hash', default=True, show_default=True,
              help='write the commit hash of each repository')
def write_cmd(directory, filename, recursive, with_hash):
  """Writes the imports of the package with their revisions to a file."""
  ctx = _context()
  try:
    write(ctx, directory, filename, recursive, with_hash)
  except GoimpError as e:
    raise click.ClickException(str(e))


@click.command('get', short_help='fetches the pinned revisions')
@click.option('-p', 'directory', default='.', show_default=True,
              help='path of the go package')
@click.option('-file', 'filename', default=None,
              help='file to get revisions from  [default: Godeps]')
@click.option('-reset', 'reset', is_flag=True,
              help='fetches the latest code in the default branch')
@click.argument('import_path', required=False)
@click.argument('rev', required=False, default='')
def get_cmd(directory, filename, reset, import_path, rev):
  """Fetches every pinned import and checks it out at its revision.

  Given IMPORT (and optionally REV), fetches just that one instead.
  """
  ctx = _context()
  if import_path:
    pins = [Pin(import_path, rev or '')]
  else:
    try:
      pins = read_manifest(join(directory, filename or ctx.manifest))
    except GoimpError as e:
      raise click.ClickException(str(e))
  failed = get(ctx, pins, reset)
  if failed:
    logger.warning('%d of %d imports could not be restored: %s', len(failed),
                   len(pins), ' '.join(pin.path for pin in failed))


@click.command('bind', short_help='binds Godeps file to imports')
@click.option('-p', 'directory', default='.', show_default=True,
              help='path of the go package')
@click.option('-file', 'filename', default=None,
              help='file to bind to  [default: Godeps]')
def bind_cmd(directory, filename):
  """Watches the file and the imports, updating one when the other changes."""
  ctx = _context()
  try:
    Binder(ctx, directory, filename).run()
  except GoimpError as e:
    raise click.ClickException(str(e))


COMMANDS = (list_cmd, write_cmd, get_cmd, bind_cmd)


def _command(name):
  for command in COMMANDS:
    if command.name == name:
      return command
  return None


def print_help(name=None, ret=1):
  if name is None:
    print(__doc__.split('---\n')[-1], end='')
    sys.exit(ret)
  command = _command(name)
  if command is None:
    print('Unknown help topic %r' % name, file=sys.stderr)
    sys.exit(1)
  with click.Context(command, info_name='goimp %s' % name) as ctx:
    click.echo(command.get_help(ctx))
  sys.exit(ret)


def main(argv=None):
  if argv is None:
    argv = sys.argv[1:]
  logging.basicConfig(format='%(message)s', level=logging.INFO)

  try:
    cmd = argv[0]
  except IndexError:
    print_help()

  if cmd in ('help', '-h', '--help'):
    print_help(argv[1] if len(argv) > 1 else None, 0)
  command = _command(cmd)
  if command is None:
    print('Unknown subcommand %r' % cmd, file=sys.stderr)
    print_help()
  command.main(argv[1:], prog_name='goimp %s' % cmd)


if __name__ == '__main__':
  main(sys.argv[1:])
