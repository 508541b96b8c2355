import io
import tarfile

import pytest

from rsync_deployer.init_file_parser.init_file_parser import EffectiveOptions
from rsync_deployer.process_runner.process_runner import ProcessResult
from rsync_deployer.terminal.terminal import Terminal


def make_tar(files):
    """Build a tar archive from {path: bytes}."""
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w") as tar:
        for path, content in sorted(files.items()):
            info = tarfile.TarInfo(path)
            info.size = len(content)
            info.mode = 0o644
            tar.addfile(info, io.BytesIO(content))
    return buffer.getvalue()


class FakeRunner:
    """Process runner answering with queued results."""

    def __init__(self, results=()):
        self.results = list(results)
        self.calls = []
        self.interactive_calls = []

    def run(self, command, args=(), input=None):
        self.calls.append([command] + list(args))
        if self.results:
            return self.results.pop(0)
        return ProcessResult()

    def interactive(self, command, args=()):
        self.interactive_calls.append([command] + list(args))
        return 0


class FakeAgent:
    """SSH agent backed by an in-memory server."""

    def __init__(self, files=None, directories=None, shell_results=None):
        # {remote directory: {relative path: bytes}}
        self.files = files or {}
        self.directories = directories or {}
        self.shell_results = list(shell_results or [])
        self.shell_calls = []
        self.fetches = []
        self.appended = {}
        self.removed = []
        self.closed = False

    def run_shell(self, script, cwd=None):
        self.shell_calls.append((script, cwd))
        if self.shell_results:
            return self.shell_results.pop(0)
        return ProcessResult(stdout=b"ok\n")

    def fetch_archive(self, directory, paths):
        self.fetches.append((directory, list(paths)))
        tree = self.files.get(directory, {})
        return make_tar({path: tree[path] for path in paths if path in tree})

    def list_directories(self, directory):
        return sorted(self.directories.get(directory, []))

    def file_exists_on_server(self, file_path):
        return file_path in self.files or file_path in self.appended

    def append_file(self, file_path, data):
        self.appended[file_path] = self.appended.get(file_path, b"") + data

    def remove_tree(self, path):
        self.removed.append(path)

    def close(self):
        self.closed = True


class Answers:
    """input() replacement returning canned answers."""

    def __init__(self, *answers):
        self.answers = list(answers)
        self.questions = []

    def __call__(self, prompt=""):
        self.questions.append(prompt)
        if not self.answers:
            raise EOFError()
        return self.answers.pop(0)


@pytest.fixture
def project(tmp_path):
    root = tmp_path / "project"
    root.mkdir()
    return root


@pytest.fixture
def options(project):
    return EffectiveOptions(
        project_root=str(project),
        server="deploy@example.com",
        remote_path="/var/www/site",
        colorize=False,
        paginate=False,
    )


@pytest.fixture
def output():
    return io.StringIO()


@pytest.fixture
def terminal(output):
    return Terminal(colorize=False, stream=output, input_func=Answers())
