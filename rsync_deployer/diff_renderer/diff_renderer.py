#!/usr/bin/env python3

"""
    This python file renders classified changes as a git style diff. Every change becomes a DiffUnit:

        diff --git a/index.html b/index.html
        index 0000000..0000000 100644
        --- a/index.html
        +++ b/index.html
        @@ -1,3 +1,3 @@
        ...

    The remote side of modified files comes from a single tar archive fetched over the ssh connection, so a diff of
    many files costs one round trip. The rendered text never carries timestamps, which keeps two renderings of the same
    state byte-identical. Colors are added by colorize_diff() on top of the text, for display only.
"""

import difflib
import io
import os
import stat
import tarfile

from dataclasses import dataclass

from colorama import Fore, Style

from rsync_deployer.change_classifier.change_classifier import ActionKind, diffable
from rsync_deployer.errors import UserCancelled

DEV_NULL = "/dev/null"
NULL_HASH = "0000000"
DEFAULT_FILE_MODE = "100644"
SYMLINK_MODE = "120000"
NO_NEWLINE_MARKER = "\\ No newline at end of file\n"
BINARY_SNIFF_SIZE = 8000

# Above this many changes the user confirms before anything is fetched
CONFIRM_THRESHOLD = 50


@dataclass(frozen=True)
class FileSnapshot:
    """
        The content of one side of a diff.
    """
    content: bytes
    mode: str = DEFAULT_FILE_MODE


@dataclass(frozen=True)
class DiffUnit:
    path: str
    header: str
    body: str

    @property
    def text(self):
        return self.header + self.body


def git_mode(st_mode):

    if stat.S_ISLNK(st_mode):
        return SYMLINK_MODE

    return "{:o}".format(stat.S_IFREG | stat.S_IMODE(st_mode))


def read_snapshot(archive):
    """
        Reads a tar archive into a dictionary of FileSnapshot keyed by path.

        :param bytes archive: The tar stream produced on the server.

        :return: {path: FileSnapshot}
    """

    ret_val = {}

    if not archive:
        return ret_val

    with tarfile.open(fileobj=io.BytesIO(archive), mode="r:*") as tar:
        for member in tar.getmembers():

            path = member.name[2:] if member.name.startswith("./") else member.name

            if member.issym():
                ret_val[path] = FileSnapshot(member.linkname.encode("utf-8"), SYMLINK_MODE)

            elif member.isfile():
                content = tar.extractfile(member).read()
                ret_val[path] = FileSnapshot(content, git_mode(stat.S_IFREG | member.mode))

    return ret_val


def read_local(root, path):
    """
        Reads a file of the working tree. Symlinks are read as their target, the way git stores them.

        :return: A FileSnapshot, or None when the path does not exist locally.
    """

    full_path = os.path.join(root, path)

    try:
        st = os.lstat(full_path)

    except FileNotFoundError:
        return None

    if stat.S_ISLNK(st.st_mode):
        return FileSnapshot(os.readlink(full_path).encode("utf-8"), SYMLINK_MODE)

    with open(full_path, "rb") as local_file:
        return FileSnapshot(local_file.read(), git_mode(st.st_mode))


def is_binary(content):

    return b"\0" in content[:BINARY_SNIFF_SIZE]


def split_lines(content):

    return content.decode("utf-8", errors="replace").splitlines(keepends=True)


def render_header(path, old, new):

    ret_val = "diff --git a/{0} b/{0}\n".format(path)

    if old is None:
        ret_val += "new file mode {}\n".format(new.mode)
    elif new is None:
        ret_val += "deleted file mode {}\n".format(old.mode)
    elif old.mode != new.mode:
        ret_val += "old mode {}\nnew mode {}\n".format(old.mode, new.mode)
    else:
        ret_val += "index {0}..{0} {1}\n".format(NULL_HASH, new.mode)

    return ret_val


def render_body(path, old, new):
    """
        Renders the unified content diff between two snapshots. None stands for /dev/null.
    """

    from_label = "a/" + path if old is not None else DEV_NULL
    to_label = "b/" + path if new is not None else DEV_NULL

    old_content = old.content if old is not None else b""
    new_content = new.content if new is not None else b""

    if is_binary(old_content) or is_binary(new_content):
        if old_content == new_content:
            return ""
        return "Binary files {} and {} differ\n".format(from_label, to_label)

    lines = list(difflib.unified_diff(split_lines(old_content), split_lines(new_content), from_label, to_label))

    # A creation or deletion with nothing to show still names both sides
    if not lines:
        if old is None or new is None:
            return "--- {}\n+++ {}\n".format(from_label, to_label)
        return ""

    ret_val = []
    for line in lines:
        if line.endswith("\n"):
            ret_val.append(line)
        else:
            ret_val.append(line + "\n" + NO_NEWLINE_MARKER)

    return "".join(ret_val)


def render_unit(path, old, new):

    return DiffUnit(path, render_header(path, old, new), render_body(path, old, new))


def sides_of(change, local_root, remote_snapshot):
    """
        Picks the two sides of the diff of a change.

        :return: A tuple (old, new) of FileSnapshot or None.
    """

    if change.kind is ActionKind.DELETE:
        return remote_snapshot.get(change.path, FileSnapshot(b"")), None

    if change.kind is ActionKind.CREATE_FILE:
        return None, read_local(local_root, change.path)

    # Renames are not tracked, a symlink is always shown as a new file holding its target
    if change.kind is ActionKind.CREATE_SYMLINK:
        return None, FileSnapshot(change.target.encode("utf-8"), SYMLINK_MODE)

    return remote_snapshot.get(change.path), read_local(local_root, change.path)


def render_changes(changes, local_root, remote_snapshot):
    """
        Renders the diff of every change carrying content, sorted by path.

        :param list changes: The classified changes.
        :param str local_root: The local side of the comparison.
        :param dict remote_snapshot: {path: FileSnapshot} of the remote side.

        :return: The list of DiffUnit.
    """

    ret_val = []

    for change in sorted(diffable(changes), key=lambda c: c.path):

        old, new = sides_of(change, local_root, remote_snapshot)
        if old is None and new is None:
            continue

        ret_val.append(render_unit(change.path, old, new))

    return ret_val


def colorize_diff(text):

    ret_val = []

    for line in text.splitlines(keepends=True):

        body = line.rstrip("\n")
        ending = line[len(body):]

        if body.startswith(("diff --git", "--- ", "+++ ")):
            ret_val.append(Style.BRIGHT + body + Style.RESET_ALL + ending)
        elif body.startswith("@@"):
            ret_val.append(Fore.BLUE + body + Style.RESET_ALL + ending)
        elif body.startswith("+"):
            ret_val.append(Fore.GREEN + body + Style.RESET_ALL + ending)
        elif body.startswith("-"):
            ret_val.append(Fore.RED + body + Style.RESET_ALL + ending)
        else:
            ret_val.append(line)

    return "".join(ret_val)


def snapshot_paths(changes):
    """
        :return: The sorted paths whose remote content is needed, i.e. the modified files.
    """

    return sorted(change.path for change in changes if change.kind is ActionKind.MODIFY_FILE)


class DiffRenderer():
    """
        Renders the pending changes of a transfer against the remote tree.
    """

    def __init__(self, options, ssh_agent, terminal):

        self.options = options
        self.ssh_agent = ssh_agent
        self.terminal = terminal

    def confirm_size(self, changes):
        """
            Asks before diffing a large change set, which would fetch a lot of remote files.
        """

        if len(changes) > CONFIRM_THRESHOLD:
            if not self.terminal.ask("{} changes pending. Render the diff of all of them?".format(len(changes))):
                raise UserCancelled()

    def render(self, changes):
        """
            :return: The diff of all changes as text.
        """

        paths = snapshot_paths(changes)
        archive = self.ssh_agent.fetch_archive(self.options.remote_path, paths) if paths else b""
        remote_snapshot = read_snapshot(archive)

        units = render_changes(changes, self.options.project_root, remote_snapshot)
        self.terminal.debug_print("Rendered {} diff(s)".format(len(units)))

        return "".join(unit.text for unit in units)

    def show(self, changes):

        self.confirm_size(changes)

        text = self.render(changes)
        if not text:
            self.terminal.emit("No differences.", "success")
            return text

        display = colorize_diff(text) if self.terminal.colorize else text
        self.terminal.page(display, paginate=self.options.paginate)

        return text
