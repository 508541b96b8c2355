#!/usr/bin/env python3

"""
    This python file turns the output of "rsync --itemize-changes" into a list of PendingChange. Each line rsync prints
    for a changed entry starts with an 11 character code (9 on older versions) followed by the path:

        *deleting   logs/old.txt
        <f+++++++++ assets/new.css
        <f.st...... index.html
        cL+++++++++ current -> releases/42
        cd+++++++++ assets/

    All knowledge of that format lives in ITEMIZE_PATTERNS. Lines matching none of them ("backup_dir is ...", blank
    lines, summaries) are not changes and are skipped.
"""

import re

from dataclasses import dataclass
from enum import Enum


class ActionKind(Enum):
    CREATE_FILE = "create_file"
    MODIFY_FILE = "modify_file"
    CREATE_SYMLINK = "create_symlink"
    DELETE = "delete"
    DIRECTORY_MARKER = "directory_marker"


@dataclass(frozen=True)
class PendingChange:
    kind: ActionKind
    path: str
    target: str = None

    @property
    def is_directory(self):
        return self.kind is ActionKind.DIRECTORY_MARKER


UPDATE_TYPES = r"[<>ch.]"
ATTRIBUTES = r"[.+ ?cstpoguaxnbi]{7,9}"

# Evaluated in order, the first match wins
ITEMIZE_PATTERNS = (
    (ActionKind.DELETE, re.compile(r"^\*deleting\s+(?P<path>.+)$")),
    # New or retargeted symlink, reported as "link -> target"
    (ActionKind.CREATE_SYMLINK, re.compile(r"^" + UPDATE_TYPES + r"L" + ATTRIBUTES + r" (?P<path>.+?) -> (?P<target>.*)$")),
    (ActionKind.CREATE_FILE, re.compile(r"^" + UPDATE_TYPES + r"f\+{7,9} (?P<path>.+)$")),
    (ActionKind.MODIFY_FILE, re.compile(r"^" + UPDATE_TYPES + r"[fdLDS]" + ATTRIBUTES + r" (?P<path>.+)$")),
)


def classify_line(line):
    """
        Classifies one line of itemized output.

        :param str line: A line of rsync output, with or without its line ending.

        :return: A PendingChange, or None when the line does not describe a change.
    """

    line = line.rstrip("\r\n")

    for kind, pattern in ITEMIZE_PATTERNS:

        match = pattern.match(line)
        if not match:
            continue

        path = match.group("path")

        # A trailing "/" marks a directory whatever the code says
        if path.endswith("/"):
            return PendingChange(ActionKind.DIRECTORY_MARKER, path)

        if kind is ActionKind.CREATE_SYMLINK:
            return PendingChange(kind, path, match.group("target"))

        return PendingChange(kind, path)

    return None


def classify_changes(output):
    """
        Classifies every line of itemized output, keeping the order rsync printed them in.

        :param str output: The whole stdout of an rsync run.

        :return: The list of PendingChange, directory markers included.
    """

    ret_val = []

    for line in output.splitlines():

        change = classify_line(line)
        if change is not None:
            ret_val.append(change)

    return ret_val


def diffable(changes):
    """
        :return: The changes that carry content, i.e. everything but directory markers.
    """

    return [change for change in changes if not change.is_directory]
