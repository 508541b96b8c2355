#!/usr/bin/env python3

"""
    This python file builds the rsync filter rules of a transfer. rsync evaluates filter rules in order and the first
    matching rule wins, so the order of the returned list matters:

        1. The project ignore file, so its "+" rules can win over the built-in excludes.
        2. The built-in excludes followed by the user ignore list.
        3. The path restriction, when one is given.

    Once rsync excludes a directory it never looks inside it. To sync a single file deep in the tree, each of its
    ancestors must be included on its own while their other contents stay excluded:

        path=src/app/main.py

        + /src/app/main.py
        + /src/app
        + /src
        - /src/app/main.py/*
        - /src/app/*
        - /src/*
        - /*
"""

import glob
import os

from dataclasses import dataclass

from rsync_deployer.init_file_parser.init_file_parser import CONFIG_FILE_NAME, IGNORE_FILE_NAME

DEFAULT_EXCLUDES = (".git", ".svn", ".hg", ".DS_Store")


@dataclass(frozen=True)
class Include:
    path: str

    def to_arg(self):
        return "--include={}".format(self.path)


@dataclass(frozen=True)
class Exclude:
    pattern: str

    def to_arg(self):
        return "--exclude={}".format(self.pattern)


@dataclass(frozen=True)
class ReferenceIgnoreFile:
    path: str

    def to_arg(self):
        return "--filter=merge {}".format(self.path)


CATCH_ALL = Exclude("/*")


def default_excludes(options):
    """
        :return: The excludes every transfer carries. The backup root is excluded when it lies in the synced tree so
                 that --delete never removes it.
    """

    ret_val = list(DEFAULT_EXCLUDES) + ["/" + CONFIG_FILE_NAME, "/" + IGNORE_FILE_NAME]

    if options.backups_enabled and not options.backup_path.startswith("/"):
        ret_val.append("/" + options.backup_path.strip("/"))

    return ret_val


def expand_restriction(restriction, project_root, cwd=None):
    """
        Expands the wildcards of a space separated restriction against the local filesystem.

        :param str restriction: One or more paths, relative to cwd, possibly containing wildcards.
        :param str project_root: The root of the project, the results are made relative to it.
        :param str cwd: The directory relative entries are resolved from, defaults to the current directory.

        :return: The matching paths relative to the project root, in the order they were given. Entries outside the
                 project root are dropped.
    """

    ret_val = []
    cwd = cwd or os.getcwd()
    root = os.path.abspath(project_root)

    for entry in restriction.split():

        pattern = os.path.join(cwd, os.path.expanduser(entry))
        for match in sorted(glob.glob(pattern)):

            relative = os.path.relpath(os.path.abspath(match), root)
            if relative == os.curdir or relative.startswith(os.pardir):
                continue

            relative = relative.replace(os.sep, "/")
            if relative not in ret_val:
                ret_val.append(relative)

    return ret_val


def build_restriction_rules(relative_paths, project_root):
    """
        Builds the include/exclude chain restricting a transfer to relative_paths. A path with N levels yields N
        includes and N excludes, and the chain ends with a single catch-all exclude. An empty list yields only the
        catch-all, i.e. an empty transfer.

        :param list relative_paths: Paths relative to the project root, as returned by expand_restriction().
        :param str project_root: The root of the project, used to tell directories from files.

        :return: The ordered list of rules.
    """

    includes = []
    excludes = []

    for relative in relative_paths:

        level = relative.strip("/")
        is_dir = os.path.isdir(os.path.join(project_root, level))

        # The entry itself; a directory keeps all of its contents
        includes.append(Include("/{}/***".format(level) if is_dir else "/" + level))
        excludes.append(Exclude("/{}/*".format(level)))

        level = os.path.dirname(level)
        while level:
            includes.append(Include("/" + level))
            excludes.append(Exclude("/{}/*".format(level)))
            level = os.path.dirname(level)

    ret_val = []
    for rule in includes + excludes:
        if rule not in ret_val:
            ret_val.append(rule)

    ret_val.append(CATCH_ALL)

    return ret_val


def build_filter_rules(options, cwd=None):
    """
        Builds every filter rule of a transfer.

        :param EffectiveOptions options: The options of the invocation.
        :param str cwd: The directory the restriction path is relative to.

        :return: The ordered list of Include, Exclude and ReferenceIgnoreFile rules.
    """

    ret_val = []

    if os.path.isfile(options.ignore_file):
        ret_val.append(ReferenceIgnoreFile(options.ignore_file))

    for pattern in default_excludes(options) + list(options.ignore):
        ret_val.append(Exclude(pattern))

    if options.path.strip():
        relative_paths = expand_restriction(options.path, options.project_root, cwd=cwd)
        ret_val += build_restriction_rules(relative_paths, options.project_root)

    return ret_val


def to_rsync_args(rules):

    return [rule.to_arg() for rule in rules]
