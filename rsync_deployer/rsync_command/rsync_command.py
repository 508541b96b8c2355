#!/usr/bin/env python3

"""
    This python file composes the rsync invocations of the deployer. Nothing is executed here, the functions only turn
    options into argument lists.

    Source and destination always end with exactly one "/": rsync copies the contents of "src/" but the directory
    itself for "src", which would nest the project one level too deep on the other side.
"""

import shlex

from rsync_deployer.filters.filters import to_rsync_args

PUSH = "push"
PULL = "pull"

RSYNC_EXECUTABLE = "rsync"
RSYNC_FLAGS = ("--archive", "--compress", "--delete", "--itemize-changes")


def with_trailing_slash(path):

    return path.rstrip("/") + "/"


def local_root(options):

    return with_trailing_slash(options.project_root)


def remote_root(options):

    return "{}:{}".format(options.server, with_trailing_slash(options.remote_path))


def remote_rsync_path(options):
    """
        :return: The rsync started on the server side, run through sudo when become is set.
    """

    rsync_path = options.rsync_path or RSYNC_EXECUTABLE
    if options.become:
        return "sudo -u {} {}".format(shlex.quote(options.become), rsync_path)

    return rsync_path


def build_rsync_args(direction, options, rules, dry_run=False, backup_epoch=None):
    """
        Builds the arguments of an rsync invocation.

        :param str direction: PUSH (local -> remote) or PULL (remote -> local).
        :param EffectiveOptions options: The options of the invocation.
        :param list rules: The filter rules, as built by build_filter_rules().
        :param bool dry_run: Only report what would change.
        :param BackupEpoch backup_epoch: Where overwritten and deleted remote files go on push. Ignored on pull.

        :return: The list of arguments, without the rsync executable itself.
    """

    if direction not in (PUSH, PULL):
        raise ValueError("Unknown transfer direction [{}]".format(direction))

    ret_val = list(RSYNC_FLAGS)

    if dry_run:
        ret_val.append("--dry-run")

    ret_val += ["-e", options.method]

    rsync_path = remote_rsync_path(options)
    if rsync_path != RSYNC_EXECUTABLE:
        ret_val.append("--rsync-path={}".format(rsync_path))

    # Pulling must never leave backups on the server
    if direction == PUSH and options.backups_enabled and backup_epoch is not None:
        ret_val += ["--backup", "--backup-dir={}".format(backup_epoch.path)]

    ret_val += to_rsync_args(rules)

    if direction == PUSH:
        ret_val += [local_root(options), remote_root(options)]
    else:
        ret_val += [remote_root(options), local_root(options)]

    return ret_val


def build_rsync_command(direction, options, rules, dry_run=False, backup_epoch=None):
    """
        :return: The full command line, executable first.
    """

    return [RSYNC_EXECUTABLE] + build_rsync_args(direction, options, rules, dry_run=dry_run, backup_epoch=backup_epoch)
