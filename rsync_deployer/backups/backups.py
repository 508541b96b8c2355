#!/usr/bin/env python3

"""
    This python file holds everything about the backups kept on the server.

    Every push picks one BackupEpoch, a directory named after the time of the push under the backup root:

        /var/www/site/.backups/20261018143012/

    rsync moves every file the push overwrites or deletes into it (--backup-dir). Once the transfer is done, a patch
    describing the push is appended to deploy.patch inside the same directory. Together they allow a push to be undone
    by hand. Epochs older than the retention are purged after each push.
"""

import datetime
import re

from dataclasses import dataclass

from rsync_deployer.change_classifier.change_classifier import ActionKind, diffable
from rsync_deployer.diff_renderer.diff_renderer import read_local, read_snapshot, render_unit
from rsync_deployer.errors import RetentionDateInvalid

EPOCH_FORMAT = "%Y%m%d%H%M%S"
EPOCH_NAME_PATTERN = re.compile(r"^\d{14}$")
PATCH_FILE_NAME = "deploy.patch"

# Months and years are fixed lengths, not calendar arithmetic
UNIT_SECONDS = {
    "second": 1,
    "minute": 60,
    "hour": 60 * 60,
    "day": 24 * 60 * 60,
    "week": 7 * 24 * 60 * 60,
    "month": 30 * 24 * 60 * 60,
    "year": 365 * 24 * 60 * 60,
}

RETENTION_PATTERN = re.compile(r"^\s*(?P<number>\d+)\s*(?P<unit>" + "|".join(UNIT_SECONDS) + r")s?(\s+ago)?\s*$",
                               re.IGNORECASE)


@dataclass(frozen=True)
class BackupEpoch:
    root: str
    name: str

    @classmethod
    def create(cls, options, now=None):
        """
            Names the epoch of a push. Nothing is created on the server, rsync does that when it backs up a file.
        """
        now = now or datetime.datetime.now()
        return cls(options.remote_backup_root, now.strftime(EPOCH_FORMAT))

    @property
    def path(self):
        return "{}/{}".format(self.root, self.name)

    @property
    def patch_path(self):
        return "{}/{}".format(self.path, PATCH_FILE_NAME)


def parse_retention(retention):
    """
        Parses a retention such as "30 days", "1 week ago" or "6 months".

        :param str retention: The retention string.

        :return: The retention as a datetime.timedelta.
    """

    match = RETENTION_PATTERN.match(retention or "")
    if not match:
        raise RetentionDateInvalid(retention)

    seconds = int(match.group("number")) * UNIT_SECONDS[match.group("unit").lower()]

    return datetime.timedelta(seconds=seconds)


def retention_cutoff(retention, now=None):

    now = now or datetime.datetime.now()
    return now - parse_retention(retention)


def parse_epoch_name(name):
    """
        :return: The datetime an epoch directory is named after, or None for any other name.
    """

    if not EPOCH_NAME_PATTERN.match(name):
        return None

    try:
        return datetime.datetime.strptime(name, EPOCH_FORMAT)

    except ValueError:
        return None


def select_expired(names, cutoff):
    """
        :param list names: Directory names found under the backup root.
        :param datetime cutoff: Epochs strictly older than this are expired.

        :return: The sorted names of the expired epochs. Names that are not epochs are ignored.
    """

    ret_val = []

    for name in sorted(names):
        epoch_time = parse_epoch_name(name)
        if epoch_time is not None and epoch_time < cutoff:
            ret_val.append(name)

    return ret_val


def patch_targets(changes, options):
    """
        :return: The paths a patch is made of, every file the transfer touched except the backups themselves.
    """

    backup_prefix = options.backup_path.strip("/") + "/"

    ret_val = []
    for change in sorted(diffable(changes), key=lambda c: c.path):
        if change.path == PATCH_FILE_NAME or change.path.endswith("/" + PATCH_FILE_NAME):
            continue
        if change.path.startswith(backup_prefix):
            continue
        ret_val.append(change)

    return ret_val


def render_patch(changes, local_root, backup_snapshot):
    """
        Renders the patch of a push: the backed up version of each file against the working tree. A file missing from
        the backup was created by the push, a file missing locally was deleted by it.

        :param list changes: The changes of the real transfer, from patch_targets().
        :param str local_root: The project root.
        :param dict backup_snapshot: {path: FileSnapshot} of the epoch directory.

        :return: The patch text.
    """

    units = []

    for change in changes:

        old = backup_snapshot.get(change.path)
        new = None if change.kind is ActionKind.DELETE else read_local(local_root, change.path)
        if old is None and new is None:
            continue

        units.append(render_unit(change.path, old, new))

    return "".join(unit.text for unit in units)


class BackupCoordinator():

    def __init__(self, options, ssh_agent, terminal):

        self.options = options
        self.ssh_agent = ssh_agent
        self.terminal = terminal

    def generate_patch(self, epoch, changes):
        """
            Appends the patch of a finished push to the epoch directory.

            :param BackupEpoch epoch: The epoch of the push.
            :param list changes: The changes itemized by the real transfer.

            :return: The patch text, empty when the push changed no file.
        """

        targets = patch_targets(changes, self.options)
        if not targets:
            self.terminal.debug_print("Nothing to patch")
            return ""

        backed_up = [change.path for change in targets if change.kind is not ActionKind.CREATE_FILE]
        archive = b""
        if backed_up and self.ssh_agent.file_exists_on_server(epoch.path):
            archive = self.ssh_agent.fetch_archive(epoch.path, backed_up)

        patch = render_patch(targets, self.options.project_root, read_snapshot(archive))
        if patch:
            self.ssh_agent.append_file(epoch.patch_path, patch.encode("utf-8"))
            self.terminal.emit("Patch written to {}".format(epoch.patch_path), "success")

        return patch

    def list_epochs(self):
        """
            :return: A list of (name, datetime) of every epoch directory, oldest first.
        """

        ret_val = []

        for name in self.ssh_agent.list_directories(self.options.remote_backup_root):
            epoch_time = parse_epoch_name(name)
            if epoch_time is not None:
                ret_val.append((name, epoch_time))

        return ret_val

    def list_backups(self):

        epochs = self.list_epochs()
        if not epochs:
            self.terminal.emit("No backups in {}".format(self.options.remote_backup_root))
            return epochs

        self.terminal.emit("Backups in {}:".format(self.options.remote_backup_root), "title")
        for name, epoch_time in epochs:

            epoch = BackupEpoch(self.options.remote_backup_root, name)
            has_patch = self.ssh_agent.file_exists_on_server(epoch.patch_path)
            self.terminal.emit("  {}  {}{}".format(name, epoch_time.strftime("%Y-%m-%d %H:%M:%S"),
                                                  "  (patch)" if has_patch else ""))

        return epochs

    def purge(self, now=None):
        """
            Removes every epoch older than the retention.

            :return: The names of the removed epochs.
        """

        cutoff = retention_cutoff(self.options.backup_retention, now)
        self.terminal.debug_print("Purging backups older than {}".format(cutoff.strftime("%Y-%m-%d %H:%M:%S")))

        names = [name for name, _ in self.list_epochs()]
        expired = select_expired(names, cutoff)

        for name in expired:
            self.ssh_agent.remove_tree(BackupEpoch(self.options.remote_backup_root, name).path)
            self.terminal.emit("Removed backup {}".format(name))

        if not expired:
            self.terminal.debug_print("No backup older than {}".format(self.options.backup_retention))

        return expired
