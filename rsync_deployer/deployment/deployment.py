#!/usr/bin/env python3

"""
    This python file holds the Deployment, which runs the commands of the deployer on top of rsync and the ssh agent.

    A push goes through these states:

        IDLE -> DRY_RUN_SHOWN -> TRANSFER_RUNNING -> BACKUP_MATERIALIZED -> PATCH_GENERATED -> PURGE_COMPLETE
             -> AFTER_HOOK_RUN -> DONE

    Declining the confirmation or interrupting the run ends in CANCELLED. A failure once the transfer is running is
    reported and stops the push, nothing done before it is rolled back. An invalid backup_retention only skips the
    purge: the push still runs its after hook and webhook.
"""

import shlex

from enum import Enum

from rsync_deployer.backups.backups import BackupCoordinator, BackupEpoch, parse_retention
from rsync_deployer.change_classifier.change_classifier import ActionKind, classify_changes, diffable
from rsync_deployer.diff_renderer.diff_renderer import DiffRenderer
from rsync_deployer.errors import RemoteOperationFailed, RetentionDateInvalid, UserCancelled
from rsync_deployer.filters.filters import build_filter_rules
from rsync_deployer.rsync_command.rsync_command import PULL, PUSH, build_rsync_command
from rsync_deployer.ssh_agent.ssh_agent import wrap_remote_line
from rsync_deployer.webhook import webhook


class PushState(Enum):
    IDLE = "idle"
    DRY_RUN_SHOWN = "dry_run_shown"
    CANCELLED = "cancelled"
    TRANSFER_RUNNING = "transfer_running"
    BACKUP_MATERIALIZED = "backup_materialized"
    PATCH_GENERATED = "patch_generated"
    PURGE_COMPLETE = "purge_complete"
    AFTER_HOOK_RUN = "after_hook_run"
    DONE = "done"


CHANGE_STYLES = {
    ActionKind.DELETE: "error",
    ActionKind.CREATE_FILE: "success",
    ActionKind.CREATE_SYMLINK: "success",
    ActionKind.MODIFY_FILE: "warning",
    ActionKind.DIRECTORY_MARKER: "info",
}

CHANGE_LABELS = {
    ActionKind.DELETE: "deleted",
    ActionKind.CREATE_FILE: "new",
    ActionKind.CREATE_SYMLINK: "symlink",
    ActionKind.MODIFY_FILE: "modified",
    ActionKind.DIRECTORY_MARKER: "directory",
}


class Deployment():

    def __init__(self, options, process_runner, ssh_agent, terminal, now=None, cwd=None):

        self.options = options
        self.process_runner = process_runner
        self.ssh_agent = ssh_agent
        self.terminal = terminal
        self.now = now
        self.cwd = cwd

        self.state = PushState.IDLE
        self.history = [PushState.IDLE]

        self.backups = BackupCoordinator(options, ssh_agent, terminal)
        self.diff_renderer = DiffRenderer(options, ssh_agent, terminal)

    # ////////////////////// Commands ////////////////////// #

    def diff(self):
        """
            Shows what a push would change on the server, as a diff.

            :return: The diff text.
        """

        changes = self.pending_changes(PUSH)
        if not changes:
            self.terminal.emit("No differences.", "success")
            return ""

        return self.diff_renderer.show(changes)

    def pull(self):
        """
            Copies the server tree over the local tree after confirmation.

            :return: The list of changes applied locally.
        """

        rules = build_filter_rules(self.options, cwd=self.cwd)
        changes = self.pending_changes(PULL, rules=rules)
        if not changes:
            self.terminal.emit("Already up to date.", "success")
            return []

        self.show_changes(changes)
        if not self.terminal.ask("Pull {} change(s) from {}?".format(len(changes), self.target())):
            raise UserCancelled()

        result = self.rsync(PULL, rules, dry_run=False)
        applied = classify_changes(result.stdout_text)
        self.terminal.emit("Pulled {} change(s).".format(len(applied)), "success")

        return applied

    def push(self):
        """
            Runs a whole push: preview, confirmation, transfer, patch, purge, after hook and webhook.

            :return: The final PushState.
        """

        try:
            self._push()

        except (UserCancelled, KeyboardInterrupt):
            self.transition(PushState.CANCELLED)
            raise UserCancelled()

        return self.state

    def console(self):
        """
            Runs command on the server when one is given, otherwise opens an interactive shell in remote_path.

            :return: The exit code of the command or shell.
        """

        if self.options.command:

            result = self.ssh_agent.run_shell(self.options.command, cwd=self.options.remote_path)
            self.print_result(result)
            if not result.ok:
                raise RemoteOperationFailed("Command [{}]".format(self.options.command), result)

            return result.exit_code

        method = shlex.split(self.options.method)
        line = wrap_remote_line('exec "${SHELL:-/bin/sh}" -l', cwd=self.options.remote_path,
                                become=self.options.become or None)

        exit_code = self.process_runner.interactive(method[0], method[1:] + ["-t", self.options.server, line])
        self.terminal.debug_print("Console exited with code {}".format(exit_code))

        return exit_code

    def list_backups(self):

        return self.backups.list_backups()

    def purge_backups(self):

        return self.backups.purge(now=self.now)

    # ////////////////////// Helpers ////////////////////// #

    def _push(self):

        epoch = BackupEpoch.create(self.options, self.now) if self.options.backups_enabled else None
        rules = build_filter_rules(self.options, cwd=self.cwd)

        purge = epoch is not None
        if purge:
            try:
                parse_retention(self.options.backup_retention)

            except RetentionDateInvalid as e:
                self.terminal.warn("{}. Old backups will not be purged.".format(e))
                purge = False

        changes = self.pending_changes(PUSH, rules=rules, backup_epoch=epoch)
        if not changes:
            self.terminal.emit("Already up to date.", "success")
            self.transition(PushState.DONE)
            return

        if self.options.diff:
            self.diff_renderer.show(changes)
        else:
            self.show_changes(changes)
        self.transition(PushState.DRY_RUN_SHOWN)

        if not self.terminal.ask("Push {} change(s) to {}?".format(len(changes), self.target())):
            raise UserCancelled()

        self.transition(PushState.TRANSFER_RUNNING)
        result = self.rsync(PUSH, rules, dry_run=False, backup_epoch=epoch)
        applied = classify_changes(result.stdout_text)
        self.terminal.emit("Pushed {} change(s).".format(len(applied)), "success")

        patch = ""
        if epoch is not None:
            self.transition(PushState.BACKUP_MATERIALIZED)
            patch = self.backups.generate_patch(epoch, applied)
            self.transition(PushState.PATCH_GENERATED)
            if purge:
                self.backups.purge(now=self.now)
                self.transition(PushState.PURGE_COMPLETE)

        self.run_after_hook()
        self.transition(PushState.AFTER_HOOK_RUN)

        webhook.notify(self.options, self.terminal, epoch.patch_path if epoch and patch else "", patch,
                       len(diffable(applied)))
        self.transition(PushState.DONE)

    def transition(self, state):

        self.terminal.debug_print("Push state: {} -> {}".format(self.state.value, state.value))
        self.state = state
        self.history.append(state)

    def target(self):

        return "{}:{}".format(self.options.server, self.options.remote_path)

    def rsync(self, direction, rules, dry_run=False, backup_epoch=None):
        """
            Runs rsync and fails when it does.

            :return: The ProcessResult of rsync.
        """

        command = build_rsync_command(direction, self.options, rules, dry_run=dry_run, backup_epoch=backup_epoch)
        result = self.process_runner.run(command[0], command[1:])

        if not result.ok:
            raise RemoteOperationFailed("rsync {}{}".format(direction, " (dry run)" if dry_run else ""), result)

        return result

    def pending_changes(self, direction, rules=None, backup_epoch=None):
        """
            Runs rsync in dry run mode and classifies what it would do.

            :return: The list of PendingChange, directory markers included.
        """

        if rules is None:
            rules = build_filter_rules(self.options, cwd=self.cwd)

        result = self.rsync(direction, rules, dry_run=True, backup_epoch=backup_epoch)
        changes = classify_changes(result.stdout_text)
        self.terminal.debug_print("{} pending change(s)".format(len(changes)))

        return changes

    def show_changes(self, changes):

        for change in changes:

            line = "{:>10}  {}".format(CHANGE_LABELS[change.kind], change.path)
            if change.target is not None:
                line += " -> " + change.target
            self.terminal.emit(line, CHANGE_STYLES[change.kind])

    def run_after_hook(self):

        if not self.options.after:
            return

        self.terminal.emit("Running after hook: {}".format(self.options.after), "command")
        result = self.ssh_agent.run_shell(self.options.after, cwd=self.options.remote_path)
        self.print_result(result)

        if not result.ok:
            raise RemoteOperationFailed("After hook [{}]".format(self.options.after), result)

    def print_result(self, result):

        if result.stdout:
            self.terminal.emit(result.stdout_text.rstrip("\n"))
        if result.stderr:
            self.terminal.emit(result.stderr_text.rstrip("\n"), "warning")
