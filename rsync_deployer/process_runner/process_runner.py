#!/usr/bin/env python3

"""
    This python file holds the process runner used to start the external tools the deployer depends on (rsync and
    ssh). Commands are always given as argument lists and are never run through a shell, so file names and option
    values containing shell metacharacters are passed through untouched.

    Remote commands go through the SSHAgent which follows the same run(command, args) contract, which lets the
    deployment pipeline be driven by fake runners in the tests.
"""

import subprocess

from dataclasses import dataclass


@dataclass(frozen=True)
class ProcessResult:
    """
        What a finished process left behind. stdout and stderr are kept as bytes because some of them are archives.
    """
    stdout: bytes = b""
    stderr: bytes = b""
    exit_code: int = 0

    @property
    def ok(self):
        return self.exit_code == 0

    @property
    def stdout_text(self):
        return self.stdout.decode("utf-8", errors="replace")

    @property
    def stderr_text(self):
        return self.stderr.decode("utf-8", errors="replace")


class ProcessRunner():
    """
        Runs local processes and captures their output.
    """

    def __init__(self, debug_print=None):

        self.debug_print = debug_print

    def run(self, command, args=(), input=None):
        """
            Runs a command to completion and captures stdout and stderr.

            :param str command: The executable to start.
            :param list args: The arguments given to the executable.
            :param bytes input: Optional data written to the stdin of the process.

            :return: The ProcessResult of the process.
        """

        argv = [command] + list(args)
        if self.debug_print: self.debug_print("Running: {}".format(" ".join(argv)))

        try:
            completed = subprocess.run(argv, input=input, stdout=subprocess.PIPE, stderr=subprocess.PIPE)

        except FileNotFoundError:
            return ProcessResult(stderr="{}: command not found".format(command).encode(), exit_code=127)

        return ProcessResult(stdout=completed.stdout, stderr=completed.stderr, exit_code=completed.returncode)

    def interactive(self, command, args=()):
        """
            Runs a command attached to the current terminal, used for the remote console.

            :return: The exit code of the process.
        """

        argv = [command] + list(args)
        if self.debug_print: self.debug_print("Running interactively: {}".format(" ".join(argv)))

        try:
            ret_val = subprocess.call(argv)

        except FileNotFoundError:
            ret_val = 127

        return ret_val
