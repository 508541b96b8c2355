#!/usr/bin/env python3

"""
    This python file holds the ssh_agent used to run commands on the deployment server. It follows the same
    run(command, args) contract as the local ProcessRunner and returns ProcessResults, which lets the deployment
    pipeline treat local and remote processes alike.

    The connection is opened on first use, so commands that never touch the server never connect. Settings from
    ~/.ssh/config (HostName, User, Port, IdentityFile) apply to the configured server just like they do for rsync.
"""

import os
import posixpath
import shlex
import stat
import time

import paramiko

from rsync_deployer.errors import RemoteOperationFailed
from rsync_deployer.process_runner.process_runner import ProcessResult

SSH_CONFIG_PATH = "~/.ssh/config"
DEFAULT_SSH_PORT = 22
READ_SIZE = 32768
POLL_INTERVAL = 0.01


def parse_server(server, method=""):
    """
        Splits a server given as [user@]host into its parts and applies ~/.ssh/config and the port of the remote shell
        method ("ssh -p 2222") on top.

        :param str server: The server option.
        :param str method: The remote shell used by rsync.

        :return: A dictionary holding hostname, username, port and key_filename.
    """

    username = None
    host = server
    if "@" in server:
        username, host = server.rsplit("@", 1)

    ret_val = {"hostname": host, "username": username, "port": DEFAULT_SSH_PORT, "key_filename": None}

    config_path = os.path.expanduser(SSH_CONFIG_PATH)
    if os.path.isfile(config_path):
        ssh_config = paramiko.SSHConfig.from_path(config_path)
        host_config = ssh_config.lookup(host)
        ret_val["hostname"] = host_config.get("hostname", host)
        if username is None:
            ret_val["username"] = host_config.get("user")
        if "port" in host_config:
            ret_val["port"] = int(host_config["port"])
        if "identityfile" in host_config:
            ret_val["key_filename"] = [os.path.expanduser(path) for path in host_config["identityfile"]]

    method_args = shlex.split(method or "")
    if "-p" in method_args:
        index = method_args.index("-p")
        if index + 1 < len(method_args):
            ret_val["port"] = int(method_args[index + 1])

    return ret_val


def build_remote_command(command, args=(), cwd=None):
    """
        Builds the shell line run on the server. Every argument is quoted.

        :param str command: The executable.
        :param list args: Its arguments.
        :param str cwd: The directory to run in.

        :return: The command line as a string.
    """

    line = " ".join(shlex.quote(part) for part in [command] + list(args))

    return wrap_remote_line(line, cwd=cwd)


def wrap_remote_line(line, cwd=None, become=None):

    if cwd:
        line = "cd {} && {}".format(shlex.quote(cwd), line)

    if become:
        line = "sudo -u {} sh -c {}".format(shlex.quote(become), shlex.quote(line))

    return line


def read_channel(channel):
    """
        Reads stdout and stderr of a channel side by side until the command exits. A command writing a lot to one
        stream blocks once that stream's window is full, so neither is read to the end before the other.

        :return: The (stdout, stderr) bytes.
    """

    out = []
    err = []

    while True:

        if channel.recv_ready():
            out.append(channel.recv(READ_SIZE))
        elif channel.recv_stderr_ready():
            err.append(channel.recv_stderr(READ_SIZE))
        elif channel.exit_status_ready():
            break
        else:
            time.sleep(POLL_INTERVAL)

    return b"".join(out), b"".join(err)


class SSHAgent():
    """
        This is the ssh_agent class. It is used to send commands to the deployment server via ssh.
    """

    def __init__(self, server, method="", become="", debug_print=None):

        self.server = server
        self.method = method
        self.become = become or None
        self.debug_print = debug_print

        self.ssh = None
        self.sftp = None

    def close(self):

        if self.sftp is not None:
            self.sftp.close()
            self.sftp = None

        if self.ssh is not None:
            if self.debug_print: self.debug_print("Closing SSH connection to {}".format(self.server))
            self.ssh.close()
            self.ssh = None

    def run(self, command, args=(), input=None, cwd=None):
        """
            Runs a command on the server and waits for it to finish.

            :param str command: The executable.
            :param list args: Its arguments, quoted before they are sent.
            :param bytes input: Optional data written to the stdin of the command.
            :param str cwd: Optional directory to run the command in.

            :return: The ProcessResult of the command.
        """

        return self.run_line(build_remote_command(command, args, cwd=cwd), input=input)

    def run_shell(self, script, cwd=None):
        """
            Runs a user supplied shell line (after hook, console command) as is.
        """

        return self.run_line(script, input=None, cwd=cwd)

    def run_line(self, line, input=None, cwd=None):

        line = wrap_remote_line(line, cwd=cwd, become=self.become)
        if self.debug_print: self.debug_print("Running on {}: {}".format(self.server, line))

        stdin, stdout, stderr = self._client().exec_command(line)

        if input is not None:
            stdin.write(input)
        stdin.channel.shutdown_write()

        out, err = read_channel(stdout.channel)
        exit_code = stdout.channel.recv_exit_status()

        return ProcessResult(stdout=out, stderr=err, exit_code=exit_code)

    def check(self, description, result):

        if not result.ok:
            raise RemoteOperationFailed(description, result)

        return result

    def fetch_archive(self, directory, paths):
        """
            Bundles files of the server into one tar stream. Paths missing on the server are left out of the archive.

            :param str directory: The directory the paths are relative to.
            :param list paths: The files to bundle.

            :return: The tar archive as bytes.
        """

        args = ["-cf", "-", "--ignore-failed-read", "--"] + list(paths)
        result = self.run("tar", args, cwd=directory)

        return self.check("Fetching {} file(s) from {}".format(len(paths), self.server), result).stdout

    def list_directories(self, directory):
        """
            Lists the directories directly under a directory of the server.

            :return: The sorted directory names, empty when the directory does not exist.
        """

        try:
            entries = self._sftp_client().listdir_attr(directory)

        except IOError:
            return []

        return sorted(entry.filename for entry in entries if stat.S_ISDIR(entry.st_mode))

    def file_exists_on_server(self, file_path):
        """
            This method will check if the file path given as a parameter exists on the ssh server.

            :return: T/F based on if the path exists or not.
        """

        try:
            self._sftp_client().stat(file_path)

        except IOError:
            return False

        return True

    def append_file(self, file_path, data):
        """
            Appends data to a file of the server, creating its directory when needed. Goes through the shell so that
            become applies.
        """

        self.check("Creating {}".format(posixpath.dirname(file_path)),
                   self.run("mkdir", ["-p", "--", posixpath.dirname(file_path)]))
        self.check("Writing {}".format(file_path), self.run("sh", ["-c", 'cat >> "$1"', "sh", file_path], input=data))

    def remove_tree(self, path):

        self.check("Removing {}".format(path), self.run("rm", ["-rf", "--", path]))

    # ////////////////////// Helpers ////////////////////// #

    def _client(self):

        if self.ssh is None:
            self._ssh_connect()

        return self.ssh

    def _sftp_client(self):

        if self.sftp is None:
            self.sftp = self._client().open_sftp()

        return self.sftp

    def _ssh_connect(self):
        """
            This method will connect to the server using the system host keys and the ssh agent / default keys of the
            local user.
        """

        settings = parse_server(self.server, self.method)

        if self.debug_print: self.debug_print("SSH Connecting to: Host-{}, Username-{}, Port-{}".format(
            settings["hostname"], settings["username"], settings["port"]))

        client = paramiko.SSHClient()
        client.load_system_host_keys()

        try:
            client.connect(**settings)

        except (paramiko.SSHException, OSError) as e:
            client.close()
            # Same exit code ssh itself uses for connection errors
            raise RemoteOperationFailed("Connecting to {}".format(self.server),
                                        ProcessResult(stderr=str(e).encode(), exit_code=255))

        self.ssh = client

        if self.debug_print: self.debug_print("Connected")
