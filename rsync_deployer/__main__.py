#!/usr/bin/env python3

"""
    This python file holds the command line of the rsync_deployer. The deployer keeps a local project in sync with a
    directory on a server through rsync, shows what a push would change as a diff, and keeps a dated backup plus a
    patch of everything a push overwrites.

        rsync-deploy push env=production
        rsync-deploy diff path="src/*.py" --no-color
        rsync-deploy backups:purge backup_retention="2 weeks"

    The project is configured by a deploy.json found in the current directory or one of its parents. Run 'init' to
    write a template.
"""

import argparse
import os
import sys

from rsync_deployer.deployment.deployment import Deployment
from rsync_deployer.errors import DeployerError, RemoteOperationFailed, UserCancelled
from rsync_deployer.init_file_parser.init_file_parser import CLI_OPTION_KEYS, InitFileParser, write_templates
from rsync_deployer.process_runner.process_runner import ProcessRunner
from rsync_deployer.ssh_agent.ssh_agent import SSHAgent
from rsync_deployer.terminal.terminal import Terminal

__version__ = "1.0.0"

COMMANDS = ("init", "console", "diff", "pull", "push", "backups:list", "backups:purge")

EPILOG = "options: " + ", ".join("{}=<value>".format(key) for key in CLI_OPTION_KEYS)


def parse_option(argument):
    """
        argparse type of the key=value options.

        :return: A (key, value) tuple.
    """

    key, separator, value = argument.partition("=")
    if not separator:
        raise argparse.ArgumentTypeError("[{}] is not a key=value option".format(argument))
    if key not in CLI_OPTION_KEYS:
        raise argparse.ArgumentTypeError("Unknown option [{}]".format(key))

    return key, value


def build_parser():

    parser = argparse.ArgumentParser(prog="rsync-deploy", epilog=EPILOG,
                                     description="Deploy a project to a server with rsync.")

    parser.add_argument('command', choices=COMMANDS, help='The command to run')
    parser.add_argument('options', nargs='*', type=parse_option, metavar='key=value',
                        help='Options overriding deploy.json')
    parser.add_argument('--no-color', dest='no_color', action='store_true', required=False, default=False,
                        help='Turns off colored output')
    parser.add_argument('--version', action='version', version='%(prog)s {}'.format(__version__))

    return parser


def run_command(deployment, command):

    if command == "console":
        deployment.console()
    elif command == "diff":
        deployment.diff()
    elif command == "pull":
        deployment.pull()
    elif command == "push":
        deployment.push()
    elif command == "backups:list":
        deployment.list_backups()
    elif command == "backups:purge":
        deployment.purge_backups()


def init(terminal, directory):

    written = write_templates(directory)
    for path in written:
        terminal.emit("Created {}".format(path), "success")

    if not written:
        terminal.warn("deploy.json and .deployignore already exist in {}".format(directory))

    return 0


def main(argv=None, cwd=None):

    # intermixed, so that --no-color may come anywhere among the key=value options
    args = build_parser().parse_intermixed_args(argv)
    cwd = cwd or os.getcwd()

    terminal = Terminal(colorize=not args.no_color)
    ssh_agent = None

    try:

        if args.command == "init":
            return init(terminal, cwd)

        overrides = dict(args.options)
        overrides["colorize"] = not args.no_color

        options = InitFileParser(start_dir=cwd).resolve(overrides)
        terminal = Terminal(colorize=options.colorize, debug=options.debug)
        terminal.debug_print("Project root: {}".format(options.project_root))

        ssh_agent = SSHAgent(options.server, method=options.method, become=options.become,
                             debug_print=terminal.debug_print)
        deployment = Deployment(options, ProcessRunner(debug_print=terminal.debug_print), ssh_agent, terminal,
                                cwd=cwd)

        run_command(deployment, args.command)

    except (UserCancelled, KeyboardInterrupt):
        terminal.emit()
        terminal.emit("Cancelled.", "warning")
        return 0

    except RemoteOperationFailed as e:
        terminal.error(str(e))
        if e.output:
            terminal.emit(e.output)
        return 1

    except DeployerError as e:
        terminal.error(str(e))
        return 1

    finally:
        if ssh_agent is not None:
            ssh_agent.close()

    return 0


if __name__ == "__main__":

    sys.exit(main())
