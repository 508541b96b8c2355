#!/usr/bin/env python3

"""
    This python file holds the Terminal, the only place the deployer talks to the user from. It prints styled lines,
    asks yes/no questions, prints timestamped debug lines when debugging is on and pipes long output through a pager.
"""

import datetime
import os
import shlex
import subprocess
import sys

from colorama import Fore, Style, just_fix_windows_console

from rsync_deployer.errors import UserCancelled

STYLES = {
    "info": "",
    "success": Fore.GREEN,
    "warning": Fore.YELLOW,
    "error": Fore.RED,
    "title": Style.BRIGHT,
    "command": Fore.CYAN,
    "debug": Style.DIM,
}

DEFAULT_PAGER = "less -FRX"


class Terminal():

    def __init__(self, colorize=True, debug=False, stream=None, input_func=input):

        self.stream = stream if stream is not None else sys.stdout
        self.colorize = colorize and self.is_tty()
        self.debug = debug
        self.input_func = input_func

        if self.colorize:
            just_fix_windows_console()

    def is_tty(self):

        isatty = getattr(self.stream, "isatty", None)
        return bool(isatty and isatty())

    def style(self, text, style):

        prefix = STYLES.get(style, "")
        if not self.colorize or not prefix:
            return text

        return prefix + text + Style.RESET_ALL

    def emit(self, msg="", style="info"):

        print(self.style(msg, style), file=self.stream)

    def warn(self, msg):

        self.emit("!!! WARNING: {} !!!".format(msg), "warning")

    def error(self, msg):

        self.emit("!!! ERROR: {} !!!".format(msg), "error")

    def debug_print(self, msg):

        if self.debug:
            current_time = datetime.datetime.now()
            current_timestamp = current_time.strftime("%Y/%m/%d/%H/%M/%S")
            self.emit(f"{current_timestamp}: {msg}", "debug")

    def ask(self, question, default=False):
        """
            Asks a yes/no question. An interrupt or the end of the input cancels the run.

            :param str question: The question, without the answer hint.
            :param bool default: The answer used when the user only presses enter.

            :return: T/F based on the answer.
        """

        hint = "[Y/n]" if default else "[y/N]"

        while True:

            try:
                answer = self.input_func(self.style("{} {} ".format(question, hint), "title"))

            except (EOFError, KeyboardInterrupt):
                self.emit()
                raise UserCancelled()

            answer = answer.strip().lower()
            if not answer:
                return default
            if answer in ("y", "yes"):
                return True
            if answer in ("n", "no"):
                return False

            self.emit("Please answer 'y' or 'n'.", "warning")

    def page(self, text, paginate=True):
        """
            Shows text through a pager when paginating is enabled and the output is a terminal, otherwise writes it
            as is. The text itself is never modified.
        """

        if not paginate or not self.is_tty():
            self.stream.write(text)
            self.stream.flush()
            return

        pager = shlex.split(os.environ.get("PAGER") or DEFAULT_PAGER)

        try:
            process = subprocess.Popen(pager, stdin=subprocess.PIPE)

        except FileNotFoundError:
            self.stream.write(text)
            self.stream.flush()
            return

        try:
            process.communicate(text.encode("utf-8"))

        except BrokenPipeError:
            pass
