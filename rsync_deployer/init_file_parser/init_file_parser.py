#!/usr/bin/env python3

"""
    This python file holds the InitFileParser. It finds the deploy.json of the project, validates it and resolves the
    options of one invocation out of three layers, the last one winning:

        - The top-level keys of deploy.json.
        - The keys of the named environment selected with env=<name>, if any.
        - The key=value overrides given on the command line.

    The result is an EffectiveOptions object which is never modified afterwards.
"""

import json
import os

from dataclasses import dataclass, replace

from schema import And, Optional, Or, Schema, SchemaError

from rsync_deployer.errors import ConfigurationInvalid, ConfigurationMissing, EnvironmentUndefined

CONFIG_FILE_NAME = "deploy.json"
IGNORE_FILE_NAME = ".deployignore"

SERVER_CFG_KEY = "server"
REMOTE_PATH_CFG_KEY = "remote_path"
AFTER_CFG_KEY = "after"
METHOD_CFG_KEY = "method"
RSYNC_PATH_CFG_KEY = "rsync_path"
LABEL_CFG_KEY = "label"
IGNORE_CFG_KEY = "ignore"
BECOME_CFG_KEY = "become"
WEBHOOK_URL_CFG_KEY = "webhook_url"
BACKUP_PATH_CFG_KEY = "backup_path"
BACKUP_RETENTION_CFG_KEY = "backup_retention"
PAGINATE_CFG_KEY = "paginate"

# Keys accepted as key=value on the command line
CLI_OPTION_KEYS = (
    "label", "env", "method", "become", "command", "path", "remote_path", "rsync_path", "ignore", "webhook_url",
    "diff", "backup_path", "backup_retention", "debug",
)

BOOLEAN_OPTION_KEYS = ("diff", "debug", "colorize", "paginate")

TRUE_STRINGS = ("1", "true", "yes", "on")
FALSE_STRINGS = ("0", "false", "no", "off", "")

DEFAULT_BACKUP_PATH = ".backups"
DEFAULT_BACKUP_RETENTION = "30 days"
DEFAULT_METHOD = "ssh"
DEFAULT_RSYNC_PATH = "rsync"

NON_EMPTY_STR = And(str, len)

ENVIRONMENT_KEYS_VALIDATION = {
    Optional(SERVER_CFG_KEY): NON_EMPTY_STR,
    Optional(REMOTE_PATH_CFG_KEY): NON_EMPTY_STR,
    Optional(AFTER_CFG_KEY): str,
    Optional(METHOD_CFG_KEY): NON_EMPTY_STR,
    Optional(RSYNC_PATH_CFG_KEY): NON_EMPTY_STR,
    Optional(LABEL_CFG_KEY): str,
    Optional(IGNORE_CFG_KEY): [str],
    Optional(BECOME_CFG_KEY): str,
    Optional(WEBHOOK_URL_CFG_KEY): str,
    Optional(BACKUP_PATH_CFG_KEY): Or(str, bool),
    Optional(BACKUP_RETENTION_CFG_KEY): str,
    Optional(PAGINATE_CFG_KEY): bool,
}

CFG_FILE_VALIDATION = Schema({
    **ENVIRONMENT_KEYS_VALIDATION,
    # Every other key holding an object is a named environment
    Optional(str): ENVIRONMENT_KEYS_VALIDATION,
})

CONFIG_TEMPLATE = {
    SERVER_CFG_KEY: "user@example.com",
    REMOTE_PATH_CFG_KEY: "/var/www/example",
    AFTER_CFG_KEY: "",
    LABEL_CFG_KEY: "example",
    IGNORE_CFG_KEY: ["node_modules", "*.log"],
    "production": {
        REMOTE_PATH_CFG_KEY: "/var/www/example-production",
    },
}

IGNORE_TEMPLATE = """\
# rsync filter rules, evaluated before the built-in excludes.
# "- pattern" excludes, "+ pattern" includes.
- /tmp/
- *.swp
"""


@dataclass(frozen=True)
class EffectiveOptions:
    """
        The options of one invocation, resolved once and passed to every part of the deployer.
    """
    project_root: str
    server: str = ""
    remote_path: str = ""
    path: str = ""
    ignore: tuple = ()
    backup_path: str = DEFAULT_BACKUP_PATH
    backup_retention: str = DEFAULT_BACKUP_RETENTION
    become: str = ""
    after: str = ""
    webhook_url: str = ""
    label: str = ""
    env: str = ""
    method: str = DEFAULT_METHOD
    rsync_path: str = DEFAULT_RSYNC_PATH
    command: str = ""
    diff: bool = False
    colorize: bool = True
    paginate: bool = True
    debug: bool = False

    @property
    def backups_enabled(self):
        return bool(self.backup_path)

    @property
    def config_file(self):
        return os.path.join(self.project_root, CONFIG_FILE_NAME)

    @property
    def ignore_file(self):
        return os.path.join(self.project_root, IGNORE_FILE_NAME)

    @property
    def remote_backup_root(self):
        """
            The directory holding the backup epochs on the server. A relative backup_path lives inside remote_path.
        """
        if self.backup_path.startswith("/"):
            return self.backup_path.rstrip("/")

        return "{}/{}".format(self.remote_path.rstrip("/"), self.backup_path.strip("/"))


def to_bool(value):
    """
        Converts an option value to a boolean.

        :param value: A bool or one of the strings in TRUE_STRINGS or FALSE_STRINGS.

        :return: The boolean value.
    """

    if isinstance(value, bool):
        return value

    lowered = str(value).strip().lower()
    if lowered in TRUE_STRINGS:
        return True
    if lowered in FALSE_STRINGS:
        return False

    raise ConfigurationInvalid("[{}] is not a boolean value".format(value))


def find_config_file(start_dir):
    """
        Walks up from start_dir until a directory holding a deploy.json is found.

        :param str start_dir: The directory the search starts from.

        :return: The absolute path of the configuration file.
    """

    directory = os.path.abspath(start_dir)

    while True:

        candidate = os.path.join(directory, CONFIG_FILE_NAME)
        if os.path.isfile(candidate):
            return candidate

        parent = os.path.dirname(directory)
        if parent == directory:
            raise ConfigurationMissing(os.path.abspath(start_dir), CONFIG_FILE_NAME)

        directory = parent


class InitFileParser():

    def __init__(self, start_dir=None, config_path=None):

        self.start_dir = start_dir or os.getcwd()
        self.config_path = config_path or find_config_file(self.start_dir)
        self.config = self.parse_init_file()

    def parse_init_file(self):
        """
            Loads and validates deploy.json.

            :return: The validated configuration as a dictionary.
        """

        try:
            with open(self.config_path) as init_json_file:
                init_json = json.load(init_json_file)

        except ValueError as e:
            raise ConfigurationInvalid("{} is not valid JSON: {}".format(self.config_path, e))

        try:
            return CFG_FILE_VALIDATION.validate(init_json)

        except SchemaError as e:
            raise ConfigurationInvalid("{} is not in the expected format: {}".format(self.config_path, e))

    @property
    def project_root(self):
        return os.path.dirname(os.path.abspath(self.config_path))

    @property
    def environments(self):
        return sorted(key for key, value in self.config.items() if isinstance(value, dict))

    def resolve(self, overrides=None):
        """
            Merges the top-level keys, the selected environment and the command line overrides.

            :param dict overrides: key=value pairs from the command line, plus colorize/paginate flags.

            :return: The EffectiveOptions of this invocation.
        """

        overrides = dict(overrides or {})

        values = {key: value for key, value in self.config.items() if not isinstance(value, dict)}

        env = overrides.get("env", "")
        if env:
            if env not in self.environments:
                raise EnvironmentUndefined(env, self.environments)
            values.update(self.config[env])

        values.update(overrides)

        if not values.get(SERVER_CFG_KEY):
            raise ConfigurationInvalid("No server configured in {}".format(self.config_path))
        if not values.get(REMOTE_PATH_CFG_KEY):
            raise ConfigurationInvalid("No remote_path configured in {}".format(self.config_path))

        return build_options(self.project_root, values)


def build_options(project_root, values):
    """
        Turns a flat dictionary of option values into EffectiveOptions, converting types on the way.
    """

    options = EffectiveOptions(project_root=project_root)
    changes = {}

    for key, value in values.items():

        if key == IGNORE_CFG_KEY:
            if isinstance(value, str):
                value = [entry.strip() for entry in value.split(",")]
            changes[key] = tuple(entry for entry in value if entry)

        elif key == BACKUP_PATH_CFG_KEY:
            # backup_path=false turns backups off
            if isinstance(value, bool) or str(value).strip().lower() in FALSE_STRINGS + TRUE_STRINGS:
                changes[key] = DEFAULT_BACKUP_PATH if to_bool(value) else ""
            else:
                changes[key] = str(value)

        elif key in BOOLEAN_OPTION_KEYS:
            changes[key] = to_bool(value)

        elif key in EffectiveOptions.__dataclass_fields__:
            changes[key] = str(value)

    return replace(options, **changes)


def write_templates(directory):
    """
        Writes a deploy.json and a .deployignore template into directory. Existing files are left alone.

        :return: The list of files that were written.
    """

    ret_val = []

    config_path = os.path.join(directory, CONFIG_FILE_NAME)
    if not os.path.exists(config_path):
        with open(config_path, "w") as config_file:
            json.dump(CONFIG_TEMPLATE, config_file, indent=4)
            config_file.write("\n")
        ret_val.append(config_path)

    ignore_path = os.path.join(directory, IGNORE_FILE_NAME)
    if not os.path.exists(ignore_path):
        with open(ignore_path, "w") as ignore_file:
            ignore_file.write(IGNORE_TEMPLATE)
        ret_val.append(ignore_path)

    return ret_val
