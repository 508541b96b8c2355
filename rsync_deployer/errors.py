#!/usr/bin/env python3

"""
    Exceptions raised by the rsync_deployer. Everything deriving from DeployerError is reported by main() and ends the
    invocation with a non-zero exit code, except UserCancelled which is a normal way for a run to end.
"""


class DeployerError(Exception):
    """
        Base class of every error the deployer knows how to report.
    """


class ConfigurationMissing(DeployerError):

    def __init__(self, start_dir, file_name):
        self.start_dir = start_dir
        self.file_name = file_name
        super().__init__("No {} found in {} or any of its parents. Run 'init' to create one.".format(file_name, start_dir))


class ConfigurationInvalid(DeployerError):
    pass


class EnvironmentUndefined(DeployerError):

    def __init__(self, env, available):
        self.env = env
        self.available = available
        known = ", ".join(available) if available else "none"
        super().__init__("Environment [{}] is not defined in the configuration (known: {})".format(env, known))


class RetentionDateInvalid(DeployerError):

    def __init__(self, value):
        self.value = value
        super().__init__("Invalid backup retention [{}]; expected '<number> <unit>[s] [ago]'".format(value))


class RemoteOperationFailed(DeployerError):
    """
        A transfer, shell or archive process exited with a non-zero status. The captured ProcessResult is kept so that
        the caller can show what the process printed.
    """

    def __init__(self, description, result):
        self.description = description
        self.result = result
        super().__init__("{} failed with exit code {}".format(description, result.exit_code))

    @property
    def output(self):
        return "\n".join(part for part in (self.result.stdout_text, self.result.stderr_text) if part.strip())


class NetworkUnavailable(DeployerError):
    pass


class UserCancelled(Exception):
    """
        Raised when the user declines a confirmation or interrupts the run. Not an error.
    """
