#!/usr/bin/env python3

"""
    This python file posts the record of a push to the configured webhook. The webhook is best effort: a failure is
    reported as a warning and never fails the deployment.
"""

import getpass

import requests

from rsync_deployer.errors import NetworkUnavailable

WEBHOOK_TIMEOUT = 10


def build_payload(options, patch_path, patch, files_changed):

    return {
        "username": getpass.getuser(),
        "label": options.label,
        "environment": options.env,
        "server": options.server,
        "diff_file": patch_path,
        "diff_contents": patch,
        "files_changed": files_changed,
    }


def post_payload(url, payload):
    """
        Posts the payload form-encoded.

        :raises NetworkUnavailable: When the request fails or the hook answers with an error status.
    """

    try:
        response = requests.post(url, data=payload, timeout=WEBHOOK_TIMEOUT)
        response.raise_for_status()

    except requests.exceptions.RequestException as e:
        raise NetworkUnavailable("Webhook {} failed: {}".format(url, e))

    return response


def notify(options, terminal, patch_path, patch, files_changed):
    """
        Sends the record of a push when a webhook_url is configured.

        :return: T/F based on whether the webhook was notified.
    """

    if not options.webhook_url:
        return False

    payload = build_payload(options, patch_path, patch, files_changed)

    try:
        post_payload(options.webhook_url, payload)

    except NetworkUnavailable as e:
        terminal.warn(str(e))
        return False

    terminal.debug_print("Webhook {} notified".format(options.webhook_url))
    return True
