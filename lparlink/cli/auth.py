"""Credential callback for the CLI.

Environment variables take precedence so the CLI works headless::

    export LPARLINK_USERNAME=hscroot
    export LPARLINK_PASSWORD=...

Otherwise the user is prompted on the terminal (password input hidden).
"""

from __future__ import annotations

import os

import click

from lparlink.remote.session import CredentialRequest

USERNAME_ENV = "LPARLINK_USERNAME"
PASSWORD_ENV = "LPARLINK_PASSWORD"


def prompt_credentials(request: CredentialRequest) -> str | None:
    """Answer a credential request; None when the user aborts the prompt."""
    env_var = USERNAME_ENV if request.kind == "username" else PASSWORD_ENV
    if value := os.environ.get(env_var):
        return value
    try:
        return click.prompt(
            request.prompt,
            hide_input=request.kind == "password",
            err=True,
        )
    except click.Abort:
        return None
