"""Installation credentials.

Credentials come from environment variables first; anything missing is
prompted for with hidden input and confirmation. They are held as
``SecretStr`` so they never show up in reprs, logs or persisted state,
and they reach child processes only through environment variables, stdin,
or arguments the runner redacts.
"""

import os
import re
from collections.abc import Callable, Mapping

import typer
from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator

from ..errors import CredentialsError
from ..logging import get_logger
from ..models import PlatformFamily

log = get_logger("credentials")

ENV_MYSQL_ROOT_PASSWORD = "PROVISION_MYSQL_ROOT_PASSWORD"
ENV_ADMIN_PASSWORD = "PROVISION_ADMIN_PASSWORD"
ENV_DB_USER = "PROVISION_DB_USER"
ENV_DB_PASSWORD = "PROVISION_DB_PASSWORD"

DEFAULT_DB_USER = "era_user"
DB_USER_RE = re.compile(r"^[A-Za-z0-9_]+$")

Prompt = Callable[..., str]


class Credentials(BaseModel):
    """Secrets needed by a recipe.

    Attributes:
        admin_password: ESET PROTECT administrator (console) password.
        db_password: Password of the ESET database user.
        db_user: ESET database user name (Linux only).
        mysql_root_password: MySQL root password (Linux only).
    """

    model_config = ConfigDict(frozen=True)

    admin_password: SecretStr = Field(description="Console administrator password")
    db_password: SecretStr = Field(description="Database user password")
    db_user: str = Field(default=DEFAULT_DB_USER, description="Database user name")
    mysql_root_password: SecretStr | None = Field(default=None, description="MySQL root password")

    @field_validator("db_user")
    @classmethod
    def _valid_db_user(cls, value: str) -> str:
        if not DB_USER_RE.match(value):
            raise ValueError("Username must contain only alphanumeric characters and underscores")
        return value

    @property
    def mysql_root(self) -> str:
        """Plain MySQL root password (empty when not applicable)."""
        return self.mysql_root_password.get_secret_value() if self.mysql_root_password else ""


def _secret(
    env: Mapping[str, str],
    name: str,
    label: str,
    non_interactive: bool,
    prompt: Prompt,
) -> SecretStr:
    value = env.get(name)
    if value:
        return SecretStr(value)
    if non_interactive:
        raise CredentialsError(f"{label} is required: set {name}")
    # Hidden input, must be confirmed; empty input re-prompts
    value = prompt(f"Enter {label}", hide_input=True, confirmation_prompt=True)
    return SecretStr(value)


def _db_user(env: Mapping[str, str], non_interactive: bool, prompt: Prompt) -> str:
    value = env.get(ENV_DB_USER)
    if value is not None or non_interactive:
        value = value or DEFAULT_DB_USER
        if not DB_USER_RE.match(value):
            raise CredentialsError(
                f"{ENV_DB_USER} must contain only alphanumeric characters and underscores"
            )
        return value
    while True:
        value = prompt("Enter ESET database username", default=DEFAULT_DB_USER)
        if DB_USER_RE.match(value):
            return value
        typer.echo("Username must contain only alphanumeric characters and underscores", err=True)


def gather_credentials(
    family: PlatformFamily,
    non_interactive: bool = False,
    env: Mapping[str, str] | None = None,
    prompt: Prompt = typer.prompt,
) -> Credentials:
    """Collect the credentials a recipe needs.

    Args:
        family: Target platform (Windows needs no MySQL root password or DB user)
        non_interactive: Fail instead of prompting for missing values
        env: Environment to read (defaults to ``os.environ``)
        prompt: Prompt function (``typer.prompt`` signature)

    Returns:
        Validated credentials

    Raises:
        CredentialsError: If a value is missing in non-interactive mode or invalid
    """
    env = os.environ if env is None else env
    windows = family == PlatformFamily.WINDOWS

    mysql_root = None
    if not windows:
        mysql_root = _secret(
            env, ENV_MYSQL_ROOT_PASSWORD, "MySQL root password", non_interactive, prompt
        )
    admin = _secret(
        env, ENV_ADMIN_PASSWORD, "ESET PROTECT administrator password", non_interactive, prompt
    )
    db_user = DEFAULT_DB_USER if windows else _db_user(env, non_interactive, prompt)
    db_password = _secret(
        env, ENV_DB_PASSWORD, "ESET database user password", non_interactive, prompt
    )

    log.info("Credentials collected (database user: %s)", db_user)
    return Credentials(
        admin_password=admin,
        db_password=db_password,
        db_user=db_user,
        mysql_root_password=mysql_root,
    )
