"""Tests for credential collection."""

from unittest import mock

import pytest
from pydantic import ValidationError

from provision.errors import CredentialsError
from provision.models import PlatformFamily
from provision.services.credentials import (
    DEFAULT_DB_USER,
    Credentials,
    gather_credentials,
)

FULL_ENV = {
    "PROVISION_MYSQL_ROOT_PASSWORD": "rootpw",
    "PROVISION_ADMIN_PASSWORD": "adminpw",
    "PROVISION_DB_USER": "era_db",
    "PROVISION_DB_PASSWORD": "dbpw",
}


class TestGatherCredentials:
    """Tests for gather_credentials."""

    def test_from_environment(self) -> None:
        prompt = mock.Mock()
        creds = gather_credentials(PlatformFamily.DEBIAN, env=FULL_ENV, prompt=prompt)
        assert creds.mysql_root == "rootpw"
        assert creds.admin_password.get_secret_value() == "adminpw"
        assert creds.db_user == "era_db"
        assert creds.db_password.get_secret_value() == "dbpw"
        prompt.assert_not_called()

    def test_missing_non_interactive(self) -> None:
        env = {k: v for k, v in FULL_ENV.items() if k != "PROVISION_ADMIN_PASSWORD"}
        with pytest.raises(CredentialsError, match="PROVISION_ADMIN_PASSWORD"):
            gather_credentials(PlatformFamily.DEBIAN, non_interactive=True, env=env)

    def test_default_db_user_non_interactive(self) -> None:
        env = {k: v for k, v in FULL_ENV.items() if k != "PROVISION_DB_USER"}
        creds = gather_credentials(PlatformFamily.RHEL, non_interactive=True, env=env)
        assert creds.db_user == DEFAULT_DB_USER

    def test_invalid_db_user_from_env(self) -> None:
        env = {**FULL_ENV, "PROVISION_DB_USER": "era-user; DROP"}
        with pytest.raises(CredentialsError, match="alphanumeric"):
            gather_credentials(PlatformFamily.DEBIAN, env=env)

    def test_prompts_hidden_with_confirmation(self) -> None:
        prompt = mock.Mock(side_effect=["rootpw", "adminpw", "bad-name", "era_db", "dbpw"])
        creds = gather_credentials(PlatformFamily.DEBIAN, env={}, prompt=prompt)

        assert creds.db_user == "era_db"
        assert creds.mysql_root == "rootpw"
        secret_calls = [c for c in prompt.call_args_list if c.kwargs.get("hide_input")]
        assert len(secret_calls) == 3
        assert all(c.kwargs["confirmation_prompt"] for c in secret_calls)

    def test_windows_needs_no_mysql_root(self) -> None:
        prompt = mock.Mock(side_effect=["adminpw", "dbpw"])
        creds = gather_credentials(PlatformFamily.WINDOWS, env={}, prompt=prompt)
        assert creds.mysql_root_password is None
        assert creds.mysql_root == ""
        assert prompt.call_count == 2


class TestCredentialsModel:
    """Tests for the Credentials model."""

    def test_secrets_hidden_in_repr(self) -> None:
        creds = Credentials(admin_password="adminpw", db_password="dbpw")
        assert "adminpw" not in repr(creds)
        assert "dbpw" not in creds.model_dump_json()

    def test_db_user_validated(self) -> None:
        with pytest.raises(ValidationError):
            Credentials(admin_password="a", db_password="b", db_user="bad name")
