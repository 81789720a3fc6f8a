"""Tests for CredentialStore."""

from __future__ import annotations

from dataclasses import replace
from pathlib import Path

import pytest

from mail_tasker.core.exceptions import AccountNotFound
from mail_tasker.core.models import AccountCredential, TokenRefresh
from mail_tasker.storage.credentials import CredentialStore


class TestAddAccount:
    def test_add_and_get(self, tmp_db_path: Path, credential: AccountCredential) -> None:
        with CredentialStore(tmp_db_path) as store:
            stored = store.add_account(credential)

        assert stored == credential

    def test_relink_keeps_refresh_token_when_none_given(
        self, tmp_db_path: Path, credential: AccountCredential
    ) -> None:
        with CredentialStore(tmp_db_path) as store:
            store.add_account(credential)
            stored = store.add_account(
                replace(credential, access_token="relinked", refresh_token=None)
            )

        assert stored.access_token == "relinked"
        assert stored.refresh_token == "refresh-1"

    def test_get_missing_raises(self, tmp_db_path: Path) -> None:
        with CredentialStore(tmp_db_path) as store:
            with pytest.raises(AccountNotFound):
                store.get("nope")


class TestListAccounts:
    def test_filters_by_user_and_active(
        self, tmp_db_path: Path, credential: AccountCredential
    ) -> None:
        with CredentialStore(tmp_db_path) as store:
            store.add_account(credential)
            store.add_account(
                replace(credential, account_id="acct-2", email="b@example.com", is_active=False)
            )
            store.add_account(
                replace(credential, account_id="acct-3", user_id="user-2", email="c@example.com")
            )

            assert {a.account_id for a in store.list_accounts()} == {"acct-1", "acct-2", "acct-3"}
            assert {a.account_id for a in store.list_accounts("user-1")} == {"acct-1", "acct-2"}
            assert [a.account_id for a in store.list_active("user-1")] == ["acct-1"]


class TestUpdateTokens:
    def test_refresh_without_rotation_keeps_refresh_token(
        self, tmp_db_path: Path, credential: AccountCredential
    ) -> None:
        with CredentialStore(tmp_db_path) as store:
            store.add_account(credential)
            store.save_refresh("acct-1", TokenRefresh(access_token="new-access"))
            stored = store.get("acct-1")

        assert stored.access_token == "new-access"
        assert stored.refresh_token == "refresh-1"

    def test_rotated_refresh_token_is_saved(
        self, tmp_db_path: Path, credential: AccountCredential
    ) -> None:
        with CredentialStore(tmp_db_path) as store:
            store.add_account(credential)
            store.update_tokens("acct-1", "new-access", "refresh-2")

            assert store.get("acct-1").refresh_token == "refresh-2"

    def test_unknown_account_raises(self, tmp_db_path: Path) -> None:
        with CredentialStore(tmp_db_path) as store:
            with pytest.raises(AccountNotFound):
                store.update_tokens("nope", "token")
