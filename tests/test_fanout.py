"""Tests for AccountFanOut with mocked per-account clients."""

from __future__ import annotations

from dataclasses import replace
from unittest.mock import MagicMock

import pytest

from mail_tasker.core.exceptions import AuthExpired
from mail_tasker.core.gmail_client import GmailClient
from mail_tasker.core.models import AccountCredential
from mail_tasker.pipeline.fanout import AccountFanOut
from tests.helpers import make_message


def _account(account_id: str, *, active: bool = True) -> AccountCredential:
    return AccountCredential(
        account_id=account_id,
        user_id="user-1",
        email=f"{account_id}@example.com",
        access_token="token",
        refresh_token="refresh",
        display_name=account_id.upper(),
        is_active=active,
    )


def _factory(inbox: dict[str, list | Exception]) -> MagicMock:
    """Client factory whose clients return (or raise) the per-account inbox."""

    def build(account: AccountCredential) -> MagicMock:
        client = MagicMock(spec=GmailClient)
        result = inbox[account.account_id]
        if isinstance(result, Exception):
            client.list_messages.side_effect = result
        else:
            client.list_messages.return_value = result
        return client

    return MagicMock(side_effect=build)


class TestMerge:
    def test_interleaves_newest_first(self) -> None:
        factory = _factory(
            {
                "a": [make_message("a5", 5), make_message("a3", 3), make_message("a8", 8)],
                "b": [make_message("b7", 7), make_message("b1", 1)],
            }
        )
        fanout = AccountFanOut(factory)

        result = fanout.list_messages([_account("a"), _account("b")], max_results=10)

        assert [m.message_id for m in result.messages] == ["a8", "b7", "a5", "a3", "b1"]
        assert [m.account_id for m in result.messages] == ["a", "b", "a", "a", "b"]
        assert result.errors == []

    def test_truncates_after_merge(self) -> None:
        factory = _factory(
            {
                "a": [make_message("a8", 8), make_message("a5", 5), make_message("a1", 1)],
                "b": [make_message("b7", 7), make_message("b3", 3)],
            }
        )

        result = AccountFanOut(factory).list_messages(
            [_account("a"), _account("b")], max_results=3
        )

        assert [m.message_id for m in result.messages] == ["a8", "b7", "a5"]

    def test_ties_broken_by_message_id(self) -> None:
        factory = _factory({"a": [make_message("zz", 5)], "b": [make_message("aa", 5)]})

        result = AccountFanOut(factory).list_messages(
            [_account("a"), _account("b")], max_results=10
        )

        assert [m.message_id for m in result.messages] == ["aa", "zz"]

    def test_tags_messages_with_account(self) -> None:
        factory = _factory({"a": [make_message("m1")]})

        (tagged,) = AccountFanOut(factory).list_messages([_account("a")], 10).messages

        assert tagged.account_id == "a"
        assert tagged.account_email == "a@example.com"
        assert tagged.account_name == "A"

    def test_passes_query_and_limit_to_each_client(self) -> None:
        clients: list[MagicMock] = []
        inner = _factory({"a": [], "b": []})

        def build(account: AccountCredential) -> MagicMock:
            client = inner(account)
            clients.append(client)
            return client

        AccountFanOut(build).list_messages(
            [_account("a"), _account("b")], max_results=7, query="is:unread"
        )

        assert len(clients) == 2
        for client in clients:
            client.list_messages.assert_called_once_with("is:unread", 7)


class TestAccountSelection:
    def test_inactive_accounts_skipped(self) -> None:
        factory = _factory({"a": [make_message("m1")]})

        result = AccountFanOut(factory).list_messages(
            [_account("a"), _account("off", active=False)], 10
        )

        assert [m.message_id for m in result.messages] == ["m1"]
        assert [c.args[0].account_id for c in factory.call_args_list] == ["a"]

    def test_no_active_accounts(self) -> None:
        factory = _factory({})

        result = AccountFanOut(factory).list_messages([_account("off", active=False)], 10)

        assert result.messages == []
        assert result.errors == []
        factory.assert_not_called()


class TestFailures:
    def test_failed_account_reported_others_returned(self) -> None:
        factory = _factory(
            {
                "a": [make_message("m1", 1)],
                "b": AuthExpired("refresh rejected"),
            }
        )

        result = AccountFanOut(factory).list_messages([_account("a"), _account("b")], 10)

        assert [m.message_id for m in result.messages] == ["m1"]
        (error,) = result.errors
        assert error.account_id == "b"
        assert error.account_email == "b@example.com"
        assert isinstance(error.error, AuthExpired)

    @pytest.mark.parametrize("workers", [1, 4])
    def test_all_fail(self, workers: int) -> None:
        factory = _factory({"a": RuntimeError("x"), "b": RuntimeError("y")})

        result = AccountFanOut(factory, max_workers=workers).list_messages(
            [_account("a"), _account("b")], 10
        )

        assert result.messages == []
        assert sorted(e.account_id for e in result.errors) == ["a", "b"]

    def test_factory_error_is_account_error(self) -> None:
        factory = MagicMock(side_effect=ValueError("bad credential"))

        result = AccountFanOut(factory).list_messages([_account("a")], 10)

        assert isinstance(result.errors[0].error, ValueError)


def test_accounts_are_not_mutated() -> None:
    account = _account("a")
    snapshot = replace(account)
    AccountFanOut(_factory({"a": []})).list_messages([account], 10)
    assert account == snapshot
