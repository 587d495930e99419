"""Tests for service health probes."""

from unittest.mock import MagicMock, patch

import pytest

from pr_review_guard.execution.degradation import ServiceName
from pr_review_guard.execution.probes import (
    DEFAULT_SOURCE_HOST_URL,
    anthropic_probe,
    default_probes,
    http_probe,
    supabase_probe,
)


@pytest.mark.parametrize("status,expected", [(200, True), (401, True), (404, True), (503, False)])
@patch("pr_review_guard.execution.probes.requests.get")
def test_http_probe_status_codes(mock_get, status, expected):
    mock_get.return_value = MagicMock(status_code=status)

    probe = http_probe("https://status.example.com", timeout=2.0, headers={"X": "1"})

    assert probe() is expected
    mock_get.assert_called_once_with(
        "https://status.example.com", headers={"X": "1"}, timeout=2.0
    )


@patch("pr_review_guard.execution.probes.requests.get")
def test_http_probe_propagates_errors(mock_get):
    """The monitor records probe exceptions, so probes let them through."""
    mock_get.side_effect = ConnectionError("refused")

    with pytest.raises(ConnectionError):
        http_probe("https://status.example.com")()


@patch("pr_review_guard.execution.probes.Anthropic")
def test_anthropic_probe(mock_anthropic_class):
    mock_client = MagicMock()
    mock_anthropic_class.return_value = mock_client

    assert anthropic_probe("fake-key")() is True
    mock_anthropic_class.assert_called_once_with(api_key="fake-key")
    mock_client.models.list.assert_called_once_with(limit=1)


@patch("pr_review_guard.execution.probes.create_client")
def test_supabase_probe(mock_create_client):
    mock_client = MagicMock()
    mock_create_client.return_value = mock_client

    assert supabase_probe("https://test.supabase.co", "test-key")() is True
    mock_client.table.assert_called_once_with("audit_events")


def test_default_probes_minimal_env():
    """Only the source host is probed when nothing else is configured."""
    probes = default_probes({})

    assert list(probes) == [ServiceName.SOURCE_HOST]


@patch("pr_review_guard.execution.probes.requests.get")
def test_default_probes_source_host_uses_token(mock_get):
    mock_get.return_value = MagicMock(status_code=200)

    probes = default_probes({"GITHUB_TOKEN": "ghp_test"})
    probes[ServiceName.SOURCE_HOST]()

    args, kwargs = mock_get.call_args
    assert args[0] == DEFAULT_SOURCE_HOST_URL
    assert kwargs["headers"] == {"Authorization": "Bearer ghp_test"}


def test_default_probes_full_env():
    probes = default_probes({
        "ANTHROPIC_API_KEY": "sk-test",
        "SOURCE_HOST_URL": "https://git.example.com/api",
        "EMAIL_HEALTH_URL": "https://mail.example.com/health",
        "SUPABASE_URL": "https://test.supabase.co",
        "SUPABASE_KEY": "test-key",
    })

    assert set(probes) == set(ServiceName)
