"""Ready-made health probes for the dependent services.

A probe is a zero-arg callable returning True when the service is usable.
Probes may raise; the monitor records the exception message as the error.
"""

import os
from collections.abc import Callable, Mapping

import requests
from anthropic import Anthropic
from supabase import create_client

from pr_review_guard.execution.degradation import ServiceName

DEFAULT_SOURCE_HOST_URL = "https://api.github.com"


def http_probe(
    url: str,
    timeout: float = 5.0,
    headers: dict[str, str] | None = None,
) -> Callable[[], bool]:
    """Probe that treats any non-5xx response as healthy."""

    def probe() -> bool:
        response = requests.get(url, headers=headers, timeout=timeout)
        return response.status_code < 500

    return probe


def anthropic_probe(api_key: str) -> Callable[[], bool]:
    """Probe that lists one model, which needs a working key and API."""

    def probe() -> bool:
        client = Anthropic(api_key=api_key)
        client.models.list(limit=1)
        return True

    return probe


def supabase_probe(url: str, key: str, table: str = "audit_events") -> Callable[[], bool]:
    """Probe that reads a single row id from the audit table."""

    def probe() -> bool:
        client = create_client(url, key)
        client.table(table).select("id").limit(1).execute()
        return True

    return probe


def default_probes(env: Mapping[str, str] | None = None) -> dict[ServiceName, Callable[[], bool]]:
    """Build probes for every service configured in the environment.

    Services without configuration get no probe and stay unavailable.
    """
    env = os.environ if env is None else env
    probes: dict[ServiceName, Callable[[], bool]] = {}

    anthropic_key = env.get("ANTHROPIC_API_KEY")
    if anthropic_key:
        probes[ServiceName.LANGUAGE_MODEL] = anthropic_probe(anthropic_key)

    source_host_url = env.get("SOURCE_HOST_URL", DEFAULT_SOURCE_HOST_URL)
    token = env.get("GITHUB_TOKEN")
    headers = {"Authorization": f"Bearer {token}"} if token else None
    probes[ServiceName.SOURCE_HOST] = http_probe(source_host_url, headers=headers)

    email_url = env.get("EMAIL_HEALTH_URL")
    if email_url:
        probes[ServiceName.EMAIL] = http_probe(email_url)

    supabase_url = env.get("SUPABASE_URL")
    supabase_key = env.get("SUPABASE_KEY")
    if supabase_url and supabase_key:
        probes[ServiceName.STORAGE] = supabase_probe(supabase_url, supabase_key)

    return probes
