"""Shared pytest fixtures for Anotatudo tests."""
import sys
sys.dont_write_bytecode = True

import pytest  # noqa: E402


@pytest.fixture(autouse=True)
def _reset_webhook_singletons():
    """Reset the webhook module's tasks client, dispatcher and closed flag between tests.

    Both are module-level singletons built lazily from the environment.
    Without this reset a client or dispatcher injected by one test would
    leak into the next.
    """
    import anotatudo.api.routes.webhook as webhook_module

    webhook_module.startup()
    webhook_module._set_tasks_client(None)
    webhook_module._set_dispatcher(None)
    yield
    webhook_module.shutdown()


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    """Keep developer shell settings out of the tests."""
    for name in (
        "WHATSAPP_VERIFY_TOKEN",
        "WHATSAPP_APP_SECRET",
        "WHATSAPP_TOKEN",
        "WHATSAPP_PHONE_NUMBER_ID",
        "WHATSAPP_GRAPH_API_VERSION",
        "ASSISTANT_BACKEND",
        "ASSISTANT_URL",
        "ASSISTANT_TIMEOUT_SECONDS",
        "TASKS_BACKEND",
        "TASKS_MAX_WORKERS",
        "TASKS_MAX_PENDING",
        "MEDIA_SCRATCH_DIR",
        "MEDIA_TIMEOUT_SECONDS",
        "RATE_LIMIT_MAX_REQUESTS",
        "RATE_LIMIT_WINDOW_SECONDS",
        "IDENTITY_MAX_ATTEMPTS",
        "APP_TIMEZONE",
    ):
        monkeypatch.delenv(name, raising=False)
