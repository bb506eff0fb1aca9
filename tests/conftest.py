from __future__ import annotations

from pathlib import Path

import pytest

_BACKEND_ENV_VARS = (
    "GOOGLE_API_KEY",
    "GEMINI_API_KEY",
    "SUPABASE_URL",
    "SUPABASE_SERVICE_ROLE_KEY",
    "SUPABASE_JWKS_URL",
    "SUPABASE_JWT_AUDIENCE",
    "SUPABASE_JWT_ISSUER",
    "JOB_BACKEND",
    "CREDIT_BACKEND",
    "EMBEDDING_BACKEND",
    "OWNER_EMAILS",
    "REFUND_CREDITS_ON_FAILURE",
    "RUN_EMBEDDED_WORKER",
    "WORKER_CONCURRENCY",
)


@pytest.fixture(autouse=True)
def offline_environment(
    request: pytest.FixtureRequest,
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
) -> None:
    # Integration tests read the real backend settings.
    if request.node.get_closest_marker("integration") is not None:
        return
    for name in _BACKEND_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("UPLOAD_DIR", str(tmp_path / "uploads"))
    monkeypatch.setenv("SUMMARY_RATE_LIMIT_PAUSE_SECONDS", "0")
