import os
import sys

import pytest


def pytest_configure(config):
    config.addinivalue_line(
        "markers",
        "slow: marks tests as slow (deselect with '-m \"not slow\"')",
    )


# Ensure project root is on sys.path so tests run without an editable install
ROOT = os.path.dirname(os.path.abspath(__file__))
PROJ = os.path.abspath(os.path.join(ROOT, os.pardir))
if PROJ not in sys.path:
    sys.path.insert(0, PROJ)


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch):
    # Keep developer credentials and telemetry settings out of test runs
    for key in ("OPENAI_API_KEY", "GROQ_API_KEY", "DEEPSEEK_API_KEY", "TRAYCER_API_KEY", "TRAYCER_TELEMETRY_PATH"):
        monkeypatch.delenv(key, raising=False)
