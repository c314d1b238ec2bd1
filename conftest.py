"""Root conftest: test environment, in place before chat_client.config is imported."""
from __future__ import annotations

import os
from pathlib import Path

_TEST_DEFAULTS = {
    "WS_URL": "ws://chat.test/ws/chat",
    "ACCESS_TOKEN": "",
    "LOG_LEVEL": "DEBUG",
}


def _read_env_file(path: Path) -> dict[str, str]:
    values: dict[str, str] = {}
    if not path.exists():
        return values
    for line in path.read_text().splitlines():
        line = line.strip()
        if line and not line.startswith("#"):
            key, _, value = line.partition("=")
            values[key.strip()] = value.strip()
    return values


# .env.test wins over the defaults; the real environment wins over both.
_env = {**_TEST_DEFAULTS, **_read_env_file(Path(__file__).resolve().parent / ".env.test")}
for _key, _value in _env.items():
    os.environ.setdefault(_key, _value)
