"""Runtime configuration read from the environment.

Values come from process environment variables, optionally seeded from a
``.env`` file. Nothing is read at import time: call
``AnchorSettings.from_env()`` once at startup and pass the result down.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from dotenv import load_dotenv

from transparency.errors import ValidationError
from transparency.models.anchor import LOCAL_LOG_TARGET_ID
from transparency.net import RetryPolicy

DEFAULT_REGISTRY_URL = "http://issuer-registry:4030"
DEFAULT_FORENSICS_URL = "http://forensics-api:4010"
DEFAULT_DB_PATH = Path("data") / "anchors.db"


@dataclass(frozen=True)
class AnchorSettings:
    """Everything the anchoring pipeline needs to reach its collaborators."""
    registry_url: str = DEFAULT_REGISTRY_URL
    registry_page_limit: int = 10_000
    forensics_url: str = DEFAULT_FORENSICS_URL
    public_log_url: Optional[str] = None
    db_path: Path = DEFAULT_DB_PATH
    local_log_path: Optional[Path] = None
    auto_target: str = LOCAL_LOG_TARGET_ID
    http_timeout_seconds: float = 10.0
    http_retries: int = 2
    http_backoff_seconds: float = 0.5
    instance_id: str = "anchor-1"
    log_level: str = "INFO"

    @property
    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(retries=self.http_retries, backoff_seconds=self.http_backoff_seconds)

    @classmethod
    def from_env(
        cls,
        env_file: Optional[Path] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> AnchorSettings:
        """Build settings from the environment.

        ``env_file`` is loaded first (existing variables win). Passing
        ``environ`` reads from that mapping instead of os.environ.
        """
        if environ is None:
            if env_file is not None:
                load_dotenv(env_file)
            else:
                load_dotenv()
            environ = os.environ

        def get(name: str, default: Optional[str] = None) -> Optional[str]:
            value = environ.get(name)
            return value if value not in (None, "") else default

        local_log = get("ANCHOR_LOCAL_LOG_PATH")
        return cls(
            registry_url=get("REGISTRY_URL", DEFAULT_REGISTRY_URL),
            registry_page_limit=_int(get("REGISTRY_PAGE_LIMIT", "10000"), "REGISTRY_PAGE_LIMIT", minimum=1),
            forensics_url=get("FORENSICS_URL", DEFAULT_FORENSICS_URL),
            public_log_url=get("PUBLIC_LOG_URL"),
            db_path=Path(get("ANCHOR_DB_PATH", str(DEFAULT_DB_PATH))),
            local_log_path=Path(local_log) if local_log else None,
            auto_target=get("ANCHOR_AUTO_TARGET", LOCAL_LOG_TARGET_ID),
            http_timeout_seconds=_float(get("ANCHOR_HTTP_TIMEOUT", "10"), "ANCHOR_HTTP_TIMEOUT"),
            http_retries=_int(get("ANCHOR_HTTP_RETRIES", "2"), "ANCHOR_HTTP_RETRIES", minimum=0),
            http_backoff_seconds=_float(get("ANCHOR_HTTP_BACKOFF", "0.5"), "ANCHOR_HTTP_BACKOFF", minimum=0.0),
            instance_id=get("HOSTNAME", "anchor-1"),
            log_level=get("LOG_LEVEL", "INFO").upper(),
        )


def _int(raw: str, name: str, minimum: int) -> int:
    try:
        value = int(raw)
    except ValueError:
        raise ValidationError(f"{name} must be an integer, got {raw!r}") from None
    if value < minimum:
        raise ValidationError(f"{name} must be >= {minimum}, got {value}")
    return value


def _float(raw: str, name: str, minimum: float = 0.001) -> float:
    try:
        value = float(raw)
    except ValueError:
        raise ValidationError(f"{name} must be a number, got {raw!r}") from None
    if value < minimum:
        raise ValidationError(f"{name} must be >= {minimum}, got {value}")
    return value
