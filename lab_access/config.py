"""Runtime configuration."""

from __future__ import annotations

import os
from dataclasses import dataclass, fields, replace
from typing import Any, Dict, Mapping, Optional

from dotenv import find_dotenv, load_dotenv

__all__ = ["AppConfig", "DEFAULT_CONFIG", "ENV_PREFIX"]

ENV_PREFIX = "LAB_ACCESS_"


@dataclass(frozen=True)
class AppConfig:
    """Addresses, endpoints and local paths used by the pipeline adapters."""

    sender_address: str = "labaccess@example.edu"
    sms_gateway: str = "5555550100@mms.att.net"
    output_dir: str = "./lab_access_output"
    calendar_path: Optional[str] = None
    badge_dir: Optional[str] = None
    outbox_dir: Optional[str] = None
    qr_service_url: str = "https://api.qrserver.com/v1/create-qr-code/"
    qr_size: int = 255
    eid_lookup_url: str = "https://utdirect.utexas.edu/webapps/eidlisting/eid_details?eid={eid}"
    smtp_host: str = "localhost"
    smtp_port: int = 587
    smtp_user: Optional[str] = None
    smtp_password: Optional[str] = None
    request_timeout: float = 30.0

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> AppConfig:
        """Build a config from ``LAB_ACCESS_*`` environment variables.

        Args:
            environ: Mapping to read from. Defaults to ``os.environ`` after
                loading a ``.env`` file found from the working directory.

        Returns:
            A config with every variable present overriding its default.
        """
        if environ is None:
            load_dotenv(find_dotenv(usecwd=True))
            environ = os.environ
        return DEFAULT_CONFIG.with_overrides(
            **{
                f.name: environ[ENV_PREFIX + f.name.upper()]
                for f in fields(cls)
                if ENV_PREFIX + f.name.upper() in environ
            }
        )

    # Unset paths live under output_dir
    @property
    def calendar_file(self) -> str:
        return self.calendar_path or os.path.join(self.output_dir, "calendar.ics")

    @property
    def badge_folder(self) -> str:
        return self.badge_dir or os.path.join(self.output_dir, "badges")

    @property
    def outbox_folder(self) -> str:
        return self.outbox_dir or os.path.join(self.output_dir, "outbox")

    def with_overrides(self, **overrides: Any) -> AppConfig:
        """Return a copy with non-None overrides applied and coerced to field types."""
        types: Dict[str, Any] = {f.name: f.type for f in fields(self)}
        coerced: Dict[str, Any] = {}
        for key, value in overrides.items():
            if value is None:
                continue
            if key not in types:
                raise KeyError(f"Unknown configuration key '{key}'")
            if types[key] in ("int", int):
                value = int(value)
            elif types[key] in ("float", float):
                value = float(value)
            coerced[key] = value
        return replace(self, **coerced)


DEFAULT_CONFIG = AppConfig()
