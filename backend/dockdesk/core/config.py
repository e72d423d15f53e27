"""Application configuration using pydantic-settings."""
from functools import lru_cache
from pathlib import Path
from typing import List, Tuple

from pydantic_settings import BaseSettings, SettingsConfigDict


RAMP_DOCK = "Ramp"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""
    model_config = SettingsConfigDict(
        env_file=str(Path(__file__).resolve().parents[3] / ".env"),
        case_sensitive=False,
    )

    # Application
    log_level: str = "INFO"
    yard_db_path: str = "./data/yard_state.db"
    default_yard_id: str = "main"
    auth_enabled: bool = False
    yard_tokens: str = ""
    app_mode: str = "demo"

    # Yard layout
    dock_numbers: str = "1-70"
    ramp_enabled: bool = True
    # When false the Ramp is a shared drop zone: it never reports
    # double-booked and never asks for confirmation.
    ramp_tracks_double_booking: bool = True

    # Appointment policy
    yard_timezone: str = "America/Indiana/Indianapolis"
    detention_grace_minutes: int = 120
    on_time_tolerance_minutes: int = 0
    symbolic_appointment_codes: str = "work_in,paid_to_load,paid_charge_customer,LTL"
    # Schedule rows older than this many days are purged when a day is listed.
    appointment_retention_days: int = 7

    # Driver notifications (SMS relay webhook)
    sms_webhook_url: str = ""
    sms_webhook_token: str = ""
    sms_timeout_seconds: float = 10.0

    def dock_number_list(self) -> Tuple[str, ...]:
        """
        Expand `dock_numbers` into the ordered tuple of dock identifiers.

        Accepts singles and inclusive ranges, e.g. ``"1-70"`` or
        ``"1-10,14,20-24"``. The Ramp sentinel is appended when enabled.
        """
        docks: List[str] = []
        seen = set()
        for segment in (self.dock_numbers or "").split(","):
            item = segment.strip()
            if not item:
                continue
            if "-" in item:
                start_text, end_text = item.split("-", 1)
                start, end = int(start_text), int(end_text)
                if end < start:
                    raise ValueError(f"Invalid dock range '{item}'")
                values = [str(n) for n in range(start, end + 1)]
            else:
                values = [str(int(item))]
            for value in values:
                if value not in seen:
                    seen.add(value)
                    docks.append(value)
        docks.sort(key=int)
        if self.ramp_enabled:
            docks.append(RAMP_DOCK)
        return tuple(docks)

    def symbolic_code_list(self) -> Tuple[str, ...]:
        return tuple(code.strip() for code in self.symbolic_appointment_codes.split(",") if code.strip())

    def normalized_app_mode(self) -> str:
        mode = (self.app_mode or "").strip().lower()
        return mode if mode in {"demo", "production"} else "production"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
