from pydantic import BaseModel, Field, field_validator, model_validator
from zoneinfo import ZoneInfo

from epg_sync.utils.timezone import parse_iso8601_to_utc, DateFormatError


class SyncRequest(BaseModel):
    """Immediate or periodic sync request"""
    period_hours: float | None = Field(
        None,
        gt=0,
        le=24 * 31,
        description="Length of the sync window in hours (defaults from settings)",
    )
    interval_hours: float | None = Field(
        None,
        gt=0,
        description="Hours between periodic runs (periodic requests only)",
    )


class SyncRequestResponse(BaseModel):
    input_id: str
    status: str = Field(..., description="'started', 'skipped', 'scheduled' or 'cancelled'")
    message: str | None = None
    next_run_time: str | None = None


class SyncStatusResponse(BaseModel):
    input_id: str
    syncing: bool
    next_run_time: str | None = None
    last_event: dict | None = Field(None, description="Most recent status event, if any")


class EPGRequest(BaseModel):
    """EPG data request"""
    channel_ids: list[int] = Field(..., min_length=1, description="Internal channel ids")
    timezone: str = Field(default="UTC", description="Timezone for response timestamps (e.g., 'UTC', 'Europe/London', 'America/New_York')")
    from_date: str = Field(..., description="ISO8601 datetime for start of EPG range (e.g., '2025-10-09T00:00:00Z')")
    to_date: str = Field(..., description="ISO8601 datetime for end of EPG range (e.g., '2025-10-10T00:00:00Z')")

    @field_validator('timezone')
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        """Validate timezone string"""
        if v == "UTC":
            return v
        try:
            ZoneInfo(v)
            return v
        except (KeyError, ValueError):
            raise ValueError(f"Invalid timezone: {v}. Must be a valid IANA timezone (e.g., 'Europe/London', 'America/New_York') or 'UTC'")

    @field_validator('from_date', 'to_date')
    @classmethod
    def validate_date_format(cls, v: str) -> str:
        """Validate ISO8601 datetime format using centralized parser"""
        try:
            parse_iso8601_to_utc(v)
            return v
        except DateFormatError:
            raise ValueError(f"Invalid datetime format: {v}. Must be valid ISO8601 format (e.g., '2025-10-09T00:00:00Z' or '2025-10-09T00:00:00+00:00')")

    @model_validator(mode='after')
    def validate_date_range(self):
        """Validate that from_date is before to_date using centralized parser"""
        from_dt = parse_iso8601_to_utc(self.from_date)
        to_dt = parse_iso8601_to_utc(self.to_date)

        if from_dt >= to_dt:
            raise ValueError(f"from_date ({self.from_date}) must be before to_date ({self.to_date})")

        return self


class ChannelResponse(BaseModel):
    id: int
    external_id: str
    display_name: str
    display_number: str | None = None
    repeatable: bool


class ProgramResponse(BaseModel):
    """Single program data"""
    id: int
    start_time: str
    end_time: str
    title: str
    episode_title: str | None = None
    description: str | None = None


class EPGResponse(BaseModel):
    """EPG data response"""
    timestamp: str
    timezone: str = Field(..., description="Timezone used for all timestamps in response")
    channels_requested: int
    channels_found: int
    total_programs: int
    epg: dict[str, list[ProgramResponse]] = Field(..., description="EPG data grouped by channel id")
