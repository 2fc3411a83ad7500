from pydantic import BaseModel


class HealthOut(BaseModel):
    status: str
    total_passes: int
    total_failures: int
    consecutive_failures: int
    last_status_time: int
    window_seconds: int
