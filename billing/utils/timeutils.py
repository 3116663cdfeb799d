from datetime import date, datetime, timezone


# Naive UTC everywhere: SQLite and "timestamp without time zone" columns
# store no tz info, so app code standardizes on UTC-naive values.
def utcnow_naive() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def today_utc() -> date:
    return utcnow_naive().date()


def to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)
