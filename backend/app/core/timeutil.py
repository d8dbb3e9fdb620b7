from datetime import datetime, timezone


def utcnow() -> datetime:
    """サーバー基準の現在時刻 (UTC, naive)。DBのDateTime列はすべてこの形式"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(dt: datetime) -> datetime:
    """aware な datetime を UTC naive に正規化"""
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)
