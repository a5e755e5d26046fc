from datetime import datetime, timezone


def utcnow() -> datetime:
    """Naive UTC timestamp truncated to milliseconds.

    Timestamps feed the approval verification digest, so they must survive a
    database round-trip unchanged on every supported backend.
    """
    now = datetime.now(timezone.utc).replace(tzinfo=None)
    return now.replace(microsecond=(now.microsecond // 1000) * 1000)
