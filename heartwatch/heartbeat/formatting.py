import datetime


def format_duration(seconds: float) -> str:
    """Formats a duration compactly, e.g. 125 -> '2m5s', 3725 -> '1h2m5s'."""
    total = max(0, int(round(seconds)))
    hours, remainder = divmod(total, 3600)
    minutes, secs = divmod(remainder, 60)
    text = ""
    if hours:
        text += f"{hours}h"
    if hours or minutes:
        text += f"{minutes}m"
    return text + f"{secs}s"


def format_timestamp(epoch_seconds: float) -> str:
    return datetime.datetime.fromtimestamp(epoch_seconds).strftime("%Y-%m-%d %H:%M:%S")
