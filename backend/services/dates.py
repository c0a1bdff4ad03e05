from datetime import date, datetime, time, timezone

from backend.core import config

# Epoch values above this are treated as milliseconds (year ~5138 in seconds).
_MILLISECOND_THRESHOLD = 100_000_000_000


def normalize_date(value) -> date:
    """Return the calendar day for any accepted date representation."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, bool):
        raise ValueError(f'Unsupported date value: {value!r}')
    if isinstance(value, (int, float)):
        seconds = value / 1000 if abs(value) >= _MILLISECOND_THRESHOLD else value
        return datetime.fromtimestamp(seconds, tz=timezone.utc).date()
    if isinstance(value, str):
        normalized = value.strip()
        if not normalized:
            raise ValueError('Date is required.')
        try:
            return date.fromisoformat(normalized[:10])
        except ValueError as exc:
            raise ValueError(f'Invalid date: {value!r}') from exc
    raise ValueError(f'Unsupported date value: {value!r}')


def normalize_time_label(value) -> str:
    """Return the ``HH:MM`` label for a time of day."""
    if isinstance(value, time):
        return f'{value.hour:02d}:{value.minute:02d}'
    if isinstance(value, bool):
        raise ValueError(f'Unsupported time value: {value!r}')
    if isinstance(value, int):
        if not 0 <= value <= 23:
            raise ValueError(f'Invalid hour: {value!r}')
        return f'{value:02d}:00'
    if isinstance(value, str):
        parts = value.strip().split(':')
        if len(parts) not in (2, 3) or not all(part.isdigit() for part in parts):
            raise ValueError(f'Invalid time: {value!r}')
        hour, minute = int(parts[0]), int(parts[1])
        if not (0 <= hour <= 23 and 0 <= minute <= 59):
            raise ValueError(f'Invalid time: {value!r}')
        return f'{hour:02d}:{minute:02d}'
    raise ValueError(f'Unsupported time value: {value!r}')


def grid_time_labels() -> list[str]:
    return [f'{hour:02d}:00' for hour in range(config.DAY_START_HOUR, config.DAY_END_HOUR + 1)]


def is_grid_time(label: str) -> bool:
    return label in grid_time_labels()


def slot_start(slot_date: date, time_label: str) -> datetime:
    hour, minute = (int(part) for part in time_label.split(':'))
    return datetime.combine(slot_date, time(hour, minute))
