"""Built-in school calendar: NSW 2026, Eastern Division.

Term and holiday ranges are inclusive on both ends. Replace them at
deploy time with a JSON file named by DOJO_SCHOOL_CALENDAR_PATH, using the
same shape as ``DEFAULT_CALENDAR``.

These tables stop at the end of Term 4 2026 (17 December 2026) and carry no
2026-27 summer holiday. Supply a calendar file covering 2027 before then:
after the last listed day every week is judged as a term week and no pass
refill is due.
"""

from __future__ import annotations

DEFAULT_CALENDAR: dict = {
    "terms": [
        {"label": "Term 1 2026", "start": "2026-01-28", "end": "2026-04-04"},
        {"label": "Term 2 2026", "start": "2026-04-22", "end": "2026-07-03"},
        {"label": "Term 3 2026", "start": "2026-07-21", "end": "2026-09-25"},
        {"label": "Term 4 2026", "start": "2026-10-13", "end": "2026-12-17"},
    ],
    "holidays": [
        {"label": "Summer Holidays", "start": "2025-12-18", "end": "2026-01-27"},
        {"label": "Autumn Holidays", "start": "2026-04-05", "end": "2026-04-21"},
        {"label": "Winter Holidays", "start": "2026-07-04", "end": "2026-07-20"},
        {"label": "Spring Holidays", "start": "2026-09-26", "end": "2026-10-12"},
    ],
}
