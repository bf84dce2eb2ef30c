"""Placeholder video-call links for confirmed sessions.

Links look like ``https://meet.google.com/abc-defg-hij``. They are cosmetic:
nothing is provisioned, uniqueness is not checked and ``random`` is not a
secure source, so never use these as tokens.
"""
import random
import re
import string

MEET_BASE_URL = "https://meet.google.com/"
SEGMENT_LENGTHS = (3, 4, 3)
MEETING_LINK_PATTERN = re.compile(r"^https://meet\.google\.com/[a-z]{3}-[a-z]{4}-[a-z]{3}$")

# the approval dialog keeps "Confirm" disabled below this
MIN_MEETING_LINK_LENGTH = 5


def _segment(rng, length):
    return "".join(rng.choice(string.ascii_lowercase) for _ in range(length))


def generate_meeting_link(rng=None) -> str:
    rng = rng or random
    return MEET_BASE_URL + "-".join(_segment(rng, n) for n in SEGMENT_LENGTHS)


def is_generated_link(link) -> bool:
    return bool(link) and MEETING_LINK_PATTERN.match(link) is not None


def link_confirmable(link) -> bool:
    return len((link or "").strip()) >= MIN_MEETING_LINK_LENGTH
