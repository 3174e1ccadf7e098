import random
from datetime import datetime

import pytest

from leadbot.intent import quick_check
from leadbot.schema import GreetingSlot, Priority
from leadbot.templates import (
    GREETINGS,
    SAMPLE_LEADS,
    ack_text,
    evening_greetings,
    format_sample_lead,
    get_greeting,
    greeting_slot,
)


@pytest.mark.parametrize(
    "when, slot",
    [
        (datetime(2024, 5, 6, 9, 0), GreetingSlot.MORNING),
        (datetime(2024, 5, 6, 13, 30), GreetingSlot.AFTERNOON),
        (datetime(2024, 5, 6, 18, 0), GreetingSlot.EVENING),
        (datetime(2024, 5, 11, 9, 0), GreetingSlot.WEEKEND),
        (datetime(2024, 5, 29, 9, 0), GreetingSlot.MONTH_END),
        (datetime(2024, 5, 28, 9, 0), GreetingSlot.MORNING),
    ],
)
def test_greeting_slot_selection(when, slot):
    assert greeting_slot(when) is slot


def test_weekend_wins_over_month_end():
    # 2024-08-31 is a Saturday
    assert greeting_slot(datetime(2024, 8, 31, 9, 0)) is GreetingSlot.WEEKEND


def test_explicit_slot_is_respected():
    assert get_greeting(slot="evening", rng=random.Random(1)) in evening_greetings


def test_every_bucket_has_options():
    assert all(GREETINGS[slot] for slot in GreetingSlot)


def test_ack_text_default():
    assert ack_text() == "Checking team"


@pytest.mark.parametrize("name", sorted(SAMPLE_LEADS))
def test_sample_leads_are_detected_as_leads(name):
    result = quick_check(format_sample_lead(name))
    assert result.is_lead is True
    assert result.fields.phone == SAMPLE_LEADS[name]["phone"]


def test_urgent_sample_is_high_priority():
    result = quick_check(format_sample_lead("urgent"))
    assert result.fields.urgency is True
    assert result.priority is Priority.HIGH
