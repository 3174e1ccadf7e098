# leadbot/templates.py
import calendar
import random
from datetime import datetime

from leadbot.config import local_now, settings
from leadbot.schema import GreetingSlot

# -------------------------------
# Greeting Templates
# -------------------------------

# 1️⃣ Time of day (weekday, outside month end)
morning_greetings = [
    "Good Morning Team! ☀️ Let's start the day with fresh leads. Share whatever you have and we'll close them ASAP! 💪",
    "Good Morning Team! 🌟 New day, new cases. Please share any leads and we'll process them right away. ✅",
    "Good Morning Team! 🎯 We're close to target. Share any leads available and we'll turn them around quickly. 🙌",
]

afternoon_greetings = [
    "Good Afternoon Team! Hope the day is going well. Kindly share any leads and we'll get them processed quickly. 🚀",
    "Good Afternoon Team! 🔥 Keep the momentum going. Share your leads and we'll close them as fast as possible. 💪",
    "Hello Team! 🚀 Any leads on hand? Please share and we'll get them done ASAP. 💼",
]

evening_greetings = [
    "Good Evening Team! 🌙 As we wrap up, please share any leads you have. We're ready to close them. 🙌",
    "Hi Team, Good Evening! 😊 Quick nudge: share any leads you've got and we'll take them on. ✌️",
    "Good Evening Team! Let's finish strong. Share any leads and we'll process them first thing tomorrow. 🌟",
]

# 2️⃣ Calendar driven
weekend_greetings = [
    "Happy Weekend Team! 🌞 Share any leads and we'll handle them with full commitment. 💪",
    "Weekend Greetings Team! 🎉 Keep the leads coming, we're here to process them. 🚀",
    "Good day Team! 🔥 It's the weekend and we're still on. Share your leads and we'll take care of them. ✅",
]

month_end_greetings = [
    "Good Morning Respected Team! 💐 Only a few days left this month. Share maximum leads and we'll close them at full speed. 🙏",
    "Team! 🎯 Month-end push is on. Share all available leads and we'll process them with priority. 💪",
    "Final days of the month! 🌟 Share your leads and we'll make sure they're closed successfully. 🙌",
]

GREETINGS = {
    GreetingSlot.MORNING: morning_greetings,
    GreetingSlot.AFTERNOON: afternoon_greetings,
    GreetingSlot.EVENING: evening_greetings,
    GreetingSlot.WEEKEND: weekend_greetings,
    GreetingSlot.MONTH_END: month_end_greetings,
}

# -------------------------------
# Sample leads (CLI test-lead)
# -------------------------------
SAMPLE_LEADS = {
    "basic": {"name": "Test Customer", "phone": "9876543210", "loan": "50,000", "branch": "Bangalore"},
    "urgent": {"name": "Urgent Customer", "phone": "9876543211", "loan": "1,00,000", "branch": "Rajajinagar", "urgency": "ASAP"},
    "weekend": {"name": "Weekend Customer", "phone": "9876543212", "loan": "75,000", "branch": "Marathahalli", "timing": "Weekend"},
    "monthEnd": {"name": "Month End Customer", "phone": "9876543213", "loan": "2,00,000", "branch": "HSR Layout", "timing": "Month End"},
}


# -------------------------------
# Helpers
# -------------------------------
def greeting_slot(now: datetime) -> GreetingSlot:
    """Weekend first, then the last three days of the month, then time of day."""
    if now.weekday() >= 5:
        return GreetingSlot.WEEKEND
    last_day = calendar.monthrange(now.year, now.month)[1]
    if now.day >= last_day - 2:
        return GreetingSlot.MONTH_END
    if now.hour < 12:
        return GreetingSlot.MORNING
    if now.hour < 17:
        return GreetingSlot.AFTERNOON
    return GreetingSlot.EVENING


def get_greeting(now: datetime | None = None, slot: GreetingSlot | str | None = None, rng=random) -> str:
    """Random greeting for the given (or current local) time; an explicit slot wins."""
    chosen = GreetingSlot(slot) if slot else greeting_slot(now or local_now())
    return rng.choice(GREETINGS[chosen])


def ack_text() -> str:
    return settings().ACK_TEXT


def format_alert(record) -> str:
    """Operator alert for a newly created lead."""
    lines = [
        f"🚨 New lead {record.id} ({record.priority_category.value})",
        f"📱 {record.source_description} / {record.sender_label}",
        f"💬 {record.raw_message[:300]}",
    ]
    if record.fields:
        details = ", ".join(f"{k}={v}" for k, v in record.fields.items())
        lines.append(f"📊 {details}")
    return "\n".join(lines)


def format_sample_lead(name: str) -> str:
    """
    Render a SAMPLE_LEADS entry as the multi-line text an agent would post.
    Raises KeyError for unknown sample names.
    """
    sample = SAMPLE_LEADS[name]
    lines = [
        f"Name: {sample['name']}",
        f"Phone: {sample['phone']}",
        f"Loan: {sample['loan']}",
        f"Branch: {sample['branch']}",
    ]
    if sample.get("urgency"):
        lines.append(f"Urgency: {sample['urgency']}")
    if sample.get("timing"):
        lines.append(f"Timing: {sample['timing']}")
    return "\n".join(lines)
