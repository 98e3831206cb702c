from datetime import datetime
from typing import Iterable, Optional
from zoneinfo import ZoneInfo

from lms_notifier.db.models import ActivityType, NotificationType
from lms_notifier.utils.datetime_utils import days_until, format_long_date, naive_utc_now

HEADERS = {
    NotificationType.START: "🔔 *NEW ACTIVITY*",
    NotificationType.REMINDER: "⏰ *DEADLINE REMINDER*",
}

TYPE_LABELS = {
    ActivityType.ASSIGNMENT: "Assignment",
    ActivityType.QUIZ: "Quiz",
    ActivityType.QUIZ_RESULT: "Quiz Result",
    ActivityType.DISCUSSION_BOARD: "Graded Discussion Board",
    ActivityType.DISCUSSION_BOARD_RESULT: "Discussion Board Result",
    ActivityType.PENDING_FEE: "Pending Fee",
    ActivityType.PRACTICAL: "Practical",
    ActivityType.UNKNOWN: "Activity",
}

DIVIDER = "━━━━━━━━━━━━━━━━━━━━━"


def _plural_days(days: int) -> str:
    return f"{days} day{'' if days == 1 else 's'}"


class MessageFormatter:
    """Renders notification and digest text for the delivery channel."""

    def __init__(self, timezone: str = "UTC", footer: Optional[str] = None):
        self.zone = ZoneInfo(timezone)
        self.footer = footer

    def _days_remaining_line(self, due_at: datetime, now: datetime) -> str:
        days = days_until(due_at, now, self.zone)
        if days < 0:
            return f"⏳ *Overdue by:* {_plural_days(-days)}"
        if days == 0:
            return "⏳ *Due:* today"
        return f"⏳ *Days Remaining:* {_plural_days(days)}"

    def _relative_due(self, due_at: datetime, now: datetime) -> str:
        days = days_until(due_at, now, self.zone)
        if days < 0:
            return f"overdue by {_plural_days(-days)}"
        if days == 0:
            return "due today"
        return f"in {_plural_days(days)}"

    def _with_footer(self, lines: list) -> str:
        if self.footer:
            lines.extend(["", DIVIDER, f"*{self.footer}*"])
        return "\n".join(lines)

    def format_notification(
        self,
        notification_type: NotificationType,
        course_code: str,
        activity_type: ActivityType,
        title: str,
        due_at: datetime,
        link: str,
        now: Optional[datetime] = None,
    ) -> str:
        now = now or naive_utc_now()
        lines = [
            HEADERS[notification_type],
            "",
            f"📚 *Course:* {course_code}",
            f"📋 *Type:* {TYPE_LABELS[activity_type]}",
            f"📝 *Title:* {title}",
            "",
            f"📅 *Due Date:* {format_long_date(due_at, self.zone)}",
            self._days_remaining_line(due_at, now),
            "",
            f"🔗 {link}",
        ]
        return self._with_footer(lines)

    def format_digest(
        self, identifier: str, activities: Iterable, now: Optional[datetime] = None
    ) -> str:
        """One message listing a subject's upcoming activities in due order."""
        now = now or naive_utc_now()
        items = list(activities)
        lines = [
            "📌 *UPCOMING DEADLINES*",
            f"👤 {identifier}: {len(items)} due soon",
        ]
        for index, item in enumerate(items, start=1):
            lines.extend(
                [
                    "",
                    f"{index}. *{item.course_code}* {TYPE_LABELS[item.activity_type]}",
                    f"   📝 {item.title}",
                    f"   📅 {format_long_date(item.due_date, self.zone)}"
                    f" ({self._relative_due(item.due_date, now)})",
                    f"   🔗 {item.link}",
                ]
            )
        return self._with_footer(lines)
