"""
Default in-process collaborators: template content, a word-list tone check and
a channel that writes deliveries to the structured log.

Template choice uses the random source handed in, so a seeded context always
produces the same wording.
"""

import random
import re

from nudge.features.pipeline.interfaces import ContentContext
from nudge.infrastructure.observability.logging import get_logger
from nudge.models.domain.enums import NotificationType
from nudge.models.domain.notification_domain import (
    Content,
    DeliveryResult,
    ScheduledNotification,
    ValidationResult,
)
from nudge.models.domain.user_domain import UserPreferences

logger = get_logger(__name__)

TEMPLATES: dict[NotificationType, list[tuple[str, str]]] = {
    NotificationType.STALE_REMINDER: [
        ("Time for a quick check-in", "{item_id} ({summary}) has been waiting a while. When you have a moment, a quick update would help."),
        ("Ready for some progress?", "{item_id} could use a status check. No pressure, whenever you're ready."),
        ("Support available when you need it", "Just a gentle reminder that {item_id} could use your attention. Take it at your own pace."),
    ],
    NotificationType.DEADLINE_WARNING: [
        ("Deadline approaching", "{item_id} ({summary}) is due soon. You've got this, one focused step at a time."),
        ("Final stretch", "{item_id} is coming up on its due date. A short update now keeps everyone in sync."),
    ],
    NotificationType.PROGRESS_UPDATE: [
        ("Weekly progress", "Nice work this week. {item_id} is part of the progress your team is making."),
    ],
    NotificationType.TEAM_ENCOURAGEMENT: [
        ("Great week ahead", "Your team is moving forward. {item_id} is a good place to pick up momentum."),
    ],
    NotificationType.ACHIEVEMENT_RECOGNITION: [
        ("Well done", "{item_id} moved forward. Thanks for keeping things going."),
    ],
}

NEGATIVE_WORDS = {
    "terrible",
    "awful",
    "horrible",
    "bad",
    "worst",
    "fail",
    "failed",
    "disaster",
    "nightmare",
    "pathetic",
    "useless",
}
PRESSURE_WORDS = {"must", "required", "mandatory", "immediately", "asap"}
REPLACEMENTS = {
    "terrible": "challenging",
    "awful": "in need of attention",
    "bad": "in need of improvement",
    "failed": "in need of a retry",
    "fail": "need another try",
    "must": "could",
    "required": "recommended",
    "mandatory": "recommended",
    "immediately": "soon",
    "asap": "soon",
}
MAX_BODY_LENGTH = 400
_WORD = re.compile(r"[a-z']+")


class TemplateContentGenerator:
    def __init__(self, rng: random.Random):
        self.rng = rng

    async def generate(self, context: ContentContext, preferences: UserPreferences) -> Content:
        notification = context.notification
        title, body = self.rng.choice(TEMPLATES[notification.notification_type])
        summary = notification.item_summary or "this item"
        return Content(
            title=title,
            body=body.format(item_id=notification.item_id, summary=summary),
            action_ref=notification.item_id,
        )


class ToneContentValidator:
    """Scores content on tone; 1.0 is clean, each problem costs points."""

    async def validate(self, content: Content) -> ValidationResult:
        words = _WORD.findall(f"{content.title} {content.body}".lower())
        suggestions: list[str] = []
        score = 1.0

        negative = [w for w in words if w in NEGATIVE_WORDS]
        if negative:
            score -= 0.3 * min(len(negative), 2)
            suggestions.append("Replace negative words with neutral alternatives")

        pressure = [w for w in words if w in PRESSURE_WORDS]
        if pressure:
            score -= 0.15 * min(len(pressure), 2)
            suggestions.append("Soften pressure language")

        if content.body.count("!") > 2 or content.title.isupper():
            score -= 0.2
            suggestions.append("Reduce shouting and exclamation marks")

        if not content.body.strip() or len(content.body) > MAX_BODY_LENGTH:
            score -= 0.3
            suggestions.append("Keep the message between 1 and 400 characters")

        score = round(max(0.0, score), 4)
        return ValidationResult(acceptable=score >= 0.6, score=score, suggestions=suggestions)

    async def repair(self, content: Content) -> Content:
        def soften(text: str) -> str:
            for word, replacement in REPLACEMENTS.items():
                text = re.sub(rf"\b{word}\b", replacement, text, flags=re.IGNORECASE)
            return re.sub(r"!{2,}", "!", text)

        title = soften(content.title)
        if title.isupper():
            title = title.capitalize()
        body = soften(content.body)[:MAX_BODY_LENGTH]
        return Content(title=title, body=body, action_ref=content.action_ref)


class LoggingDeliveryChannel:
    async def deliver(self, notification: ScheduledNotification, content: Content) -> DeliveryResult:
        logger.info(
            "Reminder delivered",
            user_id=notification.user_id,
            notification_id=notification.id,
            item_id=notification.item_id,
            title=content.title,
        )
        return DeliveryResult(delivered=True)
