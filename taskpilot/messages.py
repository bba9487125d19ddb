"""User-facing notification text, English and Arabic."""

from __future__ import annotations

_MESSAGES: dict[str, dict[str, str]] = {
    "task_started": {
        "en": "🚀 Task execution started",
        "ar": "🚀 بدأ تنفيذ المهمة",
    },
    "step_started": {
        "en": "📌 Executing: {step}",
        "ar": "📌 جاري تنفيذ: {step}",
    },
    "step_retry": {
        "en": "⚠️ Issue with step: {step}. Retrying...",
        "ar": "⚠️ مشكلة في الخطوة: {step}. جاري المحاولة مرة أخرى...",
    },
    "step_failed": {
        "en": "❌ Step failed after retry: {step}",
        "ar": "❌ فشلت الخطوة بعد إعادة المحاولة: {step}",
    },
    "phase_completed": {
        "en": "✅ Phase completed: {phase}",
        "ar": "✅ اكتملت المرحلة: {phase}",
    },
    "task_completed": {
        "en": "🎉 Task completed successfully! Results are ready.",
        "ar": "🎉 تم إكمال المهمة بنجاح! النتائج جاهزة.",
    },
    "task_cancelled": {
        "en": "⛔ Task cancelled",
        "ar": "⛔ تم إلغاء المهمة",
    },
    "task_failed": {
        "en": "💥 Task failed: {error}",
        "ar": "💥 فشلت المهمة: {error}",
    },
    "plan_waiting": {
        "en": "📝 Plan ready — waiting for approval",
        "ar": "📝 الخطة جاهزة — بانتظار الموافقة",
    },
    "plan_approved": {
        "en": "👍 Plan approved",
        "ar": "👍 تمت الموافقة على الخطة",
    },
}

FAILED_STEP_TEXT = "Step failed after retry"


def render(key: str, language: str = "en", **values: str) -> str:
    templates = _MESSAGES[key]
    template = templates.get(language) or templates["en"]
    return template.format(**values)
