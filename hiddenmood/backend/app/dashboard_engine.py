from __future__ import annotations

import math
import re
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional

MAX_TIPS = 5
WEEK = timedelta(days=7)

DEFAULT_TIPS = [
    "Take regular breaks during work or study to recharge your mind.",
    "Practice deep breathing for a few minutes when you feel overwhelmed.",
    "Keep a consistent sleep schedule and aim for 7-9 hours of rest.",
    "Move your body every day, even a short walk helps lift your mood.",
    "Reach out to a friend or someone you trust and share how you feel.",
]

SUGGESTION_PATTERN = re.compile(r"suggestions?\s*:\s*(.+)", re.IGNORECASE)


def empty_summary() -> dict:
    return {
        "averageStress": 0,
        "emotionCounts": {},
        "stressHistory": [],
        "latestEmotion": "neutral",
        "latestEmotionTime": None,
        "weeklyCount": 0,
        "totalCount": 0,
        "mostCommonEmotion": "neutral",
        "tips": [],
    }


def stress_value(value: object) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if math.isnan(value) or math.isinf(value):
        return None
    return float(value)


def isoformat(value: object) -> Optional[str]:
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value) if value is not None else None


def most_common(counts: Dict[str, int]) -> str:
    best = "neutral"
    best_count = 0
    for emotion, count in counts.items():
        if count > best_count:
            best = emotion
            best_count = count
    return best


def extract_tips(feedback_texts: Iterable[Optional[str]], limit: int = MAX_TIPS) -> List[str]:
    tips: List[str] = []
    for text in feedback_texts:
        if not text:
            continue
        for line in str(text).splitlines():
            match = SUGGESTION_PATTERN.search(line)
            if not match:
                continue
            tip = match.group(1).strip()
            if tip and tip not in tips:
                tips.append(tip)
            if len(tips) >= limit:
                return tips
    return tips


def summarize(entries: List[dict], now: Optional[datetime] = None) -> dict:
    """Aggregate history rows (newest first) into the dashboard payload.

    Each entry is a dict with stress_percent, emotion, created_at and feedback.
    Rows without a numeric stress value are left out of the average and the
    stress trend but still count toward totalCount.
    """
    if not entries:
        return empty_summary()
    now = now or datetime.utcnow()

    values: List[float] = []
    emotion_counts: Dict[str, int] = {}
    stress_history: List[dict] = []
    weekly_count = 0

    for entry in entries:
        emotion = entry.get("emotion") or "neutral"
        emotion_counts[emotion] = emotion_counts.get(emotion, 0) + 1

        value = stress_value(entry.get("stress_percent"))
        created_at = entry.get("created_at")
        if value is not None:
            values.append(value)
            stress_history.append({
                "date": isoformat(created_at),
                "stress": value,
                "emotion": emotion,
            })
        if isinstance(created_at, datetime) and created_at >= now - WEEK:
            weekly_count += 1

    stress_history.reverse()
    average = round(sum(values) / len(values), 2) if values else 0

    latest = entries[0]
    tips = extract_tips(entry.get("feedback") for entry in entries)
    if not tips:
        tips = list(DEFAULT_TIPS)

    return {
        "averageStress": average,
        "emotionCounts": emotion_counts,
        "stressHistory": stress_history,
        "latestEmotion": latest.get("emotion") or "neutral",
        "latestEmotionTime": isoformat(latest.get("created_at")),
        "weeklyCount": weekly_count,
        "totalCount": len(entries),
        "mostCommonEmotion": most_common(emotion_counts),
        "tips": tips[:MAX_TIPS],
    }
