from __future__ import annotations

import logging
import os
from typing import Dict, Optional

import requests

logger = logging.getLogger("hiddenmood.ml")

DEFAULT_ML_API_URL = "https://feliciasalim-ppl.hf.space/predict/analyze"
DEFAULT_TIMEOUT_SECONDS = 120
USER_AGENT = "HiddenMood-Backend/1.0"

DEFAULT_EMOTION = "neutral"
DEFAULT_STRESS_LABEL = "unknown"
DEFAULT_STRESS_VALUE = 50
DEFAULT_ANALYSIS = "Your text has been analyzed successfully."


class MLServiceError(Exception):
    """Failure talking to the analysis service, already shaped as an HTTP reply."""

    def __init__(self, status_code: int, payload: Dict[str, object]):
        super().__init__(payload.get("error"))
        self.status_code = status_code
        self.payload = payload


def ml_api_url() -> str:
    return (os.getenv("ML_API_URL") or DEFAULT_ML_API_URL).strip()


def ml_api_timeout() -> float:
    raw = (os.getenv("ML_API_TIMEOUT") or "").strip()
    try:
        return float(raw) if raw else float(DEFAULT_TIMEOUT_SECONDS)
    except ValueError:
        return float(DEFAULT_TIMEOUT_SECONDS)


def analyze_text(text: str) -> dict:
    """Send one text to the analysis service and return a fully populated result.

    Every failure is raised as MLServiceError carrying the status code and JSON
    body the caller should answer with. Nothing is retried.
    """
    url = ml_api_url()
    try:
        response = requests.post(
            url,
            json={"text": text},
            headers={
                "Content-Type": "application/json",
                "User-Agent": USER_AGENT,
            },
            timeout=ml_api_timeout(),
        )
    except requests.Timeout as exc:
        logger.error("ML API timed out after %ss: %s", ml_api_timeout(), exc)
        raise MLServiceError(408, {
            "error": "ML API request timed out. Please try again.",
            "error_type": "timeout",
        }) from exc
    except requests.ConnectionError as exc:
        logger.error("Cannot reach ML API at %s: %s", url, exc)
        raise MLServiceError(503, {
            "error": "Cannot connect to ML API. Please try again later.",
            "error_type": "connection_error",
        }) from exc
    except requests.RequestException as exc:
        if exc.response is not None:
            logger.error("ML API error response %s: %s", exc.response.status_code, exc)
            raise MLServiceError(500, {
                "error": "ML API returned an error",
                "status": exc.response.status_code,
                "details": safe_body(exc.response),
                "error_type": "ml_api_error",
            }) from exc
        logger.exception("ML API request failed")
        raise MLServiceError(500, {
            "error": "Failed to process text with ML API",
            "error_type": "generic_error",
        }) from exc

    if response.status_code != 200:
        logger.error("ML API returned status %s", response.status_code)
        raise MLServiceError(500, {
            "error": "ML API returned an error",
            "status": response.status_code,
            "details": safe_body(response),
            "error_type": "ml_api_error",
        })

    data = safe_body(response)
    if not isinstance(data, dict):
        logger.error("ML API returned an unexpected body: %r", data)
        raise MLServiceError(500, {"error": "Invalid response format from ML API"})
    return normalize_analysis(data)


def safe_body(response: requests.Response) -> Optional[object]:
    try:
        return response.json()
    except ValueError:
        return response.text or None


def normalize_analysis(data: dict) -> dict:
    predicted_stress = data.get("predicted_stress") or {}
    predicted_emotion = data.get("predicted_emotion") or {}
    stress_level = data.get("stress_level") or {}
    videos = data.get("recommended_videos") or {}

    recommendations = videos.get("recommendations") if isinstance(videos, dict) else None
    if not isinstance(recommendations, list):
        recommendations = []

    stress_value = stress_level.get("stress_level") if isinstance(stress_level, dict) else None
    if stress_value is None:
        stress_value = DEFAULT_STRESS_VALUE

    return {
        "predicted_stress": {
            **(predicted_stress if isinstance(predicted_stress, dict) else {}),
            "label": _label(predicted_stress, DEFAULT_STRESS_LABEL),
        },
        "predicted_emotion": {
            **(predicted_emotion if isinstance(predicted_emotion, dict) else {}),
            "label": _label(predicted_emotion, DEFAULT_EMOTION),
        },
        "stress_level": {"stress_level": stress_value},
        "analysis": data.get("analysis") or DEFAULT_ANALYSIS,
        "recommended_videos": {"recommendations": recommendations},
    }


def _label(section: object, default: str) -> str:
    if isinstance(section, dict) and section.get("label"):
        return str(section["label"])
    return default
