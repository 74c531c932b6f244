"""
Client-side wizard driving one wipe session: captcha -> select -> scan ->
review -> wipe -> complete.

Forward steps advance only when the matching remote call completes. On a
failed call the wizard falls back to the last interactive step (select for
upload/scan, review for wipe), keeps the error and re-raises it.
"""

import logging
import secrets
from dataclasses import dataclass, field
from enum import Enum
from time import monotonic
from typing import Callable

from wipeportal.classifier import ClassifierConfig
from wipeportal.errors import CaptchaLockedError, WizardStateError
from wipeportal.models import RiskLevel, WipeType

logger = logging.getLogger("wipeportal.wizard")

CAPTCHA_ALPHABET = "ABCDEFGHIJKLMNPQRSTUVWXYZ23456789"
CAPTCHA_LENGTH = 6
CAPTCHA_MAX_ATTEMPTS = 3
CAPTCHA_COOLDOWN_SECONDS = 3.0


class Step(str, Enum):
    CAPTCHA = "captcha"
    SELECT = "select"
    SCAN = "scan"
    REVIEW = "review"
    WIPE = "wipe"
    COMPLETE = "complete"


class Captcha:
    """Six character human check shown before the portal unlocks."""

    def __init__(
        self,
        max_attempts: int = CAPTCHA_MAX_ATTEMPTS,
        cooldown_seconds: float = CAPTCHA_COOLDOWN_SECONDS,
        clock: Callable[[], float] = monotonic,
    ):
        self.max_attempts = max_attempts
        self.cooldown_seconds = cooldown_seconds
        self._clock = clock
        self.attempts = 0
        self._locked_until = 0.0
        self.code = ""
        self.regenerate()

    def regenerate(self) -> str:
        self.code = "".join(secrets.choice(CAPTCHA_ALPHABET) for _ in range(CAPTCHA_LENGTH))
        return self.code

    @property
    def locked(self) -> bool:
        return self._clock() < self._locked_until

    def verify(self, answer: str) -> bool:
        if self.locked:
            raise CaptchaLockedError("Multiple failed attempts. Please wait a moment before trying again.")
        if self._locked_until:
            # Cooldown elapsed
            self._locked_until = 0.0
            self.attempts = 0

        if answer.strip().upper() == self.code:
            self.attempts = 0
            return True

        self.attempts += 1
        self.regenerate()
        if self.attempts >= self.max_attempts:
            self._locked_until = self._clock() + self.cooldown_seconds
        return False


@dataclass
class WizardSettings:
    sensitive_keywords: list[str] = field(default_factory=list)
    auto_scan: bool = True
    confirm_before_wipe: bool = True
    require_captcha: bool = False

    def classifier_config(self) -> ClassifierConfig:
        return ClassifierConfig(sensitive_keywords=self.sensitive_keywords)


ProgressCallback = Callable[[Step, int, int], None]
NotifyCallback = Callable[[str, str], None]


class WipeWizard:
    def __init__(
        self,
        api,
        settings: WizardSettings | None = None,
        captcha: Captcha | None = None,
        on_progress: ProgressCallback | None = None,
        notify: NotifyCallback | None = None,
    ):
        self.api = api
        self.settings = settings or WizardSettings()
        self.captcha = captcha or (Captcha() if self.settings.require_captcha else None)
        self.on_progress = on_progress
        self.notify = notify

        self.step = Step.CAPTCHA if self.captcha is not None else Step.SELECT
        self.busy = False
        self.last_error: Exception | None = None
        self._clear_session()

    def _clear_session(self) -> None:
        self.session_id: str | None = None
        self.files: list[dict] = []
        self.scan_summary: dict | None = None
        self.recommended_wipe_type = WipeType.STANDARD
        self.wipe_results: list[dict] = []
        self.wipe_summary: dict | None = None

    # --- helpers ---
    def _require(self, *steps: Step) -> None:
        if self.busy:
            raise WizardStateError("An operation is already in progress")
        if self.step not in steps:
            expected = ", ".join(s.value for s in steps)
            raise WizardStateError(f"Cannot do this from step '{self.step.value}' (expected {expected})")

    def _progress(self, step: Step, completed: int, total: int) -> None:
        if self.on_progress is not None:
            self.on_progress(step, completed, total)

    def _fail(self, exc: Exception, fallback: Step) -> None:
        self.step = fallback
        self.last_error = exc
        logger.warning("%s; returning to %s", exc, fallback.value)
        if self.notify is not None:
            self.notify("error", str(exc))

    @property
    def can_proceed(self) -> bool:
        return not self.busy and self.step in (Step.SELECT, Step.SCAN, Step.REVIEW)

    def files_by_risk(self, level: RiskLevel | str) -> list[dict]:
        level = RiskLevel(level)
        return [f for f in self.files if f.get("riskLevel") == level.value]

    # --- transitions ---
    def verify_captcha(self, answer: str) -> bool:
        self._require(Step.CAPTCHA)
        if not self.captcha.verify(answer):
            return False
        self.step = Step.SELECT
        return True

    def upload(self, files) -> dict:
        """files: (name, content, content_type) tuples selected by the user."""
        self._require(Step.SELECT)
        files = list(files)
        if not files:
            raise WizardStateError("Select at least one file")

        self.busy = True
        try:
            result = self.api.upload_files(files)
        except Exception as exc:
            self._fail(exc, Step.SELECT)
            raise
        finally:
            self.busy = False

        self.last_error = None
        self.session_id = result["sessionId"]
        self.files = list(result.get("files", []))
        self.step = Step.SCAN
        self._progress(Step.SCAN, 0, len(self.files))

        if self.settings.auto_scan:
            self.scan()
        return result

    def scan(self) -> dict:
        self._require(Step.SCAN)
        self.busy = True
        try:
            result = self.api.scan_files(self.session_id, self.settings.classifier_config())
        except Exception as exc:
            self._fail(exc, Step.SELECT)
            raise
        finally:
            self.busy = False

        self.last_error = None
        self.files = list(result.get("files", []))
        self.scan_summary = result.get("summary")
        self.recommended_wipe_type = WipeType(result.get("recommendedWipeType", WipeType.STANDARD))
        self.step = Step.REVIEW
        self._progress(Step.SCAN, len(self.files), len(self.files))

        high = len(self.files_by_risk(RiskLevel.HIGH))
        if self.notify is not None:
            self.notify("info", f"Scan complete: found {high} high-risk file(s)")
        return result

    def back(self) -> None:
        self._require(Step.REVIEW)
        self.step = Step.SELECT

    def proceed(self, wipe_type: WipeType | str | None = None, confirmed: bool = False) -> dict:
        self._require(Step.REVIEW)
        if self.settings.confirm_before_wipe and not confirmed:
            raise WizardStateError("Wipe must be confirmed before it starts")

        wipe_type = WipeType(wipe_type) if wipe_type is not None else self.recommended_wipe_type
        total = len(self.files)
        self.step = Step.WIPE
        self._progress(Step.WIPE, 0, total)
        self.busy = True
        try:
            result = self.api.wipe_files(self.session_id, wipe_type)
        except Exception as exc:
            self._fail(exc, Step.REVIEW)
            raise
        finally:
            self.busy = False

        self.last_error = None
        self.wipe_results = list(result.get("results", []))
        self.wipe_summary = result.get("summary")
        self.step = Step.COMPLETE
        self._progress(Step.WIPE, len(self.wipe_results), total)

        if self.notify is not None:
            successful = sum(1 for r in self.wipe_results if r.get("status") == "success")
            self.notify("info", f"Wipe complete: {successful} of {len(self.wipe_results)} file(s) wiped")
        return result

    def reset(self) -> None:
        self._require(Step.COMPLETE)
        self._clear_session()
        self.last_error = None
        self.step = Step.SELECT
