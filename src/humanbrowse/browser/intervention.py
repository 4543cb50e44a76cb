"""CAPTCHA detection and the manual-intervention state machine.

Before each page interaction the backend scans the DOM for known challenge
widgets. When one is present the automation hands control to a human:

1. **Idle → Active** — log a banner asking the operator to solve the
   challenge in the browser window.
2. **Wait** — suspend until a navigation event (taken as "challenge
   cleared") or the bounded timeout, whichever comes first.
3. **Active → Idle** — unconditionally; a timeout is a best-effort
   continuation point, not a failure.

Activation while already active is a no-op that reports success, so two
interactions racing into the check never stack two waits.
"""

from __future__ import annotations

import asyncio
import json as _json
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable

from humanbrowse.browser.human import HumanSimulator

logger = logging.getLogger(__name__)


class CaptchaType(str, Enum):
    """Known CAPTCHA provider types."""

    RECAPTCHA = "recaptcha"
    HCAPTCHA = "hcaptcha"
    GENERIC = "generic"


# Signatures: (CSS selector, CaptchaType). Element presence only; page text
# that merely mentions "captcha" is not a challenge.
CAPTCHA_SIGNATURES: list[tuple[str, CaptchaType]] = [
    ('iframe[src*="recaptcha"]', CaptchaType.RECAPTCHA),
    ("div.g-recaptcha", CaptchaType.RECAPTCHA),
    ("#recaptcha", CaptchaType.RECAPTCHA),
    ('iframe[src*="hcaptcha"]', CaptchaType.HCAPTCHA),
    (".h-captcha", CaptchaType.HCAPTCHA),
    ("#hcaptcha", CaptchaType.HCAPTCHA),
    ('iframe[src*="captcha"]', CaptchaType.GENERIC),
]

_SIGNATURE_TYPES = dict(CAPTCHA_SIGNATURES)

DETECT_CAPTCHA_JS = f"""
(() => {{
    for (const selector of {_json.dumps([s for s, _ in CAPTCHA_SIGNATURES])}) {{
        if (document.querySelector(selector)) return selector;
    }}
    return null;
}})()
"""

POST_INTERVENTION_DELAY_MS = (1000, 2000)


@dataclass
class CaptchaDetection:
    """Result of scanning a page for CAPTCHAs."""

    detected: bool = False
    captcha_type: CaptchaType | None = None
    element_selector: str = ""


@dataclass
class InterventionState:
    """Per-session intervention flag; at most one is active at a time."""

    active: bool = False
    message: str = ""
    activated_at: float | None = None


async def detect_captcha(evaluate: Callable[[str], Awaitable[Any]]) -> CaptchaDetection:
    """Scan the current page for CAPTCHA widgets through *evaluate*.

    Detection errors (page mid-navigation, script blocked) count as "no
    CAPTCHA" so they never block the interaction that triggered the check.
    """
    try:
        selector = await evaluate(DETECT_CAPTCHA_JS)
    except Exception as e:
        logger.warning("Error checking for CAPTCHA: %s", e)
        return CaptchaDetection()
    if not selector:
        return CaptchaDetection()
    captcha_type = _SIGNATURE_TYPES.get(selector, CaptchaType.GENERIC)
    logger.info("CAPTCHA detected: %s (%s)", captcha_type.value, selector)
    return CaptchaDetection(detected=True, captcha_type=captcha_type, element_selector=selector)


class InterventionController:
    """Two-state (Idle/Active) machine guarding one browser session.

    Args:
        state: The session's ``InterventionState`` (mutated in place).
        human: Simulator used for the post-intervention settle delay.
        timeout_ms: Upper bound on how long one intervention waits.
    """

    def __init__(self, state: InterventionState, human: HumanSimulator, *, timeout_ms: float = 60_000) -> None:
        self.state = state
        self.human = human
        self.timeout_ms = timeout_ms
        self.waits_started = 0

    @property
    def active(self) -> bool:
        return self.state.active

    async def activate(self, message: str, wait_for_navigation: Callable[[float], Awaitable[Any]]) -> bool:
        """Suspend automation until the operator navigates or the timeout elapses.

        Args:
            message: Instruction shown to the operator.
            wait_for_navigation: Awaitable factory taking a timeout in ms; it
                may raise on timeout.

        Returns:
            Always ``True``.
        """
        if self.state.active:
            return True

        self.state.active = True
        self.state.message = message
        self.state.activated_at = time.time()
        self.waits_started += 1

        logger.warning("=" * 66)
        logger.warning("USER INTERVENTION REQUIRED: %s", message)
        logger.warning("The browser is waiting for you to complete this action manually.")
        logger.warning("=" * 66)

        try:
            await asyncio.wait_for(wait_for_navigation(self.timeout_ms), timeout=self.timeout_ms / 1000)
            logger.info("Navigation observed; resuming automation")
        except asyncio.TimeoutError:
            logger.info("No navigation after %.0fs of intervention; continuing anyway", self.timeout_ms / 1000)
        except Exception as e:
            logger.info("Intervention wait ended without navigation (%s); continuing anyway", e)
        finally:
            self.state.active = False
            self.state.message = ""
            self.state.activated_at = None

        await self.human.delay(*POST_INTERVENTION_DELAY_MS)
        return True

    async def check(
        self,
        evaluate: Callable[[str], Awaitable[Any]],
        wait_for_navigation: Callable[[float], Awaitable[Any]],
    ) -> bool:
        """Run CAPTCHA detection and activate an intervention if needed.

        Returns ``True`` when a challenge was found (and handled).
        """
        if self.state.active:
            return True
        detection = await detect_captcha(evaluate)
        if not detection.detected:
            return False
        return await self.activate(
            "CAPTCHA detected! Please solve it manually in the browser window.",
            wait_for_navigation,
        )
