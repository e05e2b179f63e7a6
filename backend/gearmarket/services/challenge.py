"""CAPTCHA escalation policy and the Turnstile verification client."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Optional

import httpx

from gearmarket.core.exceptions import ChallengeFailedError, ChallengeRequiredError

logger = logging.getLogger(__name__)


class ChallengeVerifier(ABC):
    """Checks a human-verification proof with a third-party service."""

    @abstractmethod
    def verify(self, proof: str, remote_ip: Optional[str] = None) -> bool:
        ...


class TurnstileVerifier(ChallengeVerifier):
    """Cloudflare Turnstile ``siteverify`` client."""

    def __init__(
        self,
        secret_key: str,
        api_url: str = "https://challenges.cloudflare.com/turnstile/v0/siteverify",
        *,
        timeout: float = 5.0,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self.secret_key = secret_key
        self.api_url = api_url
        self.timeout = timeout
        self._client = client

    def verify(self, proof: str, remote_ip: Optional[str] = None) -> bool:
        if not proof:
            logger.warning("Captcha token is empty")
            return False
        if not self.secret_key:
            logger.warning("Turnstile secret key is not configured; rejecting captcha")
            return False

        form = {"secret": self.secret_key, "response": proof}
        if remote_ip:
            form["remoteip"] = remote_ip

        try:
            if self._client is not None:
                response = self._client.post(self.api_url, data=form, timeout=self.timeout)
            else:
                with httpx.Client(timeout=self.timeout) as client:
                    response = client.post(self.api_url, data=form)
            response.raise_for_status()
            result = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.error("Error verifying Turnstile token: %s", exc)
            return False

        if result.get("success") is True:
            logger.info("Captcha verification successful")
            return True

        logger.warning(
            "Captcha verification failed: %s",
            ", ".join(result.get("error-codes") or []) or "unknown error",
        )
        return False


class ChallengeGate:
    """Demands a proof on exactly the threshold-th attempt of a window.

    Stateless: a solved challenge is not remembered, so the next request that
    lands on the threshold must prove itself again.
    """

    def __init__(self, verifier: ChallengeVerifier, threshold: int = 3) -> None:
        self.verifier = verifier
        self.threshold = threshold

    def requires_challenge(self, attempt_count: int) -> bool:
        return attempt_count == self.threshold

    def enforce(
        self,
        attempt_count: int,
        proof: Optional[str],
        remote_ip: Optional[str] = None,
    ) -> None:
        if not self.requires_challenge(attempt_count):
            return
        if not proof:
            raise ChallengeRequiredError()
        if not self.verifier.verify(proof, remote_ip):
            raise ChallengeFailedError()
