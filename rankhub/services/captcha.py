"""
reCAPTCHA verification against Google's siteverify endpoint.
"""

from __future__ import annotations

import logging

import httpx

from rankhub.core.config import Settings

logger = logging.getLogger(__name__)


class CaptchaVerifier:
    def __init__(
        self,
        settings: Settings,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._secret = settings.RECAPTCHA_SECRET_KEY
        self._url = settings.RECAPTCHA_VERIFY_URL
        self._min_score = settings.RECAPTCHA_MIN_SCORE
        self._timeout = settings.RECAPTCHA_TIMEOUT_SECONDS
        self._transport = transport

        if settings.RECAPTCHA_ENABLE and not self._secret:
            logger.warning(
                "RECAPTCHA_SECRET_KEY not set. CAPTCHA verification will fail!"
            )

    async def verify(self, token: str | None, remote_ip: str | None = None) -> bool:
        """Return True only for a successful, sufficiently human-scored token.

        reCAPTCHA v2 responses carry no score; v3 responses are rejected
        below the configured minimum.  Transport errors count as failure.
        """
        if not self._secret:
            logger.error("CAPTCHA verification failed: no secret key configured")
            return False
        if not token:
            logger.warning("CAPTCHA verification failed: no token supplied")
            return False

        params = {"secret": self._secret, "response": token}
        if remote_ip:
            params["remoteip"] = remote_ip

        try:
            async with httpx.AsyncClient(
                timeout=self._timeout, transport=self._transport
            ) as client:
                response = await client.post(self._url, params=params)
                response.raise_for_status()
                data = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.error("Error verifying CAPTCHA: %s", exc, exc_info=True)
            return False

        if not data.get("success"):
            logger.warning("CAPTCHA verification failed: %s", data.get("error-codes"))
            return False

        score = data.get("score")
        if score is not None and score < self._min_score:
            logger.warning("CAPTCHA score too low: %s", score)
            return False

        return True
