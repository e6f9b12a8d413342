from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path

import httpx

from ttpwatch.domain import SetupError

SENDGRID_URL = "https://api.sendgrid.com/v3/mail/send"


class EmailSendError(RuntimeError):
    pass


@dataclass(frozen=True)
class EmailConfig:
    api_key: str
    from_email: str


def load_email_config(path: str | Path) -> EmailConfig:
    """Read SendGrid credentials: {"apiKey": "...", "fromEmail": "..."}."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise SetupError(f"Could not read email credentials {path}: {e}") from e

    if not isinstance(raw, dict):
        raise SetupError(f"Email credentials {path} must contain a JSON object")
    api_key = raw.get("apiKey")
    from_email = raw.get("fromEmail")
    if not isinstance(api_key, str) or not api_key:
        raise SetupError(f"Email credentials {path}: apiKey is missing")
    if not isinstance(from_email, str) or not from_email:
        raise SetupError(f"Email credentials {path}: fromEmail is missing")
    return EmailConfig(api_key=api_key, from_email=from_email)


class SendGridSender:
    def __init__(
        self,
        config: EmailConfig,
        *,
        from_name: str = "TTP Interview Alert",
        timeout_seconds: float = 20.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._config = config
        self._from_name = from_name
        self._http = http_client or httpx.AsyncClient(timeout=timeout_seconds)

    async def aclose(self) -> None:
        await self._http.aclose()

    async def send_html(self, *, to_email: str, subject: str, html: str) -> None:
        payload = {
            "personalizations": [{"to": [{"email": to_email}]}],
            "from": {"email": self._config.from_email, "name": self._from_name},
            "subject": subject,
            "content": [{"type": "text/html", "value": html}],
        }
        headers = {"Authorization": f"Bearer {self._config.api_key}"}

        try:
            r = await self._http.post(SENDGRID_URL, json=payload, headers=headers)
            r.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise EmailSendError(
                f"SendGrid API error: HTTP {e.response.status_code} {e.response.text}"
            ) from e
        except httpx.HTTPError as e:
            raise EmailSendError(f"SendGrid request failed ({type(e).__name__}: {e})") from e
