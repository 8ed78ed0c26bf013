import logging
from dataclasses import dataclass

import requests
from sqlalchemy.exc import SQLAlchemyError

from .config import (
    WHATSAPP_API_KEY,
    WHATSAPP_ENABLED_KEY,
    WHATSAPP_PHONE_NUMBER_ID_KEY,
    settings,
)
from .database import SessionLocal
from .directory import ContactDirectory, SettingsStore
from .errors import NotificationError
from .models import WhatsappAlert, utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DispatchResult:
    success: bool
    error: str | None = None
    message_id: str | None = None


class NotificationDispatcher:
    """Delivers a text message to the holder of a role within a school."""

    def send(self, school_id: int, recipient_role: str, message: str) -> DispatchResult:
        raise NotImplementedError


@dataclass(frozen=True)
class WhatsAppConfig:
    api_key: str | None
    phone_number_id: str | None
    enabled: bool

    @property
    def usable(self) -> bool:
        return self.enabled and bool(self.api_key) and bool(self.phone_number_id)


class WhatsAppDispatcher(NotificationDispatcher):
    # Runs on a worker thread, so it opens its own database session.
    def __init__(self, session_factory=SessionLocal, *, api_base: str | None = None, timeout: float | None = None) -> None:
        self.session_factory = session_factory
        self.api_base = (api_base or settings.whatsapp_api_base).rstrip("/")
        self.timeout = timeout or settings.notify_timeout_seconds

    def send(self, school_id: int, recipient_role: str, message: str) -> DispatchResult:
        db = self.session_factory()
        try:
            config = self._load_config(db, school_id)
            if not config.usable:
                logger.warning(f"WhatsApp not configured or disabled for school {school_id}")
                return DispatchResult(success=False, error="WhatsApp not configured")

            phone = ContactDirectory(db).get_phone(school_id, recipient_role)
            if not phone:
                logger.warning(f"No {recipient_role} phone on file for school {school_id}")
                return DispatchResult(success=False, error=f"No {recipient_role} phone on file")

            try:
                message_id = self._post(config, phone, message)
            except NotificationError as exc:
                logger.error(f"WhatsApp send to {phone} failed for school {school_id}: {exc}")
                self._log_delivery(db, school_id, phone, message, status="failed")
                return DispatchResult(success=False, error=str(exc))

            self._log_delivery(db, school_id, phone, message, status="sent", external_id=message_id)
            logger.info(f"WhatsApp alert sent to {recipient_role} of school {school_id}")
            return DispatchResult(success=True, message_id=message_id)
        finally:
            db.close()

    @staticmethod
    def _load_config(db, school_id: int) -> WhatsAppConfig:
        values = SettingsStore(db).get_settings(
            school_id, (WHATSAPP_API_KEY, WHATSAPP_PHONE_NUMBER_ID_KEY, WHATSAPP_ENABLED_KEY)
        )
        return WhatsAppConfig(
            api_key=values.get(WHATSAPP_API_KEY),
            phone_number_id=values.get(WHATSAPP_PHONE_NUMBER_ID_KEY),
            enabled=(values.get(WHATSAPP_ENABLED_KEY) or "").lower() == "true",
        )

    def _post(self, config: WhatsAppConfig, phone: str, message: str) -> str | None:
        url = f"{self.api_base}/{config.phone_number_id}/messages"
        payload = {
            "messaging_product": "whatsapp",
            "to": phone,
            "type": "text",
            "text": {"body": message},
        }
        headers = {
            "Authorization": f"Bearer {config.api_key}",
            "Content-Type": "application/json",
        }
        try:
            response = requests.post(url, json=payload, headers=headers, timeout=self.timeout)
            response.raise_for_status()
            body = response.json()
        except (requests.RequestException, ValueError) as exc:
            raise NotificationError(f"Failed to send WhatsApp message: {exc}") from exc

        messages = body.get("messages") or []
        return messages[0].get("id") if messages else None

    @staticmethod
    def _log_delivery(db, school_id: int, phone: str, message: str, *, status: str, external_id: str | None = None) -> None:
        try:
            db.add(
                WhatsappAlert(
                    school_id=school_id,
                    recipient_phone=phone,
                    message_content=message,
                    message_status=status,
                    message_type="principal_alert",
                    external_message_id=external_id,
                    sent_at=utcnow(),
                )
            )
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            logger.error(f"Failed to write WhatsApp delivery log for school {school_id}: {exc}")
