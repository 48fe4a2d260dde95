from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from pydantic import BaseModel


def mask_phone(phone: Optional[str]) -> str:
    """Keep only the last four digits of a phone number for log output."""
    if not phone:
        return ""
    return f"***{phone[-4:]}"


class NotificationResult(BaseModel):
    message_id: Optional[str] = None
    status: str = "sent"


class NotificationSenderBase(ABC):
    """
    Outbound notification channel. Implementations raise NotificationError when
    delivery fails; callers decide whether that is fatal (it never is for the
    payment link flows).
    """

    channel: str = "base"
    templates: Dict[str, Any] = {}

    def render(self, template: str, data: Dict[str, Any]):
        renderer = self.templates.get(template)
        if renderer is None:
            raise ValueError(f"Unknown {self.channel} template: {template}")
        return renderer(data)

    @abstractmethod
    async def send(self, target: str, template: str, data: Dict[str, Any]) -> NotificationResult:
        """
        Deliver the rendered template to the target address or phone number.
        """
        raise NotImplementedError

    async def close(self) -> None:
        return None
