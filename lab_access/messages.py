"""Notification messages: static configuration, body templates and senders.

Every message goes out as HTML email through a ``Mailer``. The SMS text is an
email to the carrier's SMS gateway address.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, replace
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping, Optional, Union

from jinja2 import Environment, FileSystemLoader, PackageLoader, StrictUndefined, select_autoescape

from .config import AppConfig
from .ports import Attachment, Mailer
from .records import BasketRecord, BasketStatus, UserRecord

__all__ = [
    "MessageKind",
    "MessageConfig",
    "MESSAGE_CONFIGS",
    "TemplateRenderer",
    "get_config",
    "get_body",
    "message_configs",
    "basket_message_data",
    "send_text",
    "send_confirmation_email",
    "send_basket_assignment_email",
]

logger = logging.getLogger(__name__)


class MessageKind(enum.Enum):
    LAB_ACCESS_TEXT = "Lab Access Account Text"
    LAB_ACCESS_EMAIL = "Lab Access Account Email"
    BASKET_ASSIGNMENT_EMAIL = "Basket Assignment Email"


@dataclass(frozen=True)
class MessageConfig:
    """How one kind of message is addressed and rendered."""

    display_name: str
    send_as: str
    body_template: str
    send_to: Optional[str] = None
    subject: Optional[str] = None


MESSAGE_CONFIGS: Mapping[MessageKind, MessageConfig] = MappingProxyType(
    {
        MessageKind.LAB_ACCESS_TEXT: MessageConfig(
            display_name="New User Setup",
            send_as="labaccess@example.edu",
            send_to="5555550100@mms.att.net",
            subject="New User Setup",
            body_template="text_message.html",
        ),
        MessageKind.LAB_ACCESS_EMAIL: MessageConfig(
            display_name="Lab Access Automated Message",
            send_as="labaccess@example.edu",
            subject="Confirmation: UT MRC Equipment Access User Authorization Form Received",
            body_template="email_account_creation.html",
        ),
        MessageKind.BASKET_ASSIGNMENT_EMAIL: MessageConfig(
            display_name="Automated Basket Assignment",
            send_as="labaccess@example.edu",
            body_template="email_basket_assignment.html",
        ),
    }
)


def get_config(
    kind: MessageKind, configs: Mapping[MessageKind, MessageConfig] = MESSAGE_CONFIGS
) -> MessageConfig:
    return configs[kind]


def message_configs(config: AppConfig) -> Mapping[MessageKind, MessageConfig]:
    """Return the message mapping addressed with the configured sender and gateway."""
    derived = {}
    for kind, message in MESSAGE_CONFIGS.items():
        message = replace(message, send_as=config.sender_address)
        if kind is MessageKind.LAB_ACCESS_TEXT:
            message = replace(message, send_to=config.sms_gateway)
        derived[kind] = message
    return MappingProxyType(derived)


# ---------------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------------


class TemplateRenderer:
    """Renders the HTML body templates with Jinja2.

    Templates receive the message data as ``data``.
    """

    def __init__(self, template_dir: Optional[Union[str, Path]] = None):
        if template_dir is None:
            loader = PackageLoader("lab_access", "templates")
        else:
            loader = FileSystemLoader(str(template_dir))
        self.environment = Environment(
            loader=loader,
            autoescape=select_autoescape(["html"]),
            undefined=StrictUndefined,
        )

    def render(self, template_name: str, data: Any) -> str:
        return self.environment.get_template(template_name).render(data=data)


def get_body(config: MessageConfig, data: Any, renderer: TemplateRenderer) -> str:
    """Render the body template named by ``config`` against ``data``."""
    return renderer.render(config.body_template, data)


# ---------------------------------------------------------------------------
# Senders
# ---------------------------------------------------------------------------


def send_text(
    user: UserRecord,
    mailer: Mailer,
    renderer: TemplateRenderer,
    configs: Mapping[MessageKind, MessageConfig] = MESSAGE_CONFIGS,
) -> None:
    """Text the new-user notice to the fixed SMS gateway."""
    config = get_config(MessageKind.LAB_ACCESS_TEXT, configs)
    mailer.send_email(
        config.send_to,
        config.subject,
        "",
        sender=config.send_as,
        html_body=get_body(config, user, renderer),
        name=config.display_name,
    )
    logger.info(f"[OK] Sent new user text for {user.eid}")


def send_confirmation_email(
    user: UserRecord,
    mailer: Mailer,
    renderer: TemplateRenderer,
    configs: Mapping[MessageKind, MessageConfig] = MESSAGE_CONFIGS,
) -> None:
    """Email the applicant that their authorization form was received."""
    config = get_config(MessageKind.LAB_ACCESS_EMAIL, configs)
    mailer.send_email(
        user.email,
        config.subject,
        "",
        sender=config.send_as,
        html_body=get_body(config, user, renderer),
        name=config.display_name,
    )
    logger.info(f"[OK] Sent confirmation email to {user.email}")


def basket_message_data(basket: BasketRecord) -> dict:
    if basket.status is BasketStatus.ASSIGN:
        status = "Assigned To You"
        message = (
            f"You have been assigned cleanroom basket {basket.basket}. The QR code for your "
            "basket is attached below. Print it and place it inside the basket tag holder"
        )
    else:
        status = "Returned"
        message = f"The cleanroom basket you were assigned, {basket.basket}, has been returned."
    return {
        "basket": basket.basket,
        "status": status,
        "name": basket.name,
        "message": message,
    }


def send_basket_assignment_email(
    basket: BasketRecord,
    mailer: Mailer,
    renderer: TemplateRenderer,
    attachment: Optional[Attachment] = None,
    configs: Mapping[MessageKind, MessageConfig] = MESSAGE_CONFIGS,
) -> None:
    """Email the assignee that a basket was assigned or returned.

    Args:
        basket: The normalized basket record.
        mailer: Transport used to send the email.
        renderer: Body template renderer.
        attachment: Badge PDF to attach. Only assignments carry one.
        configs: Message configuration mapping.
    """
    config = get_config(MessageKind.BASKET_ASSIGNMENT_EMAIL, configs)
    verb = "Assigned" if basket.status is BasketStatus.ASSIGN else "Returned"
    mailer.send_email(
        basket.email,
        f"Cleanroom Basket {verb}",
        "",
        sender=config.send_as,
        html_body=get_body(config, basket_message_data(basket), renderer),
        name=config.display_name,
        attachments=[attachment] if attachment is not None else [],
    )
    logger.info(f"[OK] Sent basket {verb.lower()} email to {basket.email}")
