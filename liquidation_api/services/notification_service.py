"""
Notification service: in-app rows and e-mail rendering for workflow events.

Recipients and their emails are resolved DURING the request (while the DB
session is open); the route then hands the rendered message to
BackgroundTasks for fire-and-forget delivery.
"""

from dataclasses import dataclass, field
import html
from datetime import datetime
from typing import Optional
import uuid

from sqlalchemy import select, func, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from liquidation_api.models.liquidation import Liquidation
from liquidation_api.models.notification import Notification
from liquidation_api.models.user import User
from liquidation_api.services import reference_data
from liquidation_api.services.email_service import send_email
from liquidation_api.services.permissions import Actor, ROLE_HEI

logger = structlog.get_logger()

# Noisy CRUD actions are logged but never fan out
NOTIFIABLE_ACTIONS = frozenset({
    "submitted",
    "endorsed_to_accounting",
    "returned_to_hei",
    "endorsed_to_coa",
    "returned_to_rc",
    "uploaded_document",
    "added_gdrive_link",
    "deleted_document",
    "imported_beneficiaries",
    "updated_tracking",
})

# Actions that also reach every active accountant
ACCOUNTING_ACTIONS = frozenset({
    "endorsed_to_accounting",
    "endorsed_to_coa",
    "returned_to_rc",
})

# ---------- Template registry ----------

TEMPLATES = {
    "submitted": {
        "subject": "[Liquidation] {control_no} - Submitted for Review",
        "html": (
            "<h2>Liquidation Submitted</h2>"
            "<p>Liquidation <strong>{control_no}</strong> of {hei_name} was submitted "
            "for initial review by {actor_name}.</p>"
            "<p>{description}</p>"
        ),
    },
    "endorsed_to_accounting": {
        "subject": "[Liquidation] {control_no} - Endorsed to Accounting",
        "html": (
            "<h2>Endorsed to Accounting</h2>"
            "<p>Liquidation <strong>{control_no}</strong> of {hei_name} was endorsed "
            "to Accounting by {actor_name}.</p>"
            "<p>{description}</p>"
        ),
    },
    "returned_to_hei": {
        "subject": "[Liquidation] {control_no} - Returned for Compliance",
        "html": (
            "<h2>Returned to HEI</h2>"
            "<p>Liquidation <strong>{control_no}</strong> was "
            "<span style='color:red'>returned</span> by {actor_name}.</p>"
            "<p>{description}</p>"
            "<p>Please log in to review the remarks and resubmit.</p>"
        ),
    },
    "endorsed_to_coa": {
        "subject": "[Liquidation] {control_no} - Endorsed to COA",
        "html": (
            "<h2>Endorsed to COA</h2>"
            "<p>Liquidation <strong>{control_no}</strong> of {hei_name} was "
            "<span style='color:green'>endorsed to COA</span> by {actor_name}.</p>"
        ),
    },
    "returned_to_rc": {
        "subject": "[Liquidation] {control_no} - Returned by Accounting",
        "html": (
            "<h2>Returned to Regional Coordinator</h2>"
            "<p>Accounting returned liquidation <strong>{control_no}</strong>.</p>"
            "<p>{description}</p>"
        ),
    },
}


@dataclass
class EmailMessage:
    recipients: list[str]
    subject: str
    html: str
    tag: Optional[str] = None


@dataclass
class DispatchResult:
    notified_user_ids: list[str] = field(default_factory=list)
    email: Optional[EmailMessage] = None


# ---------- recipient resolution ----------

async def get_user_snapshot(session: AsyncSession, user_id) -> Optional[dict]:
    if user_id is None:
        return None
    user = await session.get(User, user_id)
    if user is None or not user.is_active:
        return None
    return reference_data.user_snapshot(user)


async def list_hei_users(session: AsyncSession, hei_id) -> list[dict]:
    result = await session.execute(
        select(User).where(
            User.role == ROLE_HEI,
            User.hei_id == hei_id,
            User.is_active == True,  # noqa: E712
            User.deleted_at.is_(None),
        )
    )
    return [reference_data.user_snapshot(u) for u in result.scalars().all()]


def merge_recipients(groups: list[list[dict]], actor_id) -> list[dict]:
    """Flatten recipient groups, dropping the actor and duplicate users (first wins)."""
    seen: set[str] = set()
    merged = []
    actor = str(actor_id)
    for group in groups:
        for user in group:
            if not user or user["id"] == actor or user["id"] in seen:
                continue
            seen.add(user["id"])
            merged.append(user)
    return merged


async def resolve_liquidation_recipients(
    session: AsyncSession,
    action: str,
    liquidation: Liquidation,
    region_id,
    actor: Actor,
) -> list[dict]:
    groups: list[list[dict]] = []

    creator = await get_user_snapshot(session, liquidation.created_by)
    if creator:
        groups.append([creator])

    groups.append(await list_hei_users(session, liquidation.hei_id))

    if region_id:
        groups.append(await reference_data.get_regional_coordinators(session, region_id))

    if action in ACCOUNTING_ACTIONS:
        groups.append(await reference_data.get_accountants(session))

    return merge_recipients(groups, actor.user_id)


# ---------- dispatch ----------

def render_email(action: str, context: dict) -> Optional[tuple[str, str]]:
    template = TEMPLATES.get(action)
    if not template:
        return None
    # Values are user-entered text; only the HTML body is escaped
    escaped = {key: html.escape(str(value or "")) for key, value in context.items()}
    try:
        return template["subject"].format(**context), template["html"].format(**escaped)
    except KeyError as e:
        logger.error("notification_template_render_error", action=action, missing_key=str(e))
        return None


async def dispatch(
    session: AsyncSession,
    action: str,
    description: str,
    liquidation: Liquidation,
    actor: Actor,
    module: str = "liquidations",
    hei: Optional[dict] = None,
) -> DispatchResult:
    """
    Write one in-app notification per recipient and render the e-mail.

    Rows go in a SAVEPOINT: if that fails the error is logged and the caller's
    transition still commits. The returned e-mail is NOT sent here.
    """
    result = DispatchResult()
    if action not in NOTIFIABLE_ACTIONS:
        return result

    hei = hei or await reference_data.get_hei(session, liquidation.hei_id)
    recipients = await resolve_liquidation_recipients(
        session, action, liquidation, hei.get("region_id"), actor
    )
    if not recipients:
        logger.info("notification_no_recipients", action=action, liquidation_id=str(liquidation.id))
        return result

    try:
        async with session.begin_nested():
            for user in recipients:
                session.add(Notification(
                    id=uuid.uuid4(),
                    user_id=uuid.UUID(user["id"]),
                    actor_id=actor.user_id,
                    actor_name=actor.name,
                    action=action,
                    description=description,
                    subject_type="liquidation",
                    subject_id=liquidation.id,
                    subject_label=liquidation.control_no,
                    module=module,
                ))
    except SQLAlchemyError as exc:
        logger.error(
            "notification_dispatch_failed",
            action=action,
            liquidation_id=str(liquidation.id),
            error=str(exc),
        )
        return result

    result.notified_user_ids = [u["id"] for u in recipients]
    logger.info(
        "notifications_created",
        action=action,
        liquidation_id=str(liquidation.id),
        recipients=len(recipients),
    )

    rendered = render_email(action, {
        "control_no": liquidation.control_no,
        "hei_name": hei.get("name", ""),
        "actor_name": actor.name,
        "description": description,
    })
    emails = [u["email"] for u in recipients if u.get("email")]
    if rendered and emails:
        subject, body = rendered
        result.email = EmailMessage(
            recipients=emails, subject=subject, html=body, tag=action
        )
    return result


async def deliver(message: Optional[EmailMessage]) -> bool:
    """BackgroundTasks entry point."""
    if message is None:
        return False
    sent = await send_email(
        message.recipients,
        message.subject,
        message.html,
        tags=[message.tag] if message.tag else None,
    )
    logger.info("notification_email_sent", recipients=len(message.recipients), success=sent)
    return sent


# ---------- inbox ----------

async def list_notifications(
    session: AsyncSession,
    user_id,
    unread_only: bool = False,
    page: int = 1,
    limit: int = 20,
) -> tuple[list[Notification], int, int]:
    """Return (page of notifications, total, unread count) for one user."""
    base = select(Notification).where(Notification.user_id == user_id)
    if unread_only:
        base = base.where(Notification.read_at.is_(None))

    total = (await session.execute(
        select(func.count()).select_from(base.subquery())
    )).scalar() or 0
    unread = (await session.execute(
        select(func.count()).select_from(Notification).where(
            Notification.user_id == user_id, Notification.read_at.is_(None)
        )
    )).scalar() or 0

    offset = (page - 1) * limit
    rows = await session.execute(
        base.order_by(Notification.created_at.desc()).offset(offset).limit(limit)
    )
    return list(rows.scalars().all()), total, unread


async def mark_read(session: AsyncSession, user_id, notification_id) -> Optional[Notification]:
    result = await session.execute(
        select(Notification).where(
            Notification.id == notification_id, Notification.user_id == user_id
        )
    )
    notification = result.scalar_one_or_none()
    if notification is None:
        return None
    if notification.read_at is None:
        notification.read_at = datetime.utcnow()
        await session.flush()
    return notification


async def mark_all_read(session: AsyncSession, user_id) -> int:
    result = await session.execute(
        update(Notification)
        .where(Notification.user_id == user_id, Notification.read_at.is_(None))
        .values(read_at=datetime.utcnow())
    )
    return result.rowcount or 0
