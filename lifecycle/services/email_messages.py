"""Header messages for booking status emails, per status and tenant."""

from lifecycle.fsm.status import StatusLabel
from shared.config import get_settings

HEADER_TEMPLATES: dict[StatusLabel, str] = {
    StatusLabel.REQUESTED: "Your reservation request for {tenant_name} has been received.",
    StatusLabel.PENDING: "Your reservation request for {tenant_name} has been first approved and is awaiting final approval.",
    StatusLabel.APPROVED: "Your reservation request for {tenant_name} has been approved.",
    StatusLabel.DECLINED: "Your reservation request for {tenant_name} has been declined.",
    StatusLabel.CANCELED: (
        "Your reservation request for {tenant_name} has been cancelled. "
        "For detailed reasons regarding this decision, please contact us at {contact_email}."
    ),
    StatusLabel.CHECKED_IN: (
        "Your reservation request for {tenant_name} has been checked in. "
        "Thank you for choosing {tenant_name}."
    ),
    StatusLabel.CHECKED_OUT: (
        "Your reservation request for {tenant_name} has been checked out. "
        "Thank you for choosing {tenant_name}."
    ),
    StatusLabel.NO_SHOW: (
        "You did not check-in for your {tenant_name} Reservation and have been marked as a no-show."
    ),
    StatusLabel.CLOSED: "Your reservation for {tenant_name} has been closed.",
}


def tenant_display_name(tenant: str | None) -> str:
    settings = get_settings()
    tenant = tenant or settings.DEFAULT_TENANT
    return settings.TENANT_NAMES.get(tenant, tenant)


def header_message(
    status: StatusLabel | str,
    tenant: str | None,
    reason: str | None = None,
    violation_count: int | None = None,
) -> str:
    """
    Build the header message for a status email.

    Decline messages carry the reason when given, otherwise point to the
    contact address. No-show and late-cancel messages mention the user's
    cumulative violation count when known.
    """
    settings = get_settings()
    try:
        label = StatusLabel(status)
    except ValueError:
        label = StatusLabel.UNKNOWN
    template = HEADER_TEMPLATES.get(label, "Your reservation for {tenant_name} has been updated.")
    message = template.format(
        tenant_name=tenant_display_name(tenant),
        contact_email=settings.CONTACT_EMAIL,
    )

    if label == StatusLabel.DECLINED:
        if reason:
            message += f" Reason: {reason}"
        else:
            message += (
                " For detailed reasons regarding this decision, please contact us at "
                f"{settings.CONTACT_EMAIL}."
            )

    if violation_count is not None:
        message += penalty_message(violation_count)
    return message


def penalty_message(violation_count: int) -> str:
    """Reminder appended to no-show and late-cancel emails."""
    return (
        " We want to remind you of the revocation policy regarding late cancellations "
        f"and no shows. Currently, you have {violation_count} violation(s)."
    )
