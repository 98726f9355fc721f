"""
Email preview builder.

Turns one "Add to Preview" action (recipients plus subject/body templates)
into an EmailBatch and one EmailSendIntent per recipient.
"""
import re
from typing import Any, Callable, Iterable, List, Mapping, Optional, Sequence, Tuple

from .intents import EmailBatch, EmailRecipient, EmailSendIntent

TEMPLATE_VARIABLE = re.compile(r"\{([a-zA-Z_][a-zA-Z0-9_]*)\}")


def render_template(text: str, variables: Mapping[str, Any]) -> str:
    """
    Replace {name} placeholders with values from `variables`.

    Placeholders whose value is missing or None are left untouched so staff
    can spot them in the preview.
    """
    def substitute(match: re.Match) -> str:
        value = variables.get(match.group(1))
        if value is None:
            return match.group(0)
        return str(value)

    return TEMPLATE_VARIABLE.sub(substitute, text)


def build_email_preview(
    recipients: Iterable[EmailRecipient],
    subject: str,
    body: str,
    cc: Sequence[EmailRecipient] = (),
    reply_to: Optional[str] = None,
    assignment_id: Optional[int] = None,
    why: Optional[str] = None,
    variables_for: Optional[Callable[[EmailRecipient], Mapping[str, Any]]] = None,
) -> Tuple[EmailBatch, List[EmailSendIntent]]:
    """
    Build a fresh batch and its per-recipient emails.

    Args:
        recipients: Who receives the email; repeated subjects are collapsed
        subject: Subject template
        body: Body template
        cc: Addresses copied on every email of the batch
        reply_to: Optional reply-to address
        assignment_id: Assignment the batch is about, if any
        why: Audience description shown next to each drafted email
        variables_for: Returns template variables for a recipient

    Returns:
        (EmailBatch, list of EmailSendIntent)

    Raises:
        ValueError: If there are no recipients or subject/body is empty
    """
    unique: List[EmailRecipient] = []
    seen = set()
    for recipient in recipients:
        if recipient.subject_id in seen:
            continue
        seen.add(recipient.subject_id)
        unique.append(recipient)

    if not unique:
        raise ValueError("No recipients to email")
    if not subject or not body:
        raise ValueError("Please enter subject and body")

    cc = tuple(cc)
    batch = EmailBatch(
        subject=subject,
        body=body,
        cc=cc,
        reply_to=reply_to or None,
        assignment_id=assignment_id,
    )

    intents = []
    for recipient in unique:
        variables = dict(variables_for(recipient)) if variables_for else {}
        variables.setdefault("email", recipient.address)
        intents.append(EmailSendIntent(
            recipient=recipient,
            subject=render_template(subject, variables),
            body=render_template(body, variables),
            batch=batch,
            cc=cc,
            reply_to=batch.reply_to,
            why=why,
        ))

    return batch, intents
