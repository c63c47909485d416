"""
Pre-approved canned replies.

Macros are written and signed off by the operator ahead of time, so the
pipeline can use them without calling the drafter. They still go through
the policy gate like every other draft.
"""
from django.conf import settings


def _signoff() -> str:
    return f"– {settings.AGENT_SIGNOFF_NAME}"


def _greeting(name: str | None) -> str:
    return f"Hey {name}," if name else "Hey,"


def docs_video_mismatch(name: str | None = None) -> str:
    return (
        f"{_greeting(name)}\n\n"
        "That video shows an example email some customers receive, but not everyone "
        "gets that exact message — it depends on when the unit shipped and which update "
        "path applies.\n\n"
        "Reply with:\n"
        "1) which unit you have (Apex / G-Series / Cluster)\n"
        "2) the order email or order number\n"
        "3) what you see when you try to update (error or screenshot if possible)\n\n"
        "With that I can point you to the correct update method for your exact setup.\n\n"
        f"{_signoff()}"
    )


def firmware_access_clarify(name: str | None = None) -> str:
    return (
        f"{_greeting(name)}\n\n"
        "I can help, but I need 3 quick details so I don't send you the wrong file:\n\n"
        "1) Which unit are you updating (Apex / G-Series / Cluster)?\n"
        "2) What exactly happens when the site kicks you off (login loop, error message, "
        "blank page, etc.)?\n"
        "3) What email did you order with (or your order number)?\n\n"
        f"{_signoff()}"
    )


def order_verification_request(name: str | None = None) -> str:
    return (
        f"{_greeting(name)}\n\n"
        "Happy to look into your order. So I can find it, could you reply with your "
        "order number and the email address you ordered with?\n\n"
        f"{_signoff()}"
    )


def escalation_holding_reply(name: str | None = None) -> str:
    return (
        f"{_greeting(name)}\n\n"
        "Thanks for reaching out. I've passed your message to our team lead, who is "
        "reviewing your case personally. You'll hear back from a member of our team "
        "directly.\n\n"
        f"{_signoff()}"
    )


def clarification_loop_escalation(name: str | None = None) -> str:
    return (
        f"{_greeting(name)}\n\n"
        "Sorry this is taking a few rounds. I've asked our team lead to take a look, "
        "and they'll follow up with you directly.\n\n"
        f"{_signoff()}"
    )


def handoff_timeout_apology(name: str | None = None) -> str:
    return (
        f"{_greeting(name)}\n\n"
        "Sorry for the slow reply on this one. I'm picking your conversation back up "
        "now. Could you let me know where things stand, and whether anything has "
        "changed since you last heard from us?\n\n"
        f"{_signoff()}"
    )


# Intents with a macro that fully answers (SEND_PREAPPROVED_MACRO)
ANSWER_MACROS = {
    "DOCS_VIDEO_MISMATCH": docs_video_mismatch,
}

# Intents with a macro that asks for their missing info better than the generic prompt
CLARIFY_MACROS = {
    "FIRMWARE_ACCESS_ISSUE": firmware_access_clarify,
}
