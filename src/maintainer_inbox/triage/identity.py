"""Shared identity predicates."""

BOT_USER_TYPE = "Bot"


def is_bot_login(login: str | None, user_type: str | None = None) -> bool:
    """Return True for automation accounts.

    GitHub flags apps with type "Bot", but many automation accounts are
    plain users, so any login containing "bot" counts as well.
    """
    if user_type == BOT_USER_TYPE:
        return True
    return bool(login) and "bot" in login.lower()
