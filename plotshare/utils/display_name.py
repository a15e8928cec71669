from plotshare.models.user import User

SUPPORT_DISPLAY_NAME = "PlotShare Support"


def get_display_name(user: User | None, *, as_staff: bool = False) -> str:
    """Name shown next to a dispute message.

    Staff acting on a dispute appear under the support label rather than
    their personal name.
    """
    if as_staff:
        return SUPPORT_DISPLAY_NAME
    if user is None:
        return "Deleted user"
    if user.first_name and user.last_name:
        return f"{user.first_name} {user.last_name[0]}."
    if user.first_name:
        return user.first_name
    return user.email.split("@")[0]
