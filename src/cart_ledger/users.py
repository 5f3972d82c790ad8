from __future__ import annotations

from typing import Any

from django.contrib.auth import get_user_model

from .exceptions import UserNotFound


def resolve_user(user_id: Any):
    """Return the user with the given primary key, or raise UserNotFound."""
    User = get_user_model()
    try:
        return User.objects.only("pk").get(pk=user_id)
    except (User.DoesNotExist, ValueError, TypeError):
        raise UserNotFound(user_id) from None
