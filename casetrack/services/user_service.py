"""User service — registration of display identities and acting-user lookup."""
import logging

from sqlalchemy.exc import IntegrityError

from casetrack.core.exceptions import NotFoundError, ValidationError
from casetrack.models import db
from casetrack.models.project import User
from casetrack.utils.helpers import unit_of_work

logger = logging.getLogger(__name__)


def _email_taken(email: str) -> bool:
    return User.query.filter_by(email=email).first() is not None


def _duplicate_email(email: str) -> ValidationError:
    return ValidationError(f"User with email {email!r} already exists", details={"email": email})


def create_user(data: dict) -> User:
    """Register a user.

    Raises:
        ValidationError: If the email is already taken, including when a
            concurrent registration wins the unique index.
    """
    email = data["email"].strip().lower()
    try:
        with unit_of_work("User"):
            if _email_taken(email):
                raise _duplicate_email(email)
            user = User(
                name=data["name"].strip(),
                email=email,
                avatar_url=data.get("avatar_url") or data.get("avatarUrl"),
            )
            db.session.add(user)
    except IntegrityError as exc:
        raise _duplicate_email(email) from exc

    logger.info("User created id=%s", user.id)
    return user


def resolve_acting_user(user_id: int | None) -> int:
    """Return the id of the user performing the request.

    An explicit id must exist. Without one, the first registered user acts.

    Raises:
        NotFoundError: If ``user_id`` was given but does not exist.
        ValidationError: If no user id was given and no user exists.
    """
    if user_id is not None:
        if db.session.get(User, user_id) is None:
            raise NotFoundError(resource="User", resource_id=user_id)
        return user_id

    first = User.query.order_by(User.id).first()
    if first is None:
        raise ValidationError("No acting user available; register a user first")
    return first.id
