import logging
import uuid

from eventhub.database.port import StoragePort
from eventhub.errors import NotFound
from eventhub.schemas.user import User, UserCreate, UserOut
from eventhub.services.attendance_registry import utcnow

logger = logging.getLogger(__name__)


class UserService:
    def __init__(self, storage: StoragePort):
        self.storage = storage

    def create_user(self, user_data: UserCreate) -> UserOut:
        """Register an identity record; the email must be unused.

        Emails are stored lowercased, so uniqueness is case-insensitive on
        every backend.
        """
        user = User(
            id=str(uuid.uuid4()),
            name=user_data.name,
            email=user_data.email.lower(),
            avatar=user_data.avatar,
            passwordHash=user_data.passwordHash,
            createdAt=utcnow(),
        )
        self.storage.add_user(user)
        logger.info("Registered user %s", user.id)
        return UserOut(**user.model_dump(exclude={"passwordHash"}))

    def get_user(self, user_id: str) -> UserOut:
        user = self.storage.get_user(user_id)
        if user is None:
            raise NotFound("User not found")
        return UserOut(**user.model_dump(exclude={"passwordHash"}))
