from secad.models.entity import Entity
from secad.models.entity_settings import EntitySettings
from secad.models.event_log import EventLog
from secad.models.member import Member
from secad.models.security_class import SecurityClass
from secad.models.transaction import Transaction
from secad.models.user import User
from secad.models.user_entity_access import UserEntityAccess

__all__ = [
    "Entity",
    "EntitySettings",
    "EventLog",
    "Member",
    "SecurityClass",
    "Transaction",
    "User",
    "UserEntityAccess",
]
