from .contracts import Contract, ContractStatusEnum
from .email_notifications import EmailNotification
from .events import Event
from .newsletter_subscriptions import NewsletterSubscription
from .user_sessions import UserSession
from .users import User

__all__ = [
    "Contract",
    "ContractStatusEnum",
    "EmailNotification",
    "Event",
    "NewsletterSubscription",
    "User",
    "UserSession",
]
