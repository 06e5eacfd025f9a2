from botdesk.models.user import User
from botdesk.models.credential import Credential
from botdesk.models.bot import Bot, BotStatus

__all__ = ["User", "Credential", "Bot", "BotStatus"]
