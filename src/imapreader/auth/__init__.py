from imapreader.auth.base import AuthContext, IMAPAuth
from imapreader.auth.password import PasswordAuth

__all__ = [
    "AuthContext",
    "IMAPAuth",
    "PasswordAuth",
]
