from .account import Account
from .verification import VerificationCode

__all__ = ["Account", "VerificationCode"]
