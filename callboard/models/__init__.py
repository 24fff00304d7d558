"""Remote-store models for the callboard system."""

from .base import Base, create_engine, create_session_factory, init_db
from .profile import Profile
from .establishment import Establishment
from .call import Call
from .customer import CustomerFavorite, CustomerDetails

__all__ = [
    "Base",
    "create_engine",
    "create_session_factory",
    "init_db",
    "Profile",
    "Establishment",
    "Call",
    "CustomerFavorite",
    "CustomerDetails",
]
