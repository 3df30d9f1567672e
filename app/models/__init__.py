from app.models.user import User, UserRole
from app.models.token_blacklist import TokenBlacklist
