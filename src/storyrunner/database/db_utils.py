# --- database/db_utils.py ---

from typing import List, Optional
from sqlalchemy import create_engine, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker, scoped_session
from contextlib import contextmanager
from passlib.hash import bcrypt
import logging

from ..core.config import settings
from ..core.errors import ConflictError, NotFoundError
from ..models.database import Base, User, utcnow

logging.basicConfig(level=logging.DEBUG if settings.debug else logging.INFO,
                    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)

# Configure Database
DB_URL = settings.database_url

# Create engine and session factory
engine = create_engine(DB_URL, connect_args={"check_same_thread": False} if DB_URL.startswith('sqlite') else {})
# expire_on_commit=False: rows returned from get_db() blocks stay readable after the session is removed
SessionLocal = scoped_session(sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine))


def init_db():
    """Initialize the database tables and seed reference data"""
    # Imported here: the settings store itself depends on get_db
    from ..services.settings_store import seed_default_settings

    logger.info("Initializing database tables...")
    Base.metadata.create_all(bind=engine)
    seed_default_settings()
    if get_user_by_username(settings.admin_username) is None:
        create_user(settings.admin_username, settings.admin_password, settings.admin_email, is_admin=True)
    logger.info("Database tables initialized.")


def reset_db():
    """Drop and recreate every table (used by the test suite)"""
    logger.warning("Dropping all tables on %s", DB_URL)
    Base.metadata.drop_all(bind=engine)
    init_db()


@contextmanager
def get_db():
    """Context manager for database sessions.

    Never await inside the block: the scoped session is shared by every
    coroutine running on the same thread.
    """
    db = SessionLocal()
    try:
        yield db
    except Exception:
        logger.debug("Database session error occurred, rolling back.")
        db.rollback()
        raise
    finally:
        SessionLocal.remove()


# --- User management functions ---
def hash_password(password: str) -> str:
    return bcrypt.using(rounds=settings.bcrypt_rounds).hash(password)


def create_user(username: str, password: str, email: Optional[str] = None, is_admin: bool = False,
                display_name: Optional[str] = None, wallet_balance: int = 0) -> User:
    """Create a new user with hashed password.

    ``wallet_balance`` sets the opening balance directly; later changes must
    go through the wallet ledger so they leave a transaction row.
    """
    with get_db() as db:
        user = User(
            username=username,
            password_hash=hash_password(password),
            email=email,
            display_name=display_name or username,
            is_admin=is_admin,
            wallet_balance=wallet_balance,
        )
        db.add(user)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            logger.warning(f"Cannot create user '{username}': username or email already taken.")
            raise ConflictError(f"Username or email already taken: {username}")
        db.refresh(user)
        logger.info(f"Created user: {username} (admin={is_admin})")
        return user


def authenticate_user(username: str, password: str) -> Optional[User]:
    """Authenticate a user by username and password"""
    with get_db() as db:
        user = db.query(User).filter(User.username == username).first()
        if not user:
            logger.warning(f"Authentication failed: User '{username}' not found.")
            return None
        if not bcrypt.verify(password, user.password_hash):
            logger.warning(f"Authentication failed: Incorrect password for user '{username}'.")
            return None
        user.last_login = utcnow()
        db.commit()
        logger.debug(f"User '{username}' authenticated successfully.")
        return user


def get_user(user_id: str) -> User:
    with get_db() as db:
        user = db.get(User, user_id)
        if not user:
            raise NotFoundError(f"User {user_id} not found")
        return user


def get_user_by_username(username: str) -> Optional[User]:
    with get_db() as db:
        return db.execute(select(User).where(User.username == username)).scalar_one_or_none()


def list_users(limit: int = 50, offset: int = 0) -> List[User]:
    with get_db() as db:
        return db.query(User).order_by(User.created_at.desc()).offset(offset).limit(limit).all()

# --- END OF FILE database/db_utils.py ---
