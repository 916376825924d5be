# backend/auth.py
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional
from fastapi import Depends, HTTPException, Request, status
from authlib.integrations.starlette_client import OAuth
from authlib.oauth2.rfc6749.parameters import prepare_grant_uri
from jose import JWTError, jwt
from sqlmodel import select
from sqlalchemy.ext.asyncio import AsyncSession
import firebase_admin
from firebase_admin import auth as firebase_auth, credentials as firebase_credentials
from firebase_admin.exceptions import FirebaseError
from google.auth.exceptions import GoogleAuthError

from config import (
    FIREBASE_CREDENTIALS, GOOGLE_CALLBACK_URL, GOOGLE_CLIENT_ID, GOOGLE_CLIENT_SECRET, JWT_SECRET,
)
from models import User, UserRole
from database import get_session

logger = logging.getLogger(__name__)

DRIVE_FILE_SCOPE = "https://www.googleapis.com/auth/drive.file"
GOOGLE_AUTHORIZE_URL = "https://accounts.google.com/o/oauth2/v2/auth"

oauth = OAuth()
oauth.register(
    name='google', client_id=GOOGLE_CLIENT_ID, client_secret=GOOGLE_CLIENT_SECRET,
    server_metadata_url='https://accounts.google.com/.well-known/openid-configuration',
    client_kwargs={'scope': f'openid email profile {DRIVE_FILE_SCOPE}', 'prompt': 'consent'},
    authorize_params={'access_type': 'offline'},
)

ALGORITHM = "HS256"

def build_drive_auth_url(redirect_uri: Optional[str] = None) -> str:
    """Google consent URL asking for offline Drive file access."""
    return prepare_grant_uri(
        GOOGLE_AUTHORIZE_URL, GOOGLE_CLIENT_ID, 'code',
        redirect_uri=redirect_uri or GOOGLE_CALLBACK_URL, scope=[DRIVE_FILE_SCOPE],
        access_type='offline',
    )

def create_access_token(data: dict) -> str:
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + timedelta(days=3)
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, JWT_SECRET, algorithm=ALGORITHM)

def _firebase_app():
    try:
        return firebase_admin.get_app()
    except ValueError:
        cred = firebase_credentials.Certificate(FIREBASE_CREDENTIALS) if FIREBASE_CREDENTIALS else None
        return firebase_admin.initialize_app(cred)

def verify_firebase_token(token: str) -> dict:
    """Decoded Firebase ID token claims. Raises ValueError or FirebaseError when invalid."""
    return firebase_auth.verify_id_token(token, app=_firebase_app())

async def find_or_create_user(session: AsyncSession, user_info: dict, token: dict) -> User:
    google_id = user_info.get('sub')
    if not google_id: raise HTTPException(status_code=400, detail="Invalid user info from Google")

    statement = select(User).where(User.googleId == google_id)
    result = await session.execute(statement)
    db_user = result.scalar_one_or_none()

    expires_at = datetime.now(timezone.utc) + timedelta(seconds=token.get('expires_in', 3600))

    if db_user:
        db_user.name = user_info.get('name') or db_user.name
        db_user.email = user_info.get('email') or db_user.email
        db_user.accessToken = token.get('access_token')
        if token.get('refresh_token'):
            db_user.refreshToken = token.get('refresh_token')
        db_user.tokenExpiry = expires_at
    else:
        db_user = User(
            googleId=google_id, name=user_info.get('name'), email=user_info.get('email'),
            accessToken=token.get('access_token'), refreshToken=token.get('refresh_token'),
            tokenExpiry=expires_at,
        )
    session.add(db_user)
    await session.commit()
    await session.refresh(db_user)
    return db_user

async def find_or_create_user_from_claims(session: AsyncSession, claims: dict) -> User:
    uid = claims.get('uid') or claims.get('user_id') or claims.get('sub')
    if not uid: raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")

    result = await session.execute(select(User).where(User.googleId == uid))
    db_user = result.scalar_one_or_none()
    changed = False
    if db_user is None:
        db_user = User(googleId=uid, name=claims.get('name') or "Unknown User", email=claims.get('email'))
        changed = True
    elif claims.get('email') and not db_user.email:
        db_user.email = claims['email']
        changed = True
    if claims.get('role') == UserRole.admin.value and db_user.role != UserRole.admin:
        db_user.role = UserRole.admin
        changed = True
    if changed:
        session.add(db_user)
        await session.commit()
        await session.refresh(db_user)
    return db_user

def _bearer_token(request: Request) -> Optional[str]:
    header = request.headers.get("Authorization", "")
    parts = header.split(" ")
    if len(parts) != 2 or parts[0].lower() != "bearer" or not parts[1]:
        return None
    return parts[1]

async def get_current_user(request: Request, session: AsyncSession = Depends(get_session)) -> User:
    token = _bearer_token(request)
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized - No token provided",
            headers={"WWW-Authenticate": "Bearer"},
        )
    invalid = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token",
        headers={"WWW-Authenticate": "Bearer"},
    )

    # Session tokens issued by the OAuth callback.
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[ALGORITHM])
    except JWTError:
        payload = None
    if payload is not None:
        user_id_str = payload.get("sub")
        if user_id_str is None or not str(user_id_str).isdigit(): raise invalid
        user = await session.get(User, int(user_id_str))
        if user is None: raise invalid
        return user

    # Otherwise a Firebase ID token from the client SDK.
    try:
        claims = verify_firebase_token(token)
    except (ValueError, FirebaseError) as e:
        logger.warning(f"Token verification failed: {e}")
        raise invalid
    except (OSError, GoogleAuthError) as e:
        # Unreadable FIREBASE_CREDENTIALS or no usable default credentials.
        logger.error(f"Firebase is not configured, cannot verify token: {e}")
        raise invalid
    return await find_or_create_user_from_claims(session, claims)

async def require_admin(current_user: User = Depends(get_current_user)) -> User:
    if current_user.role != UserRole.admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Only admins can fix permissions")
    return current_user
