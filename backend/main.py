# backend/main.py
import logging
from contextlib import asynccontextmanager
from typing import List, Optional
from urllib.parse import urlencode
from fastapi import FastAPI, Depends, Request, HTTPException, WebSocket, status
from fastapi.responses import RedirectResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select
from starlette.middleware.sessions import SessionMiddleware
from starlette.middleware.cors import CORSMiddleware
from pydantic import BaseModel, EmailStr, Field
from google.auth.exceptions import GoogleAuthError
from googleapiclient.errors import HttpError

from config import CLIENT_URL, CORS_ORIGINS, GOOGLE_SERVICE_ACCOUNT_EMAIL, JWT_SECRET, LOG_LEVEL
from database import create_db_and_tables, get_session
from logging_config import setup_logging
from models import Letter, User, UserRole, utcnow
from auth import oauth, build_drive_auth_url, create_access_token, find_or_create_user, get_current_user, require_admin
from realtime import manager
from services import drive_service

logger = logging.getLogger(__name__)

# Failures from Drive, Google credentials or the database.
BACKEND_ERRORS = (HttpError, GoogleAuthError, SQLAlchemyError, ValueError)

@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging(LOG_LEVEL)
    logger.info("Starting up and creating database tables...")
    await create_db_and_tables()
    logger.info("Startup complete.")
    yield

app = FastAPI(title="Letters Backend", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware, allow_origins=CORS_ORIGINS, allow_credentials=True,
    allow_methods=["*"], allow_headers=["*"],
)
app.add_middleware(SessionMiddleware, secret_key=JWT_SECRET)

# --- Pydantic Models ---
class UserProfile(BaseModel): id: int; googleId: str; name: Optional[str] = None; email: Optional[str] = None; role: UserRole; lettersFolderId: Optional[str] = None
class LetterDraft(BaseModel): title: str = Field(min_length=1); content: str = Field(min_length=1)
class CollaboratorRequest(BaseModel): letterId: int; collaboratorEmail: EmailStr
class LetterSaved(BaseModel): message: str; fileId: str; webViewLink: Optional[str] = None
class LetterUpdated(BaseModel): message: str; fileId: str; webViewLink: Optional[str] = None; webContentLink: Optional[str] = None
class MessageResponse(BaseModel): message: str
class FixPermissionsResponse(BaseModel): message: str; fixed: int; failed: int

def get_drive():
    """Service Drive client, or None when it cannot be built.

    Routes that only enrich or clean up with Drive carry on without it;
    routes that need it call require_drive.
    """
    try:
        return drive_service.get_service_drive()
    except (HttpError, GoogleAuthError, ValueError, OSError) as e:
        logger.error(f"Drive client unavailable: {e}")
        return None

def require_drive(drive):
    if drive is None:
        raise HTTPException(status_code=500, detail="Cloud storage is not configured")
    return drive

def letter_payload(letter: Letter, links: Optional[dict] = None) -> dict:
    payload = letter.model_dump()
    payload["collaborators"] = list(letter.collaborators or [])
    if links:
        payload.update(links)
    return payload

async def load_letter(session: AsyncSession, letter_id: int) -> Letter:
    letter = await session.get(Letter, letter_id)
    if not letter:
        raise HTTPException(status_code=404, detail="Letter not found")
    return letter

async def links_or_none(drive, letter: Letter) -> Optional[dict]:
    """Fresh Drive links for a letter; a lookup failure is logged and yields None."""
    if drive is None or not letter.googleDriveId:
        return None
    try:
        return await drive_service.get_file_links(drive, letter.googleDriveId)
    except Exception:
        logger.exception(f"Error getting link for letter {letter.id}")
        return None

# --- Auth Routes ---
@app.get("/auth/google/url")
async def google_auth_url(request: Request):
    return {"url": build_drive_auth_url(str(request.url_for('auth_callback')))}

@app.get("/auth/google")
async def login(request: Request):
    assert oauth.google is not None
    redirect_uri = request.url_for('auth_callback')
    return await oauth.google.authorize_redirect(request, redirect_uri)

@app.get("/auth/google/callback", name="auth_callback")
async def auth_callback(request: Request, session: AsyncSession = Depends(get_session)):
    try:
        assert oauth.google is not None
        token = await oauth.google.authorize_access_token(request)
        user_info = token['userinfo']
        db_user = await find_or_create_user(session, user_info, token)
    except Exception as e:
        logger.exception(f"Error in auth callback: {e}")
        return RedirectResponse(url=f"{CLIENT_URL}/login/error")

    if not db_user.lettersFolderId:
        try:
            user_drive = drive_service.get_user_drive(db_user)
            db_user.lettersFolderId = await drive_service.create_user_letters_folder(user_drive, GOOGLE_SERVICE_ACCOUNT_EMAIL)
            session.add(db_user)
            await session.commit()
        except Exception:
            logger.exception(f"Could not set up Letters folder for user {db_user.googleId}")

    access_token = create_access_token(data={"sub": str(db_user.id)})
    query = urlencode({"token": access_token, "userId": db_user.googleId, "email": db_user.email or ""})
    return RedirectResponse(url=f"{CLIENT_URL}/auth?{query}")

@app.get("/api/me", response_model=UserProfile)
async def get_profile(current_user: User = Depends(get_current_user)):
    return current_user

# --- Letter Routes ---
@app.post("/letters/save", status_code=status.HTTP_201_CREATED, response_model=LetterSaved)
async def save_letter(
    draft: LetterDraft,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    drive=Depends(get_drive),
):
    require_drive(drive)
    try:
        folder_id = current_user.lettersFolderId or await drive_service.get_or_create_letters_folder(drive)
        saved = await drive_service.create_letter_file(drive, folder_id, draft.title, draft.content)
    except BACKEND_ERRORS as e:
        logger.exception("Error saving letter")
        raise HTTPException(status_code=500, detail=f"Failed to save letter: {e}")

    if current_user.email:
        try:
            await drive_service.grant_writer(drive, saved['fileId'], current_user.email)
            logger.info(f"Granted access to {current_user.email} for file {saved['fileId']}")
        except Exception:
            logger.exception("Error granting file permissions")

    letter = Letter(userId=current_user.googleId, title=draft.title, content=draft.content, googleDriveId=saved['fileId'])
    try:
        session.add(letter)
        await session.commit()
    except SQLAlchemyError as e:
        logger.exception("Error recording letter")
        raise HTTPException(status_code=500, detail=f"Failed to save letter: {e}")

    return {"message": "Letter saved successfully", **saved}

@app.get("/letters/drive-files")
async def get_drive_files(current_user: User = Depends(get_current_user), drive=Depends(get_drive)):
    try:
        return await drive_service.list_drive_files(require_drive(drive))
    except BACKEND_ERRORS as e:
        raise HTTPException(status_code=500, detail=f"Failed to list files: {e}")

@app.get("/letters/drive-files/{folder_id}")
async def get_folder_files(folder_id: str, current_user: User = Depends(get_current_user), drive=Depends(get_drive)):
    try:
        return await drive_service.list_folder_files(require_drive(drive), folder_id)
    except BACKEND_ERRORS as e:
        raise HTTPException(status_code=500, detail=f"Failed to list folder contents: {e}")

@app.get("/letters/all")
async def get_all_letters(
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    drive=Depends(get_drive),
):
    try:
        result = await session.execute(select(Letter).where(Letter.userId == current_user.googleId).order_by(Letter.createdAt.desc()))
        letters = result.scalars().all()
    except SQLAlchemyError as e:
        logger.exception("Error fetching letters")
        raise HTTPException(status_code=500, detail=f"Failed to fetch letters: {e}")
    return [letter_payload(letter, await links_or_none(drive, letter)) for letter in letters]

@app.post("/letters/add-collaborator", response_model=MessageResponse)
async def add_collaborator(
    request: CollaboratorRequest,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    drive=Depends(get_drive),
):
    letter = await load_letter(session, request.letterId)
    if not letter.googleDriveId:
        raise HTTPException(status_code=404, detail="Google Drive file ID not found")
    require_drive(drive)
    email = str(request.collaboratorEmail)

    try:
        await drive_service.grant_writer(
            drive, letter.googleDriveId, email, notify=True,
            message="You've been invited to collaborate on this document",
        )
        if email not in (letter.collaborators or []):
            # Reassign so the JSON column is flagged dirty.
            letter.collaborators = list(letter.collaborators or []) + [email]
            letter.updatedAt = utcnow()
            session.add(letter)
            await session.commit()
    except BACKEND_ERRORS as e:
        logger.exception("Error adding collaborator")
        raise HTTPException(status_code=500, detail=f"Failed to add collaborator: {e}")
    return {"message": "Collaborator added successfully"}

@app.post("/letters/fix-permissions", response_model=FixPermissionsResponse)
async def fix_permissions(
    admin: User = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
    drive=Depends(get_drive),
):
    require_drive(drive)
    try:
        letters = (await session.execute(select(Letter))).scalars().all()
    except SQLAlchemyError as e:
        raise HTTPException(status_code=500, detail=f"Failed to fix permissions: {e}")

    fixed = failed = 0
    for letter in letters:
        try:
            owner = (await session.execute(select(User).where(User.googleId == letter.userId))).scalar_one_or_none()
            if owner and owner.email and letter.googleDriveId:
                await drive_service.grant_writer(drive, letter.googleDriveId, owner.email)
                fixed += 1
            else:
                failed += 1
        except BACKEND_ERRORS as e:
            logger.error(f"Error fixing permissions for letter {letter.id}: {e}")
            failed += 1

    return {"message": f"Fixed permissions for {fixed} files. Failed: {failed}.", "fixed": fixed, "failed": failed}

@app.get("/letters/{letter_id}/collaborators", response_model=List[str])
async def get_collaborators(letter_id: int, current_user: User = Depends(get_current_user), session: AsyncSession = Depends(get_session)):
    letter = await load_letter(session, letter_id)
    return letter.collaborators or []

@app.get("/letters/{letter_id}")
async def get_letter(
    letter_id: int,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    drive=Depends(get_drive),
):
    letter = await load_letter(session, letter_id)
    return letter_payload(letter, await links_or_none(drive, letter))

@app.put("/letters/{letter_id}", response_model=LetterUpdated)
async def update_letter(
    letter_id: int,
    draft: LetterDraft,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    drive=Depends(get_drive),
):
    letter = await load_letter(session, letter_id)
    require_drive(drive)
    try:
        # Drive first, so a failed upload leaves the stored letter untouched.
        await drive_service.update_letter_file(drive, letter.googleDriveId, draft.title, draft.content)
        links = await drive_service.get_file_links(drive, letter.googleDriveId)

        letter.title = draft.title
        letter.content = draft.content
        letter.updatedAt = utcnow()
        session.add(letter)
        await session.commit()
    except BACKEND_ERRORS as e:
        logger.exception("Error updating letter")
        raise HTTPException(status_code=500, detail=f"Failed to update letter: {e}")
    return {"message": "Letter updated successfully", "fileId": letter.googleDriveId, **links}

@app.delete("/letters/{letter_id}", response_model=MessageResponse)
async def delete_letter(
    letter_id: int,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    drive=Depends(get_drive),
):
    logger.info(f"Attempting to delete letter with ID: {letter_id}")
    letter = await load_letter(session, letter_id)
    if letter.userId != current_user.googleId:
        logger.info(f"User {current_user.googleId} not authorized to delete letter {letter_id}")
        raise HTTPException(status_code=403, detail="Not authorized to delete this letter")

    if drive is None:
        logger.warning(f"Drive unavailable, file {letter.googleDriveId} left in place")
    elif letter.googleDriveId:
        try:
            await drive_service.delete_file(drive, letter.googleDriveId)
            logger.info(f"Deleted file {letter.googleDriveId} from Google Drive")
        except Exception:
            # The database row goes regardless.
            logger.exception("Error deleting from Google Drive")

    try:
        await session.delete(letter)
        await session.commit()
    except SQLAlchemyError as e:
        logger.exception("Error deleting letter")
        raise HTTPException(status_code=500, detail=f"Failed to delete letter: {e}")
    logger.info(f"Letter {letter_id} deleted from database successfully")
    return {"message": "Letter deleted successfully"}

# --- Realtime ---
@app.websocket("/ws")
async def edits_socket(websocket: WebSocket):
    await manager.serve(websocket)

@app.get("/")
async def read_root():
    return {"message": "Letters backend is running!"}
