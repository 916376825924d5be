# backend/services/drive_service.py
import io
import logging
from google.oauth2 import service_account
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from googleapiclient.http import MediaIoBaseUpload

from config import GOOGLE_CLIENT_ID, GOOGLE_CLIENT_SECRET, GOOGLE_SERVICE_ACCOUNT_KEY
from models import User

logger = logging.getLogger(__name__)

SCOPES = ['https://www.googleapis.com/auth/drive']
FOLDER_MIME_TYPE = 'application/vnd.google-apps.folder'
LETTERS_FOLDER_NAME = 'Letters'
FILE_FIELDS = 'files(id, name, mimeType, webViewLink, iconLink, createdTime)'

_service_drive = None

def _quote(value: str) -> str:
    """Escape a value for use inside a single-quoted Drive query literal."""
    return value.replace('\\', '\\\\').replace("'", "\\'")

def _letters_folder_query() -> str:
    return f"name='{LETTERS_FOLDER_NAME}' and mimeType='{FOLDER_MIME_TYPE}' and trashed=false"

def get_service_drive():
    """Drive client acting as the service account. Built once per process."""
    global _service_drive
    if _service_drive is None:
        if not GOOGLE_SERVICE_ACCOUNT_KEY:
            raise ValueError("GOOGLE_SERVICE_ACCOUNT_KEY is not set in .env file.")
        creds = service_account.Credentials.from_service_account_file(GOOGLE_SERVICE_ACCOUNT_KEY, scopes=SCOPES)
        try:
            _service_drive = build('drive', 'v3', credentials=creds, static_discovery=False)
        except HttpError as error:
            logger.error(f'An error occurred building the Drive service: {error}'); raise
    return _service_drive

def get_user_drive(user: User):
    """Drive client acting as the user, from the tokens stored at login."""
    if not user.accessToken: raise ValueError("User has not granted Drive permissions.")
    creds = Credentials(
        token=user.accessToken, refresh_token=user.refreshToken,
        token_uri='https://oauth2.googleapis.com/token', client_id=GOOGLE_CLIENT_ID,
        client_secret=GOOGLE_CLIENT_SECRET,
    )
    try:
        return build('drive', 'v3', credentials=creds, static_discovery=False)
    except HttpError as error:
        logger.error(f'An error occurred building the user Drive service: {error}'); raise

def _find_or_create_folder(drive, **list_kwargs) -> tuple:
    response = drive.files().list(q=_letters_folder_query(), fields='files(id, name)', **list_kwargs).execute()
    files = response.get('files', [])
    if files:
        return files[0]['id'], False
    folder = drive.files().create(
        body={'name': LETTERS_FOLDER_NAME, 'mimeType': FOLDER_MIME_TYPE}, fields='id'
    ).execute()
    return folder['id'], True

async def get_or_create_letters_folder(drive) -> str:
    try:
        folder_id, _ = _find_or_create_folder(drive)
        return folder_id
    except HttpError as error:
        logger.error(f'Error getting or creating Letters folder: {error}'); raise

async def create_user_letters_folder(user_drive, service_account_email: str) -> str:
    """Find or create the Letters folder in the user's own Drive and share it with the service account."""
    try:
        folder_id, created = _find_or_create_folder(user_drive, spaces='drive')
    except HttpError as error:
        logger.error(f'Error creating/accessing Letters folder: {error}'); raise
    logger.info(f"{'Created new' if created else 'Found existing'} Letters folder: {folder_id}")

    if service_account_email:
        try:
            await grant_writer(user_drive, folder_id, service_account_email)
            logger.info(f"Granted service account access to folder {folder_id}")
        except HttpError as error:
            # Usually means the service account already has access.
            logger.warning(f"Error granting permission to service account: {error}")
    return folder_id

def _text_media(content: str) -> MediaIoBaseUpload:
    return MediaIoBaseUpload(io.BytesIO(content.encode('utf-8')), mimetype='text/plain', resumable=False)

async def create_letter_file(drive, folder_id: str, title: str, content: str) -> dict:
    file_metadata = {'name': f"{title}.txt", 'parents': [folder_id]}
    try:
        created = drive.files().create(
            body=file_metadata, media_body=_text_media(content), fields='id, webViewLink'
        ).execute()
    except HttpError as error:
        logger.error(f"Error saving letter file to Drive: {error}"); raise
    return {'fileId': created['id'], 'webViewLink': created.get('webViewLink')}

async def update_letter_file(drive, file_id: str, title: str, content: str):
    body = {'name': f"{title}.txt", 'description': f"Letter content: {content[:100]}..."}
    try:
        return drive.files().update(fileId=file_id, body=body, media_body=_text_media(content)).execute()
    except HttpError as error:
        logger.error(f"Error updating Drive file {file_id}: {error}"); raise

async def get_file_links(drive, file_id: str) -> dict:
    file = drive.files().get(fileId=file_id, fields='webViewLink,webContentLink').execute()
    return {'webViewLink': file.get('webViewLink'), 'webContentLink': file.get('webContentLink')}

async def grant_writer(drive, file_id: str, email: str, notify: bool = False, message: str = None):
    kwargs = {'sendNotificationEmail': notify}
    if notify and message:
        kwargs['emailMessage'] = message
    return drive.permissions().create(
        fileId=file_id, body={'type': 'user', 'role': 'writer', 'emailAddress': email},
        fields='id', **kwargs
    ).execute()

async def delete_file(drive, file_id: str):
    drive.files().delete(fileId=file_id).execute()

async def list_drive_files(drive) -> list:
    """Letters folders first in the query, then recent files; merged, de-duplicated and newest first."""
    try:
        folders = drive.files().list(q=_letters_folder_query(), fields=FILE_FIELDS).execute()
        recent = drive.files().list(
            q='trashed=false', pageSize=30, fields=FILE_FIELDS, orderBy='createdTime desc'
        ).execute()
    except HttpError as error:
        logger.error(f'Error listing files: {error}'); raise

    unique_files, seen_ids = [], set()
    for file in folders.get('files', []) + recent.get('files', []):
        if file['id'] not in seen_ids:
            seen_ids.add(file['id'])
            unique_files.append(file)
    # RFC 3339 timestamps from Drive sort lexically.
    unique_files.sort(key=lambda f: f.get('createdTime') or '', reverse=True)
    return unique_files

async def list_folder_files(drive, folder_id: str) -> list:
    try:
        response = drive.files().list(
            q=f"'{_quote(folder_id)}' in parents and trashed=false",
            pageSize=100, fields=FILE_FIELDS, orderBy='name'
        ).execute()
    except HttpError as error:
        logger.error(f'Error listing folder contents: {error}'); raise
    return response.get('files', [])
