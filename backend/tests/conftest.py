"""Shared fixtures: fake environment, SQLite database and an in-memory Drive."""

import io
import os
import tempfile

TEST_DB_PATH = os.path.join(tempfile.gettempdir(), "letters_backend_test.db")

os.environ.setdefault("DATABASE_URL", f"sqlite+aiosqlite:///{TEST_DB_PATH}")
os.environ.setdefault("CLIENT_URL", "http://localhost:3000")
os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ.setdefault("GOOGLE_CLIENT_ID", "test-client-id")
os.environ.setdefault("GOOGLE_CLIENT_SECRET", "test-client-secret")
os.environ.setdefault("GOOGLE_CALLBACK_URL", "http://localhost:5000/auth/google/callback")

import httplib2
import pytest
from fastapi.testclient import TestClient
from googleapiclient.errors import HttpError
from sqlmodel import Session, SQLModel, create_engine

from auth import create_access_token
from main import app, get_drive
from models import User, UserRole


sync_engine = create_engine(f"sqlite:///{TEST_DB_PATH}")


def http_error(status=404, message="File not found"):
    resp = httplib2.Response({"status": status, "reason": message})
    return HttpError(resp, ('{"error": {"message": "%s"}}' % message).encode())


class _Request:
    def __init__(self, fn):
        self._fn = fn

    def execute(self):
        return self._fn()


class _Files:
    def __init__(self, drive):
        self.drive = drive

    def list(self, q="", fields=None, pageSize=None, orderBy=None, spaces=None):
        def run():
            self.drive.check("list")
            files = [f for f in self.drive.files_by_id.values() if not f.get("trashed")]
            if "mimeType='application/vnd.google-apps.folder'" in q:
                files = [f for f in files if f["name"] == "Letters" and f["mimeType"].endswith("folder")]
            elif " in parents" in q:
                parent = q.split("'")[1]
                files = sorted((f for f in files if parent in f.get("parents", [])), key=lambda f: f["name"])
            if orderBy == "createdTime desc":
                files = sorted(files, key=lambda f: f["createdTime"], reverse=True)
            if pageSize:
                files = files[:pageSize]
            return {"files": [self.drive.public(f) for f in files]}
        return _Request(run)

    def create(self, body, media_body=None, fields=None):
        def run():
            self.drive.check("create")
            return self.drive.public(self.drive.add_file(body, media_body))
        return _Request(run)

    def update(self, fileId, body=None, media_body=None):
        def run():
            self.drive.check("update")
            file = self.drive.lookup(fileId)
            file.update(body or {})
            if media_body is not None:
                file["content"] = media_body.getbytes(0, media_body.size()).decode("utf-8")
            return self.drive.public(file)
        return _Request(run)

    def get(self, fileId, fields=None):
        def run():
            self.drive.check("get")
            return self.drive.public(self.drive.lookup(fileId))
        return _Request(run)

    def delete(self, fileId):
        def run():
            self.drive.check("delete")
            self.drive.lookup(fileId)
            del self.drive.files_by_id[fileId]
            return ""
        return _Request(run)


class _Permissions:
    def __init__(self, drive):
        self.drive = drive

    def create(self, fileId, body, fields=None, **kwargs):
        def run():
            self.drive.check("permissions")
            self.drive.lookup(fileId)
            self.drive.permissions_granted.append({"fileId": fileId, **body, **kwargs})
            return {"id": f"perm-{len(self.drive.permissions_granted)}"}
        return _Request(run)


class FakeDrive:
    """In-memory stand-in for the googleapiclient Drive v3 resource."""

    def __init__(self):
        self.files_by_id = {}
        self.permissions_granted = []
        self.failing = set()
        # operation -> exception raised instead of an HttpError
        self.errors = {}
        self._counter = 0

    def check(self, operation):
        if operation in self.errors:
            raise self.errors[operation]
        if operation in self.failing:
            raise http_error(500, f"{operation} failed")

    def add_file(self, body, media_body=None, created_time=None):
        self._counter += 1
        file_id = f"file-{self._counter}"
        file = {
            "id": file_id,
            "name": body["name"],
            "mimeType": body.get("mimeType", "text/plain"),
            "parents": body.get("parents", []),
            "createdTime": created_time or f"2026-01-01T00:00:{self._counter:02d}Z",
            "webViewLink": f"https://drive.example/{file_id}/view",
            "webContentLink": f"https://drive.example/{file_id}/download",
        }
        if media_body is not None:
            file["content"] = media_body.getbytes(0, media_body.size()).decode("utf-8")
        self.files_by_id[file_id] = file
        return file

    def lookup(self, file_id):
        if file_id not in self.files_by_id:
            raise http_error(404)
        return self.files_by_id[file_id]

    @staticmethod
    def public(file):
        return {k: v for k, v in file.items() if k not in ("content", "parents")}

    def files(self):
        return _Files(self)

    def permissions(self):
        return _Permissions(self)


@pytest.fixture
def drive():
    return FakeDrive()


@pytest.fixture
def client(drive):
    SQLModel.metadata.drop_all(sync_engine)
    SQLModel.metadata.create_all(sync_engine)
    app.dependency_overrides[get_drive] = lambda: drive
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(client):
    def _make_user(google_id="uid-1", email="owner@example.com", role=UserRole.user, **fields):
        with Session(sync_engine) as session:
            user = User(googleId=google_id, email=email, name=fields.pop("name", "Owner"), role=role, **fields)
            session.add(user)
            session.commit()
            session.refresh(user)
            return user
    return _make_user


def auth_headers(user):
    return {"Authorization": f"Bearer {create_access_token({'sub': str(user.id)})}"}
