from fastapi import APIRouter, Depends, FastAPI, File, Form, HTTPException, Request, Response, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse
from contextlib import asynccontextmanager
import asyncio
import datetime
from typing import Dict, Optional, Any, List
import logging

from pydantic import BaseModel

from .auth import AuthContext
from .auth_utils import client_ip, optional_auth, require_auth
from .config import Settings, load_settings, configure_logging, parse_interval
from .constants import DEFAULT_LIST_LIMIT, DEFAULT_OFFSET, UPLOADS_URL_PREFIX
from .db import init_db, get_stats
from .db_helpers import session_scope
from .errors import PhotoClubError
from .media import MediaLimits
from .storage import LocalStorage
from . import clubs, contests, photos, users

logger = logging.getLogger(__name__)


async def _session_cleanup_loop(auth: AuthContext, interval_seconds: int) -> None:
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            removed = auth.session_manager.cleanup_expired()
            if removed:
                logger.info("Removed %d expired sessions", removed)
        except Exception:
            logger.exception("Session cleanup failed")


@asynccontextmanager
async def lifespan(app_instance: FastAPI):
    """Manage application lifecycle (startup and shutdown events)."""
    settings = getattr(app_instance.state, 'settings', None) or load_settings()
    configure_logging(settings)
    logger.info("Starting photoclub API (uploads: %s)", settings.upload_dir)

    app_instance.state.settings = settings
    app_instance.state.engine = init_db(settings.database_url)

    try:
        repaired = clubs.recount_club_counters(app_instance.state.engine)
        if repaired:
            logger.warning("Repaired drifted counters on %d clubs", repaired)
    except Exception:
        logger.exception("Failed to verify club counters, continuing anyway")

    app_instance.state.auth = AuthContext(settings)
    app_instance.state.storage = LocalStorage(settings.upload_dir)
    app_instance.state.media_limits = MediaLimits.from_settings(settings)

    cleanup_task = asyncio.create_task(
        _session_cleanup_loop(app_instance.state.auth, parse_interval(settings.session_cleanup_interval))
    )
    app_instance.state._started = True
    try:
        yield
    finally:
        cleanup_task.cancel()
        try:
            await cleanup_task
        except asyncio.CancelledError:
            pass
        app_instance.state.engine.dispose()
        app_instance.state._started = False
        logger.info("photoclub API stopped")


class RegisterRequest(BaseModel):
    username: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None
    display_name: Optional[str] = None


class LoginRequest(BaseModel):
    username: Optional[str] = None
    password: Optional[str] = None


class UpdateProfileRequest(BaseModel):
    """Only provided fields are updated."""
    display_name: Optional[str] = None
    bio: Optional[str] = None
    profile_image: Optional[str] = None


class CreateClubRequest(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    is_private: bool = False


class UpdateClubRequest(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    is_private: Optional[bool] = None


class AddClubPhotoRequest(BaseModel):
    photo_id: Optional[str] = None


class TransferOwnershipRequest(BaseModel):
    user_id: Optional[str] = None


class UpdatePhotoRequest(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None


class CommentRequest(BaseModel):
    username: Optional[str] = None
    comment: Optional[str] = None


class CreateContestRequest(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    start_date: Optional[datetime.datetime] = None
    end_date: Optional[datetime.datetime] = None
    entry_fee: float = 0.0
    max_entries: Optional[int] = None
    prizes: List[str] = []
    club_id: Optional[str] = None
    is_public: bool = True


def get_engine(request: Request):
    return request.app.state.engine


def get_storage(request: Request) -> LocalStorage:
    return request.app.state.storage


def get_media_limits(request: Request) -> MediaLimits:
    return request.app.state.media_limits


def _set_session_cookie(request: Request, response: Response, session_id: str) -> None:
    auth = request.app.state.auth
    response.set_cookie(
        key=auth.cookie_name,
        value=session_id,
        max_age=auth.session_manager.expiry_seconds,
        httponly=True,
        secure=auth.cookie_secure,
        samesite="lax",
    )


def _as_bool(value: Optional[str], default: bool = False) -> bool:
    if value is None or value == "":
        return default
    return str(value).strip().lower() in ("1", "true", "yes", "on")


router = APIRouter(prefix="/api")


@router.get("/health", tags=["health"])
def health() -> Dict[str, Any]:
    return {"status": "ok"}


@router.get("/stats", tags=["health"])
def stats_endpoint(engine=Depends(get_engine)):
    """Row counts for users, photos, clubs, likes and comments."""
    try:
        with session_scope(engine) as session:
            return get_stats(session)
    except Exception:
        logger.exception("Failed to get stats")
        raise HTTPException(status_code=500, detail="Stats failed")


# Accounts

@router.post("/auth/register", status_code=201, tags=["auth"])
def register(body: RegisterRequest, request: Request, response: Response, engine=Depends(get_engine)):
    user = users.register(engine, body.username, body.email, body.password, body.display_name)
    issued = request.app.state.auth.login(user['id'], user['username'])
    _set_session_cookie(request, response, issued['session_id'])
    return {"message": "User registered successfully", "user": user, "token": issued['token']}


@router.post("/auth/login", tags=["auth"])
def login(body: LoginRequest, request: Request, response: Response, engine=Depends(get_engine)):
    user = users.authenticate(engine, body.username, body.password)
    issued = request.app.state.auth.login(user['id'], user['username'])
    _set_session_cookie(request, response, issued['session_id'])
    logger.info("User %s logged in", user['id'])
    return {"message": "Login successful", "user": user, "token": issued['token']}


@router.post("/auth/logout", tags=["auth"])
def logout(request: Request, response: Response):
    auth = request.app.state.auth
    session_id = request.cookies.get(auth.cookie_name)
    if session_id:
        auth.session_manager.revoke_session(session_id)
    response.delete_cookie(auth.cookie_name)
    return {"message": "Logged out successfully"}


@router.get("/auth/status", tags=["auth"])
def auth_status(user_id: Optional[str] = Depends(optional_auth), engine=Depends(get_engine)):
    if not user_id:
        return {"authenticated": False, "user": None}
    return {"authenticated": True, "user": users.get_user(engine, user_id)}


@router.get("/users", tags=["users"])
def list_users(engine=Depends(get_engine)):
    return users.list_users(engine)


@router.get("/users/count", tags=["users"])
def count_users(engine=Depends(get_engine)):
    return {"count": users.count_users(engine)}


@router.put("/users/me", tags=["users"])
def update_me(body: UpdateProfileRequest, user_id: str = Depends(require_auth), engine=Depends(get_engine)):
    return users.update_profile(engine, user_id, body.display_name, body.bio, body.profile_image)


@router.get("/users/{user_id}", tags=["users"])
def get_user(user_id: str, engine=Depends(get_engine)):
    return users.get_user(engine, user_id)


# Photos

@router.post("/photos", status_code=201, tags=["photos"])
async def upload_photo(
    photo: Optional[UploadFile] = File(None),
    title: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    tags: Optional[str] = Form(None),
    featured_stream: Optional[str] = Form(None),
    user_id: str = Depends(require_auth),
    engine=Depends(get_engine),
    storage: LocalStorage = Depends(get_storage),
    limits: MediaLimits = Depends(get_media_limits),
):
    """Upload an image; it is validated, re-encoded and thumbnailed before it is stored."""
    if photo is None:
        raise HTTPException(status_code=400, detail="No photo file provided")
    data = await photo.read()
    try:
        return await photos.upload_photo(
            engine, storage, limits, user_id, data, photo.content_type, photo.filename,
            title=title, description=description, tags=tags,
            featured_stream=_as_bool(featured_stream, default=False),
        )
    except PhotoClubError:
        raise
    except Exception:
        logger.exception("Error uploading photo for %s", user_id)
        raise HTTPException(status_code=500, detail="Failed to upload photo")


@router.get("/photos", tags=["photos"])
def list_photos(engine=Depends(get_engine)):
    return photos.list_photos(engine)


@router.get("/photos/featured", tags=["photos"])
def list_featured_photos(engine=Depends(get_engine)):
    return photos.list_photos(engine, featured_only=True)


@router.get("/photos/{photo_id}", tags=["photos"])
def get_photo(photo_id: str, engine=Depends(get_engine)):
    return photos.get_photo(engine, photo_id)


@router.patch("/photos/{photo_id}", tags=["photos"])
def update_photo(photo_id: str, body: UpdatePhotoRequest, user_id: str = Depends(require_auth), engine=Depends(get_engine)):
    """Update title/description of one of the caller's photos."""
    return photos.update_photo(engine, photo_id, user_id, body.title, body.description)


@router.delete("/photos/{photo_id}", tags=["photos"])
def delete_photo(
    photo_id: str,
    user_id: str = Depends(require_auth),
    engine=Depends(get_engine),
    storage: LocalStorage = Depends(get_storage),
):
    return photos.delete_photo(engine, storage, photo_id, user_id)


# Likes and comments

@router.post("/likes/{photo_id}", tags=["likes"])
def toggle_like(photo_id: str, request: Request, user_id: Optional[str] = Depends(optional_auth), engine=Depends(get_engine)):
    return photos.toggle_like(engine, photo_id, user_id, client_ip(request))


@router.get("/likes/{photo_id}", tags=["likes"])
def like_status(photo_id: str, request: Request, user_id: Optional[str] = Depends(optional_auth), engine=Depends(get_engine)):
    return photos.get_like_status(engine, photo_id, user_id, client_ip(request))


@router.post("/comments/{photo_id}", status_code=201, tags=["comments"])
def add_comment(photo_id: str, body: CommentRequest, request: Request, engine=Depends(get_engine)):
    return photos.add_comment(engine, photo_id, body.comment, body.username, client_ip(request))


@router.get("/comments/{photo_id}", tags=["comments"])
def list_comments(photo_id: str, engine=Depends(get_engine)):
    return photos.list_comments(engine, photo_id)


@router.get("/comments/{photo_id}/count", tags=["comments"])
def count_comments(photo_id: str, engine=Depends(get_engine)):
    return {"count": photos.count_comments(engine, photo_id)}


# Clubs

@router.post("/clubs", status_code=201, tags=["clubs"])
def create_club(body: CreateClubRequest, user_id: str = Depends(require_auth), engine=Depends(get_engine)):
    return clubs.create_club(engine, body.name, body.description, user_id, body.is_private)


@router.get("/clubs", tags=["clubs"])
def list_clubs(limit: int = DEFAULT_LIST_LIMIT, offset: int = DEFAULT_OFFSET, engine=Depends(get_engine)):
    return clubs.list_public_clubs(engine, limit, offset)


@router.get("/clubs/user/{member_id}", tags=["clubs"])
def list_user_clubs(member_id: str, engine=Depends(get_engine)):
    return clubs.list_user_clubs(engine, member_id)


@router.get("/clubs/{club_id}", tags=["clubs"])
def get_club(club_id: str, user_id: Optional[str] = Depends(optional_auth), engine=Depends(get_engine)):
    return clubs.get_club(engine, club_id, user_id)


@router.post("/clubs/{club_id}/join", tags=["clubs"])
def join_club(club_id: str, user_id: str = Depends(require_auth), engine=Depends(get_engine)):
    return clubs.join_club(engine, club_id, user_id)


@router.post("/clubs/{club_id}/leave", tags=["clubs"])
def leave_club(club_id: str, user_id: str = Depends(require_auth), engine=Depends(get_engine)):
    return clubs.leave_club(engine, club_id, user_id)


@router.get("/clubs/{club_id}/members", tags=["clubs"])
def list_members(club_id: str, user_id: Optional[str] = Depends(optional_auth), engine=Depends(get_engine)):
    return clubs.list_members(engine, club_id, user_id)


@router.post("/clubs/{club_id}/members/{member_id}/promote", tags=["clubs"])
def promote_member(club_id: str, member_id: str, user_id: str = Depends(require_auth), engine=Depends(get_engine)):
    return clubs.promote_to_admin(engine, club_id, user_id, member_id)


@router.post("/clubs/{club_id}/members/{member_id}/demote", tags=["clubs"])
def demote_member(club_id: str, member_id: str, user_id: str = Depends(require_auth), engine=Depends(get_engine)):
    return clubs.demote_admin(engine, club_id, user_id, member_id)


@router.post("/clubs/{club_id}/transfer", tags=["clubs"])
def transfer_club(club_id: str, body: TransferOwnershipRequest, user_id: str = Depends(require_auth), engine=Depends(get_engine)):
    if not body.user_id:
        raise HTTPException(status_code=400, detail="User ID is required")
    return clubs.transfer_ownership(engine, club_id, user_id, body.user_id)


@router.get("/clubs/{club_id}/photos", tags=["clubs"])
def list_club_photos(
    club_id: str,
    limit: int = DEFAULT_LIST_LIMIT,
    offset: int = DEFAULT_OFFSET,
    user_id: Optional[str] = Depends(optional_auth),
    engine=Depends(get_engine),
):
    return clubs.list_club_photos(engine, club_id, user_id, limit, offset)


@router.post("/clubs/{club_id}/photos", status_code=201, tags=["clubs"])
def add_club_photo(club_id: str, body: AddClubPhotoRequest, user_id: str = Depends(require_auth), engine=Depends(get_engine)):
    return clubs.add_photo_to_club(engine, club_id, body.photo_id, user_id)


@router.put("/clubs/{club_id}", tags=["clubs"])
def update_club(club_id: str, body: UpdateClubRequest, user_id: str = Depends(require_auth), engine=Depends(get_engine)):
    """Update name/description/privacy. Only provided fields are updated."""
    return clubs.update_club(engine, club_id, user_id, body.name, body.description, body.is_private)


@router.delete("/clubs/{club_id}", tags=["clubs"])
def delete_club(club_id: str, user_id: str = Depends(require_auth), engine=Depends(get_engine)):
    return clubs.delete_club(engine, club_id, user_id)


# Contests

@router.post("/contests", status_code=201, tags=["contests"])
def create_contest(body: CreateContestRequest, user_id: str = Depends(require_auth), engine=Depends(get_engine)):
    contest = contests.create_contest(
        engine, user_id, body.title, body.description, body.start_date, body.end_date,
        category=body.category, entry_fee=body.entry_fee, max_entries=body.max_entries,
        prizes=body.prizes, club_id=body.club_id, is_public=body.is_public,
    )
    return {"message": "Contest created successfully", "contest": contest}


@router.get("/contests", tags=["contests"])
def list_contests(status: Optional[str] = None, category: Optional[str] = None, engine=Depends(get_engine)):
    return contests.list_public_contests(engine, status, category)


@router.get("/contests/my/entries", tags=["contests"])
def my_entries(user_id: str = Depends(require_auth), engine=Depends(get_engine)):
    return contests.list_user_entries(engine, user_id)


@router.get("/contests/club/{club_id}", tags=["contests"])
def club_contests(club_id: str, user_id: Optional[str] = Depends(optional_auth), engine=Depends(get_engine)):
    return contests.list_club_contests(engine, club_id, user_id)


@router.get("/contests/{contest_id}", tags=["contests"])
def get_contest(contest_id: str, user_id: Optional[str] = Depends(optional_auth), engine=Depends(get_engine)):
    return contests.get_contest(engine, contest_id, user_id)


@router.post("/contests/{contest_id}/enter", status_code=201, tags=["contests"])
async def enter_contest(
    contest_id: str,
    photo: Optional[UploadFile] = File(None),
    title: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    user_id: str = Depends(require_auth),
    engine=Depends(get_engine),
    storage: LocalStorage = Depends(get_storage),
    limits: MediaLimits = Depends(get_media_limits),
):
    if photo is None:
        raise HTTPException(status_code=400, detail="Photo is required")
    data = await photo.read()
    try:
        entry = await contests.enter_contest(
            engine, storage, limits, contest_id, user_id, title, description, data, photo.content_type,
        )
    except PhotoClubError:
        raise
    except Exception:
        logger.exception("Error submitting entry to contest %s for %s", contest_id, user_id)
        raise HTTPException(status_code=500, detail="Failed to submit contest entry")
    return {"message": "Contest entry submitted successfully", "entry": entry}


async def photoclub_error_handler(request: Request, exc: PhotoClubError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


def serve_upload(filename: str, request: Request):
    """Uploaded originals and thumbnails, read-only."""
    storage: LocalStorage = request.app.state.storage
    try:
        path = storage.path_for(filename)
    except ValueError:
        raise HTTPException(status_code=404, detail="File not found")
    if not storage.exists(filename):
        raise HTTPException(status_code=404, detail="File not found")
    return FileResponse(path, media_type="image/jpeg")


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Build the API. Settings are loaded from the environment at startup when not given."""
    app_instance = FastAPI(title="photoclub", lifespan=lifespan)
    app_instance.state.settings = settings
    app_instance.state._started = False

    origins = settings.cors_origin_list() if settings is not None else ["*"]
    app_instance.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app_instance.add_exception_handler(PhotoClubError, photoclub_error_handler)
    app_instance.include_router(router)
    app_instance.add_api_route(UPLOADS_URL_PREFIX + "/{filename}", serve_upload, methods=["GET"], tags=["photos"])
    return app_instance


app = create_app()
