"""FastAPI application entrypoint and HTTP controllers.

This module defines the HTTP endpoints of the blog backend. Controllers
are intentionally thin: they accept requests, delegate to services, and
return JSON responses. Services raise `BlogError`s, which the handlers
below turn into `{"detail", "status", "errors"?}` bodies.

Endpoints implemented:
- POST /api/auth/signup, /api/auth/login, /api/auth/refresh, /api/auth/logout
- POST /api/admin/auth/signup
- GET /api/me, PATCH /api/me/profile, PATCH /api/me/password
- GET /api/user/{nickname}
- /api/my/posts: create, list, deleted list, edit view, update, delete, restore
- /api/posts: search, by author, autocomplete, detail with related posts
- /api/stacks (public) and /api/admin/stacks (admin)
- GET /api/tags, GET /api/tags/popular
- POST /api/files/upload
- GET /health
"""

import json
import logging
import time
import uuid
from contextlib import asynccontextmanager
from typing import Dict, List, Optional

from fastapi import Depends, FastAPI, File, HTTPException, Query, Request, Response, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from sqlmodel import Session

from . import models, schemas, services
from .auth import (
    REFRESH_COOKIE,
    clear_token_cookies,
    create_access_token,
    create_refresh_token,
    decode_token,
    get_current_user,
    require_admin,
    set_token_cookies,
)
from .config import settings
from .database import create_db_and_tables, get_session
from .errors import BlogError
from .scheduler import cleanup_scheduler
from .utils.rate_limit import InMemoryRateLimiter

logger = logging.getLogger("blog.api")
if not logging.getLogger().handlers:
    logging.basicConfig(level=settings.LOG_LEVEL)

_login_rate_limiter = InMemoryRateLimiter()
LOGIN_WINDOW_SECONDS = 60

create_db_and_tables()


@asynccontextmanager
async def lifespan(_app: FastAPI):
    if settings.ENABLE_SCHEDULER:
        cleanup_scheduler.start()
    yield
    cleanup_scheduler.shutdown()


app = FastAPI(title="Blog API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID"],
)

# Uploaded files are public and served read-only.
settings.UPLOAD_DIR.mkdir(parents=True, exist_ok=True)
app.mount(settings.FILE_BASE_URL, StaticFiles(directory=settings.UPLOAD_DIR), name="files")

_UPLOAD_PREFIX = settings.FILE_BASE_URL.rstrip("/") + "/"
_DOCUMENTS_PREFIX = _UPLOAD_PREFIX + models.FileType.DOCUMENT.base_path + "/"


@app.middleware("http")
async def upload_headers_middleware(request: Request, call_next):
    """Serve uploads as inert bytes; SVG and documents are sent as downloads."""
    response = await call_next(request)
    path = request.url.path
    if path.startswith(_UPLOAD_PREFIX):
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["Content-Security-Policy"] = "default-src 'none'; sandbox"
        if path.lower().endswith(".svg") or path.startswith(_DOCUMENTS_PREFIX):
            response.headers["Content-Disposition"] = "attachment"
    return response


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    req_id = request.headers.get("X-Request-ID", uuid.uuid4().hex)
    request.state.request_id = req_id
    started = time.perf_counter()
    try:
        response = await call_next(request)
    except Exception:
        elapsed_ms = round((time.perf_counter() - started) * 1000.0, 2)
        logger.exception(
            "request_failed %s",
            json.dumps(
                {
                    "request_id": req_id,
                    "path": request.url.path,
                    "method": request.method,
                    "duration_ms": elapsed_ms,
                    "client": request.client.host if request.client else "unknown",
                },
                ensure_ascii=True,
            ),
        )
        raise
    response.headers["X-Request-ID"] = req_id
    elapsed_ms = round((time.perf_counter() - started) * 1000.0, 2)
    if request.url.path.startswith("/api"):
        logger.info(
            "request_done %s",
            json.dumps(
                {
                    "request_id": req_id,
                    "path": request.url.path,
                    "method": request.method,
                    "status_code": response.status_code,
                    "duration_ms": elapsed_ms,
                    "client": request.client.host if request.client else "unknown",
                },
                ensure_ascii=True,
            ),
        )
    return response


@app.exception_handler(BlogError)
async def blog_error_handler(request: Request, exc: BlogError):
    if exc.status_code >= 500:
        logger.error("service error path=%s detail=%s", request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors: Dict[str, str] = {}
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path")]
        errors.setdefault(".".join(loc) or "request", err.get("msg", "invalid value"))
    return JSONResponse(status_code=400, content={"detail": "invalid input", "status": 400, "errors": errors})


def _enforce_login_rate_limit(request: Request) -> str:
    key = f"{request.client.host if request.client else 'unknown'}:{request.url.path}"
    allowed, retry_after = _login_rate_limiter.allow(key, settings.LOGIN_RATE_LIMIT_PER_MIN, LOGIN_WINDOW_SECONDS)
    if not allowed:
        raise HTTPException(
            status_code=429,
            detail=f"rate limit exceeded; retry after {retry_after}s",
            headers={"Retry-After": str(retry_after)},
        )
    return key


def _issue_tokens(response: Response, user: models.User) -> schemas.AuthOut:
    access = create_access_token(user.id, user.email)
    refresh = create_refresh_token(user.id, user.email)
    set_token_cookies(response, access, refresh)
    return schemas.AuthOut(user=schemas.UserOut.from_user(user), access_token=access)


@app.post("/api/auth/signup", status_code=201, response_model=schemas.AuthOut)
def signup(payload: schemas.SignUpIn, response: Response, db: Session = Depends(get_session)):
    """Register a new account and sign it in.

    Sets the access/refresh cookies and also returns the access token
    for clients that prefer a bearer header.
    """
    services.ensure_signup_allowed()
    user = services.AuthService(db).signup(payload)
    return _issue_tokens(response, user)


@app.post("/api/auth/login", response_model=schemas.AuthOut)
def login(payload: schemas.LoginIn, request: Request, response: Response, db: Session = Depends(get_session)):
    """Authenticate with email and password.

    Attempts are rate-limited per client; a successful login resets the
    counter.
    """
    key = _enforce_login_rate_limit(request)
    user = services.AuthService(db).authenticate(payload.email, payload.password)
    _login_rate_limiter.reset(key)
    return _issue_tokens(response, user)


@app.post("/api/auth/refresh", response_model=schemas.AuthOut)
def refresh(request: Request, response: Response, db: Session = Depends(get_session)):
    """Rotate both tokens using the refresh cookie."""
    token = request.cookies.get(REFRESH_COOKIE)
    if not token:
        raise HTTPException(status_code=401, detail="refresh token missing")
    try:
        payload = decode_token(token, "refresh")
    except HTTPException as exc:
        failed = JSONResponse(status_code=401, content={"detail": exc.detail})
        clear_token_cookies(failed)
        return failed
    user = services.AuthService(db).user_for_refresh(int(payload["sub"]))
    return _issue_tokens(response, user)


@app.post("/api/auth/logout")
def logout(response: Response):
    clear_token_cookies(response)
    return {"status": "ok"}


@app.post("/api/admin/auth/signup", status_code=201, response_model=schemas.UserOut)
def admin_signup(payload: schemas.AdminSignUpIn, db: Session = Depends(get_session), admin: models.User = Depends(require_admin)):
    """Create an account on someone's behalf; no cookies are set."""
    user = services.AuthService(db).signup(payload, role=payload.role)
    return schemas.UserOut.from_user(user)


@app.get("/api/me", response_model=schemas.UserOut)
def me(user: models.User = Depends(get_current_user)):
    return schemas.UserOut.from_user(user)


@app.patch("/api/me/profile", response_model=schemas.UserOut)
def update_profile(payload: schemas.ProfileUpdateIn, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    return services.UserService(db).update_profile(user, payload)


@app.patch("/api/me/password")
def change_password(payload: schemas.PasswordChangeIn, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    services.UserService(db).change_password(user, payload)
    return {"status": "ok"}


@app.get("/api/user/{nickname}", response_model=schemas.BlogOwnerOut)
def blog_owner(nickname: str, db: Session = Depends(get_session)):
    """Public profile card shown on an author's blog page."""
    return services.UserService(db).blog_owner(nickname)


@app.post("/api/my/posts", status_code=201, response_model=schemas.PostEditOut)
def create_post(payload: schemas.PostCreateIn, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """Publish a new post.

    Markdown may not contain raw HTML tags. Files referenced with
    `::file[id=N]` must already be uploaded.
    """
    return services.MyPostService(db).create(user, payload)


@app.get("/api/my/posts", response_model=schemas.PageOut[schemas.PostSummaryOut])
def list_my_posts(
    post_type: Optional[models.PostType] = None,
    stack: Optional[str] = None,
    keyword: Optional[str] = None,
    page: int = Query(0, ge=0),
    size: int = Query(10, ge=1, le=100),
    db: Session = Depends(get_session),
    user: models.User = Depends(get_current_user),
):
    """List the caller's posts that are not deleted; keyword also searches content."""
    return services.MyPostService(db).list_mine(user, post_type, stack, keyword, page, size)


@app.get("/api/my/posts/deleted", response_model=schemas.PageOut[schemas.PostEditOut])
def list_my_deleted_posts(
    page: int = Query(0, ge=0),
    size: int = Query(10, ge=1, le=100),
    db: Session = Depends(get_session),
    user: models.User = Depends(get_current_user),
):
    return services.MyPostService(db).list_deleted(user, page, size)


@app.get("/api/my/posts/{slug}/edit", response_model=schemas.PostEditOut)
def get_post_for_edit(slug: str, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    return services.MyPostService(db).get_for_edit(user, slug)


@app.put("/api/my/posts/{slug}", response_model=schemas.PostEditOut)
def update_post(slug: str, payload: schemas.PostUpdateIn, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """Edit a post. A title change regenerates the slug."""
    return services.MyPostService(db).update(user, slug, payload)


@app.delete("/api/my/posts/{slug}", status_code=204, response_class=Response)
def delete_post(slug: str, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """Soft delete: the post disappears publicly but can be restored until purged."""
    services.MyPostService(db).delete(user, slug)


@app.post("/api/my/posts/{slug}/restore", response_model=schemas.PostEditOut)
def restore_post(slug: str, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    return services.MyPostService(db).restore(user, slug)


@app.get("/api/posts", response_model=schemas.PageOut[schemas.PostSummaryOut])
def search_posts(
    nickname: Optional[str] = None,
    post_type: Optional[models.PostType] = None,
    stack: Optional[str] = None,
    keyword: Optional[str] = None,
    page: int = Query(0, ge=0),
    size: int = Query(10, ge=1, le=100),
    db: Session = Depends(get_session),
):
    """Published posts, newest first; keyword matches title and excerpt."""
    return services.PublicPostService(db).search(nickname, post_type, stack, keyword, page, size)


@app.get("/api/posts/autocomplete", response_model=List[schemas.AutocompleteOut])
def autocomplete_posts(keyword: Optional[str] = None, db: Session = Depends(get_session)):
    return services.PublicPostService(db).autocomplete(keyword)


@app.get("/api/posts/user/{nickname}", response_model=schemas.PageOut[schemas.PostSummaryOut])
def list_posts_by_author(
    nickname: str,
    page: int = Query(0, ge=0),
    size: int = Query(10, ge=1, le=100),
    db: Session = Depends(get_session),
):
    return services.PublicPostService(db).list_by_author(nickname, page, size)


@app.get("/api/posts/{nickname}/{slug}", response_model=schemas.PostDetailOut)
def get_post(nickname: str, slug: str, db: Session = Depends(get_session)):
    """A published post with its author card and up to three related posts."""
    return services.PublicPostService(db).get_detail(nickname, slug)


@app.get("/api/stacks", response_model=List[schemas.StackOut])
def list_stacks(db: Session = Depends(get_session)):
    return services.StackService(db).list_all()


@app.get("/api/stacks/group/{group}", response_model=List[schemas.StackOut])
def list_stacks_by_group(group: str, db: Session = Depends(get_session)):
    return services.StackService(db).list_by_group(group)


@app.get("/api/stacks/with-count", response_model=List[schemas.StackCountOut])
def list_stacks_with_count(db: Session = Depends(get_session)):
    """Stacks used by published posts, most used first."""
    return services.StackService(db).with_counts()


@app.get("/api/stacks/grouped", response_model=Dict[str, List[schemas.StackCountOut]])
def list_stacks_grouped(db: Session = Depends(get_session)):
    return services.StackService(db).grouped()


@app.get("/api/stacks/popular", response_model=List[schemas.PopularStackOut])
def popular_stacks(limit: int = Query(5, ge=1, le=50), db: Session = Depends(get_session)):
    return services.StackService(db).popular(limit)


@app.post("/api/admin/stacks", status_code=201, response_model=schemas.StackOut)
def create_stack(payload: schemas.StackIn, db: Session = Depends(get_session), admin: models.User = Depends(require_admin)):
    return services.StackService(db).create(payload)


@app.put("/api/admin/stacks/{stack_id}", response_model=schemas.StackOut)
def update_stack(stack_id: int, payload: schemas.StackIn, db: Session = Depends(get_session), admin: models.User = Depends(require_admin)):
    return services.StackService(db).update(stack_id, payload)


@app.delete("/api/admin/stacks/{stack_id}", status_code=204, response_class=Response)
def delete_stack(stack_id: int, db: Session = Depends(get_session), admin: models.User = Depends(require_admin)):
    """Delete a stack; posts filed under it simply lose the link."""
    services.StackService(db).delete(stack_id)


@app.get("/api/tags", response_model=List[schemas.TagCountOut])
def list_tags(db: Session = Depends(get_session)):
    return services.TagService(db).counts()


@app.get("/api/tags/popular", response_model=List[schemas.TagCountOut])
def popular_tags(limit: int = Query(10, ge=1, le=100), db: Session = Depends(get_session)):
    return services.TagService(db).counts(limit)


@app.post("/api/files/upload", status_code=201, response_model=schemas.FileOut)
def upload_file(file: UploadFile = File(...), db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """Store an image, video or document and return its public URL.

    The file stays unmapped until a post or profile references it;
    unmapped files are removed by the nightly cleanup job.
    """
    if not file.filename:
        raise HTTPException(status_code=400, detail="no file")
    payload = file.file.read(settings.MAX_UPLOAD_BYTES + 1)
    return services.FileService(db).upload(file.filename, file.content_type, payload)


@app.get("/health")
def health():
    """Lightweight health check for uptime monitoring."""
    return {"status": "ok"}
