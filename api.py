import logging
import os
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from fastapi import Depends, FastAPI, File, HTTPException, Query, Request, Security, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from fastapi.staticfiles import StaticFiles
from starlette.exceptions import HTTPException as StarletteHTTPException

import waitlist
from auth import AdminAuthenticator, SessionStore
from circulation import Action, ConflictError, FineAssessment, NotFoundError
from config import settings
from library import Library
from models import Fine, FineStatus, RequestStatus, new_id
from schemas import (
    BookModel, FineCreateModel, FineModel, FineStatusUpdate, HistoryModel, HistoryUpdate,
    LoginRequest, MessageResponse, PasswordChangeRequest, QueueEntryModel, RequestCreateModel,
    RequestModel, RequestStatusUpdate, ResolutionResponse, ReturnCreateModel, ReturnResponse,
    SessionModel, StatsModel, UploadResponse, UserModel,
)

logger = logging.getLogger(__name__)

library = Library()
authenticator = AdminAuthenticator(library, SessionStore())


@asynccontextmanager
async def lifespan(app: FastAPI):
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    Path(settings.upload_dir).mkdir(parents=True, exist_ok=True)
    logger.info("%s %s using %s", settings.app_name, settings.app_version, library.db_file)
    yield


app = FastAPI(title=settings.app_name, version=settings.app_version, lifespan=lifespan)

# --- Middleware ---
app.add_middleware(GZipMiddleware, minimum_size=1000)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.mount("/uploads", StaticFiles(directory=settings.upload_dir, check_dir=False), name="uploads")


# --- Error handling ---
# Every error body is {"message": ...}, which is what API clients read.
def _error(status_code: int, message: str, **extra) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"message": message, **extra})


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    response = _error(exc.status_code, str(exc.detail))
    if exc.headers:
        response.headers.update(exc.headers)
    return response


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = [{"loc": list(e.get("loc", ())), "msg": e.get("msg", "")} for e in exc.errors()]
    message = errors[0]["msg"] if errors else "Invalid request"
    return _error(422, message, errors=errors)


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return _error(404, str(exc))


@app.exception_handler(ConflictError)
async def conflict_handler(request: Request, exc: ConflictError):
    return _error(409, str(exc))


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError):
    return _error(400, str(exc))


# --- Security ---
bearer_scheme = HTTPBearer(auto_error=False)


def require_admin(credentials: Optional[HTTPAuthorizationCredentials] = Security(bearer_scheme)) -> str:
    """Dependency that admits only requests carrying a live admin session token."""
    token = credentials.credentials if credentials else None
    if not authenticator.is_admin(token):
        raise HTTPException(
            status_code=401,
            detail="Admin session required",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return token


# --- Health ---
@app.get("/health")
def health():
    """Liveness check with document counts per collection."""
    db_ok = True
    counts = {}
    try:
        counts = library.counts()
    except Exception as exc:
        logger.error("Health check could not read the document store: %s", exc)
        db_ok = False
    return {
        "status": "healthy" if db_ok else "degraded",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "db": db_ok,
        "counts": counts,
    }


# --- Auth ---
@app.post("/api/auth/login", response_model=SessionModel)
def login(payload: LoginRequest):
    session = authenticator.login(payload.password)
    if session is None:
        raise HTTPException(status_code=401, detail="Invalid admin password")
    return session.to_dict()


@app.post("/api/auth/logout", response_model=MessageResponse)
def logout(token: str = Depends(require_admin)):
    authenticator.logout(token)
    return {"message": "Logged out"}


@app.post("/api/auth/password", response_model=MessageResponse)
def change_password(payload: PasswordChangeRequest, token: str = Depends(require_admin)):
    if not authenticator.change_password(payload.current_password, payload.new_password):
        raise HTTPException(status_code=403, detail="Current password is incorrect")
    return {"message": "Password updated"}


# --- Books ---
@app.get("/api/books", response_model=List[BookModel])
def list_books(
    q: Optional[str] = Query(None, description="Matches title, author or id"),
    category: Optional[str] = Query(None, description="Exact category; 'All' disables the filter"),
):
    return [b.to_dict() for b in library.list_books(q, category)]


@app.post("/api/books", response_model=BookModel, status_code=201)
def save_book(payload: BookModel, _: str = Depends(require_admin)):
    return library.save_book(payload.to_domain()).to_dict()


@app.post("/api/books/bulk", response_model=List[BookModel], status_code=201)
def bulk_save_books(payload: List[BookModel], _: str = Depends(require_admin)):
    return [b.to_dict() for b in library.bulk_save_books(p.to_domain() for p in payload)]


@app.get("/api/books/{book_id}", response_model=BookModel)
def get_book(book_id: str):
    book = library.find_book(book_id)
    if not book:
        raise HTTPException(status_code=404, detail=f"Book {book_id} not found")
    return book.to_dict()


@app.delete("/api/books/{book_id}", response_model=MessageResponse)
def delete_book(book_id: str, _: str = Depends(require_admin)):
    if not library.remove_book(book_id):
        raise HTTPException(status_code=404, detail=f"Book {book_id} not found")
    return {"message": "Book deleted"}


@app.get("/api/books/{book_id}/queue", response_model=List[QueueEntryModel])
def get_book_queue(book_id: str):
    return waitlist.queue_entries(library.waitlist(book_id))


# --- Users ---
@app.get("/api/users", response_model=List[UserModel])
def list_users(q: Optional[str] = Query(None, description="Matches name or id")):
    return [u.to_dict() for u in library.list_users(q)]


@app.post("/api/users", response_model=UserModel, status_code=201)
def save_user(payload: UserModel, _: str = Depends(require_admin)):
    return library.save_user(payload.to_domain()).to_dict()


@app.post("/api/users/bulk", response_model=List[UserModel], status_code=201)
def bulk_save_users(payload: List[UserModel], _: str = Depends(require_admin)):
    return [u.to_dict() for u in library.bulk_save_users(p.to_domain() for p in payload)]


@app.delete("/api/users/{user_id}", response_model=MessageResponse)
def delete_user(user_id: str, _: str = Depends(require_admin)):
    if not library.remove_user(user_id):
        raise HTTPException(status_code=404, detail=f"User {user_id} not found")
    return {"message": "User deleted"}


@app.get("/api/users/{user_id}/loans", response_model=List[HistoryModel])
def get_user_loans(user_id: str):
    return [h.to_dict() for h in library.active_loans(user_id)]


@app.get("/api/users/{user_id}/waitlist")
def get_user_waitlist(user_id: str):
    """Queue position of the user for every book they are waiting on."""
    return library.waitlist_for_user(user_id)


# --- Borrow requests ---
@app.get("/api/requests", response_model=List[RequestModel])
def list_requests(status: Optional[RequestStatus] = Query(None)):
    return [r.to_dict() for r in library.list_requests(status)]


@app.post("/api/requests", response_model=RequestModel, status_code=201)
def create_request(payload: RequestCreateModel):
    return library.create_request(payload.book_id, payload.user_id).to_dict()


@app.patch("/api/requests/{request_id}", response_model=ResolutionResponse)
def resolve_request(request_id: str, payload: RequestStatusUpdate, _: str = Depends(require_admin)):
    return library.resolve_request(request_id, Action.from_status(payload.status)).to_dict()


@app.delete("/api/requests", response_model=MessageResponse)
def clear_requests(_: str = Depends(require_admin)):
    return {"message": "All deleted successfully", "deleted": library.clear_requests()}


@app.get("/api/queues")
def list_queues():
    """Every non-empty waitlist keyed by book id."""
    return {book_id: waitlist.queue_entries(queue) for book_id, queue in library.queues().items()}


# --- Circulation ledger ---
@app.get("/api/history", response_model=List[HistoryModel])
def list_history(
    active: Optional[bool] = Query(None, description="true: open loans only, false: closed only"),
    user_id: Optional[str] = Query(None, alias="userId"),
):
    return [h.to_dict() for h in library.list_history(active, user_id)]


@app.post("/api/history", response_model=HistoryModel, status_code=201)
def add_history_record(payload: HistoryModel, _: str = Depends(require_admin)):
    return library.add_history_record(payload.to_domain()).to_dict()


@app.patch("/api/history/{record_id}", response_model=HistoryModel)
def close_history_record(record_id: str, payload: HistoryUpdate, _: str = Depends(require_admin)):
    return library.close_history_record(record_id, payload.return_date).to_dict()


@app.delete("/api/history", response_model=MessageResponse)
def clear_history(_: str = Depends(require_admin)):
    return {"message": "All deleted successfully", "deleted": library.clear_history()}


@app.post("/api/returns", response_model=ReturnResponse)
def return_book(payload: ReturnCreateModel, _: str = Depends(require_admin)):
    fine = FineAssessment(payload.fine.amount, payload.fine.reason) if payload.fine else None
    return library.return_book(payload.book_id, payload.user_id, fine).to_dict()


# --- Fines ---
@app.get("/api/fines", response_model=List[FineModel])
def list_fines(
    status: Optional[FineStatus] = Query(None),
    user_id: Optional[str] = Query(None, alias="userId"),
):
    return [f.to_dict() for f in library.list_fines(status, user_id)]


@app.post("/api/fines", response_model=FineModel, status_code=201)
def create_fine(payload: FineCreateModel, _: str = Depends(require_admin)):
    fine = Fine(
        id=payload.id or new_id("F"),
        user_id=payload.user_id,
        user_name=payload.user_name,
        book_id=payload.book_id,
        book_title=payload.book_title,
        amount=payload.amount,
        reason=payload.reason,
    )
    return library.add_fine(fine).to_dict()


@app.patch("/api/fines/{fine_id}", response_model=FineModel)
def update_fine(fine_id: str, payload: FineStatusUpdate, _: str = Depends(require_admin)):
    return library.set_fine_status(fine_id, payload.status).to_dict()


@app.delete("/api/fines", response_model=MessageResponse)
def clear_fines(_: str = Depends(require_admin)):
    return {"message": "All deleted successfully", "deleted": library.clear_fines()}


# --- Statistics ---
@app.get("/api/stats", response_model=StatsModel)
def get_library_stats():
    """Circulation figures for the analytics dashboard."""
    return library.get_statistics()


# --- Uploads ---
@app.post("/api/upload", response_model=UploadResponse)
async def upload_image(image: UploadFile = File(...), _: str = Depends(require_admin)):
    """Store an image and return the URL it is served from."""
    extension = os.path.splitext(image.filename or "")[1].lower()
    if extension not in settings.allowed_image_extensions:
        raise HTTPException(status_code=400, detail=f"Unsupported image type: {extension or 'none'}")
    content = await image.read()
    if not content:
        raise HTTPException(status_code=400, detail="Uploaded file is empty")
    if len(content) > settings.max_upload_size:
        raise HTTPException(status_code=413, detail="Uploaded file is too large")

    upload_dir = Path(settings.upload_dir)
    upload_dir.mkdir(parents=True, exist_ok=True)
    filename = f"{uuid.uuid4().hex}{extension}"
    (upload_dir / filename).write_bytes(content)
    logger.info("Stored upload %s (%d bytes)", filename, len(content))
    return {"url": f"{settings.base_url}/uploads/{filename}"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=settings.api_host, port=settings.api_port)
