import logging
from typing import List, Optional

from fastapi import Depends, FastAPI, Request, Response, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from notekeeper.auth import (
    Identity,
    get_current_identity,
    get_password_hash,
    get_settings,
    issue_token,
    verify_password,
)
from notekeeper.config import Settings, configure_logging, load_settings
from notekeeper.errors import AuthError, ConflictError, NotekeeperError, NotFoundError
from notekeeper.schemas import (
    AuthResponse,
    CredentialsRequest,
    HealthResponse,
    NoteCreateRequest,
    NoteRecord,
    NoteResponse,
    NoteUpdateRequest,
    RegisterRequest,
    UserRecord,
    UserResponse,
)
from notekeeper.selector import select_backend
from notekeeper.store import NOTES, USERS, RecordStore
from notekeeper.utils import utc_now

logger = logging.getLogger(__name__)


def get_store(request: Request) -> RecordStore:
    """
    Dependency that provides the record store chosen at startup.
    """
    return request.app.state.store


def _note_response(note: NoteRecord) -> NoteResponse:
    return NoteResponse(
        id=note.id,
        user_id=note.user_id,
        title=note.title,
        content=note.content,
        created_at=note.created_at,
        updated_at=note.updated_at,
    )


def _auth_response(user: UserRecord, settings: Settings) -> AuthResponse:
    token = issue_token(user.id, user.email, settings)
    return AuthResponse(token=token, user=UserResponse(id=user.id, email=user.email))


# PUBLIC_INTERFACE
def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Build the Notes API application.

    The storage backend is selected once in the startup hook and released in
    the shutdown hook; routes reach it only through the get_store dependency.
    """
    settings = settings or load_settings()
    configure_logging(settings.log_level)

    app = FastAPI(
        title="Notekeeper API",
        description="Notes application backend API with JWT auth and owner-scoped CRUD for notes.",
        version="1.0.0",
        openapi_tags=[
            {"name": "Health", "description": "Service health and status."},
            {"name": "Auth", "description": "User registration and authentication."},
            {"name": "Notes", "description": "CRUD operations for notes."},
        ],
    )
    app.state.settings = settings

    # CORS setup - allow frontend
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.on_event("startup")
    def on_startup():
        app.state.store = select_backend(settings)
        logger.info("Storage backend: %s", app.state.store.mode)

    @app.on_event("shutdown")
    def on_shutdown():
        store = getattr(app.state, "store", None)
        if store is not None:
            store.close()

    # -------- Error handlers --------

    @app.exception_handler(NotekeeperError)
    async def notekeeper_error_handler(request: Request, exc: NotekeeperError):
        content = {"detail": exc.detail}
        headers = None
        if isinstance(exc, AuthError):
            content["reason"] = exc.kind
            headers = {"WWW-Authenticate": "Bearer"}
        return JSONResponse(status_code=exc.status_code, content=content, headers=headers)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"detail": jsonable_encoder(exc.errors())},
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        detail = "Internal server error" if settings.is_production else str(exc)
        return JSONResponse(status_code=500, content={"detail": detail})

    # -------- Health --------

    # PUBLIC_INTERFACE
    @app.get("/", tags=["Health"], summary="Health Check")
    def health_check():
        """
        Health check endpoint.

        Returns:
            JSON object indicating service status and server time.
        """
        return {"status": "ok", "time": utc_now().isoformat()}

    # PUBLIC_INTERFACE
    @app.get("/healthz", tags=["Health"], summary="Storage health", response_model=HealthResponse)
    def storage_health(response: Response, store: RecordStore = Depends(get_store)):
        """
        Report which storage backend is active and whether it is reachable.

        Returns 503 when the backend fails its healthcheck.
        """
        healthy = store.healthcheck()
        if not healthy:
            response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(status="ok" if healthy else "unavailable", backend=store.mode, time=utc_now())

    # -------- Auth Routes --------

    # PUBLIC_INTERFACE
    @app.post(
        "/auth/register",
        response_model=AuthResponse,
        status_code=status.HTTP_201_CREATED,
        tags=["Auth"],
        summary="Register a new user",
    )
    def register_user(
        payload: RegisterRequest,
        store: RecordStore = Depends(get_store),
        settings: Settings = Depends(get_settings),
    ):
        """
        Register a new user and sign them in.

        Body:
            email: valid email address
            password: plaintext password (min 6 chars)

        Returns:
            AuthResponse with a bearer token and the public user fields.

        Raises:
            409 if the email is already registered.
        """
        if store.find_user_by_email(payload.email):
            raise ConflictError("Email already registered")
        user = store.insert(
            USERS,
            UserRecord(email=payload.email, password_hash=get_password_hash(payload.password)),
        )
        logger.info("Registered user %s", user.id)
        return _auth_response(user, settings)

    # PUBLIC_INTERFACE
    @app.post(
        "/auth/login",
        response_model=AuthResponse,
        tags=["Auth"],
        summary="Login and obtain a bearer token",
    )
    def login(
        payload: CredentialsRequest,
        store: RecordStore = Depends(get_store),
        settings: Settings = Depends(get_settings),
    ):
        """
        Exchange email and password for a bearer token.

        Raises:
            401 on invalid credentials (unknown email and wrong password look the same).
        """
        user = store.find_user_by_email(payload.email)
        if not user or not verify_password(payload.password, user.password_hash):
            raise AuthError("Invalid credentials")
        return _auth_response(user, settings)

    # -------- Notes Routes --------

    # PUBLIC_INTERFACE
    @app.get("/notes", response_model=List[NoteResponse], tags=["Notes"], summary="List notes")
    def list_notes(
        identity: Identity = Depends(get_current_identity),
        store: RecordStore = Depends(get_store),
    ):
        """
        List notes belonging to the caller, most recently updated first.
        """
        return [_note_response(n) for n in store.list_by_owner(NOTES, identity.user_id)]

    # PUBLIC_INTERFACE
    @app.post(
        "/notes",
        response_model=NoteResponse,
        status_code=status.HTTP_201_CREATED,
        tags=["Notes"],
        summary="Create a new note",
    )
    def create_note(
        payload: NoteCreateRequest,
        identity: Identity = Depends(get_current_identity),
        store: RecordStore = Depends(get_store),
    ):
        """
        Create a new note for the caller.

        Body:
            title: note title (optional, max 200 chars)
            content: note content (optional, max 10000 chars)

        Raises:
            400 if both title and content are empty.
        """
        note = store.insert(
            NOTES,
            NoteRecord(user_id=identity.user_id, title=payload.title, content=payload.content),
        )
        return _note_response(note)

    # PUBLIC_INTERFACE
    @app.get("/notes/{note_id}", response_model=NoteResponse, tags=["Notes"], summary="Get a note by ID")
    def get_note(
        note_id: str,
        identity: Identity = Depends(get_current_identity),
        store: RecordStore = Depends(get_store),
    ):
        """
        Retrieve a single note by ID. Only the owner can access it.
        """
        note = store.get_by_id(NOTES, note_id, identity.user_id)
        if not note:
            raise NotFoundError("Note not found")
        return _note_response(note)

    # PUBLIC_INTERFACE
    @app.put("/notes/{note_id}", response_model=NoteResponse, tags=["Notes"], summary="Update a note by ID")
    def update_note(
        note_id: str,
        payload: NoteUpdateRequest,
        identity: Identity = Depends(get_current_identity),
        store: RecordStore = Depends(get_store),
    ):
        """
        Update a note. Only the owner can modify it; omitted fields are unchanged.
        """
        fields = payload.model_dump(exclude_unset=True)
        note = store.update(NOTES, note_id, identity.user_id, fields)
        if not note:
            raise NotFoundError("Note not found")
        return _note_response(note)

    # PUBLIC_INTERFACE
    @app.delete(
        "/notes/{note_id}",
        status_code=status.HTTP_204_NO_CONTENT,
        tags=["Notes"],
        summary="Delete a note by ID",
    )
    def delete_note(
        note_id: str,
        identity: Identity = Depends(get_current_identity),
        store: RecordStore = Depends(get_store),
    ):
        """
        Delete a note. Only the owner can delete it.
        """
        if not store.delete(NOTES, note_id, identity.user_id):
            raise NotFoundError("Note not found")
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    return app


app = create_app()
