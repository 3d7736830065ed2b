# credilink_auth/main.py
#
# -----------------------------------------------------------------------------
# Architectural notes (high level)
# -----------------------------------------------------------------------------
# This file is intentionally "thin" orchestration glue:
#   - It wires HTTP endpoints to the protocol primitives implemented elsewhere.
#   - It MUST NOT implement crypto itself (signatures.py + sessions.py do).
#   - It owns no global state: every store is created in create_app() and
#     injected into ChallengeService.
#
# Key modules / responsibilities:
#   - config.py      : environment-driven settings
#   - nonces.py      : single-use challenge store
#   - signatures.py  : EIP-191 signer recovery
#   - identity.py    : (address, role) identity registry + persistence
#   - sessions.py    : Ed25519-signed bearer session tokens
#   - challenge.py   : request/verify state machine
#   - audit.py       : append-only audit log (security telemetry, forensics)
#
# WARNING (DEPLOYMENT):
# - NonceStore and the session revocation list live in process memory. Run a
#   single worker, or move them to a shared store, or challenges issued by
#   one worker will be unknown to the others.
# -----------------------------------------------------------------------------

import logging
from typing import Any, Dict, Optional

from fastapi import Body, Depends, FastAPI, Header, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from .audit import AuditLog, build_common
from .challenge import ChallengeService
from .config import Settings, settings as default_settings
from .errors import AuthError, InvalidAddress, InvalidSignature, SessionInvalid
from .identity import IdentityRegistry
from .models import (
    ChainSwitch,
    NonceRequest,
    NonceResponse,
    ProfileUpdate,
    VerifyRequest,
    VerifyResponse,
)
from .nonces import NonceStore
from .sessions import Session, SessionManager, load_ed25519_private_key_from_b64


logger = logging.getLogger("credilink.auth")


def _client_ip(request: Request) -> Optional[str]:
    return request.client.host if request.client else None


def extract_bearer_token(authorization: Optional[str]) -> Optional[str]:
    """Extract token from 'Bearer <token>' header."""
    if not authorization:
        return None
    parts = authorization.split(" ", 1)
    if len(parts) != 2 or parts[0].lower() != "bearer" or not parts[1].strip():
        return None
    return parts[1].strip()


def _first_error(e: ValidationError) -> str:
    err = e.errors()[0]
    loc = ".".join(str(p) for p in err.get("loc", ()))
    return f"{loc}: {err.get('msg', 'invalid')}" if loc else str(err.get("msg", "invalid"))


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or default_settings
    logging.getLogger("credilink").setLevel(settings.LOG_LEVEL)

    signing_key = None
    if settings.SERVER_ED25519_SK_B64:
        signing_key = load_ed25519_private_key_from_b64(settings.SERVER_ED25519_SK_B64)

    audit = AuditLog(settings.AUDIT_DIR, enabled=settings.AUDIT_ENABLED)
    registry = IdentityRegistry(settings.IDENTITY_STORE_PATH or None)
    sessions = SessionManager(signing_key, ttl_seconds=settings.SESSION_TTL_SECONDS)
    service = ChallengeService(
        nonces=NonceStore(
            ttl_seconds=settings.NONCE_TTL_SECONDS,
            nbytes=settings.NONCE_BYTES,
        ),
        registry=registry,
        sessions=sessions,
        audit=audit,
        default_role=settings.DEFAULT_ROLE,
    )

    app = FastAPI(title="CrediLink Wallet Auth", version="0.1.0")
    app.state.settings = settings
    app.state.challenges = service
    app.state.registry = registry
    app.state.sessions = sessions
    app.state.audit = audit

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.ORIGIN],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(AuthError)
    def auth_error_handler(request: Request, exc: AuthError):
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    def current_session(authorization: Optional[str] = Header(None)) -> Session:
        token = extract_bearer_token(authorization)
        if not token:
            raise SessionInvalid("missing bearer token")
        return sessions.resolve(token)

    # -------------------------------------------------------------------------
    # Challenge-response
    # -------------------------------------------------------------------------
    @app.post("/nonce", response_model=NonceResponse)
    def nonce(request: Request, body: Dict[str, Any] = Body(...)):
        try:
            req = NonceRequest.model_validate(body)
        except ValidationError as e:
            raise InvalidAddress(_first_error(e))

        challenge = service.request_challenge(
            req.address,
            request_ip=_client_ip(request),
            user_agent=request.headers.get("user-agent"),
        )
        return NonceResponse(nonce=challenge.nonce, expires_at=challenge.expires_at)

    @app.post("/verify", response_model=VerifyResponse)
    def verify(request: Request, body: Dict[str, Any] = Body(...)):
        try:
            req = VerifyRequest.model_validate(body)
        except ValidationError as e:
            raise InvalidSignature(f"Verification failed: {_first_error(e)}")

        result = service.verify_challenge(
            req.address,
            req.signature,
            req.role,
            chain_id=req.chain_id,
            request_ip=_client_ip(request),
            user_agent=request.headers.get("user-agent"),
        )
        return VerifyResponse(
            created=result.created,
            identity=result.record.public_view(),
            session_token=result.session.token,
            expires_at=result.session.expires_at,
        )

    # -------------------------------------------------------------------------
    # Session-bound identity operations
    # -------------------------------------------------------------------------
    @app.get("/me")
    def me(session: Session = Depends(current_session)):
        return registry.get(session.record_id).public_view()

    @app.patch("/me")
    def update_me(update: ProfileUpdate, session: Session = Depends(current_session)):
        fields = update.model_dump(exclude_unset=True, exclude_none=True)
        record = registry.update(session.record_id, fields)
        audit.append(
            {
                **build_common(
                    event="profile_updated",
                    address=record.address,
                    role=record.role.value,
                    record_id=record.id,
                ),
                "fields": sorted(fields),
            }
        )
        return record.public_view()

    @app.post("/me/chain")
    def switch_chain(body: ChainSwitch, session: Session = Depends(current_session)):
        record = registry.switch_chain(session.record_id, body.chain_id)
        audit.append(
            {
                **build_common(
                    event="chain_switched",
                    address=record.address,
                    role=record.role.value,
                    record_id=record.id,
                ),
                "chain_id": body.chain_id,
            }
        )
        return record.public_view()

    @app.post("/logout")
    def logout(session: Session = Depends(current_session)):
        sessions.revoke(session.token)
        logger.info("session %s logged out", session.session_id[:8])
        audit.append(
            build_common(
                event="logout",
                address=session.address,
                role=session.role,
                record_id=session.record_id,
            )
        )
        return {"success": True}

    @app.get("/health")
    def health():
        return {"ok": True}

    return app


app = create_app()
