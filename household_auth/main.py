from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from household_auth.api.endpoints import auth, google, two_factor
from household_auth.core.config import settings
from household_auth.core.encryption import get_code_cipher
from household_auth.core.errors import AuthError
from household_auth.core.logging import init_sentry, setup_logging
from household_auth.db.session import Database
from household_auth.helpers.getters import isDebugMode
from household_auth.logging import get_logger
from household_auth.middleware.logging import AccessLoggingMiddleware

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Falha no startup se ENCRYPTION_KEY estiver ausente ou inválida
    get_code_cipher()

    db = getattr(app.state, "db", None) or Database()
    await db.open(create_tables=isDebugMode())
    app.state.db = db
    logger.info("Household auth started", mode=settings.MODE)
    try:
        yield
    finally:
        await db.close()


app = FastAPI(
    title=f"{settings.APP_NAME} - Auth API",
    description="""
## 🔐 Autenticação

Login sem senha por código de 6 dígitos (email ou SMS) ou Google.

1. `POST /api/auth/login-code` com `{"email": "..."}` (informe `name` para criar a conta)
2. `POST /api/auth/verify-login-code` com `{"email": "...", "code": "123456"}`
3. Se a resposta trouxer `requiresTwoFactor`, envie o código recebido em
   `POST /api/auth/2fa/verify` com `{"tempToken": "...", "code": "..."}`
4. Use o `token` retornado no botão **Authorize** (Bearer)

Dispositivos confiáveis (`trustDevice: true`) pulam o segundo fator por 30 dias.
    """,
    version="1.0.0",
    lifespan=lifespan,
)

# Initialize logging and error tracking
setup_logging()
init_sentry()


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError):
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, "code": exc.code, **exc.extra},
        headers=headers,
    )


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,        # cookie trusted_device
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(AccessLoggingMiddleware, enabled=settings.MODE != "test")


app.include_router(auth.router, prefix="/api/auth", tags=["auth"])
app.include_router(two_factor.router, prefix="/api/auth/2fa", tags=["2fa"])
app.include_router(google.router, prefix="/api/auth", tags=["google"])


@app.get("/")
def root():
    return {"message": f"{settings.APP_NAME} auth API"}


@app.get("/health")
def health():
    return {"status": "ok"}
