from fastapi import FastAPI, HTTPException, Depends, File, UploadFile, Request, Response
from fastapi.responses import JSONResponse
from fastapi.security import OAuth2PasswordRequestForm
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel, EmailStr, Field
from motor.motor_asyncio import AsyncIOMotorClient
from passlib.context import CryptContext
from jose import JWTError, jwt
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Union
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
import logging

from ..config import (
    ACCESS_TOKEN_EXPIRE_MINUTES, ALGORITHM, CIRCUIT_RESET_SECONDS, DEFAULT_CHUNK_SIZE, LOG_FILE,
    MAX_UPLOAD_SIZE, MONGO_DB_NAME, MONGO_URI, SECRET_KEY, TESTING, WORKER_POOL_SIZE,
)
from ..circuit_breaker import CircuitBreaker
from ..document_parser import detect_document_type
from ..error_tracking import ErrorTracker
from ..exceptions import (
    AIServiceError, CircuitOpenError, NoKeyAvailableError, OperationCancelled, UnsupportedDocumentError, WorkerError,
)
from ..gemini_services import analyze_job_description, enhance_job_description, generate_job_description
from ..key_manager import create_key_manager
from ..language_processor import LanguageProcessor, generate_diff_html, get_improvement_suggestions
from ..workers.pool import WorkerPool
from ..workers.document_parser_worker import DocumentParserWorker
from ..workers.text_processor_worker import TextProcessorWorker
from . import jd_service


# --- Logging Configuration ---
logging.basicConfig(level=logging.INFO,
                    format='%(asctime)s - %(levelname)s - %(message)s',
                    handlers=[
                        logging.FileHandler(LOG_FILE),
                        logging.StreamHandler()
                    ])

# --- Rate Limiting ---
# Rate limits are off when TESTING is set
limiter = Limiter(key_func=get_remote_address, enabled=not TESTING)
app = FastAPI(title="JD Builder API")
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

@app.middleware("http")
async def add_no_cache_header(request: Request, call_next):
    response = await call_next(request)
    response.headers["Cache-Control"] = "no-store, no-cache, must-revalidate, max-age=0"
    return response


# --- Security and JWT Configuration ---
pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

# --- Database Connection ---
client = AsyncIOMotorClient(MONGO_URI)
db = client[MONGO_DB_NAME]
users_collection = db.users
jd_collection = db.job_descriptions
history_collection = db.user_history
error_logs_collection = db.error_logs

# --- Error Tracking ---
error_tracker = ErrorTracker(collection=error_logs_collection)

# --- User-facing messages ---
TRY_AGAIN_MESSAGE = "AI service is busy, please try again shortly."
UNSUPPORTED_FILE_MESSAGE = "Unsupported file type. Please upload a PDF, DOCX or TXT file."


# --- Pydantic Models ---
class TokenResponse(BaseModel):
    access_token: str
    token_type: str
    expires_in: int

class SignupRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=8)
    metadata: Dict[str, Any] = Field(default_factory=dict)

class JDSave(BaseModel):
    id: Optional[str] = None
    title: str = Field(min_length=1)
    department: Optional[str] = None
    content: Union[Dict[str, Any], str, None] = None
    is_template: bool = False
    is_public: bool = False
    status: str = "draft"

class JDDelete(BaseModel):
    id: str

class TextProcessRequest(BaseModel):
    text: str
    options: Dict[str, Any] = Field(default_factory=dict)
    chunk_size: int = Field(DEFAULT_CHUNK_SIZE, gt=0)

class EnhanceRequest(BaseModel):
    text: str = Field(min_length=1)
    instruction: Optional[str] = None

class IntakeRequest(BaseModel):
    title: str = Field(min_length=1)
    department: Optional[str] = None
    level: Optional[str] = None
    responsibilities: List[str] = Field(default_factory=list)
    skills: List[str] = Field(default_factory=list)
    notes: Optional[str] = None

class ErrorReport(BaseModel):
    errorMessage: str
    errorStack: Optional[str] = None
    context: Dict[str, Any] = Field(default_factory=dict)
    userEmail: Optional[EmailStr] = None


# --- Helper Functions ---
def verify_password(plain_password, hashed_password):
    return pwd_context.verify(plain_password, hashed_password)

def get_password_hash(password):
    return pwd_context.hash(password)

def create_access_token(data: dict, expires_delta: Optional[timedelta] = None):
    to_encode = data.copy()
    expire = datetime.utcnow() + (expires_delta or timedelta(minutes=15))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)

def _token_from_request(request: Request):
    token = request.cookies.get("access_token")
    if token:
        return token
    authorization = request.headers.get("Authorization", "")
    if authorization.lower().startswith("bearer "):
        return authorization[7:]
    return None

async def get_current_user(request: Request):
    credentials_exception = HTTPException(
        status_code=401,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    token = _token_from_request(request)
    if not token:
        logging.warning("No access token found in request.")
        raise credentials_exception

    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
        email: str = payload.get("sub")
        if email is None:
            logging.warning("Token payload missing 'sub' (email).")
            raise credentials_exception
    except JWTError as e:
        logging.error(f"JWT decoding failed: {e}")
        raise credentials_exception

    user = await users_collection.find_one({"email": email})
    if user is None:
        logging.warning(f"User not found for email: {email}")
        raise credentials_exception
    return user

def get_key_manager(request: Request):
    return request.app.state.key_manager

def get_circuit_breaker(request: Request):
    return request.app.state.circuit_breaker

def get_document_pool(request: Request):
    return request.app.state.document_pool

def get_text_pool(request: Request):
    return request.app.state.text_pool

async def _call_ai(func, *args, **kwargs):
    """Runs a blocking Gemini call off the event loop and maps failures to HTTP errors."""
    try:
        return await run_in_threadpool(func, *args, **kwargs)
    except NoKeyAvailableError:
        raise HTTPException(status_code=503, detail=TRY_AGAIN_MESSAGE, headers={"Retry-After": "60"})
    except CircuitOpenError as e:
        raise HTTPException(status_code=503, detail=str(e),
                            headers={"Retry-After": str(int(CIRCUIT_RESET_SECONDS))})
    except AIServiceError as e:
        raise HTTPException(status_code=502, detail=str(e))


# --- Lifecycle ---
@app.on_event("startup")
async def startup_event():
    logging.info("Starting JD Builder API...")
    error_tracker.install()
    # Fails startup if no API keys are configured
    app.state.key_manager = create_key_manager()
    app.state.circuit_breaker = CircuitBreaker("gemini")
    app.state.document_pool = WorkerPool(DocumentParserWorker, size=WORKER_POOL_SIZE)
    app.state.text_pool = WorkerPool(TextProcessorWorker, size=WORKER_POOL_SIZE)
    logging.info("Workers started.")

@app.on_event("shutdown")
async def shutdown_event():
    logging.info("Shutting down workers...")
    for name in ("document_pool", "text_pool"):
        pool = getattr(app.state, name, None)
        if pool is not None:
            pool.shutdown()
    error_tracker.uninstall()
    logging.info("JD Builder API shut down.")

@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    record = error_tracker.capture_error(exc, {"source": "api", "path": request.url.path})
    try:
        await error_tracker.store(record)
    except Exception as e:
        logging.error(f"Failed to store error record: {e}", exc_info=True)
    return JSONResponse(status_code=500, content={"detail": "Something went wrong. Please try again."})


# --- Auth Endpoints ---
@app.post("/api/auth/signup", status_code=201)
@limiter.limit("5/minute")
async def signup(request: Request, user: SignupRequest):
    db_user = await users_collection.find_one({"email": user.email})
    if db_user:
        raise HTTPException(status_code=400, detail="Email already registered")
    user_document = {
        "email": user.email,
        "metadata": user.metadata,
        "hashed_password": get_password_hash(user.password),
        "created_at": datetime.utcnow(),
    }
    await users_collection.insert_one(user_document)
    logging.info(f"User {user.email} signed up.")
    return {"success": True, "message": "Account created. Please sign in."}

@app.post("/api/auth/signin", response_model=TokenResponse)
@limiter.limit("10/minute")
async def signin(request: Request, response: Response, form_data: OAuth2PasswordRequestForm = Depends()):
    user = await users_collection.find_one({"email": form_data.username})
    if not user or not verify_password(form_data.password, user["hashed_password"]):
        raise HTTPException(
            status_code=401,
            detail="Incorrect email or password",
            headers={"WWW-Authenticate": "Bearer"},
        )

    access_token = create_access_token(
        data={"sub": user["email"]}, expires_delta=timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    response.set_cookie("access_token", access_token, httponly=True, samesite="lax",
                        max_age=ACCESS_TOKEN_EXPIRE_MINUTES * 60)
    logging.info(f"User {user['email']} signed in.")
    return {"access_token": access_token, "token_type": "bearer", "expires_in": ACCESS_TOKEN_EXPIRE_MINUTES * 60}

@app.post("/api/auth/signout")
async def signout(response: Response):
    response.delete_cookie("access_token")
    return {"message": "Signed out."}

@app.get("/api/auth/me")
async def read_current_user(current_user: dict = Depends(get_current_user)):
    return {"email": current_user["email"]}


# --- Job Description Endpoints ---
@app.post("/api/jd/save")
@limiter.limit("60/minute")
async def save_job_description(request: Request, jd: JDSave, current_user: dict = Depends(get_current_user)):
    saved = await jd_service.save_jd(jd_collection, history_collection, jd.model_dump(), current_user["email"])
    if saved is None:
        raise HTTPException(status_code=404, detail="Job description not found.")
    return {"success": True, "data": saved}

@app.get("/api/jd/{jd_id}")
async def read_job_description(jd_id: str, current_user: dict = Depends(get_current_user)):
    jd = await jd_service.get_jd(jd_collection, jd_id, current_user["email"])
    if jd is None:
        raise HTTPException(status_code=404, detail="Job description not found.")
    return {"success": True, "data": jd}

@app.post("/api/jd/delete")
@limiter.limit("30/minute")
async def delete_job_description(request: Request, jd: JDDelete, current_user: dict = Depends(get_current_user)):
    deleted = await jd_service.delete_jd(jd_collection, history_collection, jd.id, current_user["email"])
    if not deleted:
        raise HTTPException(status_code=404, detail="Job description not found.")
    return {"success": True}

@app.get("/api/history/all")
async def read_history(current_user: dict = Depends(get_current_user)):
    jds = await jd_service.get_user_jds(jd_collection, current_user["email"])
    return {"success": True, "data": jds}


# --- Document & Text Processing Endpoints ---
@app.post("/api/documents/parse")
@limiter.limit("20/minute")
async def parse_document_upload(request: Request, file: UploadFile = File(...),
                                current_user: dict = Depends(get_current_user),
                                document_pool: WorkerPool = Depends(get_document_pool)):
    try:
        document_type = detect_document_type(file.filename, file.content_type)
    except UnsupportedDocumentError:
        raise HTTPException(status_code=400, detail=UNSUPPORTED_FILE_MESSAGE)

    file_data = await file.read()
    if len(file_data) > MAX_UPLOAD_SIZE:
        raise HTTPException(status_code=400, detail="File size exceeds 10 MB.")

    logging.info(f"Parsing {document_type} upload '{file.filename}' for {current_user['email']}")
    try:
        if document_type == "pdf":
            text = await run_in_threadpool(document_pool.parse_pdf, file_data)
        elif document_type == "docx":
            text = await run_in_threadpool(document_pool.parse_docx, file_data)
        else:
            text = await run_in_threadpool(document_pool.parse_text, file_data,
                                           file.filename, file.content_type or "text/plain")
    except WorkerError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except OperationCancelled:
        raise HTTPException(status_code=409, detail="Document parsing was cancelled.")
    return {"filename": file.filename, "text": text}

@app.post("/api/jd/process")
@limiter.limit("60/minute")
async def process_job_description(request: Request, body: TextProcessRequest,
                                  current_user: dict = Depends(get_current_user),
                                  text_pool: WorkerPool = Depends(get_text_pool)):
    """Applies the rule-based language clean-up on the text worker."""
    try:
        result = await run_in_threadpool(text_pool.enhance_text, body.text, body.options)
    except WorkerError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except OperationCancelled:
        raise HTTPException(status_code=409, detail="Text processing was cancelled.")
    return {"result": result}

@app.post("/api/jd/sharpness")
async def score_job_description(body: TextProcessRequest, current_user: dict = Depends(get_current_user)):
    report = LanguageProcessor.from_options(body.options).process_text(body.text)
    report["suggestions"] = get_improvement_suggestions(report["sharpness_score"], report["changes"])
    report["diff_html"] = generate_diff_html(body.text, report["changes"])
    return report


# --- AI Endpoints ---
@app.post("/api/jd/enhance")
@limiter.limit("20/minute")
async def enhance_with_ai(request: Request, body: EnhanceRequest,
                          current_user: dict = Depends(get_current_user),
                          key_manager=Depends(get_key_manager), breaker=Depends(get_circuit_breaker)):
    result = await _call_ai(enhance_job_description, body.text, key_manager, body.instruction, breaker=breaker)
    return {"result": result}

@app.post("/api/jd/generate")
@limiter.limit("10/minute")
async def generate_with_ai(request: Request, intake: IntakeRequest,
                           current_user: dict = Depends(get_current_user),
                           key_manager=Depends(get_key_manager), breaker=Depends(get_circuit_breaker)):
    jd = await _call_ai(generate_job_description, intake.model_dump(exclude_none=True), key_manager,
                        breaker=breaker)
    return {"success": True, "data": jd}

@app.post("/api/jd/analyze")
@limiter.limit("20/minute")
async def analyze_with_ai(request: Request, body: EnhanceRequest,
                          current_user: dict = Depends(get_current_user),
                          key_manager=Depends(get_key_manager), breaker=Depends(get_circuit_breaker)):
    analysis = await _call_ai(analyze_job_description, body.text, key_manager, breaker=breaker)
    return {"success": True, "data": analysis}


# --- Operations Endpoints ---
@app.get("/api/keys/status")
async def read_keys_status(current_user: dict = Depends(get_current_user), key_manager=Depends(get_key_manager),
                           breaker=Depends(get_circuit_breaker)):
    return {"keys": key_manager.get_keys_status(), "circuit": breaker.get_metrics()}

@app.get("/api/workers/status")
async def read_workers_status(current_user: dict = Depends(get_current_user),
                              document_pool: WorkerPool = Depends(get_document_pool),
                              text_pool: WorkerPool = Depends(get_text_pool)):
    return {"documents": document_pool.get_status(), "text": text_pool.get_status()}

@app.post("/api/error")
@limiter.limit("30/minute")
async def report_client_error(request: Request, report: ErrorReport):
    context = dict(report.context, source=report.context.get("source", "client"))
    record = await run_in_threadpool(error_tracker.capture_error, report.errorMessage, context, report.userEmail)
    if report.errorStack:
        record["error_stack"] = report.errorStack
    error_id = await error_tracker.store(record)
    return {"success": True, "id": error_id}

@app.get("/api/db/check")
async def check_database():
    ok, error = await jd_service.check_connection(db)
    if not ok:
        raise HTTPException(status_code=503, detail=error)
    return {"status": "ok"}


# --- Root Endpoint ---
@app.get("/")
async def read_root():
    return {"message": "Welcome to the JD Builder API"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
