"""
Space Explorer Backend API
A relay between the dashboard and NASA's open data.
Every answer arrives wrapped, every failure arrives explained.
"""

from fastapi import FastAPI, HTTPException, Depends, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from starlette.exceptions import HTTPException as StarletteHTTPException
from fastapi.middleware.gzip import GZipMiddleware
from pydantic import BaseModel
from typing import Optional, List, Dict, Any, Tuple
from datetime import datetime, date, timedelta
from dotenv import load_dotenv
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address
import httpx
import os
import json
import math
import re
import time
import asyncio
from functools import lru_cache
import logging

load_dotenv()

# === CONFIGURATION ===
# Read once from the environment, then trusted.

class Settings:
    """Configuration drawn from the environment, with sensible defaults."""

    def __init__(self):
        self.nasa_api_key = os.getenv("NASA_API_KEY", "DEMO_KEY")
        self.nasa_base_url = os.getenv("NASA_BASE_URL", "https://api.nasa.gov")
        self.nasa_images_base_url = os.getenv("NASA_IMAGES_BASE_URL", "https://images-api.nasa.gov")
        self.request_timeout = float(os.getenv("NASA_REQUEST_TIMEOUT", "10"))
        self.request_delay = float(os.getenv("NASA_REQUEST_DELAY", "0.1"))  # courtesy pause per upstream call

        self.host = os.getenv("HOST", "0.0.0.0")
        self.port = int(os.getenv("PORT", "5000"))
        self.environment = os.getenv("ENVIRONMENT", "development")
        self.log_level = os.getenv("LOG_LEVEL", "INFO").upper()
        self.cors_origins = [
            origin.strip() for origin in os.getenv("CORS_ORIGINS", "*").split(",") if origin.strip()
        ]

        # Rate limiting - one static window per client address
        self.rate_limit_window_ms = int(os.getenv("RATE_LIMIT_WINDOW_MS", "900000"))  # 15 minutes
        self.rate_limit_max_requests = int(os.getenv("RATE_LIMIT_MAX_REQUESTS", "100"))

    @property
    def rate_limit(self) -> str:
        """Limit expressed in the notation the limiter understands."""
        window_seconds = max(1, self.rate_limit_window_ms // 1000)
        return f"{self.rate_limit_max_requests} per {window_seconds} seconds"

@lru_cache()
def get_settings() -> Settings:
    """Single source of truth, cached for efficiency."""
    return Settings()

# Configure logging with measured verbosity
logging.basicConfig(
    level=get_settings().log_level,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger("space_explorer")

# === ERRORS ===

class NASAAPIError(Exception):
    """Upstream failure, already phrased for the caller."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code

def _upstream_message(response: httpx.Response) -> str:
    """Dig the human-readable reason out of a NASA error body."""
    try:
        body = response.json()
    except ValueError:
        return "Unknown error"

    if not isinstance(body, dict):
        return "Unknown error"

    error = body.get("error")
    if isinstance(error, dict) and error.get("message"):
        return error["message"]
    if isinstance(error, str) and error:
        return error
    if body.get("msg"):
        return body["msg"]
    return "Unknown error"

# === NASA API CLIENT ===
# Bridge to external knowledge

class NASAClient:
    """Client for api.nasa.gov and the Image and Video Library.
    Stateless: every call opens its own connection and leaves nothing behind."""

    def __init__(self, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.settings = settings
        self.base_url = settings.nasa_base_url.rstrip("/")
        self.images_base_url = settings.nasa_images_base_url.rstrip("/")
        self.api_key = settings.nasa_api_key
        self._transport = transport

    async def _request(self, url: str, params: Dict[str, Any], label: str) -> httpx.Response:
        """Issue a GET, translating every transport failure into NASAAPIError."""
        query = {key: value for key, value in params.items() if value is not None and value != ""}

        if self.settings.request_delay > 0:
            await asyncio.sleep(self.settings.request_delay)

        async with httpx.AsyncClient(
            timeout=self.settings.request_timeout,
            transport=self._transport,
            follow_redirects=True,
        ) as client:
            try:
                response = await client.get(url, params=query)
                response.raise_for_status()
                return response
            except httpx.HTTPStatusError as e:
                status_code = e.response.status_code
                detail = _upstream_message(e.response)
                logger.error(f"{label}: {status_code} from {url} - {detail}")
                raise NASAAPIError(f"{label}: {status_code} - {detail}", status_code) from e
            except (httpx.TimeoutException, httpx.NetworkError) as e:
                logger.error(f"{label}: no response from {url} ({e.__class__.__name__})")
                raise NASAAPIError(f"{label}: No response received") from e
            except httpx.HTTPError as e:
                logger.error(f"{label}: request to {url} failed - {e}")
                raise NASAAPIError(f"{label}: {e}") from e

    @staticmethod
    def _decode(response: httpx.Response, label: str) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise NASAAPIError(f"{label}: Invalid JSON response") from e

    async def _get(self, endpoint: str, params: Optional[dict] = None) -> Any:
        """GET against api.nasa.gov with the api key attached."""
        label = "NASA API Error"
        query = dict(params or {})
        query["api_key"] = self.api_key
        response = await self._request(f"{self.base_url}{endpoint}", query, label)
        return self._decode(response, label)

    async def get_apod(
        self,
        date: Optional[str] = None,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
    ) -> Any:
        """Astronomy Picture of the Day. A list when a range is requested."""
        return await self._get("/planetary/apod", {
            "date": date,
            "start_date": start_date,
            "end_date": end_date,
        })

    async def get_mars_rover_photos(
        self,
        rover: str = "curiosity",
        sol: Optional[int] = None,
        earth_date: Optional[str] = None,
        camera: Optional[str] = None,
        page: int = 1,
    ) -> dict:
        return await self._get(f"/mars-photos/api/v1/rovers/{rover}/photos", {
            "sol": sol,
            "earth_date": earth_date,
            "camera": camera,
            "page": page,
        })

    async def get_mars_rovers(self) -> dict:
        return await self._get("/mars-photos/api/v1/rovers")

    async def get_mars_rover_manifest(self, rover: str) -> dict:
        return await self._get(f"/mars-photos/api/v1/manifests/{rover}")

    async def get_neo_feed(self, start_date: str, end_date: Optional[str] = None) -> dict:
        """Retrieve NEO feed for date range (max 7 days)."""
        return await self._get("/neo/rest/v1/feed", {"start_date": start_date, "end_date": end_date})

    async def get_asteroid(self, asteroid_id: str) -> dict:
        return await self._get(f"/neo/rest/v1/neo/{asteroid_id}")

    async def get_epic_images(self, collection: str = "natural", date: Optional[str] = None) -> list:
        """EPIC image metadata: the latest set, or the set of one day."""
        if date:
            return await self._get(f"/EPIC/api/{collection}/date/{date}")
        return await self._get(f"/EPIC/api/{collection}/images")

    async def search_images(
        self,
        q: str,
        media_type: str = "image",
        year_start: Optional[int] = None,
        year_end: Optional[int] = None,
        page: int = 1,
    ) -> dict:
        """Search the Image and Video Library. No api key travels with this one."""
        label = "NASA Image API Error"
        response = await self._request(f"{self.images_base_url}/search", {
            "q": q,
            "media_type": media_type,
            "year_start": year_start,
            "year_end": year_end,
            "page": page,
        }, label)
        return self._decode(response, label)

    async def get_earth_imagery(
        self,
        lat: float,
        lon: float,
        date: Optional[str] = None,
        dim: Optional[float] = None,
    ) -> Tuple[bytes, str]:
        """Landsat imagery for a point. Returns the raw body and its content type."""
        params = {"lat": lat, "lon": lon, "date": date, "dim": dim, "api_key": self.api_key}
        response = await self._request(f"{self.base_url}/planetary/earth/imagery", params, "NASA API Error")
        return response.content, response.headers.get("content-type", "application/octet-stream")

    async def get_earth_assets(
        self,
        lat: float,
        lon: float,
        date: Optional[str] = None,
        dim: Optional[float] = None,
    ) -> dict:
        return await self._get("/planetary/earth/assets", {"lat": lat, "lon": lon, "date": date, "dim": dim})

@lru_cache()
def get_nasa_client() -> NASAClient:
    """Shared client instance. Replaced wholesale in tests."""
    return NASAClient(get_settings())

# === DATA MODELS ===

class Page(BaseModel):
    """One slice of a longer list."""
    items: List[Any]
    page: int
    per_page: int
    total: int
    total_pages: int

class DashboardErrors(BaseModel):
    apod: Optional[str] = None
    marsRoverData: Optional[str] = None
    neoData: Optional[str] = None

class DashboardData(BaseModel):
    """Best-effort bundle for the landing page. Missing parts explain themselves."""
    apod: Optional[Any] = None
    marsRoverData: Optional[Dict[str, Any]] = None
    neoData: Optional[Dict[str, Any]] = None
    errors: DashboardErrors

# === UTILITY FUNCTIONS ===
# Helper logic for dates, slices and summaries

DATE_FORMAT = "%Y-%m-%d"
NEO_MAX_WINDOW_DAYS = 7
EPIC_ARCHIVE_URL = "https://epic.gsfc.nasa.gov/archive"
MARS_FALLBACK_SOL = 4000
DASHBOARD_ROVER = "curiosity"
DASHBOARD_SOLS = (4000, 3500)
NEO_MAX_WINDOWS = 53  # about a year of weekly feed requests
ROVER_NAME = re.compile(r"^[A-Za-z]+$")

def utc_today() -> date:
    """Today, as the UTC calendar sees it."""
    return datetime.utcnow().date()

def parse_date(value: str, field: str) -> date:
    """Parse YYYY-MM-DD or refuse with a 400."""
    try:
        return datetime.strptime(value, DATE_FORMAT).date()
    except ValueError:
        raise HTTPException(
            status_code=400,
            detail=f"Invalid date format for {field}. Use YYYY-MM-DD."
        )

def normalize_date(value: Optional[str], field: str) -> Optional[str]:
    """Validate an optional date parameter and hand back its canonical form."""
    if not value:
        return None
    return parse_date(value, field).strftime(DATE_FORMAT)

def check_rover(rover: str) -> str:
    """Rover names end up in the upstream path, so only plain names pass."""
    if not ROVER_NAME.match(rover):
        raise HTTPException(status_code=400, detail=f"Invalid rover name: {rover}")
    return rover.lower()

def expect_dict(data: Any) -> dict:
    """Upstream answered, but not with the object it promised."""
    if not isinstance(data, dict):
        raise NASAAPIError("NASA API Error: Unexpected response format")
    return data

def split_date_range(start: date, end: date, max_days: int = NEO_MAX_WINDOW_DAYS) -> List[Tuple[date, date]]:
    """Cut [start, end] into consecutive inclusive windows of at most max_days.

    The NEO feed refuses ranges longer than seven days, so a month becomes
    five requests: four full weeks and a remainder.
    """
    if end < start:
        raise ValueError("end_date must not be before start_date")
    if max_days < 1:
        raise ValueError("max_days must be at least 1")

    windows = []
    current = start
    while current <= end:
        window_end = min(current + timedelta(days=max_days - 1), end)
        windows.append((current, window_end))
        current = window_end + timedelta(days=1)
    return windows

def paginate(items: List[Any], page: int = 1, per_page: int = 10) -> dict:
    """Slice a list into one page. Pages past the end are simply empty."""
    if page < 1 or per_page < 1:
        raise ValueError("page and per_page must be positive")

    total = len(items)
    start = (page - 1) * per_page
    return Page(
        items=items[start:start + per_page],
        page=page,
        per_page=per_page,
        total=total,
        total_pages=math.ceil(total / per_page),
    ).dict()

def merge_neo_feeds(feeds: List[dict]) -> dict:
    """Fold several feed windows into one feed."""
    near_earth_objects: Dict[str, list] = {}
    for feed in feeds:
        near_earth_objects.update(feed.get("near_earth_objects", {}))

    return {
        "element_count": sum(len(neos) for neos in near_earth_objects.values()),
        "near_earth_objects": near_earth_objects,
    }

def flatten_neo_feed(feed: dict) -> List[dict]:
    """All objects of a feed in date order."""
    near_earth_objects = feed.get("near_earth_objects", {})
    return [neo for day in sorted(near_earth_objects) for neo in near_earth_objects[day]]

def _miss_distance_km(approach: dict) -> float:
    try:
        return float(approach["miss_distance"]["kilometers"])
    except (KeyError, TypeError, ValueError):
        return math.inf

def summarize_neo_feed(feed: dict, limit: int = 8) -> dict:
    """Counts and closest passes, shaped for the dashboard charts."""
    near_earth_objects = feed.get("near_earth_objects", {})
    all_neos = flatten_neo_feed(feed)

    hazardous_count = sum(1 for neo in all_neos if neo.get("is_potentially_hazardous_asteroid", False))

    by_date = [
        {
            "date": day,
            "count": len(near_earth_objects[day]),
            "hazardous": sum(
                1 for neo in near_earth_objects[day]
                if neo.get("is_potentially_hazardous_asteroid", False)
            ),
        }
        for day in sorted(near_earth_objects)
    ]

    approaches = []
    for neo in all_neos:
        candidates = neo.get("close_approach_data", [])
        if not candidates:
            continue
        closest = min(candidates, key=_miss_distance_km)
        distance = _miss_distance_km(closest)
        if distance == math.inf:
            continue
        approaches.append({
            "id": neo.get("id"),
            "name": neo.get("name"),
            "date": closest.get("close_approach_date"),
            "miss_distance_km": distance,
            "is_hazardous": neo.get("is_potentially_hazardous_asteroid", False),
        })
    approaches.sort(key=lambda x: x["miss_distance_km"])

    return {
        "element_count": len(all_neos),
        "hazardous_count": hazardous_count,
        "non_hazardous_count": len(all_neos) - hazardous_count,
        "days_tracked": len(near_earth_objects),
        "by_date": by_date,
        "closest_approaches": approaches[:limit],
    }

def epic_image_url(record: dict, collection: str) -> Optional[str]:
    """Archive PNG for an EPIC record, per the EPIC API conventions."""
    image = record.get("image")
    taken = record.get("date")
    if not image or not taken:
        return None
    day = taken.split(" ")[0].replace("-", "/")
    return f"{EPIC_ARCHIVE_URL}/{collection}/{day}/png/{image}.png"

async def fetch_neo_range(client: NASAClient, start: date, end: date) -> dict:
    """Fetch an arbitrary range window by window, then merge."""
    try:
        windows = split_date_range(start, end)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if len(windows) > NEO_MAX_WINDOWS:
        raise HTTPException(
            status_code=400,
            detail=f"Date range too long: at most {NEO_MAX_WINDOWS * NEO_MAX_WINDOW_DAYS} days per request"
        )

    feeds = []
    for window_start, window_end in windows:
        feeds.append(await client.get_neo_feed(
            window_start.strftime(DATE_FORMAT),
            window_end.strftime(DATE_FORMAT),
        ))

    merged = merge_neo_feeds(feeds)
    logger.info(
        f"NEO feed retrieved: {merged['element_count']} objects for {start} to {end} "
        f"in {len(windows)} request(s)"
    )
    return merged

def ok(data: Any) -> dict:
    return {"success": True, "data": data}

def _error_payload(request: Request, message: str, status_code: int) -> dict:
    return {
        "error": {
            "message": message,
            "status": status_code,
            "timestamp": datetime.utcnow().isoformat(),
            "path": request.url.path,
            "method": request.method,
        }
    }

# === FASTAPI APPLICATION ===
# The relay opens its doors

APP_VERSION = "1.0.0"
_started_at = time.monotonic()

settings = get_settings()

app = FastAPI(
    title="Space Explorer API",
    description="Proxy for NASA open data: APOD, Mars Rover Photos, NEO, EPIC and image search",
    version=APP_VERSION,
    docs_url="/api/docs",
    redoc_url="/api/redoc"
)

# Rate limiting - one window per address, shared by every route
limiter = Limiter(
    key_func=get_remote_address,
    application_limits=[settings.rate_limit],
    strategy="moving-window",
)
app.state.limiter = limiter
app.add_middleware(SlowAPIMiddleware)

app.add_middleware(GZipMiddleware, minimum_size=1000)

# CORS - controlled openness
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "SAMEORIGIN",
    "Referrer-Policy": "no-referrer",
    "Cross-Origin-Resource-Policy": "cross-origin",
}

@app.middleware("http")
async def access_log(request: Request, call_next):
    """One line per request, plus the headers every response should carry."""
    started = time.perf_counter()
    response = await call_next(request)
    for header, value in SECURITY_HEADERS.items():
        response.headers.setdefault(header, value)
    elapsed_ms = (time.perf_counter() - started) * 1000
    client_host = request.client.host if request.client else "-"
    logger.info(
        f'{client_host} "{request.method} {request.url.path}" {response.status_code} {elapsed_ms:.1f}ms'
    )
    return response

# === ERROR HANDLERS ===

@app.exception_handler(RateLimitExceeded)
def ratelimit_handler(request: Request, exc: RateLimitExceeded):
    logger.warning(f"Rate limit exceeded for {get_remote_address(request)}")
    return JSONResponse(
        {"error": "Too many requests from this IP, please try again later."},
        status_code=429,
    )

@app.exception_handler(NASAAPIError)
async def nasa_error_handler(request: Request, exc: NASAAPIError):
    return JSONResponse({"success": False, "error": exc.message}, status_code=500)

@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    if exc.status_code == 404:
        return JSONResponse(
            _error_payload(request, f"Route {request.url.path} not found", 404),
            status_code=404,
        )
    return JSONResponse({"success": False, "error": exc.detail}, status_code=exc.status_code)

@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    problems = []
    for error in exc.errors():
        field = ".".join(str(part) for part in error.get("loc", ())[1:]) or "request"
        problems.append(f"{field}: {error.get('msg')}")
    return JSONResponse({"success": False, "error": "; ".join(problems)}, status_code=400)

@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(_error_payload(request, "Internal Server Error", 500), status_code=500)

# === LIFECYCLE EVENTS ===

@app.on_event("startup")
async def startup_event():
    logger.info(f"Space Explorer backend starting ({settings.environment})")
    if settings.nasa_api_key == "DEMO_KEY":
        logger.warning("NASA_API_KEY not set. Using DEMO_KEY, which is heavily rate limited upstream.")

@app.on_event("shutdown")
async def shutdown_event():
    logger.info("Space Explorer backend shutting down")

# === SERVICE ENDPOINTS ===

@app.get("/health", tags=["System"])
async def health_check():
    """Simple heartbeat."""
    return {
        "status": "OK",
        "timestamp": datetime.utcnow().isoformat(),
        "uptime": round(time.monotonic() - _started_at, 3),
        "environment": settings.environment,
    }

@app.get("/", tags=["System"])
async def root():
    return {
        "service": "Space Explorer Backend API",
        "version": APP_VERSION,
        "status": "operational",
        "documentation": "/api/docs",
        "health": "/health"
    }

# === APOD ===

@app.get("/api/nasa/apod", tags=["APOD"])
async def get_apod(
    date: Optional[str] = Query(None, description="Single day (YYYY-MM-DD)"),
    start_date: Optional[str] = Query(None, description="Range start (YYYY-MM-DD)"),
    end_date: Optional[str] = Query(None, description="Range end (YYYY-MM-DD)"),
    page: Optional[int] = Query(None, ge=1),
    per_page: Optional[int] = Query(None, ge=1, le=100),
    client: NASAClient = Depends(get_nasa_client)
):
    """Astronomy Picture of the Day.

    A range answers with a list; give per_page to receive it one page at a time.
    """
    data = await client.get_apod(
        normalize_date(date, "date"),
        normalize_date(start_date, "start_date"),
        normalize_date(end_date, "end_date"),
    )
    if isinstance(data, list) and per_page:
        data = paginate(data, page or 1, per_page)
    return ok(data)

# === MARS ROVER ===

@app.get("/api/nasa/mars-rover", tags=["Mars Rover"])
async def get_mars_rover_photos(
    rover: str = Query("curiosity"),
    sol: Optional[int] = Query(None, ge=0),
    earth_date: Optional[str] = Query(None, description="YYYY-MM-DD"),
    camera: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    client: NASAClient = Depends(get_nasa_client)
):
    """Rover photos by sol or earth date.

    With neither given, look for today's photos, then yesterday's. Should the
    date queries fail outright, settle for a well-populated sol.
    """
    rover = check_rover(rover)
    earth_date = normalize_date(earth_date, "earth_date")
    if sol is not None or earth_date:
        data = await client.get_mars_rover_photos(rover, sol, earth_date, camera, page)
        return ok(data)

    today = utc_today()
    yesterday = today - timedelta(days=1)
    try:
        data = expect_dict(await client.get_mars_rover_photos(
            rover, earth_date=today.strftime(DATE_FORMAT), camera=camera, page=page
        ))
        if not data.get("photos"):
            logger.info(f"No {rover} photos for {today}, trying {yesterday}")
            data = await client.get_mars_rover_photos(
                rover, earth_date=yesterday.strftime(DATE_FORMAT), camera=camera, page=page
            )
    except NASAAPIError as e:
        logger.warning(f"Date-based rover query failed ({e.message}), falling back to sol {MARS_FALLBACK_SOL}")
        data = await client.get_mars_rover_photos(rover, sol=MARS_FALLBACK_SOL, camera=camera, page=page)

    return ok(data)

@app.get("/api/nasa/mars-rovers", tags=["Mars Rover"])
async def get_mars_rovers(client: NASAClient = Depends(get_nasa_client)):
    return ok(await client.get_mars_rovers())

@app.get("/api/nasa/mars-rover-manifest/{rover}", tags=["Mars Rover"])
async def get_mars_rover_manifest(rover: str, client: NASAClient = Depends(get_nasa_client)):
    """Mission manifest: sols, dates and photo counts."""
    return ok(await client.get_mars_rover_manifest(check_rover(rover)))

# === NEAR-EARTH OBJECTS ===

@app.get("/api/nasa/neo", tags=["Near-Earth Objects"])
async def get_neo_feed(
    start_date: Optional[str] = Query(None, description="Start date (YYYY-MM-DD)"),
    end_date: Optional[str] = Query(None, description="End date (YYYY-MM-DD)"),
    page: Optional[int] = Query(None, ge=1),
    per_page: Optional[int] = Query(None, ge=1, le=100),
    client: NASAClient = Depends(get_nasa_client)
):
    """NEO feed for any date range.

    The upstream feed stops at seven days; longer ranges are fetched in
    seven-day windows and merged by date. With per_page, a flat date-ordered
    page of objects is added under "rows".
    """
    if not start_date or not end_date:
        raise HTTPException(status_code=400, detail="start_date and end_date are required")

    start = parse_date(start_date, "start_date")
    end = parse_date(end_date, "end_date")
    feed = await fetch_neo_range(client, start, end)
    if per_page:
        feed["rows"] = paginate(flatten_neo_feed(feed), page or 1, per_page)
    return ok(feed)

@app.get("/api/nasa/neo/summary", tags=["Near-Earth Objects"])
async def get_neo_summary(
    start_date: Optional[str] = Query(None, description="Start date (YYYY-MM-DD), defaults to today"),
    end_date: Optional[str] = Query(None, description="End date (YYYY-MM-DD), defaults to start date"),
    limit: int = Query(8, ge=1, le=50, description="How many closest approaches to list"),
    client: NASAClient = Depends(get_nasa_client)
):
    """Hazard counts and closest approaches for a date range.

    start_date defaults to today and end_date to start_date, so a bare call
    summarizes today alone.
    """
    start = parse_date(start_date, "start_date") if start_date else utc_today()
    end = parse_date(end_date, "end_date") if end_date else start

    feed = await fetch_neo_range(client, start, end)
    summary = summarize_neo_feed(feed, limit)
    summary["start_date"] = start.strftime(DATE_FORMAT)
    summary["end_date"] = end.strftime(DATE_FORMAT)
    return ok(summary)

@app.get("/api/nasa/asteroid/{asteroid_id}", tags=["Near-Earth Objects"])
async def get_asteroid(asteroid_id: str, client: NASAClient = Depends(get_nasa_client)):
    return ok(await client.get_asteroid(asteroid_id))

# === EPIC ===

@app.get("/api/nasa/epic", tags=["EPIC"])
async def get_epic_images(
    date: Optional[str] = Query(None, description="YYYY-MM-DD, defaults to the latest set"),
    image_type: str = Query("natural", alias="type", description="natural or enhanced"),
    page: Optional[int] = Query(None, ge=1),
    per_page: Optional[int] = Query(None, ge=1, le=100),
    client: NASAClient = Depends(get_nasa_client)
):
    """Full-disk Earth imagery, each record carrying its archive image URL."""
    collection = "enhanced" if image_type == "enhanced" else "natural"
    records = await client.get_epic_images(collection, normalize_date(date, "date"))
    if records and not isinstance(records, list):
        raise NASAAPIError("NASA API Error: Unexpected response format")

    images = []
    for record in records or []:
        if not isinstance(record, dict):
            continue
        enriched = dict(record)
        enriched["image_url"] = epic_image_url(record, collection)
        images.append(enriched)

    if per_page:
        return ok(paginate(images, page or 1, per_page))
    return ok(images)

# === IMAGE LIBRARY ===

@app.get("/api/nasa/search", tags=["Image Library"])
async def search_images(
    q: Optional[str] = Query(None, description="Free text search terms"),
    media_type: str = Query("image"),
    year_start: Optional[int] = Query(None),
    year_end: Optional[int] = Query(None),
    page: int = Query(1, ge=1),
    client: NASAClient = Depends(get_nasa_client)
):
    if not q:
        raise HTTPException(status_code=400, detail='Query parameter "q" is required')

    return ok(await client.search_images(q, media_type, year_start, year_end, page))

# === DASHBOARD ===

async def _dashboard_apod(client: NASAClient, today: date) -> Tuple[Optional[Any], Optional[str]]:
    """Today's picture, or yesterday's when today's is not published yet."""
    try:
        return await client.get_apod(today.strftime(DATE_FORMAT)), None
    except NASAAPIError as first:
        yesterday = today - timedelta(days=1)
        logger.warning(f"APOD for {today} unavailable ({first.message}), trying {yesterday}")
        try:
            return await client.get_apod(yesterday.strftime(DATE_FORMAT)), None
        except NASAAPIError as second:
            return None, second.message

async def _dashboard_neo(client: NASAClient, today: date) -> Tuple[Optional[dict], Optional[str]]:
    day = today.strftime(DATE_FORMAT)
    try:
        return expect_dict(await client.get_neo_feed(day, day)), None
    except NASAAPIError as e:
        return None, e.message

async def _dashboard_mars(client: NASAClient) -> Tuple[Optional[dict], Optional[str]]:
    """Walk the fallback sols until one has photos."""
    try:
        data = None
        for sol in DASHBOARD_SOLS:
            data = expect_dict(await client.get_mars_rover_photos(DASHBOARD_ROVER, sol=sol, page=1))
            if data.get("photos"):
                break
            logger.info(f"No {DASHBOARD_ROVER} photos on sol {sol}")
        return data, None
    except NASAAPIError as e:
        return None, e.message

@app.get("/api/nasa/dashboard", tags=["Dashboard"])
async def get_dashboard(client: NASAClient = Depends(get_nasa_client)):
    """Everything the landing page shows, each part best-effort."""
    today = utc_today()

    (apod, apod_error), (neo_data, neo_error), (mars_data, mars_error) = await asyncio.gather(
        _dashboard_apod(client, today),
        _dashboard_neo(client, today),
        _dashboard_mars(client),
    )

    dashboard = DashboardData(
        apod=apod,
        marsRoverData=mars_data,
        neoData=neo_data,
        errors=DashboardErrors(apod=apod_error, marsRoverData=mars_error, neoData=neo_error),
    )
    return ok(dashboard.dict())

# === EARTH ===

def _require_coordinates(lat: Optional[float], lon: Optional[float]) -> None:
    if lat is None or lon is None:
        raise HTTPException(status_code=400, detail="lat and lon are required")

@app.get("/api/nasa/earth/imagery", tags=["Earth"])
async def get_earth_imagery(
    lat: Optional[float] = Query(None, ge=-90, le=90),
    lon: Optional[float] = Query(None, ge=-180, le=180),
    date: Optional[str] = Query(None),
    dim: Optional[float] = Query(None, gt=0),
    client: NASAClient = Depends(get_nasa_client)
):
    """Landsat imagery. Pictures pass straight through; JSON gets the envelope."""
    _require_coordinates(lat, lon)

    content, content_type = await client.get_earth_imagery(lat, lon, normalize_date(date, "date"), dim)
    if "application/json" in content_type:
        try:
            return ok(json.loads(content))
        except ValueError as e:
            raise NASAAPIError("NASA API Error: Invalid JSON response") from e
    return Response(content=content, media_type=content_type)

@app.get("/api/nasa/earth/assets", tags=["Earth"])
async def get_earth_assets(
    lat: Optional[float] = Query(None, ge=-90, le=90),
    lon: Optional[float] = Query(None, ge=-180, le=180),
    date: Optional[str] = Query(None),
    dim: Optional[float] = Query(None, gt=0),
    client: NASAClient = Depends(get_nasa_client)
):
    _require_coordinates(lat, lon)
    return ok(await client.get_earth_assets(lat, lon, normalize_date(date, "date"), dim))

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())
