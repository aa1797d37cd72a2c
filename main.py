from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from database import get_supabase_client, MAX_CONCURRENT_LOOKUPS
from errors import AccessDeniedError, InvalidStateError, NegotiationError, NotFoundError
from models import Actor, Role
from mutations import review_quote_times, submit_revised_times
from negotiation import Clock, utc_now
from role_queries import (
    PartnerInReview,
    PartnerPendingTimeRevisions,
    RevisionDetailsQuery,
    SpecialistPendingReview,
    SpecialistPendingTimeApproval,
)
from schemas import TimeReviewRequest, UpdateTimesRequest
from store import RecordStore, SupabaseRecordStore
from typing import Optional
import logging
import os
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

# Initialize FastAPI app
app = FastAPI(title="Quote Negotiation API", version="1.0.0")

# Enable CORS (so frontend can talk to backend)
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

_STATUS_CODES = {
    NotFoundError: 404,
    AccessDeniedError: 403,
    InvalidStateError: 400,
}


@app.exception_handler(NegotiationError)
async def negotiation_error_handler(request: Request, exc: NegotiationError):
    status_code = _STATUS_CODES.get(type(exc), 500)
    if status_code == 500:
        logger.error("%s %s failed: %s %s", request.method, request.url.path, exc.error_code, exc.details)
        error = "Internal server error"
    else:
        error = exc.message
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": error, "code": exc.error_code},
    )


# ==================== DEPENDENCIES ====================

def get_store() -> RecordStore:
    """Record store for the request; overridden in tests"""
    return SupabaseRecordStore(get_supabase_client())


def get_clock() -> Clock:
    return utc_now


def get_actor(
    x_user_id: str = Header(..., description="Authenticated user id, set by the auth layer"),
    x_user_role: Role = Header(..., description="Authenticated user role, set by the auth layer"),
) -> Actor:
    return Actor(user_id=x_user_id, role=x_user_role)


def _internal_error(operation: str, e: Exception) -> HTTPException:
    logger.exception("ERROR in %s: %s", operation, e)
    return HTTPException(status_code=500, detail="Internal server error")


@app.get("/")
async def root():
    """Health check endpoint"""
    return {"message": "Quote Negotiation API is running", "version": "1.0.0"}

# ==================== PARTNER ENDPOINTS ====================

@app.get("/partner/quotes/pending-time-revisions")
async def get_pending_time_revisions(
    partner_id: Optional[str] = None,
    actor: Actor = Depends(get_actor),
    store: RecordStore = Depends(get_store),
    clock: Clock = Depends(get_clock),
):
    """
    Quotes where a specialist asked the partner to revise estimated days
    """
    try:
        service = PartnerPendingTimeRevisions(store, clock, MAX_CONCURRENT_LOOKUPS)
        result = await service.run(actor, partner_id)
        return {"success": True, "data": result.items}
    except NegotiationError:
        raise
    except Exception as e:
        raise _internal_error("get_pending_time_revisions", e)

@app.get("/partner/quotes/in-review")
async def get_quotes_in_review(
    partner_id: Optional[str] = None,
    actor: Actor = Depends(get_actor),
    store: RecordStore = Depends(get_store),
    clock: Clock = Depends(get_clock),
):
    """
    Partner quotes waiting on admin or specialist, with waiting time
    """
    try:
        service = PartnerInReview(store, clock, MAX_CONCURRENT_LOOKUPS)
        result = await service.run(actor, partner_id)
        return {"success": True, "data": result.items}
    except NegotiationError:
        raise
    except Exception as e:
        raise _internal_error("get_quotes_in_review", e)

@app.get("/partner/quotes/{quote_id}/revision-details")
async def get_revision_details(
    quote_id: str,
    actor: Actor = Depends(get_actor),
    store: RecordStore = Depends(get_store),
):
    """
    The latest revision request of a quote, merged into its items
    """
    try:
        details = await RevisionDetailsQuery(store).get(actor, quote_id)
        return {"success": True, "data": details}
    except NegotiationError:
        raise
    except Exception as e:
        raise _internal_error("get_revision_details", e)

@app.put("/partner/quotes/{quote_id}/update-times")
def update_quote_times(
    quote_id: str,
    request: UpdateTimesRequest,
    actor: Actor = Depends(get_actor),
    store: RecordStore = Depends(get_store),
    clock: Clock = Depends(get_clock),
):
    """
    Partner submits revised estimated days and sends the quote back to review
    """
    try:
        event = submit_revised_times(store, actor, quote_id, request, clock)
        return {"success": True, "data": event}
    except NegotiationError:
        raise
    except Exception as e:
        raise _internal_error("update_quote_times", e)

# ==================== SPECIALIST ENDPOINTS ====================

@app.get("/specialist/quotes/pending-review")
async def get_pending_review(
    specialist_id: Optional[str] = None,
    actor: Actor = Depends(get_actor),
    store: RecordStore = Depends(get_store),
    clock: Clock = Depends(get_clock),
):
    """
    Quotes the partner updated that wait for the specialist to review again
    """
    try:
        service = SpecialistPendingReview(store, clock, MAX_CONCURRENT_LOOKUPS)
        result = await service.run(actor, specialist_id)
        return {"success": True, "data": result.items}
    except NegotiationError:
        raise
    except Exception as e:
        raise _internal_error("get_pending_review", e)

@app.get("/specialist/quotes/pending-time-approval")
async def get_pending_time_approval(
    specialist_id: Optional[str] = None,
    actor: Actor = Depends(get_actor),
    store: RecordStore = Depends(get_store),
    clock: Clock = Depends(get_clock),
):
    """
    Approved quotes of assigned clients whose estimated days wait for a first review
    """
    try:
        service = SpecialistPendingTimeApproval(store, clock, MAX_CONCURRENT_LOOKUPS)
        result = await service.run(actor, specialist_id)
        return {"success": True, "data": result.items}
    except NegotiationError:
        raise
    except Exception as e:
        raise _internal_error("get_pending_time_approval", e)

@app.post("/specialist/quotes/{quote_id}/review-times")
def review_times(
    quote_id: str,
    request: TimeReviewRequest,
    actor: Actor = Depends(get_actor),
    store: RecordStore = Depends(get_store),
    clock: Clock = Depends(get_clock),
):
    """
    Specialist approves estimated days or requests a revision per item
    """
    try:
        event = review_quote_times(store, actor, quote_id, request, clock)
        return {"success": True, "data": event}
    except NegotiationError:
        raise
    except Exception as e:
        raise _internal_error("review_times", e)

# ==================== RUN THE APP ====================

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
