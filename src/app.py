import os
import sys
import time
import traceback
import uuid
import jwt
import getpass
import asyncio
from cryptography.fernet import InvalidToken
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from loguru import logger
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from core.batch import TransferBatch
from core.config import setting
from core.errors import BatchValidationError, DistributionError
from core.utils import decrypt_private_key, get_distributor, resolve_approve_amount
from schema import (
    BalanceEntry,
    BalancesRequest,
    BalancesResponse,
    DistributionRequest,
    DistributionResponse,
)

# Only one distribution at a time, so transactions from the signer never
# compete for the same nonce.
request_semaphore = asyncio.Semaphore(1)

async def get_semaphore():
    async with request_semaphore:
        yield

# Rate limiter setup
limiter = Limiter(key_func=get_remote_address)

# Initialize FastAPI app
app = FastAPI(
    title="Reward Distribution API",
    description="Secure microservice for bulk reward token distribution",
    version="1.0.0"
)

# Add rate limiter
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# Security bearer token scheme
security = HTTPBearer()

# JWT validation function
def verify_jwt_token(credentials: HTTPAuthorizationCredentials = Depends(security)):
    try:
        token = credentials.credentials

        # Decode and verify the JWT
        payload = jwt.decode(
            token,
            setting.JWT_SECRET_KEY,
            algorithms=[setting.JWT_ALGORITHM],
            options={"verify_signature": True, "verify_exp": True}
        )

        # Verify token has not been used before (nonce check)
        if "jti" in payload:
            jti = payload["jti"]

            if jti in getattr(app.state, "used_tokens", set()):
                logger.warning(f"Token reuse detected: {jti}")
                raise HTTPException(status_code=401, detail="Token has been used before")

            # Mark this token as used
            if not hasattr(app.state, "used_tokens"):
                app.state.used_tokens = set()
            app.state.used_tokens.add(jti)

            if len(app.state.used_tokens) > setting.MAX_USED_TOKENS:
                logger.info("Resetting used_tokens set to prevent memory overflow")
                app.state.used_tokens.clear()

        return payload
    except HTTPException:
        raise
    except jwt.ExpiredSignatureError:
        logger.warning("Token expired")
        raise HTTPException(
            status_code=401,
            detail="Token has expired"
        )
    except jwt.InvalidTokenError as e:
        logger.error(f"Invalid token: {str(e)}")
        raise HTTPException(
            status_code=401,
            detail=f"Invalid token: {str(e)}"
        )
    except Exception as e:
        logger.error(f"Authentication error: {str(e)}")
        raise HTTPException(
            status_code=401,
            detail="Authentication failed"
        )


# Middleware for request validation and logging
@app.middleware("http")
async def validate_request(request: Request, call_next):
    start_time = time.time()
    request_id = str(uuid.uuid4())
    request.state.request_id = request_id

    client_host = request.client.host if request.client else "unknown"
    logger.info(f"Request {request_id}: {request.method} {request.url.path} from {client_host}")

    try:
        response = await call_next(request)

        process_time = time.time() - start_time
        logger.info(
            f"Response {request_id}: Status {response.status_code}, "
            f"Completed in {process_time:.3f}s"
        )

        # Add request ID to response headers for tracing
        response.headers["X-Request-ID"] = request_id

        return response
    except Exception as e:
        process_time = time.time() - start_time
        logger.error(
            f"Error {request_id}: {str(e)}, "
            f"Occurred after {process_time:.3f}s"
        )
        raise


def error_response(transaction_id: str, message: str) -> DistributionResponse:
    return DistributionResponse(
        transaction_id=transaction_id,
        status="error",
        message=message
    )


# API endpoints
@app.post("/api/v1/distributions", response_model=DistributionResponse)
@limiter.limit("60/minute")  # Rate limiting
async def process_distribution(
    distribution: DistributionRequest,
    payload: dict = Depends(verify_jwt_token),
    request: Request = None,
    dependencies = Depends(get_semaphore)
):
    """Distribute rewards to a batch of receivers through the bulk sender"""
    request_id = getattr(request.state, "request_id", str(uuid.uuid4()))
    logger.info(
        f"Processing distribution: {request_id}, Transaction ID: {distribution.transaction_id}, "
        f"{len(distribution.receivers)} receivers"
    )

    try:
        distributor = await get_distributor()
    except Exception as exc:
        logger.error(f"Failed to initialize distributor: {exc}")
        setting.chain = None
        return error_response(distribution.transaction_id, "Distributor unavailable")

    try:
        batch = TransferBatch(
            distribution.receivers, distribution.amounts, max_size=setting.max_batch_size
        )
        approve_amount = await resolve_approve_amount(distributor, setting.approve_amount)
        report = await distributor.run(batch, approve_amount)
    except BatchValidationError as exc:
        logger.error(f"Invalid batch {distribution.transaction_id}: {exc}")
        return error_response(distribution.transaction_id, f"Invalid batch: {exc}")
    except DistributionError as exc:
        logger.error(f"Distribution {distribution.transaction_id} could not start: {exc}")
        return error_response(distribution.transaction_id, f"Distribution failed: {exc}")
    except Exception as exc:
        logger.error(
            f"Unhandled exception performing distribution: {exc}\n{traceback.format_exc()}"
        )
        setting.chain = None
        return error_response(distribution.transaction_id, "Unhandled exception")

    if report.success:
        message = "Distribution processed successfully"
    else:
        failed = report.distribute if report.failed_step == "distribute" else report.approve
        message = f"{report.failed_step} failed: {failed.message}"

    return DistributionResponse(
        transaction_id=distribution.transaction_id,
        status="success" if report.success else "error",
        message=message,
        approve_tx=report.approve.tx_hash,
        distribute_tx=report.distribute.tx_hash,
        balances=[
            BalanceEntry(address=r.address, balance=r.balance, error=r.error)
            for r in report.balances_after
        ],
    )


@app.post("/api/v1/balances", response_model=BalancesResponse)
@limiter.limit("60/minute")
async def read_balances(
    body: BalancesRequest,
    payload: dict = Depends(verify_jwt_token),
    request: Request = None,
):
    """Read reward token balances for a list of addresses"""
    try:
        distributor = await get_distributor()
    except Exception as exc:
        logger.error(f"Failed to initialize distributor: {exc}")
        setting.chain = None
        raise HTTPException(status_code=503, detail="Distributor unavailable")

    readings = await distributor.inspect_balances(body.addresses)
    return BalancesResponse(
        balances=[
            BalanceEntry(address=r.address, balance=r.balance, error=r.error)
            for r in readings
        ]
    )

if __name__ == "__main__":
    if not setting.private_key:
        if not setting.cipher_text:
            logger.error("Set PRIVATE_KEY or CIPHER_TEXT before starting the service")
            sys.exit(1)

        password = getpass.getpass(prompt='Please enter your password: ')

        try:
            setting.decrypted_private_key = decrypt_private_key(setting.cipher_text, password)
            logger.info("Password is correct. Successfully decrypted the cipher text")
        except InvalidToken:
            logger.error("Failed to decrypt cipher text: wrong password or corrupted cipher text")
            sys.exit(1)

    # Launch the FastAPI app
    import uvicorn
    port = int(os.environ.get("PORT", 8000))
    uvicorn.run("app:app", host="0.0.0.0", port=port, reload=False)
