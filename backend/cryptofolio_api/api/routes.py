from datetime import timedelta

from fastapi import APIRouter, HTTPException, Depends, Request, status
from fastapi.security import OAuth2PasswordRequestForm
from jose import JWTError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import IntegrityError

from cryptofolio_api.services.auth import (
    authenticate_user,
    create_access_token,
    decode_access_token,
    get_current_user,
    get_password_hash,
    get_user_by_username,
    verify_password,
)
from cryptofolio_api.schemas.portfolio import (
    HoldingMutationResponse,
    HoldingOut,
    HoldingRequest,
    PortfolioResponse,
    PortfolioSummary,
    UpdateHoldingRequest,
)
from cryptofolio_api.schemas.user import (
    PasswordChange,
    Token,
    TokenVerifyRequest,
    TokenVerifyResponse,
    UserCreate,
    UserLogin,
)
from cryptofolio_api.services.exceptions import StoreUnavailable
from cryptofolio_api.services.portfolio_service import PortfolioService
from cryptofolio_api.models.user import User
from cryptofolio_api.db.database import get_db
from cryptofolio_shared.config import settings
from cryptofolio_shared.logging_config import get_logger

logger = get_logger("routes")

router = APIRouter()


def get_portfolio_service(request: Request) -> PortfolioService:
    return request.app.state.portfolio_service


def _issue_token(user: User) -> Token:
    access_token_expires = timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    access_token = create_access_token(
        data={"sub": user.username, "uid": user.id}, expires_delta=access_token_expires
    )
    return Token(
        access_token=access_token,
        token_type="bearer",
        user_id=user.id,
        username=user.username,
    )


def _mutation_response(symbol: str, holding, message: str) -> HoldingMutationResponse:
    return HoldingMutationResponse(
        symbol=symbol,
        holding=HoldingOut.model_validate(holding) if holding is not None else None,
        message=message,
    )


@router.post("/api/auth/register", response_model=Token, status_code=201)
async def register(
    user: UserCreate,
    db: AsyncSession = Depends(get_db),
    portfolio_service: PortfolioService = Depends(get_portfolio_service),
) -> Token:
    db_user = User(
        username=user.username,
        hashed_password=get_password_hash(user.password),
    )
    db.add(db_user)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        logger.warning(f"Registration rejected, username taken: {user.username}")
        raise HTTPException(status_code=400, detail="Username already registered.")

    logger.info(f"Registered user {db_user.username}")
    try:
        await portfolio_service.get_or_create_portfolio(db_user.id)
    except StoreUnavailable as e:
        # The portfolio is created lazily on first access anyway.
        logger.error(f"Default portfolio not created for {db_user.username}: {e.detail}")
    return _issue_token(db_user)


@router.post("/api/auth/login", response_model=Token)
async def login(credentials: UserLogin, db: AsyncSession = Depends(get_db)) -> Token:
    user = await authenticate_user(db, credentials.username, credentials.password)
    if not user:
        logger.warning(f"Failed login for {credentials.username}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect username or password",
        )
    return _issue_token(user)


@router.post("/token", response_model=Token)
async def login_for_access_token(
    form_data: OAuth2PasswordRequestForm = Depends(), db: AsyncSession = Depends(get_db)
) -> Token:
    user = await authenticate_user(db, form_data.username, form_data.password)
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect username or password",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return _issue_token(user)


@router.post("/api/auth/verify", response_model=TokenVerifyResponse)
async def verify_token(
    body: TokenVerifyRequest, db: AsyncSession = Depends(get_db)
) -> TokenVerifyResponse:
    try:
        token_data = decode_access_token(body.token)
    except JWTError:
        return TokenVerifyResponse(valid=False)
    user = await get_user_by_username(db, token_data.username)
    if user is None:
        return TokenVerifyResponse(valid=False)
    return TokenVerifyResponse(valid=True, user_id=user.id, username=user.username)


@router.post("/api/auth/change-password")
async def change_password(
    body: PasswordChange,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> dict:
    if not verify_password(body.current_password, current_user.hashed_password):
        raise HTTPException(status_code=400, detail="Current password is incorrect")
    current_user.hashed_password = get_password_hash(body.new_password)
    await db.commit()
    logger.info(f"Password changed for {current_user.username}")
    return {"message": "Password changed"}


@router.get("/api/portfolio", response_model=PortfolioResponse)
async def get_portfolio(
    current_user: User = Depends(get_current_user),
    portfolio_service: PortfolioService = Depends(get_portfolio_service),
) -> PortfolioResponse:
    return await portfolio_service.get_portfolio(current_user.id)


@router.get("/api/portfolio/summary", response_model=PortfolioSummary)
async def get_portfolio_summary(
    currency: str = settings.DEFAULT_CURRENCY,
    current_user: User = Depends(get_current_user),
    portfolio_service: PortfolioService = Depends(get_portfolio_service),
) -> PortfolioSummary:
    return await portfolio_service.get_portfolio_summary(current_user.id, currency)


@router.post("/api/portfolio", response_model=HoldingMutationResponse)
async def update_holding(
    body: UpdateHoldingRequest,
    current_user: User = Depends(get_current_user),
    portfolio_service: PortfolioService = Depends(get_portfolio_service),
) -> HoldingMutationResponse:
    holding = await portfolio_service.update_holding(current_user.id, body.symbol, body.amount)
    message = "Holding updated" if holding is not None else "Holding deleted"
    return _mutation_response(body.symbol, holding, message)


@router.post("/api/portfolio/add", response_model=HoldingMutationResponse)
async def add_holding(
    body: HoldingRequest,
    current_user: User = Depends(get_current_user),
    portfolio_service: PortfolioService = Depends(get_portfolio_service),
) -> HoldingMutationResponse:
    holding = await portfolio_service.add_holding(current_user.id, body.symbol, body.amount)
    return _mutation_response(body.symbol, holding, "Holding added")


@router.post("/api/portfolio/remove", response_model=HoldingMutationResponse)
async def remove_holding(
    body: HoldingRequest,
    current_user: User = Depends(get_current_user),
    portfolio_service: PortfolioService = Depends(get_portfolio_service),
) -> HoldingMutationResponse:
    holding = await portfolio_service.remove_holding(current_user.id, body.symbol, body.amount)
    message = "Holding removed" if holding is None else "Holding reduced"
    return _mutation_response(body.symbol, holding, message)


@router.delete("/api/portfolio/{symbol}", response_model=HoldingMutationResponse)
async def delete_holding(
    symbol: str,
    current_user: User = Depends(get_current_user),
    portfolio_service: PortfolioService = Depends(get_portfolio_service),
) -> HoldingMutationResponse:
    deleted = await portfolio_service.delete_holding(current_user.id, symbol)
    message = "Holding deleted" if deleted else "No holding to delete"
    return _mutation_response(symbol.strip().upper(), None, message)
