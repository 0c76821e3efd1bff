import logging
import uuid

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from ...crud import create_api_token, deactivate_api_token, get_membership, list_api_tokens
from ...database import get_db
from ...dependencies import Principal, require_scope
from ...errors import ForbiddenError, NotFoundError
from ...models import ApiToken
from ...schemas import ApiTokenCreate, ApiTokenCreated, ApiTokenResponse, DataResponse
from ...security import generate_api_token, hash_token
from ...services.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/tokens", tags=["tokens"], dependencies=[Depends(RateLimiter(scope="api"))])


@router.post("", response_model=DataResponse[ApiTokenCreated], status_code=status.HTTP_201_CREATED)
async def issue_token(
    token_in: ApiTokenCreate,
    principal: Principal = Depends(require_scope("admin")),
    db: AsyncSession = Depends(get_db),
):
    if token_in.organization_id and not await get_membership(db, token_in.organization_id, principal.user.id):
        raise ForbiddenError("Not a member of this organization")

    # The plaintext is only ever returned here; only its digest is stored
    plaintext = generate_api_token()
    api_token = await create_api_token(
        db,
        ApiToken(
            user_id=principal.user.id,
            organization_id=token_in.organization_id,
            name=token_in.name,
            token_hash=hash_token(plaintext),
            scopes=list(token_in.scopes),
            expires_at=token_in.expires_at,
        ),
    )
    logger.info(f"Issued API token {api_token.id} for user {principal.user.id}")

    created = ApiTokenCreated(token=plaintext, **ApiTokenResponse.model_validate(api_token).model_dump())
    return DataResponse(data=created)


@router.get("", response_model=DataResponse[list[ApiTokenResponse]])
async def get_tokens(
    principal: Principal = Depends(require_scope("read")),
    db: AsyncSession = Depends(get_db),
):
    tokens = await list_api_tokens(db, principal.user.id)
    return DataResponse(data=[ApiTokenResponse.model_validate(t) for t in tokens])


@router.delete("/{token_id}", response_model=DataResponse[dict])
async def revoke_token(
    token_id: uuid.UUID,
    principal: Principal = Depends(require_scope("admin")),
    db: AsyncSession = Depends(get_db),
):
    if not await deactivate_api_token(db, token_id, principal.user.id):
        raise NotFoundError("Token not found")

    logger.info(f"Revoked API token {token_id}")
    return DataResponse(data={"id": str(token_id), "revoked": True})
