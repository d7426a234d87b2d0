"""Public plaza: prompt presets (/prompts) and story settings (/stories).

Both kinds expose the same routes, so the routers are built from one factory.
Listings and detail are public; a valid token adds ``isLiked``.

No ``from __future__ import annotations`` here: the route signatures use the
factory's local body models, which FastAPI must see as real classes.
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from aistory.api.schemas import PromptCreate, PromptUpdate, StoryCreate, StoryUpdate
from aistory.auth import Identity, optional_identity, require_auth, require_bound
from aistory.db.engine import get_session
from aistory.services.submissions import PromptService, StoryService, SubmissionService
from config.settings import settings


def _split_tags(tags: Optional[str]) -> Optional[list[str]]:
    if not tags:
        return None
    return [t.strip() for t in tags.split(",") if t.strip()] or None


def _build_router(
    path: str,
    service_cls: type[SubmissionService],
    create_model: type[BaseModel],
    update_model: type[BaseModel],
    with_genre: bool = False,
) -> APIRouter:
    router = APIRouter(prefix=f"{settings.API_PREFIX}/{path}", tags=["plaza", path])

    @router.get("")
    async def list_items(
        page: int = Query(1, ge=1),
        limit: int = Query(20, ge=1),
        sort: str = Query("newest", pattern="^(newest|popular|downloads)$"),
        search: Optional[str] = Query(None, max_length=100),
        tags: Optional[str] = Query(None, max_length=200, description="Comma-separated"),
        genre: Optional[str] = Query(None, max_length=50),
        identity: Optional[Identity] = Depends(optional_identity),
        session: AsyncSession = Depends(get_session),
    ):
        filters = {"genre": genre} if with_genre else {}
        return await service_cls(session).list_public(
            page=page,
            limit=limit,
            sort=sort,
            search=search,
            tags=_split_tags(tags),
            viewer_sub=identity.sub if identity else None,
            **filters,
        )

    # Registered before /{uuid} so "mine" is not read as an id
    @router.get("/mine")
    async def list_mine(identity: Identity = Depends(require_auth), session: AsyncSession = Depends(get_session)):
        return await service_cls(session).list_mine(identity.sub)

    @router.get("/{uuid}")
    async def get_item(
        uuid: str,
        identity: Optional[Identity] = Depends(optional_identity),
        session: AsyncSession = Depends(get_session),
    ):
        return await service_cls(session).get_detail(uuid, identity.sub if identity else None)

    @router.post("", status_code=201)
    async def create_item(
        body: create_model,
        identity: Identity = Depends(require_bound),
        session: AsyncSession = Depends(get_session),
    ):
        return await service_cls(session).create(identity.sub, body.model_dump(by_alias=True))

    @router.put("/{uuid}")
    async def update_item(
        uuid: str,
        body: update_model,
        identity: Identity = Depends(require_bound),
        session: AsyncSession = Depends(get_session),
    ):
        data = body.model_dump(by_alias=True, exclude_unset=True)
        return await service_cls(session).update(uuid, identity.sub, data)

    @router.delete("/{uuid}")
    async def delete_item(
        uuid: str,
        identity: Identity = Depends(require_bound),
        session: AsyncSession = Depends(get_session),
    ):
        return await service_cls(session).remove(uuid, identity.sub)

    @router.post("/{uuid}/like")
    async def like_item(
        uuid: str,
        identity: Identity = Depends(require_auth),
        session: AsyncSession = Depends(get_session),
    ):
        return await service_cls(session).like(uuid, identity.sub)

    @router.post("/{uuid}/download")
    async def download_item(
        uuid: str,
        identity: Identity = Depends(require_auth),
        session: AsyncSession = Depends(get_session),
    ):
        return await service_cls(session).download(uuid, identity.sub)

    return router


prompts_router = _build_router("prompts", PromptService, PromptCreate, PromptUpdate)
stories_router = _build_router("stories", StoryService, StoryCreate, StoryUpdate, with_genre=True)
