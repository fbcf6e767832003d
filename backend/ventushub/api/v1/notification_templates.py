"""Operator endpoints for notification templates."""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ventushub.api.v1.deps import CurrentUser, require_operator
from ventushub.db.session import get_db
from ventushub.schemas.templates import (
    TemplateCreate,
    TemplatePreviewRequest,
    TemplatePreviewResponse,
    TemplateResponse,
    TemplateUpdate,
)
from ventushub.services.catalog import TemplateCatalog

router = APIRouter()


@router.get("", response_model=list[TemplateResponse])
async def list_templates(
    active_only: bool = False,
    db: AsyncSession = Depends(get_db),
    _: CurrentUser = Depends(require_operator),
):
    return [TemplateResponse.from_model(t) for t in await TemplateCatalog(db).list(active_only=active_only)]


@router.post("", response_model=TemplateResponse, status_code=201)
async def create_template(
    req: TemplateCreate,
    db: AsyncSession = Depends(get_db),
    _: CurrentUser = Depends(require_operator),
):
    template = await TemplateCatalog(db).create(req.model_dump(mode="json"))
    return TemplateResponse.from_model(template)


@router.get("/{template_key}", response_model=TemplateResponse)
async def get_template(
    template_key: str,
    db: AsyncSession = Depends(get_db),
    _: CurrentUser = Depends(require_operator),
):
    return TemplateResponse.from_model(await TemplateCatalog(db).get(template_key))


@router.patch("/{template_key}", response_model=TemplateResponse)
async def update_template(
    template_key: str,
    req: TemplateUpdate,
    db: AsyncSession = Depends(get_db),
    _: CurrentUser = Depends(require_operator),
):
    """Partial update. Changing title, message or rich content bumps the version."""
    template = await TemplateCatalog(db).update(template_key, req.model_dump(exclude_unset=True, mode="json"))
    return TemplateResponse.from_model(template)


@router.post("/{template_key}/deactivate", response_model=TemplateResponse)
async def deactivate_template(
    template_key: str,
    db: AsyncSession = Depends(get_db),
    _: CurrentUser = Depends(require_operator),
):
    return TemplateResponse.from_model(await TemplateCatalog(db).deactivate(template_key))


@router.delete("/{template_key}", status_code=204)
async def delete_template(
    template_key: str,
    db: AsyncSession = Depends(get_db),
    _: CurrentUser = Depends(require_operator),
):
    """Only unreferenced templates can be deleted (409 otherwise)."""
    await TemplateCatalog(db).delete(template_key)


@router.post("/{template_key}/preview", response_model=TemplatePreviewResponse)
async def preview_template(
    template_key: str,
    req: TemplatePreviewRequest,
    db: AsyncSession = Depends(get_db),
    _: CurrentUser = Depends(require_operator),
):
    return TemplatePreviewResponse(**await TemplateCatalog(db).preview(template_key, req.context))
