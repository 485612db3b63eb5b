"""GET /v1/automation/variables — personalization catalog for the editor's picker."""

from fastapi import APIRouter

from cadence.api.schemas import ValidateTemplateRequest
from cadence.personalization import get_available_variables, validate_template

router = APIRouter(prefix="/automation/variables", tags=["personalization"])


@router.get("")
async def list_variables():
    return {"variables": [v.model_dump(by_alias=True) for v in get_available_variables()]}


@router.post("/validate")
async def validate(body: ValidateTemplateRequest):
    """Report unknown tokens and tokens without a value. Never renders or sends."""
    return validate_template(body.template, body.variables).model_dump(by_alias=True)
