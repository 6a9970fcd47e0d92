"""Request dependencies."""

from typing import Annotated

from fastapi import Depends, HTTPException, Request, status

from cips.engine.pipeline import Pipeline
from cips.errors import UnknownAccountError


def get_pipeline(request: Request) -> Pipeline:
    return request.app.state.pipeline


PipelineDep = Annotated[Pipeline, Depends(get_pipeline)]


def account_or_404(pipeline: Pipeline, account_id: str):
    try:
        return pipeline.account(account_id)
    except UnknownAccountError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
