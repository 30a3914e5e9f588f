from __future__ import annotations

from fastapi import APIRouter, Depends

from apigw_fargate.models.probe import ProbeResponse
from apigw_fargate.services.dependencies import get_end_to_end_probe
from apigw_fargate.services.probe_service import EndToEndProbe

router = APIRouter(prefix="/probe", tags=["probe"])


@router.post("", response_model=ProbeResponse)
async def run_probe(probe: EndToEndProbe = Depends(get_end_to_end_probe)) -> ProbeResponse:
    return await probe.run()
