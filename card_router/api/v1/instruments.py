"""GET/POST /v1/instruments - inspect and hot-reload the routing table"""

import logging
from fastapi import APIRouter, Depends, HTTPException

from card_router.api.v1.schemas import InstrumentsResponse
from card_router.api.dependencies import get_instrument_selector
from card_router.config import Settings
from card_router.domain.exceptions import InvalidInstrumentConfig
from card_router.domain.instruments import InstrumentSelector, load_instrument_map

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/instruments", response_model=InstrumentsResponse)
def get_instruments(selector: InstrumentSelector = Depends(get_instrument_selector)):
    """Current category -> instrument id mapping"""
    return InstrumentsResponse(instruments=selector.snapshot().as_dict())


@router.post("/instruments/reload", response_model=InstrumentsResponse)
def reload_instruments(selector: InstrumentSelector = Depends(get_instrument_selector)):
    """
    Re-read instrument configuration and swap it in atomically.

    An invalid configuration is rejected with 422 and the active mapping is
    left untouched.
    """
    try:
        instruments = load_instrument_map(Settings())
    except (InvalidInstrumentConfig, ValueError) as e:
        logger.error(f"Instrument reload rejected: {e}")
        raise HTTPException(status_code=422, detail=str(e))

    selector.swap(instruments)
    logger.info("Instrument mapping reloaded", extra={"instruments": instruments.as_dict()})
    return InstrumentsResponse(instruments=instruments.as_dict())
