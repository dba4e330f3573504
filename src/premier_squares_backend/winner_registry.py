"""
Write-once registry for the bag builder winner.

At most one winner record ever exists. The existence check and the insert
share one store transaction (``DocumentStore.add_if_empty``), so two
simultaneous first writers cannot both succeed.
"""

from __future__ import annotations

import logging
from typing import Optional

from pydantic import ValidationError as PydanticValidationError

from .database import Document, DocumentStore
from .errors import RequestValidationFailed, WinnerAlreadyExists
from .models import ContestRules, WinnerCreate, validation_details
from .utils import serialize_datetime, utcnow

logger = logging.getLogger(__name__)

WINNERS_COLLECTION = "bagBuilderWinners"


class WinnerRegistry:
    def __init__(self, store: DocumentStore, rules: Optional[ContestRules] = None) -> None:
        self.store = store
        self.rules = rules or ContestRules()

    def set_winner(self, name: str) -> Document:
        """
        Record the winner, once.

        Raises:
            RequestValidationFailed: If the trimmed name is empty or too long
            WinnerAlreadyExists: If a winner is already recorded; carries it
            ServiceUnavailable: If the store is not configured or reachable
        """
        try:
            request = WinnerCreate.model_validate({"name": name.strip()}, context={"rules": self.rules})
        except PydanticValidationError as exc:
            raise RequestValidationFailed("Invalid winner name", details=validation_details(exc)) from exc

        now = serialize_datetime(utcnow())
        winner_data = {"name": request.name, "createdAt": now, "updatedAt": now}

        document, created = self.store.add_if_empty(WINNERS_COLLECTION, winner_data)
        if not created:
            logger.warning(f"Refused to replace bag builder winner {document.id}")
            raise WinnerAlreadyExists(document.to_dict())

        logger.info(f"Bag builder winner set to '{request.name}'")
        return document

    def get_winner(self) -> Optional[Document]:
        """The recorded winner, or None when nobody has won yet."""
        winners = self.store.list(WINNERS_COLLECTION, limit=1)
        return winners[0] if winners else None
