"""
Contest lifecycle management.

A contest moves through a small state machine:

    (none) --create--> new --update_names (repeatable)--> new --start--> active

- ``create_contest`` validates the event id and the cost per square and
  stores a ``new`` contest without a roster.
- ``update_names`` replaces the roster, only while the contest is ``new``.
- ``start_contest`` checks every start precondition at once, then shuffles
  the roster with an unbiased Fisher-Yates pass and marks the contest
  ``active``. The board position of each participant is their index in the
  shuffled roster.

Status checks and writes run inside one store transaction
(``DocumentStore.atomic_update``), so concurrent starts cannot both shuffle.
"""

from __future__ import annotations

import logging
import random
from typing import Any, Dict, List, Optional, Sequence, TypeVar

from pydantic import ValidationError as PydanticValidationError

from .database import Document, DocumentStore
from .errors import (
    ContestNotFound,
    ContestValidationFailed,
    InvalidContestState,
    RequestValidationFailed,
)
from .models import ContestCreate, ContestNamesUpdate, ContestRules, ContestStatus, validation_details
from .utils import is_number, sanitize_payload, serialize_datetime, utcnow

logger = logging.getLogger(__name__)

CONTESTS_COLLECTION = "contests"
MAX_CONTEST_ID_LENGTH = 100

T = TypeVar("T")

_system_random = random.SystemRandom()


def fisher_yates_shuffle(items: Sequence[T], rng: Optional[random.Random] = None) -> List[T]:
    """
    Return a uniformly random permutation of ``items``.

    Walks ``i`` from the last index down to 1 and swaps position ``i`` with a
    position ``j`` drawn uniformly from ``[0, i]``. The input is not modified.
    """
    rng = rng or _system_random
    shuffled = list(items)
    for i in range(len(shuffled) - 1, 0, -1):
        j = rng.randint(0, i)
        shuffled[i], shuffled[j] = shuffled[j], shuffled[i]
    return shuffled


def validate_start_contest(contest_data: Dict[str, Any], required_roster_size: int = 100) -> List[str]:
    """
    Collect every reason a stored contest cannot start.

    Returns an empty list when the contest may start. The roster scan stops
    at the first empty entry.
    """
    validation_errors: List[str] = []

    status = contest_data.get("status")
    if status != ContestStatus.NEW.value:
        validation_errors.append(
            f"Contest cannot be started in '{status}' state. Only contests in 'new' state can be started."
        )

    if not contest_data.get("eventId"):
        validation_errors.append("eventId is missing")

    cost = contest_data.get("costPerSquare")
    if not is_number(cost) or cost <= 0:
        validation_errors.append("costPerSquare is missing or invalid")

    names = contest_data.get("names")
    if not isinstance(names, list):
        validation_errors.append("names array is missing")
    elif len(names) != required_roster_size:
        validation_errors.append(
            f"names array must have exactly {required_roster_size} items (currently has {len(names)})"
        )
    else:
        for index, name in enumerate(names):
            if not isinstance(name, str) or not name.strip():
                validation_errors.append(f"names[{index}] must be a non-empty string")
                break

    return validation_errors


def contest_snapshot(contest_id: str, contest_data: Dict[str, Any]) -> Dict[str, Any]:
    """Summary of a contest attached to start failures for diagnostics."""
    names = contest_data.get("names")
    return {
        "id": contest_id,
        "eventId": contest_data.get("eventId"),
        "costPerSquare": contest_data.get("costPerSquare"),
        "namesCount": len(names) if isinstance(names, list) else 0,
        "status": contest_data.get("status"),
    }


class ContestManager:
    """
    Coordinator for the contest lifecycle.

    Holds no contest state of its own; every read and write goes to the
    document store, so instances can be shared across request threads.

    Attributes:
        store: Document store collaborator
        rules: Numeric limits for contest input
    """

    def __init__(
        self,
        store: DocumentStore,
        rules: Optional[ContestRules] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        """
        Args:
            store: Where contests are persisted
            rules: Input limits (defaults: $10,000 ceiling, 100 names of up
                to 100 characters)
            rng: Random source for the start shuffle; defaults to the
                operating system's generator
        """
        self.store = store
        self.rules = rules or ContestRules()
        self._rng = rng or _system_random

    @staticmethod
    def _validate_contest_id(contest_id: str) -> None:
        if not contest_id or len(contest_id) > MAX_CONTEST_ID_LENGTH:
            raise RequestValidationFailed(
                "Invalid contest ID",
                details=[
                    {
                        "field": "id",
                        "message": f"Contest ID must be between 1 and {MAX_CONTEST_ID_LENGTH} characters",
                        "value": contest_id,
                        "type": "string_length",
                    }
                ],
            )

    def _parse(self, model: Any, payload: Any) -> Any:
        try:
            return model.model_validate(sanitize_payload(payload), context={"rules": self.rules})
        except PydanticValidationError as exc:
            details = validation_details(exc)
            logger.warning(f"Rejected {model.__name__} input: {details}")
            raise RequestValidationFailed("Invalid input data", details=details) from exc

    def create_contest(self, payload: Any) -> Document:
        """
        Create a contest in the ``new`` state.

        Args:
            payload: Decoded request body with ``eventId`` and
                ``costPerSquare``; unknown fields are ignored

        Returns:
            The stored contest, without a ``names`` field

        Raises:
            RequestValidationFailed: Listing every violated input constraint
            ServiceUnavailable: If the store is not configured or reachable
        """
        request = self._parse(ContestCreate, payload)
        now = serialize_datetime(utcnow())
        contest_data = {
            "eventId": request.event_id,
            "costPerSquare": request.cost_per_square,
            "createdAt": now,
            "updatedAt": now,
            "status": ContestStatus.NEW.value,
        }

        document = self.store.add(CONTESTS_COLLECTION, contest_data)
        logger.info(f"Created contest {document.id} for event {request.event_id}")
        return document

    def get_contest(self, contest_id: str) -> Document:
        self._validate_contest_id(contest_id)
        document = self.store.get(CONTESTS_COLLECTION, contest_id)
        if document is None:
            raise ContestNotFound(contest_id)
        return document

    def list_contests(self) -> List[Document]:
        """All contests in store insertion order."""
        return self.store.list(CONTESTS_COLLECTION)

    def update_names(self, contest_id: str, payload: Any) -> Document:
        """
        Replace the roster of a ``new`` contest.

        Any roster of 1 to ``required_roster_size`` names is accepted here;
        the exact size is only enforced when the contest starts.

        Raises:
            RequestValidationFailed: If ``names`` is malformed
            ContestNotFound: If the contest does not exist
            InvalidContestState: If the contest is no longer ``new``
        """
        self._validate_contest_id(contest_id)
        request = self._parse(ContestNamesUpdate, payload)

        def _replace_names(contest_data: Dict[str, Any]) -> Dict[str, Any]:
            status = contest_data.get("status")
            if status != ContestStatus.NEW.value:
                logger.warning(f"Refused roster update for contest {contest_id} in '{status}' state")
                raise InvalidContestState(str(status))
            return {"names": request.names, "updatedAt": serialize_datetime(utcnow())}

        document = self.store.atomic_update(CONTESTS_COLLECTION, contest_id, _replace_names)
        if document is None:
            raise ContestNotFound(contest_id)

        logger.info(f"Updated roster of contest {contest_id} ({len(request.names)} names)")
        return document

    def start_contest(self, contest_id: str) -> Document:
        """
        Lock in the roster and move the contest to ``active``.

        All start preconditions are checked together; if any fails nothing
        is written.

        Raises:
            ContestNotFound: If the contest does not exist
            ContestValidationFailed: With every violated precondition and a
                snapshot of the contest
        """
        self._validate_contest_id(contest_id)

        def _start(contest_data: Dict[str, Any]) -> Dict[str, Any]:
            validation_errors = validate_start_contest(contest_data, self.rules.required_roster_size)
            if validation_errors:
                logger.warning(f"Contest {contest_id} cannot start: {validation_errors}")
                raise ContestValidationFailed(validation_errors, contest_snapshot(contest_id, contest_data))
            return {
                "status": ContestStatus.ACTIVE.value,
                "names": fisher_yates_shuffle(contest_data["names"], self._rng),
                "updatedAt": serialize_datetime(utcnow()),
            }

        document = self.store.atomic_update(CONTESTS_COLLECTION, contest_id, _start)
        if document is None:
            raise ContestNotFound(contest_id)

        logger.info(f"Contest {contest_id} started with a shuffled roster")
        return document
