"""Random seat assignment for new bookings.

Adults and children get a seat; infants travel on a lap and get none.
Seats are unique within a booking but not checked against other bookings.
"""

import logging
import random
from dataclasses import dataclass

from flightpay.models import CabinClass, Traveller, TravelerType

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CabinLayout:
    rows: int
    seat_letters: tuple[str, ...]
    excluded_rows: frozenset[int] = frozenset()


CABIN_LAYOUTS: dict[CabinClass, CabinLayout] = {
    CabinClass.ECONOMY: CabinLayout(
        rows=30, seat_letters=("A", "B", "C", "D", "E", "F"), excluded_rows=frozenset({13})
    ),
    CabinClass.BUSINESS: CabinLayout(rows=8, seat_letters=("A", "B", "C", "D")),
}

SEATED_TRAVELER_TYPES = frozenset({TravelerType.ADULT, TravelerType.CHILD})


@dataclass(frozen=True)
class SeatAssignment:
    """A seat given to one traveller, by position in the booking."""

    traveller_index: int
    seat_number: str
    traveler_type: TravelerType
    traveller_name: str


class SeatAssignmentService:
    """Assigns random free seats to the travellers of a booking."""

    MAX_RANDOM_ATTEMPTS = 100

    def __init__(self, rng: random.Random | None = None) -> None:
        """Initialize the service.

        Args:
            rng: Random source (seeded in tests)
        """
        self._rng = rng or random.Random()

    def assign_seats(
        self,
        travellers: list[Traveller],
        cabin_class: CabinClass = CabinClass.ECONOMY,
    ) -> list[SeatAssignment]:
        """Pick a unique seat for every adult and child.

        Args:
            travellers: Travellers in booking order
            cabin_class: Cabin whose layout is used

        Returns:
            One assignment per seated traveller. Empty if nobody needs a seat.
        """
        layout = CABIN_LAYOUTS[cabin_class]
        used: set[str] = set()
        assignments: list[SeatAssignment] = []

        for index, traveller in enumerate(travellers):
            if traveller.traveler_type not in SEATED_TRAVELER_TYPES:
                continue
            seat = self._random_seat(layout, used)
            used.add(seat)
            assignments.append(
                SeatAssignment(
                    traveller_index=index,
                    seat_number=seat,
                    traveler_type=traveller.traveler_type,
                    traveller_name=f"{traveller.first_name} {traveller.last_name}",
                )
            )

        logger.info(
            "Assigned %d seats in %s for %d travellers",
            len(assignments),
            cabin_class.value,
            len(travellers),
        )
        return assignments

    def apply_assignments(
        self,
        travellers: list[Traveller],
        assignments: list[SeatAssignment],
    ) -> list[Traveller]:
        """Return copies of the travellers with their seat numbers set."""
        seats = {a.traveller_index: a.seat_number for a in assignments}
        return [
            t.model_copy(update={"seat_number": seats[i]}) if i in seats else t
            for i, t in enumerate(travellers)
        ]

    def _random_seat(self, layout: CabinLayout, used: set[str]) -> str:
        rows = [r for r in range(1, layout.rows + 1) if r not in layout.excluded_rows]
        for _ in range(self.MAX_RANDOM_ATTEMPTS):
            seat = f"{self._rng.choice(rows)}{self._rng.choice(layout.seat_letters)}"
            if seat not in used:
                return seat

        logger.warning("Random seat generation failed, falling back to first free seat")
        for row in rows:
            for letter in layout.seat_letters:
                seat = f"{row}{letter}"
                if seat not in used:
                    return seat
        raise ValueError("Cabin is full")
